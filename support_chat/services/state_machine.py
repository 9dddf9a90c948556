from enum import Enum
from typing import Optional


class ConversationMode(str, Enum):
    AI = "AI"
    HUMAN = "HUMAN"


class ConversationStatus(str, Enum):
    OPEN = "OPEN"
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class EscalationState(str, Enum):
    AI = "ai"
    HUMAN_QUEUED = "human_queued"  # waiting in the human queue
    HUMAN_CONNECTED = "human_connected"  # capacity was free, no agent picked it up yet
    HUMAN_ASSIGNED = "human_assigned"


# No transition leads back to AI: escalation is one-directional.
VALID_TRANSITIONS = {
    EscalationState.AI: [EscalationState.HUMAN_QUEUED, EscalationState.HUMAN_CONNECTED],
    EscalationState.HUMAN_QUEUED: [EscalationState.HUMAN_ASSIGNED],
    EscalationState.HUMAN_CONNECTED: [EscalationState.HUMAN_ASSIGNED],
    EscalationState.HUMAN_ASSIGNED: [],
}

VALID_STATUS_TRANSITIONS = {
    ConversationStatus.OPEN: [ConversationStatus.PENDING, ConversationStatus.RESOLVED, ConversationStatus.CLOSED],
    ConversationStatus.PENDING: [ConversationStatus.OPEN, ConversationStatus.RESOLVED, ConversationStatus.CLOSED],
    # Resolved conversations reopen on new activity.
    ConversationStatus.RESOLVED: [ConversationStatus.OPEN, ConversationStatus.PENDING, ConversationStatus.CLOSED],
    ConversationStatus.CLOSED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: Enum, to_state: Enum):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def current_state(mode: str, queue_position: Optional[int], assigned_agent_id: Optional[str]) -> EscalationState:
    """Derive the escalation state from the stored conversation fields."""
    if mode == ConversationMode.AI.value:
        return EscalationState.AI
    if assigned_agent_id:
        return EscalationState.HUMAN_ASSIGNED
    if queue_position is not None:
        return EscalationState.HUMAN_QUEUED
    return EscalationState.HUMAN_CONNECTED


def can_transition(from_state: EscalationState, to_state: EscalationState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: EscalationState, to_state: EscalationState) -> EscalationState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def enqueue(state: EscalationState) -> EscalationState:
    """Conversation joins the human wait queue."""
    return transition(state, EscalationState.HUMAN_QUEUED)


def connect(state: EscalationState) -> EscalationState:
    """Conversation is handed to the human side without waiting."""
    return transition(state, EscalationState.HUMAN_CONNECTED)


def agent_accept(state: EscalationState) -> EscalationState:
    """An agent picks the conversation up."""
    return transition(state, EscalationState.HUMAN_ASSIGNED)


def can_change_status(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    return to_status in VALID_STATUS_TRANSITIONS.get(from_status, [])


def change_status(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Status-only change; never touches the conversation mode."""
    if not can_change_status(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status
