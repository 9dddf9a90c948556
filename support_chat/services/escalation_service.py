import threading
from dataclasses import dataclass
from typing import Optional

from support_chat.logging_config import get_logger
from support_chat.services.errors import AuthenticationRequired, ConcurrentUpdateError, QueueFull
from support_chat.services.state_machine import (
    ConversationMode,
    ConversationStatus,
    EscalationState,
    agent_accept,
    change_status,
    connect,
    current_state,
    enqueue,
)
from support_chat.services.store import (
    ConversationRecord,
    ConversationStore,
    MessageRecord,
    SenderType,
    make_message,
    utcnow,
)

logger = get_logger("escalation_service")

MAX_SAVE_ATTEMPTS = 3

MSG_QUEUED = {
    "en": (
        "🙋‍♀️ You've been added to the waiting queue. Your position: {position}\n\n"
        "You'll be connected to a human agent as soon as one becomes available."
    ),
    "ar": (
        "🙋‍♀️ تم إضافتك إلى قائمة الانتظار. موقعك في الطابور: {position}\n\n"
        "سيتم توصيلك بأحد موظفي خدمة العملاء في أقرب وقت ممكن."
    ),
}
MSG_CONNECTED = {
    "en": "🙋‍♀️ You've been connected to a human agent. You'll receive a response shortly.",
    "ar": "🙋‍♀️ تم تحويلك إلى أحد موظفي خدمة العملاء. سيتم الرد عليك في أقرب وقت ممكن.",
}
MSG_AGENT_JOINED = {
    "en": "👨‍💼 A customer service agent has joined the conversation.",
    "ar": "👨‍💼 انضم أحد موظفي خدمة العملاء إلى المحادثة.",
}
MSG_QUEUE_FULL = {
    "en": "All our agents are busy right now. Please try again later.",
    "ar": "جميع موظفينا مشغولون حالياً. يرجى المحاولة لاحقاً.",
}
MSG_LOGIN_REQUIRED = {
    "en": "Please log in first to use the chat service",
    "ar": "يجب تسجيل الدخول أولاً لاستخدام خدمة الدردشة",
}


def localized(table: dict, language: str) -> str:
    return table.get(language) or table["en"]


def _set_status(conversation: ConversationRecord, status: ConversationStatus) -> None:
    if conversation.status != status.value:
        conversation.status = change_status(ConversationStatus(conversation.status), status).value


@dataclass
class EscalationOutcome:
    conversation: ConversationRecord
    queued: bool
    queue_position: Optional[int] = None
    message: Optional[MessageRecord] = None


class EscalationManager:
    """Moves conversations from the assistant to the human side.

    All queue mutation happens under ``queue_lock`` so that positions stay
    contiguous (1..n in enqueue order). Callers hold the per-conversation lock
    of the conversation they pass in; other queued conversations are only
    re-ranked, never locked.
    """

    def __init__(
        self,
        store: ConversationStore,
        max_concurrent_sessions: int = 3,
        max_queue_length: int = 0,
    ):
        self.store = store
        self.max_concurrent_sessions = max_concurrent_sessions
        self.max_queue_length = max_queue_length
        self.queue_lock = threading.Lock()

    def escalate(self, conversation: ConversationRecord, customer_id: Optional[str]) -> EscalationOutcome:
        if not customer_id:
            raise AuthenticationRequired(localized(MSG_LOGIN_REQUIRED, conversation.language))

        state = current_state(conversation.mode, conversation.queue_position, conversation.assigned_agent_id)
        if state != EscalationState.AI:
            return EscalationOutcome(
                conversation=conversation,
                queued=conversation.is_queued,
                queue_position=conversation.queue_position,
            )

        with self.queue_lock:
            waiting = self.store.list_queued()
            active = self.store.count_active_human()

            if waiting or active >= self.max_concurrent_sessions:
                if self.max_queue_length and len(waiting) >= self.max_queue_length:
                    logger.warning(
                        "Human queue full",
                        extra={"context": {"conversation_id": conversation.id, "waiting": len(waiting)}},
                    )
                    raise QueueFull(self.max_queue_length)

                enqueue(state)
                position = len(waiting) + 1
                conversation.mode = ConversationMode.HUMAN.value
                _set_status(conversation, ConversationStatus.PENDING)
                conversation.queue_position = position
                conversation.queued_at = utcnow()
                saved = self.store.save_conversation(conversation)

                message = make_message(
                    saved.id,
                    localized(MSG_QUEUED, saved.language).format(position=position),
                    SenderType.SYSTEM,
                    metadata={"event": "queued", "queue_position": position},
                )
                logger.info(
                    "Conversation queued for human agent",
                    extra={"context": {"conversation_id": saved.id, "queue_position": position, "active": active}},
                )
                return EscalationOutcome(conversation=saved, queued=True, queue_position=position, message=message)

            connect(state)
            conversation.mode = ConversationMode.HUMAN.value
            _set_status(conversation, ConversationStatus.OPEN)
            saved = self.store.save_conversation(conversation)

        message = make_message(
            saved.id,
            localized(MSG_CONNECTED, saved.language),
            SenderType.SYSTEM,
            metadata={"event": "connected"},
        )
        logger.info(
            "Conversation connected to human side",
            extra={"context": {"conversation_id": saved.id, "active": active + 1}},
        )
        return EscalationOutcome(conversation=saved, queued=False, message=message)

    def status_message(self, outcome: EscalationOutcome) -> MessageRecord:
        conversation = outcome.conversation
        if outcome.queued:
            content = localized(MSG_QUEUED, conversation.language).format(position=outcome.queue_position)
            metadata = {"event": "queued", "queue_position": outcome.queue_position}
        else:
            content = localized(MSG_CONNECTED, conversation.language)
            metadata = {"event": "connected"}
        return make_message(conversation.id, content, SenderType.SYSTEM, metadata=metadata)

    def queue_full_message(self, conversation: ConversationRecord) -> MessageRecord:
        return make_message(
            conversation.id,
            localized(MSG_QUEUE_FULL, conversation.language),
            SenderType.SYSTEM,
            metadata={"event": "queue_full"},
        )

    def assign(self, conversation: ConversationRecord, agent_id: str) -> EscalationOutcome:
        """An agent accepted the conversation; it leaves the queue."""
        state = current_state(conversation.mode, conversation.queue_position, conversation.assigned_agent_id)
        agent_accept(state)

        with self.queue_lock:
            conversation = self._reload(conversation)
            was_queued = conversation.is_queued
            conversation.assigned_agent_id = agent_id
            conversation.queue_position = None
            conversation.queued_at = None
            _set_status(conversation, ConversationStatus.OPEN)
            saved = self.store.save_conversation(conversation)
            if was_queued:
                self._rerank()

        message = make_message(
            saved.id,
            localized(MSG_AGENT_JOINED, saved.language),
            SenderType.SYSTEM,
            metadata={"event": "assigned", "agent_id": agent_id},
        )
        logger.info(
            "Agent accepted conversation",
            extra={"context": {"conversation_id": saved.id, "agent_id": agent_id, "was_queued": was_queued}},
        )
        return EscalationOutcome(conversation=saved, queued=False, message=message)

    def finish(self, conversation: ConversationRecord, status: ConversationStatus) -> ConversationRecord:
        """Resolve or close. Status-only; a queued conversation gives up its place."""
        conversation.status = change_status(ConversationStatus(conversation.status), status).value

        if not conversation.is_queued:
            return self.store.save_conversation(conversation)

        with self.queue_lock:
            conversation = self._reload(conversation)
            conversation.status = status.value
            conversation.queue_position = None
            conversation.queued_at = None
            saved = self.store.save_conversation(conversation)
            self._rerank()
        return saved

    def _reload(self, conversation: ConversationRecord) -> ConversationRecord:
        """Latest copy of a conversation whose queue fields a re-rank may have moved."""
        if not conversation.is_queued:
            return conversation
        return self.store.get_conversation(conversation.id) or conversation

    def _rerank(self) -> None:
        """Rewrite queue positions as 1..n in enqueue order. Caller holds queue_lock."""
        for position, queued in enumerate(self.store.list_queued(), start=1):
            if queued.queue_position == position:
                continue
            for _ in range(MAX_SAVE_ATTEMPTS):
                queued.queue_position = position
                try:
                    self.store.save_conversation(queued)
                    break
                except ConcurrentUpdateError:
                    queued = self.store.get_conversation(queued.id)
                    if queued is None or not queued.is_queued:
                        break
            else:
                logger.error(
                    "Queue re-rank gave up after concurrent updates",
                    extra={"context": {"conversation_id": queued.id, "position": position}},
                )
