from support_chat.schemas.agent import AgentAcceptRequest, AgentAcceptResponse, AgentMessageRequest
from support_chat.schemas.availability import AvailabilityResponse, WorkingHoursResponse
from support_chat.schemas.conversation import ConversationCreateRequest, ConversationOut
from support_chat.schemas.escalation import HumanRequest, HumanRequestResponse
from support_chat.schemas.message import MessageListResponse, MessageOut, MessageRequest, MessageResponse

__all__ = [
    "AgentAcceptRequest",
    "AgentAcceptResponse",
    "AgentMessageRequest",
    "AvailabilityResponse",
    "ConversationCreateRequest",
    "ConversationOut",
    "HumanRequest",
    "HumanRequestResponse",
    "MessageListResponse",
    "MessageOut",
    "MessageRequest",
    "MessageResponse",
    "WorkingHoursResponse",
]
