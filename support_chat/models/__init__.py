from support_chat.models.conversation import Conversation
from support_chat.models.message import Message

__all__ = [
    "Conversation",
    "Message",
]
