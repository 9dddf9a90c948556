from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from support_chat.services.store import MessageRecord, MessageType


class MessageRequest(BaseModel):
    conversation_id: str
    content: str
    type: MessageType = MessageType.TEXT
    message_id: Optional[str] = Field(default=None, max_length=64)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    content: str
    type: str
    sender_type: str
    sender_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    @classmethod
    def from_record(cls, record: MessageRecord) -> "MessageOut":
        return cls(
            id=record.id,
            conversation_id=record.conversation_id,
            content=record.content,
            type=record.type,
            sender_type=record.sender_type,
            sender_id=record.sender_id,
            metadata=record.metadata,
            timestamp=record.timestamp,
        )


class MessageResponse(BaseModel):
    success: bool
    conversation_id: str
    mode: str
    status: str
    messages: List[MessageOut] = Field(default_factory=list)


class MessageListResponse(BaseModel):
    conversation_id: str
    messages: List[MessageOut]


class UploadResponse(BaseModel):
    url: str
    message: MessageOut
