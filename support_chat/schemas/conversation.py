from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from support_chat.schemas.message import MessageOut
from support_chat.services.store import ConversationRecord, MessageRecord


class ConversationCreateRequest(BaseModel):
    language: str = "en"


class ConversationOut(BaseModel):
    id: str
    customer_id: Optional[str] = None
    status: str
    mode: str
    language: str
    assigned_agent_id: Optional[str] = None
    queue_position: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    messages: List[MessageOut] = Field(default_factory=list)

    @classmethod
    def from_record(
        cls,
        record: ConversationRecord,
        messages: Optional[List[MessageRecord]] = None,
    ) -> "ConversationOut":
        return cls(
            id=record.id,
            customer_id=record.customer_id,
            status=record.status,
            mode=record.mode,
            language=record.language,
            assigned_agent_id=record.assigned_agent_id,
            queue_position=record.queue_position,
            created_at=record.created_at,
            updated_at=record.updated_at,
            messages=[MessageOut.from_record(m) for m in messages or []],
        )
