from typing import Optional

from pydantic import BaseModel

from support_chat.schemas.message import MessageOut


class HumanRequest(BaseModel):
    conversation_id: str


class HumanRequestResponse(BaseModel):
    queued: bool
    queue_position: Optional[int] = None
    mode: str
    message: Optional[MessageOut] = None
