from typing import Optional

from pydantic import BaseModel

from support_chat.schemas.message import MessageOut


class AgentAcceptRequest(BaseModel):
    conversation_id: str


class AgentAcceptResponse(BaseModel):
    success: bool
    conversation_id: str
    assigned_agent_id: str
    message: Optional[MessageOut] = None


class AgentMessageRequest(BaseModel):
    conversation_id: str
    content: str
