from typing import Optional

from fastapi import APIRouter, Depends

from support_chat.dependencies import get_agent_id, get_controller
from support_chat.routers.errors import to_http_error
from support_chat.schemas.agent import AgentAcceptRequest, AgentAcceptResponse, AgentMessageRequest
from support_chat.schemas.message import MessageOut
from support_chat.services.conversation_service import SessionController
from support_chat.services.errors import ChatError, ValidationError
from support_chat.services.state_machine import InvalidTransitionError

router = APIRouter(prefix="/agent")


@router.post("/accept", response_model=AgentAcceptResponse)
def accept_conversation(
    request: AgentAcceptRequest,
    agent_id: Optional[str] = Depends(get_agent_id),
    controller: SessionController = Depends(get_controller),
):
    """Agent console picked the conversation up."""
    try:
        if not agent_id:
            raise ValidationError("X-Agent-Id header is required")
        outcome = controller.assign_agent(request.conversation_id, agent_id)
    except (ChatError, InvalidTransitionError) as e:
        raise to_http_error(e)

    return AgentAcceptResponse(
        success=True,
        conversation_id=outcome.conversation.id,
        assigned_agent_id=agent_id,
        message=MessageOut.from_record(outcome.message) if outcome.message else None,
    )


@router.post("/messages", response_model=MessageOut)
def post_agent_message(
    request: AgentMessageRequest,
    agent_id: Optional[str] = Depends(get_agent_id),
    controller: SessionController = Depends(get_controller),
):
    try:
        if not agent_id:
            raise ValidationError("X-Agent-Id header is required")
        message = controller.post_agent_message(request.conversation_id, agent_id, request.content)
    except ChatError as e:
        raise to_http_error(e)
    return MessageOut.from_record(message)
