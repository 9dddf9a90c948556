from typing import Optional

from fastapi import APIRouter, Depends

from support_chat.dependencies import get_agent_id, get_controller, get_customer_id
from support_chat.routers.errors import to_http_error
from support_chat.schemas.conversation import ConversationCreateRequest, ConversationOut
from support_chat.services.conversation_service import SessionController
from support_chat.services.errors import ChatError, ValidationError
from support_chat.services.state_machine import InvalidTransitionError

router = APIRouter()


@router.post("/conversations", response_model=ConversationOut)
def create_conversation(
    request: Optional[ConversationCreateRequest] = None,
    customer_id: Optional[str] = Depends(get_customer_id),
    controller: SessionController = Depends(get_controller),
):
    """Start a new conversation; guests may open one but cannot send until they log in."""
    language = request.language if request else "en"
    conversation, messages = controller.create_conversation(customer_id, language)
    return ConversationOut.from_record(conversation, messages)


@router.post("/conversations/current", response_model=ConversationOut)
def current_conversation(
    request: Optional[ConversationCreateRequest] = None,
    customer_id: Optional[str] = Depends(get_customer_id),
    controller: SessionController = Depends(get_controller),
):
    """Fetch the caller's open conversation, creating one if needed."""
    language = request.language if request else "en"
    try:
        conversation, messages = controller.get_or_create_current(customer_id, language)
    except ChatError as e:
        raise to_http_error(e)
    return ConversationOut.from_record(conversation, messages)


@router.post("/conversations/{conversation_id}/resolve", response_model=ConversationOut)
def resolve_conversation(
    conversation_id: str,
    agent_id: Optional[str] = Depends(get_agent_id),
    controller: SessionController = Depends(get_controller),
):
    try:
        if not agent_id:
            raise ValidationError("X-Agent-Id header is required")
        conversation = controller.resolve(conversation_id)
    except (ChatError, InvalidTransitionError) as e:
        raise to_http_error(e)
    return ConversationOut.from_record(conversation)


@router.post("/conversations/{conversation_id}/close", response_model=ConversationOut)
def close_conversation(
    conversation_id: str,
    agent_id: Optional[str] = Depends(get_agent_id),
    controller: SessionController = Depends(get_controller),
):
    try:
        if not agent_id:
            raise ValidationError("X-Agent-Id header is required")
        conversation = controller.close(conversation_id)
    except (ChatError, InvalidTransitionError) as e:
        raise to_http_error(e)
    return ConversationOut.from_record(conversation)
