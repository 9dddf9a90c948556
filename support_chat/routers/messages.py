from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from support_chat.dependencies import get_controller, get_customer_id
from support_chat.routers.errors import to_http_error
from support_chat.schemas.message import MessageListResponse, MessageOut, MessageRequest, MessageResponse
from support_chat.services.conversation_service import InboundMessage, SessionController
from support_chat.services.errors import ChatError
from support_chat.services.state_machine import InvalidTransitionError

router = APIRouter()


@router.post("/messages", response_model=MessageResponse)
def post_message(
    request: MessageRequest,
    customer_id: Optional[str] = Depends(get_customer_id),
    controller: SessionController = Depends(get_controller),
):
    """Accept a customer message and return any replies generated for it."""
    inbound = InboundMessage(
        content=request.content,
        type=request.type,
        id=request.message_id,
        metadata=request.metadata,
    )
    try:
        replies = controller.handle_inbound_message(request.conversation_id, inbound, customer_id)
        conversation = controller.get_conversation(request.conversation_id, customer_id)
    except (ChatError, InvalidTransitionError) as e:
        raise to_http_error(e)

    return MessageResponse(
        success=True,
        conversation_id=conversation.id,
        mode=conversation.mode,
        status=conversation.status,
        messages=[MessageOut.from_record(m) for m in replies],
    )


@router.get("/messages", response_model=MessageListResponse)
def poll_messages(
    conversation_id: str,
    since: Optional[datetime] = Query(default=None),
    customer_id: Optional[str] = Depends(get_customer_id),
    controller: SessionController = Depends(get_controller),
):
    """Messages newer than ``since``, oldest first."""
    try:
        messages = controller.poll_messages(conversation_id, since, customer_id)
    except ChatError as e:
        raise to_http_error(e)
    return MessageListResponse(
        conversation_id=conversation_id,
        messages=[MessageOut.from_record(m) for m in messages],
    )
