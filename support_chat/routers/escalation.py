from typing import Optional

from fastapi import APIRouter, Depends

from support_chat.dependencies import get_controller, get_customer_id
from support_chat.routers.errors import to_http_error
from support_chat.schemas.escalation import HumanRequest, HumanRequestResponse
from support_chat.schemas.message import MessageOut
from support_chat.services.conversation_service import SessionController
from support_chat.services.errors import ChatError
from support_chat.services.state_machine import InvalidTransitionError

router = APIRouter()


@router.post("/request-human", response_model=HumanRequestResponse)
def request_human(
    request: HumanRequest,
    customer_id: Optional[str] = Depends(get_customer_id),
    controller: SessionController = Depends(get_controller),
):
    """Explicit "talk to an agent" action from the widget."""
    try:
        outcome = controller.request_human(request.conversation_id, customer_id)
    except (ChatError, InvalidTransitionError) as e:
        raise to_http_error(e)

    return HumanRequestResponse(
        queued=outcome.queued,
        queue_position=outcome.queue_position,
        mode=outcome.conversation.mode,
        message=MessageOut.from_record(outcome.message) if outcome.message else None,
    )
