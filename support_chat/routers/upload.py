from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from support_chat.dependencies import get_controller, get_customer_id
from support_chat.routers.errors import to_http_error
from support_chat.schemas.message import MessageOut, UploadResponse
from support_chat.services.conversation_service import SessionController
from support_chat.services.errors import ChatError

router = APIRouter()


@router.post("/upload", response_model=UploadResponse)
def upload_attachment(
    conversation_id: str = Form(...),
    file: UploadFile = File(...),
    customer_id: Optional[str] = Depends(get_customer_id),
    controller: SessionController = Depends(get_controller),
):
    """Store an attachment and post it to the conversation as an IMAGE/FILE message."""
    content = file.file.read()
    try:
        message = controller.attach_file(
            conversation_id,
            customer_id,
            file.filename or "upload",
            content,
            file.content_type,
        )
    except ChatError as e:
        raise to_http_error(e)
    return UploadResponse(url=message.content, message=MessageOut.from_record(message))
