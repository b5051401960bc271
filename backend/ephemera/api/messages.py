from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ephemera.api.deps import get_manager, to_http_error
from ephemera.models.record import RecordKind
from ephemera.services.lifecycle import LifecycleManager

router = APIRouter(prefix="/messages")


class SendMessageSchema(BaseModel):
    receiver: str
    content: str
    sender_id: str = "anonymous"
    # Seconds; omitted or "" means the message stays until deleted
    self_destruct_time: Optional[Union[float, str]] = None


@router.post("/send")
def send_message(payload: SendMessageSchema, manager: LifecycleManager = Depends(get_manager)):
    if not payload.receiver or not payload.content:
        raise HTTPException(status_code=400, detail="Missing receiver or content")

    try:
        message_id = manager.create_message(
            payload.sender_id,
            payload.receiver,
            payload.content,
            payload.self_destruct_time
        )
    except Exception as e:
        raise to_http_error(e, "send_message")

    return {"status": "sent", "id": message_id}


@router.get("/{user_id}")
def list_messages(user_id: str, manager: LifecycleManager = Depends(get_manager)):
    """Messages the user sent or received"""
    try:
        messages = manager.list_for_participant(user_id)
    except Exception as e:
        raise to_http_error(e, "list_messages")

    return [m.to_dict() for m in messages]


@router.delete("/{message_id}")
def delete_message(message_id: int, manager: LifecycleManager = Depends(get_manager)):
    try:
        deleted = manager.delete_explicit(message_id, RecordKind.MESSAGE)
    except Exception as e:
        raise to_http_error(e, "delete_message")

    if not deleted:
        return {"status": "already_deleted", "id": message_id}
    return {"status": "deleted", "id": message_id}
