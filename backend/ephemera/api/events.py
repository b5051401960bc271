# ephemera/api/events.py

from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ephemera.api.deps import get_manager, to_http_error
from ephemera.models.record import RecordKind
from ephemera.services.lifecycle import LifecycleManager

router = APIRouter(prefix="/events")


class CreateEventSchema(BaseModel):
    name: str
    date: str
    # Form posts send "" for an empty field
    self_destruct_time: Optional[Union[float, str]] = None


@router.post("")
def create_event(payload: CreateEventSchema, manager: LifecycleManager = Depends(get_manager)):
    """Add a calendar event, optionally self-destructing"""
    try:
        event_id = manager.create_event(payload.name, payload.date, payload.self_destruct_time)
    except Exception as e:
        raise to_http_error(e, "create_event")

    return {"status": "created", "id": event_id}


@router.get("")
def list_events(manager: LifecycleManager = Depends(get_manager)):
    try:
        events = manager.list_all(RecordKind.EVENT)
    except Exception as e:
        raise to_http_error(e, "list_events")

    return [e.to_dict() for e in events]


@router.delete("/{event_id}")
def delete_event(event_id: int, manager: LifecycleManager = Depends(get_manager)):
    try:
        deleted = manager.delete_explicit(event_id, RecordKind.EVENT)
    except Exception as e:
        raise to_http_error(e, "delete_event")

    if not deleted:
        return {"status": "already_deleted", "id": event_id}
    return {"status": "deleted", "id": event_id}
