from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, require_staff
from app.db.session import get_db
from app.models.topic import Topic
from app.models.user import User
from app.schemas.topics import StatusUpdateSchedule, TopicStatusChange
from app.services.events import EventBuffer
from app.services.status_errors import TopicNotFound
from app.services.status_updates import list_status_updates, serialize_status_update, set_or_create_status_update
from app.services.topic_locks import load_topic
from app.services.topic_status import (
    apply_status,
    archive_message,
    clear_pin_for,
    make_banner,
    move_to_inbox,
    re_pin_for,
    remove_banner,
)

router = APIRouter()


def _topic_or_404(db: Session, topic_id: int, *, for_update: bool = False) -> Topic:
    try:
        return load_topic(db, topic_id, for_update=for_update)
    except TopicNotFound:
        raise HTTPException(status_code=404, detail="Topic not found")


def _first_status_update(db: Session, topic_id: int) -> dict[str, Any] | None:
    rows = list_status_updates(db, topic_id)
    return serialize_status_update(rows[0]) if rows else None


@router.put("/{topic_id}/status")
def change_status(
    topic_id: int,
    payload: TopicStatusChange,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    events = EventBuffer()
    result = apply_status(db, topic_id, payload.status, payload.enabled, user, until=payload.until, publisher=events)
    db.commit()
    events.flush()
    return {
        "success": "OK",
        "topic": result.as_dict(),
        "topic_status_update": _first_status_update(db, topic_id),
    }


@router.put("/{topic_id}/status_update")
def schedule_status_update(
    topic_id: int,
    payload: StatusUpdateSchedule,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    topic = _topic_or_404(db, topic_id, for_update=True)
    result = set_or_create_status_update(
        db,
        topic,
        payload.status_type,
        payload.time,
        by_user=user,
        timezone_offset=payload.timezone_offset,
        based_on_last_post=payload.based_on_last_post,
        category_id=payload.category_id,
    )
    db.commit()

    row = result.status_update
    body = {
        "success": "OK" if result.valid else "FAILED",
        "execute_at": row.execute_at.isoformat() if row is not None else None,
        "duration": row.duration if row is not None else None,
        "based_on_last_post": bool(row.based_on_last_post) if row is not None else None,
        "closed": bool(topic.closed),
        "category_id": row.category_id if row is not None else None,
        "errors": result.errors,
    }
    if not result.valid:
        return JSONResponse(status_code=422, content=body)
    return body


@router.put("/{topic_id}/clear_pin")
def clear_pin(topic_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    topic = _topic_or_404(db, topic_id)
    clear_pin_for(db, topic, user)
    db.commit()
    return {"success": "OK"}


@router.put("/{topic_id}/re_pin")
def re_pin(topic_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    topic = _topic_or_404(db, topic_id)
    re_pin_for(db, topic, user)
    db.commit()
    return {"success": "OK"}


@router.put("/{topic_id}/make_banner")
def promote_banner(topic_id: int, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    topic = _topic_or_404(db, topic_id, for_update=True)
    events = EventBuffer()
    result = make_banner(db, topic, user, publisher=events)
    db.commit()
    events.flush()
    return {"success": "OK", "topic": result.as_dict()}


@router.put("/{topic_id}/remove_banner")
def demote_banner(topic_id: int, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    topic = _topic_or_404(db, topic_id, for_update=True)
    events = EventBuffer()
    result = remove_banner(db, topic, user, publisher=events)
    db.commit()
    events.flush()
    return {"success": "OK", "topic": result.as_dict()}


@router.put("/{topic_id}/archive_message")
def archive(topic_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    topic = _topic_or_404(db, topic_id)
    events = EventBuffer()
    archive_message(db, topic, user, publisher=events)
    db.commit()
    events.flush()
    return {"success": "OK"}


@router.put("/{topic_id}/move_to_inbox")
def inbox(topic_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    topic = _topic_or_404(db, topic_id)
    events = EventBuffer()
    moved = move_to_inbox(db, topic, user, publisher=events)
    db.commit()
    events.flush()
    return {"success": "OK", "moved": moved}
