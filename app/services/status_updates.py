from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.models.category import Category
from app.models.topic import Topic
from app.models.topic_status_update import StatusType, TopicStatusUpdate
from app.models.user import User
from app.services.actors import can_own_status_updates
from app.services.status_errors import InvalidStatusType, StatusUpdateValidationError
from app.services.status_update_time import is_blank_time_spec, resolve_time_spec

logger = logging.getLogger(__name__)

EXECUTE_AT_IN_PAST = "must be in the future"


@dataclass
class ScheduleResult:
    status_update: TopicStatusUpdate | None
    errors: dict[str, list[str]] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def valid(self) -> bool:
        return not self.errors


def parse_status_type(value: object) -> StatusType:
    if isinstance(value, StatusType):
        return value
    try:
        return StatusType(str(value or "").strip().lower())
    except ValueError:
        raise InvalidStatusType(value)


def get_status_update(db: Session, topic_id: int, status_type: StatusType | str) -> TopicStatusUpdate | None:
    kind = parse_status_type(status_type)
    return db.execute(
        select(TopicStatusUpdate)
        .where(
            TopicStatusUpdate.topic_id == int(topic_id),
            TopicStatusUpdate.status_type == kind.value,
        )
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def list_status_updates(db: Session, topic_id: int) -> list[TopicStatusUpdate]:
    return list(
        db.execute(
            select(TopicStatusUpdate)
            .where(TopicStatusUpdate.topic_id == int(topic_id))
            .order_by(TopicStatusUpdate.execute_at.asc(), TopicStatusUpdate.id.asc())
        ).scalars()
    )


def delete_status_update(db: Session, topic_id: int, status_type: StatusType | str) -> int:
    kind = parse_status_type(status_type)
    result = db.execute(
        delete(TopicStatusUpdate).where(
            TopicStatusUpdate.topic_id == int(topic_id),
            TopicStatusUpdate.status_type == kind.value,
        )
    )
    return int(result.rowcount or 0)


def delete_status_updates_for_topic(db: Session, topic_id: int) -> int:
    result = db.execute(delete(TopicStatusUpdate).where(TopicStatusUpdate.topic_id == int(topic_id)))
    return int(result.rowcount or 0)


def status_update_creator_id(db: Session, topic: Topic, by_user: User | None) -> int:
    if can_own_status_updates(by_user):
        return int(by_user.id)
    if topic.user_id is not None:
        creator = db.get(User, topic.user_id)
        if can_own_status_updates(creator):
            return int(creator.id)
    return int(settings.SYSTEM_USER_ID)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None
    return insert


def _upsert(db: Session, values: dict[str, Any]) -> TopicStatusUpdate:
    now = utcnow()
    insert = _insert_for(db)
    if insert is None:
        row = get_status_update(db, values["topic_id"], values["status_type"])
        if row is None:
            row = TopicStatusUpdate(**values, created_at=now, updated_at=now)
        else:
            for key, value in values.items():
                if key != "created_by_id":
                    setattr(row, key, value)
            row.updated_at = now
        db.add(row)
        db.flush()
        return row

    # created_at and created_by_id are only set on insert.
    stmt = insert(TopicStatusUpdate).values(**values, created_at=now, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[TopicStatusUpdate.topic_id, TopicStatusUpdate.status_type],
        set_={
            "execute_at": stmt.excluded.execute_at,
            "duration": stmt.excluded.duration,
            "based_on_last_post": stmt.excluded.based_on_last_post,
            "category_id": stmt.excluded.category_id,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)
    return get_status_update(db, values["topic_id"], values["status_type"])


def set_or_create_status_update(
    db: Session,
    topic: Topic,
    status_type: StatusType | str,
    time_spec: object,
    *,
    by_user: User | None = None,
    timezone_offset: int | None = None,
    based_on_last_post: bool = False,
    category_id: int | None = None,
) -> ScheduleResult:
    """Create, move or cancel the pending update of ``status_type`` for ``topic``.

    A blank ``time_spec`` deletes the pending row. Otherwise the row for
    ``(topic, status_type)`` is upserted; ``created_at`` and the creator of an
    existing row are kept. An ``execute_at`` that is not in the future is still
    written and reported through ``ScheduleResult.errors`` unless
    ``STATUS_UPDATE_REJECT_PAST`` is enabled.
    """
    kind = parse_status_type(status_type)

    if is_blank_time_spec(time_spec):
        removed = delete_status_update(db, topic.id, kind)
        if removed:
            logger.info("status_update_cancelled topic_id=%s status_type=%s", topic.id, kind.value)
        return ScheduleResult(status_update=None, cancelled=True)

    now = utcnow()
    based_on_last_post = bool(based_on_last_post)
    resolved = resolve_time_spec(
        time_spec,
        now=now,
        timezone_offset=timezone_offset,
        based_on_last_post=based_on_last_post,
        last_posted_at=topic.last_posted_at,
    )

    if kind is StatusType.PUBLISH_TO_CATEGORY and category_id is None:
        raise StatusUpdateValidationError({"category_id": ["can't be blank"]})

    errors: dict[str, list[str]] = {}
    if resolved.execute_at <= now:
        errors["execute_at"] = [EXECUTE_AT_IN_PAST]
        if settings.STATUS_UPDATE_REJECT_PAST:
            raise StatusUpdateValidationError(errors)

    row = _upsert(
        db,
        {
            "topic_id": int(topic.id),
            "status_type": kind.value,
            "execute_at": resolved.execute_at,
            "duration": resolved.duration,
            "based_on_last_post": based_on_last_post and resolved.duration is not None,
            "category_id": int(category_id) if category_id is not None else None,
            "created_by_id": status_update_creator_id(db, topic, by_user),
        },
    )
    if errors:
        logger.warning(
            "status_update_in_past topic_id=%s status_type=%s execute_at=%s",
            topic.id,
            kind.value,
            row.execute_at.isoformat(),
        )
    else:
        logger.info(
            "status_update_scheduled topic_id=%s status_type=%s execute_at=%s",
            topic.id,
            kind.value,
            row.execute_at.isoformat(),
        )
    return ScheduleResult(status_update=row, errors=errors)


def recompute_based_on_last_post(db: Session, topic: Topic) -> TopicStatusUpdate | None:
    row = get_status_update(db, topic.id, StatusType.CLOSE)
    if row is None or not row.based_on_last_post or row.duration is None:
        return row
    base = topic.last_posted_at or utcnow()
    execute_at = resolve_time_spec(int(row.duration), now=base).execute_at
    if execute_at != row.execute_at:
        row.execute_at = execute_at
        row.updated_at = utcnow()
        db.add(row)
        db.flush()
    return row


def register_new_post(db: Session, topic: Topic, posted_at: datetime | None = None) -> TopicStatusUpdate | None:
    moment = posted_at or utcnow()
    topic.last_posted_at = moment
    topic.bumped_at = moment
    db.add(topic)
    db.flush()
    return recompute_based_on_last_post(db, topic)


def apply_category_auto_close(db: Session, topic: Topic) -> ScheduleResult | None:
    if topic.category_id is None:
        return None
    category = db.get(Category, topic.category_id)
    if category is None or not category.auto_close_hours:
        return None
    return set_or_create_status_update(
        db,
        topic,
        StatusType.CLOSE,
        int(category.auto_close_hours),
        based_on_last_post=bool(category.auto_close_based_on_last_post),
    )


def serialize_status_update(row: TopicStatusUpdate | None) -> dict[str, Any] | None:
    if row is None:
        return None
    return {
        "id": row.id,
        "execute_at": row.execute_at.isoformat() if row.execute_at else None,
        "duration": row.duration,
        "based_on_last_post": bool(row.based_on_last_post),
        "status_type": row.status_type,
        "category_id": row.category_id,
    }
