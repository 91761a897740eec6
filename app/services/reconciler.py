from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.models.topic import ARCHETYPE_BANNER, ARCHETYPE_REGULAR, Topic
from app.models.topic_status_update import StatusType, TopicStatusUpdate
from app.models.user import User
from app.services.actors import system_user
from app.services.events import (
    EVENT_BUMP,
    EVENT_PUBLISHED,
    EVENT_REMINDER,
    EventBuffer,
    EventPublisher,
    get_event_publisher,
    publish_safely,
    topic_channel,
)
from app.services.status_errors import TopicNotFound
from app.services.status_updates import recompute_based_on_last_post
from app.services.topic_destroyer import SoftDeleteTopicDestroyer, TopicDestroyer
from app.services.topic_locks import load_topic
from app.services.topic_status import STATUS_CLOSED, ScheduledTrigger, update_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingUpdate:
    id: int
    topic_id: int
    status_type: StatusType
    execute_at: datetime
    duration: int | None
    based_on_last_post: bool
    category_id: int | None
    created_by_id: int
    created_at: datetime | None

    @classmethod
    def from_row(cls, row: TopicStatusUpdate) -> "PendingUpdate":
        return cls(
            id=int(row.id),
            topic_id=int(row.topic_id),
            status_type=StatusType(row.status_type),
            execute_at=row.execute_at,
            duration=row.duration,
            based_on_last_post=bool(row.based_on_last_post),
            category_id=row.category_id,
            created_by_id=int(row.created_by_id),
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class AppliedTransition:
    status_update_id: int
    topic_id: int
    status_type: StatusType
    execute_at: datetime
    applied_at: datetime
    detail: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status_update_id": self.status_update_id,
            "topic_id": self.topic_id,
            "status_type": self.status_type.value,
            "execute_at": self.execute_at.isoformat(),
            "applied_at": self.applied_at.isoformat(),
            "detail": dict(self.detail),
        }


@dataclass
class ReconcileStats:
    checked: int = 0
    applied: int = 0
    failed: int = 0
    dropped: int = 0
    skipped: int = 0
    rescheduled: int = 0
    unpinned: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "applied": self.applied,
            "failed": self.failed,
            "dropped": self.dropped,
            "skipped": self.skipped,
            "rescheduled": self.rescheduled,
            "unpinned": self.unpinned,
        }


FailureHook = Callable[[PendingUpdate, BaseException], None]

_FIRE_METHODS = {
    StatusType.CLOSE: "_fire_close",
    StatusType.OPEN: "_fire_open",
    StatusType.PUBLISH_TO_CATEGORY: "_fire_publish_to_category",
    StatusType.DELETE: "_fire_delete",
    StatusType.DELETE_REPLIES: "_fire_delete_replies",
    StatusType.REMINDER: "_fire_reminder",
    StatusType.BUMP: "_fire_bump",
}
_unhandled = set(StatusType) - set(_FIRE_METHODS)
if _unhandled:
    raise RuntimeError(f"No reconciler action for status types: {sorted(t.value for t in _unhandled)}")


class StatusUpdateReconciler:
    """One consistency sweep over the due status updates.

    Each due row is handled in its own transaction: lock the topic, claim the row
    with a conditional delete, apply the action, commit. A claim that deletes
    nothing means another sweeper got there first, so every row is applied at
    most once. Failures roll back that row only; the row stays for the next
    sweep unless its topic is gone, in which case it is dropped.
    """

    def __init__(
        self,
        db: Session,
        *,
        publisher: EventPublisher | None = None,
        destroyer: TopicDestroyer | None = None,
        live_last_post: bool | None = None,
        on_failure: FailureHook | None = None,
    ):
        self.db = db
        self.publisher = publisher or get_event_publisher()
        self.destroyer = destroyer or SoftDeleteTopicDestroyer()
        self.live_last_post = settings.STATUS_UPDATE_LIVE_LAST_POST if live_last_post is None else bool(live_last_post)
        self.on_failure = on_failure
        self.stats = ReconcileStats()
        self.events = EventBuffer()

    def due_updates(self, now: datetime) -> list[tuple[int, int]]:
        rows = self.db.execute(
            select(TopicStatusUpdate.id, TopicStatusUpdate.topic_id)
            .where(TopicStatusUpdate.execute_at <= now)
            .order_by(TopicStatusUpdate.execute_at.asc(), TopicStatusUpdate.id.asc())
        ).all()
        return [(int(row_id), int(topic_id)) for row_id, topic_id in rows]

    def run_once(self, now: datetime | None = None) -> list[AppliedTransition]:
        now = as_utc(now) if now is not None else utcnow()
        due = self.due_updates(now)
        self.db.rollback()
        self.stats.checked += len(due)

        # Oldest first; all due rows of one topic are applied back to back.
        by_topic: dict[int, list[int]] = {}
        for row_id, topic_id in due:
            by_topic.setdefault(topic_id, []).append(row_id)

        applied: list[AppliedTransition] = []
        for row_ids in by_topic.values():
            for row_id in row_ids:
                transition = self._process(row_id, now)
                if transition is not None:
                    applied.append(transition)

        self.stats.unpinned += self.unpin_expired(now)
        logger.info("status_update_sweep now=%s %s", now.isoformat(), self.stats.as_dict())
        return applied

    def claim(self, pending: PendingUpdate) -> bool:
        result = self.db.execute(
            delete(TopicStatusUpdate).where(
                TopicStatusUpdate.id == pending.id,
                TopicStatusUpdate.execute_at == pending.execute_at,
            )
        )
        return int(result.rowcount or 0) == 1

    def _load_pending(self, row_id: int) -> TopicStatusUpdate | None:
        return self.db.execute(
            select(TopicStatusUpdate)
            .where(TopicStatusUpdate.id == row_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _drop(self, pending: PendingUpdate, reason: str) -> None:
        self.db.execute(delete(TopicStatusUpdate).where(TopicStatusUpdate.id == pending.id))
        self.db.commit()
        self.stats.dropped += 1
        logger.warning(
            "status_update_dropped id=%s topic_id=%s status_type=%s reason=%s",
            pending.id,
            pending.topic_id,
            pending.status_type.value,
            reason,
        )

    def _process(self, row_id: int, now: datetime) -> AppliedTransition | None:
        pending: PendingUpdate | None = None
        # Events of one row go out only after its commit.
        self.events = EventBuffer()
        try:
            row = self._load_pending(row_id)
            if row is None or row.execute_at > now:
                self.db.rollback()
                self.stats.skipped += 1
                return None
            pending = PendingUpdate.from_row(row)

            try:
                topic = load_topic(self.db, pending.topic_id, for_update=True)
            except TopicNotFound:
                self._drop(pending, "topic_not_found")
                return None

            if self.live_last_post and pending.based_on_last_post and pending.status_type is StatusType.CLOSE:
                refreshed = recompute_based_on_last_post(self.db, topic)
                if refreshed is not None and refreshed.execute_at > now:
                    self.db.commit()
                    self.stats.rescheduled += 1
                    logger.info(
                        "status_update_rescheduled id=%s topic_id=%s execute_at=%s",
                        pending.id,
                        pending.topic_id,
                        refreshed.execute_at.isoformat(),
                    )
                    return None
                if refreshed is not None:
                    pending = PendingUpdate.from_row(refreshed)

            if not self.claim(pending):
                self.db.rollback()
                self.stats.skipped += 1
                return None

            detail = getattr(self, _FIRE_METHODS[pending.status_type])(topic, pending)
            self.db.commit()
        except Exception as exc:
            self.db.rollback()
            self.events.discard()
            self.stats.failed += 1
            logger.exception(
                "status_update_failed id=%s topic_id=%s status_type=%s",
                row_id,
                pending.topic_id if pending else None,
                pending.status_type.value if pending else None,
            )
            if self.on_failure is not None and pending is not None:
                self.on_failure(pending, exc)
            return None

        self.events.flush(self.publisher)
        self.stats.applied += 1
        logger.info(
            "status_update_applied id=%s topic_id=%s status_type=%s",
            pending.id,
            pending.topic_id,
            pending.status_type.value,
        )
        return AppliedTransition(
            status_update_id=pending.id,
            topic_id=pending.topic_id,
            status_type=pending.status_type,
            execute_at=pending.execute_at,
            applied_at=utcnow(),
            detail=detail or {},
        )

    def _actor(self) -> User:
        return system_user(self.db)

    def _trigger(self, pending: PendingUpdate) -> ScheduledTrigger:
        return ScheduledTrigger(
            duration=pending.duration,
            based_on_last_post=pending.based_on_last_post,
            scheduled_at=pending.created_at,
            execute_at=pending.execute_at,
        )

    def _fire_close(self, topic: Topic, pending: PendingUpdate) -> dict[str, Any]:
        result = update_status(
            self.db,
            topic,
            STATUS_CLOSED,
            True,
            self._actor(),
            trigger=self._trigger(pending),
            publisher=self.events,
        )
        return {"closed": result.closed, "changed": result.changed, "history_post_id": result.history_post_id}

    def _fire_open(self, topic: Topic, pending: PendingUpdate) -> dict[str, Any]:
        result = update_status(
            self.db,
            topic,
            STATUS_CLOSED,
            False,
            self._actor(),
            trigger=self._trigger(pending),
            publisher=self.events,
        )
        return {"closed": result.closed, "changed": result.changed, "history_post_id": result.history_post_id}

    def _fire_publish_to_category(self, topic: Topic, pending: PendingUpdate) -> dict[str, Any]:
        if pending.category_id is not None:
            topic.category_id = pending.category_id
        if topic.archetype == ARCHETYPE_BANNER:
            topic.archetype = ARCHETYPE_REGULAR
        self.db.add(topic)
        self.db.flush()
        publish_safely(
            self.events,
            topic_channel(topic.id),
            {"type": EVENT_PUBLISHED, "category_id": topic.category_id},
        )
        return {"category_id": topic.category_id}

    def _fire_delete(self, topic: Topic, pending: PendingUpdate) -> dict[str, Any]:
        return {"deleted": bool(self.destroyer.destroy_topic(self.db, topic, self._actor()))}

    def _fire_delete_replies(self, topic: Topic, pending: PendingUpdate) -> dict[str, Any]:
        return {"replies_deleted": int(self.destroyer.destroy_replies(self.db, topic, self._actor()))}

    def _fire_reminder(self, topic: Topic, pending: PendingUpdate) -> dict[str, Any]:
        publish_safely(
            self.events,
            topic_channel(topic.id),
            {"type": EVENT_REMINDER, "status_update_id": pending.id},
            user_ids=[pending.created_by_id],
        )
        return {"notified_user_id": pending.created_by_id}

    def _fire_bump(self, topic: Topic, pending: PendingUpdate) -> dict[str, Any]:
        publish_safely(self.events, topic_channel(topic.id), {"type": EVENT_BUMP})
        return {}

    def unpin_expired(self, now: datetime) -> int:
        topic_ids = [
            int(topic_id)
            for (topic_id,) in self.db.execute(
                select(Topic.id).where(
                    Topic.pinned_at.is_not(None),
                    Topic.pinned_until.is_not(None),
                    Topic.pinned_until <= now,
                )
            ).all()
        ]
        self.db.rollback()
        unpinned = 0
        for topic_id in topic_ids:
            try:
                topic = load_topic(self.db, topic_id, for_update=True)
                if topic.pinned_until is None or topic.pinned_until > now:
                    self.db.rollback()
                    continue
                topic.pinned_at = None
                topic.pinned_globally = False
                topic.pinned_until = None
                self.db.add(topic)
                self.db.commit()
                unpinned += 1
            except TopicNotFound:
                self.db.rollback()
            except Exception:
                self.db.rollback()
                self.stats.failed += 1
                logger.exception("pin_expiry_failed topic_id=%s", topic_id)
        return unpinned


def run_once(
    db: Session,
    now: datetime | None = None,
    *,
    publisher: EventPublisher | None = None,
    destroyer: TopicDestroyer | None = None,
) -> list[AppliedTransition]:
    return StatusUpdateReconciler(db, publisher=publisher, destroyer=destroyer).run_once(now)
