from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.models.post import POST_TYPE_MODERATOR_ACTION, POST_TYPE_SMALL_ACTION, Post
from app.models.topic import ARCHETYPE_BANNER, ARCHETYPE_REGULAR, Topic
from app.models.topic_status_update import StatusType
from app.models.topic_user import NOTIFICATION_LEVEL_MUTED, TopicUser
from app.models.user import User
from app.models.user_archived_message import UserArchivedMessage
from app.services.events import (
    BANNER_CHANNEL,
    EVENT_ARCHIVED,
    EVENT_MOVE_TO_INBOX,
    EVENT_STATUS_UPDATED,
    EventPublisher,
    get_event_publisher,
    publish_safely,
    topic_channel,
)
from app.services.status_errors import InvalidStatus
from app.services.status_update_time import is_blank_time_spec, resolve_time_spec
from app.services.status_updates import delete_status_update
from app.services.topic_locks import load_topic

logger = logging.getLogger(__name__)

STATUS_VISIBLE = "visible"
STATUS_CLOSED = "closed"
STATUS_ARCHIVED = "archived"
STATUS_PINNED = "pinned"
STATUS_PINNED_GLOBALLY = "pinned_globally"
STATUS_NAMES = (STATUS_VISIBLE, STATUS_CLOSED, STATUS_ARCHIVED, STATUS_PINNED, STATUS_PINNED_GLOBALLY)

_STATUS_MESSAGES = {
    (STATUS_VISIBLE, True): "This topic is now listed. It will be displayed in topic lists.",
    (STATUS_VISIBLE, False): (
        "This topic is now unlisted. It will no longer be displayed in any topic lists. "
        "The only way to access this topic is via direct link."
    ),
    (STATUS_CLOSED, True): "This topic is now closed. New replies are no longer allowed.",
    (STATUS_CLOSED, False): "This topic is now opened. New replies are allowed.",
    (STATUS_ARCHIVED, True): "This topic is now archived. It is frozen and cannot be changed in any way.",
    (STATUS_ARCHIVED, False): "This topic is now unarchived. It is no longer frozen, and can be changed.",
    (STATUS_PINNED, True): (
        "This topic is now pinned. It will appear at the top of its category until it is unpinned "
        "by staff for everyone, or by individual users for themselves."
    ),
    (STATUS_PINNED, False): "This topic is now unpinned. It will no longer appear at the top of its category.",
    (STATUS_PINNED_GLOBALLY, True): (
        "This topic is now pinned globally. It will appear at the top of its category and all topic lists "
        "until it is unpinned by staff for everyone, or by individual users for themselves."
    ),
    (STATUS_PINNED_GLOBALLY, False): "This topic is now unpinned. It will no longer appear at the top of its category.",
}
_AUTO_OPENED_MESSAGE = "This topic was automatically opened. New replies are allowed."
_BANNER_ENABLED_MESSAGE = "This topic is now a banner. It will appear at the top of every page until it is dismissed."
_BANNER_DISABLED_MESSAGE = "This topic is no longer a banner. It will no longer appear at the top of every page."


@dataclass(frozen=True)
class ScheduledTrigger:
    """Context of a transition fired by the reconciler from a pending status update."""

    duration: int | None = None
    based_on_last_post: bool = False
    scheduled_at: datetime | None = None
    execute_at: datetime | None = None


@dataclass(frozen=True)
class TopicSnapshot:
    topic_id: int
    visible: bool
    closed: bool
    archived: bool
    pinned_at: datetime | None
    pinned_globally: bool
    pinned_until: datetime | None
    archetype: str
    bumped_at: datetime | None
    changed: bool = False
    history_post_id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "topic_id": self.topic_id,
            "visible": self.visible,
            "closed": self.closed,
            "archived": self.archived,
            "pinned_at": self.pinned_at.isoformat() if self.pinned_at else None,
            "pinned_globally": self.pinned_globally,
            "pinned_until": self.pinned_until.isoformat() if self.pinned_until else None,
            "archetype": self.archetype,
            "changed": self.changed,
            "history_post_id": self.history_post_id,
        }


def snapshot(topic: Topic, *, changed: bool = False, history_post: Post | None = None) -> TopicSnapshot:
    return TopicSnapshot(
        topic_id=int(topic.id),
        visible=bool(topic.visible),
        closed=bool(topic.closed),
        archived=bool(topic.archived),
        pinned_at=topic.pinned_at,
        pinned_globally=bool(topic.pinned_globally),
        pinned_until=topic.pinned_until,
        archetype=topic.archetype,
        bumped_at=topic.bumped_at,
        changed=changed,
        history_post_id=history_post.id if history_post is not None else None,
    )


def normalize_status_name(value: object) -> str:
    name = str(value or "").strip().lower()
    if name not in STATUS_NAMES:
        raise InvalidStatus(value)
    return name


def format_span(minutes: int) -> str:
    minutes = max(int(minutes), 0)
    if minutes >= 2 * 24 * 60:
        return f"{minutes // (24 * 60)} days"
    hours = minutes // 60
    if hours >= 2:
        return f"{hours} hours"
    return "1 minute" if minutes == 1 else f"{minutes} minutes"


def _auto_close_minutes(topic: Topic, trigger: ScheduledTrigger, now: datetime) -> int:
    if trigger.duration is not None:
        return int(trigger.duration) * 60
    if trigger.scheduled_at is not None and trigger.execute_at is not None:
        return round((trigger.execute_at - trigger.scheduled_at).total_seconds() / 60)
    return round((now - topic.created_at).total_seconds() / 60)


def auto_close_message(topic: Topic, trigger: ScheduledTrigger, now: datetime | None = None) -> str:
    span = format_span(_auto_close_minutes(topic, trigger, now or utcnow()))
    if trigger.based_on_last_post:
        return f"This topic was automatically closed after {span} since the last reply. New replies are no longer allowed."
    return f"This topic was automatically closed after {span}. New replies are no longer allowed."


def add_history_post(
    db: Session,
    topic: Topic,
    actor: User | None,
    *,
    action_code: str,
    raw: str,
    post_type: str = POST_TYPE_MODERATOR_ACTION,
) -> Post | None:
    """Append an audit post to ``topic``.

    Runs in a savepoint: a failed insert is logged and leaves the caller's
    pending flag changes intact.
    """
    db.flush()
    post_number = int(topic.highest_post_number or 0) + 1
    post = Post(
        topic_id=topic.id,
        user_id=actor.id if actor is not None else None,
        post_number=post_number,
        post_type=post_type,
        action_code=action_code,
        raw=raw,
    )
    try:
        with db.begin_nested():
            db.add(post)
            db.flush()
    except SQLAlchemyError:
        logger.warning(
            "history_post_failed topic_id=%s action_code=%s",
            topic.id,
            action_code,
            exc_info=True,
        )
        return None
    topic.highest_post_number = post_number
    topic.moderator_posts_count = int(topic.moderator_posts_count or 0) + 1
    db.add(topic)
    return post


def _already_in_state(topic: Topic, name: str, enabled: bool) -> bool:
    if name == STATUS_VISIBLE:
        return bool(topic.visible) == enabled
    if name == STATUS_CLOSED:
        return bool(topic.closed) == enabled
    if name == STATUS_ARCHIVED:
        return bool(topic.archived) == enabled
    if not enabled:
        return topic.pinned_at is None
    return topic.pinned_at is not None and bool(topic.pinned_globally) == (name == STATUS_PINNED_GLOBALLY)


def _set_flag(topic: Topic, name: str, enabled: bool, *, until: object, now: datetime) -> None:
    if name == STATUS_VISIBLE:
        topic.visible = enabled
    elif name == STATUS_CLOSED:
        topic.closed = enabled
    elif name == STATUS_ARCHIVED:
        topic.archived = enabled
    elif enabled:
        resolved = resolve_time_spec(until, now=now)
        topic.pinned_at = now
        topic.pinned_globally = name == STATUS_PINNED_GLOBALLY
        topic.pinned_until = resolved.execute_at if resolved is not None else None
    else:
        topic.pinned_at = None
        topic.pinned_globally = False
        topic.pinned_until = None


def _move_pin_expiry(
    db: Session,
    topic: Topic,
    name: str,
    until: object,
    actor: User | None,
    *,
    publisher: EventPublisher | None,
) -> TopicSnapshot:
    """Re-pinning a pinned topic only moves ``pinned_until``; ``pinned_at`` and history stay."""
    resolved = resolve_time_spec(until, now=utcnow())
    if resolved.execute_at == topic.pinned_until:
        return snapshot(topic)
    topic.pinned_until = resolved.execute_at
    db.add(topic)
    db.flush()
    logger.info(
        "topic_pin_expiry_moved topic_id=%s pinned_until=%s actor_id=%s",
        topic.id,
        topic.pinned_until.isoformat(),
        actor.id if actor is not None else None,
    )
    publish_safely(
        publisher or get_event_publisher(),
        topic_channel(topic.id),
        {"type": EVENT_STATUS_UPDATED, "status": name, "enabled": True},
    )
    return snapshot(topic, changed=True)


def update_status(
    db: Session,
    topic: Topic,
    status_name: str,
    enabled: bool,
    actor: User | None,
    *,
    until: object = None,
    trigger: ScheduledTrigger | None = None,
    publisher: EventPublisher | None = None,
) -> TopicSnapshot:
    """Flip one status flag of a topic that the caller already holds locked.

    Setting a flag to the value it already has changes nothing and writes no
    history post. ``bumped_at`` is never touched. ``trigger`` marks a transition
    fired from a pending status update and selects the automatic wording.
    Re-pinning a pinned topic with a different ``until`` only moves the expiry.
    """
    name = normalize_status_name(status_name)
    enabled = bool(enabled)
    if _already_in_state(topic, name, enabled):
        if enabled and name in {STATUS_PINNED, STATUS_PINNED_GLOBALLY} and not is_blank_time_spec(until):
            return _move_pin_expiry(db, topic, name, until, actor, publisher=publisher)
        return snapshot(topic)

    now = utcnow()
    _set_flag(topic, name, enabled, until=until, now=now)

    if name == STATUS_CLOSED and trigger is None:
        # A manual close/open supersedes the matching pending timer.
        delete_status_update(db, topic.id, StatusType.CLOSE if enabled else StatusType.OPEN)

    if name == STATUS_CLOSED and trigger is not None:
        raw = auto_close_message(topic, trigger, now) if enabled else _AUTO_OPENED_MESSAGE
        action_code = "autoclosed.enabled" if enabled else "autoclosed.disabled"
    else:
        raw = _STATUS_MESSAGES[(name, enabled)]
        action_code = f"{name}.{'enabled' if enabled else 'disabled'}"
    post_type = POST_TYPE_MODERATOR_ACTION if name in {STATUS_CLOSED, STATUS_ARCHIVED} else POST_TYPE_SMALL_ACTION

    post = add_history_post(db, topic, actor, action_code=action_code, raw=raw, post_type=post_type)
    logger.info(
        "topic_status_updated topic_id=%s status=%s enabled=%s actor_id=%s automatic=%s",
        topic.id,
        name,
        enabled,
        actor.id if actor is not None else None,
        trigger is not None,
    )
    publish_safely(
        publisher or get_event_publisher(),
        topic_channel(topic.id),
        {"type": EVENT_STATUS_UPDATED, "status": name, "enabled": enabled},
    )
    return snapshot(topic, changed=True, history_post=post)


def apply_status(
    db: Session,
    topic_id: int,
    status_name: str,
    enabled: bool,
    actor: User | None,
    *,
    until: object = None,
    publisher: EventPublisher | None = None,
) -> TopicSnapshot:
    name = normalize_status_name(status_name)
    topic = load_topic(db, topic_id, for_update=True)
    return update_status(db, topic, name, enabled, actor, until=until, publisher=publisher)


def _topic_user(db: Session, user_id: int, topic_id: int) -> TopicUser:
    row = db.execute(
        select(TopicUser).where(TopicUser.user_id == int(user_id), TopicUser.topic_id == int(topic_id))
    ).scalar_one_or_none()
    if row is None:
        row = TopicUser(user_id=int(user_id), topic_id=int(topic_id))
        db.add(row)
    return row


def clear_pin_for(db: Session, topic: Topic, user: User | None) -> TopicUser | None:
    if user is None:
        return None
    row = _topic_user(db, user.id, topic.id)
    row.cleared_pinned_at = utcnow()
    db.flush()
    return row


def re_pin_for(db: Session, topic: Topic, user: User | None) -> TopicUser | None:
    if user is None:
        return None
    row = _topic_user(db, user.id, topic.id)
    row.cleared_pinned_at = None
    db.flush()
    return row


def banner_payload(topic: Topic) -> dict[str, Any]:
    return {"key": int(topic.id), "title": topic.title, "url": f"/t/{int(topic.id)}"}


def _clear_dismissed_banner_keys(db: Session, topic_ids: list[int]) -> None:
    if not topic_ids:
        return
    db.execute(
        update(User)
        .where(User.dismissed_banner_key.in_([int(topic_id) for topic_id in topic_ids]))
        .values(dismissed_banner_key=None)
        .execution_options(synchronize_session=False)
    )


def _demote_banner(db: Session, topic: Topic, actor: User | None) -> None:
    topic.archetype = ARCHETYPE_REGULAR
    db.add(topic)
    add_history_post(
        db,
        topic,
        actor,
        action_code="banner.disabled",
        raw=_BANNER_DISABLED_MESSAGE,
        post_type=POST_TYPE_SMALL_ACTION,
    )


def make_banner(db: Session, topic: Topic, actor: User | None, *, publisher: EventPublisher | None = None) -> TopicSnapshot:
    """Promote ``topic`` to the site banner, demoting whichever topic held it.

    The previous banners are selected with a row lock inside the caller's
    transaction, so concurrent promotions leave exactly one banner behind.
    """
    previous = list(
        db.execute(
            select(Topic)
            .where(Topic.archetype == ARCHETYPE_BANNER, Topic.id != topic.id)
            .with_for_update()
        ).scalars()
    )
    for old_banner in previous:
        _demote_banner(db, old_banner, actor)
        logger.info("banner_superseded topic_id=%s by_topic_id=%s", old_banner.id, topic.id)

    post = None
    changed = topic.archetype != ARCHETYPE_BANNER
    if changed:
        topic.archetype = ARCHETYPE_BANNER
        db.add(topic)
        post = add_history_post(
            db,
            topic,
            actor,
            action_code="banner.enabled",
            raw=_BANNER_ENABLED_MESSAGE,
            post_type=POST_TYPE_SMALL_ACTION,
        )
    _clear_dismissed_banner_keys(db, [topic.id, *[row.id for row in previous]])
    db.flush()
    publish_safely(publisher or get_event_publisher(), BANNER_CHANNEL, banner_payload(topic))
    return snapshot(topic, changed=changed, history_post=post)


def remove_banner(db: Session, topic: Topic, actor: User | None, *, publisher: EventPublisher | None = None) -> TopicSnapshot:
    post = None
    changed = topic.archetype == ARCHETYPE_BANNER
    if changed:
        topic.archetype = ARCHETYPE_REGULAR
        db.add(topic)
        post = add_history_post(
            db,
            topic,
            actor,
            action_code="banner.disabled",
            raw=_BANNER_DISABLED_MESSAGE,
            post_type=POST_TYPE_SMALL_ACTION,
        )
    _clear_dismissed_banner_keys(db, [topic.id])
    db.flush()
    publish_safely(publisher or get_event_publisher(), BANNER_CHANNEL, None)
    return snapshot(topic, changed=changed, history_post=post)


def archive_message(db: Session, topic: Topic, user: User, *, publisher: EventPublisher | None = None) -> UserArchivedMessage:
    db.execute(
        delete(UserArchivedMessage).where(
            UserArchivedMessage.user_id == user.id,
            UserArchivedMessage.topic_id == topic.id,
        )
    )
    row = UserArchivedMessage(user_id=user.id, topic_id=topic.id)
    db.add(row)
    db.flush()
    publish_safely(
        publisher or get_event_publisher(),
        topic_channel(topic.id),
        {"type": EVENT_ARCHIVED},
        user_ids=[int(user.id)],
    )
    return row


def move_to_inbox(db: Session, topic: Topic, user: User, *, publisher: EventPublisher | None = None) -> bool:
    muted = db.execute(
        select(TopicUser.id).where(
            TopicUser.user_id == user.id,
            TopicUser.topic_id == topic.id,
            TopicUser.notification_level == NOTIFICATION_LEVEL_MUTED,
        )
    ).first()
    if muted is not None:
        return False
    db.execute(
        delete(UserArchivedMessage).where(
            UserArchivedMessage.user_id == user.id,
            UserArchivedMessage.topic_id == topic.id,
        )
    )
    publish_safely(
        publisher or get_event_publisher(),
        topic_channel(topic.id),
        {"type": EVENT_MOVE_TO_INBOX},
        user_ids=[int(user.id)],
    )
    return True
