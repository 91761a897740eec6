from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.models.post import POST_TYPE_REGULAR, Post
from app.models.topic import Topic
from app.models.user import User
from app.services.status_updates import delete_status_updates_for_topic

_LOG = logging.getLogger("app.topic_destroyer")


class TopicDestroyer(Protocol):
    def destroy_topic(self, db: Session, topic: Topic, actor: User | None) -> bool:
        ...

    def destroy_replies(self, db: Session, topic: Topic, actor: User | None) -> int:
        ...


class SoftDeleteTopicDestroyer:
    """Marks rows deleted instead of removing them; a deleted topic loses its pending updates."""

    def destroy_topic(self, db: Session, topic: Topic, actor: User | None) -> bool:
        if topic.deleted_at is not None:
            return False
        now = utcnow()
        topic.deleted_at = now
        db.add(topic)
        db.execute(
            update(Post)
            .where(Post.topic_id == topic.id, Post.deleted_at.is_(None))
            .values(deleted_at=now)
            .execution_options(synchronize_session=False)
        )
        removed = delete_status_updates_for_topic(db, topic.id)
        _LOG.info(
            "topic_destroyed topic_id=%s actor_id=%s status_updates_removed=%s",
            topic.id,
            actor.id if actor is not None else None,
            removed,
        )
        return True

    def destroy_replies(self, db: Session, topic: Topic, actor: User | None) -> int:
        result = db.execute(
            update(Post)
            .where(
                Post.topic_id == topic.id,
                Post.post_number > 1,
                Post.post_type == POST_TYPE_REGULAR,
                Post.deleted_at.is_(None),
            )
            .values(deleted_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        deleted = int(result.rowcount or 0)
        _LOG.info(
            "topic_replies_destroyed topic_id=%s actor_id=%s deleted=%s",
            topic.id,
            actor.id if actor is not None else None,
            deleted,
        )
        return deleted
