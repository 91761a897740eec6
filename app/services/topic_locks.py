from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.topic import Topic
from app.services.status_errors import TopicNotFound


def load_topic(db: Session, topic_id: int, *, for_update: bool = False) -> Topic:
    """Fetch a topic, optionally taking a row lock held until the transaction ends.

    Every writer of the status flags goes through ``for_update=True`` so a user
    command and a reconciler pass on the same topic are serialized. SQLite has no
    row locks; there the single writer connection gives the same ordering.
    """
    stmt = select(Topic).where(Topic.id == int(topic_id))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    topic = db.execute(stmt).scalar_one_or_none()
    if topic is None:
        raise TopicNotFound(topic_id)
    if topic.deleted_at is not None:
        raise TopicNotFound(topic_id)
    return topic
