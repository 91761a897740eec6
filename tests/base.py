import os
import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure settings can be initialized in test environments
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("EVENT_PUBLISHER", "memory")

from app.core.clock import clock
from app.models.category import Category
from app.models.post import POST_TYPE_REGULAR, Post
from app.models.topic import Topic
from app.models.topic_status_update import StatusType, TopicStatusUpdate
from app.models.topic_user import TopicUser
from app.models.user import User
from app.models.user_archived_message import UserArchivedMessage
from app.services.events import InMemoryEventPublisher, set_event_publisher_for_tests

FROZEN_NOW = datetime(2013, 11, 20, 8, 0, tzinfo=timezone.utc)

_TABLES = (User, Category, Topic, Post, TopicUser, UserArchivedMessage, TopicStatusUpdate)


class StatusUpdateDbBase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        for model in _TABLES:
            model.__table__.create(bind=cls.engine)

    @classmethod
    def tearDownClass(cls):
        for model in reversed(_TABLES):
            model.__table__.drop(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        with self.SessionLocal() as db:
            for model in reversed(_TABLES):
                db.execute(delete(model))
            db.commit()
        self.publisher = InMemoryEventPublisher()
        set_event_publisher_for_tests(self.publisher)
        self._frozen = clock.freeze(FROZEN_NOW)
        self._frozen.__enter__()

    def tearDown(self):
        self._frozen.__exit__(None, None, None)
        set_event_publisher_for_tests(None)

    def _make_user(self, username: str, *, admin: bool = False, moderator: bool = False, trust_level: int = 1) -> int:
        with self.SessionLocal() as db:
            user = User(username=username, admin=admin, moderator=moderator, trust_level=trust_level)
            db.add(user)
            db.commit()
            return user.id

    def _make_topic(self, title: str = "Topic", *, user_id: int | None = None, replies: int = 0, **flags) -> int:
        with self.SessionLocal() as db:
            topic = Topic(title=title, user_id=user_id, last_posted_at=FROZEN_NOW, bumped_at=FROZEN_NOW, **flags)
            db.add(topic)
            db.flush()
            for number in range(1, replies + 2):
                db.add(Post(topic_id=topic.id, user_id=user_id, post_number=number, post_type=POST_TYPE_REGULAR, raw=f"post {number}"))
            topic.highest_post_number = replies + 1
            db.commit()
            return topic.id

    def _history_posts(self, topic_id: int) -> list[Post]:
        with self.SessionLocal() as db:
            return list(
                db.execute(
                    select(Post)
                    .where(Post.topic_id == topic_id, Post.post_type != POST_TYPE_REGULAR)
                    .order_by(Post.post_number.asc())
                ).scalars()
            )

    def _status_updates(self, topic_id: int) -> list[TopicStatusUpdate]:
        with self.SessionLocal() as db:
            return list(
                db.execute(
                    select(TopicStatusUpdate)
                    .where(TopicStatusUpdate.topic_id == topic_id)
                    .order_by(TopicStatusUpdate.id.asc())
                ).scalars()
            )


def hours(value: float) -> timedelta:
    return timedelta(hours=value)


__all__ = [
    "FROZEN_NOW",
    "StatusType",
    "StatusUpdateDbBase",
    "Category",
    "Post",
    "Topic",
    "TopicStatusUpdate",
    "TopicUser",
    "User",
    "UserArchivedMessage",
    "clock",
    "hours",
    "select",
]
