from datetime import datetime

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.db.types import UTCDateTime
from app.models.common import IntIdMixin, TimestampMixin

NOTIFICATION_LEVEL_MUTED = "muted"
NOTIFICATION_LEVEL_REGULAR = "regular"
NOTIFICATION_LEVEL_TRACKING = "tracking"
NOTIFICATION_LEVEL_WATCHING = "watching"

class TopicUser(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "topic_users"
    __table_args__ = (UniqueConstraint("user_id", "topic_id", name="uq_topic_users_user_topic"),)

    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    topic_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    cleared_pinned_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notification_level: Mapped[str] = mapped_column(String(20), default=NOTIFICATION_LEVEL_REGULAR, nullable=False)
