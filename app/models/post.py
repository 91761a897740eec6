from datetime import datetime

from sqlalchemy import Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.db.types import UTCDateTime
from app.models.common import IntIdMixin, TimestampMixin

POST_TYPE_REGULAR = "regular"
POST_TYPE_MODERATOR_ACTION = "moderator_action"
POST_TYPE_SMALL_ACTION = "small_action"

class Post(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "posts"
    __table_args__ = (UniqueConstraint("topic_id", "post_number", name="uq_posts_topic_post_number"),)

    topic_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    post_number: Mapped[int] = mapped_column(Integer, nullable=False)
    post_type: Mapped[str] = mapped_column(String(30), default=POST_TYPE_REGULAR, nullable=False)
    action_code: Mapped[str | None] = mapped_column(String(60), nullable=True)
    raw: Mapped[str] = mapped_column(Text, default="", nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
