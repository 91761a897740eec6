import enum
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base
from app.db.types import UTCDateTime
from app.models.common import IntIdMixin, TimestampMixin


class StatusType(str, enum.Enum):
    CLOSE = "close"
    OPEN = "open"
    PUBLISH_TO_CATEGORY = "publish_to_category"
    DELETE = "delete"
    DELETE_REPLIES = "delete_replies"
    REMINDER = "reminder"
    BUMP = "bump"


class TopicStatusUpdate(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "status_updates"
    __table_args__ = (
        UniqueConstraint(
            "topic_id",
            "status_type",
            name="uq_status_updates_topic_status_type",
        ),
        CheckConstraint(
            "status_type IN (" + ",".join(f"'{kind.value}'" for kind in StatusType) + ")",
            name="ck_status_updates_status_type",
        ),
    )

    topic_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status_type: Mapped[str] = mapped_column(String(30), nullable=False)
    execute_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    based_on_last_post: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
