from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.db.types import UTCDateTime
from app.models.common import IntIdMixin, TimestampMixin

ARCHETYPE_REGULAR = "regular"
ARCHETYPE_BANNER = "banner"
ARCHETYPE_PRIVATE_MESSAGE = "private_message"
ARCHETYPES = (ARCHETYPE_REGULAR, ARCHETYPE_BANNER, ARCHETYPE_PRIVATE_MESSAGE)

class Topic(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "topics"
    __table_args__ = (
        CheckConstraint(
            "archetype IN (" + ",".join(f"'{value}'" for value in ARCHETYPES) + ")",
            name="ck_topics_archetype",
        ),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    archetype: Mapped[str] = mapped_column(String(30), default=ARCHETYPE_REGULAR, nullable=False, index=True)
    visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pinned_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    pinned_globally: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pinned_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    bumped_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_posted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    highest_post_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    moderator_posts_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
