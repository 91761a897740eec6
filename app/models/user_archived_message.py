from sqlalchemy import Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.models.common import IntIdMixin, TimestampMixin

class UserArchivedMessage(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "user_archived_messages"
    __table_args__ = (UniqueConstraint("user_id", "topic_id", name="uq_user_archived_messages_user_topic"),)

    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    topic_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
