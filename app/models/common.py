from datetime import datetime
from sqlalchemy import Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.db.types import UTCDateTime

class IntIdMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow)
