from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.models.common import IntIdMixin, TimestampMixin

class Category(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "categories"
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    auto_close_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_close_based_on_last_post: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
