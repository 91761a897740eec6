from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from app.core.config import settings
from app.db.session import Base
from app.models.common import IntIdMixin, TimestampMixin

class User(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "users"
    username: Mapped[str] = mapped_column(String(60), unique=True, nullable=False)
    admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    moderator: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trust_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dismissed_banner_key: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    @property
    def staff(self) -> bool:
        return bool(self.admin or self.moderator)

    @property
    def top_trust_level(self) -> bool:
        return int(self.trust_level or 0) >= settings.TOP_TRUST_LEVEL
