from __future__ import annotations

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.user import User


def system_user(db: Session) -> User:
    row = db.get(User, settings.SYSTEM_USER_ID)
    if row is not None:
        return row
    # Not added to the session: only its id is ever written.
    return User(
        id=settings.SYSTEM_USER_ID,
        username=settings.SYSTEM_USERNAME,
        admin=True,
        moderator=False,
        trust_level=settings.TOP_TRUST_LEVEL,
    )


def can_own_status_updates(user: User | None) -> bool:
    if user is None:
        return False
    return bool(user.staff or user.top_trust_level)
