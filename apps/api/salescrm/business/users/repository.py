from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salescrm.business.users.models import User
from salescrm.platform.security.repository import BaseRepository


class UserRepository(BaseRepository):
    resource = "users.user"
    model = User
    owner_attribute = "id"

    def get_by_email(self, session: Session, email: str) -> User | None:
        return session.scalar(select(User).where(func.lower(User.email) == email.lower()))
