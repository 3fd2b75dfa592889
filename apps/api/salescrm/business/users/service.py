from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, selectinload

from salescrm import audit, events
from salescrm.business.users.models import User
from salescrm.business.users.repository import UserRepository
from salescrm.business.users.schemas import (
    ChangePasswordRequest,
    ProfileUpdate,
    TokenRead,
    UserCreate,
    UserDetailRead,
    UserRead,
    UserSummary,
    UserUpdate,
)
from salescrm.core.security import create_access_token, hash_password, verify_password
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)


logger = logging.getLogger("salescrm.users")

_AUDITED_FIELDS = ("email", "first_name", "last_name", "phone", "avatar", "role", "manager_id", "is_active")


@dataclass(slots=True)
class UsersService:
    user_repository: UserRepository = UserRepository()

    def create_user(self, session: Session, ctx: AuthContext, payload: UserCreate) -> UserRead:
        data = payload.model_dump(mode="python")
        if ctx.role == Role.MANAGER:
            if data["role"] != Role.EMPLOYEE:
                raise ForbiddenError("managers can only create employees")
            if data.get("manager_id") not in (None, ctx.user_id):
                raise ForbiddenError("managers can only create employees for their own team")
            data["manager_id"] = ctx.user_id
        elif ctx.role != Role.SUPER_ADMIN:
            raise ForbiddenError("not allowed to create users")

        if self.user_repository.get_by_email(session, data["email"]) is not None:
            raise ConflictError("Email already exists", {"email": data["email"]})

        self._validate_hierarchy(session, role=data["role"], manager_id=data.get("manager_id"))

        password = data.pop("password")
        user = User(**data, password_hash=hash_password(password), is_active=True)
        session.add(user)
        session.commit()
        session.refresh(user)

        self._record(ctx, user, "users.user.created", before=None)
        logger.info(
            "user.created",
            extra={"actor_id": str(ctx.user_id), "entity_id": str(user.id), "actor_role": user.role},
        )
        return UserRead.model_validate(user)

    def list_users(self, session: Session, ctx: AuthContext, *, role: Role | str | None = None) -> list[UserRead]:
        stmt: Select[tuple[User]] = select(User)
        if role is not None:
            stmt = stmt.where(User.role == Role(role).value)
        stmt = self.user_repository.apply_scope_query(session, stmt, ctx)
        rows = session.scalars(stmt.order_by(User.created_at.desc(), User.id)).all()
        return [UserRead.model_validate(row) for row in rows]

    def get_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserDetailRead:
        user = self.user_repository.get_visible(session, ctx, user_id)
        return self._to_detail(session, user)

    def update_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID, payload: UserUpdate) -> UserRead:
        user = self.user_repository.get_visible(session, ctx, user_id, action="update")
        changes = payload.model_dump(exclude_unset=True, mode="python")

        if ctx.role != Role.SUPER_ADMIN:
            restricted = sorted(key for key in ("role", "manager_id", "is_active") if key in changes)
            if restricted:
                raise ForbiddenError("only super admins can change role, manager or status", {"fields": restricted})

        email = changes.get("email")
        if email is not None and email.lower() != user.email.lower():
            if self.user_repository.get_by_email(session, email) is not None:
                raise ConflictError("Email already exists", {"email": email})

        if "role" in changes or "manager_id" in changes:
            role = changes.get("role") or user.role
            manager_id = changes["manager_id"] if "manager_id" in changes else user.manager_id
            self._validate_hierarchy(session, role=role, manager_id=manager_id, user_id=user.id)
            if role != Role.MANAGER and user.role == Role.MANAGER and self._has_reports(session, user.id):
                raise ValidationError("user still has direct reports", {"user_id": str(user.id)})

        before = self._snapshot(user)
        password = changes.pop("password", None)
        for key, value in changes.items():
            if key in {"email", "first_name", "last_name"} and value is None:
                continue
            setattr(user, key, value)
        if password:
            user.password_hash = hash_password(password)

        session.add(user)
        session.commit()
        session.refresh(user)

        self._record(ctx, user, "users.user.updated", before=before)
        return UserRead.model_validate(user)

    def assign_manager(
        self,
        session: Session,
        ctx: AuthContext,
        user_id: uuid.UUID,
        manager_id: uuid.UUID | None,
    ) -> UserDetailRead:
        user = self.user_repository.get(session, user_id)
        self._validate_hierarchy(session, role=user.role, manager_id=manager_id, user_id=user.id)

        before = self._snapshot(user)
        user.manager_id = manager_id
        session.add(user)
        session.commit()
        session.refresh(user)

        self._record(ctx, user, "users.user.manager_assigned", before=before)
        logger.info(
            "user.manager_assigned",
            extra={"actor_id": str(ctx.user_id), "entity_id": str(user.id)},
        )
        return self._to_detail(session, user)

    def activate_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserRead:
        return self._set_active(session, ctx, user_id, True)

    def deactivate_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserRead:
        if user_id == ctx.user_id:
            raise ValidationError("you cannot deactivate your own account")
        return self._set_active(session, ctx, user_id, False)

    def team_members(self, session: Session, ctx: AuthContext) -> list[UserRead]:
        rows = session.scalars(
            select(User).where(User.manager_id == ctx.user_id).order_by(User.first_name, User.last_name, User.id)
        ).all()
        return [UserRead.model_validate(row) for row in rows]

    def list_managers(self, session: Session) -> list[UserSummary]:
        rows = session.scalars(
            select(User)
            .where(User.role == Role.MANAGER.value, User.is_active.is_(True))
            .order_by(User.first_name, User.last_name, User.id)
        ).all()
        return [UserSummary.model_validate(row) for row in rows]

    def get_profile(self, session: Session, ctx: AuthContext) -> UserDetailRead:
        return self._to_detail(session, self.user_repository.get(session, ctx.user_id))

    def update_profile(self, session: Session, ctx: AuthContext, payload: ProfileUpdate) -> UserRead:
        user = self.user_repository.get(session, ctx.user_id)
        before = self._snapshot(user)
        for key, value in payload.model_dump(exclude_unset=True).items():
            if key in {"first_name", "last_name"} and value is None:
                continue
            setattr(user, key, value)
        session.add(user)
        session.commit()
        session.refresh(user)

        self._record(ctx, user, "users.profile.updated", before=before)
        return UserRead.model_validate(user)

    def change_password(self, session: Session, ctx: AuthContext, payload: ChangePasswordRequest) -> None:
        user = self.user_repository.get(session, ctx.user_id)
        if not verify_password(payload.current_password, user.password_hash):
            raise ValidationError("current password is incorrect")
        user.password_hash = hash_password(payload.new_password)
        session.add(user)
        session.commit()

        audit.record(
            actor_user_id=str(ctx.user_id),
            entity_type="users.user",
            entity_id=str(user.id),
            action="users.user.password_changed",
            before=None,
            after=None,
            correlation_id=ctx.correlation_id,
        )

    def authenticate(self, session: Session, email: str, password: str) -> TokenRead:
        user = self.user_repository.get_by_email(session, email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("auth.login_failed", extra={"error": "invalid credentials"})
            raise AuthenticationError("invalid email or password")
        if not user.is_active:
            raise ForbiddenError("account is deactivated")

        token = create_access_token(
            {
                "sub": str(user.id),
                "role": user.role,
                "manager_id": str(user.manager_id) if user.manager_id else None,
            }
        )
        logger.info("auth.login", extra={"actor_id": str(user.id), "actor_role": user.role})
        return TokenRead(access_token=token, user=UserRead.model_validate(user))

    def _set_active(self, session: Session, ctx: AuthContext, user_id: uuid.UUID, is_active: bool) -> UserRead:
        user = self.user_repository.get(session, user_id)
        before = self._snapshot(user)
        user.is_active = is_active
        session.add(user)
        session.commit()
        session.refresh(user)

        action = "users.user.activated" if is_active else "users.user.deactivated"
        self._record(ctx, user, action, before=before)
        return UserRead.model_validate(user)

    def _validate_hierarchy(
        self,
        session: Session,
        *,
        role: Role | str,
        manager_id: uuid.UUID | None,
        user_id: uuid.UUID | None = None,
    ) -> None:
        if manager_id is None:
            return
        if user_id is not None and manager_id == user_id:
            raise ValidationError("a user cannot be their own manager")
        if role == Role.SUPER_ADMIN:
            raise ValidationError("cannot assign manager to super admin")
        if role == Role.MANAGER:
            raise ValidationError("cannot assign a manager to another manager")

        manager = session.get(User, manager_id)
        if manager is None:
            raise NotFoundError("users.manager", manager_id)
        if manager.role != Role.MANAGER:
            raise ValidationError("assigned manager must have the MANAGER role", {"manager_id": str(manager_id)})
        if not manager.is_active:
            raise ValidationError("assigned manager must be active", {"manager_id": str(manager_id)})

    @staticmethod
    def _has_reports(session: Session, user_id: uuid.UUID) -> bool:
        return session.scalar(select(User.id).where(User.manager_id == user_id).limit(1)) is not None

    def _to_detail(self, session: Session, user: User) -> UserDetailRead:
        loaded = session.scalar(
            select(User)
            .where(User.id == user.id)
            .options(selectinload(User.manager), selectinload(User.reports))
        )
        if loaded is None:
            raise NotFoundError("users.user", user.id)
        detail = UserDetailRead.model_validate(loaded)
        detail.reports = sorted(detail.reports, key=lambda item: (item.first_name, item.last_name, str(item.id)))
        return detail

    @staticmethod
    def _snapshot(user: User) -> dict[str, Any]:
        snapshot: dict[str, Any] = {}
        for key in _AUDITED_FIELDS:
            value = getattr(user, key)
            snapshot[key] = str(value) if isinstance(value, uuid.UUID) else value
        return snapshot

    def _record(self, ctx: AuthContext, user: User, action: str, *, before: dict[str, Any] | None) -> None:
        after = self._snapshot(user)
        audit.record(
            actor_user_id=str(ctx.user_id),
            entity_type="users.user",
            entity_id=str(user.id),
            action=action,
            before=before,
            after=after,
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            {
                "event_type": action,
                "user_id": str(user.id),
                "role": user.role,
                "manager_id": after["manager_id"],
                "is_active": user.is_active,
                "correlation_id": ctx.correlation_id,
            }
        )


users_service = UsersService()
