from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from salescrm.business.users.schemas import (
    AssignManagerRequest,
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RoleName,
    TokenRead,
    UserCreate,
    UserDetailRead,
    UserRead,
    UserSummary,
    UserUpdate,
)
from salescrm.business.users.service import users_service
from salescrm.core.auth import get_auth_context
from salescrm.core.database import get_db
from salescrm.core.rbac import require_roles
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext


router = APIRouter(prefix="/api/users", tags=["users"])
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

_admins_and_managers = require_roles(Role.SUPER_ADMIN, Role.MANAGER)
_super_admin_only = require_roles(Role.SUPER_ADMIN)


@auth_router.post("/login", response_model=TokenRead)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> TokenRead:
    return users_service.authenticate(db, payload.email, payload.password)


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_admins_and_managers),
) -> UserRead:
    return users_service.create_user(db, ctx, payload)


@router.get("", response_model=list[UserRead])
def list_users(
    role: RoleName | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_admins_and_managers),
) -> list[UserRead]:
    return users_service.list_users(db, ctx, role=role)


@router.get("/managers", response_model=list[UserSummary])
def list_managers(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[UserSummary]:
    return users_service.list_managers(db)


@router.get("/team", response_model=list[UserRead])
def team_members(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(require_roles(Role.MANAGER)),
) -> list[UserRead]:
    return users_service.team_members(db, ctx)


@router.get("/profile", response_model=UserDetailRead)
def get_profile(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserDetailRead:
    return users_service.get_profile(db, ctx)


@router.patch("/profile", response_model=UserRead)
def update_profile(
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead:
    return users_service.update_profile(db, ctx, payload)


@router.patch("/change-password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> None:
    users_service.change_password(db, ctx, payload)


@router.get("/{user_id}", response_model=UserDetailRead)
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_admins_and_managers),
) -> UserDetailRead:
    return users_service.get_user(db, ctx, user_id)


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_admins_and_managers),
) -> UserRead:
    return users_service.update_user(db, ctx, user_id, payload)


@router.patch("/{user_id}/assign-manager", response_model=UserDetailRead)
def assign_manager(
    user_id: uuid.UUID,
    payload: AssignManagerRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> UserDetailRead:
    return users_service.assign_manager(db, ctx, user_id, payload.manager_id)


@router.patch("/{user_id}/activate", response_model=UserRead)
def activate_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> UserRead:
    return users_service.activate_user(db, ctx, user_id)


@router.patch("/{user_id}/deactivate", response_model=UserRead)
def deactivate_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_super_admin_only),
) -> UserRead:
    return users_service.deactivate_user(db, ctx, user_id)
