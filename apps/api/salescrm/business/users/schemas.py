from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


RoleName = Literal["SUPER_ADMIN", "MANAGER", "EMPLOYEE"]


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = None
    avatar: str | None = None
    role: RoleName = "EMPLOYEE"
    manager_id: UUID | None = None


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=6, max_length=128)
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = None
    avatar: str | None = None
    role: RoleName | None = None
    manager_id: UUID | None = None
    is_active: bool | None = None


class ProfileUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = None
    avatar: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6, max_length=128)


class AssignManagerRequest(BaseModel):
    manager_id: UUID | None = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: str
    last_name: str
    role: RoleName | str
    is_active: bool


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: str
    last_name: str
    phone: str | None
    avatar: str | None
    role: RoleName | str
    manager_id: UUID | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class UserDetailRead(UserRead):
    manager: UserSummary | None = None
    reports: list[UserSummary] = Field(default_factory=list)


class TokenRead(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
