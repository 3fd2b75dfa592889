import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from starlette.requests import Request

from salescrm.context import get_correlation_id
from salescrm.core.security import decode_access_token
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext


@dataclass
class AuthUser:
    sub: str
    role: str
    manager_id: str | None = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header[len("Bearer ") :] if auth_header.startswith("Bearer ") else ""
    if not token:
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(token)
    if payload is None or not payload.get("sub") or not payload.get("role"):
        raise _unauthorized("Invalid token")

    manager_id = payload.get("manager_id")
    return AuthUser(
        sub=str(payload["sub"]),
        role=str(payload["role"]),
        manager_id=str(manager_id) if manager_id else None,
    )


def get_auth_context(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> AuthContext:
    try:
        user_id = uuid.UUID(auth_user.sub)
        manager_id = uuid.UUID(auth_user.manager_id) if auth_user.manager_id else None
    except ValueError:
        raise _unauthorized("Invalid token subject")

    try:
        role = Role(auth_user.role)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown role: {auth_user.role}")

    return AuthContext(
        user_id=user_id,
        role=role,
        manager_id=manager_id,
        correlation_id=get_correlation_id() or getattr(request.state, "correlation_id", None),
    )
