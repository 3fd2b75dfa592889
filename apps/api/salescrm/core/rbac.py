from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from salescrm.core.auth import get_auth_context
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext


def require_roles(*roles: Role) -> Callable[[AuthContext], AuthContext]:
    allowed = {Role(role) for role in roles}

    def checker(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {' or '.join(sorted(allowed))}",
            )
        return ctx

    return checker
