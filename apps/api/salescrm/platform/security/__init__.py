from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import (
    AuthenticationError,
    ConflictError,
    DomainError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from salescrm.platform.security.repository import BaseRepository
from salescrm.platform.security.rls import (
    AccessScope,
    apply_scope_filter,
    can_see,
    ensure_owner_visible,
    resolve_owner_filter,
    resolve_scope,
)

__all__ = [
    "AuthContext",
    "AccessScope",
    "BaseRepository",
    "AuthenticationError",
    "DomainError",
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "ConflictError",
    "apply_scope_filter",
    "can_see",
    "ensure_owner_visible",
    "resolve_owner_filter",
    "resolve_scope",
]
