from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from salescrm.crm.enums import Role


@dataclass(slots=True)
class AuthContext:
    """Acting user as handed over by authentication: id, role and manager."""

    user_id: uuid.UUID
    role: Role | str
    manager_id: uuid.UUID | None = None
    correlation_id: str | None = None
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN
