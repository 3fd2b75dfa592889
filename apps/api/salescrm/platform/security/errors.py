from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for typed failures surfaced to the HTTP boundary."""

    code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(DomainError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, entity_id: Any = None) -> None:
        self.resource = resource
        self.entity_id = entity_id
        super().__init__(f"{resource} not found", {"id": str(entity_id)} if entity_id is not None else None)


class ForbiddenError(DomainError):
    code = "FORBIDDEN"


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"


class ConflictError(DomainError):
    code = "CONFLICT"


class AuthenticationError(DomainError):
    code = "UNAUTHORIZED"
