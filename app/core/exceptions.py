"""
Domain errors raised by the allocation engine, the transfer state machine
and the services that call them.

The HTTP layer maps these to status codes (see app/main.py); the core never
imports FastAPI.
"""
from typing import List, Optional


class AllocationError(Exception):
    """Base class for domain errors."""

    status_code = 400
    error = "Bad request"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AllocationError):
    """Bad input shape or violated business rule. Never auto-corrected."""

    error = "Validation failed"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class NotFoundError(AllocationError):
    """Line item or transfer does not exist for the tenant."""

    status_code = 404
    error = "Not found"


class AuthorizationError(AllocationError):
    """Tenant in the request context does not own the entity."""

    status_code = 403
    error = "Forbidden"


class ConcurrentModificationError(AllocationError):
    """A conditional write found the entity in a different state than was read."""

    status_code = 409
    error = "Conflict"
