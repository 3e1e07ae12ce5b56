"""
shared/utils/errors.py
Typed domain errors raised by the core managers.
The transport layer maps them to HTTP responses (see main.py).
"""

from typing import Optional


class DomainError(Exception):
    code: str = "DomainError"
    status_code: int = 400

    def __init__(self, detail: str, code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if code:
            self.code = code


class NotFoundError(DomainError):
    code = "NotFound"
    status_code = 404


class UnauthorizedError(DomainError):
    code = "Unauthorized"
    status_code = 403


class InvalidTransitionError(DomainError):
    code = "InvalidTransition"
    status_code = 400


class ConflictError(DomainError):
    code = "Conflict"
    status_code = 409


class EventLockedError(DomainError):
    code = "EventLocked"
    status_code = 423


class DomainValidationError(DomainError):
    code = "ValidationError"
    status_code = 422


class InvalidStatusError(DomainValidationError):
    code = "InvalidStatus"
