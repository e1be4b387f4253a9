from __future__ import annotations


class AppError(Exception):
    """Base error for domain/application exceptions."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PolicyViolation(AppError):
    """Raised when a business rule is broken (user-correctable)."""

    code = "policy_violation"


class Unauthorized(AppError):
    """Raised when actor lacks the role/capability or company access."""

    code = "unauthorized"


class NotFoundError(AppError):
    """Raised when entity is missing or not visible within company scope."""

    code = "not_found"


class AlreadyResolved(AppError):
    """Raised on any transition attempted against a terminal alert."""

    code = "already_resolved"


class ConflictError(AppError):
    """Raised when a conditional write lost a race. Safe to retry."""

    code = "conflict"


class ValidationError(AppError):
    """Raised for structural validation beyond schema validation."""

    code = "validation_error"
