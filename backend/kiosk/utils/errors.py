from __future__ import annotations


class ApiError(Exception):
    """Error with a stable code and HTTP status, rendered as the JSON error contract."""

    code = "ERROR"
    status = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, code: str | None = None, status: int | None = None, **extra):
        self.message = (message or self.default_message).strip()
        if code:
            self.code = code
        if status is not None:
            self.status = int(status)
        self.extra = extra
        super().__init__(f"{self.code}:{self.message}")

    def to_payload(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.status),
        }
        payload.update(self.extra or {})
        return payload


class NotFoundError(ApiError):
    code = "NOT_FOUND"
    status = 404
    default_message = "Not found"


class DuplicateError(ApiError):
    code = "DUPLICATE"
    status = 409
    default_message = "Already exists"


class ValidationError(ApiError):
    code = "VALIDATION"
    status = 400
    default_message = "Invalid request"


class UnauthorizedError(ApiError):
    code = "UNAUTHORIZED"
    status = 401
    default_message = "Authentication required"


class ForbiddenError(ApiError):
    code = "FORBIDDEN"
    status = 403
    default_message = "Forbidden"


class ConstraintViolationError(ApiError):
    code = "CONSTRAINT_VIOLATION"
    status = 422
    default_message = "Constraint violation"


class DatabaseError(ApiError):
    code = "DATABASE_ERROR"
    status = 500
    default_message = "Database error"


class BusinessRuleError(ApiError):
    # Business-rule rejections keep 400 with a human-readable message.
    code = "BUSINESS_RULE"
    status = 400


class ConflictError(ApiError):
    code = "CONFLICT"
    status = 409
    default_message = "Conflict"


class RateLimitedError(ApiError):
    code = "RATE_LIMITED"
    status = 429
    default_message = "Too many requests. Please retry later."


__all__ = [
    "ApiError",
    "NotFoundError",
    "DuplicateError",
    "ValidationError",
    "UnauthorizedError",
    "ForbiddenError",
    "ConstraintViolationError",
    "DatabaseError",
    "BusinessRuleError",
    "ConflictError",
    "RateLimitedError",
]
