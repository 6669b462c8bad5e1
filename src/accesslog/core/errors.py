from typing import Any


class AccessLogError(Exception):
    """Base error rendered in the uniform response envelope."""

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        err = {"code": self.code, "message": self.message}
        if self.details is not None:
            err["details"] = self.details
        return err


class ValidationFailed(AccessLogError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Validation failed"


class AuthenticationError(AccessLogError):
    code = "AUTHENTICATION_ERROR"
    status_code = 401
    default_message = "API key is required"


class InvalidApiKey(AccessLogError):
    code = "INVALID_API_KEY"
    status_code = 401
    default_message = "Invalid API key"


class ApplicationInactive(AccessLogError):
    code = "APPLICATION_INACTIVE"
    status_code = 403
    default_message = "Application is inactive"


class Forbidden(AccessLogError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Forbidden"


class NotFound(AccessLogError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"


class Duplicate(AccessLogError):
    code = "DUPLICATE"
    status_code = 409
    default_message = "Resource already exists"


class RateLimitExceeded(AccessLogError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    default_message = "Rate limit exceeded"

    def __init__(self, message: str | None = None, details: Any = None, headers: dict | None = None):
        super().__init__(message, details)
        self.headers = headers or {}


class RequestTimeout(AccessLogError):
    code = "REQUEST_TIMEOUT"
    status_code = 408
    default_message = "Request timeout"


class StoreUnavailable(AccessLogError):
    code = "STORE_UNAVAILABLE"
    status_code = 500
    default_message = "Database is unavailable"


class CacheUnavailable(AccessLogError):
    # never rendered on its own: callers downgrade it to a miss or fail open
    code = "CACHE_UNAVAILABLE"
    status_code = 500
    default_message = "Cache is unavailable"


class ServiceUnavailable(AccessLogError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503
    default_message = "Service unavailable"


class InternalError(AccessLogError):
    pass
