"""
Domain errors raised by the services layer.

Each error carries a stable ``code`` and the HTTP status the API answers with,
so callers can tell "fix your input" from "try again" from "not allowed".
"""


class ServiceError(Exception):
    code = "service_error"
    status_code = 500

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class ValidationError(ServiceError):
    code = "validation_error"
    status_code = 400


class Forbidden(ServiceError):
    code = "forbidden"
    status_code = 403


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404


class Conflict(ServiceError):
    """Lost a concurrent write; safe to retry against fresh state."""
    code = "conflict"
    status_code = 409


class InvalidTransition(ServiceError):
    code = "invalid_transition"
    status_code = 422


class Unavailable(ServiceError):
    """Backing store or auth provider is unreachable."""
    code = "unavailable"
    status_code = 503


class DuplicateRecord(Exception):
    """Raised by repositories when a unique key is already taken."""
