class ServiceError(Exception):
    """Typed failure raised by the service layer and rendered by the API."""

    kind = "Internal"
    status_code = 500

    def __init__(self, message: str, details: list | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        body = {"kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(ServiceError):
    kind = "NotFound"
    status_code = 404


class Conflict(ServiceError):
    kind = "Conflict"
    status_code = 409


class Forbidden(ServiceError):
    kind = "Forbidden"
    status_code = 403


class ValidationFailed(ServiceError):
    kind = "ValidationError"
    status_code = 400


class Internal(ServiceError):
    pass


class Unauthorized(ServiceError):
    kind = "Unauthorized"
    status_code = 401


class RateLimited(ServiceError):
    kind = "RateLimited"
    status_code = 429
