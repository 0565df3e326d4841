class BookingError(Exception):
    """Base for business-rule failures surfaced to the caller as-is."""

    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        body.update(self.details)
        return body


class ValidationError(BookingError):
    status_code = 400


class ConflictError(BookingError):
    status_code = 409


class InvalidStateTransition(BookingError):
    status_code = 409


class NotFound(BookingError):
    status_code = 404


class PermissionDenied(BookingError):
    status_code = 403
