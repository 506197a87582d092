"""Error taxonomy shared by the services and the HTTP layer.

Each error carries the HTTP status it is rendered with and a message that is
safe to show to API clients.
"""


class ClinicError(Exception):
    """Base exception for clinic API failures."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None, *, cause: Exception | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.cause = cause


class Unauthorized(ClinicError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ClinicError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ClinicError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(ClinicError):
    status_code = 400
    default_message = "Validation error"


class DoctorNotFound(NotFound):
    default_message = "Doctor not found"


class InvalidSlot(ValidationFailed):
    default_message = "startAt must be in the future"


class SlotConflict(ClinicError):
    status_code = 409
    default_message = "Time slot conflict"


class CancelWindowViolation(ValidationFailed):
    def __init__(self, cutoff_minutes: int, *, cause: Exception | None = None):
        super().__init__(f"Cannot cancel within {cutoff_minutes} minutes", cause=cause)
        self.cutoff_minutes = cutoff_minutes


class InvalidAction(ValidationFailed):
    default_message = "Invalid action"


class InvalidStatusTransition(ValidationFailed):
    def __init__(self, current: str, requested: str, *, cause: Exception | None = None):
        super().__init__(f"Cannot change status from {current} to {requested}", cause=cause)
        self.current = current
        self.requested = requested


class DuplicateEmail(ClinicError):
    status_code = 409
    default_message = "Email already registered"


class InternalFailure(ClinicError):
    """Unexpected store failure. The message never carries internal detail."""
