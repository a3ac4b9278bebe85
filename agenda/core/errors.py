"""Error taxonomy surfaced to booking callers.

Messaging failures have no error type here: notifications are best-effort and
never change the caller-visible result of the operation that triggered them.
"""


class AvailabilityError(Exception):
    kind = "AvailabilityError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "detail": self.message}


class ValidationError(AvailabilityError):
    """Malformed or missing input. Never retried automatically."""

    kind = "ValidationError"
    status_code = 400


class ConfigurationError(AvailabilityError):
    """Tenant/location data is internally inconsistent (timezone, business hours)."""

    kind = "ConfigurationError"
    status_code = 422


class SlotTaken(AvailabilityError):
    """The requested slot lost the race to a concurrent booking."""

    kind = "SlotTaken"
    status_code = 409


class NotFound(AvailabilityError):
    kind = "NotFound"
    status_code = 404
