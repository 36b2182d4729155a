class SchedulingError(Exception):
    """Base class for errors raised by the scheduling core."""


class InvalidArgument(SchedulingError):
    """Malformed input. The conversation step does not advance."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFound(SchedulingError):
    """Unknown practitioner, session or appointment."""


class BookingConflict(SchedulingError):
    """The requested range overlaps a committed appointment."""

    def __init__(self, message: str = "The requested time is no longer available."):
        super().__init__(message)
        self.message = message


class StorageUnavailable(SchedulingError):
    """A storage read kept failing after the bounded retries."""
