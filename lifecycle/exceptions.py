"""Exception hierarchy for the booking lifecycle core."""


class BookingLifecycleError(Exception):
    """Base exception for booking lifecycle errors."""
    pass


class BookingNotFoundError(BookingLifecycleError):
    """Raised when no booking exists for a calendar event id."""

    def __init__(self, calendar_event_id: str, tenant: str | None = None):
        self.calendar_event_id = calendar_event_id
        self.tenant = tenant
        super().__init__(
            f"Booking not found: calendar_event_id={calendar_event_id} tenant={tenant}"
        )


class InvalidEventError(BookingLifecycleError):
    """Raised when an event name is not part of the machine vocabulary."""
    pass


class PersistenceError(BookingLifecycleError):
    """
    Raised when the status-bearing write to the document store fails.

    Attributes:
        message: Error message
        original_error: Exception raised by the store
        new_state: Machine state reached before the write failed, when known
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        self.message = message
        self.original_error = original_error
        self.new_state: str | None = None
        super().__init__(self.message)
