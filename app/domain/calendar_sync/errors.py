"""Calendar sync error taxonomy"""

from typing import Optional


class CalendarSyncError(Exception):
    """Base class for calendar synchronization failures"""

    pass


class InvalidEvent(CalendarSyncError):
    """Raised when a calendar event cannot be turned into a session candidate"""

    pass


class InvalidDate(InvalidEvent):
    """Raised when an event has neither a usable dateTime nor an all-day date"""

    def __init__(self, event_id: str, raw_value=None):
        self.event_id = event_id
        self.raw_value = raw_value
        detail = f" ({raw_value!r})" if raw_value else ""
        super().__init__(f"Invalid session date for event {event_id}{detail}")


class TherapistNotFound(CalendarSyncError):
    """Raised by entry points that cannot continue without a therapist"""

    pass


class RecordNotFound(CalendarSyncError):
    """Raised when a patient or session referenced by a request does not exist"""

    pass


class UpstreamUnavailable(CalendarSyncError):
    """Raised when Google Calendar (or another provider) cannot be reached or fails"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderResponseError(UpstreamUnavailable):
    """Raised when a provider payload is missing a field we depend on"""

    pass
