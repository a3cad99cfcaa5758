"""Error taxonomy for the attendance automation service."""


class AttendanceError(Exception):
    """Base class for all service errors."""


class StoreCorrupt(AttendanceError):
    """The persisted principal list is missing or unreadable."""


class DuplicateKey(AttendanceError):
    """A principal with the same login id is already registered."""

    def __init__(self, login_id: str):
        super().__init__(f"Principal already exists: {login_id}")
        self.login_id = login_id


class ResourceUnavailable(AttendanceError):
    """No browser session could be acquired."""


class AuthenticationFailed(AttendanceError):
    """Logging in to the target site failed."""


class NavigationFailed(AttendanceError):
    """The content page could not be loaded."""


class CaptureFailed(AttendanceError):
    """The screenshot could not be written."""


class NotificationFailed(AttendanceError):
    """The result email could not be delivered."""
