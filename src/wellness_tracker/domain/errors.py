"""Domain errors for the wellness tracker."""


class WellnessError(Exception):
    """Base class for wellness tracker errors."""


class ValidationError(WellnessError):
    """Raised when input is rejected before any I/O happens."""


class NoSession(WellnessError):  # noqa: N818
    """Raised when an operation needs an active owner session."""


class SessionTransitionError(WellnessError):
    """Raised for session changes the lifecycle does not allow."""


class RemoteStoreError(WellnessError):
    """Base class for recoverable remote store failures."""


class Unavailable(RemoteStoreError):  # noqa: N818
    """The remote store could not be reached."""


class Unauthorized(RemoteStoreError):  # noqa: N818
    """The remote store rejected the session credentials."""


class PersistenceError(WellnessError):
    """The local cache store failed to read or write."""
