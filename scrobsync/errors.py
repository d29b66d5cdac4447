"""Exception classes for the scrobble sync engine."""

from typing import Optional


class ScrobbleSyncError(Exception):
    """Base exception for everything the sync engine raises."""

    pass


class TransportError(ScrobbleSyncError):
    """No usable response: connection failure, timeout, non-2xx or undecodable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ApiError(ScrobbleSyncError):
    """Error reply from Last.fm.

    Attributes:
        code: Last.fm error code
        message: Error message from server
    """

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Last.fm error {code}: {message}")


class AuthenticationError(ApiError):
    """Session key, token or API key rejected (codes 4, 9, 10, 14, 15, 26)."""

    pass


class NotAuthenticatedError(ScrobbleSyncError):
    """Last.fm session or library access is missing before any call is made."""

    pass


class LibraryUnavailableError(ScrobbleSyncError):
    """The media library snapshot could not be read."""

    pass


class NotReadyError(ScrobbleSyncError):
    """A deferred service was requested before it was constructed."""

    pass
