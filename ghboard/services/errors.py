"""
Engine error taxonomy.

Every failure that reaches a caller is one of these, delivered inside a
FetchFailed or MutationError event.
"""

from datetime import datetime


class EngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, host: str | None = None):
        self.message = message
        self.host = host
        super().__init__(message)

    def user_message(self) -> str:
        """Text suitable for a status bar."""
        return self.message


class TranslationError(EngineError):
    """A filter or target string could not be parsed."""

    def __init__(self, message: str, token: str | None = None):
        self.token = token
        super().__init__(message)


class RemoteError(EngineError):
    """Base class for failures reported by the remote client."""

    pass


class TransportError(RemoteError):
    """Network failure or timeout. Never retried by the engine."""

    pass


class AuthError(RemoteError):
    """Missing, expired or invalid credential."""

    def user_message(self) -> str:
        where = f" for {self.host}" if self.host else ""
        return f"Authentication failed{where}: {self.message}"


class RateLimitedError(RemoteError):
    """API quota exhausted."""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        reset_at: datetime | None = None,
        secondary: bool = False,
    ):
        self.reset_at = reset_at
        self.secondary = secondary
        super().__init__(message, host=host)

    def user_message(self) -> str:
        if self.secondary:
            return "Secondary rate limit hit, wait a moment then retry"
        msg = "API rate limit exceeded"
        if self.reset_at:
            msg += f", resets at {self.reset_at:%H:%M:%S}"
        return msg


class NotFoundError(RemoteError):
    """The requested resource does not exist or is not visible."""

    pass


class RemoteApiError(RemoteError):
    """Any other upstream 4xx/5xx or malformed response."""

    def __init__(self, message: str, host: str | None = None, status: int | None = None):
        self.status = status
        super().__init__(message, host=host)

    def user_message(self) -> str:
        if self.status is not None:
            return f"HTTP {self.status}: {self.message}"
        return self.message
