"""Error kinds raised by the session layer."""

from __future__ import annotations

from typing import Optional


class VitrusError(RuntimeError):
    """Base class for every error raised by the client."""


class ConnectionError(VitrusError):
    """Raised when the transport fails before the session reaches READY."""

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.error_type = error_type

    @property
    def before_authentication(self) -> bool:
        return self.stage in {"connecting", "open"}


class AuthenticationError(ConnectionError):
    """Raised when the service explicitly rejects the handshake."""

    def __init__(self, message: str, *, error_code: Optional[str] = None) -> None:
        super().__init__(message, stage="authenticating", error_type="auth")
        self.error_code = error_code


class ConnectionLost(VitrusError):
    """Raised for every pending request when a READY connection closes."""


class RemoteExecutionError(VitrusError):
    """The remote side answered a request with an error message."""


class RequestTimeout(VitrusError):
    """Raised when a request outlives the configured request timeout."""


class ProtocolError(VitrusError):
    """Raised when an inbound frame cannot be parsed or validated."""


class TransportNotReady(VitrusError):
    """Raised when IO is invoked without an established transport."""


class TransportClosed(VitrusError):
    """Raised by transports when the peer closes the connection."""

    def __init__(self, message: str = "Transport closed", *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code
