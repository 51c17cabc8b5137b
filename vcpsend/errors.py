"""Exception hierarchy shared by capture, API and history components."""

from enum import Enum

__all__ = [
    "ApiError",
    "ApiErrorKind",
    "CaptureError",
    "HistoryAppendError",
    "VcpSendError",
]


class VcpSendError(Exception):
    """Base class for all vcpsend errors."""


class CaptureError(VcpSendError):
    """Raised when reading the clipboard or a screenshot fails with an I/O fault."""


class ApiErrorKind(Enum):
    """Classification of chat-completion failures."""

    NOT_CONFIGURED = "not_configured"
    UNAUTHORIZED = "unauthorized"
    CLIENT_ERROR = "client_error"
    CONNECTION_ERROR = "connection_error"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"

    @property
    def retryable(self) -> bool:
        return self in {ApiErrorKind.SERVER_ERROR, ApiErrorKind.TIMEOUT}


class ApiError(VcpSendError):
    """Terminal chat-completion failure."""

    def __init__(
        self,
        kind: ApiErrorKind,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return (
            f"ApiError(kind={self.kind.name}, status_code={self.status_code}, "
            f"message={self.message!r})"
        )


class HistoryAppendError(VcpSendError):
    """Raised when the remote conversation history could not be updated."""
