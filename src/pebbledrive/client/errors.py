"""Exceptions raised by the upload client."""

from typing import Any, Optional


class UploadClientError(Exception):
    """Base exception for client-side upload failures."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        detail: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.detail = detail


class SessionExpired(UploadClientError):
    """The server no longer knows the upload session; the upload must restart."""
    pass


class UploadRejected(UploadClientError):
    """The server rejected the request (4xx other than 404)."""
    pass


class ServerError(UploadClientError):
    """The server failed to process the request (5xx)."""
    pass


class TransportError(UploadClientError):
    """The request never produced a response (connection, timeout)."""
    pass


class UploadCancelled(UploadClientError):
    """The upload was cancelled by the caller."""
    pass
