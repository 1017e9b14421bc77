"""Client side of the chunked upload protocol."""

from pebbledrive.client.api import UploadAPIClient
from pebbledrive.client.errors import (
    ServerError,
    SessionExpired,
    TransportError,
    UploadCancelled,
    UploadClientError,
    UploadRejected,
)
from pebbledrive.client.orchestrator import (
    ChunkedUpload,
    UploadOutcome,
    UploadQueue,
    UploadStatus,
)
from pebbledrive.client.progress import LocalProgressStore, LocalUploadRecord
from pebbledrive.client.retry import RetryPolicy

__all__ = [
    "UploadAPIClient",
    "ChunkedUpload",
    "UploadQueue",
    "UploadOutcome",
    "UploadStatus",
    "LocalProgressStore",
    "LocalUploadRecord",
    "RetryPolicy",
    "UploadClientError",
    "SessionExpired",
    "UploadRejected",
    "ServerError",
    "TransportError",
    "UploadCancelled",
]
