"""Custom exceptions for the chunked upload service."""

from typing import Any


class UploadError(Exception):
    """Base exception for upload operations.

    Each subclass carries a machine-readable ``code`` and the HTTP status the
    API layer responds with. ``details`` holds extra fields for the payload.
    """

    code = "upload_error"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> dict[str, Any]:
        """Build the ``detail`` payload of the error response."""
        return {"code": self.code, "message": self.message, **self.details}


class MissingFieldsError(UploadError):
    """Exception raised when a request is missing fields or malformed."""

    code = "missing_fields"
    status_code = 400


class FileTooLargeError(UploadError):
    """Exception raised when declared file size exceeds a limit."""

    code = "file_too_large"
    status_code = 400


class BlockedFileTypeError(UploadError):
    """Exception raised when the file extension is on the blocked list."""

    code = "blocked_file_type"
    status_code = 400


class InvalidPartNumberError(UploadError):
    """Exception raised when a part number is outside [1, 10000]."""

    code = "invalid_part_number"
    status_code = 400


class EmptyChunkError(UploadError):
    """Exception raised when a chunk carries no bytes."""

    code = "empty_chunk"
    status_code = 400


class PartCountMismatchError(UploadError):
    """Exception raised when completion lists a different number of parts."""

    code = "part_count_mismatch"
    status_code = 400


class FileIdMismatchError(UploadError):
    """Exception raised when completion names a different file than the session."""

    code = "file_id_mismatch"
    status_code = 400


class InvalidPartsError(UploadError):
    """Exception raised when the object store rejects the part list."""

    code = "invalid_parts"
    status_code = 400


class SessionNotFoundError(UploadError):
    """Exception raised when the upload session descriptor is missing or expired."""

    code = "session_not_found"
    status_code = 404


class SessionExpiredError(UploadError):
    """Exception raised when the multipart write no longer exists in the object store."""

    code = "session_expired"
    status_code = 404


class StorageError(UploadError):
    """Exception raised when object store or session store operations fail."""

    code = "storage_error"
    status_code = 500


class MetadataStoreError(UploadError):
    """Exception raised when the durable metadata store fails."""

    code = "metadata_error"
    status_code = 500
