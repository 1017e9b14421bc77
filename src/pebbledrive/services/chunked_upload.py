"""Chunked upload coordinator.

Implements the four server-side steps of a chunked upload: initiation, chunk
ingestion, completion and abort. Each step is a complete unit of work; the
only state shared between steps lives in the session store (written once at
initiation, read and deleted once at completion or abort) and in the object
store's multipart write.

Trust boundary: the server never records which parts arrived. At completion
the client supplies the part list, and the object store is the final arbiter
of whether that list is complete and correct.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from uuid import uuid4

from pebbledrive.core.config import (
    MAX_PART_NUMBER,
    MIN_PART_NUMBER,
    OBJECT_STORE_MAX_FILE_BYTES,
    settings,
)
from pebbledrive.core.exceptions import (
    BlockedFileTypeError,
    EmptyChunkError,
    FileIdMismatchError,
    FileTooLargeError,
    InvalidPartNumberError,
    InvalidPartsError,
    MissingFieldsError,
    PartCountMismatchError,
    SessionExpiredError,
    SessionNotFoundError,
    StorageError,
)
from pebbledrive.models.upload import (
    AbortUploadRequest,
    AbortUploadResponse,
    ChunkUploadResponse,
    CompleteUploadRequest,
    FileRecord,
    InitUploadRequest,
    InitUploadResponse,
)
from pebbledrive.storage.base import (
    InvalidPartError,
    NoSuchUploadError,
    ObjectStore,
    ObjectStoreError,
    PartRef,
)
from pebbledrive.storage.file_store import FileRecordStore
from pebbledrive.storage.session_store import SessionStore, UploadSession

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _file_extension(file_name: str) -> str:
    if "." not in file_name:
        return ""
    return file_name[file_name.rindex("."):].lower()


def _mb(size_bytes: int) -> float:
    return round(size_bytes / 1024 / 1024, 2)


def download_url_for(file_id: str) -> str:
    """Download path of a stored file."""
    return f"/api/download?id={file_id}"


def validate_init_request(request: InitUploadRequest) -> None:
    """Check declared file metadata against the upload limits.

    Raises:
        MissingFieldsError: If name, size or chunk count is missing
        FileTooLargeError: If the size exceeds the store ceiling or configured maximum
        BlockedFileTypeError: If the extension is blocked
    """
    if not request.file_name or request.file_size <= 0 or request.total_chunks <= 0:
        raise MissingFieldsError(
            "fileName, fileSize and totalChunks are required",
            fields=["fileName", "fileSize", "totalChunks"],
        )

    if request.file_size > OBJECT_STORE_MAX_FILE_BYTES:
        raise FileTooLargeError(
            f"File exceeds the 5GB limit "
            f"(current: {request.file_size / 1024 ** 3:.2f}GB)",
            fileSize=request.file_size,
            maxFileSize=OBJECT_STORE_MAX_FILE_BYTES,
        )

    if request.file_size > settings.max_file_size_bytes:
        raise FileTooLargeError(
            f"File exceeds the configured limit "
            f"(max: {settings.max_file_size_mb}MB, current: {_mb(request.file_size)}MB)",
            fileSize=request.file_size,
            maxFileSize=settings.max_file_size_bytes,
        )

    extension = _file_extension(request.file_name)
    if extension and extension in settings.blocked_extensions:
        raise BlockedFileTypeError(
            f"File type {extension} is not allowed",
            extension=extension,
            blockedExtensions=settings.blocked_extensions,
        )


async def initiate_upload(
    request: InitUploadRequest,
    object_store: ObjectStore,
    session_store: SessionStore,
) -> InitUploadResponse:
    """Open a multipart write and record its session descriptor.

    Side effects: one multipart-begin call and one session write.
    """
    validate_init_request(request)

    file_id = str(uuid4())
    content_type = request.file_type or DEFAULT_CONTENT_TYPE

    try:
        upload_id = await object_store.create_multipart_upload(file_id, content_type)
    except ObjectStoreError as e:
        raise StorageError(f"Failed to open multipart upload: {e}") from e

    session = UploadSession(
        upload_id=upload_id,
        file_id=file_id,
        file_name=request.file_name,
        file_size=request.file_size,
        content_type=request.file_type,
        total_chunks=request.total_chunks,
        created_at=int(time.time() * 1000),
    )

    try:
        await session_store.put(session, settings.UPLOAD_SESSION_TTL_SECONDS)
    except StorageError:
        # Without a descriptor the write can never be completed
        try:
            await object_store.abort_multipart_upload(file_id, upload_id)
        except ObjectStoreError as abort_error:
            logger.warning(
                f"Failed to abandon multipart upload after session write failure: {abort_error}",
                extra={"file_id": file_id, "upload_id": upload_id},
            )
        raise

    logger.info(
        f"Chunked upload initialized: file_id={file_id}, upload_id={upload_id}, "
        f"name={request.file_name}, size={_mb(request.file_size)}MB, "
        f"chunks={request.total_chunks}"
    )

    return InitUploadResponse(upload_id=upload_id, file_id=file_id)


async def ingest_chunk(
    upload_id: str,
    file_id: str,
    part_number: int,
    data: bytes,
    object_store: ObjectStore,
) -> ChunkUploadResponse:
    """Forward one part to the multipart write.

    Stateless pass-through: the session store is neither read nor written.

    Raises:
        SessionExpiredError: If the multipart write no longer exists
    """
    if not upload_id or not file_id:
        raise MissingFieldsError("uploadId and fileId are required", fields=["uploadId", "fileId"])

    if part_number < MIN_PART_NUMBER or part_number > MAX_PART_NUMBER:
        raise InvalidPartNumberError(
            f"Invalid part number (range: {MIN_PART_NUMBER}-{MAX_PART_NUMBER})",
            partNumber=part_number,
        )

    if not data:
        raise EmptyChunkError("Chunk is empty", partNumber=part_number)

    logger.debug(
        f"Uploading part: file_id={file_id}, part={part_number}, size={_mb(len(data))}MB"
    )

    try:
        etag = await object_store.upload_part(file_id, upload_id, part_number, data)
    except NoSuchUploadError as e:
        raise SessionExpiredError(
            "Upload session does not exist or has expired, restart the upload",
            uploadId=upload_id,
        ) from e
    except ObjectStoreError as e:
        raise StorageError(f"Failed to upload part {part_number}: {e}") from e

    logger.info(f"Part uploaded: file_id={file_id}, part={part_number}, etag={etag}")

    return ChunkUploadResponse(
        part_number=part_number,
        etag=etag,
        message=f"Part {part_number} uploaded",
    )


async def complete_upload(
    request: CompleteUploadRequest,
    object_store: ObjectStore,
    session_store: SessionStore,
    file_store: FileRecordStore,
) -> FileRecord:
    """Validate the reported part list, finalize the write and persist metadata.

    Idempotent only until the session descriptor is deleted: a repeated call
    after success raises SessionNotFoundError.
    """
    logger.info(
        f"Completing chunked upload: file_id={request.file_id}, "
        f"upload_id={request.upload_id}, parts={len(request.parts)}"
    )

    session = await session_store.get(request.upload_id)
    if session is None:
        raise SessionNotFoundError(
            "Upload session does not exist or has expired", uploadId=request.upload_id
        )

    if len(request.parts) != session.total_chunks:
        raise PartCountMismatchError(
            f"Part count mismatch (expected: {session.total_chunks}, "
            f"actual: {len(request.parts)})",
            expected=session.total_chunks,
            actual=len(request.parts),
        )

    if request.file_id != session.file_id:
        raise FileIdMismatchError("File ID does not match the upload session")

    sorted_parts = [
        PartRef(part_number=p.part_number, etag=p.etag)
        for p in sorted(request.parts, key=lambda p: p.part_number)
    ]

    try:
        await object_store.complete_multipart_upload(session.file_id, session.upload_id, sorted_parts)
    except NoSuchUploadError as e:
        raise SessionExpiredError(
            "Upload session does not exist or has expired", uploadId=request.upload_id
        ) from e
    except InvalidPartError as e:
        raise InvalidPartsError(str(e)) from e
    except ObjectStoreError as e:
        raise StorageError(f"Failed to complete multipart upload: {e}") from e

    logger.info(f"Multipart upload assembled: file_id={session.file_id}")

    record = FileRecord(
        file_id=session.file_id,
        name=session.file_name,
        size=session.file_size,
        type=session.content_type or DEFAULT_CONTENT_TYPE,
        upload_date=datetime.now(timezone.utc).isoformat(),
        download_url=download_url_for(session.file_id),
    )
    await asyncio.to_thread(file_store.save, record)

    try:
        await session_store.delete(request.upload_id)
    except StorageError as e:
        # The descriptor expires on its own
        logger.warning(
            f"Failed to delete upload session: {e}",
            extra={"upload_id": request.upload_id, "file_id": session.file_id},
        )

    logger.info(
        f"Chunked upload completed: file_id={session.file_id}, size={_mb(session.file_size)}MB"
    )

    return record


async def abort_upload(
    request: AbortUploadRequest,
    object_store: ObjectStore,
    session_store: SessionStore,
) -> AbortUploadResponse:
    """Abandon a multipart write and free its session descriptor.

    Best-effort: backend failures are logged as warnings and never raised.
    """
    if not request.upload_id or not request.file_id:
        raise MissingFieldsError("uploadId and fileId are required", fields=["uploadId", "fileId"])

    logger.info(f"Abort requested: file_id={request.file_id}, upload_id={request.upload_id}")

    try:
        await object_store.abort_multipart_upload(request.file_id, request.upload_id)
        logger.info(f"Multipart upload aborted: file_id={request.file_id}")
    except Exception as e:
        # Already completed, already aborted or past the store's retention window
        logger.warning(
            f"Object store abort failed (possibly expired): {e}",
            extra={"file_id": request.file_id, "upload_id": request.upload_id},
        )

    try:
        await session_store.delete(request.upload_id)
    except Exception as e:
        logger.warning(
            f"Session cleanup failed: {e}",
            extra={"file_id": request.file_id, "upload_id": request.upload_id},
        )

    return AbortUploadResponse()
