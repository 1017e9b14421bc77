"""Chunked upload API routes."""

import logging

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Request, UploadFile

from pebbledrive.core.auth import require_auth
from pebbledrive.core.exceptions import UploadError
from pebbledrive.core.logging import upload_id_context
from pebbledrive.models.upload import (
    AbortUploadRequest,
    AbortUploadResponse,
    ChunkUploadResponse,
    CompleteUploadRequest,
    FileRecord,
    InitUploadRequest,
    InitUploadResponse,
)
from pebbledrive.services import chunked_upload
from pebbledrive.storage.base import ObjectStore
from pebbledrive.storage.factory import get_file_store, get_object_store, get_session_store
from pebbledrive.storage.file_store import FileRecordStore
from pebbledrive.storage.session_store import SessionStore

router = APIRouter(prefix="/api/upload", tags=["upload"], dependencies=[Depends(require_auth)])
logger = logging.getLogger(__name__)


def _to_http(error: UploadError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_detail())


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={"code": "internal_error", "message": "Internal server error"},
    )


@router.post("/init", response_model=InitUploadResponse)
async def init_upload(
    request: InitUploadRequest = Body(...),
    object_store: ObjectStore = Depends(get_object_store),
    session_store: SessionStore = Depends(get_session_store),
) -> InitUploadResponse:
    """Open a chunked upload session."""
    try:
        return await chunked_upload.initiate_upload(request, object_store, session_store)
    except UploadError as e:
        raise _to_http(e)
    except Exception as e:
        logger.error(f"Unexpected error during upload initialization: {e}", exc_info=True)
        raise _internal_error()


@router.post("/chunk", response_model=ChunkUploadResponse)
async def upload_chunk(
    request: Request,
    chunk: UploadFile = File(...),
    upload_id: str = Form(..., alias="uploadId"),
    file_id: str = Form(..., alias="fileId"),
    part_number: int = Form(..., alias="partNumber"),
    object_store: ObjectStore = Depends(get_object_store),
) -> ChunkUploadResponse:
    """Upload one part of a chunked upload."""
    upload_id_context.set(upload_id)
    # Multipart bodies are skipped by the request middleware, so the form ids are logged here
    log_fields = {
        "upload_id": upload_id,
        "file_id": file_id,
        "part_number": part_number,
        "path": request.url.path,
    }
    try:
        data = await chunk.read()
        return await chunked_upload.ingest_chunk(
            upload_id, file_id, part_number, data, object_store
        )
    except UploadError as e:
        logger.warning(
            f"Chunk rejected: {e.status_code} {e.code}: {e}",
            extra={**log_fields, "status_code": e.status_code},
        )
        raise _to_http(e)
    except Exception as e:
        logger.error(
            f"Unexpected error during chunk upload: {e}",
            exc_info=True,
            extra={**log_fields, "status_code": 500},
        )
        raise _internal_error()
    finally:
        await chunk.close()


@router.post("/complete", response_model=FileRecord)
async def complete_upload(
    request: CompleteUploadRequest = Body(...),
    object_store: ObjectStore = Depends(get_object_store),
    session_store: SessionStore = Depends(get_session_store),
    file_store: FileRecordStore = Depends(get_file_store),
) -> FileRecord:
    """Finalize a chunked upload and return the stored file's metadata."""
    try:
        return await chunked_upload.complete_upload(
            request, object_store, session_store, file_store
        )
    except UploadError as e:
        raise _to_http(e)
    except Exception as e:
        logger.error(f"Unexpected error during upload completion: {e}", exc_info=True)
        raise _internal_error()


@router.post("/abort", response_model=AbortUploadResponse)
async def abort_upload(
    request: AbortUploadRequest = Body(...),
    object_store: ObjectStore = Depends(get_object_store),
    session_store: SessionStore = Depends(get_session_store),
) -> AbortUploadResponse:
    """Abort a chunked upload; cleanup is best-effort."""
    try:
        return await chunked_upload.abort_upload(request, object_store, session_store)
    except UploadError as e:
        raise _to_http(e)
