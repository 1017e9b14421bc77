"""Chunked upload data models.

Wire format uses camelCase names (``uploadId``, ``fileSize``...); Python code
uses the snake_case attribute names.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising to and accepting camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitUploadRequest(CamelModel):
    """Request model for opening a chunked upload session."""

    file_name: str
    file_size: int
    file_type: Optional[str] = None
    total_chunks: int


class InitUploadResponse(CamelModel):
    """Response model for session initiation."""

    success: bool = True
    upload_id: str
    file_id: str
    message: str = "Chunked upload initialized"


class ChunkUploadResponse(CamelModel):
    """Response model for a single uploaded part."""

    success: bool = True
    part_number: int
    etag: str
    message: str = ""


class UploadedPart(CamelModel):
    """A part reported by the client: its number and the digest the store assigned."""

    part_number: int
    etag: str = Field(min_length=1)


class CompleteUploadRequest(CamelModel):
    """Request model for finalizing a chunked upload.

    The part list is client-authoritative: the server does not track which
    parts arrived. The object store is the final arbiter and rejects gaps,
    duplicates and unknown digests when finalizing.
    """

    upload_id: str
    file_id: str
    parts: List[UploadedPart]


class AbortUploadRequest(CamelModel):
    """Request model for abandoning a chunked upload."""

    upload_id: str
    file_id: str


class AbortUploadResponse(CamelModel):
    """Response model for abort; abort never fails the caller."""

    success: bool = True
    message: str = "Chunked upload aborted"


class FileRecord(CamelModel):
    """Durable metadata for an assembled file.

    Same shape as the single-request upload path produces.
    """

    file_id: str
    name: str
    size: int
    type: str
    upload_date: str
    download_url: str


class UploadLimitsResponse(CamelModel):
    """Upload limits exposed to clients for pre-validation."""

    max_file_size_mb: int = Field(alias="maxFileSizeMB")
    max_file_size_bytes: int
    part_size_bytes: int
    max_parts: int
    blocked_extensions: List[str]
    session_ttl_seconds: int
