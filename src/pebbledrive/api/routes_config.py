"""Public upload limits endpoint."""

from fastapi import APIRouter, Response

from pebbledrive.core.config import MAX_PART_NUMBER, settings
from pebbledrive.models.upload import UploadLimitsResponse

router = APIRouter(prefix="/api/config", tags=["config"])


@router.get("/limits", response_model=UploadLimitsResponse)
async def upload_limits(response: Response) -> UploadLimitsResponse:
    """Return the upload limits clients should validate against before uploading."""
    response.headers["Cache-Control"] = "public, max-age=300"
    return UploadLimitsResponse(
        max_file_size_mb=settings.max_file_size_mb,
        max_file_size_bytes=settings.max_file_size_bytes,
        part_size_bytes=settings.part_size_bytes,
        max_parts=MAX_PART_NUMBER,
        blocked_extensions=settings.blocked_extensions,
        session_ttl_seconds=settings.UPLOAD_SESSION_TTL_SECONDS,
    )
