"""HTTP client for the chunked upload endpoints."""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from pebbledrive.client.errors import (
    ServerError,
    SessionExpired,
    TransportError,
    UploadRejected,
)

logger = logging.getLogger(__name__)


def _raise_for_response(response: httpx.Response) -> None:
    """Map an error response onto the client exception hierarchy."""
    if response.is_success:
        return

    code = None
    message = response.text
    detail: Any = None
    try:
        detail = response.json().get("detail")
    except ValueError:
        pass
    if isinstance(detail, dict):
        code = detail.get("code")
        message = detail.get("message", message)
    elif isinstance(detail, str):
        message = detail

    status_code = response.status_code
    if status_code == 404:
        raise SessionExpired(message, status_code=status_code, code=code, detail=detail)
    if status_code >= 500:
        raise ServerError(message, status_code=status_code, code=code, detail=detail)
    raise UploadRejected(message, status_code=status_code, code=code, detail=detail)


def _parse_body(response: httpx.Response, path: str, required: Sequence[str]) -> Dict[str, Any]:
    """Decode a success body, rejecting one that lacks the fields the caller needs."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise UploadRejected(
            f"Malformed response from {path}", status_code=response.status_code, code="malformed_response"
        )
    missing = [key for key in required if body.get(key) in (None, "")]
    if missing:
        raise UploadRejected(
            f"Response from {path} is missing {', '.join(missing)}",
            status_code=response.status_code,
            code="malformed_response",
        )
    return body


class UploadAPIClient:
    """Async client for ``/api/upload/*``.

    Args:
        base_url: Server root, e.g. ``https://drive.example.com``
        token: Bearer token issued by the login endpoint
        timeout: Per-request timeout in seconds; a 50MB part needs a generous value
        transport: Optional httpx transport (tests use ``httpx.ASGITransport``)
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "UploadAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(
        self, path: str, required: Sequence[str] = (), **kwargs: Any
    ) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.TransportError as e:
            raise TransportError(f"Request to {path} failed: {e}") from e
        _raise_for_response(response)
        return _parse_body(response, path, required)

    async def get_limits(self) -> Dict[str, Any]:
        """Fetch the server's upload limits."""
        try:
            response = await self._client.get("/api/config/limits")
        except httpx.TransportError as e:
            raise TransportError(f"Request to /api/config/limits failed: {e}") from e
        _raise_for_response(response)
        return _parse_body(response, "/api/config/limits", ())

    async def init_upload(
        self, file_name: str, file_size: int, file_type: Optional[str], total_chunks: int
    ) -> Dict[str, Any]:
        """Open an upload session; returns ``{success, uploadId, fileId}``."""
        return await self._post(
            "/api/upload/init",
            required=("uploadId", "fileId"),
            json={
                "fileName": file_name,
                "fileSize": file_size,
                "fileType": file_type,
                "totalChunks": total_chunks,
            },
        )

    async def upload_chunk(
        self, upload_id: str, file_id: str, part_number: int, data: bytes
    ) -> Dict[str, Any]:
        """Upload one part; returns ``{success, partNumber, etag}``."""
        return await self._post(
            "/api/upload/chunk",
            required=("partNumber", "etag"),
            data={"uploadId": upload_id, "fileId": file_id, "partNumber": str(part_number)},
            files={"chunk": ("blob", data, "application/octet-stream")},
        )

    async def complete_upload(
        self, upload_id: str, file_id: str, parts: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Finalize the upload; returns the stored file record."""
        return await self._post(
            "/api/upload/complete",
            required=("fileId",),
            json={"uploadId": upload_id, "fileId": file_id, "parts": parts},
        )

    async def abort_upload(self, upload_id: str, file_id: str) -> Dict[str, Any]:
        """Abort the upload server-side."""
        return await self._post(
            "/api/upload/abort",
            json={"uploadId": upload_id, "fileId": file_id},
        )
