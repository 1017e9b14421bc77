"""Ephemeral upload session store.

Session descriptors live under ``upload:<uploadId>`` with a fixed time to
live. A descriptor is written once at initiation, read once at completion
and deleted at completion or abort; it is never touched per chunk.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from pebbledrive.core.exceptions import StorageError

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "upload:"


def session_key(upload_id: str) -> str:
    """Key of the session descriptor for an upload id."""
    return f"{SESSION_KEY_PREFIX}{upload_id}"


@dataclass
class UploadSession:
    """Session descriptor linking a multipart write to the declared file."""

    upload_id: str
    file_id: str
    file_name: str
    file_size: int
    content_type: Optional[str]
    total_chunks: int
    created_at: int  # epoch milliseconds

    def to_json(self) -> str:
        data = asdict(self)
        return json.dumps(
            {
                "uploadId": data["upload_id"],
                "fileId": data["file_id"],
                "fileName": data["file_name"],
                "fileSize": data["file_size"],
                "fileType": data["content_type"],
                "totalChunks": data["total_chunks"],
                "createdAt": data["created_at"],
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "UploadSession":
        data = json.loads(raw)
        return cls(
            upload_id=data["uploadId"],
            file_id=data["fileId"],
            file_name=data["fileName"],
            file_size=data["fileSize"],
            content_type=data.get("fileType"),
            total_chunks=data["totalChunks"],
            created_at=data["createdAt"],
        )


class SessionStore(ABC):
    """Key-value store with per-key expiry holding session descriptors."""

    @abstractmethod
    async def put(self, session: UploadSession, ttl_seconds: int) -> None:
        """Store a descriptor under its upload id with an expiry."""
        pass

    @abstractmethod
    async def get(self, upload_id: str) -> Optional[UploadSession]:
        """Retrieve a descriptor, or None if missing or expired."""
        pass

    @abstractmethod
    async def delete(self, upload_id: str) -> None:
        """Delete a descriptor; deleting a missing key is not an error."""
        pass


class InMemorySessionStore(SessionStore):
    """In-process store for local development and tests."""

    def __init__(self, clock=time.monotonic):
        self._sessions: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    async def put(self, session: UploadSession, ttl_seconds: int) -> None:
        now = self._clock()
        # Abandoned sessions are never read again, so expire them here
        expired = [key for key, (_, expires_at) in self._sessions.items() if now >= expires_at]
        for key in expired:
            del self._sessions[key]
        self._sessions[session_key(session.upload_id)] = (session.to_json(), now + ttl_seconds)

    async def get(self, upload_id: str) -> Optional[UploadSession]:
        key = session_key(upload_id)
        entry = self._sessions.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            del self._sessions[key]
            return None
        return UploadSession.from_json(raw)

    async def delete(self, upload_id: str) -> None:
        self._sessions.pop(session_key(upload_id), None)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    """Redis-backed store; expiry is delegated to Redis ``SET ... EX``."""

    def __init__(self, url: Optional[str] = None, client: Any = None):
        self._url = url
        self._client = client

    def _get_client(self) -> Any:
        """Lazy-load and cache the Redis client."""
        if self._client is None:
            self._client = redis_async.Redis.from_url(self._url, decode_responses=True)
            logger.info("Using Redis session store")
        return self._client

    async def put(self, session: UploadSession, ttl_seconds: int) -> None:
        key = session_key(session.upload_id)
        try:
            await self._get_client().set(key, session.to_json(), ex=ttl_seconds)
        except RedisError as e:
            raise StorageError(f"Failed to write upload session: {e}") from e

    async def get(self, upload_id: str) -> Optional[UploadSession]:
        key = session_key(upload_id)
        try:
            raw = await self._get_client().get(key)
        except RedisError as e:
            raise StorageError(f"Failed to read upload session: {e}") from e
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return UploadSession.from_json(raw)

    async def delete(self, upload_id: str) -> None:
        try:
            await self._get_client().delete(session_key(upload_id))
        except RedisError as e:
            raise StorageError(f"Failed to delete upload session: {e}") from e
