"""Backend selection for the object store, session store and metadata store.

Each getter returns a process-wide instance chosen by settings; routes receive
them through FastAPI dependencies so tests can override them.
"""

from functools import lru_cache

from pebbledrive.core.config import settings
from pebbledrive.storage.base import ObjectStore
from pebbledrive.storage.file_store import FileRecordStore, create_db_engine
from pebbledrive.storage.local import LocalObjectStore
from pebbledrive.storage.s3 import S3ObjectStore
from pebbledrive.storage.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
)


@lru_cache
def get_object_store() -> ObjectStore:
    """Return the configured object store backend.

    Raises:
        ValueError: If STORAGE_BACKEND is not recognised
    """
    if settings.STORAGE_BACKEND == "s3":
        return S3ObjectStore()
    if settings.STORAGE_BACKEND == "local":
        return LocalObjectStore(settings.LOCAL_STORAGE_PATH)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")


@lru_cache
def get_session_store() -> SessionStore:
    """Return the configured ephemeral session store.

    Raises:
        ValueError: If SESSION_BACKEND is not recognised
    """
    if settings.SESSION_BACKEND == "redis":
        return RedisSessionStore(settings.REDIS_URL)
    if settings.SESSION_BACKEND == "memory":
        return InMemorySessionStore()
    raise ValueError(f"Unknown SESSION_BACKEND: {settings.SESSION_BACKEND}")


@lru_cache
def get_file_store() -> FileRecordStore:
    """Return the durable file metadata store."""
    return FileRecordStore(create_db_engine(settings.DATABASE_URL))
