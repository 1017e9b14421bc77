"""Durable file metadata store.

This module persists one row per assembled file in the ``files`` table.
"""

import logging
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Index,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from pebbledrive.core.exceptions import MetadataStoreError
from pebbledrive.models.upload import FileRecord

logger = logging.getLogger(__name__)

metadata = MetaData()

files_table = Table(
    "files",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(1024), nullable=False),
    Column("size", BigInteger, nullable=False),
    Column("type", String(255), nullable=False),
    Column("uploadDate", String(64), nullable=False),
    Column("downloadUrl", String(1024), nullable=False),
    Index("idx_files_uploadDate", "uploadDate"),
)


def create_db_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite") and (":memory:" in url or url == "sqlite://"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


class FileRecordStore:
    """Store for completed file records."""

    def __init__(self, engine: Engine):
        """Initialize the store and make sure the schema exists.

        Args:
            engine: SQLAlchemy engine of the metadata database
        """
        self.engine = engine
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the ``files`` table if it does not exist.

        Idempotent; safe to call on every cold start.
        """
        try:
            metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Failed to initialize metadata schema: {e}") from e

    def save(self, record: FileRecord) -> None:
        """Insert a file record.

        Raises:
            MetadataStoreError: If the insert fails, including a duplicate file id
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(files_table).values(
                        id=record.file_id,
                        name=record.name,
                        size=record.size,
                        type=record.type,
                        uploadDate=record.upload_date,
                        downloadUrl=record.download_url,
                    )
                )
        except IntegrityError as e:
            raise MetadataStoreError(
                f"File record already exists: {record.file_id}", fileId=record.file_id
            ) from e
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Failed to save file record: {e}") from e

        logger.info(f"Saved file record: file_id={record.file_id}, size={record.size}")

    def get(self, file_id: str) -> Optional[FileRecord]:
        """Retrieve a file record by id."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(files_table).where(files_table.c.id == file_id)
            ).mappings().first()
        if row is None:
            return None
        return FileRecord(
            file_id=row["id"],
            name=row["name"],
            size=row["size"],
            type=row["type"],
            upload_date=row["uploadDate"],
            download_url=row["downloadUrl"],
        )

    def count(self) -> int:
        """Number of stored records."""
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(files_table)).scalar_one()
