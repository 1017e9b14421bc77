"""Abstract object store interface for multipart writes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence


class ObjectStoreError(Exception):
    """Base exception raised by object store backends."""
    pass


class NoSuchUploadError(ObjectStoreError):
    """The multipart write does not exist (never opened, finalized, aborted or expired)."""
    pass


class InvalidPartError(ObjectStoreError):
    """The store rejected the part list given to finalize."""
    pass


@dataclass(frozen=True)
class PartRef:
    """A numbered part and the content digest the store assigned to it."""

    part_number: int
    etag: str


class ObjectStore(ABC):
    """Abstract base class for multipart-capable object stores."""

    @abstractmethod
    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        """Begin a multipart write.

        Args:
            key: Object key the assembled file will be stored under
            content_type: MIME type of the final object

        Returns:
            Upload id identifying the in-progress write
        """
        pass

    @abstractmethod
    async def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        """Append a numbered part to an in-progress write.

        Returns:
            Content digest (etag) of the stored part

        Raises:
            NoSuchUploadError: If the write does not exist
        """
        pass

    @abstractmethod
    async def complete_multipart_upload(
        self, key: str, upload_id: str, parts: Sequence[PartRef]
    ) -> None:
        """Assemble the listed parts into the final object.

        Parts must be strictly ascending by part number.

        Raises:
            NoSuchUploadError: If the write does not exist
            InvalidPartError: If the part list has gaps, duplicates or unknown digests
        """
        pass

    @abstractmethod
    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """Abandon an in-progress write and discard its parts.

        Raises:
            NoSuchUploadError: If the write does not exist
        """
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass
