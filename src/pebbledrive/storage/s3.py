"""S3-compatible object store backend (AWS S3, Cloudflare R2, MinIO)."""

import asyncio
import logging
from typing import Any, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from pebbledrive.core.config import settings
from pebbledrive.storage.base import (
    InvalidPartError,
    NoSuchUploadError,
    ObjectStore,
    ObjectStoreError,
    PartRef,
)

logger = logging.getLogger(__name__)

INVALID_PART_CODES = {"InvalidPart", "InvalidPartOrder", "EntityTooSmall", "MalformedXML"}


def _translate_error(exc: Exception) -> ObjectStoreError:
    """Map a boto error onto the object store exception hierarchy."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code", "")
        message = f"{code}: {error.get('Message', str(exc))}"
        if code == "NoSuchUpload":
            return NoSuchUploadError(message)
        if code in INVALID_PART_CODES:
            return InvalidPartError(message)
        return ObjectStoreError(message)
    return ObjectStoreError(str(exc))


class S3ObjectStore(ObjectStore):
    """Multipart writes against an S3-compatible bucket."""

    def __init__(self, bucket: Optional[str] = None, client: Any = None):
        self._bucket = bucket
        self._client = client

    @property
    def bucket(self) -> str:
        bucket = self._bucket or settings.S3_BUCKET
        if not bucket:
            raise ValueError("S3_BUCKET not configured")
        return bucket

    def _get_client(self) -> Any:
        """Lazy-load and cache the boto3 client."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.S3_ENDPOINT_URL,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
                region_name=settings.AWS_REGION,
            )
            logger.info(f"S3 object store initialized for bucket: {self.bucket}")
        return self._client

    async def _call(self, operation: str, **kwargs: Any) -> dict:
        client = self._get_client()
        try:
            return await asyncio.to_thread(getattr(client, operation), **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e) from e

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        response = await self._call(
            "create_multipart_upload",
            Bucket=self.bucket,
            Key=key,
            ContentType=content_type,
        )
        return response["UploadId"]

    async def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        response = await self._call(
            "upload_part",
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=data,
        )
        return response["ETag"]

    async def complete_multipart_upload(
        self, key: str, upload_id: str, parts: Sequence[PartRef]
    ) -> None:
        await self._call(
            "complete_multipart_upload",
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [{"PartNumber": p.part_number, "ETag": p.etag} for p in parts]
            },
        )

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        await self._call(
            "abort_multipart_upload",
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
        )

    def get_backend_name(self) -> str:
        return "s3"
