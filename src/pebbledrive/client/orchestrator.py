"""Client upload orchestrator.

``ChunkedUpload`` drives one file through init, sequential part uploads and
completion. ``UploadQueue`` runs several of them with bounded concurrency.
"""

import asyncio
import logging
import math
import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pebbledrive.client.api import UploadAPIClient
from pebbledrive.client.errors import (
    SessionExpired,
    UploadCancelled,
    UploadClientError,
    UploadRejected,
)
from pebbledrive.client.progress import LocalProgressStore, LocalUploadRecord
from pebbledrive.client.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_PART_SIZE = 50 * 1024 * 1024
MAX_CONCURRENT_UPLOADS = 3

ProgressCallback = Callable[[str, int, int], None]


class UploadStatus(str, Enum):
    """Lifecycle of a single file upload."""

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ChunkedUpload:
    """Upload one file in fixed-size parts.

    Parts go up strictly in ascending order with one request in flight.
    After each acknowledged part the running part list is persisted to the
    local progress store. ``cancel()`` interrupts the in-flight request and
    asks the server to abort.
    """

    def __init__(
        self,
        path: str | Path,
        api: UploadAPIClient,
        progress_store: LocalProgressStore,
        part_size: int = DEFAULT_PART_SIZE,
        content_type: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        on_progress: Optional[ProgressCallback] = None,
        abort_on_failure: bool = False,
        limits: Optional[Dict[str, Any]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if part_size < 1:
            raise ValueError("part_size must be positive")
        self.path = Path(path)
        self.api = api
        self.progress_store = progress_store
        self.part_size = part_size
        self.content_type = content_type or mimetypes.guess_type(self.path.name)[0]
        self.retry_policy = retry_policy or RetryPolicy()
        self.on_progress = on_progress
        self.abort_on_failure = abort_on_failure
        self.limits = limits
        self._sleep = sleep

        self.status = UploadStatus.PENDING
        self.record: Optional[LocalUploadRecord] = None
        self.error: Optional[Exception] = None
        self._cancel_requested = False
        self._cancel_event = asyncio.Event()
        self._inflight: Optional[asyncio.Future] = None

    @classmethod
    def resume(
        cls,
        upload_id: str,
        path: str | Path,
        api: UploadAPIClient,
        progress_store: LocalProgressStore,
        **kwargs: Any,
    ) -> "ChunkedUpload":
        """Rebuild an interrupted upload from its local record.

        Raises:
            ValueError: If no record exists or the file no longer matches it
        """
        record = progress_store.load(upload_id)
        if record is None:
            raise ValueError(f"No local state for upload {upload_id}")

        path = Path(path)
        if path.stat().st_size != record.file_size:
            raise ValueError(
                f"{path} is {path.stat().st_size} bytes, upload {upload_id} "
                f"expects {record.file_size}"
            )

        kwargs["part_size"] = record.part_size
        upload = cls(path, api, progress_store, **kwargs)
        upload.record = record
        return upload

    @property
    def file_name(self) -> str:
        return self.path.name

    @property
    def uploaded_parts(self) -> List[Dict]:
        return list(self.record.uploaded_parts) if self.record else []

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Request cancellation; the in-flight request is interrupted immediately."""
        if self.status in (UploadStatus.COMPLETED, UploadStatus.FAILED, UploadStatus.CANCELLED):
            return
        self._cancel_requested = True
        self._cancel_event.set()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

    async def _guarded(self, coro: Awaitable[Dict]) -> Dict:
        """Await a request so that ``cancel()`` can interrupt it."""
        if self._cancel_requested:
            if asyncio.iscoroutine(coro):
                coro.close()
            raise UploadCancelled(f"Upload of {self.file_name} was cancelled")
        self._inflight = asyncio.ensure_future(coro)
        try:
            return await self._inflight
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise UploadCancelled(f"Upload of {self.file_name} was cancelled") from None
            raise
        finally:
            self._inflight = None

    def _read_part(self, part_number: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek((part_number - 1) * self.part_size)
            return f.read(self.part_size)

    async def _backoff(self, delay: float) -> None:
        """Wait out a retry backoff unless ``cancel()`` is called first."""
        sleep = self._sleep or asyncio.sleep
        waiter = asyncio.ensure_future(sleep(delay))
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({waiter, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            cancelled.cancel()
        if self._cancel_event.is_set():
            raise UploadCancelled(f"Upload of {self.file_name} was cancelled")

    def _check_limits(self, file_size: int) -> None:
        """Reject files the server would refuse, before opening a session."""
        if not self.limits:
            return
        max_bytes = self.limits.get("maxFileSizeBytes")
        if max_bytes is not None and file_size > max_bytes:
            raise UploadRejected(
                f"{self.file_name} is {file_size} bytes, the limit is {max_bytes}",
                code="file_too_large",
            )
        extension = self.path.suffix.lower()
        if extension and extension in self.limits.get("blockedExtensions", []):
            raise UploadRejected(
                f"File type {extension} is not allowed", code="blocked_file_type"
            )

    async def _send_part(self, part_number: int, data: bytes) -> Dict:
        record = self.record
        async for attempt in self.retry_policy.retrying(sleep=self._backoff):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying part {part_number} of {self.file_name} "
                        f"(attempt {attempt.retry_state.attempt_number}/{self.retry_policy.max_attempts})"
                    )
                return await self._guarded(
                    self.api.upload_chunk(record.upload_id, record.file_id, part_number, data)
                )

    async def _start_session(self, file_size: int, total_chunks: int) -> None:
        init = await self._guarded(
            self.api.init_upload(self.file_name, file_size, self.content_type, total_chunks)
        )
        self.record = LocalUploadRecord(
            upload_id=init["uploadId"],
            file_id=init["fileId"],
            file_name=self.file_name,
            file_size=file_size,
            part_size=self.part_size,
        )
        self.progress_store.save(self.record)
        logger.info(
            f"Upload session opened: file={self.file_name}, upload_id={self.record.upload_id}, "
            f"chunks={total_chunks}"
        )

    async def _abort_remote(self) -> None:
        """Best-effort server-side abort; failures are only logged."""
        if self.record is None:
            return
        try:
            await self.api.abort_upload(self.record.upload_id, self.record.file_id)
        except UploadClientError as e:
            logger.warning(
                f"Abort request failed for {self.file_name}, session will expire on its own: {e}"
            )

    async def run(self) -> Dict:
        """Upload the file and return the server's file record.

        Raises:
            UploadCancelled: If ``cancel()`` was called
            SessionExpired: If the server forgot the session; the upload must restart
            UploadClientError: For any other failed request
        """
        if self.status != UploadStatus.PENDING:
            raise RuntimeError(f"Upload of {self.file_name} already {self.status.value}")
        self.status = UploadStatus.UPLOADING

        try:
            file_size = self.path.stat().st_size
            if file_size == 0:
                raise ValueError(f"Cannot upload empty file {self.file_name}")
            total_chunks = math.ceil(file_size / self.part_size)

            if self.record is None:
                self._check_limits(file_size)
                await self._start_session(file_size, total_chunks)
            else:
                logger.info(
                    f"Resuming upload of {self.file_name}: "
                    f"{len(self.record.uploaded_parts)}/{total_chunks} parts done"
                )

            done = {p["partNumber"] for p in self.record.uploaded_parts}
            bytes_uploaded = sum(
                min(self.part_size, file_size - (n - 1) * self.part_size) for n in done
            )

            for part_number in range(1, total_chunks + 1):
                if part_number in done:
                    continue
                data = await asyncio.to_thread(self._read_part, part_number)
                result = await self._send_part(part_number, data)

                self.record.uploaded_parts.append(
                    {"partNumber": result["partNumber"], "etag": result["etag"]}
                )
                self.progress_store.save(self.record)

                bytes_uploaded += len(data)
                if self.on_progress:
                    self.on_progress(self.file_name, bytes_uploaded, file_size)

            parts = sorted(self.record.uploaded_parts, key=lambda p: p["partNumber"])
            file_record = await self._guarded(
                self.api.complete_upload(self.record.upload_id, self.record.file_id, parts)
            )
        except UploadCancelled as e:
            self.status = UploadStatus.CANCELLED
            self.error = e
            await self._abort_remote()
            if self.record is not None:
                self.progress_store.delete(self.record.upload_id)
            logger.info(f"Upload cancelled: {self.file_name}")
            raise
        except SessionExpired as e:
            self.status = UploadStatus.FAILED
            self.error = e
            if self.record is not None:
                self.progress_store.delete(self.record.upload_id)
            logger.error(f"Upload session expired for {self.file_name}: {e}")
            raise
        except (UploadClientError, OSError, ValueError, KeyError) as e:
            self.status = UploadStatus.FAILED
            self.error = e
            if self.abort_on_failure:
                await self._abort_remote()
                if self.record is not None:
                    self.progress_store.delete(self.record.upload_id)
            logger.error(f"Upload failed for {self.file_name}: {e}")
            raise

        self.progress_store.delete(self.record.upload_id)
        self.status = UploadStatus.COMPLETED
        logger.info(f"Upload completed: {self.file_name} -> {file_record.get('fileId')}")
        return file_record


@dataclass
class UploadOutcome:
    """Terminal result of one queued upload."""

    file_name: str
    status: UploadStatus
    record: Optional[Dict] = None
    error: Optional[str] = None


class UploadQueue:
    """Run chunked uploads for several files, at most ``max_concurrent`` at a time."""

    def __init__(
        self,
        api: UploadAPIClient,
        progress_store: LocalProgressStore,
        max_concurrent: int = MAX_CONCURRENT_UPLOADS,
        prevalidate: bool = True,
        **upload_options: Any,
    ):
        self.api = api
        self.progress_store = progress_store
        self.max_concurrent = max_concurrent
        self.prevalidate = prevalidate
        self.upload_options = upload_options
        self.uploads: List[ChunkedUpload] = []

    def add(self, path: str | Path, content_type: Optional[str] = None) -> ChunkedUpload:
        upload = ChunkedUpload(
            path,
            self.api,
            self.progress_store,
            content_type=content_type,
            **self.upload_options,
        )
        self.uploads.append(upload)
        return upload

    def cancel_all(self) -> None:
        for upload in self.uploads:
            upload.cancel()

    async def _fetch_limits(self) -> Optional[Dict[str, Any]]:
        """Fetch the server limits once per run; the server still validates on init."""
        if not self.prevalidate:
            return None
        try:
            return await self.api.get_limits()
        except UploadClientError as e:
            logger.warning(f"Could not fetch upload limits, skipping pre-validation: {e}")
            return None

    async def run(self) -> List[UploadOutcome]:
        """Upload every pending file; one failure never stops the others."""
        semaphore = asyncio.Semaphore(self.max_concurrent)
        limits = await self._fetch_limits()

        async def _run_one(upload: ChunkedUpload) -> UploadOutcome:
            async with semaphore:
                if upload.cancel_requested:
                    upload.status = UploadStatus.CANCELLED
                    return UploadOutcome(upload.file_name, UploadStatus.CANCELLED)
                if limits and upload.limits is None:
                    upload.limits = limits
                try:
                    record = await upload.run()
                    return UploadOutcome(upload.file_name, UploadStatus.COMPLETED, record=record)
                except UploadCancelled:
                    return UploadOutcome(upload.file_name, UploadStatus.CANCELLED)
                except (UploadClientError, OSError, ValueError, KeyError) as e:
                    return UploadOutcome(upload.file_name, UploadStatus.FAILED, error=str(e))

        pending = [u for u in self.uploads if u.status == UploadStatus.PENDING]
        return list(await asyncio.gather(*[_run_one(u) for u in pending]))
