"""Tests for the client upload orchestrator."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from pebbledrive.client.api import UploadAPIClient
from pebbledrive.client.errors import (
    ServerError,
    SessionExpired,
    TransportError,
    UploadCancelled,
    UploadRejected,
)
from pebbledrive.client.orchestrator import ChunkedUpload, UploadQueue, UploadStatus
from pebbledrive.client.progress import LocalProgressStore, LocalUploadRecord
from pebbledrive.client.retry import RetryPolicy
from pebbledrive.main import app


class FakeUploadAPI:
    """In-memory stand-in for UploadAPIClient."""

    def __init__(self, delay: float = 0):
        self.delay = delay
        self.inits = []
        self.chunk_calls = []
        self.parts = {}
        self.completed = []
        self.aborted = []
        self.chunk_errors = {}
        self.failing_files = set()
        self.block_part = None
        self.blocked = asyncio.Event()
        self.active = 0
        self.max_active = 0
        self.on_chunk = None
        self._names = {}
        self.limits = {"maxFileSizeBytes": 10**9, "blockedExtensions": [".exe"]}
        self.limits_error = None
        self.limits_calls = 0

    async def get_limits(self):
        self.limits_calls += 1
        if self.limits_error:
            raise self.limits_error
        return self.limits

    async def init_upload(self, file_name, file_size, file_type, total_chunks):
        self.inits.append((file_name, file_size, file_type, total_chunks))
        n = len(self.inits)
        upload_id = f"upload-{n}"
        self._names[upload_id] = file_name
        return {"success": True, "uploadId": upload_id, "fileId": f"file-{n}"}

    async def upload_chunk(self, upload_id, file_id, part_number, data):
        self.chunk_calls.append((upload_id, part_number))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.on_chunk:
                self.on_chunk(upload_id, part_number)
            if part_number == self.block_part:
                self.blocked.set()
                await asyncio.Event().wait()
            await asyncio.sleep(self.delay)
            if self._names.get(upload_id) in self.failing_files:
                raise ServerError("storage unavailable", status_code=500)
            errors = self.chunk_errors.get(part_number)
            if errors:
                raise errors.pop(0)
            self.parts.setdefault(upload_id, {})[part_number] = data
            return {"success": True, "partNumber": part_number, "etag": f'"etag-{part_number}"'}
        finally:
            self.active -= 1

    async def complete_upload(self, upload_id, file_id, parts):
        self.completed.append((upload_id, file_id, parts))
        return {"fileId": file_id, "name": self._names.get(upload_id, "resumed")}

    async def abort_upload(self, upload_id, file_id):
        self.aborted.append((upload_id, file_id))
        return {"success": True}


@pytest.fixture
def progress_store(tmp_path):
    """Progress store in a temporary directory."""
    return LocalProgressStore(tmp_path / "state")


@pytest.fixture
def sample_file(tmp_path):
    """A 10-byte file, three parts at part size 4."""
    path = tmp_path / "notes.txt"
    path.write_bytes(b"0123456789")
    return path


class TestChunkedUpload:
    """Tests for single-file uploads."""

    @pytest.mark.asyncio
    async def test_upload_in_order(self, sample_file, progress_store):
        api = FakeUploadAPI()
        upload = ChunkedUpload(sample_file, api, progress_store, part_size=4)

        result = await upload.run()

        assert result["fileId"] == "file-1"
        assert upload.status == UploadStatus.COMPLETED
        assert api.inits == [("notes.txt", 10, "text/plain", 3)]
        assert [p for _, p in api.chunk_calls] == [1, 2, 3]
        assert api.parts["upload-1"] == {1: b"0123", 2: b"4567", 3: b"89"}
        upload_id, file_id, parts = api.completed[0]
        assert parts == [
            {"partNumber": 1, "etag": '"etag-1"'},
            {"partNumber": 2, "etag": '"etag-2"'},
            {"partNumber": 3, "etag": '"etag-3"'},
        ]
        assert progress_store.load("upload-1") is None

    @pytest.mark.asyncio
    async def test_progress_persisted_after_each_part(self, sample_file, progress_store):
        api = FakeUploadAPI()
        seen = []
        api.on_chunk = lambda upload_id, part: seen.append(
            len(progress_store.load(upload_id).uploaded_parts)
        )
        reports = []
        upload = ChunkedUpload(
            sample_file,
            api,
            progress_store,
            part_size=4,
            on_progress=lambda name, done, total: reports.append((name, done, total)),
        )

        await upload.run()

        assert seen == [0, 1, 2]
        assert reports == [("notes.txt", 4, 10), ("notes.txt", 8, 10), ("notes.txt", 10, 10)]

    @pytest.mark.asyncio
    async def test_empty_file_rejected(self, tmp_path, progress_store):
        path = tmp_path / "empty.txt"
        path.write_bytes(b"")
        api = FakeUploadAPI()
        upload = ChunkedUpload(path, api, progress_store)

        with pytest.raises(ValueError):
            await upload.run()

        assert upload.status == UploadStatus.FAILED
        assert api.inits == []

    @pytest.mark.asyncio
    async def test_failure_without_retry_keeps_record(self, sample_file, progress_store):
        """By default the first failed part ends the upload."""
        api = FakeUploadAPI()
        api.chunk_errors[2] = [ServerError("boom", status_code=500)]
        upload = ChunkedUpload(sample_file, api, progress_store, part_size=4)

        with pytest.raises(ServerError):
            await upload.run()

        assert upload.status == UploadStatus.FAILED
        assert [p for _, p in api.chunk_calls] == [1, 2]
        assert api.aborted == []
        record = progress_store.load("upload-1")
        assert record.uploaded_parts == [{"partNumber": 1, "etag": '"etag-1"'}]

    @pytest.mark.asyncio
    async def test_abort_on_failure(self, sample_file, progress_store):
        api = FakeUploadAPI()
        api.chunk_errors[2] = [ServerError("boom", status_code=500)]
        upload = ChunkedUpload(
            sample_file, api, progress_store, part_size=4, abort_on_failure=True
        )

        with pytest.raises(ServerError):
            await upload.run()

        assert api.aborted == [("upload-1", "file-1")]
        assert progress_store.load("upload-1") is None

    @pytest.mark.asyncio
    async def test_retry_policy_retries_transient_errors(self, sample_file, progress_store):
        api = FakeUploadAPI()
        api.chunk_errors[2] = [TransportError("reset"), ServerError("busy", status_code=503)]
        sleep = AsyncMock()
        upload = ChunkedUpload(
            sample_file,
            api,
            progress_store,
            part_size=4,
            retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0.5),
            sleep=sleep,
        )

        await upload.run()

        assert upload.status == UploadStatus.COMPLETED
        assert [p for _, p in api.chunk_calls] == [1, 2, 2, 2, 3]
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_gives_up_after_max_attempts(self, sample_file, progress_store):
        api = FakeUploadAPI()
        api.chunk_errors[1] = [TransportError("reset") for _ in range(5)]
        upload = ChunkedUpload(
            sample_file,
            api,
            progress_store,
            part_size=4,
            retry_policy=RetryPolicy(max_attempts=2),
            sleep=AsyncMock(),
        )

        with pytest.raises(TransportError):
            await upload.run()

        assert len(api.chunk_calls) == 2

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, sample_file, progress_store):
        api = FakeUploadAPI()
        api.chunk_errors[1] = [SessionExpired("gone", status_code=404)]
        upload = ChunkedUpload(
            sample_file,
            api,
            progress_store,
            part_size=4,
            retry_policy=RetryPolicy(max_attempts=5),
            sleep=AsyncMock(),
        )

        with pytest.raises(SessionExpired):
            await upload.run()

        assert len(api.chunk_calls) == 1
        assert upload.status == UploadStatus.FAILED
        # An expired session cannot be resumed
        assert progress_store.load("upload-1") is None

    @pytest.mark.asyncio
    async def test_cancel_interrupts_inflight_part(self, sample_file, progress_store):
        api = FakeUploadAPI()
        api.block_part = 2
        upload = ChunkedUpload(sample_file, api, progress_store, part_size=4)

        task = asyncio.create_task(upload.run())
        await asyncio.wait_for(api.blocked.wait(), timeout=5)
        upload.cancel()

        with pytest.raises(UploadCancelled):
            await asyncio.wait_for(task, timeout=5)

        assert upload.status == UploadStatus.CANCELLED
        assert api.aborted == [("upload-1", "file-1")]
        assert api.completed == []
        assert progress_store.load("upload-1") is None

    @pytest.mark.asyncio
    async def test_cancel_during_retry_backoff_is_prompt(self, sample_file, progress_store):
        api = FakeUploadAPI()
        api.chunk_errors[1] = [ServerError("busy", status_code=503) for _ in range(3)]
        first_failure = asyncio.Event()
        api.on_chunk = lambda upload_id, part: first_failure.set()
        upload = ChunkedUpload(
            sample_file,
            api,
            progress_store,
            part_size=4,
            retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=30, max_backoff_seconds=30),
        )

        task = asyncio.create_task(upload.run())
        await asyncio.wait_for(first_failure.wait(), timeout=5)
        await asyncio.sleep(0.05)
        upload.cancel()

        with pytest.raises(UploadCancelled):
            await asyncio.wait_for(task, timeout=2)

        assert upload.status == UploadStatus.CANCELLED
        assert len(api.chunk_calls) == 1
        assert api.aborted == [("upload-1", "file-1")]
        assert progress_store.load("upload-1") is None

    @pytest.mark.asyncio
    async def test_limits_reject_oversized_file(self, sample_file, progress_store):
        api = FakeUploadAPI()
        upload = ChunkedUpload(
            sample_file, api, progress_store, limits={"maxFileSizeBytes": 5, "blockedExtensions": []}
        )

        with pytest.raises(UploadRejected) as exc_info:
            await upload.run()

        assert exc_info.value.code == "file_too_large"
        assert upload.status == UploadStatus.FAILED
        assert api.inits == []

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self, sample_file, progress_store):
        api = FakeUploadAPI()
        upload = ChunkedUpload(sample_file, api, progress_store, part_size=4)
        await upload.run()

        upload.cancel()

        assert upload.status == UploadStatus.COMPLETED
        assert api.aborted == []

    @pytest.mark.asyncio
    async def test_resume_uploads_remaining_parts(self, sample_file, progress_store):
        progress_store.save(
            LocalUploadRecord(
                upload_id="upload-9",
                file_id="file-9",
                file_name="notes.txt",
                file_size=10,
                part_size=4,
                uploaded_parts=[{"partNumber": 1, "etag": '"etag-1"'}],
            )
        )
        api = FakeUploadAPI()
        reports = []

        upload = ChunkedUpload.resume(
            "upload-9",
            sample_file,
            api,
            progress_store,
            on_progress=lambda name, done, total: reports.append(done),
        )
        await upload.run()

        assert api.inits == []
        assert api.parts["upload-9"] == {2: b"4567", 3: b"89"}
        assert [p["partNumber"] for p in api.completed[0][2]] == [1, 2, 3]
        assert reports == [8, 10]
        assert progress_store.load("upload-9") is None

    def test_resume_without_record(self, sample_file, progress_store):
        with pytest.raises(ValueError):
            ChunkedUpload.resume("missing", sample_file, FakeUploadAPI(), progress_store)

    def test_resume_with_changed_file(self, sample_file, progress_store):
        progress_store.save(
            LocalUploadRecord(
                upload_id="upload-9",
                file_id="file-9",
                file_name="notes.txt",
                file_size=999,
                part_size=4,
            )
        )

        with pytest.raises(ValueError):
            ChunkedUpload.resume("upload-9", sample_file, FakeUploadAPI(), progress_store)


class TestUploadQueue:
    """Tests for multi-file uploads."""

    def _make_files(self, tmp_path, count):
        paths = []
        for i in range(count):
            path = tmp_path / f"file{i}.bin"
            path.write_bytes(bytes([i]) * 9)
            paths.append(path)
        return paths

    @pytest.mark.asyncio
    async def test_at_most_three_concurrent(self, tmp_path, progress_store):
        api = FakeUploadAPI(delay=0.05)
        queue = UploadQueue(api, progress_store, part_size=4)
        for path in self._make_files(tmp_path, 6):
            queue.add(path)

        outcomes = await queue.run()

        assert [o.status for o in outcomes] == [UploadStatus.COMPLETED] * 6
        assert api.max_active == 3

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, tmp_path, progress_store):
        api = FakeUploadAPI()
        api.failing_files.add("file1.bin")
        queue = UploadQueue(api, progress_store, part_size=4)
        for path in self._make_files(tmp_path, 4):
            queue.add(path)

        outcomes = await queue.run()

        assert [o.file_name for o in outcomes] == ["file0.bin", "file1.bin", "file2.bin", "file3.bin"]
        assert [o.status for o in outcomes] == [
            UploadStatus.COMPLETED,
            UploadStatus.FAILED,
            UploadStatus.COMPLETED,
            UploadStatus.COMPLETED,
        ]
        assert "storage unavailable" in outcomes[1].error
        assert outcomes[0].record["fileId"]

    @pytest.mark.asyncio
    async def test_cancel_all_before_start(self, tmp_path, progress_store):
        api = FakeUploadAPI()
        queue = UploadQueue(api, progress_store, part_size=4)
        for path in self._make_files(tmp_path, 2):
            queue.add(path)

        queue.cancel_all()
        outcomes = await queue.run()

        assert [o.status for o in outcomes] == [UploadStatus.CANCELLED] * 2
        assert api.inits == []

    @pytest.mark.asyncio
    async def test_files_outside_limits_fail_before_init(self, tmp_path, progress_store):
        api = FakeUploadAPI()
        api.limits = {"maxFileSizeBytes": 9, "blockedExtensions": [".exe"]}
        ok, big, blocked = tmp_path / "ok.txt", tmp_path / "big.txt", tmp_path / "setup.EXE"
        ok.write_bytes(b"x" * 9)
        big.write_bytes(b"x" * 10)
        blocked.write_bytes(b"x" * 3)
        queue = UploadQueue(api, progress_store, part_size=4)
        for path in (ok, big, blocked):
            queue.add(path)

        outcomes = await queue.run()

        assert [o.status for o in outcomes] == [
            UploadStatus.COMPLETED,
            UploadStatus.FAILED,
            UploadStatus.FAILED,
        ]
        assert "limit is 9" in outcomes[1].error
        assert ".exe" in outcomes[2].error
        assert [init[0] for init in api.inits] == ["ok.txt"]
        assert api.limits_calls == 1

    @pytest.mark.asyncio
    async def test_unavailable_limits_do_not_block_uploads(self, tmp_path, progress_store):
        api = FakeUploadAPI()
        api.limits_error = ServerError("down", status_code=503)
        queue = UploadQueue(api, progress_store, part_size=4)
        for path in self._make_files(tmp_path, 2):
            queue.add(path)

        outcomes = await queue.run()

        assert [o.status for o in outcomes] == [UploadStatus.COMPLETED] * 2

    @pytest.mark.asyncio
    async def test_prevalidate_disabled_skips_limits(self, tmp_path, progress_store):
        api = FakeUploadAPI()
        queue = UploadQueue(api, progress_store, part_size=4, prevalidate=False)
        queue.add(self._make_files(tmp_path, 1)[0])

        await queue.run()

        assert api.limits_calls == 0

    @pytest.mark.asyncio
    async def test_malformed_part_response_fails_only_that_file(self, tmp_path, progress_store):
        api = FakeUploadAPI()
        bad_upload = []
        real_upload_chunk = api.upload_chunk

        async def upload_chunk(upload_id, file_id, part_number, data):
            if upload_id in bad_upload:
                return {"success": True}
            return await real_upload_chunk(upload_id, file_id, part_number, data)

        api.upload_chunk = upload_chunk
        paths = self._make_files(tmp_path, 2)
        queue = UploadQueue(api, progress_store, max_concurrent=1, part_size=4)
        for path in paths:
            queue.add(path)
        bad_upload.append("upload-1")

        outcomes = await queue.run()

        assert [o.status for o in outcomes] == [UploadStatus.FAILED, UploadStatus.COMPLETED]
        assert queue.uploads[0].status == UploadStatus.FAILED


@pytest.mark.asyncio
async def test_end_to_end_against_app(tmp_path, override_stores, auth_token, object_store, file_store):
    """The orchestrator drives the real routes and the file is assembled intact."""
    content = bytes(range(256)) * 3
    path = tmp_path / "payload.dat"
    path.write_bytes(content)
    progress_store = LocalProgressStore(tmp_path / "state")

    async with UploadAPIClient(
        "http://testserver", token=auth_token, transport=httpx.ASGITransport(app=app)
    ) as api:
        upload = ChunkedUpload(path, api, progress_store, part_size=100)
        record = await upload.run()

    assert record["name"] == "payload.dat"
    assert record["size"] == len(content)
    assert record["downloadUrl"] == f"/api/download?id={record['fileId']}"
    assert object_store.get_object_path(record["fileId"]).read_bytes() == content
    assert file_store.get(record["fileId"]) is not None
    assert progress_store.list_pending() == []
