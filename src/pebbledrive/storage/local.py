"""Local filesystem object store with multipart write emulation."""

import asyncio
import contextlib
import hashlib
import json
import logging
import re
import shutil
from pathlib import Path
from typing import Sequence
from uuid import uuid4

from pebbledrive.storage.base import (
    InvalidPartError,
    NoSuchUploadError,
    ObjectStore,
    PartRef,
)

logger = logging.getLogger(__name__)

MULTIPART_DIR = ".multipart"


class LocalObjectStore(ObjectStore):
    """Filesystem object store.

    In-progress writes live under ``<base>/.multipart/<upload_id>/`` with one
    file per part; finalizing concatenates them into ``<base>/<key>``.
    Finalize enforces the same rules as S3: parts strictly ascending,
    contiguous from 1, and each etag matching the stored part.
    """

    def __init__(self, base_path: str | Path = "data/objects"):
        self.base_path = Path(base_path)

    def get_object_path(self, key: str) -> Path:
        """Path of an assembled object."""
        return self.base_path / self._sanitize_key(key)

    def _upload_dir(self, upload_id: str) -> Path:
        return self.base_path / MULTIPART_DIR / self._sanitize_key(upload_id)

    @staticmethod
    @contextlib.contextmanager
    def _missing_upload(upload_id: str):
        """Report files removed by a concurrent complete or abort as a missing upload."""
        try:
            yield
        except FileNotFoundError as e:
            raise NoSuchUploadError(f"NoSuchUpload: upload {upload_id} was removed") from e

    def _load_upload(self, key: str, upload_id: str) -> Path:
        """Return the directory of an in-progress write owned by ``key``."""
        upload_dir = self._upload_dir(upload_id)
        meta_path = upload_dir / "upload.json"
        if not meta_path.exists():
            raise NoSuchUploadError(f"NoSuchUpload: upload {upload_id} does not exist")
        with self._missing_upload(upload_id):
            meta = json.loads(meta_path.read_text())
        if meta.get("key") != key:
            raise NoSuchUploadError(f"NoSuchUpload: upload {upload_id} does not belong to {key}")
        return upload_dir

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        upload_id = uuid4().hex
        upload_dir = self._upload_dir(upload_id)

        def _create() -> None:
            upload_dir.mkdir(parents=True, exist_ok=False)
            (upload_dir / "upload.json").write_text(
                json.dumps({"key": key, "content_type": content_type})
            )

        await asyncio.to_thread(_create)
        logger.debug(f"Opened local multipart upload: key={key}, upload_id={upload_id}")
        return upload_id

    async def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        def _write() -> str:
            upload_dir = self._load_upload(key, upload_id)
            with self._missing_upload(upload_id):
                (upload_dir / f"{part_number:05d}.part").write_bytes(data)
            return hashlib.md5(data).hexdigest()

        return await asyncio.to_thread(_write)

    async def complete_multipart_upload(
        self, key: str, upload_id: str, parts: Sequence[PartRef]
    ) -> None:
        def _complete() -> None:
            upload_dir = self._load_upload(key, upload_id)

            if not parts:
                raise InvalidPartError("InvalidPart: at least one part must be specified")

            for expected, part in enumerate(parts, start=1):
                if part.part_number != expected:
                    raise InvalidPartError(
                        f"InvalidPartOrder: expected part {expected}, got {part.part_number}"
                    )

            part_paths = []
            for part in parts:
                part_path = upload_dir / f"{part.part_number:05d}.part"
                if not part_path.exists():
                    raise InvalidPartError(f"InvalidPart: part {part.part_number} was not uploaded")
                with self._missing_upload(upload_id):
                    digest = hashlib.md5(part_path.read_bytes()).hexdigest()
                if digest != part.etag.strip('"'):
                    raise InvalidPartError(f"InvalidPart: etag mismatch for part {part.part_number}")
                part_paths.append(part_path)

            target = self.get_object_path(key)
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_target = target.with_name(f".{target.name}.{upload_id}.tmp")
            try:
                with self._missing_upload(upload_id), open(tmp_target, "wb") as out:
                    for part_path in part_paths:
                        with open(part_path, "rb") as part_file:
                            shutil.copyfileobj(part_file, out, 1024 * 1024)
            except NoSuchUploadError:
                tmp_target.unlink(missing_ok=True)
                raise
            with self._missing_upload(upload_id):
                tmp_target.replace(target)

            # The object is final, a concurrent abort may already have removed the parts
            shutil.rmtree(upload_dir, ignore_errors=True)

        await asyncio.to_thread(_complete)
        logger.debug(f"Completed local multipart upload: key={key}, parts={len(parts)}")

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        def _abort() -> None:
            upload_dir = self._load_upload(key, upload_id)
            with self._missing_upload(upload_id):
                shutil.rmtree(upload_dir)

        await asyncio.to_thread(_abort)

    def get_backend_name(self) -> str:
        return "local"

    @staticmethod
    def _sanitize_key(key: str) -> str:
        """Remove path traversal and dangerous characters."""
        safe = key.replace("../", "").replace("..\\", "")
        safe = safe.replace("/", "_").replace("\\", "_")
        safe = re.sub(r"[^a-zA-Z0-9._-]", "_", safe)
        return safe[:255]
