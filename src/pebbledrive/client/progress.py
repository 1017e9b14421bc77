"""Locally persisted upload progress.

One JSON file per upload (logical key ``upload:<uploadId>``) records which
parts the server has acknowledged, so an interrupted upload can be resumed
or, failing that, diagnosed.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class LocalUploadRecord:
    """Client-side state of one chunked upload."""

    upload_id: str
    file_id: str
    file_name: str
    file_size: int
    part_size: int
    uploaded_parts: List[Dict] = field(default_factory=list)
    last_update: int = 0  # epoch milliseconds

    def to_dict(self) -> Dict:
        return {
            "uploadId": self.upload_id,
            "fileId": self.file_id,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "partSize": self.part_size,
            "uploadedParts": self.uploaded_parts,
            "lastUpdate": self.last_update,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "LocalUploadRecord":
        return cls(
            upload_id=data["uploadId"],
            file_id=data["fileId"],
            file_name=data["fileName"],
            file_size=data["fileSize"],
            part_size=data["partSize"],
            uploaded_parts=list(data.get("uploadedParts", [])),
            last_update=data.get("lastUpdate", 0),
        )


class LocalProgressStore:
    """Directory of upload records keyed by upload id."""

    def __init__(self, state_dir: str | Path = ".pebbledrive/uploads"):
        self.state_dir = Path(state_dir)

    def _path(self, upload_id: str) -> Path:
        # "upload:<id>" is not a portable file name
        safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in upload_id)
        return self.state_dir / f"upload_{safe_id}.json"

    def save(self, record: LocalUploadRecord) -> None:
        """Write the record atomically, stamping ``last_update``."""
        record.last_update = int(time.time() * 1000)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(record.upload_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(record.to_dict()))
        tmp_path.replace(path)

    def load(self, upload_id: str) -> Optional[LocalUploadRecord]:
        path = self._path(upload_id)
        if not path.exists():
            return None
        return LocalUploadRecord.from_dict(json.loads(path.read_text()))

    def delete(self, upload_id: str) -> None:
        self._path(upload_id).unlink(missing_ok=True)

    def list_pending(self) -> List[LocalUploadRecord]:
        """All records left behind by unfinished uploads."""
        if not self.state_dir.exists():
            return []
        records = []
        for path in sorted(self.state_dir.glob("upload_*.json")):
            try:
                records.append(LocalUploadRecord.from_dict(json.loads(path.read_text())))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable upload record {path}: {e}")
        return records
