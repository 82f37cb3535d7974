"""Record store for clip-qa.

All video records live in a single JSON document. Every mutation reads
the whole document, applies the change in memory, and commits the whole
document with an atomic temp-file-then-rename write, so a crash leaves
either the old or the new contents on disk, never a torn file.

Layout under the data directory:

    db.json
    videos/<id>/original.mp4
    videos/<id>/prepared.mp4      (precise mode cache)
    videos/<id>/clips/clip_000.mp4
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from clip_qa.errors import AlreadyExistsError, NotFoundError, StorageError
from clip_qa.models.video import VideoRecord

DB_FILENAME = "db.json"
SCHEMA_VERSION = 1

# Fields added after the first release, with the values old records get
RECORD_DEFAULTS: dict[str, Any] = {
    "prepared_path": None,
    "review_status": "pending",
    "metadata": None,
    "job_state": "NOT_STARTED",
    "last_error": None,
    "outputs": [],
    "last_job_duration_seconds": None,
    "last_job_mode": None,
}


def atomic_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    """Write data to a file atomically.

    Writes to a temporary file in the same directory, then renames to target.
    This prevents data corruption from interrupted writes (e.g., kill -9).

    Args:
        path: Target file path
        data: String data to write
        encoding: File encoding (default utf-8)

    Raises:
        StorageError: If the write operation fails
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Temp file must be on the same filesystem for the rename to be atomic
    fd = None
    temp_path = None
    try:
        fd, temp_path = tempfile.mkstemp(
            suffix=".tmp",
            prefix=path.stem + "_",
            dir=path.parent,
        )
        os.write(fd, data.encode(encoding))
        os.fsync(fd)
        os.close(fd)
        fd = None

        os.replace(temp_path, path)
        temp_path = None

    except OSError as e:
        raise StorageError(f"Failed to write {path}: {e}", context={"path": str(path)}) from e
    finally:
        if fd is not None:
            try:
                os.close(fd)
            except OSError:
                pass
        if temp_path is not None:
            try:
                os.unlink(temp_path)
            except OSError:
                pass


def atomic_write_json(path: Path, data: dict | list, indent: int = 2) -> None:
    """Write JSON data to a file atomically."""
    atomic_write(path, json.dumps(data, indent=indent, ensure_ascii=False, default=str))


def read_json(path: Path) -> dict | list:
    """Read JSON data from a file.

    Raises:
        NotFoundError: If file doesn't exist
        StorageError: If file is invalid JSON
    """
    if not path.exists():
        raise NotFoundError(f"File not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise StorageError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e


def migrate_record(data: dict[str, Any]) -> dict[str, Any]:
    """Bring a persisted record up to the current schema.

    Applied to every record on every read, so records written by older
    versions load without a separate migration step.

    Args:
        data: Raw record dictionary from the store document

    Returns:
        New dictionary with missing fields backfilled
    """
    migrated = dict(data)
    for key, default in RECORD_DEFAULTS.items():
        if key not in migrated:
            # Copy mutable defaults so records never share a list
            migrated[key] = list(default) if isinstance(default, list) else default
    if migrated["outputs"] is None:
        migrated["outputs"] = []
    return migrated


class RecordStore:
    """Durable store for VideoRecords backed by one JSON document.

    Not safe for multiple writer processes. Within a process, each
    read-modify-write cycle holds a lock, but multi-step updates to one
    record must still be serialized by the caller.
    """

    def __init__(self, data_dir: Path | str):
        """Initialize the store.

        Args:
            data_dir: Root storage directory (holds db.json and videos/)
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / DB_FILENAME
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # On-disk artifact layout
    # ------------------------------------------------------------------

    @property
    def videos_root(self) -> Path:
        return self.data_dir / "videos"

    def video_dir(self, video_id: str) -> Path:
        """Directory holding every artifact of one video."""
        return self.videos_root / video_id

    def source_path(self, video_id: str, extension: str = ".mp4") -> Path:
        """Path the ingested source file is copied to."""
        return self.video_dir(video_id) / f"original{extension}"

    def prepared_path(self, video_id: str) -> Path:
        """Path of the re-keyframed intermediate (precise mode)."""
        return self.video_dir(video_id) / "prepared.mp4"

    def clips_dir(self, video_id: str) -> Path:
        """Directory holding the generated clips."""
        return self.video_dir(video_id) / "clips"

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def _read_all(self) -> list[VideoRecord]:
        if not self.db_path.exists():
            return []

        document = read_json(self.db_path)
        if not isinstance(document, dict) or not isinstance(document.get("videos"), list):
            raise StorageError(
                f"Unrecognized store document in {self.db_path}",
                context={"path": str(self.db_path)},
            )

        records = []
        for raw in document["videos"]:
            try:
                records.append(VideoRecord.model_validate(migrate_record(raw)))
            except PydanticValidationError as e:
                raise StorageError(
                    f"Invalid record in {self.db_path}: {e}",
                    context={"id": raw.get("id") if isinstance(raw, dict) else None},
                ) from e
        return records

    def _write_all(self, records: list[VideoRecord]) -> None:
        document = {
            "schema_version": SCHEMA_VERSION,
            "videos": [record.model_dump(mode="json") for record in records],
        }
        atomic_write_json(self.db_path, document)

    @staticmethod
    def _index_of(records: list[VideoRecord], video_id: str) -> int:
        for index, record in enumerate(records):
            if record.id == video_id:
                return index
        raise NotFoundError(f"Video not found: {video_id}", context={"id": video_id})

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def exists(self, video_id: str) -> bool:
        """Check if a record exists."""
        return any(record.id == video_id for record in self._read_all())

    def get(self, video_id: str) -> VideoRecord:
        """Get a record by ID.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        records = self._read_all()
        return records[self._index_of(records, video_id)]

    def list(self) -> list[VideoRecord]:
        """List all records, newest first."""
        return sorted(self._read_all(), key=lambda r: r.created_at, reverse=True)

    def create(self, record: VideoRecord) -> VideoRecord:
        """Add a new record.

        Raises:
            AlreadyExistsError: If a record with the same ID exists
        """
        with self._lock:
            records = self._read_all()
            if any(existing.id == record.id for existing in records):
                raise AlreadyExistsError(
                    f"Video already exists: {record.id}", context={"id": record.id}
                )
            records.append(record)
            self._write_all(records)
        return record

    def update(self, video_id: str, **fields: Any) -> VideoRecord:
        """Apply a partial update to a record.

        Fields not named are preserved. The merged record is validated
        before anything is written.

        Args:
            video_id: Record ID
            **fields: Field names and their new values

        Returns:
            The updated record

        Raises:
            NotFoundError: If the record doesn't exist
            ValueError: If a field is unknown or the update would change the ID
        """
        unknown = set(fields) - set(VideoRecord.model_fields)
        if unknown:
            raise ValueError(f"Unknown record fields: {sorted(unknown)}")
        if "id" in fields and fields["id"] != video_id:
            raise ValueError("Record id is immutable")

        with self._lock:
            records = self._read_all()
            index = self._index_of(records, video_id)
            merged = {**records[index].model_dump(), **fields}
            updated = VideoRecord.model_validate(merged)
            records[index] = updated
            self._write_all(records)
        return updated

    def delete(self, video_id: str) -> VideoRecord:
        """Remove a record. Artifacts on disk are left to the caller.

        Returns:
            The removed record

        Raises:
            NotFoundError: If the record doesn't exist
        """
        with self._lock:
            records = self._read_all()
            removed = records.pop(self._index_of(records, video_id))
            self._write_all(records)
        return removed
