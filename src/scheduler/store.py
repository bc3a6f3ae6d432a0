"""Job stores for the live scheduled jobs.

Two backends share the :class:`JobStore` protocol:

- :class:`JsonJobStore` keeps every job in one JSON file and rewrites it on
  each mutation (write to a temp file in the same directory, then
  ``os.replace``), so an interrupted write never leaves a half-written store.
- :class:`SqliteJobStore` keeps one row per job in an aiosqlite database.

Both raise :class:`~src.scheduler.errors.PersistenceError` on any I/O or
decoding failure.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiosqlite

from src.config import Settings, settings
from src.scheduler.errors import PersistenceError
from src.scheduler.models import ScheduledJob

logger = logging.getLogger(__name__)


@runtime_checkable
class JobStore(Protocol):
    """Load-all / upsert / delete persistence for scheduled jobs."""

    async def load_all(self) -> list[ScheduledJob]:
        """Return every persisted job in creation order."""
        ...

    async def upsert(self, job: ScheduledJob) -> None:
        """Insert or replace a job."""
        ...

    async def delete(self, job_id: str) -> bool:
        """Remove a job. Returns True if it was present."""
        ...


def _decode_records(records: list[Any]) -> list[ScheduledJob]:
    jobs = []
    for record in records:
        if not isinstance(record, dict):
            logger.warning("Skipping job record that is not an object: %r", record)
            continue
        try:
            jobs.append(ScheduledJob.from_record(record))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed job record %r: %s", record.get("id"), exc)
    return jobs


# -- JSON file ---------------------------------------------------------------


def _read_file(path: Path) -> list[dict[str, Any]]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("No persisted jobs file at %s", path)
        return []
    if not raw.strip():
        return []
    data = json.loads(raw)
    if not isinstance(data, list):
        msg = f"Expected a JSON list in {path}, got {type(data).__name__}"
        raise ValueError(msg)
    return data


def _write_file(path: Path, records: list[dict[str, Any]]) -> None:
    """Atomically replace *path* with *records* serialized as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(records, fh, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def _quarantine_file(path: Path) -> Path:
    """Move an unreadable store aside so the next write starts clean."""
    target = path.with_name(f"{path.name}.corrupt")
    os.replace(path, target)
    return target


class JsonJobStore:
    """Persists jobs as a JSON list in a single file.

    Pass an explicit *path* for test isolation (e.g. ``tmp_path / "jobs.json"``).
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or settings.jobs_file_path
        self._jobs: dict[str, ScheduledJob] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def load_all(self) -> list[ScheduledJob]:
        """Read every job from the file.

        A file that does not decode is moved to ``<name>.corrupt`` and the
        store continues empty, so later writes are not blocked by it. The
        failure is still raised as PersistenceError.
        """
        try:
            records = await asyncio.to_thread(_read_file, self._path)
        except ValueError as exc:
            await self._discard_corrupt_file()
            msg = f"Failed to read job store {self._path}: {exc}"
            raise PersistenceError(msg) from exc
        except OSError as exc:
            msg = f"Failed to read job store {self._path}: {exc}"
            raise PersistenceError(msg) from exc
        jobs = _decode_records(records)
        self._jobs = {job.id: job for job in jobs}
        self._loaded = True
        return jobs

    async def upsert(self, job: ScheduledJob) -> None:
        await self._ensure_loaded()
        self._jobs[job.id] = job
        await self._flush()

    async def delete(self, job_id: str) -> bool:
        await self._ensure_loaded()
        if self._jobs.pop(job_id, None) is None:
            return False
        await self._flush()
        return True

    async def _discard_corrupt_file(self) -> None:
        try:
            target = await asyncio.to_thread(_quarantine_file, self._path)
        except OSError:
            logger.exception("Could not move corrupt job store %s aside", self._path)
            return
        logger.error("Corrupt job store moved to %s; starting with no jobs", target)
        self._jobs = {}
        self._loaded = True

    async def _ensure_loaded(self) -> None:
        # Rewriting before a load would drop jobs already on disk.
        if not self._loaded:
            try:
                await self.load_all()
            except PersistenceError:
                # A corrupt file was moved aside; writes may go ahead.
                if not self._loaded:
                    raise

    async def _flush(self) -> None:
        # Serialise writers so a stale snapshot never lands after a newer one.
        async with self._lock:
            records = [job.to_record() for job in self._jobs.values()]
            try:
                await asyncio.to_thread(_write_file, self._path, records)
            except OSError as exc:
                msg = f"Failed to write job store {self._path}: {exc}"
                raise PersistenceError(msg) from exc
        logger.debug("Persisted %d job(s) to %s", len(records), self._path)


# -- SQLite ------------------------------------------------------------------

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS scheduled_jobs (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    recipient TEXT NOT NULL,
    message TEXT,
    scheduled_time TEXT,
    cron_expression TEXT,
    created_at TEXT NOT NULL
)
"""

_COLUMNS = (
    "id",
    "type",
    "recipient",
    "message",
    "scheduled_time",
    "cron_expression",
    "created_at",
)


class SqliteJobStore:
    """Persists jobs in SQLite, one row per job.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def load_all(self) -> list[ScheduledJob]:
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    f"SELECT {', '.join(_COLUMNS)} FROM scheduled_jobs "  # noqa: S608
                    "ORDER BY created_at, id"
                )
                rows = await cursor.fetchall()
            finally:
                await db.close()
        except (OSError, aiosqlite.Error) as exc:
            msg = f"Failed to read job store {self._db_path}: {exc}"
            raise PersistenceError(msg) from exc
        return _decode_records([dict(zip(_COLUMNS, row, strict=True)) for row in rows])

    async def upsert(self, job: ScheduledJob) -> None:
        record = job.to_record()
        try:
            db = await self._connect()
            try:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO scheduled_jobs
                        (id, type, recipient, message, scheduled_time,
                         cron_expression, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    tuple(record[col] for col in _COLUMNS),
                )
                await db.commit()
            finally:
                await db.close()
        except (OSError, aiosqlite.Error) as exc:
            msg = f"Failed to write job {job.id}: {exc}"
            raise PersistenceError(msg) from exc

    async def delete(self, job_id: str) -> bool:
        try:
            db = await self._connect()
            try:
                cursor = await db.execute("DELETE FROM scheduled_jobs WHERE id = ?", (job_id,))
                await db.commit()
                return cursor.rowcount > 0
            finally:
                await db.close()
        except (OSError, aiosqlite.Error) as exc:
            msg = f"Failed to delete job {job_id}: {exc}"
            raise PersistenceError(msg) from exc


def create_job_store(config: Settings | None = None) -> JobStore:
    """Build the job store selected by ``JOB_STORE_BACKEND``."""
    config = config or settings
    backend = config.job_store_backend.lower()
    if backend == "json":
        return JsonJobStore(config.jobs_file_path)
    if backend == "sqlite":
        return SqliteJobStore(config.database_path)
    msg = f"Unknown job store backend: {config.job_store_backend}"
    raise ValueError(msg)
