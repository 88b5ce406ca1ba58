from __future__ import annotations

"""
SQLite persistence for receipty print jobs.

Features:
- PRAGMAs for reliability: WAL, synchronous=NORMAL
- Schema bootstrap with a schema_version marker
- A JobStore shared by web request threads and the print worker; a single
  connection guarded by a lock
- Status transitions validated here: queued -> printing -> succeeded | failed
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from receipty.core.text import hash_bytes, hash_text, preview_text

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

JOB_STATUSES = ("queued", "printing", "succeeded", "failed")
TERMINAL_STATUSES = ("succeeded", "failed")
_TRANSITIONS = {
    "queued": ("printing",),
    "printing": TERMINAL_STATUSES,
}

INTERRUPTED_ERROR = "Interrupted: the service stopped while this job was printing."


class InvalidTransition(ValueError):
    """Raised when a job status change is not part of the job lifecycle."""


@dataclass(frozen=True)
class JobContent:
    """What a caller submits; derived fields are computed on insert."""

    text: str = ""
    image_data: Optional[bytes] = None
    image_mime: Optional[str] = None
    mode: str = ""
    payload_bytes: int = 0


@dataclass(frozen=True)
class Job:
    id: int
    created_at: str
    updated_at: str
    mode: str
    status: str
    payload_bytes: int
    preview: str
    text_hash: str
    text: str
    image_data: Optional[bytes]
    image_hash: Optional[str]
    image_mime: Optional[str]
    error: Optional[str]

    @property
    def has_image(self) -> bool:
        return self.image_data is not None

    @property
    def error_summary(self) -> Optional[str]:
        return self.error.split("\n", 1)[0] if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "mode": self.mode,
            "status": self.status,
            "bytes": self.payload_bytes,
            "preview": self.preview,
            "text": self.text,
            "text_hash": self.text_hash,
            "has_image": self.has_image,
            "image_hash": self.image_hash,
            "image_mime": self.image_mime,
            "error": self.error,
            "error_summary": self.error_summary,
        }


@dataclass(frozen=True)
class JobPage:
    items: List[Job]
    page: int
    page_size: int
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [j.to_dict() for j in self.items],
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
        }


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_job(row: Optional[sqlite3.Row]) -> Optional[Job]:
    if row is None:
        return None
    image = row["image_data"]
    return Job(
        id=int(row["id"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        mode=row["mode"],
        status=row["status"],
        payload_bytes=int(row["bytes"]),
        preview=row["preview"],
        text_hash=row["text_hash"],
        text=row["text"],
        image_data=bytes(image) if image is not None else None,
        image_hash=row["image_hash"],
        image_mime=row["image_mime"],
        error=row["error"],
    )


# ----- Connection management -------------------------------------------------


def _apply_pragmas(db: sqlite3.Connection) -> None:
    try:
        db.execute("PRAGMA journal_mode = WAL")
    except sqlite3.DatabaseError:
        pass
    db.execute("PRAGMA synchronous = NORMAL")


def _connect(path: str) -> sqlite3.Connection:
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    return conn


# ----- Schema ----------------------------------------------------------------


def _ensure_schema(db: sqlite3.Connection) -> None:
    """
    Create tables if not present and record the schema version.
    """
    with db:
        db.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              created_at  TEXT NOT NULL,
              updated_at  TEXT NOT NULL,
              mode        TEXT NOT NULL,
              status      TEXT NOT NULL,
              bytes       INTEGER NOT NULL,
              preview     TEXT NOT NULL,
              text_hash   TEXT NOT NULL,
              text        TEXT NOT NULL,
              image_data  BLOB,
              image_hash  TEXT,
              image_mime  TEXT,
              error       TEXT
            )
            """,
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)")
        db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_created ON jobs(created_at)")

        row = db.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))


# ----- Store -----------------------------------------------------------------


class JobStore:
    """
    Job persistence. The print worker is the only caller that changes status.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._conn = _connect(path)
        _ensure_schema(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def insert_job(self, content: JobContent) -> int:
        """Insert a new queued job and return its id."""
        now = _iso_now()
        image = bytes(content.image_data) if content.image_data is not None else None
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO jobs (created_at, updated_at, mode, status, bytes, preview, text_hash, text,
                                  image_data, image_hash, image_mime, error)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,NULL)
                """,
                (
                    now,
                    now,
                    content.mode,
                    "queued",
                    int(content.payload_bytes),
                    preview_text(content.text),
                    hash_text(content.text),
                    content.text,
                    image,
                    hash_bytes(image) if image is not None else None,
                    content.image_mime if image is not None else None,
                ),
            )
            return int(cur.lastrowid)

    def next_queued_job(self) -> Optional[Job]:
        """Oldest queued job by insertion order, or None."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM jobs WHERE status = 'queued' ORDER BY id ASC LIMIT 1",
            ).fetchone()
        return _row_to_job(row)

    def claim_next_job(self) -> Optional[Job]:
        """
        Atomically take the oldest queued job and mark it printing.
        """
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT * FROM jobs WHERE status = 'queued' ORDER BY id ASC LIMIT 1",
            ).fetchone()
            if row is None:
                return None
            now = _iso_now()
            self._conn.execute(
                "UPDATE jobs SET status = 'printing', updated_at = ? WHERE id = ? AND status = 'queued'",
                (now, row["id"]),
            )
            row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (row["id"],)).fetchone()
        return _row_to_job(row)

    def update_job_status(self, job_id: int, status: str, error: Optional[str] = None) -> None:
        """
        Move a job to `status`. Only queued->printing and printing->succeeded|failed
        are allowed; error text is kept only for failed jobs.
        """
        if status not in JOB_STATUSES:
            raise InvalidTransition(f"Unknown job status: {status!r}")
        with self._lock, self._conn:
            row = self._conn.execute("SELECT status FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                raise KeyError(job_id)
            current = row["status"]
            if status not in _TRANSITIONS.get(current, ()):
                raise InvalidTransition(f"Job {job_id}: {current} -> {status} is not allowed")
            self._conn.execute(
                "UPDATE jobs SET status = ?, error = ?, updated_at = ? WHERE id = ?",
                (status, error if status == "failed" else None, _iso_now(), job_id),
            )

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row)

    def latest_job(self) -> Optional[Job]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM jobs ORDER BY id DESC LIMIT 1").fetchone()
        return _row_to_job(row)

    def list_jobs(self, page: int = 1, page_size: int = 20) -> JobPage:
        """Newest first."""
        page = max(1, int(page))
        page_size = max(1, int(page_size))
        offset = (page - 1) * page_size
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM jobs ORDER BY id DESC LIMIT ? OFFSET ?",
                (page_size, offset),
            ).fetchall()
            total = int(self._conn.execute("SELECT COUNT(1) AS total FROM jobs").fetchone()["total"])
        items = [j for j in (_row_to_job(r) for r in rows) if j is not None]
        return JobPage(items=items, page=page, page_size=page_size, total=total)

    def count_by_status(self, status: str) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(1) AS n FROM jobs WHERE status = ?", (status,)).fetchone()
        return int(row["n"])

    def fail_interrupted_jobs(self) -> int:
        """
        Mark jobs left in `printing` by a previous process as failed. Returns the count.
        """
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE jobs SET status = 'failed', error = ?, updated_at = ? WHERE status = 'printing'",
                (INTERRUPTED_ERROR, _iso_now()),
            )
            count = cur.rowcount
        if count:
            logger.warning("Marked %d interrupted job(s) as failed", count)
        return count


__all__ = [
    "INTERRUPTED_ERROR",
    "JOB_STATUSES",
    "InvalidTransition",
    "Job",
    "JobContent",
    "JobPage",
    "JobStore",
    "SCHEMA_VERSION",
    "TERMINAL_STATUSES",
]
