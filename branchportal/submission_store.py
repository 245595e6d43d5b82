from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from branchportal import attachments, settings
from branchportal.attachments import AttachmentRef
from branchportal.db import USE_POSTGRES, connect, placeholders, row_to_dict

log = logging.getLogger("uvicorn.error")


class Status(str, Enum):
    NOT_SUBMITTED = "NONE"
    REPORT_SUBMITTED = "REPORT"
    OFFICIAL_SUBMITTED = "OFFICIAL"

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "Status":
        """Lenient read of a persisted value; unknown text means NOT_SUBMITTED."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        for member in cls:
            if text in (member.value, member.name):
                return member
        return cls.NOT_SUBMITTED


STATUS_LABELS = {
    Status.NOT_SUBMITTED: "미제출",
    Status.REPORT_SUBMITTED: "보고서 제출",
    Status.OFFICIAL_SUBMITTED: "공문 제출",
}


@dataclass
class SubmissionRecord:
    title: str = ""
    status: Status = Status.NOT_SUBMITTED
    note: str = ""
    files: List[AttachmentRef] = field(default_factory=list)
    submitted_at: Optional[str] = None

    @classmethod
    def empty(cls) -> "SubmissionRecord":
        return cls()

    def copy(self) -> "SubmissionRecord":
        return SubmissionRecord(
            title=self.title,
            status=self.status,
            note=self.note,
            files=[AttachmentRef(name=ref.name, path=ref.path, url=ref.url) for ref in self.files],
            submitted_at=self.submitted_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "status": self.status.value,
            "status_label": self.status.label,
            "note": self.note,
            "files": [ref.to_dict() for ref in self.files],
            "submitted_at": self.submitted_at,
        }


def record_id(branch_id: int, week_id: str) -> str:
    return f"{branch_id}_{week_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _normalize_timestamp(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    if value in (None, ""):
        return None
    return str(value)


class SubmissionStore:
    """Per-(branch, week) record storage.

    Reads of a pair that was never written return the all-default record. Writes replace
    the whole record (last write wins).
    """

    kind = "abstract"

    def get_record(self, branch_id: int, week_id: str) -> SubmissionRecord:
        raise NotImplementedError

    def set_record(self, branch_id: int, week_id: str, record: SubmissionRecord) -> None:
        raise NotImplementedError

    def reset_record(self, branch_id: int, week_id: str) -> None:
        self.set_record(branch_id, week_id, SubmissionRecord.empty())

    def get_records(self, branch_id: int, week_ids: Sequence[str]) -> Dict[str, SubmissionRecord]:
        return {week_id: self.get_record(branch_id, week_id) for week_id in week_ids}

    def get_matrix(
        self,
        branch_ids: Sequence[int],
        week_ids: Sequence[str],
    ) -> Dict[int, Dict[str, SubmissionRecord]]:
        return {branch_id: self.get_records(branch_id, week_ids) for branch_id in branch_ids}


class MemorySubmissionStore(SubmissionStore):
    """Process-local store used in demo mode; nothing survives a restart."""

    kind = "memory"

    def __init__(self) -> None:
        self._records: Dict[str, SubmissionRecord] = {}
        self._lock = threading.Lock()

    def get_record(self, branch_id: int, week_id: str) -> SubmissionRecord:
        with self._lock:
            record = self._records.get(record_id(branch_id, week_id))
            return record.copy() if record else SubmissionRecord.empty()

    def set_record(self, branch_id: int, week_id: str, record: SubmissionRecord) -> None:
        with self._lock:
            self._records[record_id(branch_id, week_id)] = record.copy()


class SqlSubmissionStore(SubmissionStore):
    """``submissions`` table on PostgreSQL, or on SQLite when DB_HOST is unset."""

    kind = "sql"

    def __init__(self, db_path: Optional[Path] = None, *, use_postgres: bool = USE_POSTGRES) -> None:
        self.use_postgres = use_postgres
        self.db_path = None if use_postgres else Path(db_path or settings.DATA_DIR / "submissions.db")
        self.kind = "postgres" if use_postgres else "sqlite"
        self.init_db()

    def _conn(self):
        return connect(self.db_path, use_postgres=self.use_postgres)

    def init_db(self) -> None:
        timestamp_type = "TIMESTAMPTZ" if self.use_postgres else "TEXT"
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS submissions (
                    id TEXT PRIMARY KEY,
                    branch_id INTEGER NOT NULL,
                    week_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'NONE',
                    note TEXT NOT NULL DEFAULT '',
                    files TEXT,
                    submitted_at {timestamp_type},
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_submissions_branch_week ON submissions(branch_id, week_id)"
            )

    @staticmethod
    def _row_to_record(row: Any) -> SubmissionRecord:
        data = row_to_dict(row)
        return SubmissionRecord(
            title=data.get("title") or "",
            status=Status.parse(data.get("status")),
            note=data.get("note") or "",
            files=attachments.decode(data.get("files")),
            submitted_at=_normalize_timestamp(data.get("submitted_at")),
        )

    def get_record(self, branch_id: int, week_id: str) -> SubmissionRecord:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT title, status, note, files, submitted_at FROM submissions WHERE id = ?",
                (record_id(branch_id, week_id),),
            ).fetchone()
        return self._row_to_record(row) if row else SubmissionRecord.empty()

    def set_record(self, branch_id: int, week_id: str, record: SubmissionRecord) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO submissions (id, branch_id, week_id, title, status, note, files, submitted_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    title = excluded.title,
                    status = excluded.status,
                    note = excluded.note,
                    files = excluded.files,
                    submitted_at = excluded.submitted_at,
                    updated_at = excluded.updated_at
                """,
                (
                    record_id(branch_id, week_id),
                    branch_id,
                    week_id,
                    record.title or "",
                    Status.parse(record.status).value,
                    record.note or "",
                    attachments.encode(record.files),
                    record.submitted_at,
                    _now(),
                ),
            )

    def get_records(self, branch_id: int, week_ids: Sequence[str]) -> Dict[str, SubmissionRecord]:
        week_list = list(dict.fromkeys(week_ids))
        records = {week_id: SubmissionRecord.empty() for week_id in week_list}
        if not week_list:
            return records
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT week_id, title, status, note, files, submitted_at
                FROM submissions
                WHERE branch_id = ? AND week_id IN ({placeholders(len(week_list))})
                """,
                (branch_id, *week_list),
            ).fetchall()
        for row in rows:
            data = row_to_dict(row)
            records[data["week_id"]] = self._row_to_record(data)
        return records

    def get_matrix(
        self,
        branch_ids: Sequence[int],
        week_ids: Sequence[str],
    ) -> Dict[int, Dict[str, SubmissionRecord]]:
        branch_list = list(dict.fromkeys(branch_ids))
        week_list = list(dict.fromkeys(week_ids))
        matrix = {
            branch_id: {week_id: SubmissionRecord.empty() for week_id in week_list}
            for branch_id in branch_list
        }
        if not branch_list or not week_list:
            return matrix
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT branch_id, week_id, title, status, note, files, submitted_at
                FROM submissions
                WHERE branch_id IN ({placeholders(len(branch_list))})
                  AND week_id IN ({placeholders(len(week_list))})
                """,
                (*branch_list, *week_list),
            ).fetchall()
        for row in rows:
            data = row_to_dict(row)
            branch_records = matrix.get(int(data["branch_id"]))
            if branch_records is not None:
                branch_records[data["week_id"]] = self._row_to_record(data)
        return matrix

    def normalize_file_encodings(self) -> int:
        """Rewrite every ``files`` value that is not already in the canonical encoding."""
        with self._conn() as conn:
            rows = conn.execute("SELECT id, files FROM submissions").fetchall()
            changed = 0
            for row in rows:
                data = row_to_dict(row)
                raw = data.get("files")
                canonical = attachments.encode(attachments.decode(raw))
                if raw == canonical:
                    continue
                conn.execute(
                    "UPDATE submissions SET files = ?, updated_at = ? WHERE id = ?",
                    (canonical, _now(), data["id"]),
                )
                changed += 1
        if changed:
            log.info("Normalised attachment encoding on %s submission row(s)", changed)
        return changed


def build_submission_store(backend: Optional[str] = None) -> SubmissionStore:
    choice = (backend or settings.STORE_BACKEND).strip().lower()
    if choice == "memory":
        log.warning("Submission store: in-memory DEMO mode; records are lost on restart.")
        return MemorySubmissionStore()
    if choice == "postgres":
        if not USE_POSTGRES:
            raise RuntimeError("PORTAL_STORE=postgres requires DB_HOST and the DB_* settings")
        log.info("Submission store: Postgres host=%s", os.environ.get("DB_HOST", ""))
        return SqlSubmissionStore(use_postgres=True)
    if choice == "sqlite":
        store = SqlSubmissionStore(use_postgres=False)
        log.warning("Submission store: SQLite at %s", store.db_path)
        return store
    raise ValueError(f"Unknown PORTAL_STORE backend '{choice}'")


__all__ = [
    "MemorySubmissionStore",
    "STATUS_LABELS",
    "SqlSubmissionStore",
    "Status",
    "SubmissionRecord",
    "SubmissionStore",
    "build_submission_store",
    "record_id",
]
