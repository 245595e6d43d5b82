"""Announcements posted by the administrator and read by every branch."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from branchportal import settings
from branchportal.db import USE_POSTGRES, connect, row_to_dict


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _row_to_dict(row: Any) -> Dict[str, Any]:
    data = row_to_dict(row)
    created_at = data.get("created_at")
    return {
        "id": data.get("id"),
        "title": data.get("title", ""),
        "body": data.get("body") or "",
        "author": data.get("author", ""),
        "created_at": created_at.isoformat() if isinstance(created_at, datetime) else created_at,
    }


class NoticeStore:
    kind = "abstract"

    def add_notice(self, *, title: str, body: str, author: str) -> Dict[str, Any]:
        raise NotImplementedError

    def list_notices(self, *, limit: int = 50) -> List[Dict[str, Any]]:
        raise NotImplementedError


class MemoryNoticeStore(NoticeStore):
    kind = "memory"

    def __init__(self) -> None:
        self._rows: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def add_notice(self, *, title, body, author):
        with self._lock:
            row = {
                "id": len(self._rows) + 1,
                "title": title,
                "body": body,
                "author": author,
                "created_at": _now(),
            }
            self._rows.append(row)
        return _row_to_dict(row)

    def list_notices(self, *, limit=50):
        with self._lock:
            return [_row_to_dict(row) for row in reversed(self._rows)][:limit]


class SqlNoticeStore(NoticeStore):
    def __init__(self, db_path: Optional[Path] = None, *, use_postgres: bool = USE_POSTGRES) -> None:
        self.use_postgres = use_postgres
        self.db_path = None if use_postgres else Path(db_path or settings.DATA_DIR / "notices.db")
        self.kind = "postgres" if use_postgres else "sqlite"
        id_column = "id SERIAL PRIMARY KEY" if use_postgres else "id INTEGER PRIMARY KEY AUTOINCREMENT"
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS notices (
                    {id_column},
                    title TEXT NOT NULL,
                    body TEXT,
                    author TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )

    def _conn(self):
        return connect(self.db_path, use_postgres=self.use_postgres)

    def add_notice(self, *, title, body, author):
        with self._conn() as conn:
            cursor = conn.execute(
                "INSERT INTO notices (title, body, author, created_at) VALUES (?, ?, ?, ?)",
                (title, body, author, _now()),
            )
            row = conn.execute("SELECT * FROM notices WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return _row_to_dict(row) if row else {}

    def list_notices(self, *, limit=50):
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM notices ORDER BY created_at DESC, id DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
        return [_row_to_dict(row) for row in rows]


def build_notice_store(backend: Optional[str] = None) -> NoticeStore:
    choice = (backend or settings.STORE_BACKEND).strip().lower()
    if choice == "memory":
        return MemoryNoticeStore()
    if choice == "postgres":
        return SqlNoticeStore(use_postgres=True)
    if choice == "sqlite":
        return SqlNoticeStore(use_postgres=False)
    raise ValueError(f"Unknown PORTAL_STORE backend '{choice}'")
