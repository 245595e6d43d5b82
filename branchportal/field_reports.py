from __future__ import annotations

import json
import logging
import math
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from branchportal import settings
from branchportal.db import USE_POSTGRES, connect, row_to_dict

log = logging.getLogger("uvicorn.error")

FIELD_VALUE = "측정값"
FIELD_COUNT = "개수"

# Accessibility defect catalogue shown on the field screen.
CATEGORIES: List[Dict[str, Any]] = [
    {
        "id": "parking",
        "name": "주차구역",
        "items": [
            {"id": "width", "label": "주차구역 폭", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "length", "label": "주차구역 길이", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "sign", "label": "표지판 미설치", "unit": "개소", "fields": [FIELD_COUNT]},
            {"id": "marking", "label": "바닥 표시 불량", "unit": "개소", "fields": [FIELD_COUNT]},
        ],
    },
    {
        "id": "curb",
        "name": "턱 낮추기",
        "items": [
            {"id": "height", "label": "턱 높이", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "width", "label": "유효폭", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "slope", "label": "경사도", "unit": "%", "fields": [FIELD_VALUE]},
            {"id": "none", "label": "턱낮추기 미설치", "unit": "개소", "fields": [FIELD_COUNT]},
        ],
    },
    {
        "id": "ramp",
        "name": "경사로",
        "items": [
            {"id": "slope", "label": "경사로 기울기", "unit": "%", "fields": [FIELD_VALUE]},
            {"id": "width", "label": "유효폭", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "handrail", "label": "손잡이 미설치", "unit": "개소", "fields": [FIELD_COUNT]},
        ],
    },
    {
        "id": "elevator",
        "name": "승강기",
        "items": [
            {"id": "door_width", "label": "출입문 폭", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "cabin_width", "label": "승강장 폭", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "cabin_depth", "label": "승강장 깊이", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "button", "label": "버튼 높이", "unit": "cm", "fields": [FIELD_VALUE]},
        ],
    },
    {
        "id": "toilet",
        "name": "화장실",
        "items": [
            {"id": "door_width", "label": "출입문 폭", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "space", "label": "활동 공간", "unit": "cm", "fields": ["폭", "깊이"]},
            {"id": "handrail", "label": "손잡이 미설치", "unit": "개소", "fields": [FIELD_COUNT]},
            {"id": "sink_height", "label": "세면대 높이", "unit": "cm", "fields": [FIELD_VALUE]},
        ],
    },
    {
        "id": "entrance",
        "name": "출입구",
        "items": [
            {"id": "door_width", "label": "출입문 유효폭", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "threshold", "label": "문턱 높이", "unit": "cm", "fields": [FIELD_VALUE]},
            {"id": "handle_height", "label": "손잡이 높이", "unit": "cm", "fields": [FIELD_VALUE]},
        ],
    },
]

_CATEGORIES_BY_ID = {category["id"]: category for category in CATEGORIES}


class FieldReportError(ValueError):
    """Raised when a field report fails validation."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def find_item(category_id: str, item_id: str) -> Optional[Dict[str, Any]]:
    category = _CATEGORIES_BY_ID.get((category_id or "").strip())
    if not category:
        return None
    for item in category["items"]:
        if item["id"] == (item_id or "").strip():
            return item
    return None


def _coordinate(value: Any, name: str, bound: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise FieldReportError(f"{name} must be a number") from None
    if math.isnan(number) or not -bound <= number <= bound:
        raise FieldReportError(f"{name} is out of range")
    return number


def validate_report(
    *,
    category: str,
    item_id: str,
    latitude: Any,
    longitude: Any,
    measurements: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Check a report against the catalogue and return its cleaned fields."""
    category_id = (category or "").strip()
    if category_id not in _CATEGORIES_BY_ID:
        raise FieldReportError(f"Unknown category '{category_id}'")
    item = find_item(category_id, item_id)
    if item is None:
        raise FieldReportError(f"Unknown item '{item_id}' for category '{category_id}'")

    values = dict(measurements or {})
    cleaned: Dict[str, str] = {}
    missing = []
    for field_name in item["fields"]:
        text = str(values.get(field_name) if values.get(field_name) is not None else "").strip()
        if not text:
            missing.append(field_name)
        cleaned[field_name] = text
    if missing:
        raise FieldReportError(f"Missing measurement(s): {', '.join(missing)}")

    return {
        "category": category_id,
        "item_id": item["id"],
        "item_name": item["label"],
        "unit": item["unit"],
        "latitude": _coordinate(latitude, "latitude", 90.0),
        "longitude": _coordinate(longitude, "longitude", 180.0),
        "measurements": cleaned,
    }


def _decode_measurements(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        log.warning("Unreadable measurements value on field report: %r", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _row_to_dict(row: Any) -> Dict[str, Any]:
    data = row_to_dict(row)
    created_at = data.get("created_at")
    return {
        "id": data.get("id"),
        "user_id": data.get("user_id", ""),
        "branch_id": data.get("branch_id"),
        "category": data.get("category", ""),
        "item_id": data.get("item_id", ""),
        "item_name": data.get("item_name", ""),
        "unit": data.get("unit") or "",
        "latitude": data.get("latitude"),
        "longitude": data.get("longitude"),
        "address": data.get("address") or "",
        "measurements": _decode_measurements(data.get("measurements")),
        "memo": data.get("memo") or "",
        "created_at": created_at.isoformat() if isinstance(created_at, datetime) else created_at,
    }


class FieldReportStore:
    kind = "abstract"

    def create_report(
        self,
        *,
        user_id: str,
        branch_id: Optional[int],
        report: Mapping[str, Any],
        address: str = "",
        memo: str = "",
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def list_reports(self, *, branch_id: Optional[int] = None, limit: int = 200) -> List[Dict[str, Any]]:
        raise NotImplementedError


class MemoryFieldReportStore(FieldReportStore):
    kind = "memory"

    def __init__(self) -> None:
        self._rows: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def create_report(self, *, user_id, branch_id, report, address="", memo=""):
        with self._lock:
            row = {
                "id": len(self._rows) + 1,
                "user_id": user_id,
                "branch_id": branch_id,
                "category": report["category"],
                "item_id": report["item_id"],
                "item_name": report["item_name"],
                "unit": report.get("unit", ""),
                "latitude": report["latitude"],
                "longitude": report["longitude"],
                "address": address or "",
                "measurements": dict(report["measurements"]),
                "memo": memo or "",
                "created_at": _now(),
            }
            self._rows.append(row)
            return _row_to_dict(row)

    def list_reports(self, *, branch_id=None, limit=200):
        with self._lock:
            rows = [row for row in reversed(self._rows) if branch_id is None or row["branch_id"] == branch_id]
        return [_row_to_dict(row) for row in rows[:limit]]


class SqlFieldReportStore(FieldReportStore):
    def __init__(self, db_path: Optional[Path] = None, *, use_postgres: bool = USE_POSTGRES) -> None:
        self.use_postgres = use_postgres
        self.db_path = None if use_postgres else Path(db_path or settings.DATA_DIR / "field_reports.db")
        self.kind = "postgres" if use_postgres else "sqlite"
        self.init_db()

    def _conn(self):
        return connect(self.db_path, use_postgres=self.use_postgres)

    def init_db(self) -> None:
        if self.use_postgres:
            id_column = "id SERIAL PRIMARY KEY"
            real_type = "DOUBLE PRECISION"
        else:
            id_column = "id INTEGER PRIMARY KEY AUTOINCREMENT"
            real_type = "REAL"
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS field_reports (
                    {id_column},
                    user_id TEXT NOT NULL,
                    branch_id INTEGER,
                    category TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    item_name TEXT NOT NULL,
                    unit TEXT,
                    latitude {real_type},
                    longitude {real_type},
                    address TEXT,
                    measurements TEXT NOT NULL,
                    memo TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_field_reports_branch ON field_reports(branch_id, created_at)"
            )

    def create_report(self, *, user_id, branch_id, report, address="", memo=""):
        with self._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO field_reports
                    (user_id, branch_id, category, item_id, item_name, unit, latitude, longitude, address, measurements, memo, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    branch_id,
                    report["category"],
                    report["item_id"],
                    report["item_name"],
                    report.get("unit", ""),
                    report["latitude"],
                    report["longitude"],
                    address or "",
                    json.dumps(report["measurements"], ensure_ascii=False),
                    memo or "",
                    _now(),
                ),
            )
            report_id = cursor.lastrowid
            row = conn.execute("SELECT * FROM field_reports WHERE id = ?", (report_id,)).fetchone()
        return _row_to_dict(row) if row else {}

    def list_reports(self, *, branch_id=None, limit=200):
        sql = "SELECT * FROM field_reports"
        params: tuple = ()
        if branch_id is not None:
            sql += " WHERE branch_id = ?"
            params = (branch_id,)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        with self._conn() as conn:
            rows = conn.execute(sql, params + (int(limit),)).fetchall()
        return [_row_to_dict(row) for row in rows]


def build_field_report_store(backend: Optional[str] = None) -> FieldReportStore:
    choice = (backend or settings.STORE_BACKEND).strip().lower()
    if choice == "memory":
        return MemoryFieldReportStore()
    if choice == "postgres":
        return SqlFieldReportStore(use_postgres=True)
    if choice == "sqlite":
        return SqlFieldReportStore(use_postgres=False)
    raise ValueError(f"Unknown PORTAL_STORE backend '{choice}'")
