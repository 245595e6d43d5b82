from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from branchportal import settings

_ORDINALS = ["첫째", "둘째", "셋째", "넷째", "다섯째"]


@dataclass(frozen=True)
class Week:
    id: str
    label: str
    start: date
    end: date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def today(tz_name: Optional[str] = None) -> date:
    try:
        zone = ZoneInfo(tz_name or settings.TIMEZONE)
    except ZoneInfoNotFoundError:
        zone = ZoneInfo("UTC")
    return datetime.now(zone).date()


def start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def korean_ordinal(n: int) -> str:
    if 1 <= n <= len(_ORDINALS):
        return _ORDINALS[n - 1]
    return f"{n}째"


def week_label(monday: date) -> str:
    first_day = monday.replace(day=1)
    first_monday = first_day + timedelta(days=(7 - first_day.weekday()) % 7)
    diff_days = (monday - first_monday).days
    ordinal = 1 if diff_days < 0 else diff_days // 7 + 1
    return f"{monday.year} {monday.month}월 {korean_ordinal(ordinal)}주"


def week_for(monday: date) -> Week:
    return Week(
        id=monday.isoformat(),
        label=week_label(monday),
        start=monday,
        end=monday + timedelta(days=6),
    )


def recent_weeks(count: Optional[int] = None, *, reference: Optional[date] = None) -> List[Week]:
    """Rolling window of weeks, newest first."""
    total = settings.WEEK_WINDOW if count is None else count
    current = start_of_week(reference or today())
    return [week_for(current - timedelta(weeks=offset)) for offset in range(max(total, 0))]


def parse_week_id(value: str) -> date:
    """Return the Monday for ``value`` or raise ValueError."""
    text = (value or "").strip()
    try:
        day = date.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid week id '{value}'") from exc
    if day.isoformat() != text:
        raise ValueError(f"Week id '{value}' must be formatted as YYYY-MM-DD")
    if day.weekday() != 0:
        raise ValueError(f"Week id '{value}' is not a Monday")
    return day
