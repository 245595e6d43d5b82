"""Attachment list handling for weekly submissions.

A submission's files live in one scalar column. New writes always use a JSON array of
``{"name", "path"}`` objects; every older shape the column has held is still readable
through :func:`decode`, which tries a fixed sequence of parsers until one matches.
"""
from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

DEFAULT_FILE_NAME = "file"
# Separates the storage key from the base64 display name in the composite encoding.
NAME_SEPARATOR = "|"

_TOKEN_SPLIT = re.compile(r"[,\n]")
_KEY_UNSAFE = re.compile(r"[^A-Za-z0-9.]")


@dataclass
class AttachmentRef:
    name: str
    path: Optional[str]
    url: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "path": self.path}
        if self.url:
            data["url"] = self.url
        return data


def basename(path: Any) -> str:
    if not path or not isinstance(path, str):
        return DEFAULT_FILE_NAME
    segment = path.split("/")[-1].strip()
    return segment or DEFAULT_FILE_NAME


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode(attachments: Iterable[AttachmentRef]) -> str:
    items = [
        {"name": ref.name, "path": ref.path}
        for ref in attachments
        if ref.path and ref.path.strip()
    ]
    return json.dumps(items, ensure_ascii=False, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

# Returned by a parser that does not recognise its input.
_NO_MATCH = object()


def _ref_from_path(value: str) -> AttachmentRef:
    path = value.strip()
    return AttachmentRef(name=basename(path), path=path)


def _ref_from_mapping(item: Dict[str, Any]) -> AttachmentRef:
    raw_path = item.get("path")
    if raw_path is None:
        path = None
    else:
        path = (raw_path if isinstance(raw_path, str) else str(raw_path)).strip() or None
    name = item.get("name")
    if not isinstance(name, str):
        name = basename(path) if path else DEFAULT_FILE_NAME
    url = item.get("url")
    return AttachmentRef(name=name, path=path, url=url if isinstance(url, str) else None)


def _refs_from_items(items: Sequence[Any]) -> List[AttachmentRef]:
    refs: List[AttachmentRef] = []
    for item in items:
        if item is None:
            continue
        if isinstance(item, dict):
            refs.append(_ref_from_mapping(item))
        elif isinstance(item, str):
            if item.strip():
                refs.append(_ref_from_path(item))
        else:
            refs.append(AttachmentRef(name="", path=str(item)))
    return refs


def _parse_empty(raw: Any) -> Any:
    if raw is None:
        return []
    if isinstance(raw, str) and not raw.strip():
        return []
    if isinstance(raw, (list, tuple)) and not raw:
        return []
    return _NO_MATCH


def _parse_sequence(raw: Any) -> Any:
    if not isinstance(raw, (list, tuple)):
        return _NO_MATCH
    return _refs_from_items(raw)


def _parse_mapping(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return _NO_MATCH
    return [_ref_from_mapping(raw)]


def _parse_json_text(raw: Any) -> Any:
    if not isinstance(raw, str):
        return _NO_MATCH
    text = raw.strip()
    looks_structured = (text.startswith("[") and text.endswith("]")) or (
        text.startswith("{") and text.endswith("}")
    )
    if not looks_structured:
        return _NO_MATCH
    try:
        parsed = json.loads(text)
    except ValueError:
        return _NO_MATCH
    for parser in (_parse_empty, _parse_sequence, _parse_mapping):
        result = parser(parsed)
        if result is not _NO_MATCH:
            return result
    return _NO_MATCH


def _decode_name(encoded: str, path: str) -> str:
    token = encoded.strip()
    if not token:
        return basename(path)
    padded = token + "=" * (-len(token) % 4)
    try:
        name = base64.b64decode(padded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return basename(path)
    return name or basename(path)


def _parse_composite_text(raw: Any) -> Any:
    if not isinstance(raw, str) or NAME_SEPARATOR not in raw:
        return _NO_MATCH
    tokens = [token.strip() for token in _TOKEN_SPLIT.split(raw) if token.strip()]
    if not any(NAME_SEPARATOR in token for token in tokens):
        return _NO_MATCH
    refs: List[AttachmentRef] = []
    for token in tokens:
        if NAME_SEPARATOR not in token:
            refs.append(_ref_from_path(token))
            continue
        path, encoded_name = token.split(NAME_SEPARATOR, 1)
        path = path.strip()
        if not path:
            continue
        refs.append(AttachmentRef(name=_decode_name(encoded_name, path), path=path))
    return refs


def _parse_delimited_text(raw: Any) -> Any:
    if not isinstance(raw, str) or not _TOKEN_SPLIT.search(raw):
        return _NO_MATCH
    return [_ref_from_path(token) for token in _TOKEN_SPLIT.split(raw) if token.strip()]


def _parse_plain_text(raw: Any) -> Any:
    if not isinstance(raw, str):
        return _NO_MATCH
    return [_ref_from_path(raw)]


_PARSERS: Sequence[Callable[[Any], Any]] = (
    _parse_empty,
    _parse_sequence,
    _parse_mapping,
    _parse_json_text,
    _parse_composite_text,
    _parse_delimited_text,
    _parse_plain_text,
)


def decode(raw: Any) -> List[AttachmentRef]:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    for parser in _PARSERS:
        result = parser(raw)
        if result is not _NO_MATCH:
            return result
    return [AttachmentRef(name="", path=str(raw))]


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def merge(existing: Iterable[AttachmentRef], uploaded: Iterable[AttachmentRef]) -> List[AttachmentRef]:
    """Union of both lists keyed by ``path``; later entries win, first position is kept."""
    by_path: Dict[str, AttachmentRef] = {}
    for ref in list(existing) + list(uploaded):
        if ref is None or not ref.path or not ref.path.strip():
            continue
        by_path[ref.path] = AttachmentRef(name=ref.name, path=ref.path, url=ref.url)
    return list(by_path.values())


# ---------------------------------------------------------------------------
# Storage keys
# ---------------------------------------------------------------------------


def week_prefix(branch_id: int, week_id: str) -> str:
    return f"gb{int(branch_id):03d}/{week_id}"


def _safe_suffix(filename: str) -> str:
    suffix = PurePosixPath((filename or "").replace("\\", "/")).suffix
    if not suffix:
        return ""
    cleaned = _KEY_UNSAFE.sub("", suffix).lower()[:10]
    if cleaned in {"", "."}:
        return ""
    return cleaned


def build_storage_key(branch_id: int, week_id: str, filename: str, *, now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(timezone.utc)
    timestamp = moment.strftime("%Y%m%dT%H%M%S")
    return f"{week_prefix(branch_id, week_id)}/{timestamp}_{uuid4().hex}{_safe_suffix(filename)}"


def key_in_week(key: str, branch_id: int, week_id: str) -> bool:
    if not key or ".." in key.split("/"):
        return False
    return key.startswith(week_prefix(branch_id, week_id) + "/")


__all__ = [
    "AttachmentRef",
    "DEFAULT_FILE_NAME",
    "NAME_SEPARATOR",
    "basename",
    "build_storage_key",
    "decode",
    "encode",
    "key_in_week",
    "merge",
    "week_prefix",
]
