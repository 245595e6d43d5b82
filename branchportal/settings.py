from __future__ import annotations

import os
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]

APP_ENV = (os.environ.get("APP_ENV") or os.environ.get("PORTAL_ENV") or "development").strip().lower()

# Record store backend: memory | sqlite | postgres
_DEFAULT_STORE = "postgres" if os.environ.get("DB_HOST") else "memory"
STORE_BACKEND = (os.environ.get("PORTAL_STORE") or _DEFAULT_STORE).strip().lower()

DATA_DIR = Path(os.environ.get("PORTAL_DATA_DIR", str(REPO_ROOT / "data"))).resolve()
ARTIFACTS_DIR = Path(os.environ.get("ARTIFACTS_DIR", str(REPO_ROOT / "artifacts"))).resolve()

# Object storage. Empty bucket means files stay under ARTIFACTS_DIR.
S3_BUCKET = os.environ.get("PORTAL_BUCKET", "").strip()
S3_OBJECT_PREFIX = os.environ.get("PORTAL_OBJECT_PREFIX", "").strip()
SIGNED_URL_TTL = int(os.environ.get("SIGNED_URL_TTL", "3600"))

UPLOAD_CONCURRENCY = int(os.environ.get("UPLOAD_CONCURRENCY", "3"))
MAX_ATTACHMENT_BYTES = int(os.environ.get("MAX_ATTACHMENT_BYTES", str(20 * 1024 * 1024)))
MAX_FILES_PER_SUBMIT = int(os.environ.get("MAX_FILES_PER_SUBMIT", "5"))

WEEK_WINDOW = int(os.environ.get("WEEK_WINDOW", "12"))
TIMEZONE = os.environ.get("PORTAL_TIMEZONE", "Asia/Seoul").strip() or "Asia/Seoul"

SESSION_SECRET = os.environ.get("JWT_SECRET") or os.environ.get("SESSION_SECRET") or ""

# Reverse geocoding (Naver Maps). The VITE_ names are what the old frontend build used.
NAVER_MAP_CLIENT_ID = (
    os.environ.get("NAVER_MAP_CLIENT_ID") or os.environ.get("VITE_NAVER_MAP_CLIENT_ID") or ""
).strip()
NAVER_MAP_CLIENT_SECRET = (
    os.environ.get("NAVER_MAP_CLIENT_SECRET") or os.environ.get("VITE_NAVER_MAP_CLIENT_SECRET") or ""
).strip()
GEOCODE_TIMEOUT_SEC = float(os.environ.get("GEOCODE_TIMEOUT_SEC", "10"))
