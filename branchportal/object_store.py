from __future__ import annotations

import hashlib
import hmac
import logging
import shutil
import time
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from branchportal import settings

log = logging.getLogger("uvicorn.error")

_S3_DELETE_BATCH = 1000


class ObjectStoreError(Exception):
    """Raised when the storage backend rejects or fails an operation."""


def content_disposition(download_name: Optional[str]) -> Optional[str]:
    if not download_name:
        return None
    ascii_name = download_name.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(download_name)}"


class ObjectStore:
    """Key-addressed blob storage used for submission attachments."""

    kind = "abstract"

    def upload(self, key: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    def signed_url(self, key: str, *, expires_in: int, download_name: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError

    def list_prefix(self, prefix: str) -> List[str]:
        raise NotImplementedError

    def delete_prefix(self, prefix: str) -> int:
        raise NotImplementedError


class S3ObjectStore(ObjectStore):
    kind = "s3"

    def __init__(self, bucket: str, *, prefix: str = "", client: Any = None) -> None:
        if not bucket:
            raise ValueError("S3 bucket name is required")
        self.bucket = bucket
        self.prefix = prefix.strip().strip("/")
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _full_key(self, key: str) -> str:
        trimmed = key.strip().lstrip("/")
        if self.prefix:
            return f"{self.prefix}/{trimmed}"
        return trimmed

    def _relative_key(self, full_key: str) -> str:
        if self.prefix and full_key.startswith(self.prefix + "/"):
            return full_key[len(self.prefix) + 1:]
        return full_key

    def upload(self, key: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": self._full_key(key), "Body": data}
        if content_type:
            params["ContentType"] = content_type
        try:
            self.client.put_object(**params)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"Upload failed for key={key}: {exc}") from exc

    def signed_url(self, key: str, *, expires_in: int, download_name: Optional[str] = None) -> Optional[str]:
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": self._full_key(key)}
        disposition = content_disposition(download_name)
        if disposition:
            params["ResponseContentDisposition"] = disposition
        try:
            return self.client.generate_presigned_url("get_object", Params=params, ExpiresIn=expires_in)
        except (BotoCoreError, ClientError):
            log.exception("Failed to presign key=%s", key)
            return None

    def list_prefix(self, prefix: str) -> List[str]:
        full_prefix = self._full_key(prefix).rstrip("/") + "/"
        keys: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=full_prefix):
                for item in page.get("Contents") or []:
                    keys.append(self._relative_key(item["Key"]))
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"Listing failed for prefix={prefix}: {exc}") from exc
        return keys

    def delete_prefix(self, prefix: str) -> int:
        keys = self.list_prefix(prefix)
        removed = 0
        for start in range(0, len(keys), _S3_DELETE_BATCH):
            batch = keys[start:start + _S3_DELETE_BATCH]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": self._full_key(key)} for key in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as exc:
                raise ObjectStoreError(f"Delete failed for prefix={prefix}: {exc}") from exc
            errors = response.get("Errors") or []
            if errors:
                raise ObjectStoreError(
                    f"Delete failed for {len(errors)} object(s) under prefix={prefix}: {errors[0].get('Message')}"
                )
            removed += len(batch)
        return removed


class LocalObjectStore(ObjectStore):
    """Objects on local disk, served back through signed ``/artifacts`` links."""

    kind = "local"

    def __init__(self, root: Path, *, secret: str, base_url: str = "/artifacts") -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._secret = (secret or "dev-secret-key").encode("utf-8")
        self.base_url = base_url.rstrip("/")

    def path_for(self, key: str) -> Path:
        full = (self.root / key.strip().lstrip("/")).resolve()
        if full != self.root and self.root not in full.parents:
            raise ObjectStoreError(f"Key escapes storage root: {key}")
        return full

    def upload(self, key: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        target = self.path_for(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise ObjectStoreError(f"Upload failed for key={key}: {exc}") from exc

    def _signature(self, key: str, expires: int, name: str) -> str:
        message = f"{key}\n{expires}\n{name}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed_url(self, key: str, *, expires_in: int, download_name: Optional[str] = None) -> Optional[str]:
        expires = int(time.time()) + int(expires_in)
        name = download_name or ""
        query = {"expires": str(expires), "signature": self._signature(key, expires, name)}
        if name:
            query["name"] = name
        return f"{self.base_url}/{quote(key)}?{urlencode(query)}"

    def verify(self, key: str, *, expires: int, signature: str, name: str = "") -> bool:
        if expires < int(time.time()):
            return False
        expected = self._signature(key, expires, name)
        return hmac.compare_digest(expected, signature or "")

    def list_prefix(self, prefix: str) -> List[str]:
        base = self.path_for(prefix)
        if not base.is_dir():
            return []
        return sorted(
            path.relative_to(self.root).as_posix()
            for path in base.rglob("*")
            if path.is_file()
        )

    def delete_prefix(self, prefix: str) -> int:
        keys = self.list_prefix(prefix)
        for key in keys:
            try:
                self.path_for(key).unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise ObjectStoreError(f"Delete failed for key={key}: {exc}") from exc
        base = self.path_for(prefix)
        if base.is_dir() and base != self.root:
            shutil.rmtree(base, ignore_errors=True)
        return len(keys)


def build_object_store() -> ObjectStore:
    if settings.S3_BUCKET:
        log.info("Object storage: S3 bucket=%s prefix=%s", settings.S3_BUCKET, settings.S3_OBJECT_PREFIX or "-")
        return S3ObjectStore(settings.S3_BUCKET, prefix=settings.S3_OBJECT_PREFIX)
    log.warning("Object storage: local directory %s (PORTAL_BUCKET unset).", settings.ARTIFACTS_DIR)
    return LocalObjectStore(settings.ARTIFACTS_DIR, secret=settings.SESSION_SECRET)
