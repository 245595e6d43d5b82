"""Submit and delete workflows for one (branch, week) submission.

Uploads run in a small thread pool. A file that fails to upload is reported back and
left out of the record; the title, status and note are saved regardless. Only a failed
record read or write fails the workflow as a whole.
"""
from __future__ import annotations

import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from branchportal import attachments, settings
from branchportal.attachments import AttachmentRef
from branchportal.object_store import ObjectStore
from branchportal.submission_store import Status, SubmissionRecord, SubmissionStore

log = logging.getLogger("uvicorn.error")


class SubmissionSaveError(Exception):
    """The record store could not be read or written during a workflow."""


@dataclass
class UploadedFile:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class UploadFailure:
    filename: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"filename": self.filename, "reason": self.reason}


@dataclass
class SubmitOutcome:
    record: SubmissionRecord
    failed_uploads: List[UploadFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.to_dict(),
            "failed_uploads": [failure.to_dict() for failure in self.failed_uploads],
        }


@dataclass
class DeleteOutcome:
    objects_removed: int = 0
    storage_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"objects_removed": self.objects_removed, "storage_error": self.storage_error}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _upload_one(
    object_store: ObjectStore,
    branch_id: int,
    week_id: str,
    upload: UploadedFile,
    max_bytes: int,
) -> AttachmentRef:
    name = (upload.filename or "").strip() or attachments.DEFAULT_FILE_NAME
    if not upload.data:
        raise ValueError(f"{name} is empty")
    if len(upload.data) > max_bytes:
        raise ValueError(f"{name} is larger than the {max_bytes // (1024 * 1024)} MB limit")
    key = attachments.build_storage_key(branch_id, week_id, name)
    content_type = upload.content_type or mimetypes.guess_type(name)[0] or "application/octet-stream"
    object_store.upload(key, upload.data, content_type=content_type)
    return AttachmentRef(name=name, path=key)


def upload_files(
    object_store: ObjectStore,
    branch_id: int,
    week_id: str,
    files: Sequence[UploadedFile],
    *,
    max_workers: Optional[int] = None,
    max_bytes: Optional[int] = None,
) -> Tuple[List[AttachmentRef], List[UploadFailure]]:
    """Upload ``files`` concurrently; results keep the input order."""
    if not files:
        return [], []
    workers = max(1, max_workers or settings.UPLOAD_CONCURRENCY)
    limit = max_bytes or settings.MAX_ATTACHMENT_BYTES
    uploaded: List[AttachmentRef] = []
    failures: List[UploadFailure] = []
    with ThreadPoolExecutor(max_workers=min(workers, len(files))) as pool:
        futures = [
            (upload, pool.submit(_upload_one, object_store, branch_id, week_id, upload, limit))
            for upload in files
        ]
        for upload, future in futures:
            try:
                uploaded.append(future.result())
            except Exception as exc:
                log.exception(
                    "Attachment upload failed branch=%s week=%s filename=%s",
                    branch_id,
                    week_id,
                    upload.filename,
                )
                failures.append(UploadFailure(filename=upload.filename or "", reason=str(exc) or type(exc).__name__))
    return uploaded, failures


def submit_week(
    store: SubmissionStore,
    object_store: ObjectStore,
    branch_id: int,
    week_id: str,
    *,
    title: str,
    status: Status,
    note: str,
    files: Sequence[UploadedFile] = (),
    max_workers: Optional[int] = None,
) -> SubmitOutcome:
    status = Status.parse(status)
    if status is Status.NOT_SUBMITTED:
        raise ValueError("Submissions must use REPORT or OFFICIAL status")

    try:
        existing = store.get_record(branch_id, week_id)
    except Exception as exc:
        log.exception("Failed to load submission branch=%s week=%s", branch_id, week_id)
        raise SubmissionSaveError("Could not load the existing submission") from exc

    uploaded, failures = upload_files(object_store, branch_id, week_id, files, max_workers=max_workers)
    if failures:
        log.warning(
            "Submission branch=%s week=%s saved with %s failed upload(s)",
            branch_id,
            week_id,
            len(failures),
        )

    record = SubmissionRecord(
        title=title or "",
        status=status,
        note=note or "",
        files=attachments.merge(existing.files, uploaded),
        submitted_at=_now(),
    )
    try:
        store.set_record(branch_id, week_id, record)
    except Exception as exc:
        log.exception("Failed to save submission branch=%s week=%s", branch_id, week_id)
        raise SubmissionSaveError("Could not save the submission") from exc

    log.info(
        "Submission saved branch=%s week=%s status=%s files=%s",
        branch_id,
        week_id,
        status.value,
        len(record.files),
    )
    return SubmitOutcome(record=record, failed_uploads=failures)


def delete_week(
    store: SubmissionStore,
    object_store: ObjectStore,
    branch_id: int,
    week_id: str,
) -> DeleteOutcome:
    outcome = DeleteOutcome()
    prefix = attachments.week_prefix(branch_id, week_id)
    try:
        outcome.objects_removed = object_store.delete_prefix(prefix)
    except Exception:
        log.exception("Failed to purge stored files prefix=%s", prefix)
        outcome.storage_error = True

    try:
        store.reset_record(branch_id, week_id)
    except Exception as exc:
        log.exception("Failed to reset submission branch=%s week=%s", branch_id, week_id)
        raise SubmissionSaveError("Could not reset the submission") from exc

    log.info(
        "Submission deleted branch=%s week=%s objects_removed=%s",
        branch_id,
        week_id,
        outcome.objects_removed,
    )
    return outcome
