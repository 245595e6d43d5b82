# branchportal/main.py
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from branchportal import accounts, attachments, geocode, settings, weeks
from branchportal.accounts import Account, Branch
from branchportal.auth_tokens import TokenError, create_access_token, decode_access_token
from branchportal.field_reports import CATEGORIES, FieldReportError, build_field_report_store, validate_report
from branchportal.models import FieldReportCreate, FileUrlResponse, LoginRequest, LoginResponse, NoticeCreate
from branchportal.notices import build_notice_store
from branchportal.object_store import LocalObjectStore, ObjectStoreError, build_object_store
from branchportal.submission_store import Status, SubmissionRecord, build_submission_store
from branchportal.submissions import SubmissionSaveError, UploadedFile, delete_week, submit_week

log = logging.getLogger("uvicorn.error")

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Branch Portal API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

if not settings.SESSION_SECRET:
    log.warning("JWT_SECRET/SESSION_SECRET not set; using insecure default. Set JWT_SECRET in production.")


def _state_store(request: Request, name: str, factory):
    store = getattr(request.app.state, name, None)
    if store is None:
        store = factory()
        setattr(request.app.state, name, store)
    return store


def _submission_store(request: Request):
    return _state_store(request, "submission_store", build_submission_store)


def _object_store(request: Request):
    return _state_store(request, "object_store", build_object_store)


def _field_report_store(request: Request):
    return _state_store(request, "field_report_store", build_field_report_store)


def _notice_store(request: Request):
    return _state_store(request, "notice_store", build_notice_store)


@app.on_event("startup")
async def _on_startup() -> None:
    for name, factory in (
        ("submission_store", build_submission_store),
        ("object_store", build_object_store),
        ("field_report_store", build_field_report_store),
        ("notice_store", build_notice_store),
    ):
        if getattr(app.state, name, None) is None:
            setattr(app.state, name, factory())
    log.info(
        "Branch portal ready: store=%s objects=%s geocoder=%s",
        app.state.submission_store.kind,
        app.state.object_store.kind,
        "configured" if geocode.has_credentials() else "missing credentials",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    parts = header.split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, value = parts[0].strip(), parts[1].strip()
    if scheme.lower() != "bearer":
        return None
    return value or None


def _require_account(request: Request) -> Account:
    bearer = _extract_bearer_token(request)
    if not bearer:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        payload = decode_access_token(bearer)
    except TokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid authentication token") from exc
    account = accounts.get_account(str(payload.get("sub")))
    if account is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return account


def _require_admin(request: Request) -> Account:
    account = _require_account(request)
    if not account.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return account


def _require_branch(account: Account, branch_id: int) -> Branch:
    branch = accounts.get_branch(branch_id)
    if branch is None:
        raise HTTPException(status_code=404, detail="Branch not found")
    if not account.can_access_branch(branch_id):
        raise HTTPException(status_code=403, detail="You can only access your own branch")
    return branch


def _require_week(week_id: str) -> str:
    try:
        weeks.parse_week_id(week_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return week_id


def _week_row(week: weeks.Week, record: SubmissionRecord) -> Dict[str, Any]:
    return {
        "week_id": week.id,
        "label": week.label,
        "status": record.status.value,
        "status_label": record.status.label,
        "title": record.title,
        "submitted_at": record.submitted_at,
        "file_count": len(record.files),
    }


def _record_with_urls(request: Request, record: SubmissionRecord) -> Dict[str, Any]:
    object_store = _object_store(request)
    for ref in record.files:
        if ref.path:
            ref.url = object_store.signed_url(
                ref.path,
                expires_in=settings.SIGNED_URL_TTL,
                download_name=ref.name or attachments.basename(ref.path),
            )
    return record.to_dict()


def _read_uploads(files: List[UploadFile]) -> List[UploadedFile]:
    collected: List[UploadedFile] = []
    for upload in files or []:
        if not isinstance(upload, StarletteUploadFile) or not upload.filename:
            continue
        collected.append(
            UploadedFile(
                filename=upload.filename,
                data=upload.file.read(),
                content_type=upload.content_type,
            )
        )
    return collected


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/healthz")
def healthz() -> Dict[str, bool]:
    return {"ok": True}


@app.post("/api/auth/login", response_model=LoginResponse)
def auth_login(request: Request, payload: LoginRequest) -> LoginResponse:
    username = (payload.username or "").strip()
    if not username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    account = accounts.authenticate(username, payload.password)
    if account is None:
        log.info("Login failed for %s", username)
        raise HTTPException(status_code=401, detail="Invalid username or password")
    token, expires_at = create_access_token(account)
    branch = accounts.get_branch(account.branch_id) if account.branch_id else None
    log.info("Login success for %s via %s", username, getattr(request.client, "host", "-"))
    return LoginResponse(
        access_token=token,
        expires_in=max(expires_at - int(time.time()), 0),
        role=account.role,
        username=account.username,
        branch_id=account.branch_id,
        branch_name=branch.name if branch else None,
    )


@app.get("/api/me")
def api_me(request: Request):
    account = _require_account(request)
    data = account.to_dict()
    branch = accounts.get_branch(account.branch_id) if account.branch_id else None
    data["branch"] = branch.to_dict() if branch else None
    return data


@app.get("/api/branches")
def api_branches(request: Request):
    account = _require_account(request)
    return {"branches": [branch.to_dict() for branch in accounts.branches_for(account)]}


@app.get("/api/weeks")
def api_weeks(request: Request):
    _require_account(request)
    return {"weeks": [week.to_dict() for week in weeks.recent_weeks()]}


@app.get("/api/admin/overview")
def api_admin_overview(request: Request, count: int = Query(4, alias="weeks")):
    _require_admin(request)
    if not 1 <= count <= settings.WEEK_WINDOW:
        raise HTTPException(status_code=400, detail=f"weeks must be between 1 and {settings.WEEK_WINDOW}")
    window = weeks.recent_weeks(count)
    matrix = _submission_store(request).get_matrix(
        [branch.id for branch in accounts.BRANCHES],
        [week.id for week in window],
    )
    return {
        "weeks": [week.to_dict() for week in window],
        "branches": [
            {
                "branch_id": branch.id,
                "name": branch.name,
                "code": branch.code,
                "weeks": [_week_row(week, matrix[branch.id][week.id]) for week in window],
            }
            for branch in accounts.BRANCHES
        ],
    }


@app.get("/api/branches/{branch_id}/submissions")
def api_branch_submissions(request: Request, branch_id: int):
    account = _require_account(request)
    branch = _require_branch(account, branch_id)
    window = weeks.recent_weeks()
    records = _submission_store(request).get_records(branch.id, [week.id for week in window])
    return {
        "branch": branch.to_dict(),
        "weeks": [_week_row(week, records[week.id]) for week in window],
    }


@app.get("/api/branches/{branch_id}/weeks/{week_id}")
def api_get_week(request: Request, branch_id: int, week_id: str):
    account = _require_account(request)
    branch = _require_branch(account, branch_id)
    _require_week(week_id)
    record = _submission_store(request).get_record(branch.id, week_id)
    week = weeks.week_for(weeks.parse_week_id(week_id))
    return {
        "branch": branch.to_dict(),
        "week": week.to_dict(),
        "record": _record_with_urls(request, record),
    }


@app.post("/api/branches/{branch_id}/weeks/{week_id}")
def api_submit_week(
    request: Request,
    branch_id: int,
    week_id: str,
    title: str = Form(""),
    status: str = Form(...),
    note: str = Form(""),
    files: List[UploadFile] = File(default=[]),
):
    account = _require_account(request)
    branch = _require_branch(account, branch_id)
    _require_week(week_id)
    parsed_status = Status.parse(status)
    if parsed_status is Status.NOT_SUBMITTED:
        raise HTTPException(status_code=400, detail="Status must be REPORT or OFFICIAL")
    uploads = _read_uploads(files)
    if len(uploads) > settings.MAX_FILES_PER_SUBMIT:
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.MAX_FILES_PER_SUBMIT} files can be attached per submission",
        )
    try:
        outcome = submit_week(
            _submission_store(request),
            _object_store(request),
            branch.id,
            week_id,
            title=title,
            status=parsed_status,
            note=note,
            files=uploads,
        )
    except SubmissionSaveError as exc:
        raise HTTPException(status_code=500, detail="Save failed") from exc
    log.info("Submission by %s branch=%s week=%s", account.username, branch.id, week_id)
    return {
        "record": _record_with_urls(request, outcome.record),
        "failed_uploads": [failure.to_dict() for failure in outcome.failed_uploads],
    }


@app.delete("/api/branches/{branch_id}/weeks/{week_id}")
def api_delete_week(request: Request, branch_id: int, week_id: str):
    account = _require_account(request)
    branch = _require_branch(account, branch_id)
    _require_week(week_id)
    try:
        outcome = delete_week(_submission_store(request), _object_store(request), branch.id, week_id)
    except SubmissionSaveError as exc:
        raise HTTPException(status_code=500, detail="Delete failed") from exc
    log.info("Submission deleted by %s branch=%s week=%s", account.username, branch.id, week_id)
    return outcome.to_dict()


@app.get("/api/branches/{branch_id}/weeks/{week_id}/file-url", response_model=FileUrlResponse)
def api_file_url(request: Request, branch_id: int, week_id: str, path: str = ""):
    account = _require_account(request)
    branch = _require_branch(account, branch_id)
    _require_week(week_id)
    if not attachments.key_in_week(path, branch.id, week_id):
        raise HTTPException(status_code=400, detail="File does not belong to this submission")
    record = _submission_store(request).get_record(branch.id, week_id)
    ref = next((item for item in record.files if item.path == path), None)
    if ref is None:
        raise HTTPException(status_code=404, detail="File not found")
    name = ref.name or attachments.basename(path)
    url = _object_store(request).signed_url(path, expires_in=settings.SIGNED_URL_TTL, download_name=name)
    if not url:
        raise HTTPException(status_code=500, detail="Could not create download link")
    return FileUrlResponse(url=url, name=name, expires_in=settings.SIGNED_URL_TTL)


@app.get("/artifacts/{key:path}")
def get_artifact(request: Request, key: str, expires: int = 0, signature: str = "", name: str = ""):
    object_store = _object_store(request)
    if not isinstance(object_store, LocalObjectStore):
        raise HTTPException(status_code=404, detail="Not Found")
    if not object_store.verify(key, expires=expires, signature=signature, name=name):
        raise HTTPException(status_code=403, detail="Link expired or invalid")
    try:
        full = object_store.path_for(key)
    except ObjectStoreError as exc:
        raise HTTPException(status_code=400, detail="Invalid artifact path") from exc
    if not full.is_file():
        log.warning("artifact missing key=%s", key)
        raise HTTPException(status_code=404, detail="Not Found")
    return FileResponse(full, filename=name or attachments.basename(key))


@app.get("/api/field-reports/catalog")
def api_field_report_catalog(request: Request):
    _require_account(request)
    return {"categories": CATEGORIES}


@app.get("/api/field-reports")
def api_field_reports(request: Request, limit: int = 200):
    account = _require_account(request)
    branch_id = None if account.is_admin else account.branch_id
    reports = _field_report_store(request).list_reports(branch_id=branch_id, limit=max(1, min(limit, 1000)))
    return {"reports": reports}


@app.post("/api/field-reports", status_code=201)
def api_create_field_report(request: Request, payload: FieldReportCreate):
    account = _require_account(request)
    try:
        report = validate_report(
            category=payload.category,
            item_id=payload.item_id,
            latitude=payload.latitude,
            longitude=payload.longitude,
            measurements=payload.measurements,
        )
    except FieldReportError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    address = (payload.address or "").strip()
    if not address:
        address = geocode.lookup_address(report["latitude"], report["longitude"]) or ""
    created = _field_report_store(request).create_report(
        user_id=account.username,
        branch_id=account.branch_id,
        report=report,
        address=address,
        memo=payload.memo,
    )
    log.info("Field report %s created by %s", created.get("id"), account.username)
    return created


@app.get("/api/notices")
def api_notices(request: Request):
    _require_account(request)
    return {"notices": _notice_store(request).list_notices()}


@app.post("/api/notices", status_code=201)
def api_create_notice(request: Request, payload: NoticeCreate):
    account = _require_admin(request)
    title = (payload.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    return _notice_store(request).add_notice(title=title, body=payload.body or "", author=account.username)


REVERSE_GEOCODE_PATH = "/api/reverse-geocode"


def _geocode_method_not_allowed() -> JSONResponse:
    return JSONResponse({"error": "Method not allowed"}, status_code=405, headers=geocode.CORS_HEADERS)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    # Methods outside the route's list are rejected by routing before the handler runs.
    if exc.status_code == 405 and request.url.path == REVERSE_GEOCODE_PATH:
        return _geocode_method_not_allowed()
    return await http_exception_handler(request, exc)


@app.api_route(REVERSE_GEOCODE_PATH, methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
def api_reverse_geocode(request: Request):
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=geocode.CORS_HEADERS)
    if request.method != "GET":
        return _geocode_method_not_allowed()
    status_code, body = geocode.reverse_geocode(
        request.query_params.get("lat"),
        request.query_params.get("lng"),
    )
    return JSONResponse(body, status_code=status_code, headers=geocode.CORS_HEADERS)
