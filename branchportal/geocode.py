"""Reverse geocoding through the Naver Maps gateway.

Returns ``(status_code, body)`` pairs so the HTTP route can pass upstream errors through
unchanged. Credentials are never logged, only whether they are present.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import requests

from branchportal import settings

log = logging.getLogger("uvicorn.error")

NAVER_REVERSE_GEOCODE_URL = "https://maps.apigw.ntruss.com/map-reversegeocode/v2/gc"

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,PATCH,DELETE,POST,PUT",
    "Access-Control-Allow-Headers": (
        "X-CSRF-Token,X-Requested-With,Accept,Accept-Version,Content-Length,"
        "Content-MD5,Content-Type,Date,X-Api-Version"
    ),
}


def has_credentials() -> bool:
    return bool(settings.NAVER_MAP_CLIENT_ID and settings.NAVER_MAP_CLIENT_SECRET)


def reverse_geocode(
    lat: Optional[str],
    lng: Optional[str],
    *,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Tuple[int, Dict[str, Any]]:
    if not lat or not lng:
        return 400, {"error": "Missing lat or lng parameters"}

    client_id = settings.NAVER_MAP_CLIENT_ID if client_id is None else client_id
    client_secret = settings.NAVER_MAP_CLIENT_SECRET if client_secret is None else client_secret
    if not client_id or not client_secret:
        log.error(
            "Naver Map credentials missing (client_id=%s client_secret=%s)",
            bool(client_id),
            bool(client_secret),
        )
        return 500, {"error": "Missing Naver Map credentials"}

    url = f"{NAVER_REVERSE_GEOCODE_URL}?coords={lng},{lat}&orders=addr,roadaddr&output=json"
    try:
        response = requests.get(
            url,
            headers={
                "x-ncp-apigw-api-key-id": client_id,
                "x-ncp-apigw-api-key": client_secret,
                "Accept": "application/json",
            },
            timeout=timeout or settings.GEOCODE_TIMEOUT_SEC,
        )
        if not response.ok:
            log.error("Naver reverse geocode failed status=%s body=%s", response.status_code, response.text[:500])
            return response.status_code, {
                "error": f"Naver API error: {response.reason}",
                "details": response.text,
            }
        return 200, response.json()
    except (requests.RequestException, ValueError):
        log.exception("Reverse geocode request failed")
        return 500, {"error": "Internal server error"}


def extract_region_address(payload: Dict[str, Any]) -> Optional[str]:
    """``"area1 area2 area3"`` from the first result, or None."""
    try:
        region = payload["results"][0]["region"]
    except (KeyError, IndexError, TypeError):
        return None
    parts = []
    for key in ("area1", "area2", "area3"):
        area = region.get(key) if isinstance(region, dict) else None
        name = (area or {}).get("name") if isinstance(area, dict) else None
        if name:
            parts.append(str(name).strip())
    return " ".join(part for part in parts if part) or None


def lookup_address(lat: float, lng: float) -> Optional[str]:
    if not has_credentials():
        return None
    status, body = reverse_geocode(str(lat), str(lng))
    if status != 200:
        return None
    return extract_region_address(body)
