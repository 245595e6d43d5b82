from __future__ import annotations

import os
import time
from typing import Dict, Optional, Tuple

import jwt

from branchportal import settings
from branchportal.accounts import Account

ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
DEFAULT_ACCESS_TTL = int(os.environ.get("JWT_ACCESS_TTL", str(60 * 60 * 12)))


class TokenError(Exception):
    """Raised when a JWT token cannot be validated."""


def _now() -> int:
    return int(time.time())


def _secret() -> str:
    return settings.SESSION_SECRET or "dev-secret-key"


def _encode(payload: Dict[str, object]) -> str:
    token = jwt.encode(payload, _secret(), algorithm=ALGORITHM)
    if isinstance(token, bytes):
        return token.decode("utf-8")
    return token


def _decode(token: str) -> Dict[str, object]:
    try:
        return jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    except jwt.PyJWTError as exc:
        raise TokenError(str(exc)) from exc


def create_access_token(account: Account, *, ttl: Optional[int] = None) -> Tuple[str, int]:
    lifetime = ttl or DEFAULT_ACCESS_TTL
    issued_at = _now()
    payload: Dict[str, object] = {
        "sub": account.username,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "role": account.role,
        "typ": "access",
    }
    if account.branch_id is not None:
        payload["branch_id"] = account.branch_id
    return _encode(payload), issued_at + lifetime


def decode_access_token(token: str) -> Dict[str, object]:
    payload = _decode(token)
    if payload.get("typ") != "access":
        raise TokenError("Invalid token type for access token")
    if not isinstance(payload.get("sub"), str):
        raise TokenError("Token subject missing")
    return payload
