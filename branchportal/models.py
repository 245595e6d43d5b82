from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    expires_in: int
    token_type: str = "bearer"
    role: str
    username: str
    branch_id: Optional[int] = None
    branch_name: Optional[str] = None


class FieldReportCreate(BaseModel):
    category: str
    item_id: str
    latitude: float
    longitude: float
    measurements: Dict[str, Any] = Field(default_factory=dict)
    address: str = ""
    memo: str = ""

    class Config:
        extra = "forbid"


class NoticeCreate(BaseModel):
    title: str
    body: str = ""

    class Config:
        extra = "forbid"


class FileUrlResponse(BaseModel):
    url: str
    name: str
    expires_in: int


__all__ = [
    "FieldReportCreate",
    "FileUrlResponse",
    "LoginRequest",
    "LoginResponse",
    "NoticeCreate",
]
