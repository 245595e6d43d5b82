from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

ROLE_ADMIN = "admin"
ROLE_BRANCH = "branch"

_BRANCH_NAMES = [
    "포항시", "경주시", "김천시", "안동시", "구미시", "영주시", "영천시", "상주시", "문경시", "경산시",
    "청송군", "영양군", "영덕군", "청도군", "고령군", "성주군", "칠곡군", "예천군", "봉화군", "울진군",
]


@dataclass(frozen=True)
class Branch:
    id: int
    name: str

    @property
    def code(self) -> str:
        return f"gb{self.id:03d}"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "code": self.code}


@dataclass(frozen=True)
class Account:
    username: str
    role: str
    branch_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def can_access_branch(self, branch_id: int) -> bool:
        return self.is_admin or self.branch_id == branch_id

    def to_dict(self) -> Dict[str, Any]:
        return {"username": self.username, "role": self.role, "branch_id": self.branch_id}


BRANCHES: List[Branch] = [Branch(id=index + 1, name=name) for index, name in enumerate(_BRANCH_NAMES)]
_BRANCHES_BY_ID = {branch.id: branch for branch in BRANCHES}

# username -> (password, account)
_CREDENTIALS: Dict[str, tuple] = {
    "gbudc": ("gbudc", Account(username="gbudc", role=ROLE_ADMIN)),
}
for _branch in BRANCHES:
    _CREDENTIALS[_branch.code] = (
        _branch.code,
        Account(username=_branch.code, role=ROLE_BRANCH, branch_id=_branch.id),
    )


def get_branch(branch_id: int) -> Optional[Branch]:
    return _BRANCHES_BY_ID.get(branch_id)


def get_account(username: str) -> Optional[Account]:
    entry = _CREDENTIALS.get((username or "").strip())
    return entry[1] if entry else None


def authenticate(username: str, password: str) -> Optional[Account]:
    entry = _CREDENTIALS.get((username or "").strip())
    if not entry:
        return None
    expected, account = entry
    if not hmac.compare_digest(expected.encode("utf-8"), (password or "").strip().encode("utf-8")):
        return None
    return account


def branches_for(account: Account) -> List[Branch]:
    if account.is_admin:
        return list(BRANCHES)
    branch = get_branch(account.branch_id) if account.branch_id else None
    return [branch] if branch else []
