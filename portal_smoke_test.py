#!/usr/bin/env python3
"""
Branch portal smoke checks against a running deployment.
Logs in as a branch user and the administrator, submits a test week and deletes it again.
"""

import json
import os
import sys
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

import requests

BASE_URL = os.environ.get("PORTAL_BASE_URL", "http://localhost:8000").rstrip("/")
BRANCH_USERNAME = os.environ.get("PORTAL_SMOKE_BRANCH_USER", "gb020")
ADMIN_USERNAME = os.environ.get("PORTAL_SMOKE_ADMIN_USER", "gbudc")


class PortalSmokeTester:
    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.branch_token: Optional[str] = None
        self.branch_id: Optional[int] = None
        self.admin_token: Optional[str] = None
        self.test_results = []
        # A week far in the past so real submissions are never touched.
        anchor = date(2020, 1, 6)
        self.week_id = (anchor - timedelta(days=anchor.weekday())).isoformat()

    def log_result(self, test_name: str, success: bool, message: str, details: Dict = None):
        self.test_results.append(
            {
                "test": test_name,
                "success": success,
                "message": message,
                "details": details or {},
                "timestamp": datetime.now().isoformat(),
            }
        )
        status = "PASS" if success else "FAIL"
        print(f"{status}: {test_name}")
        print(f"   {message}")
        if details:
            print(f"   Details: {json.dumps(details, indent=2, ensure_ascii=False)}")
        print()

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _login(self, username: str) -> Optional[Dict[str, Any]]:
        response = requests.post(
            f"{self.base_url}/api/auth/login",
            json={"username": username, "password": username},
            timeout=30,
        )
        if response.status_code != 200:
            self.log_result(f"Login {username}", False, f"HTTP {response.status_code}", {"body": response.text[:300]})
            return None
        data = response.json()
        self.log_result(f"Login {username}", True, f"role={data.get('role')} branch={data.get('branch_id')}")
        return data

    def test_health(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/healthz", timeout=15)
        except requests.RequestException as exc:
            self.log_result("Health", False, f"Request failed: {exc}")
            return False
        ok = response.status_code == 200 and response.json().get("ok") is True
        self.log_result("Health", ok, f"HTTP {response.status_code}")
        return ok

    def test_logins(self) -> bool:
        branch = self._login(BRANCH_USERNAME)
        admin = self._login(ADMIN_USERNAME)
        if not branch or not admin:
            return False
        self.branch_token = branch["access_token"]
        self.branch_id = branch.get("branch_id")
        self.admin_token = admin["access_token"]
        return True

    def test_submit_and_delete(self) -> bool:
        url = f"{self.base_url}/api/branches/{self.branch_id}/weeks/{self.week_id}"
        response = requests.post(
            url,
            headers=self._headers(self.branch_token),
            data={"title": "smoke test", "status": "REPORT", "note": "automated"},
            files=[("files", ("smoke.txt", b"smoke", "text/plain"))],
            timeout=60,
        )
        if response.status_code != 200:
            self.log_result("Submit week", False, f"HTTP {response.status_code}", {"body": response.text[:300]})
            return False
        body = response.json()
        files = body["record"]["files"]
        self.log_result(
            "Submit week",
            len(files) >= 1 and not body["failed_uploads"],
            f"{len(files)} file(s), {len(body['failed_uploads'])} failed upload(s)",
        )

        link = requests.get(
            f"{url}/file-url",
            headers=self._headers(self.branch_token),
            params={"path": files[0]["path"]},
            timeout=30,
        )
        self.log_result("Signed file URL", link.status_code == 200, f"HTTP {link.status_code}")

        response = requests.delete(url, headers=self._headers(self.branch_token), timeout=60)
        ok = response.status_code == 200
        self.log_result("Delete week", ok, f"HTTP {response.status_code}", response.json() if ok else None)
        return ok

    def test_admin_overview(self) -> bool:
        response = requests.get(
            f"{self.base_url}/api/admin/overview",
            headers=self._headers(self.admin_token),
            params={"weeks": 4},
            timeout=30,
        )
        ok = response.status_code == 200 and len(response.json().get("branches", [])) == 20
        self.log_result("Admin overview", ok, f"HTTP {response.status_code}")
        forbidden = requests.get(
            f"{self.base_url}/api/admin/overview",
            headers=self._headers(self.branch_token),
            timeout=30,
        )
        self.log_result("Overview forbidden for branch user", forbidden.status_code == 403, f"HTTP {forbidden.status_code}")
        return ok and forbidden.status_code == 403

    def run_all_tests(self) -> int:
        print(f"Branch portal smoke checks against {self.base_url}\n")
        if not self.test_health() or not self.test_logins():
            return 1
        self.test_submit_and_delete()
        self.test_admin_overview()
        failed = sum(1 for result in self.test_results if not result["success"])
        print(f"{len(self.test_results) - failed} passed, {failed} failed")
        return failed


def main():
    tester = PortalSmokeTester()
    failed = tester.run_all_tests()
    sys.exit(0 if failed == 0 else 1)


if __name__ == "__main__":
    main()
