#!/usr/bin/env python3
"""
Live smoke test for the migrant health card API.

Runs against a server started with ``OTP_EXPOSE_CODE_IN_RESPONSE=1`` and no
Twilio credentials, so every one-time code comes back in ``devOtp``::

    python manage.py seed_demo_identity
    OTP_EXPOSE_CODE_IN_RESPONSE=1 python manage.py runserver
    python unified_api_test.py
"""
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import requests

BASE_URL = os.getenv("BASE_URL", "http://127.0.0.1:8000")
DEMO_NATIONAL_ID = os.getenv("DEMO_NATIONAL_ID", "314619230735")


@dataclass
class TestResult:
    success: bool
    endpoint: str
    method: str
    status_code: int
    response_time: float
    error_message: str = ""
    description: str = ""


class UnifiedAPITester:
    def __init__(self):
        self.session = requests.Session()
        self.headers: Dict[str, str] = {}
        self.refresh: Optional[str] = None
        self.test_results = []
        self.error_results = []

    def call(self, method: str, endpoint: str, data: Dict = None, expected_status: int = 200,
             description: str = "") -> Optional[Dict[str, Any]]:
        url = f"{BASE_URL}{endpoint}"
        start_time = time.time()
        try:
            response = self.session.request(method, url, json=data, headers=self.headers, timeout=15)
        except requests.RequestException as e:
            result = TestResult(False, endpoint, method, 0, time.time() - start_time, str(e), description)
            print(f"❌ {method} {endpoint} - error: {e}")
            self.test_results.append(result)
            self.error_results.append(result)
            return None

        response_time = time.time() - start_time
        ok = response.status_code == expected_status
        result = TestResult(ok, endpoint, method, response.status_code, response_time,
                            "" if ok else response.text[:200], description)
        self.test_results.append(result)
        if ok:
            print(f"✅ {method} {endpoint} - {description} ({response_time:.2f}s)")
        else:
            self.error_results.append(result)
            print(f"❌ {method} {endpoint} - {response.status_code} ({response_time:.2f}s)")
        try:
            return response.json()
        except ValueError:
            return None

    def login(self) -> bool:
        data = self.call("POST", "/api/auth/send-otp-login", {"nationalIdNumber": DEMO_NATIONAL_ID},
                         description="request login code")
        if not data or not data.get("devOtp"):
            print("❌ no devOtp in response; start the server with OTP_EXPOSE_CODE_IN_RESPONSE=1 and no Twilio credentials")
            return False
        data = self.call("POST", "/api/auth/verify-otp-login",
                         {"nationalIdNumber": DEMO_NATIONAL_ID, "otp": data["devOtp"]},
                         description="confirm login code")
        if not data or not data.get("token"):
            return False
        self.headers = {"Authorization": f"Bearer {data['token']}"}
        self.refresh = data.get("refresh")
        return True

    def run(self) -> bool:
        print("🏥 Migrant health card API smoke test")
        print("=" * 50)
        self.call("GET", "/healthz", description="database ping")
        self.call("GET", "/api/health-check", description="liveness")
        self.call("GET", "/api/auth/config-check", description="configuration check")
        self.call("POST", "/api/auth/send-otp-login", {"nationalIdNumber": "12"}, 400, "malformed national ID")

        if not self.login():
            self.report()
            return False

        self.call("GET", "/api/auth/profile", description="profile")
        self.call("GET", "/api/users/dashboard", description="dashboard")
        record = self.call("POST", "/api/health/records", {
            "checkupDate": datetime.now().astimezone().isoformat(),
            "checkupType": "Routine",
            "vitals": {"weight": {"value": 66, "unit": "kg"}, "height": {"value": 170, "unit": "cm"}},
            "notes": "smoke test",
        }, 201, "create health record")
        self.call("GET", "/api/health/records", description="list records")
        self.call("GET", "/api/health/summary", description="health summary")
        self.call("GET", "/api/health/timeline", description="timeline")
        self.call("GET", "/api/health/search?q=smoke", description="search records")
        if record and record.get("record"):
            report = self.call("POST", "/api/reports", {
                "healthRecordId": record["record"]["id"],
                "reportType": "Other",
                "reportName": "Smoke test report",
                "reportDate": datetime.now().astimezone().isoformat(),
                "isPublic": True,
            }, 201, "create report")
            if report and report.get("report"):
                self.call("GET", f"/api/reports/access/{report['report']['accessCode']}", description="public report")
                self.call("DELETE", f"/api/reports/{report['report']['id']}", description="delete report")
            self.call("DELETE", f"/api/health/records/{record['record']['id']}", description="delete record")

        card = self.call("POST", "/api/qr/generate", {}, description="generate QR card")
        self.call("GET", "/api/qr", description="fetch QR card")
        if card and card.get("qrCode"):
            qr = card["qrCode"]
            self.call("POST", "/api/qr/scan", {"qrCode": qr["qrCode"]}, 403, "restricted scan without token")
            self.call("POST", "/api/qr/scan", {"qrCode": qr["qrCode"], "accessToken": qr["accessToken"]},
                      description="scan QR card")

        if self.refresh:
            self.call("POST", "/api/auth/refresh", {"refresh": self.refresh}, description="refresh token")
        self.call("POST", "/api/auth/logout", {}, description="logout")
        self.report()
        return not self.error_results

    def report(self):
        total = len(self.test_results)
        passed = sum(1 for r in self.test_results if r.success)
        print(f"\n🎯 {passed}/{total} passed")
        for i, error in enumerate(self.error_results, 1):
            print(f"{i}. {error.method} {error.endpoint} [{error.status_code}] {error.description}")
            print(f"   {error.error_message}")


def main():
    tester = UnifiedAPITester()
    sys.exit(0 if tester.run() else 1)


if __name__ == "__main__":
    main()
