"""
Shared fixtures for the test modules: an in-memory database per test and a
scriptable fake of the CRM HTTP API.
"""
import json
import unittest
from typing import Any, Callable, Optional

import httpx

from database import init_db, make_engine, make_session_factory
from services.crm_client import CRMClient

ACCOUNT_ID = "loc-test"


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    database_url = "sqlite+aiosqlite://"

    async def asyncSetUp(self):
        self.engine = make_engine(self.database_url)
        await init_db(self.engine)
        self.session_factory = make_session_factory(self.engine)
        self.session = self.session_factory()

    async def asyncTearDown(self):
        await self.session.close()
        await self.engine.dispose()


class StaticVault:
    """Stands in for TokenVault where token handling is not under test."""

    def __init__(self, token: str = "test-access-token", account_id: str = ACCOUNT_ID):
        self.token = token
        self.account_id = account_id
        self.calls = 0

    async def get_valid_token(self, account_id: str) -> str:
        self.calls += 1
        return self.token

    async def default_account_id(self) -> Optional[str]:
        return self.account_id


class FakeCRM:
    """
    Records every request and answers from per-route handlers.
    Routes are matched on (method, path); unmatched requests get 200 {}.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.pipelines = [
            {
                "id": "ZnZrgR1xfUXiw1K7GaJw",
                "name": "AIP",
                "stages": [
                    {"id": "stage-new-lead", "name": "New Lead"},
                    {"id": "stage-submitted", "name": "AIP Fact Find Submitted"},
                ],
            }
        ]
        self.on("GET", "/opportunities/pipelines", lambda r: httpx.Response(200, json={"pipelines": self.pipelines}))

    def on(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(200, json={})
        return handler(request)

    def calls(self, method: str, path: str) -> list[dict[str, Any]]:
        return [
            json.loads(r.content or b"{}")
            for r in self.requests
            if r.method == method and r.url.path == path
        ]

    def client(self, vault: Optional[StaticVault] = None) -> CRMClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return CRMClient(vault or StaticVault(), http, base_url="https://crm.test", account_id=ACCOUNT_ID)


def step1_payload(email: str = "ana@example.com", **overrides: Any) -> dict[str, Any]:
    payload = {
        "first_name": "Ana",
        "last_name": "Smith",
        "email": email,
        "mobile": "+34600111222",
        "date_of_birth": "1988-04-12",
    }
    payload.update(overrides)
    return payload


def step4_payload(salary: float = 65000, **overrides: Any) -> dict[str, Any]:
    payload = {
        "employment_status": "employed",
        "employment_details": {
            "job_title": "Engineer",
            "employer_name": "Acme",
            "gross_annual_salary": salary,
            "employment_start_date": "2019-01-07",
        },
        "financial_commitments": {
            "personal_loans": 200,
            "credit_card_debt": 50,
            "car_loans_lease": 0,
            "has_credit_or_legal_issues": False,
        },
    }
    payload.update(overrides)
    return payload
