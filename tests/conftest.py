import json
from typing import Dict, List

import httpx
import pytest

from ndis_core.settings import get_settings
from ndis_core.supabase import SupabaseTableClient


def state(errors=(), ignored=()) -> str:
    return json.dumps({"errors": list(errors), "ignored_errors": list(ignored)})


@pytest.fixture
def invoices() -> List[Dict]:
    return [
        {
            "id": 1,
            "participant_id": "P1",
            "amount": 250.0,
            "invoice_date": "2024-01-15",
            "created_at": "2024-01-15T00:00:00Z",
            "auto_approved": False,
            "state_management": state(["E1", "E2"], ["E3"]),
        },
        {
            "id": 2,
            "participant_id": "P1",
            "amount": 1200.0,
            "invoice_date": "2024-01-20",
            "created_at": "2024-01-20T00:00:00Z",
            "auto_approved": True,
            "state_management": state(["E1"]),
        },
        {
            "id": 3,
            "participant_id": "P2",
            "amount": 80.0,
            "invoice_date": "2024-02-02",
            "created_at": "2024-02-02T00:00:00Z",
            "auto_approved": False,
            "state_management": state(),
        },
    ]


@pytest.fixture
def sessions() -> List[Dict]:
    return [
        {
            "invoice_id": 1,
            "active_duration_seconds": 300,
            "duration_seconds": 400,
            "engaged_duration_seconds": 300,
            "idle_count": 2,
            "session_started": "2024-01-15T00:04:00Z",
        },
        {
            "invoice_id": 2,
            "active_duration_seconds": 30,
            "duration_seconds": 40,
            "engaged_duration_seconds": 30,
            "idle_count": 0,
            "session_started": "2024-01-20T01:00:00Z",
        },
        {
            "invoice_id": 2,
            "active_duration_seconds": 30,
            "duration_seconds": 50,
            "engaged_duration_seconds": 20,
            "idle_count": 1,
            "session_started": "2024-01-20T03:00:00Z",
        },
        {
            "invoice_id": 3,
            "active_duration_seconds": 0,
            "duration_seconds": 10,
            "engaged_duration_seconds": 0,
            "idle_count": 0,
            "session_started": "2024-02-02T00:00:30Z",
        },
    ]


@pytest.fixture
def catalogue() -> List[Dict]:
    return [
        {"code": "E1", "description": "Participant NDIS number missing"},
        {"error_code": "E3", "description": "Duplicate line item"},
    ]


@pytest.fixture
def line_items() -> List[Dict]:
    return [
        {"id": 10, "created_at": "2024-01-05T10:00:00Z", "reconciliation_status": "Reconciled"},
        {"id": 11, "created_at": "2024-01-09T10:00:00Z", "reconciliation_status": "Pending"},
        {"id": 12, "created_at": "2024-02-01T10:00:00Z", "reconciliation_status": "Reconciled"},
    ]


class FakePostgrest:
    """Serves ``select=*`` requests with limit/offset paging from in-memory tables."""

    def __init__(self, tables: Dict[str, List[Dict]]):
        self.tables = tables
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        if table not in self.tables:
            return httpx.Response(404, json={"message": f'relation "public.{table}" does not exist', "code": "42P01"})
        limit = int(request.url.params.get("limit", "1000"))
        offset = int(request.url.params.get("offset", "0"))
        return httpx.Response(200, json=self.tables[table][offset : offset + limit])

    def client(self) -> SupabaseTableClient:
        return SupabaseTableClient("https://example.supabase.co", "service-key", transport=httpx.MockTransport(self))


@pytest.fixture
def fake_postgrest(invoices, sessions, catalogue, line_items):
    return FakePostgrest(
        {
            "ndis_invoices": invoices,
            "invoice_view_sessions": sessions,
            "errors": catalogue,
            "invoice_line_items": line_items,
        }
    )


@pytest.fixture
def api_env(monkeypatch):
    from ndis_api.main import get_login_limiter

    monkeypatch.setenv("APP_PASSWORD", "secret")
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    monkeypatch.setenv("DATABASE_TABLES", "ndis_invoices, errors")
    get_settings.cache_clear()
    get_login_limiter.cache_clear()
    yield
    get_settings.cache_clear()
    get_login_limiter.cache_clear()


@pytest.fixture
def make_postgrest():
    return FakePostgrest
