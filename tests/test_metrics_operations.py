import json

import pytest

from ndis_core.metrics_operations import compute_operational_metrics, is_auto_approved, upper_median


def _state(errors=()):
    return json.dumps({"errors": list(errors), "ignored_errors": []})


INVOICES = [
    {"id": 1, "created_at": "2024-01-01T00:00:00Z", "auto_approved": False, "state_management": _state(["E1"])},
    {"id": 2, "created_at": "2024-01-01T00:00:00Z", "auto_approved": True, "state_management": _state()},
    {"id": 3, "created_at": "2024-01-01T10:00:00Z", "auto_approved": 0, "state_management": _state()},
]
SESSIONS = [
    {"invoice_id": 1, "session_started": "2024-01-01T01:00:00Z", "duration_seconds": 60, "engaged_duration_seconds": 60, "idle_count": 1},
    {"invoice_id": 1, "session_started": "2024-01-01T00:03:00Z", "duration_seconds": 120, "engaged_duration_seconds": 120, "idle_count": 2},
    {"invoice_id": 2, "session_started": "2024-01-01T02:00:00Z", "duration_seconds": 0, "engaged_duration_seconds": 0, "idle_count": 0},
    {"invoice_id": 3, "session_started": "2024-01-01T09:00:00Z", "duration_seconds": 30, "engaged_duration_seconds": 90, "idle_count": 0},
]
LINE_ITEMS = [
    {"created_at": "2024-01-05", "reconciliation_status": "Reconciled"},
    {"created_at": "2024-01-09", "reconciliation_status": "Pending"},
    {"created_at": "2024-02-01", "reconciliation_status": "Reconciled"},
    {"created_at": "2024-02-03", "reconciliation_status": None},
    {"created_at": "2024-02-04", "reconciliation_status": "Disputed"},
]


@pytest.fixture
def metrics():
    return compute_operational_metrics(INVOICES, SESSIONS, LINE_ITEMS)


def test_intake_latency_uses_earliest_session(metrics):
    """Invoice 1 waits 3 minutes, invoice 2 two hours; invoice 3 was viewed before creation."""
    counts = {r["bucket"]: r["count"] for r in metrics["intake_latency"]}

    assert list(counts) == ["0-5m", "5-15m", "15-30m", "30-60m", "1-2h", "2-6h", "6h+"]
    assert counts["0-5m"] == 1
    assert counts["2-6h"] == 1
    assert sum(counts.values()) == 2
    assert metrics["median_latency"] == pytest.approx(120.0)


def test_review_friction_splits_by_active_errors(metrics):
    friction = {r["category"]: r["avg_minutes"] for r in metrics["review_friction"]}

    assert friction["With Errors"] == pytest.approx(3.0)
    assert friction["Without Errors"] == pytest.approx(1.5)


def test_touchless_counts_auto_approved_or_error_free(metrics):
    assert metrics["touchless"]["touchless"] == 2
    assert metrics["touchless"]["manual"] == 1
    assert metrics["touchless"]["percentage"] == pytest.approx(200 / 3)


def test_efficiency_killers_drop_zero_duration(metrics):
    killers = {r["invoice_id"]: r for r in metrics["efficiency_killers"]}

    assert set(killers) == {"1", "3"}
    assert killers["1"] == {
        "invoice_id": "1",
        "total_duration": 180.0,
        "session_count": 2,
        "idle_count": 3.0,
        "has_errors": True,
    }
    assert killers["3"]["has_errors"] is False


def test_reconciliation_always_has_core_statuses(metrics):
    january, february = metrics["reconciliation"]

    assert january["month"] == "2024-01"
    assert (january["Reconciled"], january["Pending"], january["Failed"]) == (1, 1, 0)
    assert february["month"] == "2024-02"
    assert (february["Reconciled"], february["Failed"], february["Disputed"], february["Unknown"]) == (1, 0, 1, 1)


def test_without_sessions_only_reconciliation_is_filled():
    metrics = compute_operational_metrics(INVOICES, [], LINE_ITEMS)

    assert metrics["intake_latency"] == []
    assert metrics["efficiency_killers"] == []
    assert metrics["touchless"] == {"touchless": 0, "manual": 0, "percentage": 0.0}
    assert len(metrics["reconciliation"]) == 2


def test_upper_median():
    assert upper_median([]) == 0.0
    assert upper_median([5.0, 1.0, 3.0]) == 3.0
    assert upper_median([4.0, 1.0]) == 4.0


@pytest.mark.parametrize("value, expected", [(True, True), (1, True), (False, False), (0, False), ("true", False), (None, False)])
def test_is_auto_approved(value, expected):
    assert is_auto_approved(value) is expected
