import json
import math

import pandas as pd
import pytest

from ndis_core.metrics_efficiency import compute_efficiency_scores, score_invoices
from ndis_core.options import WEIGHTS_WITH_IGNORED, WEIGHTS_WITHOUT_IGNORED
from ndis_core.results import EMPTY, MISSING_COLUMN, OK


def _state(errors=(), ignored=()):
    return json.dumps({"errors": list(errors), "ignored_errors": list(ignored)})


def test_single_invoice_example():
    """One invoice with one error and one session scores 0.9 with the default scheme."""
    invoices = [{"id": 1, "amount": 500, "state_management": _state(["E1"])}]
    sessions = [{"invoice_id": 1, "active_duration_seconds": 120}]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)

    assert result.status == OK
    assert len(result.rows) == 1
    row = result.rows[0]
    assert row["rank"] == 1
    assert row["invoice_id"] == "1"
    assert row["active_time"] == 120
    assert row["session_count"] == 1
    assert row["error_codes"] == ["E1"]
    assert row["ignored_error_codes"] == []
    assert row["score"] == pytest.approx(0.9)


def test_active_time_is_normalized_against_maximum():
    """Active times 100 and 200 with one session each score 0.45 and 0.7."""
    invoices = [{"id": 1}, {"id": 2}]
    sessions = [
        {"invoice_id": 1, "active_duration_seconds": 100},
        {"invoice_id": 2, "active_duration_seconds": 200},
    ]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)

    assert [r["invoice_id"] for r in result.rows] == ["2", "1"]
    assert result.rows[0]["score"] == pytest.approx(0.7)
    assert result.rows[1]["score"] == pytest.approx(0.45)


def test_without_ignored_scheme_weights_active_time_more():
    invoices = [{"id": 1, "state_management": _state([], ["X"])}]
    sessions = [{"invoice_id": 1, "active_duration_seconds": 50}]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITHOUT_IGNORED)

    assert result.rows[0]["score"] == pytest.approx(0.8)
    assert result.extra["weights"]["ignored_errors"] == 0.0


def test_empty_sessions_return_empty_status():
    result = compute_efficiency_scores([{"id": 1}], [], weights=WEIGHTS_WITH_IGNORED)

    assert result.status == EMPTY
    assert result.rows == []


def test_missing_session_invoice_column():
    result = compute_efficiency_scores([{"id": 1}], [{"foo": 1}], weights=WEIGHTS_WITH_IGNORED)

    assert result.status == MISSING_COLUMN
    assert result.extra["available_columns"] == ["foo"]


def test_zero_maximum_features_contribute_nothing():
    """No active time and no errors anywhere: only the session component counts."""
    invoices = [{"id": 1}, {"id": 2}]
    sessions = [
        {"invoice_id": 1, "active_duration_seconds": 0},
        {"invoice_id": 2, "active_duration_seconds": None},
    ]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)

    for row in result.rows:
        assert math.isfinite(row["score"])
        assert row["score"] == pytest.approx(0.2)


def test_ranking_is_sorted_bounded_and_truncated():
    invoices = [{"id": i, "state_management": _state(["E"] * (i % 3))} for i in range(1, 8)]
    sessions = [{"invoice_id": i, "active_duration_seconds": i * 10} for i in range(1, 8)]
    sessions += [{"invoice_id": 3, "active_duration_seconds": 5}]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED, top_n=4)

    scores = [r["score"] for r in result.rows]
    assert len(scores) == 4
    assert scores == sorted(scores, reverse=True)
    assert [r["rank"] for r in result.rows] == [1, 2, 3, 4]
    assert all(0 <= s <= WEIGHTS_WITH_IGNORED.total for s in scores)
    assert result.extra["scored_invoices"] == 7


def test_default_cap_is_one_hundred():
    invoices = [{"id": i} for i in range(1, 151)]
    sessions = [{"invoice_id": i, "active_duration_seconds": i} for i in range(1, 151)]
    sessions += [{"invoice_id": 5, "active_duration_seconds": 1}]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)

    assert len(result.rows) == 100
    assert result.extra["scored_invoices"] == 150
    assert result.rows[0]["invoice_id"] == "150"
    assert [r["rank"] for r in result.rows] == list(range(1, 101))


def test_ties_keep_first_seen_session_order():
    invoices = [{"id": "b"}, {"id": "a"}]
    sessions = [
        {"invoice_id": "a", "active_duration_seconds": 10},
        {"invoice_id": "b", "active_duration_seconds": 10},
    ]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)

    assert [r["invoice_id"] for r in result.rows] == ["a", "b"]


def test_sessionless_invoices_are_opt_in():
    invoices = [
        {"id": 1, "state_management": _state(["E1"])},
        {"id": 2, "state_management": _state(["E2"])},
    ]
    sessions = [{"invoice_id": 1, "active_duration_seconds": 60}]

    default = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)
    legacy = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED, include_sessionless=True)

    assert [r["invoice_id"] for r in default.rows] == ["1"]
    assert [r["invoice_id"] for r in legacy.rows] == ["1", "2"]
    assert legacy.rows[1]["session_count"] == 0
    assert legacy.rows[1]["score"] == pytest.approx(0.2)


def test_ids_match_across_numeric_and_string_forms():
    invoices = pd.DataFrame([{"id": 1.0, "state_management": _state(["E1"])}])
    sessions = [{"invoice_id": "1", "active_duration_seconds": 10}]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)

    assert result.rows[0]["error_codes"] == ["E1"]


def test_malformed_state_is_counted_and_skipped():
    invoices = [
        {"id": 1, "state_management": "{not json"},
        {"id": 2, "state_management": {"errors": ["E9"], "ignored_errors": []}},
    ]
    sessions = [
        {"invoice_id": 1, "active_duration_seconds": 10},
        {"invoice_id": 2, "active_duration_seconds": 10},
    ]

    result = compute_efficiency_scores(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)

    assert result.malformed_rows == 1
    by_id = {r["invoice_id"]: r for r in result.rows}
    assert by_id["1"]["error_codes"] == []
    assert by_id["2"]["error_codes"] == ["E9"]


def test_blank_session_ids_are_skipped():
    invoices = [{"id": 1}]
    sessions = [
        {"invoice_id": 1, "active_duration_seconds": 10},
        {"invoice_id": None, "active_duration_seconds": 999},
        {"invoice_id": 0, "active_duration_seconds": 999},
    ]

    scored, _ = score_invoices(invoices, sessions, weights=WEIGHTS_WITH_IGNORED)

    assert scored["invoice_id"].tolist() == ["1"]
    assert scored["active_time"].tolist() == [10]
