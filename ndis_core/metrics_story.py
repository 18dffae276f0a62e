"""Composed payload behind the Data Story page.

Runs every engine computation and supplementary metric over one set of fetched
records and attaches Vega-Lite specs for each non-empty series. The payload is
plain dicts and lists so the API and the Streamlit app can both render it.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import pandas as pd

from ndis_core.charts import arc_spec, bar_spec, line_spec, scatter_spec, stacked_bar_spec
from ndis_core.data import Records, frame_from_records, resolve_roles
from ndis_core.metrics_correlation import compute_correlations
from ndis_core.metrics_distributions import (
    compute_duration_distribution,
    compute_invoice_stats,
    compute_invoice_value_distribution,
    compute_invoices_per_participant,
    compute_monthly_trend,
    compute_sessions_per_invoice,
)
from ndis_core.metrics_efficiency import compute_efficiency_scores
from ndis_core.metrics_errors import compute_error_rankings
from ndis_core.metrics_operations import RECONCILIATION_STATUSES, compute_operational_metrics
from ndis_core.options import StoryOptions

DURATION_SERIES = {
    "total": "session_duration",
    "active": "session_active_duration",
    "engaged": "session_engaged_duration",
}


def _story_charts(payload: Dict[str, Any]) -> Dict[str, Any]:
    dist = payload["distributions"]
    errors = payload["errors"]
    ops = payload["operations"]
    corr = payload["correlations"]

    efficiency_rows = [
        {"invoice_id": r["invoice_id"], "score": r["score"]} for r in payload["efficiency"]["rows"][:20]
    ]
    correlation_rows = [{"metric": r["metric"], "correlation": r["correlation"]} for r in corr["rows"]]
    touchless = ops["touchless"]
    touchless_rows = [
        {"name": "Touchless", "value": touchless["touchless"]},
        {"name": "Manual Review", "value": touchless["manual"]},
    ]

    specs: Dict[str, Optional[Dict[str, Any]]] = {
        "monthly_trend": line_spec(dist["monthly_trend"], "month", "count", x_title="Month", y_title="Invoices"),
        "invoices_per_participant": bar_spec(
            dist["invoices_per_participant"], "bucket", "count", x_title="Invoices per participant", y_title="Participants"
        ),
        "invoice_value": bar_spec(dist["invoice_value"], "bucket", "count", x_title="Invoice value", y_title="Invoices"),
        "sessions_per_invoice": bar_spec(
            dist["sessions_per_invoice"], "bucket", "count", x_title="Sessions per invoice", y_title="Invoices"
        ),
        "efficiency_scores": bar_spec(
            efficiency_rows, "invoice_id", "score", x_title="Invoice", y_title="Efficiency score", y_format=".2f"
        ),
        "error_frequency": bar_spec(
            errors["frequency"]["rows"], "error_code", "count", x_title="Error code", y_title="Occurrences", horizontal=True
        ),
        "error_impact": bar_spec(
            errors["impact"]["rows"], "error_code", "avg_score", x_title="Error code", y_title="Average score", y_format=".2f", horizontal=True
        ),
        "error_time_cost": bar_spec(
            errors["time_cost"]["rows"], "error_code", "total_time", x_title="Error code", y_title="Active minutes", horizontal=True
        ),
        "correlations": bar_spec(
            correlation_rows, "metric", "correlation", x_title="Field", y_title="Correlation", y_format=".2f", horizontal=True
        ),
        "intake_latency": bar_spec(ops["intake_latency"], "bucket", "count", x_title="Time to first view", y_title="Invoices")
        if any(r["count"] for r in ops["intake_latency"])
        else None,
        "review_friction": bar_spec(
            ops["review_friction"], "category", "avg_minutes", x_title=None, y_title="Avg engaged minutes", y_format=".1f"
        )
        if any(r["avg_minutes"] for r in ops["review_friction"])
        else None,
        "touchless": arc_spec(touchless_rows, "value", "name") if touchless["touchless"] + touchless["manual"] else None,
        "efficiency_killers": scatter_spec(
            ops["efficiency_killers"],
            "total_duration",
            "idle_count",
            x_title="Total duration (s)",
            y_title="Idle count",
            color="has_errors",
            size="session_count",
            tooltip=["invoice_id", "total_duration", "session_count", "idle_count", "has_errors"],
        ),
        "reconciliation": stacked_bar_spec(
            ops["reconciliation"],
            "month",
            sorted({k for r in ops["reconciliation"] for k in r if k != "month"}, key=_status_order),
            x_title="Month",
        ),
    }
    for name, rows in dist["durations"].items():
        if any(r["count"] for r in rows):
            specs[f"duration_{name}"] = bar_spec(rows, "bucket", "count", x_title="Session length", y_title="Sessions")

    scatter = corr["extra"].get("scores")
    if corr["rows"] and scatter:
        top = corr["rows"][0]
        points = pd.DataFrame({"value": top["values"], "score": scatter})
        specs["top_correlation"] = scatter_spec(points, "value", "score", x_title=top["metric"], y_title="Efficiency score")
    return {k: v for k, v in specs.items() if v is not None}


def _status_order(status: str) -> tuple:
    if status in RECONCILIATION_STATUSES:
        return (RECONCILIATION_STATUSES.index(status), status)
    return (len(RECONCILIATION_STATUSES), status)


def compute_data_story(
    invoices: Records,
    sessions: Records,
    catalogue: Records,
    line_items: Records,
    tables: Optional[List[str]],
    options: StoryOptions,
) -> Dict[str, Any]:
    inv = frame_from_records(invoices)
    ses = frame_from_records(sessions)
    roles = resolve_roles(options.roles, invoices=inv, sessions=ses)

    efficiency = compute_efficiency_scores(
        inv,
        ses,
        weights=options.weights,
        roles=roles,
        top_n=options.top_n_scores,
        include_sessionless=options.include_sessionless,
    )
    rankings = compute_error_rankings(
        inv,
        ses,
        catalogue,
        weights=options.weights,
        roles=roles,
        top_n=options.top_n_errors,
        per_ranking=options.top_n_priority,
        include_sessionless=options.include_sessionless,
    )
    correlations = compute_correlations(inv, ses, weights=options.weights, roles=roles, top_n=options.top_n_correlations)

    payload: Dict[str, Any] = {
        "tables": list(tables or []),
        "options": {
            "weights": asdict(options.weights),
            "roles": asdict(roles),
            "include_sessionless": options.include_sessionless,
        },
        "invoice_stats": compute_invoice_stats(inv, roles),
        "distributions": {
            "monthly_trend": compute_monthly_trend(inv, roles),
            "invoices_per_participant": compute_invoices_per_participant(inv, roles),
            "invoice_value": compute_invoice_value_distribution(inv, roles),
            "sessions_per_invoice": compute_sessions_per_invoice(ses, roles),
            "durations": {
                name: compute_duration_distribution(ses, getattr(roles, role)) for name, role in DURATION_SERIES.items()
            },
        },
        "efficiency": efficiency.to_dict(),
        "errors": {name: result.to_dict() for name, result in rankings.items()},
        "correlations": correlations.to_dict(),
        "operations": compute_operational_metrics(inv, ses, line_items, roles),
    }
    payload["charts"] = _story_charts(payload)
    return payload
