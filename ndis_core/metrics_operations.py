from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ndis_core.data import (
    Records,
    existing_column,
    frame_from_records,
    id_key,
    is_blank,
    is_blank_id,
    month_key,
    numeric_series,
    resolve_roles,
    state_column,
)
from ndis_core.metrics_distributions import threshold_bucket
from ndis_core.options import ColumnRoles

LATENCY_BUCKETS = [
    (5, "0-5m"),
    (15, "5-15m"),
    (30, "15-30m"),
    (60, "30-60m"),
    (120, "1-2h"),
    (360, "2-6h"),
]
LATENCY_OVERFLOW = "6h+"
RECONCILIATION_STATUSES = ["Reconciled", "Pending", "Failed"]


def empty_operations() -> Dict[str, Any]:
    return {
        "intake_latency": [],
        "median_latency": 0.0,
        "review_friction": [],
        "touchless": {"touchless": 0, "manual": 0, "percentage": 0.0},
        "efficiency_killers": [],
        "reconciliation": [],
    }


def is_auto_approved(value: object) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, float, np.number)) and not is_blank(value):
        return bool(value == 1)
    return False


def upper_median(values: List[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    return float(ordered[len(ordered) // 2])


def _session_totals(ses: pd.DataFrame, roles: ColumnRoles) -> pd.DataFrame:
    id_col = existing_column(ses, roles.session_invoice_id)
    if id_col is None:
        return pd.DataFrame(columns=["duration", "engaged", "idle", "sessions", "first_start"])
    keyed = ses.loc[~ses[id_col].map(is_blank_id).astype(bool)]
    started = roles.session_started if roles.session_started in keyed.columns else None
    work = pd.DataFrame(
        {
            "key": keyed[id_col].map(id_key),
            "duration": numeric_series(keyed, roles.session_duration),
            "engaged": numeric_series(keyed, roles.session_engaged_duration),
            "idle": numeric_series(keyed, roles.session_idle_count),
            "start": pd.to_datetime(keyed[started], errors="coerce", utc=True, format="mixed")
            if started
            else pd.Series(pd.NaT, index=keyed.index, dtype="datetime64[ns, UTC]"),
        }
    )
    return work.groupby("key", sort=False).agg(
        duration=("duration", "sum"),
        engaged=("engaged", "sum"),
        idle=("idle", "sum"),
        sessions=("duration", "size"),
        first_start=("start", "min"),
    )


def _intake_latency(inv: pd.DataFrame, keys: pd.Series, totals: pd.DataFrame, roles: ColumnRoles) -> List[float]:
    created_col = existing_column(inv, roles.invoice_created_at)
    if created_col is None or totals.empty:
        return []
    created = pd.to_datetime(inv[created_col], errors="coerce", utc=True, format="mixed")
    latencies = []
    for key, created_at in zip(keys, created):
        if key is None or pd.isna(created_at) or key not in totals.index:
            continue
        first = totals.at[key, "first_start"]
        if pd.isna(first):
            continue
        minutes = (first - created_at).total_seconds() / 60.0
        if minutes >= 0:
            latencies.append(minutes)
    return latencies


def _reconciliation(line_items: pd.DataFrame, roles: ColumnRoles) -> List[Dict[str, Any]]:
    created_col = existing_column(line_items, roles.line_item_created_at)
    if line_items.empty or created_col is None:
        return []
    status_col = existing_column(line_items, roles.reconciliation_status)
    statuses = (
        line_items[status_col].map(lambda v: "Unknown" if is_blank(v) else str(v))
        if status_col
        else pd.Series("Unknown", index=line_items.index)
    )
    work = pd.DataFrame({"month": month_key(line_items[created_col]), "status": statuses}).dropna(subset=["month"])
    if work.empty:
        return []
    table = pd.crosstab(work["month"], work["status"]).sort_index()
    for status in RECONCILIATION_STATUSES:
        if status not in table.columns:
            table[status] = 0
    extra = [c for c in table.columns if c not in RECONCILIATION_STATUSES]
    table = table[RECONCILIATION_STATUSES + extra]
    rows = []
    for month, counts in table.iterrows():
        row: Dict[str, Any] = {"month": str(month)}
        row.update({str(status): int(n) for status, n in counts.items()})
        rows.append(row)
    return rows


def compute_operational_metrics(
    invoices: Records,
    sessions: Records,
    line_items: Records = None,
    roles: Optional[ColumnRoles] = None,
) -> Dict[str, Any]:
    """Intake latency, review friction, touchless rate, efficiency killers and reconciliation."""
    inv = frame_from_records(invoices)
    ses = frame_from_records(sessions)
    items = frame_from_records(line_items)
    out = empty_operations()
    roles = resolve_roles(roles, invoices=inv, sessions=ses)
    out["reconciliation"] = _reconciliation(items, roles)
    if inv.empty or ses.empty or existing_column(ses, roles.session_invoice_id) is None:
        return out

    totals = _session_totals(ses, roles)
    id_col = existing_column(inv, roles.invoice_id)
    keys = (
        inv[id_col].map(lambda v: None if is_blank_id(v) else id_key(v))
        if id_col
        else pd.Series([None] * len(inv), index=inv.index, dtype=object)
    )
    has_errors = state_column(inv, roles).map(lambda s: bool(s.errors))

    latencies = _intake_latency(inv, keys, totals, roles)
    labels = pd.Series([threshold_bucket(m, LATENCY_BUCKETS, LATENCY_OVERFLOW) for m in latencies], dtype=object)
    counts = labels.value_counts()
    order = [label for _, label in LATENCY_BUCKETS] + [LATENCY_OVERFLOW]
    out["intake_latency"] = [{"bucket": b, "count": int(counts.get(b, 0))} for b in order]
    out["median_latency"] = upper_median(latencies)

    engaged_with: List[float] = []
    engaged_without: List[float] = []
    killers: List[Dict[str, Any]] = []
    for key, errored in zip(keys, has_errors):
        if key is None or key not in totals.index:
            continue
        agg = totals.loc[key]
        if agg["engaged"] > 0:
            (engaged_with if errored else engaged_without).append(float(agg["engaged"]))
        if agg["duration"] > 0:
            killers.append(
                {
                    "invoice_id": key,
                    "total_duration": float(agg["duration"]),
                    "session_count": int(agg["sessions"]),
                    "idle_count": float(agg["idle"]),
                    "has_errors": bool(errored),
                }
            )
    out["review_friction"] = [
        {"category": "With Errors", "avg_minutes": float(np.mean(engaged_with)) / 60.0 if engaged_with else 0.0},
        {"category": "Without Errors", "avg_minutes": float(np.mean(engaged_without)) / 60.0 if engaged_without else 0.0},
    ]
    out["efficiency_killers"] = killers

    auto_col = existing_column(inv, roles.auto_approved)
    auto = inv[auto_col].map(is_auto_approved) if auto_col else pd.Series(False, index=inv.index)
    touchless = int((auto.astype(bool) | ~has_errors.astype(bool)).sum())
    manual = int(len(inv) - touchless)
    out["touchless"] = {
        "touchless": touchless,
        "manual": manual,
        "percentage": touchless / len(inv) * 100.0 if len(inv) else 0.0,
    }
    return out
