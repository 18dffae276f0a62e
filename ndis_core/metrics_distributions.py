from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from ndis_core.data import Records, existing_column, frame_from_records, id_key, is_blank_id, month_key, numeric_series, resolve_roles
from ndis_core.options import ColumnRoles

COUNT_BUCKETS = ["1", "2", "3-5", "6-10", "11+"]
VALUE_BUCKETS: List[Tuple[float, str]] = [
    (300, "$0-$300"),
    (1_000, "$300-$1k"),
    (5_000, "$1k-$5k"),
    (10_000, "$5k-$10k"),
    (20_000, "$10k-$20k"),
]
VALUE_OVERFLOW = "$20k+"
DURATION_BUCKETS: List[Tuple[float, str]] = [
    (30, "0-30s"),
    (60, "30-60s"),
    (300, "1-5m"),
    (600, "5-10m"),
    (1_800, "10-30m"),
]
DURATION_OVERFLOW = "30m+"


def count_bucket(count: int) -> str:
    if count == 1:
        return "1"
    if count == 2:
        return "2"
    if count <= 5:
        return "3-5"
    if count <= 10:
        return "6-10"
    return "11+"


def threshold_bucket(value: float, edges: Sequence[Tuple[float, str]], overflow: str) -> str:
    for upper, label in edges:
        if value < upper:
            return label
    return overflow


def _bucket_rows(labels: pd.Series, order: List[str], *, keep_empty: bool) -> List[Dict[str, Any]]:
    counts = labels.value_counts()
    rows = [{"bucket": b, "count": int(counts.get(b, 0))} for b in order]
    return rows if keep_empty else [r for r in rows if r["count"] > 0]


def _counts_per_key(series: pd.Series) -> pd.Series:
    keyed = series[~series.map(is_blank_id).astype(bool)].map(id_key)
    return keyed.value_counts(sort=False)


def compute_invoice_stats(invoices: Records, roles: Optional[ColumnRoles] = None) -> Dict[str, Any]:
    inv = frame_from_records(invoices)
    if inv.empty:
        return {"total_invoices": 0, "total_amount": 0.0, "amount_column": None, "individuals_helped": 0}
    roles = resolve_roles(roles, invoices=inv)
    amount_col = existing_column(inv, roles.invoice_amount)
    participant_col = existing_column(inv, roles.invoice_participant_id)
    total_amount = float(numeric_series(inv, amount_col).sum()) if amount_col else 0.0
    individuals = int(len(_counts_per_key(inv[participant_col]))) if participant_col else 0
    return {
        "total_invoices": int(len(inv)),
        "total_amount": total_amount,
        "amount_column": amount_col,
        "individuals_helped": individuals,
    }


def compute_monthly_trend(invoices: Records, roles: Optional[ColumnRoles] = None) -> List[Dict[str, Any]]:
    inv = frame_from_records(invoices)
    if inv.empty:
        return []
    roles = resolve_roles(roles, invoices=inv)
    date_col = existing_column(inv, roles.invoice_date)
    if date_col is None:
        return []
    months = month_key(inv[date_col]).dropna()
    trend = months.value_counts().sort_index()
    return [{"month": str(m), "count": int(c)} for m, c in trend.items()]


def compute_invoices_per_participant(invoices: Records, roles: Optional[ColumnRoles] = None) -> List[Dict[str, Any]]:
    inv = frame_from_records(invoices)
    if inv.empty:
        return []
    roles = resolve_roles(roles, invoices=inv)
    participant_col = existing_column(inv, roles.invoice_participant_id)
    if participant_col is None:
        return []
    per_participant = _counts_per_key(inv[participant_col])
    return _bucket_rows(per_participant.map(count_bucket), COUNT_BUCKETS, keep_empty=False)


def compute_sessions_per_invoice(sessions: Records, roles: Optional[ColumnRoles] = None) -> List[Dict[str, Any]]:
    ses = frame_from_records(sessions)
    if ses.empty:
        return []
    roles = resolve_roles(roles, sessions=ses)
    id_col = existing_column(ses, roles.session_invoice_id)
    if id_col is None:
        return []
    per_invoice = _counts_per_key(ses[id_col])
    return _bucket_rows(per_invoice.map(count_bucket), COUNT_BUCKETS, keep_empty=False)


def compute_invoice_value_distribution(invoices: Records, roles: Optional[ColumnRoles] = None) -> List[Dict[str, Any]]:
    inv = frame_from_records(invoices)
    if inv.empty:
        return []
    roles = resolve_roles(roles, invoices=inv)
    amount_col = existing_column(inv, roles.invoice_amount)
    if amount_col is None:
        return []
    labels = numeric_series(inv, amount_col).map(lambda v: threshold_bucket(v, VALUE_BUCKETS, VALUE_OVERFLOW))
    order = [label for _, label in VALUE_BUCKETS] + [VALUE_OVERFLOW]
    return _bucket_rows(labels, order, keep_empty=False)


def compute_duration_distribution(sessions: Records, column: Optional[str]) -> List[Dict[str, Any]]:
    """Sessions per duration bucket; every bucket is always present."""
    ses = frame_from_records(sessions)
    order = [label for _, label in DURATION_BUCKETS] + [DURATION_OVERFLOW]
    if ses.empty:
        return [{"bucket": b, "count": 0} for b in order]
    labels = numeric_series(ses, column).map(lambda v: threshold_bucket(v, DURATION_BUCKETS, DURATION_OVERFLOW))
    return _bucket_rows(labels, order, keep_empty=True)
