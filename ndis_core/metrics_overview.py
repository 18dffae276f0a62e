from __future__ import annotations

from typing import Any, Dict, List, Optional

import pandas as pd

from ndis_core.charts import arc_spec, bar_spec, line_spec
from ndis_core.data import Records, find_amount_column, frame_from_records, is_blank, numeric_columns

DATE_TOKENS = ("date", "created", "time")
STATUS_TOKENS = ("status", "state", "type")


def _first_value(df: pd.DataFrame, col: str) -> Any:
    return df[col].iloc[0]


def _category_column(df: pd.DataFrame) -> Optional[str]:
    for col in df.columns:
        name = str(col).lower()
        if "id" in name or "description" in name:
            continue
        if isinstance(_first_value(df, col), str):
            return col
    return None


def _date_column(df: pd.DataFrame) -> Optional[str]:
    for col in df.columns:
        if any(t in str(col).lower() for t in DATE_TOKENS):
            return col
    return None


def _status_column(df: pd.DataFrame) -> Optional[str]:
    """First status-like column holding scalar values (JSON blobs such as state_management are skipped)."""
    for col in df.columns:
        if not any(t in str(col).lower() for t in STATUS_TOKENS):
            continue
        values = df[col].dropna()
        if values.map(lambda v: isinstance(v, (dict, list, tuple))).any():
            continue
        if values.map(lambda v: isinstance(v, str) and v.lstrip().startswith(("{", "["))).any():
            continue
        return col
    return None


def _label(value: Any) -> str:
    return "Unknown" if is_blank(value) or value is False or value == 0 else str(value)


def compute_overview(records: Records) -> Dict[str, Any]:
    """Summary tiles and charts for an arbitrary table of records."""
    df = frame_from_records(records)
    if df.empty:
        return {
            "total_records": 0,
            "column_count": 0,
            "numeric_columns": [],
            "total_value": None,
            "categories": [],
            "timeline": [],
            "statuses": [],
            "columns_used": {},
            "charts": {},
        }

    numeric_cols = numeric_columns(df)
    value_col = find_amount_column(df)
    total_value = float(pd.to_numeric(df[value_col], errors="coerce").fillna(0).sum()) if value_col else None

    category_col = _category_column(df)
    categories: List[Dict[str, Any]] = []
    if category_col is not None:
        counts = df[category_col].map(_label).value_counts(sort=False)
        categories = [
            {"name": str(name), "count": int(n)}
            for name, n in counts.sort_values(ascending=False, kind="mergesort").head(10).items()
        ]

    date_col = _date_column(df)
    timeline: List[Dict[str, Any]] = []
    if date_col is not None:
        dates = pd.to_datetime(df[date_col], errors="coerce", utc=True, format="mixed").dropna()
        daily = dates.dt.strftime("%Y-%m-%d").value_counts().sort_index().tail(30)
        timeline = [{"date": str(d), "count": int(n)} for d, n in daily.items()]

    status_col = _status_column(df)
    statuses: List[Dict[str, Any]] = []
    if status_col is not None:
        counts = df[status_col].map(_label).value_counts(sort=False)
        statuses = [{"name": str(name), "value": int(n)} for name, n in counts.head(6).items()]

    charts: Dict[str, Any] = {}
    for key, spec in (
        ("categories", bar_spec(categories, "name", "count", x_title=category_col, y_title="Records")),
        ("timeline", line_spec(timeline, "date", "count", x_title="Date", y_title="Records")),
        ("statuses", arc_spec(statuses, "value", "name")),
    ):
        if spec is not None:
            charts[key] = spec

    return {
        "total_records": int(len(df)),
        "column_count": int(len(df.columns)),
        "numeric_columns": numeric_cols,
        "total_value": total_value,
        "categories": categories,
        "timeline": timeline,
        "statuses": statuses,
        "columns_used": {
            "value": value_col,
            "category": category_col,
            "date": date_col,
            "status": status_col,
        },
        "charts": charts,
    }
