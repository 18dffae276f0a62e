from __future__ import annotations

import json
from typing import Any, Dict, List

import pandas as pd

from ndis_core.data import Records, is_blank


def _columns(records: Records) -> List[str]:
    if isinstance(records, pd.DataFrame):
        return [str(c) for c in records.columns]
    rows = list(records or [])
    return [str(c) for c in rows[0].keys()] if rows else []


def _frame(records: Records) -> pd.DataFrame:
    """Rows as an object frame so nullable integer columns are not widened to float."""
    if isinstance(records, pd.DataFrame):
        return records.copy()
    return pd.DataFrame(list(records or []), dtype=object)


def compute_table_view(table_name: str, records: Records) -> Dict[str, Any]:
    df = _frame(records)
    columns = _columns(records)
    null_counts = {col: int(df[col].map(is_blank).sum()) if col in df.columns else 0 for col in columns}
    return {
        "table_name": table_name,
        "columns": columns,
        "rows": df.astype(object).where(df.notna(), None).to_dict(orient="records") if not df.empty else [],
        "row_count": int(len(df)),
        "null_counts": null_counts,
    }


def _cell(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return value


def table_to_csv(records: Records) -> bytes:
    df = _frame(records)
    if df.empty:
        return b""
    for col in df.columns:
        if df[col].dtype == object:
            df[col] = df[col].map(_cell)
    return df.to_csv(index=False).encode("utf-8")
