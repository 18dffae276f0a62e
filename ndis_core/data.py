from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ndis_core.options import ColumnRoles

Records = Union[pd.DataFrame, Sequence[Dict[str, Any]], None]


def frame_from_records(records: Records) -> pd.DataFrame:
    if records is None:
        return pd.DataFrame()
    if isinstance(records, pd.DataFrame):
        return records.copy()
    rows = list(records)
    if not rows:
        return pd.DataFrame()
    return pd.DataFrame.from_records(rows)


def is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if value is pd.NA or value is pd.NaT:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def is_blank_id(value: object) -> bool:
    """Ids that a row cannot be keyed on: missing, empty, 0 or False."""
    if is_blank(value):
        return True
    if isinstance(value, (bool, np.bool_)):
        return not bool(value)
    if isinstance(value, (int, float, np.number)) and value == 0:
        return True
    return False


def id_key(value: object) -> str:
    """String form used to join invoice ids across tables (1, 1.0 and "1" agree)."""
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    if isinstance(value, np.integer):
        return str(int(value))
    return str(value).strip()


def is_number(value: object) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return False
    if isinstance(value, (int, float, np.number)):
        return math.isfinite(float(value))
    return False


def numeric_series(df: pd.DataFrame, col: Optional[str]) -> pd.Series:
    """Column as floats with missing / non-numeric values as 0."""
    if not col or col not in df.columns:
        return pd.Series(0.0, index=df.index, dtype=float)
    return pd.to_numeric(df[col], errors="coerce").fillna(0.0).astype(float)


def month_key(series: pd.Series) -> pd.Series:
    dates = pd.to_datetime(series, errors="coerce", utc=True, format="mixed")
    return dates.dt.strftime("%Y-%m")


# ---------- state management blob ----------


@dataclass(frozen=True)
class StateErrors:
    errors: List[str] = field(default_factory=list)
    ignored_errors: List[str] = field(default_factory=list)
    malformed: bool = False

    @property
    def all_errors(self) -> List[str]:
        return [*self.errors, *self.ignored_errors]

    @property
    def has_any(self) -> bool:
        return bool(self.errors or self.ignored_errors)


def _code_list(value: object) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v) for v in value if not is_blank(v)]


def parse_state_management(value: object) -> StateErrors:
    if isinstance(value, (list, tuple, np.ndarray)) or is_blank(value):
        return StateErrors()
    parsed = value
    if isinstance(value, (str, bytes)):
        try:
            parsed = json.loads(value)
        except (TypeError, ValueError):
            return StateErrors(malformed=True)
    if not isinstance(parsed, dict):
        return StateErrors()
    return StateErrors(
        errors=_code_list(parsed.get("errors")),
        ignored_errors=_code_list(parsed.get("ignored_errors")),
    )


def state_column(df: pd.DataFrame, roles: ColumnRoles) -> pd.Series:
    """Parsed ``StateErrors`` per invoice row (empty when the column is absent)."""
    col = roles.state_management
    if not col or col not in df.columns:
        return pd.Series([StateErrors()] * len(df), index=df.index, dtype=object)
    return df[col].map(parse_state_management)


# ---------- column discovery ----------


def find_column(columns: Iterable[str], *tokens: str) -> Optional[str]:
    """First column whose lower-cased name contains every token."""
    lowered = [t.lower() for t in tokens]
    for col in columns:
        name = str(col).lower()
        if all(t in name for t in lowered):
            return col
    return None


def numeric_columns(df: pd.DataFrame) -> List[str]:
    """Columns whose first-row value is a number (booleans excluded)."""
    if df.empty:
        return []
    first = df.iloc[0]
    return [str(c) for c in df.columns if is_number(first[c])]


def find_amount_column(df: pd.DataFrame) -> Optional[str]:
    return next((c for c in numeric_columns(df) if "id" not in c.lower()), None)


def existing_column(df: pd.DataFrame, col: Optional[str]) -> Optional[str]:
    return col if col and col in df.columns else None


def resolve_roles(
    roles: Optional[ColumnRoles],
    *,
    invoices: Optional[pd.DataFrame] = None,
    sessions: Optional[pd.DataFrame] = None,
) -> ColumnRoles:
    """Fill undiscovered roles from the data; caller-supplied names are kept as-is."""
    roles = roles or ColumnRoles()
    updates: Dict[str, Optional[str]] = {}
    if sessions is not None and roles.session_invoice_id is None:
        updates["session_invoice_id"] = find_column(sessions.columns, "invoice", "id")
    if invoices is not None:
        if roles.invoice_id is None:
            updates["invoice_id"] = find_column(invoices.columns, "id")
        if roles.invoice_participant_id is None:
            updates["invoice_participant_id"] = find_column(invoices.columns, "participant", "id")
        if roles.invoice_date is None:
            updates["invoice_date"] = find_column(invoices.columns, "invoice_date")
        if roles.invoice_amount is None:
            updates["invoice_amount"] = find_amount_column(invoices)
    return replace(roles, **updates) if updates else roles
