from __future__ import annotations

import math
import re
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from ndis_core.data import Records, existing_column, id_key, is_blank_id, is_number
from ndis_core.metrics_efficiency import prepare_inputs, score_population
from ndis_core.options import ColumnRoles, ScoreWeights
from ndis_core.results import OK, InsightResult, empty_result

MODELLED_METRICS = {
    "invoice_id",
    "score",
    "active_time",
    "session_count",
    "error_codes",
    "ignored_error_codes",
    "error_count",
    "ignored_error_count",
}

_ID_SNAKE = re.compile(r"(?:^|_)(?:id|uuid|guid)(?:_|$)")
_ID_CAMEL = re.compile(r"[a-z0-9]Id(?:[A-Z_]|$)")


def is_identifier_name(name: str) -> bool:
    return bool(_ID_SNAKE.search(name.lower()) or _ID_CAMEL.search(name))


def is_temporal_name(name: str) -> bool:
    lowered = name.lower()
    return "date" in lowered or "timestamp" in lowered or lowered.endswith("_at")


def _feature_value(value: object) -> Optional[float]:
    if isinstance(value, (bool, np.bool_)):
        return 1.0 if value else 0.0
    if is_number(value):
        return float(value)  # type: ignore[arg-type]
    return None


def invoice_features(invoices: pd.DataFrame, id_col: Optional[str], keys: List[str]) -> pd.DataFrame:
    """Numeric and boolean invoice fields for the given invoice keys (last row wins)."""
    if id_col is None or invoices.empty:
        return pd.DataFrame(index=keys)
    wanted = set(keys)
    features: Dict[str, Dict[str, float]] = {}
    for row in invoices.to_dict(orient="records"):
        raw_id = row.get(id_col)
        if is_blank_id(raw_id):
            continue
        key = id_key(raw_id)
        if key not in wanted:
            continue
        values = features.setdefault(key, {})
        for col, value in row.items():
            if col == id_col:
                continue
            out = _feature_value(value)
            if out is not None:
                values[str(col)] = out
    frame = pd.DataFrame.from_dict(features, orient="index")
    return frame.reindex(index=keys)


def _candidates(columns: List[str], roles: ColumnRoles) -> List[str]:
    excluded = {c for c in (roles.invoice_id, roles.invoice_participant_id, roles.session_invoice_id) if c}
    return [
        c
        for c in columns
        if c not in MODELLED_METRICS
        and c not in excluded
        and not is_identifier_name(c)
        and not is_temporal_name(c)
    ]


def pearson(x: np.ndarray, y: np.ndarray) -> Optional[float]:
    """Population Pearson coefficient; ``None`` when either side has no variance."""
    n = len(x)
    if n == 0 or n != len(y):
        return None
    x_std = float(x.std())
    y_std = float(y.std())
    if x_std == 0 or y_std == 0:
        return None
    corr = float(((x - x.mean()) * (y - y.mean())).sum() / (n * x_std * y_std))
    if not math.isfinite(corr):
        return None
    return max(-1.0, min(1.0, corr))


def compute_correlations(
    invoices: Records,
    sessions: Records,
    *,
    weights: ScoreWeights,
    roles: Optional[ColumnRoles] = None,
    top_n: int = 10,
) -> InsightResult:
    """Correlate every numeric invoice field with the efficiency score."""
    inputs = prepare_inputs(invoices, sessions, roles)
    if inputs.problem is not None:
        return inputs.problem

    scored = score_population(inputs, weights).reset_index(drop=True)
    if scored.empty:
        return empty_result("No session carries an invoice id.", malformed_rows=inputs.malformed_rows)
    keys = scored["invoice_id"].tolist()
    scores = scored["score"].to_numpy(dtype=float)
    extra = {"invoice_ids": keys, "scores": scores.tolist()}

    id_col = existing_column(inputs.invoices, inputs.roles.invoice_id)
    features = invoice_features(inputs.invoices, id_col, keys)
    matrix = pd.DataFrame({"idle_count": scored["idle_count"].astype(float).to_numpy()}, index=keys)
    for col in features.columns:
        matrix[col] = features[col].to_numpy()
    matrix = matrix.fillna(0.0)

    rows = []
    for col in _candidates([str(c) for c in matrix.columns], inputs.roles):
        values = matrix[col].to_numpy(dtype=float)
        if len(np.unique(values)) < 2:
            continue
        corr = pearson(values, scores)
        if corr is None:
            continue
        rows.append({"metric": col, "correlation": corr, "values": values.tolist()})

    rows.sort(key=lambda r: abs(r["correlation"]), reverse=True)
    notes = "" if rows else "No field varies together with the efficiency score."
    return InsightResult(
        status=OK,
        rows=rows[: max(0, int(top_n))],
        notes=notes,
        malformed_rows=inputs.malformed_rows,
        extra=extra,
    )
