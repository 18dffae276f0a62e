"""Per-invoice efficiency scores.

An invoice's score is a weighted sum of four features, each normalized by its
maximum over the scored population: accumulated active viewing time, number of
view sessions, number of active errors and number of ignored errors. Higher
scores mean a worse processing experience.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

import pandas as pd

from ndis_core.data import (
    Records,
    StateErrors,
    existing_column,
    frame_from_records,
    id_key,
    is_blank_id,
    numeric_series,
    resolve_roles,
    state_column,
)
from ndis_core.options import ColumnRoles, ScoreWeights
from ndis_core.results import OK, InsightResult, empty_result, missing_column

METRIC_COLUMNS = ["invoice_id", "active_time", "session_count", "idle_count", "error_codes", "ignored_error_codes"]
SCORE_ROW_COLUMNS = ["rank", "invoice_id", "score", "active_time", "session_count", "error_codes", "ignored_error_codes"]


@dataclass(frozen=True)
class EngineInputs:
    invoices: pd.DataFrame
    sessions: pd.DataFrame
    roles: ColumnRoles
    states: pd.Series
    malformed_rows: int
    problem: Optional[InsightResult] = None


def _object_series(values: List[object], index: pd.Index) -> pd.Series:
    return pd.Series(values, index=index, dtype=object)


def prepare_inputs(invoices: Records, sessions: Records, roles: Optional[ColumnRoles] = None) -> EngineInputs:
    inv = frame_from_records(invoices)
    ses = frame_from_records(sessions)
    roles = resolve_roles(roles, invoices=inv, sessions=ses)
    states = state_column(inv, roles)
    malformed = int(sum(1 for s in states if s.malformed))

    problem = None
    if ses.empty or inv.empty:
        problem = empty_result("Invoices and sessions are both required.", malformed_rows=malformed)
    elif existing_column(ses, roles.session_invoice_id) is None:
        problem = missing_column("session invoice id", [str(c) for c in ses.columns])
    return EngineInputs(invoices=inv, sessions=ses, roles=roles, states=states, malformed_rows=malformed, problem=problem)


def aggregate_sessions(sessions: pd.DataFrame, roles: ColumnRoles) -> pd.DataFrame:
    """Active time, session count and idle count per invoice, in first-seen order."""
    id_col = existing_column(sessions, roles.session_invoice_id)
    if id_col is None or sessions.empty:
        return pd.DataFrame(columns=METRIC_COLUMNS)
    keyed = sessions.loc[~sessions[id_col].map(is_blank_id).astype(bool)]
    if keyed.empty:
        return pd.DataFrame(columns=METRIC_COLUMNS)

    work = pd.DataFrame(
        {
            "invoice_id": keyed[id_col].map(id_key),
            "active_time": numeric_series(keyed, roles.session_active_duration),
            "idle_count": numeric_series(keyed, roles.session_idle_count),
        }
    )
    out = (
        work.groupby("invoice_id", sort=False)
        .agg(
            active_time=("active_time", "sum"),
            session_count=("active_time", "size"),
            idle_count=("idle_count", "sum"),
        )
        .reset_index()
    )
    out["error_codes"] = _object_series([[] for _ in range(len(out))], out.index)
    out["ignored_error_codes"] = _object_series([[] for _ in range(len(out))], out.index)
    return out[METRIC_COLUMNS]


def invoice_errors(inputs: EngineInputs) -> Dict[str, StateErrors]:
    """Error lists per invoice id, for invoices carrying at least one code (last row wins)."""
    id_col = existing_column(inputs.invoices, inputs.roles.invoice_id)
    if id_col is None:
        return {}
    by_id: Dict[str, StateErrors] = {}
    for raw_id, state in zip(inputs.invoices[id_col], inputs.states):
        if is_blank_id(raw_id) or not state.has_any:
            continue
        by_id[id_key(raw_id)] = state
    return by_id


def build_invoice_metrics(inputs: EngineInputs, *, include_sessionless: bool = False) -> pd.DataFrame:
    metrics = aggregate_sessions(inputs.sessions, inputs.roles)
    by_id = invoice_errors(inputs)
    if not by_id:
        return metrics

    metrics["error_codes"] = _object_series(
        [list(by_id[k].errors) if k in by_id else [] for k in metrics["invoice_id"]], metrics.index
    )
    metrics["ignored_error_codes"] = _object_series(
        [list(by_id[k].ignored_errors) if k in by_id else [] for k in metrics["invoice_id"]], metrics.index
    )

    if include_sessionless:
        known = set(metrics["invoice_id"])
        extra = [
            {
                "invoice_id": key,
                "active_time": 0.0,
                "session_count": 0,
                "idle_count": 0.0,
                "error_codes": list(state.errors),
                "ignored_error_codes": list(state.ignored_errors),
            }
            for key, state in by_id.items()
            if key not in known
        ]
        if extra:
            metrics = pd.concat([metrics, pd.DataFrame(extra, columns=METRIC_COLUMNS)], ignore_index=True)
    return metrics


def _normalized(values: pd.Series) -> pd.Series:
    values = pd.to_numeric(values, errors="coerce").fillna(0.0).astype(float).clip(lower=0.0)
    peak = float(values.max()) if len(values) else 0.0
    if peak <= 0:
        return pd.Series(0.0, index=values.index)
    return values / peak


def score_metrics(metrics: pd.DataFrame, weights: ScoreWeights) -> pd.DataFrame:
    scored = metrics.copy()
    scored["session_count"] = pd.to_numeric(scored["session_count"], errors="coerce").fillna(0).astype(int)
    scored["error_count"] = scored["error_codes"].map(len).astype(int)
    scored["ignored_error_count"] = scored["ignored_error_codes"].map(len).astype(int)
    scored["score"] = (
        _normalized(scored["active_time"]) * weights.active_time
        + _normalized(scored["session_count"]) * weights.session_count
        + _normalized(scored["error_count"]) * weights.errors
        + _normalized(scored["ignored_error_count"]) * weights.ignored_errors
    ).astype(float)
    return scored


def score_population(inputs: EngineInputs, weights: ScoreWeights, *, include_sessionless: bool = False) -> pd.DataFrame:
    if inputs.problem is not None:
        return score_metrics(pd.DataFrame(columns=METRIC_COLUMNS), weights)
    return score_metrics(build_invoice_metrics(inputs, include_sessionless=include_sessionless), weights)


def score_invoices(
    invoices: Records,
    sessions: Records,
    *,
    weights: ScoreWeights,
    roles: Optional[ColumnRoles] = None,
    include_sessionless: bool = False,
) -> Tuple[pd.DataFrame, EngineInputs]:
    """Score every invoice with sessions (unsorted) and return the prepared inputs alongside."""
    inputs = prepare_inputs(invoices, sessions, roles)
    return score_population(inputs, weights, include_sessionless=include_sessionless), inputs


def compute_efficiency_scores(
    invoices: Records,
    sessions: Records,
    *,
    weights: ScoreWeights,
    roles: Optional[ColumnRoles] = None,
    top_n: int = 100,
    include_sessionless: bool = False,
) -> InsightResult:
    scored, inputs = score_invoices(
        invoices, sessions, weights=weights, roles=roles, include_sessionless=include_sessionless
    )
    if inputs.problem is not None:
        return inputs.problem
    if scored.empty:
        return empty_result("No session carries an invoice id.", malformed_rows=inputs.malformed_rows)

    ranked = scored.sort_values("score", ascending=False, kind="mergesort").head(max(0, int(top_n)))
    ranked = ranked.reset_index(drop=True)
    ranked.insert(0, "rank", ranked.index + 1)
    ranked["active_time"] = ranked["active_time"].astype(float)
    return InsightResult(
        status=OK,
        rows=ranked[SCORE_ROW_COLUMNS].to_dict(orient="records"),
        notes=f"Scored {len(scored)} invoices; showing the {len(ranked)} with the highest scores.",
        malformed_rows=inputs.malformed_rows,
        extra={"scored_invoices": int(len(scored)), "weights": asdict(weights)},
    )
