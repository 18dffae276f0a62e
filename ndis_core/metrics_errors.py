from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional

import pandas as pd

from ndis_core.data import Records, existing_column, frame_from_records, resolve_roles, state_column
from ndis_core.metrics_efficiency import aggregate_sessions, invoice_errors, prepare_inputs, score_population
from ndis_core.options import ColumnRoles, ScoreWeights
from ndis_core.results import OK, InsightResult, empty_result, missing_column

CATALOGUE_CODE_FIELDS = ("error_code", "code", "id", "error_id")


def compute_error_frequency(invoices: Records, *, roles: Optional[ColumnRoles] = None, top_n: int = 15) -> InsightResult:
    """Occurrences of each code across active and ignored errors of every invoice."""
    inv = frame_from_records(invoices)
    if inv.empty:
        return empty_result()
    roles = resolve_roles(roles, invoices=inv)
    if existing_column(inv, roles.state_management) is None:
        return missing_column("state management", [str(c) for c in inv.columns])

    states = state_column(inv, roles)
    counts: Counter[str] = Counter()
    for state in states:
        counts.update(state.all_errors)
    rows = [{"error_code": code, "count": int(n)} for code, n in counts.most_common(max(0, int(top_n)))]
    return InsightResult(
        status=OK,
        rows=rows,
        notes=f"{len(counts)} distinct error codes.",
        malformed_rows=sum(1 for s in states if s.malformed),
    )


def compute_error_impact(
    invoices: Records,
    sessions: Records,
    *,
    weights: ScoreWeights,
    roles: Optional[ColumnRoles] = None,
    top_n: int = 15,
    include_sessionless: bool = False,
) -> InsightResult:
    """Mean efficiency score of the invoices carrying each code, worst first."""
    inputs = prepare_inputs(invoices, sessions, roles)
    if inputs.problem is not None:
        return inputs.problem
    scored = score_population(inputs, weights, include_sessionless=include_sessionless)

    all_codes = pd.Series(
        [[*a, *b] for a, b in zip(scored["error_codes"], scored["ignored_error_codes"])],
        index=scored.index,
        dtype=object,
    )
    exploded = (
        pd.DataFrame({"error_code": all_codes, "score": scored["score"]})
        .explode("error_code")
        .dropna(subset=["error_code"])
    )
    if exploded.empty:
        return InsightResult(status=OK, notes="No scored invoice carries an error code.", malformed_rows=inputs.malformed_rows)

    impact = (
        exploded.groupby("error_code", sort=False)["score"]
        .agg(avg_score="mean", count="size")
        .reset_index()
        .sort_values("avg_score", ascending=False, kind="mergesort")
        .head(max(0, int(top_n)))
    )
    impact["avg_score"] = impact["avg_score"].astype(float)
    return InsightResult(
        status=OK,
        rows=impact.to_dict(orient="records"),
        malformed_rows=inputs.malformed_rows,
    )


def compute_error_time_cost(
    invoices: Records,
    sessions: Records,
    *,
    roles: Optional[ColumnRoles] = None,
    top_n: int = 15,
) -> InsightResult:
    """Active viewing time accumulated by the invoices carrying each code."""
    inputs = prepare_inputs(invoices, sessions, roles)
    if inputs.problem is not None:
        return inputs.problem
    if existing_column(inputs.invoices, inputs.roles.invoice_id) is None:
        return missing_column("invoice id", [str(c) for c in inputs.invoices.columns])

    sessions_by_invoice = aggregate_sessions(inputs.sessions, inputs.roles)
    active = dict(zip(sessions_by_invoice["invoice_id"], sessions_by_invoice["active_time"]))

    totals: Dict[str, float] = {}
    for key, state in invoice_errors(inputs).items():
        seconds = float(active.get(key, 0.0))
        for code in state.all_errors:
            totals[code] = totals.get(code, 0.0) + seconds

    ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[: max(0, int(top_n))]
    rows = [
        {"error_code": code, "total_time": seconds / 60.0, "total_time_seconds": seconds}
        for code, seconds in ranked
    ]
    return InsightResult(status=OK, rows=rows, malformed_rows=inputs.malformed_rows)


def _catalogue_records(catalogue: Records) -> List[Dict[str, Any]]:
    if catalogue is None:
        return []
    if isinstance(catalogue, pd.DataFrame):
        return catalogue.to_dict(orient="records")
    return [dict(r) for r in catalogue]


def find_catalogue_entry(code: str, catalogue: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for entry in catalogue:
        if any(f in entry and entry[f] == code for f in CATALOGUE_CODE_FIELDS):
            return entry
    return None


def _codes(result: InsightResult, n: int) -> List[str]:
    return [r["error_code"] for r in result.rows[:n]]


def compute_priority_errors(
    frequency: InsightResult,
    impact: InsightResult,
    time_cost: InsightResult,
    catalogue: Records = None,
    *,
    per_ranking: int = 3,
) -> InsightResult:
    """Union of the leading codes of each ranking, annotated with where they rank."""
    top_frequent = _codes(frequency, per_ranking)
    top_impact = _codes(impact, per_ranking)
    top_time = _codes(time_cost, per_ranking)
    ordered = list(dict.fromkeys([*top_frequent, *top_impact, *top_time]))
    if not ordered:
        return empty_result("No ranked error codes.")

    entries = _catalogue_records(catalogue)
    rows = [
        {
            "error_code": code,
            "is_frequent": code in top_frequent,
            "is_high_impact": code in top_impact,
            "is_high_time": code in top_time,
            "details": find_catalogue_entry(code, entries),
        }
        for code in ordered
    ]
    return InsightResult(
        status=OK,
        rows=rows,
        notes="" if entries else "No error catalogue supplied.",
    )


def compute_error_rankings(
    invoices: Records,
    sessions: Records,
    catalogue: Records = None,
    *,
    weights: ScoreWeights,
    roles: Optional[ColumnRoles] = None,
    top_n: int = 15,
    per_ranking: int = 3,
    include_sessionless: bool = False,
) -> Dict[str, InsightResult]:
    frequency = compute_error_frequency(invoices, roles=roles, top_n=top_n)
    impact = compute_error_impact(
        invoices, sessions, weights=weights, roles=roles, top_n=top_n, include_sessionless=include_sessionless
    )
    time_cost = compute_error_time_cost(invoices, sessions, roles=roles, top_n=top_n)
    priority = compute_priority_errors(frequency, impact, time_cost, catalogue, per_ranking=per_ranking)
    return {"frequency": frequency, "impact": impact, "time_cost": time_cost, "priority": priority}
