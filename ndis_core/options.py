from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Dict, Optional


@dataclass(frozen=True)
class ScoreWeights:
    active_time: float
    session_count: float
    errors: float
    ignored_errors: float

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
                raise ValueError(f"weight {f.name} must be a finite non-negative number, got {value!r}")

    @property
    def total(self) -> float:
        return self.active_time + self.session_count + self.errors + self.ignored_errors


WEIGHTS_WITH_IGNORED = ScoreWeights(active_time=0.5, session_count=0.2, errors=0.2, ignored_errors=0.1)
WEIGHTS_WITHOUT_IGNORED = ScoreWeights(active_time=0.6, session_count=0.2, errors=0.2, ignored_errors=0.0)

WEIGHTING_SCHEMES: Dict[str, ScoreWeights] = {
    "with_ignored": WEIGHTS_WITH_IGNORED,
    "without_ignored": WEIGHTS_WITHOUT_IGNORED,
}


@dataclass(frozen=True)
class ColumnRoles:
    """Semantic role -> concrete column name.

    ``None`` means the column is discovered from the data (see ``data.resolve_roles``).
    """

    session_invoice_id: Optional[str] = None
    session_active_duration: Optional[str] = "active_duration_seconds"
    session_duration: Optional[str] = "duration_seconds"
    session_engaged_duration: Optional[str] = "engaged_duration_seconds"
    session_idle_count: Optional[str] = "idle_count"
    session_started: Optional[str] = "session_started"
    invoice_id: Optional[str] = None
    invoice_amount: Optional[str] = None
    invoice_participant_id: Optional[str] = None
    invoice_date: Optional[str] = None
    invoice_created_at: Optional[str] = "created_at"
    state_management: Optional[str] = "state_management"
    auto_approved: Optional[str] = "auto_approved"
    line_item_created_at: Optional[str] = "created_at"
    reconciliation_status: Optional[str] = "reconciliation_status"


@dataclass(frozen=True)
class StoryOptions:
    weights: ScoreWeights
    roles: ColumnRoles = ColumnRoles()
    top_n_scores: int = 100
    top_n_errors: int = 15
    top_n_priority: int = 3
    top_n_correlations: int = 10
    include_sessionless: bool = False


def weights_from_raw(raw: object, *, default_weighting: str = "with_ignored") -> ScoreWeights:
    if isinstance(raw, ScoreWeights):
        return raw
    if isinstance(raw, str):
        if raw not in WEIGHTING_SCHEMES:
            raise ValueError(f"unknown weighting scheme {raw!r}; expected one of {sorted(WEIGHTING_SCHEMES)}")
        return WEIGHTING_SCHEMES[raw]
    if isinstance(raw, dict):
        return ScoreWeights(
            active_time=float(raw.get("active_time", 0.0)),
            session_count=float(raw.get("session_count", 0.0)),
            errors=float(raw.get("errors", 0.0)),
            ignored_errors=float(raw.get("ignored_errors", 0.0)),
        )
    return WEIGHTING_SCHEMES[default_weighting]


def _clamped_int(value: object, default: int, lo: int, hi: int) -> int:
    try:
        out = int(value)  # type: ignore[arg-type]
    except Exception:
        out = default
    return max(lo, min(hi, out))


def normalize_options(raw: Optional[dict], *, default_weighting: str = "with_ignored") -> StoryOptions:
    raw = raw or {}

    weights = weights_from_raw(raw.get("weights") or raw.get("weighting"), default_weighting=default_weighting)

    role_names = {f.name for f in fields(ColumnRoles)}
    overrides = {k: (str(v) if v else None) for k, v in (raw.get("columns") or {}).items() if k in role_names}
    roles = ColumnRoles(**overrides)

    return StoryOptions(
        weights=weights,
        roles=roles,
        top_n_scores=_clamped_int(raw.get("top_n_scores", 100), 100, 1, 1000),
        top_n_errors=_clamped_int(raw.get("top_n_errors", 15), 15, 1, 200),
        top_n_priority=_clamped_int(raw.get("top_n_priority", 3), 3, 1, 50),
        top_n_correlations=_clamped_int(raw.get("top_n_correlations", 10), 10, 1, 100),
        include_sessionless=bool(raw.get("include_sessionless", False)),
    )
