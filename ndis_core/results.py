from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

OK = "ok"
EMPTY = "empty"
MISSING_COLUMN = "missing_column"


@dataclass(frozen=True)
class InsightResult:
    """Outcome of one engine computation.

    ``status`` separates "nothing to compute" (``empty``) from "the data does not
    have the column this needs" (``missing_column``); ``malformed_rows`` counts
    invoices whose state-management blob could not be parsed.
    """

    status: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    notes: str = ""
    malformed_rows: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == OK

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def empty_result(notes: str = "No input rows.", *, malformed_rows: int = 0) -> InsightResult:
    return InsightResult(status=EMPTY, notes=notes, malformed_rows=malformed_rows)


def missing_column(role: str, available: List[str]) -> InsightResult:
    return InsightResult(
        status=MISSING_COLUMN,
        notes=f"Missing expected column for {role}.",
        extra={"available_columns": list(available)},
    )
