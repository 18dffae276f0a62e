from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()

ACCENT = "#0891b2"
MUTED = "#94a3b8"


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def _frame(rows: List[Dict[str, Any]] | pd.DataFrame) -> pd.DataFrame:
    return rows.copy() if isinstance(rows, pd.DataFrame) else pd.DataFrame(rows)


def bar_spec(
    rows: List[Dict[str, Any]] | pd.DataFrame,
    x: str,
    y: str,
    *,
    x_title: Optional[str] = None,
    y_title: Optional[str] = None,
    y_format: str = "~s",
    horizontal: bool = False,
    height: int = 260,
) -> Optional[Dict[str, Any]]:
    df = _frame(rows)
    if df.empty or x not in df.columns or y not in df.columns:
        return None
    df[x] = df[x].astype(str)
    order = df[x].tolist()
    hover = alt.selection_point(fields=[x], on="mouseover", empty="all")
    cat = alt.X(f"{x}:N", title=x_title or x, sort=order, axis=alt.Axis(grid=False, labelLimit=180))
    val = alt.Y(f"{y}:Q", title=y_title or y, axis=alt.Axis(format=y_format, gridDash=[4, 4], domain=False, ticks=False))
    if horizontal:
        cat = alt.Y(f"{x}:N", title=x_title or x, sort=order, axis=alt.Axis(grid=False, labelLimit=180))
        val = alt.X(f"{y}:Q", title=y_title or y, axis=alt.Axis(format=y_format, gridDash=[4, 4], domain=False, ticks=False))
    chart = (
        alt.Chart(df)
        .mark_bar(color=ACCENT)
        .encode(
            x=val if horizontal else cat,
            y=cat if horizontal else val,
            opacity=alt.condition(hover, alt.value(1), alt.value(0.6)),
            tooltip=[alt.Tooltip(f"{x}:N", title=x_title or x), alt.Tooltip(f"{y}:Q", title=y_title or y, format=",.2f")],
        )
        .add_params(hover)
        .properties(height=height)
    )
    return to_vega_spec(chart)


def line_spec(
    rows: List[Dict[str, Any]] | pd.DataFrame,
    x: str,
    y: str,
    *,
    x_title: Optional[str] = None,
    y_title: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    df = _frame(rows)
    if df.empty or x not in df.columns or y not in df.columns:
        return None
    chart = (
        alt.Chart(df)
        .mark_line(point={"filled": True, "size": 60}, color=ACCENT)
        .encode(
            x=alt.X(f"{x}:O", title=x_title or x, axis=alt.Axis(grid=False)),
            y=alt.Y(f"{y}:Q", title=y_title or y, axis=alt.Axis(format="~s", gridDash=[4, 4], domain=False, ticks=False)),
            tooltip=[alt.Tooltip(f"{x}:O", title=x_title or x), alt.Tooltip(f"{y}:Q", title=y_title or y, format=",")],
        )
        .properties(height=260)
    )
    return to_vega_spec(chart)


def scatter_spec(
    rows: List[Dict[str, Any]] | pd.DataFrame,
    x: str,
    y: str,
    *,
    x_title: Optional[str] = None,
    y_title: Optional[str] = None,
    color: Optional[str] = None,
    size: Optional[str] = None,
    tooltip: Optional[List[str]] = None,
) -> Optional[Dict[str, Any]]:
    df = _frame(rows)
    if df.empty or x not in df.columns or y not in df.columns:
        return None
    encoding: Dict[str, Any] = {
        "x": alt.X(f"{x}:Q", title=x_title or x, axis=alt.Axis(gridDash=[4, 4])),
        "y": alt.Y(f"{y}:Q", title=y_title or y, axis=alt.Axis(gridDash=[4, 4])),
        "tooltip": tooltip or [x, y],
    }
    if color and color in df.columns:
        encoding["color"] = alt.Color(f"{color}:N", scale=alt.Scale(range=[MUTED, ACCENT]))
    if size and size in df.columns:
        encoding["size"] = alt.Size(f"{size}:Q")
    chart = alt.Chart(df).mark_circle(opacity=0.7, color=ACCENT).encode(**encoding).properties(height=300)
    return to_vega_spec(chart)


def stacked_bar_spec(
    rows: List[Dict[str, Any]] | pd.DataFrame,
    x: str,
    series: List[str],
    *,
    x_title: Optional[str] = None,
    y_title: str = "Count",
) -> Optional[Dict[str, Any]]:
    df = _frame(rows)
    present = [s for s in series if s in df.columns]
    if df.empty or x not in df.columns or not present:
        return None
    long_df = df.melt(id_vars=x, value_vars=present, var_name="series", value_name="value")
    chart = (
        alt.Chart(long_df)
        .mark_bar()
        .encode(
            x=alt.X(f"{x}:O", title=x_title or x, axis=alt.Axis(grid=False)),
            y=alt.Y("value:Q", title=y_title, stack="zero"),
            color=alt.Color("series:N", title=None),
            tooltip=[x, "series", "value"],
        )
        .properties(height=260)
    )
    return to_vega_spec(chart)


def arc_spec(rows: List[Dict[str, Any]] | pd.DataFrame, theta: str, color: str) -> Optional[Dict[str, Any]]:
    df = _frame(rows)
    if df.empty or theta not in df.columns or color not in df.columns:
        return None
    chart = (
        alt.Chart(df)
        .mark_arc(innerRadius=50)
        .encode(
            theta=alt.Theta(f"{theta}:Q"),
            color=alt.Color(f"{color}:N", title=None),
            tooltip=[color, theta],
        )
        .properties(height=260)
    )
    return to_vega_spec(chart)
