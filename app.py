import html
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pandas as pd
import streamlit as st

from ndis_core.access import FailedAttemptLimiter, client_ip_from_headers, verify_password
from ndis_core.metrics_overview import compute_overview
from ndis_core.metrics_story import compute_data_story
from ndis_core.metrics_tables import compute_table_view, table_to_csv
from ndis_core.options import WEIGHTING_SCHEMES, normalize_options
from ndis_core.settings import ConfigurationError, configure_logging, get_settings
from ndis_core.supabase import DataSourceError, SupabaseTableClient, load_story_frames

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .app-top-bar {padding: 6px 0 4px;border-bottom: 1px solid #e5e7eb;margin-bottom: 10px;}
        .app-top-bar .breadcrumb {color: #6b7280;font-size: 0.9rem;margin-bottom: 2px;}
        .app-top-bar .page-title {font-size: 1.4rem;font-weight: 700;color: #111827;}
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;margin-bottom: 8px;}
        .narrative {font-size: 1.05rem;line-height: 1.6;color: #334155;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str):
    container = st.container()
    container.markdown(f"<div class='card'><div class='card-title'>{html.escape(title)}</div>", unsafe_allow_html=True)
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def narrative(text: str):
    st.markdown(f"<div class='narrative'>{text}</div>", unsafe_allow_html=True)


def render_page_header(title: str, breadcrumb: str, export_csv: Optional[bytes] = None, export_name: str = "export.csv"):
    inject_base_styles()
    c1, c2 = st.columns([8, 2])
    with c1:
        st.markdown(
            f"<div class='app-top-bar'><div class='breadcrumb'>{html.escape(breadcrumb)}</div><div class='page-title'>{html.escape(title)}</div></div>",
            unsafe_allow_html=True,
        )
    with c2:
        btn_cols = st.columns(2)
        if btn_cols[0].button("Refresh"):
            st.cache_data.clear()
            st.rerun()
        if export_csv:
            btn_cols[1].download_button("Export CSV", data=export_csv, file_name=export_name, mime="text/csv")


def render_chart(charts: Dict[str, Any], key: str, empty_message: str = "Not enough data for this chart."):
    spec = charts.get(key)
    if spec is None:
        st.info(empty_message)
        return
    st.vega_lite_chart(spec, use_container_width=True)


def format_currency_0(value: Optional[float]) -> str:
    return "N/A" if value is None else f"${value:,.0f}"


# ---------- data access ----------
@st.cache_resource
def login_limiter() -> FailedAttemptLimiter:
    return FailedAttemptLimiter(max_attempts=settings.LOGIN_MAX_ATTEMPTS, block_seconds=settings.LOGIN_BLOCK_SECONDS)


@st.cache_data(show_spinner=False, ttl=300)
def fetch_table(table: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    with SupabaseTableClient.from_settings(settings) as client:
        return client.fetch_rows(table, limit=limit)


@st.cache_data(show_spinner=False, ttl=300)
def fetch_story_frames() -> Dict[str, List[Dict[str, Any]]]:
    with SupabaseTableClient.from_settings(settings) as client:
        return load_story_frames(client, settings)


def configured_tables() -> List[str]:
    try:
        return settings.table_names()
    except ConfigurationError:
        return []


def show_load_error(exc: Exception):
    if isinstance(exc, (ConfigurationError, DataSourceError, ValueError)):
        st.error(str(exc))
    else:
        logger.exception("page load failed")
        st.error(f"Unexpected error: {exc}")


# ---------- password gate ----------
def render_login():
    st.title("NDIS Invoice Explorer")
    st.caption("Enter the access password to explore the invoice database.")
    limiter = login_limiter()
    ip = client_ip_from_headers(st.context.headers)
    with st.form("login"):
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Connect")
    if not submitted:
        return
    status = limiter.check(ip)
    if not status.allowed:
        st.error(f"Too many failed attempts. Try again in {status.minutes_remaining(limiter.now())} minute(s).")
        return
    if not verify_password(password, settings.APP_PASSWORD):
        status = limiter.record_failure(ip)
        st.error(f"Invalid password. {status.remaining_attempts} attempt(s) remaining.")
        return
    limiter.reset(ip)
    st.session_state["authenticated"] = True
    st.rerun()


# ---------- pages ----------
def render_table_explorer_page():
    tables = configured_tables()
    if not tables:
        render_page_header("Table Explorer", "Home / Tables")
        st.error("DATABASE_TABLES not configured in environment")
        return
    with st.sidebar:
        table = st.selectbox("Table", tables)
    try:
        rows = fetch_table(table)
    except Exception as exc:
        render_page_header("Table Explorer", "Home / Tables")
        show_load_error(exc)
        return
    view = compute_table_view(table, rows)
    render_page_header(table, "Home / Tables", export_csv=table_to_csv(rows), export_name=f"{table}.csv")
    cols = st.columns(2)
    cols[0].metric("Rows", f"{view['row_count']:,}")
    cols[1].metric("Columns", len(view["columns"]))
    with card("Rows"):
        if not view["rows"]:
            st.info("This table has no rows.")
        else:
            st.dataframe(pd.DataFrame(view["rows"], columns=view["columns"]), hide_index=True, use_container_width=True)
    with st.expander("Empty values per column"):
        nulls = pd.DataFrame([{"column": c, "empty_values": n} for c, n in view["null_counts"].items()])
        st.dataframe(nulls, hide_index=True, use_container_width=True)


def render_dashboard_page():
    try:
        rows = fetch_table(settings.INVOICES_TABLE, limit=settings.DASHBOARD_ROW_LIMIT)
    except Exception as exc:
        render_page_header("Dashboard", "Home / Dashboard")
        show_load_error(exc)
        return
    render_page_header(
        "Dashboard", "Home / Dashboard", export_csv=table_to_csv(rows), export_name=f"{settings.INVOICES_TABLE}.csv"
    )
    overview = compute_overview(rows)
    if not overview["total_records"]:
        st.info("No data available for visualization.")
        return

    used = overview["columns_used"]
    cols = st.columns(3)
    cols[0].metric("Total Records", f"{overview['total_records']:,}")
    if used["value"]:
        cols[1].metric(f"Total {used['value']}", format_currency_0(overview["total_value"]))
    cols[2].metric("Data Points", overview["column_count"])

    charts = overview["charts"]
    chart_cols = st.columns(2)
    with chart_cols[0]:
        with card(f"Distribution by {used['category'] or 'Category'}"):
            render_chart(charts, "categories")
    with chart_cols[1]:
        with card(f"Records over time ({used['date'] or 'no date column'})"):
            render_chart(charts, "timeline")
    with card(f"Status distribution ({used['status'] or 'no status column'})"):
        render_chart(charts, "statuses")


def _result_frame(result: Dict[str, Any], columns: Optional[List[str]] = None) -> pd.DataFrame:
    df = pd.DataFrame(result["rows"])
    if columns and not df.empty:
        df = df[[c for c in columns if c in df.columns]]
    return df


def render_result_table(result: Dict[str, Any], columns: Optional[List[str]] = None):
    if result["status"] != "ok" or not result["rows"]:
        st.info(result["notes"] or "Nothing to show.")
        return
    st.dataframe(_result_frame(result, columns), hide_index=True, use_container_width=True)
    if result["malformed_rows"]:
        st.caption(f"{result['malformed_rows']} invoice(s) had unreadable state management data and were skipped.")


def render_data_story_page():
    with st.sidebar:
        st.markdown("---")
        st.markdown("### Story settings")
        schemes = list(WEIGHTING_SCHEMES)
        weighting = st.radio(
            "Score weighting", schemes, index=schemes.index(settings.SCORE_WEIGHTING), format_func=lambda s: s.replace("_", " ")
        )
        include_sessionless = st.checkbox("Score invoices without sessions", value=False)
    try:
        frames = fetch_story_frames()
    except Exception as exc:
        render_page_header("Data Story", "Home / Data Story")
        show_load_error(exc)
        return
    options = normalize_options(
        {"weighting": weighting, "include_sessionless": include_sessionless}, default_weighting=settings.SCORE_WEIGHTING
    )
    story = compute_data_story(
        frames["invoices"], frames["sessions"], frames["catalogue"], frames["line_items"], configured_tables(), options
    )
    render_page_header("Data Story", "Home / Data Story")
    charts = story["charts"]

    stats = story["invoice_stats"]
    narrative("We'll be exploring the data behind <b>NDIS plan management</b>.")
    cols = st.columns(3)
    cols[0].metric("Participants", f"{stats['individuals_helped']:,}", help="Distinct participant ids")
    cols[1].metric("Total Invoices", f"{stats['total_invoices']:,}")
    cols[2].metric("Total Value", f"${stats['total_amount'] / 1000:,.1f}k", help=f"Sum of {stats['amount_column'] or 'n/a'}")

    st.subheader("All is not equal")
    with card("Invoices per month"):
        render_chart(charts, "monthly_trend")
    dist_cols = st.columns(2)
    with dist_cols[0]:
        with card("Invoices per participant"):
            render_chart(charts, "invoices_per_participant")
    with dist_cols[1]:
        with card("Invoice value"):
            render_chart(charts, "invoice_value")

    st.subheader("Time spent on invoices")
    duration_cols = st.columns(4)
    for col, (key, title) in zip(
        duration_cols,
        [
            ("sessions_per_invoice", "Sessions per invoice"),
            ("duration_total", "Total session length"),
            ("duration_active", "Active session length"),
            ("duration_engaged", "Engaged session length"),
        ],
    ):
        with col:
            with card(title):
                render_chart(charts, key)

    st.subheader("Which invoices are hardest to process?")
    weights = story["options"]["weights"]
    narrative(
        "The efficiency score weighs active time {active_time:.0%}, session count {session_count:.0%}, "
        "active errors {errors:.0%} and ignored errors {ignored_errors:.0%}. Higher is worse.".format(**weights)
    )
    with card("Top efficiency scores"):
        render_chart(charts, "efficiency_scores")
        render_result_table(
            story["efficiency"], ["rank", "invoice_id", "score", "active_time", "session_count", "error_codes", "ignored_error_codes"]
        )

    st.subheader("Errors")
    errors = story["errors"]
    err_cols = st.columns(3)
    for col, (key, title) in zip(
        err_cols,
        [("error_frequency", "Most frequent"), ("error_impact", "Highest average score"), ("error_time_cost", "Most active time")],
    ):
        with col:
            with card(title):
                render_chart(charts, key)
    with card("Priority errors"):
        priority = errors["priority"]
        if priority["status"] != "ok":
            st.info(priority["notes"])
        else:
            rows = [
                {
                    "error_code": r["error_code"],
                    "frequent": r["is_frequent"],
                    "high_impact": r["is_high_impact"],
                    "high_time": r["is_high_time"],
                    "description": (r["details"] or {}).get("description") or (r["details"] or {}).get("message"),
                }
                for r in priority["rows"]
            ]
            st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)

    st.subheader("What moves with the score?")
    with card("Correlation with efficiency score"):
        render_chart(charts, "correlations")
        if "top_correlation" in charts:
            render_chart(charts, "top_correlation")

    st.subheader("Operations")
    ops = story["operations"]
    op_cols = st.columns(2)
    with op_cols[0]:
        with card(f"Intake latency (median {ops['median_latency']:.1f} min)"):
            render_chart(charts, "intake_latency")
    with op_cols[1]:
        with card("Human review friction"):
            render_chart(charts, "review_friction")
    op_cols = st.columns(2)
    with op_cols[0]:
        with card(f"Touchless rate ({ops['touchless']['percentage']:.1f}%)"):
            render_chart(charts, "touchless")
    with op_cols[1]:
        with card("Efficiency killers"):
            render_chart(charts, "efficiency_killers")
    with card("Reconciliation over time"):
        render_chart(charts, "reconciliation")


# ---------- UI setup ----------
st.set_page_config(page_title="NDIS Invoice Explorer", layout="wide")
inject_base_styles()

if not st.session_state.get("authenticated"):
    render_login()
    st.stop()

with st.sidebar:
    st.markdown("### Navigate")
    nav_choice = st.radio("Navigate", ["Table Explorer", "Dashboard", "Data Story"], index=0)
    if st.button("Log out"):
        st.session_state.pop("authenticated", None)
        st.rerun()

if nav_choice == "Table Explorer":
    render_table_explorer_page()
elif nav_choice == "Dashboard":
    render_dashboard_page()
else:
    render_data_story_page()
