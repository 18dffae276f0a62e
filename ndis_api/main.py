from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any, List

import numpy as np
import pandas as pd
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from ndis_api.schemas import ConnectionResponse, DataStoryRequestModel, PasswordModel, TableRequestModel, TablesResponse
from ndis_core.access import FailedAttemptLimiter, client_ip_from_headers, verify_password
from ndis_core.metrics_overview import compute_overview
from ndis_core.metrics_story import compute_data_story
from ndis_core.metrics_tables import compute_table_view, table_to_csv
from ndis_core.options import normalize_options
from ndis_core.settings import ConfigurationError, Settings, configure_logging, get_settings
from ndis_core.supabase import DataSourceError, SupabaseTableClient, load_story_frames, validate_table_name

app = FastAPI(title="NDIS Invoice Explorer API", version="0.1.0")
logger = logging.getLogger(__name__)
configure_logging(get_settings().LOG_LEVEL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:8501"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _json(data: object) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                type(pd.NaT): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        ),
    )


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _failure(operation: str, exc: Exception) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        logger.error("%s: %s", operation, exc)
        return _error(500, str(exc))
    if isinstance(exc, DataSourceError):
        logger.warning("%s: data source error: %s", operation, exc)
        target = f" from {exc.table}" if exc.table else ""
        return _error(500, f"Failed to fetch data{target}: {exc}")
    if isinstance(exc, ValueError):
        return _error(400, str(exc))
    logger.exception("%s failed", operation)
    return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@lru_cache(maxsize=1)
def get_login_limiter() -> FailedAttemptLimiter:
    settings = get_settings()
    return FailedAttemptLimiter(max_attempts=settings.LOGIN_MAX_ATTEMPTS, block_seconds=settings.LOGIN_BLOCK_SECONDS)


def _client(settings: Settings) -> SupabaseTableClient:
    return SupabaseTableClient.from_settings(settings)


def client_ip(request: Request) -> str:
    return client_ip_from_headers(request.headers)


def _authorized(body: PasswordModel, settings: Settings) -> bool:
    return verify_password(body.password, settings.APP_PASSWORD)


def _configured_tables(settings: Settings) -> List[str]:
    try:
        return settings.table_names()
    except ConfigurationError:
        return []


@app.post("/check-connection")
def check_connection(body: PasswordModel, request: Request):
    try:
        settings = get_settings()
        limiter = get_login_limiter()
        ip = client_ip(request)

        status = limiter.check(ip)
        if not status.allowed:
            minutes = status.minutes_remaining(limiter.now())
            plural = "" if minutes == 1 else "s"
            logger.warning("Blocked login attempt from %s", ip)
            return _error(429, f"Too many failed attempts. Try again in {minutes} minute{plural}.")

        if not _authorized(body, settings):
            status = limiter.record_failure(ip)
            logger.info("Failed login from %s (%d attempts left)", ip, status.remaining_attempts)
            return _error(401, "Invalid password", remaining_attempts=status.remaining_attempts)
        limiter.reset(ip)

        with _client(settings) as client:
            count = client.check_connection(settings.INVOICES_TABLE)
        return _json(ConnectionResponse(success=True, message="Connected successfully", record_count=count).model_dump())
    except Exception as exc:
        return _failure("check_connection", exc)


@app.post("/list-tables")
def list_tables(body: PasswordModel):
    try:
        settings = get_settings()
        if not _authorized(body, settings):
            return _error(401, "Invalid password")
        return _json(TablesResponse(tables=settings.table_names()).model_dump())
    except Exception as exc:
        return _failure("list_tables", exc)


@app.post("/get-table-data")
def get_table_data(body: TableRequestModel):
    try:
        settings = get_settings()
        if not _authorized(body, settings):
            return _error(401, "Invalid password")
        if not body.table_name or not body.table_name.strip():
            return _error(400, "Table name is required")
        table = validate_table_name(body.table_name)
        with _client(settings) as client:
            rows = client.fetch_rows(table)
        return _json(compute_table_view(table, rows))
    except Exception as exc:
        return _failure("get_table_data", exc)


@app.post("/dashboard-data")
def dashboard_data(body: PasswordModel):
    try:
        settings = get_settings()
        if not _authorized(body, settings):
            return _error(401, "Invalid password")
        with _client(settings) as client:
            rows = client.fetch_rows(settings.INVOICES_TABLE, limit=settings.DASHBOARD_ROW_LIMIT)
        return _json({"data": rows, "row_count": len(rows), "overview": compute_overview(rows)})
    except Exception as exc:
        return _failure("dashboard_data", exc)


@app.post("/data-story")
def data_story(body: DataStoryRequestModel):
    try:
        settings = get_settings()
        if not _authorized(body, settings):
            return _error(401, "Invalid password")
        options = normalize_options(body.model_dump(exclude={"password"}), default_weighting=settings.SCORE_WEIGHTING)
        with _client(settings) as client:
            frames = load_story_frames(client, settings)
        payload = compute_data_story(
            frames["invoices"],
            frames["sessions"],
            frames["catalogue"],
            frames["line_items"],
            _configured_tables(settings),
            options,
        )
        return _json(payload)
    except Exception as exc:
        return _failure("data_story", exc)


@app.post("/export/{table_name}")
def export_table(table_name: str, body: PasswordModel):
    try:
        settings = get_settings()
        if not _authorized(body, settings):
            return _error(401, "Invalid password")
        table = validate_table_name(table_name)
        with _client(settings) as client:
            rows = client.fetch_rows(table)
        return Response(
            content=table_to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={table}.csv"},
        )
    except Exception as exc:
        return _failure("export_table", exc)
