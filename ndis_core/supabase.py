"""Read-only access to the Supabase PostgREST API.

Rows are fetched with ``select=*`` and paged with ``limit``/``offset``. Only
reads are performed; the service-role key is sent as both ``apikey`` and bearer
token, as the Supabase REST gateway expects.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from ndis_core.settings import Settings

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
CONNECTION_CHECK_ROWS = 10
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DataSourceError(Exception):
    """A PostgREST request failed (HTTP error, transport error or unreadable body)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, table: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.table = table


def validate_table_name(table: str) -> str:
    name = (table or "").strip()
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid table name: {table!r}")
    return name


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] if response.text else f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body.get("hint") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


class SupabaseTableClient:
    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._client = httpx.Client(
            base_url=url.rstrip("/") + "/rest/v1",
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseTableClient":
        url, key = settings.require_supabase()
        return cls(url, key, timeout=settings.SUPABASE_TIMEOUT)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SupabaseTableClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _get_page(self, table: str, *, limit: int, offset: int) -> List[Dict[str, Any]]:
        params = {"select": "*", "limit": str(limit), "offset": str(offset)}
        try:
            response = self._client.get(f"/{table}", params=params)
        except httpx.HTTPError as exc:
            logger.warning("Supabase request for %s failed: %s", table, exc)
            raise DataSourceError(f"Could not reach Supabase: {exc}", table=table) from exc

        if not response.is_success:
            message = _error_message(response)
            logger.warning("Supabase returned %s for %s: %s", response.status_code, table, message)
            raise DataSourceError(message, status_code=response.status_code, table=table)
        try:
            rows = response.json()
        except ValueError as exc:
            raise DataSourceError(f"Invalid response from Supabase for {table}", table=table) from exc
        if not isinstance(rows, list):
            raise DataSourceError(f"Unexpected response shape from Supabase for {table}", table=table)
        return rows

    def fetch_rows(self, table: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """All rows of ``table`` (at most ``limit``), in PostgREST's default order."""
        table = validate_table_name(table)
        rows: List[Dict[str, Any]] = []
        while limit is None or len(rows) < limit:
            size = PAGE_SIZE if limit is None else min(PAGE_SIZE, limit - len(rows))
            page = self._get_page(table, limit=size, offset=len(rows))
            rows.extend(page)
            if len(page) < size:
                break
        logger.debug("Fetched %d rows from %s", len(rows), table)
        return rows

    def check_connection(self, table: str) -> int:
        return len(self.fetch_rows(table, limit=CONNECTION_CHECK_ROWS))


def _optional_rows(client: SupabaseTableClient, table: str) -> List[Dict[str, Any]]:
    try:
        return client.fetch_rows(table)
    except (DataSourceError, ValueError) as exc:
        logger.warning("Skipping %s: %s", table, exc)
        return []


def load_story_frames(client: SupabaseTableClient, settings: Settings) -> Dict[str, List[Dict[str, Any]]]:
    """Invoices (required) plus sessions, error catalogue and line items (each optional)."""
    invoices = client.fetch_rows(settings.INVOICES_TABLE, limit=settings.DASHBOARD_ROW_LIMIT)
    frames = {
        "invoices": invoices,
        "sessions": _optional_rows(client, settings.SESSIONS_TABLE),
        "catalogue": _optional_rows(client, settings.ERRORS_TABLE),
        "line_items": _optional_rows(client, settings.LINE_ITEMS_TABLE),
    }
    logger.info(
        "Loaded story data: %d invoices, %d sessions, %d catalogue entries, %d line items",
        len(frames["invoices"]),
        len(frames["sessions"]),
        len(frames["catalogue"]),
        len(frames["line_items"]),
    )
    return frames
