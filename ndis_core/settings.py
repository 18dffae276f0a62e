from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ConfigurationError(RuntimeError):
    """Raised when a required server-side setting is missing."""


class Settings(BaseSettings):
    # Access gate
    APP_PASSWORD: Optional[str] = None
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_BLOCK_SECONDS: int = 15 * 60

    # Supabase / PostgREST
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    SUPABASE_TIMEOUT: float = 30.0

    # Comma-separated list shown in the table explorer
    DATABASE_TABLES: str = ""

    INVOICES_TABLE: str = "ndis_invoices"
    SESSIONS_TABLE: str = "invoice_view_sessions"
    ERRORS_TABLE: str = "errors"
    LINE_ITEMS_TABLE: str = "invoice_line_items"
    DASHBOARD_ROW_LIMIT: int = 1000

    SCORE_WEIGHTING: Literal["with_ignored", "without_ignored"] = "with_ignored"

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def table_names(self) -> List[str]:
        if not self.DATABASE_TABLES:
            raise ConfigurationError("DATABASE_TABLES not configured in environment")
        return [t.strip() for t in self.DATABASE_TABLES.split(",") if t.strip()]

    def require_supabase(self) -> tuple[str, str]:
        if not self.SUPABASE_URL or not self.SUPABASE_SERVICE_ROLE_KEY:
            raise ConfigurationError("Supabase credentials not configured on server")
        return self.SUPABASE_URL, self.SUPABASE_SERVICE_ROLE_KEY


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level.upper())
        return
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, level.upper(), logging.INFO))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
