from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PasswordModel(BaseModel):
    password: Optional[str] = None


class TableRequestModel(PasswordModel):
    table_name: Optional[str] = None


class WeightsModel(BaseModel):
    active_time: float = Field(default=0.0, ge=0)
    session_count: float = Field(default=0.0, ge=0)
    errors: float = Field(default=0.0, ge=0)
    ignored_errors: float = Field(default=0.0, ge=0)


class DataStoryRequestModel(PasswordModel):
    weighting: Optional[str] = None
    weights: Optional[WeightsModel] = None
    columns: Dict[str, Optional[str]] = Field(default_factory=dict)
    top_n_scores: int = 100
    top_n_errors: int = 15
    top_n_priority: int = 3
    top_n_correlations: int = 10
    include_sessionless: bool = False


class ConnectionResponse(BaseModel):
    success: bool
    message: str
    record_count: int


class TablesResponse(BaseModel):
    tables: List[str]
