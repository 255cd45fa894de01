"""
Run Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from opsqueue.v1.infra.runs.models import RunStatus


class RunResponse(BaseModel):
    """Schema for run API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: str
    status: str
    params: dict[str, Any]
    stats: dict[str, Any]
    error_message: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    created_at: datetime


class RunListFilters(BaseModel):
    kind: str | None = Field(default=None, description="Filter by run kind")
    status: RunStatus | None = Field(default=None, description="Filter by status")
    limit: int = Field(default=50, ge=1, le=500)


class RunListResponse(BaseModel):
    runs: list[RunResponse]
    total: int
