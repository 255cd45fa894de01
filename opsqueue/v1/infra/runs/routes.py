"""
Run reporting API endpoints.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.config.settings import Settings, SettingsDep
from opsqueue.infra.database import Database, DatabaseDep, get_session
from opsqueue.v1.core.exceptions import NotFoundError, create_success_response
from opsqueue.v1.infra.runs.models import RunStatus
from opsqueue.v1.infra.runs.schemas import RunListFilters, RunListResponse, RunResponse
from opsqueue.v1.infra.runs.tracker import RunTracker

router = APIRouter(prefix="/runs", tags=["runs"])


@router.get("", response_model=dict)
async def list_runs(
    kind: str | None = Query(default=None, description="Filter by run kind"),
    status: RunStatus | None = Query(default=None, description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum results"),
    session: AsyncSession = Depends(get_session),
    database: Database = DatabaseDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List persisted runs, newest first."""
    tracker = RunTracker(database, settings)
    runs, total = await tracker.list_runs(
        session, RunListFilters(kind=kind, status=status, limit=limit)
    )
    response = RunListResponse(
        runs=[RunResponse.model_validate(run) for run in runs], total=total
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/{run_id}", response_model=dict)
async def get_run(
    run_id: UUID,
    session: AsyncSession = Depends(get_session),
    database: Database = DatabaseDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific run by ID."""
    run = await RunTracker(database, settings).get_run(session, run_id)
    if not run:
        raise NotFoundError("Run not found", details={"run_id": str(run_id)})

    return create_success_response(
        data=RunResponse.model_validate(run).model_dump(mode="json")
    )
