"""
Activity log API endpoints.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.infra.database import get_session
from opsqueue.v1.core.exceptions import create_success_response
from opsqueue.v1.infra.activity.schemas import ActivityResponse
from opsqueue.v1.infra.activity.service import ActivityLog

router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("", response_model=dict)
async def list_activity(
    entity_type: str | None = Query(default=None, description="job, job_batch, run, worker"),
    entity_id: UUID | None = Query(default=None, description="Filter by entity"),
    action: str | None = Query(default=None, description="Filter by action"),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum results"),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Most recent activity entries first."""
    entries = await ActivityLog().list_entries(
        session,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        limit=limit,
    )
    data = [ActivityResponse.model_validate(e).model_dump(mode="json") for e in entries]
    return create_success_response(data={"entries": data, "count": len(data)})
