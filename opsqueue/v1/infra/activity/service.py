"""
Activity log: append-only audit trail for the queue and run tracker.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.v1.infra.activity.models import ActivityEntry

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class ActivityLog:
    """Writes and reads activity entries. Entries are never updated or deleted."""

    def record(
        self,
        session: AsyncSession,
        *,
        action: str,
        entity_type: str,
        entity_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> ActivityEntry:
        """
        Stage an entry on the caller's session.

        The entry commits with whatever transaction the caller is running,
        so an enqueue and its audit entry become visible together.
        """
        entry = ActivityEntry(
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details or {},
        )
        session.add(entry)

        logger.debug(
            "Activity recorded",
            extra={"action": action, "entity_type": entity_type, "actor": actor},
        )
        return entry

    async def list_entries(
        self,
        session: AsyncSession,
        *,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
        action: str | None = None,
        limit: int = 50,
    ) -> list[ActivityEntry]:
        """Most recent entries first."""
        query = select(ActivityEntry)
        if entity_type:
            query = query.where(ActivityEntry.entity_type == entity_type)
        if entity_id:
            query = query.where(ActivityEntry.entity_id == entity_id)
        if action:
            query = query.where(ActivityEntry.action == action)

        query = query.order_by(desc(ActivityEntry.created_at)).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())
