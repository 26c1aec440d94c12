"""Audit trail endpoint.

GET /audit/?entity_id=...
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from secad.core.dependencies import get_current_user, get_db, require_entity_role
from secad.models.user import User
from secad.schemas.event_log import EventLogItem, EventLogListResponse
from secad.services.audit import get_audit_logs

router = APIRouter()


@router.get("/", response_model=EventLogListResponse)
async def list_audit_logs(
    entity_id: uuid.UUID,
    table_name: str | None = Query(None, max_length=50),
    record_id: str | None = Query(None, max_length=255),
    action: str | None = Query(None, max_length=30),
    actor_id: str | None = Query(None, max_length=255),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> EventLogListResponse:
    """List an entity's audit rows, newest first. Requires any role on the entity."""
    await require_entity_role("member", db, entity_id, user)

    logs, total = await get_audit_logs(
        db,
        entity_id,
        user_id=actor_id,
        table_name=table_name,
        record_id=record_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return EventLogListResponse(
        logs=[EventLogItem.model_validate(log) for log in logs],
        total=total,
        has_more=offset + len(logs) < total,
    )
