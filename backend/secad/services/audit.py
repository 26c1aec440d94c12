"""Field-level audit trail.

Diffs before/after values and persists one ``EventLog`` row per changed
field. Audit writes run in a savepoint; a failed write is logged and
dropped so it never breaks the workflow that triggered it.
"""

import json
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from secad.models.event_log import EventLog

logger = logging.getLogger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _serialize(value: Any) -> str | None:
    return None if value is None else _dumps(value)


def has_value_changed(old_value: Any, new_value: Any) -> bool:
    if old_value is None and new_value is None:
        return False
    if old_value is None or new_value is None:
        return True

    if isinstance(old_value, date) and isinstance(new_value, date):
        return old_value != new_value
    if isinstance(old_value, date) or isinstance(new_value, date):
        return True

    if isinstance(old_value, Decimal) or isinstance(new_value, Decimal):
        try:
            return Decimal(str(old_value)) != Decimal(str(new_value))
        except InvalidOperation:
            return True

    if isinstance(old_value, (list, dict)) and isinstance(new_value, (list, dict)):
        return _dumps(old_value) != _dumps(new_value)

    return old_value != new_value


def get_changed_fields(
    old_values: dict[str, Any], new_values: dict[str, Any]
) -> dict[str, dict[str, Any]]:
    """Return ``{field: {"old_value", "new_value"}}`` for fields in ``new_values`` that differ."""
    changes: dict[str, dict[str, Any]] = {}
    for field_name, new_value in new_values.items():
        old_value = old_values.get(field_name)
        if has_value_changed(old_value, new_value):
            changes[field_name] = {"old_value": old_value, "new_value": new_value}
    return changes


async def _persist(db: AsyncSession, rows: list[EventLog], what: str) -> None:
    if not rows:
        return
    table_name, record_id = rows[0].table_name, rows[0].record_id
    try:
        async with db.begin_nested():
            db.add_all(rows)
    except SQLAlchemyError:
        logger.exception("Failed to log %s for %s %s", what, table_name, record_id)


async def log_record_changes(
    db: AsyncSession,
    *,
    entity_id: uuid.UUID,
    user_id: str,
    action: str,
    table_name: str,
    record_id: str,
    changes: dict[str, dict[str, Any]],
    metadata: dict | None = None,
) -> None:
    """Write one row per entry of ``changes`` (as built by ``get_changed_fields``)."""
    rows = [
        EventLog(
            entity_id=entity_id,
            user_id=user_id,
            action=action,
            table_name=table_name,
            record_id=record_id,
            field_name=field_name,
            old_value=_serialize(change.get("old_value")),
            new_value=_serialize(change.get("new_value")),
            event_metadata=metadata or {},
        )
        for field_name, change in changes.items()
    ]
    await _persist(db, rows, "record changes")


async def log_certificate_generated(
    db: AsyncSession,
    *,
    entity_id: uuid.UUID,
    user_id: str,
    transaction_id: str,
    certificate_number: str,
    template_id: str | None,
    certificate_format: str,
    metadata: dict | None = None,
) -> None:
    row = EventLog(
        entity_id=entity_id,
        user_id=user_id,
        action="CERTIFICATE_GENERATED",
        table_name="Transaction",
        record_id=transaction_id,
        field_name="certificate_number",
        new_value=_serialize(certificate_number),
        event_metadata={
            "template_id": template_id,
            "format": certificate_format,
            **(metadata or {}),
        },
    )
    await _persist(db, [row], "certificate generation")


async def get_audit_logs(
    db: AsyncSession,
    entity_id: uuid.UUID,
    *,
    user_id: str | None = None,
    table_name: str | None = None,
    record_id: str | None = None,
    action: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[EventLog], int]:
    """Return ``(page, total)`` of an entity's audit rows, newest first."""
    filters = [EventLog.entity_id == entity_id]
    if user_id:
        filters.append(EventLog.user_id == user_id)
    if table_name:
        filters.append(EventLog.table_name == table_name)
    if record_id:
        filters.append(EventLog.record_id == record_id)
    if action:
        filters.append(EventLog.action == action)
    if start_date:
        filters.append(EventLog.timestamp >= start_date)
    if end_date:
        filters.append(EventLog.timestamp <= end_date)

    count_result = await db.execute(select(func.count()).select_from(EventLog).where(*filters))
    total = count_result.scalar_one()
    result = await db.execute(
        select(EventLog)
        .where(*filters)
        .order_by(EventLog.timestamp.desc(), EventLog.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total
