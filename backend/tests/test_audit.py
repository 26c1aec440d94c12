"""Field-level audit trail: change detection, persistence and querying."""

import logging
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from secad.models.event_log import EventLog
from secad.services.audit import (
    get_audit_logs,
    get_changed_fields,
    has_value_changed,
    log_certificate_generated,
    log_record_changes,
)
from tests.helpers import seed_entity

pytestmark = pytest.mark.audit


# ── Change detection ────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("old", "new", "changed"),
    [
        (None, None, False),
        (None, "x", True),
        ("x", None, True),
        ("a", "a", False),
        ("a", "b", True),
        (1, 1, False),
        (date(2024, 1, 1), date(2024, 1, 1), False),
        (date(2024, 1, 1), date(2024, 1, 2), True),
        (
            datetime(2024, 1, 1, 12, tzinfo=UTC),
            datetime(2024, 1, 1, 12, tzinfo=UTC),
            False,
        ),
        (date(2024, 1, 1), "2024-01-01", True),
        (Decimal("1.50"), Decimal("1.5"), False),
        (Decimal("1.50"), 1.5, False),
        (Decimal("1.50"), Decimal("1.51"), True),
        ({"a": 1, "b": 2}, {"b": 2, "a": 1}, False),
        ({"a": 1}, {"a": 2}, True),
        ([1, 2], [1, 2], False),
        ([1, 2], [2, 1], True),
    ],
)
def test_has_value_changed(old, new, changed: bool):
    assert has_value_changed(old, new) is changed


def test_get_changed_fields_only_reports_differences():
    old = {"status": "Pending", "quantity": 100, "reference": None}
    new = {"status": "Completed", "quantity": 100, "reference": "REF-1"}

    changes = get_changed_fields(old, new)

    assert changes == {
        "status": {"old_value": "Pending", "new_value": "Completed"},
        "reference": {"old_value": None, "new_value": "REF-1"},
    }


def test_get_changed_fields_missing_old_key_counts_as_none():
    assert get_changed_fields({}, {"name": "Acme"}) == {
        "name": {"old_value": None, "new_value": "Acme"}
    }
    assert get_changed_fields({}, {"name": None}) == {}


# ── Persistence ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_log_record_changes_writes_one_row_per_field(db: AsyncSession):
    entity = await seed_entity(db)
    record_id = str(uuid.uuid4())
    changes = get_changed_fields(
        {"status": "Pending", "certificate_data": None},
        {"status": "Completed", "certificate_data": {"certificate_number": "2024-0001"}},
    )

    await log_record_changes(
        db,
        entity_id=entity.id,
        user_id="user-1",
        action="UPDATE",
        table_name="Transaction",
        record_id=record_id,
        changes=changes,
        metadata={"source": "test"},
    )

    result = await db.execute(
        select(EventLog).where(EventLog.record_id == record_id).order_by(EventLog.field_name)
    )
    rows = result.scalars().all()
    assert [r.field_name for r in rows] == ["certificate_data", "status"]

    cert_row, status_row = rows
    assert cert_row.old_value is None
    assert cert_row.new_value == '{"certificate_number": "2024-0001"}'
    assert status_row.old_value == '"Pending"'
    assert status_row.new_value == '"Completed"'
    assert status_row.action == "UPDATE"
    assert status_row.user_id == "user-1"
    assert status_row.entity_id == entity.id
    assert status_row.event_metadata == {"source": "test"}


@pytest.mark.asyncio
async def test_log_record_changes_without_changes_writes_nothing(db: AsyncSession):
    entity = await seed_entity(db)

    await log_record_changes(
        db,
        entity_id=entity.id,
        user_id="user-1",
        action="UPDATE",
        table_name="Transaction",
        record_id="r-1",
        changes={},
    )

    total = (await get_audit_logs(db, entity.id))[1]
    assert total == 0


@pytest.mark.asyncio
async def test_log_certificate_generated(db: AsyncSession):
    entity = await seed_entity(db)

    await log_certificate_generated(
        db,
        entity_id=entity.id,
        user_id="user-1",
        transaction_id="txn-1",
        certificate_number="2024-0007",
        template_id="tpl-standard",
        certificate_format="PDF",
        metadata={"sequence": 7},
    )

    logs, total = await get_audit_logs(db, entity.id, action="CERTIFICATE_GENERATED")
    assert total == 1
    row = logs[0]
    assert row.table_name == "Transaction"
    assert row.record_id == "txn-1"
    assert row.field_name == "certificate_number"
    assert row.old_value is None
    assert row.new_value == '"2024-0007"'
    assert row.event_metadata == {"template_id": "tpl-standard", "format": "PDF", "sequence": 7}


@pytest.mark.asyncio
async def test_audit_write_failure_is_logged_not_raised(db: AsyncSession, monkeypatch, caplog):
    entity = await seed_entity(db)

    def _broken_begin_nested():
        raise SQLAlchemyError("savepoint unavailable")

    monkeypatch.setattr(db, "begin_nested", _broken_begin_nested)

    with caplog.at_level(logging.ERROR, logger="secad.services.audit"):
        await log_certificate_generated(
            db,
            entity_id=entity.id,
            user_id="user-1",
            transaction_id="txn-1",
            certificate_number="2024-0001",
            template_id=None,
            certificate_format="PDF",
        )

    assert "Failed to log certificate generation for Transaction txn-1" in caplog.text


# ── Querying ────────────────────────────────────────────────────────


async def _seed_log_rows(db: AsyncSession, entity_id: uuid.UUID) -> None:
    rows = [
        ("user-1", "CREATE", "Member", "m-1", 1),
        ("user-1", "UPDATE", "Transaction", "t-1", 2),
        ("user-2", "UPDATE", "Transaction", "t-2", 3),
        ("user-2", "DELETE", "Member", "m-2", 4),
        ("user-1", "CERTIFICATE_GENERATED", "Transaction", "t-1", 5),
    ]
    for user_id, action, table_name, record_id, month in rows:
        db.add(
            EventLog(
                entity_id=entity_id,
                user_id=user_id,
                action=action,
                table_name=table_name,
                record_id=record_id,
                field_name="name",
                timestamp=datetime(2024, month, 10, tzinfo=UTC),
            )
        )
    await db.flush()


@pytest.mark.asyncio
async def test_get_audit_logs_newest_first(db: AsyncSession):
    entity = await seed_entity(db)
    await _seed_log_rows(db, entity.id)

    logs, total = await get_audit_logs(db, entity.id)

    assert total == 5
    assert [log.action for log in logs] == [
        "CERTIFICATE_GENERATED",
        "DELETE",
        "UPDATE",
        "UPDATE",
        "CREATE",
    ]


@pytest.mark.asyncio
async def test_get_audit_logs_scoped_to_entity(db: AsyncSession):
    entity = await seed_entity(db)
    other = await seed_entity(db)
    await _seed_log_rows(db, entity.id)

    logs, total = await get_audit_logs(db, other.id)

    assert logs == []
    assert total == 0


@pytest.mark.parametrize(
    ("filters", "expected_records"),
    [
        ({"user_id": "user-2"}, ["m-2", "t-2"]),
        ({"table_name": "Member"}, ["m-2", "m-1"]),
        ({"record_id": "t-1"}, ["t-1", "t-1"]),
        ({"action": "UPDATE"}, ["t-2", "t-1"]),
        (
            {
                "start_date": datetime(2024, 2, 1, tzinfo=UTC),
                "end_date": datetime(2024, 4, 1, tzinfo=UTC),
            },
            ["t-2", "t-1"],
        ),
    ],
)
@pytest.mark.asyncio
async def test_get_audit_logs_filters(db: AsyncSession, filters: dict, expected_records: list):
    entity = await seed_entity(db)
    await _seed_log_rows(db, entity.id)

    logs, total = await get_audit_logs(db, entity.id, **filters)

    assert [log.record_id for log in logs] == expected_records
    assert total == len(expected_records)


@pytest.mark.asyncio
async def test_get_audit_logs_paging(db: AsyncSession):
    entity = await seed_entity(db)
    await _seed_log_rows(db, entity.id)

    logs, total = await get_audit_logs(db, entity.id, limit=2, offset=2)

    assert total == 5
    assert [log.record_id for log in logs] == ["t-2", "t-1"]
