"""Shared seeding and auth helpers for tests."""

import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from secad.core.security import create_access_token
from secad.models.entity import Entity
from secad.models.entity_settings import EntitySettings
from secad.models.member import Member
from secad.models.security_class import SecurityClass
from secad.models.transaction import Transaction
from secad.models.user import User
from secad.models.user_entity_access import UserEntityAccess


def _uid() -> str:
    return uuid.uuid4().hex[:8]


def auth_headers(sub: str) -> dict:
    """Return Authorization headers with a signed token for ``sub``."""
    token = create_access_token(sub=sub, email=f"{sub}@example.com")
    return {"Authorization": f"Bearer {token}"}


async def seed_entity(
    db: AsyncSession,
    *,
    certificate_settings: dict | None = None,
    certificates_enabled: bool | None = None,
) -> Entity:
    """Create an entity; adds an EntitySettings row when either setting is given."""
    entity = Entity(name=f"Entity {_uid()} Pty Ltd", entity_type="PROPRIETARY")
    db.add(entity)
    await db.flush()

    if certificate_settings is not None or certificates_enabled is not None:
        db.add(
            EntitySettings(
                entity_id=entity.id,
                certificates_enabled=True if certificates_enabled is None else certificates_enabled,
                certificate_settings=certificate_settings,
            )
        )
        await db.flush()

    return entity


async def seed_user_with_access(
    db: AsyncSession, entity: Entity | None, role: str = "owner"
) -> User:
    """Create a user (sub == ``auth_sub``) with ``role`` on ``entity``."""
    sub = f"sub-{_uid()}"
    user = User(auth_sub=sub, email=f"{sub}@example.com", full_name="Registry Officer")
    db.add(user)
    await db.flush()

    if entity is not None:
        db.add(UserEntityAccess(entity_id=entity.id, user_id=user.id, role=role))
        await db.flush()

    return user


async def seed_transaction(
    db: AsyncSession,
    entity: Entity,
    *,
    certificate_number: str | None = None,
    certificate_year: int | None = None,
    created_at: datetime | None = None,
    quantity: int = 1000,
    with_member: bool = True,
) -> Transaction:
    """Create an ISSUE transaction, optionally already carrying a certificate number.

    Without ``certificate_year`` the certificate data has no "year" key, like rows
    written before the year was recorded.
    """
    security_class = SecurityClass(entity_id=entity.id, name=f"ORD-{_uid()}", symbol="ORD")
    db.add(security_class)
    member = None
    if with_member:
        member = Member(entity_id=entity.id, name=f"Holder {_uid()}")
        db.add(member)
    await db.flush()

    transaction = Transaction(
        entity_id=entity.id,
        security_class_id=security_class.id,
        transaction_type="ISSUE",
        quantity=quantity,
        to_member_id=member.id if member else None,
        status="Completed",
    )
    if certificate_number:
        certificate_data = {"certificate_number": certificate_number}
        if certificate_year is not None:
            certificate_data["year"] = certificate_year
        transaction.certificate_data = certificate_data
    if created_at is not None:
        transaction.created_at = created_at
    db.add(transaction)
    await db.flush()
    return transaction
