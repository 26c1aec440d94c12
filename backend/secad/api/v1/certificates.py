"""Certificate generation and numbering endpoints.

POST   /certificates/{transaction_id}/generate
POST   /certificates/numbering/validate
GET    /certificates/numbering/cache
DELETE /certificates/numbering/cache

Rendering the certificate document is handled elsewhere; generation here
allocates the number and records it in the transaction's certificate data.
"""

import asyncio
import logging
import uuid
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from secad.core.config import settings
from secad.core.dependencies import get_current_user, get_db, require_entity_role
from secad.core.exceptions import ProblemDetailError
from secad.models.entity_settings import EntitySettings
from secad.models.transaction import Transaction
from secad.models.user import User
from secad.schemas.certificate import CertificateGenerateRequest, CertificateGenerateResponse
from secad.schemas.certificate_numbering import (
    Allocation,
    CacheStats,
    ConfigValidation,
    NumberingConfig,
)
from secad.services.audit import get_changed_fields, log_certificate_generated, log_record_changes
from secad.services.certificate_numbering import (
    certificate_number_allocator,
    numbering_config_for,
)

logger = logging.getLogger(__name__)

router = APIRouter()

NUMBERING_FAILED_DETAIL = "Failed to generate certificate number"
TIMEOUT_DETAIL = "Certificate generation timed out. Please try again."


async def _number_taken(db: AsyncSession, transaction: Transaction, number: str) -> bool:
    """True if another transaction of the same entity already carries ``number``."""
    number_col = Transaction.certificate_data["certificate_number"].as_string()
    result = await db.execute(
        select(Transaction.id)
        .where(
            Transaction.entity_id == transaction.entity_id,
            Transaction.id != transaction.id,
            number_col == number,
        )
        .limit(1)
    )
    return result.first() is not None


async def _allocate(
    db: AsyncSession,
    transaction: Transaction,
    config: NumberingConfig,
    user_id: str,
) -> Allocation:
    allocator = certificate_number_allocator
    result = await allocator.generate_certificate_number(db, config, user_id)

    if result.success and await _number_taken(db, transaction, result.data.certificate_number):
        result = await allocator.resolve_conflict(
            db,
            config.entity_id,
            config.year,
            result.data.certificate_number,
            user_id,
            config=config,
        )

    if not result.success:
        logger.error(
            "Certificate numbering failed for transaction %s: %s", transaction.id, result.error
        )
        raise ProblemDetailError(
            status=500,
            title="Certificate Numbering Failed",
            detail=NUMBERING_FAILED_DETAIL,
        )

    return result.data


async def _generate(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    body: CertificateGenerateRequest,
    user: User,
) -> CertificateGenerateResponse:
    result = await db.execute(select(Transaction).where(Transaction.id == transaction_id))
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")

    await require_entity_role("member", db, transaction.entity_id, user)

    settings_result = await db.execute(
        select(EntitySettings).where(EntitySettings.entity_id == transaction.entity_id)
    )
    entity_settings = settings_result.scalar_one_or_none()
    if entity_settings is not None and not entity_settings.certificates_enabled:
        raise HTTPException(status_code=409, detail="Certificates are disabled for this entity")

    if transaction.to_member_id is None:
        raise HTTPException(status_code=422, detail="Member not found for transaction")
    if transaction.quantity <= 0:
        raise HTTPException(
            status_code=422, detail="Certificate quantity must be greater than 0"
        )

    year = body.year or datetime.now(UTC).year

    if body.certificate_number:
        if await _number_taken(db, transaction, body.certificate_number):
            raise HTTPException(status_code=409, detail="Certificate number already in use")
        return await _record_certificate(
            db, transaction, body, user, body.certificate_number, None, year
        )

    config = numbering_config_for(
        str(transaction.entity_id),
        year,
        entity_settings.certificate_settings if entity_settings else None,
    )
    try:
        allocation = await _allocate(db, transaction, config, str(user.id))
        return await _record_certificate(
            db, transaction, body, user, allocation.certificate_number, allocation.sequence, year
        )
    except (Exception, asyncio.CancelledError):
        # The cached sequence was never persisted; the next caller must re-read the store.
        certificate_number_allocator.clear_cache(config.entity_id, config.year)
        logger.warning(
            "Certificate generation aborted, numbering cache cleared: entity=%s year=%s",
            config.entity_id,
            config.year,
        )
        raise


async def _record_certificate(
    db: AsyncSession,
    transaction: Transaction,
    body: CertificateGenerateRequest,
    user: User,
    certificate_number: str,
    sequence: int | None,
    year: int,
) -> CertificateGenerateResponse:
    """Write the certificate metadata onto the transaction and audit it."""
    user_id = str(user.id)
    generated_at = datetime.now(UTC)
    issue_date = body.issue_date or generated_at.date()
    certificate_data = {
        "certificate_number": certificate_number,
        "sequence": sequence,
        "year": year,
        "template_id": body.template_id,
        "format": body.format,
        "issue_date": issue_date.isoformat(),
        "include_watermark": body.include_watermark,
        "include_qr_code": body.include_qr_code,
        "custom_fields": body.custom_fields,
        "generated_by": user_id,
        "generated_at": generated_at.isoformat(),
    }

    changes = get_changed_fields(
        {"certificate_data": transaction.certificate_data, "updated_by": transaction.updated_by},
        {"certificate_data": certificate_data, "updated_by": user.id},
    )
    transaction.certificate_data = certificate_data
    transaction.updated_by = user.id
    await db.flush()

    await log_record_changes(
        db,
        entity_id=transaction.entity_id,
        user_id=user_id,
        action="UPDATE",
        table_name="Transaction",
        record_id=str(transaction.id),
        changes=changes,
    )
    await log_certificate_generated(
        db,
        entity_id=transaction.entity_id,
        user_id=user_id,
        transaction_id=str(transaction.id),
        certificate_number=certificate_number,
        template_id=body.template_id,
        certificate_format=body.format,
        metadata={"sequence": sequence, "year": year},
    )

    logger.info(
        "Certificate generated: transaction=%s number=%s format=%s by=%s",
        transaction.id,
        certificate_number,
        body.format,
        user_id,
    )
    return CertificateGenerateResponse(
        transaction_id=transaction.id,
        certificate_number=certificate_number,
        sequence=sequence,
        year=year,
        format=body.format,
        issue_date=issue_date,
        generated_at=generated_at,
    )


# ---------------------------------------------------------------------------
# POST /certificates/{transaction_id}/generate
# ---------------------------------------------------------------------------


@router.post("/{transaction_id}/generate", response_model=CertificateGenerateResponse)
async def generate_certificate(
    transaction_id: uuid.UUID,
    body: CertificateGenerateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CertificateGenerateResponse:
    """Assign a certificate number to a transaction and record its certificate data."""
    try:
        return await asyncio.wait_for(
            _generate(db, transaction_id, body, user),
            timeout=settings.CERTIFICATE_GENERATION_TIMEOUT_SECONDS,
        )
    except TimeoutError:
        logger.error(
            "Certificate generation timed out after %ss for transaction %s",
            settings.CERTIFICATE_GENERATION_TIMEOUT_SECONDS,
            transaction_id,
        )
        raise ProblemDetailError(
            status=408, title="Request Timeout", detail=TIMEOUT_DETAIL
        ) from None


# ---------------------------------------------------------------------------
# Numbering diagnostics
# ---------------------------------------------------------------------------


@router.post("/numbering/validate", response_model=ConfigValidation)
async def validate_numbering_config(
    body: NumberingConfig,
    user: User = Depends(get_current_user),
) -> ConfigValidation:
    return certificate_number_allocator.validate_config(body)


@router.get("/numbering/cache", response_model=CacheStats)
async def numbering_cache_stats(user: User = Depends(get_current_user)) -> CacheStats:
    return certificate_number_allocator.get_cache_stats()


@router.delete("/numbering/cache", status_code=204)
async def clear_numbering_cache(
    entity_id: uuid.UUID,
    year: int | None = Query(None, ge=1900, le=2100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Drop cached numbers for one entity (optionally one year). Requires admin+."""
    await require_entity_role("admin", db, entity_id, user)
    certificate_number_allocator.clear_cache(str(entity_id), year)
    logger.info(
        "Certificate number cache cleared: entity=%s year=%s by=%s", entity_id, year, user.id
    )
    return Response(status_code=204)
