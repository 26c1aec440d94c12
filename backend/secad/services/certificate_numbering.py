"""Entity-scoped, per-year certificate numbering.

Issued numbers are not kept in a counter table. They live as
``certificate_number`` inside ``Transaction.certificate_data`` and the next
sequence is recovered by parsing them back. On PostgreSQL the lookup takes a
transaction-scoped advisory lock, so callers that persist the new number in
the same transaction serialise. Cache hits and other processes are not
covered by that lock; ``resolve_conflict`` exists for the collisions that
remain.
"""

import asyncio
import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import and_, or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from secad.core.config import settings
from secad.models.transaction import Transaction
from secad.schemas.certificate_numbering import (
    Allocation,
    AllocationResult,
    CacheStats,
    ConfigValidation,
    NumberingConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "{YEAR}-{SEQUENTIAL_NUMBER}"
SEQUENCE_WIDTH = 4
MIN_YEAR = 1900
MAX_YEAR = 2100
CONFLICT_EXHAUSTED_ERROR = (
    "Failed to resolve certificate number conflict after multiple attempts"
)


class AllocationError(Exception):
    """Allocation failed. Converted to a failed ``AllocationResult`` at the boundary."""


def format_certificate_number(
    fmt: str,
    year: int,
    sequence: int,
    prefix: str | None = None,
    suffix: str | None = None,
) -> str:
    """Render ``fmt`` for one allocation.

    ``prefix``/``suffix`` are substituted into ``{PREFIX}``/``{SUFFIX}`` when the
    format has them, otherwise joined on with a dash when non-empty.
    """
    prefix = prefix or ""
    suffix = suffix or ""
    number = (
        fmt.replace("{YEAR}", str(year))
        .replace("{SEQUENTIAL_NUMBER}", f"{sequence:0{SEQUENCE_WIDTH}d}")
        .replace("{PREFIX}", prefix)
        .replace("{SUFFIX}", suffix)
    )
    if prefix and "{PREFIX}" not in fmt:
        number = f"{prefix}-{number}"
    if suffix and "{SUFFIX}" not in fmt:
        number = f"{number}-{suffix}"
    return number


def extract_sequence_from_number(certificate_number: str, year: int) -> int:
    """Recover the sequence from a rendered number.

    Recognises ``{YEAR}-{SEQ}``, ``{PREFIX}-{YEAR}-{SEQ}`` and ``{SEQ}-{YEAR}``.
    Anything else yields 1, which can re-issue an existing number for custom
    formats.
    """
    y = re.escape(str(year))
    patterns = (
        rf"^{y}-(\d+)",  # 2024-0001
        rf"^.+-{y}-(\d+)",  # CERT-2024-0001
        rf"(\d+)-{y}",  # 0001-2024
    )
    for pattern in patterns:
        match = re.search(pattern, certificate_number)
        if match:
            return int(match.group(1))

    logger.warning(
        "Unrecognised certificate number %r for year %s, falling back to sequence 1",
        certificate_number,
        year,
    )
    return 1


def _is_well_formed(certificate_number: str) -> bool:
    """Non-blank, with a 4-digit year and a sequence that is not just that year."""
    if not certificate_number.strip():
        return False

    four_digit_runs = re.findall(r"\d{4}", certificate_number)
    if not four_digit_runs:
        return False

    # "2024" alone: the only digits are the year.
    first_digits = re.search(r"\d+", certificate_number).group()
    return not (len(four_digit_runs) == 1 and first_digits == four_digit_runs[0])


@dataclass
class _CacheEntry:
    certificate_number: str
    sequence: int
    captured_at: float


class CertificateNumberAllocator:
    """Allocates certificate numbers unique per (entity, year).

    Holds a process-local cache of the last number issued per key. Entries
    expire after ``cache_ttl`` seconds; a ttl <= 0 keeps them for the life
    of the process.
    """

    def __init__(
        self,
        *,
        default_format: str | None = None,
        cache_ttl: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ):
        self.default_format = default_format or settings.CERTIFICATE_NUMBER_FORMAT
        self.cache_ttl = (
            settings.CERTIFICATE_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        )
        self.max_attempts = (
            settings.CERTIFICATE_CONFLICT_MAX_ATTEMPTS if max_attempts is None else max_attempts
        )
        self.backoff_seconds = (
            settings.CERTIFICATE_CONFLICT_BACKOFF_SECONDS
            if backoff_seconds is None
            else backoff_seconds
        )
        self._cache: dict[tuple[str, int], _CacheEntry] = {}

    # ── Generation ───────────────────────────────────────────────────

    async def generate_certificate_number(
        self,
        db: AsyncSession,
        config: NumberingConfig,
        user_id: str = "system",
    ) -> AllocationResult:
        """Allocate the next number for ``config.entity_id`` / ``config.year``.

        Does not persist anything: the caller writes the number into the
        transaction's certificate metadata. Never raises; failures come back
        as ``AllocationResult(success=False, error=...)``.
        """
        fmt = config.format or self.default_format
        key = (config.entity_id, config.year)

        try:
            cached = self._get_cached(key)
            if cached is not None:
                sequence = cached.sequence + 1
            else:
                last_sequence = await self._last_issued_sequence(
                    db, config.entity_id, config.year
                )
                if last_sequence is None:
                    sequence = config.start_number or 1
                else:
                    sequence = last_sequence + 1

            certificate_number = format_certificate_number(
                fmt, config.year, sequence, config.prefix, config.suffix
            )
            if not _is_well_formed(certificate_number):
                raise AllocationError(
                    f"Invalid certificate number format: {certificate_number!r}"
                )

            self._cache[key] = _CacheEntry(certificate_number, sequence, time.monotonic())
        except Exception as exc:
            logger.exception(
                "Error generating certificate number for entity %s year %s",
                config.entity_id,
                config.year,
            )
            return AllocationResult(
                success=False,
                error=str(exc) or "Failed to generate certificate number",
            )

        logger.info(
            "Certificate number generated: entity=%s year=%s sequence=%s number=%s by=%s",
            config.entity_id,
            config.year,
            sequence,
            certificate_number,
            user_id,
        )
        return AllocationResult(
            success=True,
            data=Allocation(
                certificate_number=certificate_number,
                year=config.year,
                sequence=sequence,
                entity_id=config.entity_id,
                generated_at=datetime.now(UTC),
                generated_by=user_id,
            ),
        )

    async def _last_issued_sequence(
        self, db: AsyncSession, entity_id: str, year: int
    ) -> int | None:
        """Highest sequence among the entity's certificates for ``year``.

        A certificate belongs to the ``year`` recorded in its metadata. Rows
        written before the year was recorded fall back to the year the
        transaction was created in.
        """
        entity_uuid = uuid.UUID(entity_id)

        if db.get_bind().dialect.name == "postgresql":
            # Released when the surrounding transaction commits or rolls back.
            await db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"certificate:{entity_id}:{year}"},
            )

        number_col = Transaction.certificate_data["certificate_number"].as_string()
        year_col = Transaction.certificate_data["year"].as_integer()
        result = await db.execute(
            select(number_col).where(
                Transaction.entity_id == entity_uuid,
                number_col.is_not(None),
                or_(
                    year_col == year,
                    and_(
                        year_col.is_(None),
                        Transaction.created_at >= datetime(year, 1, 1, tzinfo=UTC),
                        Transaction.created_at < datetime(year + 1, 1, 1, tzinfo=UTC),
                    ),
                ),
            )
        )
        numbers = [n for n in result.scalars().all() if n]
        if not numbers:
            return None
        return max(extract_sequence_from_number(n, year) for n in numbers)

    # ── Conflicts ────────────────────────────────────────────────────

    async def resolve_conflict(
        self,
        db: AsyncSession,
        entity_id: str,
        year: int,
        conflicting_number: str,
        user_id: str = "system",
        *,
        config: NumberingConfig | None = None,
    ) -> AllocationResult:
        """Re-allocate after the caller found ``conflicting_number`` already taken.

        Each attempt drops the cached entry and reads the store again, backing
        off between attempts so a concurrent writer can land its row. This
        narrows the collision window; it does not close it.
        """
        logger.warning(
            "Certificate number conflict detected: entity=%s year=%s number=%s by=%s",
            entity_id,
            year,
            conflicting_number,
            user_id,
        )
        config = config or NumberingConfig(entity_id=entity_id, year=year)

        for attempt in range(1, self.max_attempts + 1):
            self.clear_cache(entity_id, year)
            result = await self.generate_certificate_number(db, config, user_id)
            if result.success and result.data.certificate_number != conflicting_number:
                return result

            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff_seconds * attempt)

        logger.error(
            "Gave up resolving certificate number conflict after %s attempts: "
            "entity=%s year=%s number=%s",
            self.max_attempts,
            entity_id,
            year,
            conflicting_number,
        )
        return AllocationResult(success=False, error=CONFLICT_EXHAUSTED_ERROR)

    # ── Validation ───────────────────────────────────────────────────

    def validate_config(self, config: NumberingConfig) -> ConfigValidation:
        errors: list[str] = []

        if not config.entity_id:
            errors.append("Entity ID is required")

        if not MIN_YEAR <= config.year <= MAX_YEAR:
            errors.append(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")

        if config.start_number is not None and config.start_number < 1:
            errors.append("Start number must be greater than 0")

        if config.format:
            if "{YEAR}" not in config.format:
                errors.append("Format must include {YEAR} placeholder")
            if "{SEQUENTIAL_NUMBER}" not in config.format:
                errors.append("Format must include {SEQUENTIAL_NUMBER} placeholder")

        return ConfigValidation(valid=not errors, errors=errors)

    # ── Cache ────────────────────────────────────────────────────────

    def _get_cached(self, key: tuple[str, int]) -> _CacheEntry | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self.cache_ttl > 0 and time.monotonic() - entry.captured_at >= self.cache_ttl:
            del self._cache[key]
            return None
        return entry

    def clear_cache(self, entity_id: str | None = None, year: int | None = None) -> None:
        """Drop one key, every year of one entity, or everything."""
        if entity_id and year is not None:
            self._cache.pop((entity_id, year), None)
        elif entity_id:
            for key in [k for k in self._cache if k[0] == entity_id]:
                del self._cache[key]
        else:
            self._cache.clear()

    def get_cache_stats(self) -> CacheStats:
        return CacheStats(size=len(self._cache), entries=len(self._cache))


def numbering_config_for(
    entity_id: str, year: int, certificate_settings: dict | None
) -> NumberingConfig:
    """Build a config from an entity's stored ``certificate_settings``."""
    certificate_settings = certificate_settings or {}
    return NumberingConfig(
        entity_id=entity_id,
        year=year,
        format=certificate_settings.get("number_format"),
        prefix=certificate_settings.get("prefix"),
        suffix=certificate_settings.get("suffix"),
        start_number=certificate_settings.get("start_number"),
    )


certificate_number_allocator = CertificateNumberAllocator()
