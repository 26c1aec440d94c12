"""Certificate numbering config and allocation result schemas."""

from datetime import datetime

from pydantic import BaseModel


class NumberingConfig(BaseModel):
    # No field constraints here: validate_config reports problems as messages.
    entity_id: str
    year: int
    format: str | None = None
    prefix: str | None = None
    suffix: str | None = None
    start_number: int | None = None


class Allocation(BaseModel):
    certificate_number: str
    year: int
    sequence: int
    entity_id: str
    generated_at: datetime
    generated_by: str


class AllocationResult(BaseModel):
    success: bool
    data: Allocation | None = None
    error: str | None = None


class ConfigValidation(BaseModel):
    valid: bool
    errors: list[str]


class CacheStats(BaseModel):
    size: int
    entries: int
