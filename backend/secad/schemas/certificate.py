"""Certificate generation request/response schemas."""

import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


class CertificateGenerateRequest(BaseModel):
    certificate_number: str | None = Field(None, min_length=1, max_length=100)
    year: int | None = Field(None, ge=1900, le=2100)
    issue_date: date | None = None
    template_id: str | None = Field(None, max_length=255)
    format: Literal["PDF", "DOCX"] = "PDF"
    include_watermark: bool = True
    include_qr_code: bool = True
    custom_fields: dict[str, str] | None = None


class CertificateGenerateResponse(BaseModel):
    transaction_id: uuid.UUID
    certificate_number: str
    sequence: int | None
    year: int
    format: str
    issue_date: date
    generated_at: datetime
