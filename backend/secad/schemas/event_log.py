"""Audit trail response schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel


class EventLogItem(BaseModel):
    id: uuid.UUID
    entity_id: uuid.UUID
    user_id: str
    action: str
    table_name: str
    record_id: str
    field_name: str | None
    old_value: str | None
    new_value: str | None
    event_metadata: dict | None
    timestamp: datetime

    model_config = {"from_attributes": True}


class EventLogListResponse(BaseModel):
    logs: list[EventLogItem]
    total: int
    has_more: bool
