import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, func, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from secad.db.base import Base, JSONType


class EntitySettings(Base):
    """Per-entity feature switches.

    ``certificate_settings`` may carry ``number_format``, ``prefix``,
    ``suffix`` and ``start_number`` for certificate numbering.
    """

    __tablename__ = "entity_settings"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    entity_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    certificates_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    certificate_settings: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    entity: Mapped["Entity"] = relationship(back_populates="settings")  # noqa: F821
