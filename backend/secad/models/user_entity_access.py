import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from secad.db.base import EntityScopedBase


class UserEntityAccess(EntityScopedBase):
    __tablename__ = "user_entity_access"
    __table_args__ = (
        UniqueConstraint("entity_id", "user_id", name="uq_user_entity_access_entity_user"),
        CheckConstraint(
            "role IN ('owner', 'admin', 'member')", name="ck_user_entity_access_role"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # entity_id inherited from EntityScopedBase
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped["User"] = relationship()  # noqa: F821
