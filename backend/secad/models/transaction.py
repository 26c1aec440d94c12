import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from secad.db.base import EntityScopedBase, JSONType

TRANSACTION_TYPES = (
    "ISSUE",
    "TRANSFER",
    "CANCELLATION",
    "REDEMPTION",
    "RETURN_OF_CAPITAL",
    "CAPITAL_CALL",
)
TRANSACTION_STATUSES = ("Pending", "Completed", "Cancelled")


class Transaction(EntityScopedBase):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ("
            + ", ".join(f"'{t}'" for t in TRANSACTION_TYPES)
            + ")",
            name="ck_transactions_type",
        ),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in TRANSACTION_STATUSES) + ")",
            name="ck_transactions_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # entity_id inherited from EntityScopedBase
    security_class_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("security_classes.id"), nullable=False
    )
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    amount_paid_per_security: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 6), nullable=True
    )
    from_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    to_member_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Completed")
    reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Free-form certificate metadata; the issued number lives under "certificate_number".
    certificate_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    to_member: Mapped["Member | None"] = relationship(  # noqa: F821
        foreign_keys="Transaction.to_member_id"
    )
    security_class: Mapped["SecurityClass"] = relationship()  # noqa: F821
