"""Escrow hold model."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, Numeric, String, event
from sqlalchemy.orm import Mapped, attributes, mapped_column, relationship

from .base import Base


class HoldStatus(str, PyEnum):
    """Status of funds held against one engagement."""

    HELD = "held"
    RELEASE_PENDING = "release_pending"
    RELEASED = "released"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    DISPUTED = "disputed"


TERMINAL_HOLD_STATUSES = frozenset(
    {HoldStatus.RELEASED, HoldStatus.REFUNDED, HoldStatus.PARTIALLY_REFUNDED}
)
SETTLEABLE_HOLD_STATUSES = frozenset(
    {HoldStatus.HELD, HoldStatus.RELEASE_PENDING, HoldStatus.DISPUTED}
)


class EscrowHold(Base):
    """Money held in trust for one engagement until release or refund."""

    __tablename__ = "escrow_holds"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_escrow_hold_amount_positive"),
        CheckConstraint("distributed_amount >= 0", name="ck_escrow_hold_distributed_non_negative"),
        Index("ix_escrow_holds_status", "status"),
        Index("ix_escrow_holds_auto_release_at", "auto_release_at"),
    )

    engagement_id: Mapped[int] = mapped_column(ForeignKey("engagements.id"), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[HoldStatus] = mapped_column(
        SqlEnum(HoldStatus, name="holdstatus", values_callable=lambda x: [e.value for e in x]),
        default=HoldStatus.HELD,
        nullable=False,
    )
    auto_release_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    release_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    distributed_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    engagement = relationship("Engagement", back_populates="hold")
    dispute = relationship("Dispute", back_populates="hold", uselist=False)
    distribution = relationship("DistributionRecord", back_populates="hold", uselist=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_HOLD_STATUSES


@event.listens_for(EscrowHold, "before_update")
def _held_amount_is_immutable(mapper, connection, target: EscrowHold) -> None:
    history = attributes.get_history(target, "amount")
    if history.deleted and history.deleted[0] is not None:
        raise ValueError("EscrowHold.amount is immutable once created")
