"""Engagement model, mirrored from the upstream engagement workflow."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Engagement(Base):
    """A client / practitioner (/ firm) engagement with its agreed amount."""

    __tablename__ = "engagements"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_engagement_amount_positive"),
    )

    external_ref: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    practitioner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    firm_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Per-engagement overrides; null means "use the platform default".
    platform_fee_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    firm_commission_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    withholding_tax_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    hold = relationship("EscrowHold", back_populates="engagement", uselist=False)

    @property
    def has_firm(self) -> bool:
        return self.firm_id is not None
