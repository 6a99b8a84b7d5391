"""Distribution records and the payout requests derived from them."""
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import Boolean, CheckConstraint, Enum as SqlEnum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .dispute import DisputeOutcome


class DistributionRecord(Base):
    """Itemized, immutable breakdown of how a settled hold was divided."""

    __tablename__ = "distribution_records"
    __table_args__ = (
        CheckConstraint("gross_amount > 0", name="ck_distribution_gross_positive"),
    )

    hold_id: Mapped[int] = mapped_column(ForeignKey("escrow_holds.id"), unique=True, nullable=False)
    outcome: Mapped[DisputeOutcome] = mapped_column(
        SqlEnum(
            DisputeOutcome,
            name="distributionoutcome",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    is_auto_release: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    gross_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    refund_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    platform_fee_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    platform_fee_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    firm_commission_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    firm_commission_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    practitioner_gross_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    withholding_tax_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    withheld_tax_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    practitioner_net_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    # Configured threshold in force when the split was computed; shares below it are paid gross.
    withholding_threshold: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0.00"), server_default="0"
    )

    financial_year: Mapped[str] = mapped_column(String(16), nullable=False)
    quarter: Mapped[str] = mapped_column(String(2), nullable=False)

    hold = relationship("EscrowHold", back_populates="distribution")
    payouts = relationship("PayoutRequest", back_populates="distribution", order_by="PayoutRequest.id")


class PayeeKind(str, PyEnum):
    PRACTITIONER = "practitioner"
    FIRM = "firm"
    CLIENT_REFUND = "client_refund"
    TAX_WITHHOLDING = "tax_withholding"


class PayoutStatus(str, PyEnum):
    REQUESTED = "requested"
    SENT = "sent"
    FAILED = "failed"


class PayoutRequest(Base):
    """A downstream payout instruction produced by a settlement."""

    __tablename__ = "payout_requests"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payout_amount_positive"),)

    distribution_id: Mapped[int] = mapped_column(ForeignKey("distribution_records.id"), nullable=False, index=True)
    hold_id: Mapped[int] = mapped_column(ForeignKey("escrow_holds.id"), nullable=False, index=True)
    payee_kind: Mapped[PayeeKind] = mapped_column(
        SqlEnum(PayeeKind, name="payeekind", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    payee_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[PayoutStatus] = mapped_column(
        SqlEnum(PayoutStatus, name="payoutstatus", values_callable=lambda x: [e.value for e in x]),
        default=PayoutStatus.REQUESTED,
        nullable=False,
    )

    distribution = relationship("DistributionRecord", back_populates="payouts")
