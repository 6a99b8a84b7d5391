"""Dispute, evidence and arbiter note models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, attributes, mapped_column, relationship

from .base import Base


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Party(str, PyEnum):
    """One of the two original parties of an engagement."""

    CLIENT = "client"
    PRACTITIONER = "practitioner"

    @property
    def counterparty(self) -> "Party":
        return Party.PRACTITIONER if self is Party.CLIENT else Party.CLIENT


class DisputeStatus(str, PyEnum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


ACTIVE_DISPUTE_STATUSES = frozenset({DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW})


class DisputePriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self.value]


PRIORITY_RANK = {"low": 1, "medium": 2, "high": 3, "urgent": 4}


class DisputeOutcome(str, PyEnum):
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    RELEASE = "release"


class Dispute(Base):
    """A dispute raised by one party against a held escrow."""

    __tablename__ = "disputes"
    __table_args__ = (
        CheckConstraint(
            "refund_percentage IS NULL OR (refund_percentage >= 0 AND refund_percentage <= 100)",
            name="ck_dispute_refund_percentage_range",
        ),
        Index("ix_disputes_status", "status"),
        Index("ix_disputes_priority", "priority"),
    )

    hold_id: Mapped[int] = mapped_column(ForeignKey("escrow_holds.id"), unique=True, nullable=False)
    raised_by_party: Mapped[Party] = mapped_column(
        SqlEnum(Party, name="disputeparty", values_callable=_values), nullable=False
    )
    raised_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DisputeStatus] = mapped_column(
        SqlEnum(DisputeStatus, name="disputestatus", values_callable=_values),
        default=DisputeStatus.OPEN,
        nullable=False,
    )
    priority: Mapped[DisputePriority] = mapped_column(
        SqlEnum(DisputePriority, name="disputepriority", values_callable=_values),
        default=DisputePriority.LOW,
        nullable=False,
    )
    is_escalated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escalated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    counterparty_responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    outcome: Mapped[DisputeOutcome | None] = mapped_column(
        SqlEnum(DisputeOutcome, name="disputeoutcome", values_callable=_values), nullable=True
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    hold = relationship("EscrowHold", back_populates="dispute")
    evidence = relationship(
        "DisputeEvidence",
        back_populates="dispute",
        order_by="DisputeEvidence.id",
    )
    notes = relationship(
        "ArbiterNote",
        back_populates="dispute",
        order_by="ArbiterNote.id",
    )

    @property
    def raised_at(self) -> datetime:
        return self.created_at

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_DISPUTE_STATUSES

    def evidence_for(self, party: Party) -> list["DisputeEvidence"]:
        return [item for item in self.evidence if item.party == party]

    @property
    def client_evidence(self) -> list["DisputeEvidence"]:
        return self.evidence_for(Party.CLIENT)

    @property
    def practitioner_evidence(self) -> list["DisputeEvidence"]:
        return self.evidence_for(Party.PRACTITIONER)


class DisputeEvidence(Base):
    """Evidence reference attached by one party. Append-only."""

    __tablename__ = "dispute_evidence"

    dispute_id: Mapped[int] = mapped_column(ForeignKey("disputes.id"), nullable=False, index=True)
    party: Mapped[Party] = mapped_column(
        SqlEnum(Party, name="evidenceparty", values_callable=_values), nullable=False
    )
    submitted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    evidence_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    attached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    dispute = relationship("Dispute", back_populates="evidence")


class ArbiterNote(Base):
    """Timestamped arbiter note on a dispute. Append-only."""

    __tablename__ = "arbiter_notes"

    dispute_id: Mapped[int] = mapped_column(ForeignKey("disputes.id"), nullable=False, index=True)
    arbiter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    noted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    dispute = relationship("Dispute", back_populates="notes")


def _reject_mutation(mapper, connection, target) -> None:
    raise ValueError(f"{type(target).__name__} rows are append-only")


for _append_only in (DisputeEvidence, ArbiterNote):
    event.listen(_append_only, "before_update", _reject_mutation)
    event.listen(_append_only, "before_delete", _reject_mutation)


@event.listens_for(Dispute, "before_update")
def _outcome_is_immutable(mapper, connection, target: Dispute) -> None:
    history = attributes.get_history(target, "outcome")
    if history.deleted and history.deleted[0] is not None:
        raise ValueError("Dispute.outcome cannot change once set")
