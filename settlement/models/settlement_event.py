"""Settlement events queued for the notification collaborator."""
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SettlementEvent(Base):
    """One row per state transition, written in the same transaction as the change."""

    __tablename__ = "settlement_events"
    __table_args__ = (Index("ix_settlement_events_delivered_at", "delivered_at"),)

    hold_id: Mapped[int] = mapped_column(ForeignKey("escrow_holds.id"), nullable=False, index=True)
    dispute_id: Mapped[int | None] = mapped_column(ForeignKey("disputes.id"), nullable=True)
    subject: Mapped[str] = mapped_column(String(16), nullable=False)
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_payload(self) -> dict:
        return {
            "event_id": self.id,
            "hold_id": self.hold_id,
            "dispute_id": self.dispute_id,
            "subject": self.subject,
            "new_status": self.new_status,
            "timestamp": self.at.isoformat(),
        }
