"""Dispute schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from settlement.models.dispute import DisputeOutcome, DisputePriority, DisputeStatus, Party


class EvidenceIn(BaseModel):
    evidence_type: str = Field(..., min_length=1, max_length=50)
    reference_url: str = Field(..., min_length=1, max_length=2048)
    description: str | None = Field(default=None, max_length=2000)


class DisputeRaise(BaseModel):
    # Length bounds are configurable and checked by the service.
    reason: str
    evidence: list[EvidenceIn] = Field(default_factory=list)
    as_party: Party | None = None


class EvidenceAdd(BaseModel):
    evidence: list[EvidenceIn] = Field(..., min_length=1)
    as_party: Party | None = None


class NoteAdd(BaseModel):
    note: str = Field(..., min_length=1)


class PriorityUpdate(BaseModel):
    priority: DisputePriority


class DisputeResolve(BaseModel):
    outcome: DisputeOutcome
    notes: str
    refund_percentage: Decimal | None = None


class EvidenceRead(BaseModel):
    id: int
    party: Party
    submitted_by: str
    evidence_type: str
    reference_url: str
    description: str | None
    attached_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NoteRead(BaseModel):
    id: int
    arbiter_id: str
    note: str
    noted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DisputeRead(BaseModel):
    id: int
    hold_id: int
    raised_by_party: Party
    raised_by: str
    reason: str
    status: DisputeStatus
    priority: DisputePriority
    is_escalated: bool
    escalated_at: datetime | None
    counterparty_responded_at: datetime | None
    outcome: DisputeOutcome | None
    resolution_notes: str | None
    refund_percentage: Decimal | None
    resolved_by: str | None
    resolved_at: datetime | None
    closed_at: datetime | None
    raised_at: datetime
    client_evidence: list[EvidenceRead] = []
    practitioner_evidence: list[EvidenceRead] = []
    notes: list[NoteRead] = []

    model_config = ConfigDict(from_attributes=True)


class DisputeStats(BaseModel):
    total: int
    by_status: dict[str, int]
    active_by_priority: dict[str, int]
    escalated: int
    open_amount: Decimal
