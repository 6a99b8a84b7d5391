"""Escrow hold and distribution schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from settlement.models.dispute import DisputeOutcome
from settlement.models.distribution import PayeeKind, PayoutStatus
from settlement.models.escrow import HoldStatus


class HoldCreate(BaseModel):
    engagement_id: int
    amount: Decimal | None = Field(default=None, gt=Decimal("0"))
    auto_release_days: int | None = Field(default=None, ge=0, le=365)


class AutoReleaseArm(BaseModel):
    days: int | None = Field(default=None, ge=0, le=365)
    hours: int | None = Field(default=None, ge=0, le=24 * 365)


class PayoutRead(BaseModel):
    id: int
    payee_kind: PayeeKind
    payee_id: str | None
    amount: Decimal
    currency: str
    status: PayoutStatus

    model_config = ConfigDict(from_attributes=True)


class DistributionRead(BaseModel):
    id: int
    hold_id: int
    outcome: DisputeOutcome
    is_auto_release: bool
    currency: str
    gross_amount: Decimal
    refund_percentage: Decimal
    refund_amount: Decimal
    platform_fee_percent: Decimal
    platform_fee_amount: Decimal
    firm_commission_percent: Decimal
    firm_commission_amount: Decimal
    practitioner_gross_amount: Decimal
    withholding_tax_percent: Decimal
    withheld_tax_amount: Decimal
    practitioner_net_amount: Decimal
    withholding_threshold: Decimal
    financial_year: str
    quarter: str
    created_at: datetime
    payouts: list[PayoutRead] = []

    model_config = ConfigDict(from_attributes=True)


class HoldRead(BaseModel):
    id: int
    engagement_id: int
    amount: Decimal
    currency: str
    status: HoldStatus
    auto_release_at: datetime | None
    distributed_amount: Decimal
    created_at: datetime
    resolved_at: datetime | None
    distribution: DistributionRead | None = None

    model_config = ConfigDict(from_attributes=True)


class SweepRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=1000)


class SweepResult(BaseModel):
    released: int
    hold_ids: list[int]


class AuditEntryRead(BaseModel):
    id: int
    actor: str
    action: str
    entity: str
    entity_id: int
    data_json: dict
    at: datetime

    model_config = ConfigDict(from_attributes=True)
