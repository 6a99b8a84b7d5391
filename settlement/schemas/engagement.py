"""Engagement schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class EngagementUpsert(BaseModel):
    external_ref: str = Field(..., min_length=1, max_length=64)
    client_id: str = Field(..., min_length=1, max_length=64)
    practitioner_id: str = Field(..., min_length=1, max_length=64)
    firm_id: str | None = Field(default=None, max_length=64)
    amount: Decimal = Field(gt=Decimal("0"))
    currency: str = Field(..., min_length=3, max_length=3)
    delivered_at: datetime | None = None
    platform_fee_percent: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    firm_commission_percent: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    withholding_tax_percent: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))


class EngagementRead(BaseModel):
    id: int
    external_ref: str
    client_id: str
    practitioner_id: str
    firm_id: str | None
    amount: Decimal
    currency: str
    delivered_at: datetime | None
    platform_fee_percent: Decimal | None
    firm_commission_percent: Decimal | None
    withholding_tax_percent: Decimal | None

    model_config = ConfigDict(from_attributes=True)
