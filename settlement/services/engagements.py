"""Engagement directory.

Engagements are produced by the upstream engagement workflow. This module
stores the fields the settlement engine needs and exposes them read-only to
the rest of the services.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement.models.engagement import Engagement
from settlement.services.money import to_money, to_percent
from settlement.utils.audit import log_audit
from settlement.utils.errors import NotFound, ValidationError
from settlement.utils.time import ensure_utc

logger = logging.getLogger(__name__)


class EngagementDirectory(Protocol):
    def get_engagement(self, engagement_id: int) -> Engagement: ...


class DatabaseEngagementDirectory:
    """Reads engagements from the local ``engagements`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_engagement(self, engagement_id: int) -> Engagement:
        engagement = self.db.get(Engagement, engagement_id)
        if engagement is None:
            raise NotFound("Engagement not found.", code="ENGAGEMENT_NOT_FOUND", details={"engagement_id": engagement_id})
        return engagement


def get_engagement(db: Session, engagement_id: int) -> Engagement:
    return DatabaseEngagementDirectory(db).get_engagement(engagement_id)


def _validate_percent(name: str, value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    try:
        return to_percent(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": name}) from exc


def upsert_engagement(
    db: Session,
    *,
    external_ref: str,
    client_id: str,
    practitioner_id: str,
    amount: Decimal,
    currency: str,
    firm_id: str | None = None,
    delivered_at: datetime | None = None,
    platform_fee_percent: Decimal | None = None,
    firm_commission_percent: Decimal | None = None,
    withholding_tax_percent: Decimal | None = None,
    actor: str = "system",
) -> Engagement:
    """Create or update the local copy of an upstream engagement.

    A delivered engagement that already has a hold is an immutable fact and
    cannot be changed any more.
    """

    if client_id == practitioner_id:
        raise ValidationError("Client and practitioner must be different principals.")
    try:
        amount = to_money(amount)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": "amount"}) from exc
    if amount <= 0:
        raise ValidationError("Engagement amount must be positive.", details={"field": "amount"})

    values = {
        "client_id": client_id,
        "practitioner_id": practitioner_id,
        "firm_id": firm_id,
        "amount": amount,
        "currency": currency.upper(),
        "delivered_at": ensure_utc(delivered_at) if delivered_at else None,
        "platform_fee_percent": _validate_percent("platform_fee_percent", platform_fee_percent),
        "firm_commission_percent": _validate_percent("firm_commission_percent", firm_commission_percent),
        "withholding_tax_percent": _validate_percent("withholding_tax_percent", withholding_tax_percent),
    }

    engagement = db.scalar(select(Engagement).where(Engagement.external_ref == external_ref))
    created = engagement is None
    if engagement is None:
        engagement = Engagement(external_ref=external_ref, **values)
        db.add(engagement)
    else:
        if engagement.delivered_at is not None and engagement.hold is not None:
            raise ValidationError(
                "Engagement is delivered and held; it can no longer change.",
                code="ENGAGEMENT_IMMUTABLE",
                details={"engagement_id": engagement.id},
            )
        for key, value in values.items():
            setattr(engagement, key, value)

    db.flush()
    log_audit(
        db,
        actor=actor,
        action="ENGAGEMENT_CREATED" if created else "ENGAGEMENT_UPDATED",
        entity="Engagement",
        entity_id=engagement.id,
        data={
            "external_ref": external_ref,
            "amount": str(amount),
            "currency": engagement.currency,
            "has_firm": engagement.has_firm,
        },
    )
    db.commit()
    db.refresh(engagement)
    logger.info(
        "Engagement upserted",
        extra={"engagement_id": engagement.id, "external_ref": external_ref, "created": created},
    )
    return engagement


__all__ = [
    "DatabaseEngagementDirectory",
    "EngagementDirectory",
    "get_engagement",
    "upsert_engagement",
]
