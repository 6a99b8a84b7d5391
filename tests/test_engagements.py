from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement.models import DistributionRecord, EscrowHold, HoldStatus
from settlement.services import engagements
from settlement.services.cron import auto_release_sweep_once
from settlement.utils.errors import NotFound, ValidationError
from settlement.utils.time import utcnow


def _upsert(db_session, **overrides):
    values = {
        "external_ref": "ENG-7",
        "client_id": "client-1",
        "practitioner_id": "practitioner-1",
        "amount": Decimal("2500"),
        "currency": "inr",
        "delivered_at": utcnow(),
    }
    values.update(overrides)
    return engagements.upsert_engagement(db_session, **values)


def test_upsert_creates_then_updates(db_session):
    created = _upsert(db_session)
    assert created.currency == "INR"
    assert created.amount == Decimal("2500.00")
    assert created.has_firm is False

    updated = _upsert(db_session, firm_id="firm-1", firm_commission_percent=Decimal("12.5"))
    assert updated.id == created.id
    assert updated.has_firm is True
    assert updated.firm_commission_percent == Decimal("12.50")


@pytest.mark.parametrize(
    "overrides",
    [
        {"practitioner_id": "client-1"},
        {"amount": Decimal("0")},
        {"platform_fee_percent": Decimal("100.01")},
        {"withholding_tax_percent": Decimal("-1")},
    ],
)
def test_upsert_validation(db_session, overrides):
    with pytest.raises(ValidationError):
        _upsert(db_session, **overrides)


def test_held_engagement_is_frozen(db_session, make_hold):
    hold = make_hold()
    engagement = hold.engagement

    with pytest.raises(ValidationError) as excinfo:
        _upsert(db_session, external_ref=engagement.external_ref, amount=Decimal("1.00"))
    assert excinfo.value.code == "ENGAGEMENT_IMMUTABLE"


def test_directory_lookup(db_session):
    directory = engagements.DatabaseEngagementDirectory(db_session)
    engagement = _upsert(db_session)
    assert directory.get_engagement(engagement.id).external_ref == "ENG-7"
    with pytest.raises(NotFound):
        directory.get_engagement(engagement.id + 100)


def test_scheduled_sweep_uses_its_own_session(db_session, make_hold):
    hold = make_hold(now=utcnow() - timedelta(days=10))

    assert auto_release_sweep_once() == 1
    assert auto_release_sweep_once() == 0

    db_session.expire_all()
    assert db_session.get(EscrowHold, hold.id).status == HoldStatus.RELEASED
    assert len(db_session.scalars(select(DistributionRecord)).all()) == 1
