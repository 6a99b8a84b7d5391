from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from settlement.models import DisputeOutcome, DistributionRecord, EscrowHold, HoldStatus, PayoutRequest, SettlementEvent
from settlement.models.distribution import PayeeKind
from settlement.services import ledger
from settlement.services.distribution import DistributionTerms, calculate_distribution
from settlement.utils.errors import DuplicateHold, InvalidHoldState, StateConflict
from settlement.utils.time import ensure_utc, utcnow

TERMS = DistributionTerms(platform_fee_percent=Decimal("15"), withholding_tax_percent=Decimal("10"))


def test_create_hold_arms_deadline(db_session, make_engagement):
    engagement = make_engagement()
    now = utcnow()

    hold, event = ledger.create_hold(db_session, engagement, auto_release_delay=timedelta(days=7), now=now)
    db_session.commit()

    assert hold.status == HoldStatus.HELD
    assert hold.amount == Decimal("10000.00")
    assert ensure_utc(hold.auto_release_at) == now + timedelta(days=7)
    assert event.new_status == "held"


def test_second_hold_for_engagement_is_rejected(db_session, make_engagement):
    engagement = make_engagement()
    ledger.create_hold(db_session, engagement, auto_release_delay=timedelta(days=7))
    db_session.commit()

    with pytest.raises(DuplicateHold):
        ledger.create_hold(db_session, engagement, auto_release_delay=timedelta(days=7))
    db_session.rollback()

    assert db_session.scalar(select(func.count(EscrowHold.id))) == 1


def test_transition_is_compare_and_set(db_session, make_hold):
    hold = make_hold()

    ledger.transition(db_session, hold.id, [HoldStatus.HELD], HoldStatus.DISPUTED)
    db_session.commit()
    assert hold.status == HoldStatus.DISPUTED

    with pytest.raises(InvalidHoldState) as excinfo:
        ledger.transition(db_session, hold.id, [HoldStatus.HELD], HoldStatus.RELEASE_PENDING)
    assert isinstance(excinfo.value, StateConflict)
    assert excinfo.value.details["status"] == "disputed"


def test_arm_only_on_held_holds(db_session, make_hold):
    hold = make_hold()
    ledger.disarm_auto_release(db_session, hold.id)
    db_session.commit()
    assert hold.auto_release_at is None

    ledger.arm_auto_release(db_session, hold.id, timedelta(hours=1))
    db_session.commit()
    assert hold.auto_release_at is not None

    ledger.transition(db_session, hold.id, [HoldStatus.HELD], HoldStatus.DISPUTED, auto_release_at=None)
    db_session.commit()
    with pytest.raises(InvalidHoldState):
        ledger.arm_auto_release(db_session, hold.id, timedelta(hours=1))


def test_claim_for_release_only_once(db_session, make_hold):
    past = utcnow() - timedelta(days=8)
    hold = make_hold(now=past)
    now = utcnow()

    assert ledger.claim_for_release(db_session, hold.id, now) is True
    assert ledger.claim_for_release(db_session, hold.id, now) is False
    db_session.commit()
    assert hold.status == HoldStatus.RELEASE_PENDING


def test_stale_claim_can_be_reclaimed(db_session, make_hold):
    past = utcnow() - timedelta(days=8)
    hold = make_hold(now=past)
    claimed_at = utcnow() - timedelta(hours=2)
    assert ledger.claim_for_release(db_session, hold.id, claimed_at)
    db_session.commit()

    assert hold.id in ledger.due_hold_ids(db_session, utcnow())
    assert ledger.claim_for_release(db_session, hold.id, utcnow()) is True


def test_not_due_hold_is_not_claimed(db_session, make_hold):
    hold = make_hold()
    assert ledger.claim_for_release(db_session, hold.id, utcnow()) is False
    assert ledger.due_hold_ids(db_session, utcnow()) == []


@pytest.mark.parametrize(
    "outcome, pct, expected",
    [
        (DisputeOutcome.RELEASE, None, HoldStatus.RELEASED),
        (DisputeOutcome.FULL_REFUND, None, HoldStatus.REFUNDED),
        (DisputeOutcome.PARTIAL_REFUND, Decimal("60"), HoldStatus.PARTIALLY_REFUNDED),
        (DisputeOutcome.PARTIAL_REFUND, Decimal("100"), HoldStatus.REFUNDED),
        (DisputeOutcome.PARTIAL_REFUND, Decimal("0"), HoldStatus.RELEASED),
    ],
)
def test_status_for_outcome(outcome, pct, expected):
    assert ledger.status_for_outcome(outcome, pct) == expected


def test_apply_distribution_records_split_payouts_and_event(db_session, make_hold):
    hold = make_hold(firm_id="firm-9")
    terms = DistributionTerms(
        platform_fee_percent=Decimal("15"),
        withholding_tax_percent=Decimal("10"),
        firm_commission_percent=Decimal("10"),
    )
    split = calculate_distribution(hold.amount, DisputeOutcome.PARTIAL_REFUND, terms, Decimal("60"))

    record, event = ledger.apply_distribution(db_session, hold, split)
    db_session.commit()

    assert hold.status == HoldStatus.PARTIALLY_REFUNDED
    assert hold.distributed_amount == Decimal("10000.00")
    assert hold.auto_release_at is None
    assert record.refund_amount == Decimal("6000.00")
    assert record.financial_year.startswith("FY ")
    assert event.new_status == "partially_refunded"

    payouts = db_session.scalars(select(PayoutRequest).where(PayoutRequest.hold_id == hold.id)).all()
    by_kind = {payout.payee_kind: payout for payout in payouts}
    assert set(by_kind) == {
        PayeeKind.CLIENT_REFUND,
        PayeeKind.FIRM,
        PayeeKind.PRACTITIONER,
        PayeeKind.TAX_WITHHOLDING,
    }
    assert by_kind[PayeeKind.FIRM].payee_id == "firm-9"
    # Platform fee stays with the platform; every other leg becomes a payout.
    assert sum(payout.amount for payout in payouts) == Decimal("10000.00") - record.platform_fee_amount


def test_apply_distribution_refuses_terminal_hold(db_session, make_hold):
    hold = make_hold()
    split = calculate_distribution(hold.amount, DisputeOutcome.RELEASE, TERMS)
    ledger.apply_distribution(db_session, hold, split)
    db_session.commit()

    with pytest.raises(InvalidHoldState):
        ledger.apply_distribution(db_session, hold, split)
    db_session.rollback()

    assert db_session.scalar(select(func.count(DistributionRecord.id))) == 1
    events = db_session.scalars(
        select(SettlementEvent).where(SettlementEvent.hold_id == hold.id).order_by(SettlementEvent.id)
    ).all()
    assert [event.new_status for event in events] == ["held", "released"]


def test_held_amount_is_immutable(db_session, make_hold):
    hold = make_hold()
    hold.amount = Decimal("1.00")
    with pytest.raises(ValueError):
        db_session.commit()
    db_session.rollback()


def test_exempt_distribution_keeps_configured_rate_and_threshold(db_session, make_hold):
    hold = make_hold()
    terms = DistributionTerms(
        platform_fee_percent=Decimal("15"),
        withholding_tax_percent=Decimal("10"),
        withholding_threshold=Decimal("30000"),
    )
    split = calculate_distribution(hold.amount, DisputeOutcome.RELEASE, terms)
    record, _ = ledger.apply_distribution(db_session, hold, split)
    db_session.commit()
    db_session.expire_all()

    stored = db_session.get(DistributionRecord, record.id)
    assert repr(stored) == f"<DistributionRecord id={record.id}>"
    assert stored.withheld_tax_amount == Decimal("0.00")
    assert stored.withholding_tax_percent == Decimal("10.00")
    assert stored.withholding_threshold == Decimal("30000.00")
    payouts = db_session.scalars(select(PayoutRequest).where(PayoutRequest.hold_id == hold.id)).all()
    assert {payout.payee_kind for payout in payouts} == {PayeeKind.PRACTITIONER}
