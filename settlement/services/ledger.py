"""Escrow ledger.

Owns every write to ``escrow_holds``. Status changes are compare-and-set
updates (``UPDATE ... WHERE status IN (...)``) so two writers racing on the
same hold can never both succeed; the loser sees :class:`InvalidHoldState`.

Nothing in this module commits. Callers wrap ledger calls in
``settlement.db.atomic`` together with the rest of the state change.
"""
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.config import get_settings
from settlement.models.dispute import DisputeOutcome
from settlement.models.distribution import DistributionRecord, PayeeKind, PayoutRequest
from settlement.models.engagement import Engagement
from settlement.models.escrow import SETTLEABLE_HOLD_STATUSES, EscrowHold, HoldStatus
from settlement.models.settlement_event import SettlementEvent
from settlement.services.distribution import DistributionSplit
from settlement.services.money import HUNDRED, ZERO, financial_quarter, financial_year, to_money
from settlement.utils.errors import DuplicateHold, InvalidHoldState, NotFound, ValidationError
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)


def get_hold(db: Session, hold_id: int) -> EscrowHold:
    hold = db.get(EscrowHold, hold_id)
    if hold is None:
        raise NotFound("Escrow hold not found.", code="HOLD_NOT_FOUND", details={"hold_id": hold_id})
    return hold


def record_event(
    db: Session,
    *,
    hold_id: int,
    subject: str,
    new_status: str,
    dispute_id: int | None = None,
    at: datetime | None = None,
) -> SettlementEvent:
    """Queue a settlement event in the current transaction."""

    event = SettlementEvent(
        hold_id=hold_id,
        dispute_id=dispute_id,
        subject=subject,
        new_status=new_status,
        at=at or utcnow(),
    )
    db.add(event)
    return event


def create_hold(
    db: Session,
    engagement: Engagement,
    *,
    amount: Decimal | None = None,
    auto_release_delay: timedelta,
    now: datetime | None = None,
) -> tuple[EscrowHold, SettlementEvent]:
    """Open the single hold for ``engagement`` with an armed auto-release deadline."""

    now = now or utcnow()
    held_amount = to_money(amount if amount is not None else engagement.amount)
    if held_amount <= ZERO:
        raise ValidationError("Hold amount must be positive.", details={"field": "amount"})
    if auto_release_delay < timedelta(0):
        raise ValidationError("Auto-release delay cannot be negative.", details={"field": "auto_release_delay"})

    existing = db.scalar(select(EscrowHold.id).where(EscrowHold.engagement_id == engagement.id))
    if existing is not None:
        raise DuplicateHold(
            "Engagement already has an escrow hold.",
            details={"engagement_id": engagement.id, "hold_id": existing},
        )

    hold = EscrowHold(
        engagement_id=engagement.id,
        amount=held_amount,
        currency=engagement.currency,
        status=HoldStatus.HELD,
        auto_release_at=now + auto_release_delay,
        distributed_amount=ZERO,
    )
    db.add(hold)
    try:
        # Unique engagement_id is the backstop for concurrent creators.
        db.flush()
    except IntegrityError as exc:
        raise DuplicateHold(
            "Engagement already has an escrow hold.",
            details={"engagement_id": engagement.id},
        ) from exc

    event = record_event(db, hold_id=hold.id, subject="hold", new_status=HoldStatus.HELD.value, at=now)
    return hold, event


def transition(
    db: Session,
    hold_id: int,
    from_statuses: Iterable[HoldStatus],
    to_status: HoldStatus,
    **values,
) -> None:
    """Move a hold to ``to_status`` only if it is currently in ``from_statuses``."""

    allowed = [HoldStatus(status) for status in from_statuses]
    result = db.execute(
        update(EscrowHold)
        .where(EscrowHold.id == hold_id, EscrowHold.status.in_(allowed))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.scalar(select(EscrowHold.status).where(EscrowHold.id == hold_id))
        if current is None:
            raise NotFound("Escrow hold not found.", code="HOLD_NOT_FOUND", details={"hold_id": hold_id})
        raise InvalidHoldState(
            f"Hold is {HoldStatus(current).value}; expected one of {sorted(s.value for s in allowed)}.",
            details={"hold_id": hold_id, "status": HoldStatus(current).value, "target": to_status.value},
        )
    _expire(db, hold_id)


def _expire(db: Session, hold_id: int) -> None:
    # CAS updates bypass the identity map; drop any cached copy of the row.
    for obj in list(db.identity_map.values()):
        if isinstance(obj, EscrowHold) and obj.id == hold_id:
            db.expire(obj)


def arm_auto_release(db: Session, hold_id: int, delay: timedelta, *, now: datetime | None = None) -> datetime:
    """(Re)arm the auto-release deadline of a ``held`` hold."""

    if delay < timedelta(0):
        raise ValidationError("Auto-release delay cannot be negative.", details={"field": "delay"})
    deadline = (now or utcnow()) + delay
    transition(db, hold_id, [HoldStatus.HELD], HoldStatus.HELD, auto_release_at=deadline)
    return deadline


def disarm_auto_release(db: Session, hold_id: int) -> None:
    """Clear the deadline of a ``held`` hold so the sweep skips it."""

    transition(db, hold_id, [HoldStatus.HELD], HoldStatus.HELD, auto_release_at=None)


def _stale_claim_cutoff(now: datetime) -> datetime:
    return now - timedelta(seconds=get_settings().RELEASE_CLAIM_TTL_SECONDS)


def _releasable_clause(now: datetime):
    return or_(
        and_(
            EscrowHold.status == HoldStatus.HELD,
            EscrowHold.auto_release_at.is_not(None),
            EscrowHold.auto_release_at <= now,
        ),
        # Claims left behind by a crashed sweep.
        and_(
            EscrowHold.status == HoldStatus.RELEASE_PENDING,
            EscrowHold.release_claimed_at.is_not(None),
            EscrowHold.release_claimed_at <= _stale_claim_cutoff(now),
        ),
    )


def due_hold_ids(db: Session, now: datetime, *, limit: int | None = None) -> list[int]:
    """Ids of holds whose deadline passed (or whose release claim went stale)."""

    stmt = select(EscrowHold.id).where(_releasable_clause(now)).order_by(EscrowHold.auto_release_at, EscrowHold.id)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt))


def claim_for_release(db: Session, hold_id: int, now: datetime) -> bool:
    """Claim a due hold for auto-release. Returns False if someone else got there first."""

    result = db.execute(
        update(EscrowHold)
        .where(EscrowHold.id == hold_id, _releasable_clause(now))
        .values(status=HoldStatus.RELEASE_PENDING, release_claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    claimed = result.rowcount == 1
    if claimed:
        _expire(db, hold_id)
    return claimed


def status_for_outcome(outcome: DisputeOutcome, refund_percentage: Decimal | None = None) -> HoldStatus:
    """Terminal hold status for a settlement outcome."""

    outcome = DisputeOutcome(outcome)
    if outcome is DisputeOutcome.RELEASE:
        return HoldStatus.RELEASED
    if outcome is DisputeOutcome.FULL_REFUND:
        return HoldStatus.REFUNDED
    pct = to_money(refund_percentage if refund_percentage is not None else ZERO)
    if pct >= HUNDRED:
        return HoldStatus.REFUNDED
    if pct <= ZERO:
        return HoldStatus.RELEASED
    return HoldStatus.PARTIALLY_REFUNDED


def _payouts_for(hold: EscrowHold, record: DistributionRecord, split: DistributionSplit) -> list[PayoutRequest]:
    engagement = hold.engagement
    legs = [
        (PayeeKind.CLIENT_REFUND, engagement.client_id, split.refund_amount),
        (PayeeKind.FIRM, engagement.firm_id, split.firm_commission_amount),
        (PayeeKind.PRACTITIONER, engagement.practitioner_id, split.practitioner_net_amount),
        (PayeeKind.TAX_WITHHOLDING, None, split.withheld_tax_amount),
    ]
    return [
        PayoutRequest(
            distribution_id=record.id,
            hold_id=hold.id,
            payee_kind=kind,
            payee_id=payee_id,
            amount=amount,
            currency=hold.currency,
        )
        for kind, payee_id, amount in legs
        if amount > ZERO
    ]


def apply_distribution(
    db: Session,
    hold: EscrowHold,
    split: DistributionSplit,
    *,
    is_auto_release: bool = False,
    dispute_id: int | None = None,
    from_statuses: Iterable[HoldStatus] = SETTLEABLE_HOLD_STATUSES,
    now: datetime | None = None,
) -> tuple[DistributionRecord, SettlementEvent]:
    """Move ``hold`` to its terminal status and persist the itemized split.

    This is the only path to a terminal hold status. The record, its payout
    requests and the settlement event join the caller's transaction.
    ``from_statuses`` narrows which current statuses may be settled.
    """

    now = now or utcnow()
    if to_money(hold.amount) != split.gross_amount:
        raise ValidationError(
            "Distribution gross does not match the held amount.",
            details={"hold_id": hold.id, "held": str(hold.amount), "gross": str(split.gross_amount)},
        )
    if not split.is_balanced():
        raise ArithmeticError(f"Refusing unbalanced distribution for hold {hold.id}")

    new_status = status_for_outcome(split.outcome, split.refund_percentage)
    transition(
        db,
        hold.id,
        from_statuses,
        new_status,
        distributed_amount=split.distributed_total,
        resolved_at=now,
        auto_release_at=None,
        release_claimed_at=None,
    )

    record = DistributionRecord(
        hold_id=hold.id,
        outcome=split.outcome,
        is_auto_release=is_auto_release,
        currency=hold.currency,
        gross_amount=split.gross_amount,
        refund_percentage=split.refund_percentage,
        refund_amount=split.refund_amount,
        platform_fee_percent=split.platform_fee_percent,
        platform_fee_amount=split.platform_fee_amount,
        firm_commission_percent=split.firm_commission_percent,
        firm_commission_amount=split.firm_commission_amount,
        practitioner_gross_amount=split.practitioner_gross_amount,
        withholding_tax_percent=split.withholding_tax_percent,
        withheld_tax_amount=split.withheld_tax_amount,
        practitioner_net_amount=split.practitioner_net_amount,
        withholding_threshold=split.withholding_threshold,
        financial_year=financial_year(now),
        quarter=financial_quarter(now),
    )
    db.add(record)
    db.flush()
    db.add_all(_payouts_for(hold, record, split))

    event = record_event(
        db,
        hold_id=hold.id,
        dispute_id=dispute_id,
        subject="hold",
        new_status=new_status.value,
        at=now,
    )
    db.flush()
    logger.info(
        "Distribution applied",
        extra={
            "hold_id": hold.id,
            "status": new_status.value,
            "gross": str(split.gross_amount),
            "auto_release": is_auto_release,
        },
    )
    return record, event


__all__ = [
    "apply_distribution",
    "arm_auto_release",
    "claim_for_release",
    "create_hold",
    "disarm_auto_release",
    "due_hold_ids",
    "get_hold",
    "record_event",
    "status_for_outcome",
    "transition",
]
