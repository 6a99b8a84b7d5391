"""Settlement executor.

Public entry point for every state-changing operation. Each operation:

1. validates its input (no transaction yet),
2. authorizes the caller through the access-control collaborator,
3. performs the ledger / dispute / distribution writes in one transaction,
4. pushes the queued settlement events to the notifier after commit.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from settlement.config import get_settings
from settlement.db import atomic
from settlement.models.api_key import ApiScope
from settlement.models.audit import AuditLog
from settlement.models.dispute import Dispute, DisputeOutcome, DisputePriority, Party
from settlement.models.escrow import EscrowHold, HoldStatus
from settlement.models.settlement_event import SettlementEvent
from settlement.services import disputes, ledger, notifications
from settlement.services.access import Action, Caller, get_access_control, party_of
from settlement.services.disputes import EvidenceItem
from settlement.services.distribution import calculate_distribution, terms_for_engagement
from settlement.services.engagements import DatabaseEngagementDirectory, EngagementDirectory
from settlement.services.money import to_money
from settlement.utils.audit import audit_trail, log_audit
from settlement.utils.errors import SettlementError, Unauthorized, ValidationError
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)


def _authorize(caller: Caller, hold: EscrowHold, action: Action) -> None:
    if not get_access_control().authorize(caller, hold, action):
        raise Unauthorized(
            "Caller is not allowed to perform this action.",
            details={"hold_id": hold.id, "action": action.value},
        )


def _require_admin(caller: Caller, action: str) -> None:
    if caller.scope is not ApiScope.admin:
        raise Unauthorized("Admin scope required.", details={"action": action})


def _acting_party(caller: Caller, hold: EscrowHold, as_party: Party | None) -> Party:
    """Which side the caller speaks for. Admins must name the side explicitly."""

    party = party_of(caller, hold.engagement)
    if party is None and caller.scope is ApiScope.admin and as_party is not None:
        party = Party(as_party)
    if party is None:
        raise Unauthorized(
            "Only a party to the engagement can perform this action.",
            details={"hold_id": hold.id},
        )
    return party


def _notify(db: Session, events: list[SettlementEvent]) -> None:
    notifications.dispatch(db, events)


# --- Holds ---------------------------------------------------------------------


def create_hold(
    db: Session,
    caller: Caller,
    engagement_id: int,
    *,
    amount: Decimal | None = None,
    auto_release_delay: timedelta | None = None,
    directory: EngagementDirectory | None = None,
    now: datetime | None = None,
) -> EscrowHold:
    """Hold the funds of a delivered engagement and arm its auto-release."""

    _require_admin(caller, Action.CREATE_HOLD.value)
    settings = get_settings()
    delay = auto_release_delay if auto_release_delay is not None else timedelta(days=settings.ESCROW_AUTO_RELEASE_DAYS)
    directory = directory or DatabaseEngagementDirectory(db)
    engagement = directory.get_engagement(engagement_id)
    if engagement.delivered_at is None:
        raise ValidationError(
            "Engagement has not been delivered yet.",
            details={"engagement_id": engagement_id},
        )
    if amount is not None:
        try:
            amount = to_money(amount)
        except ValueError as exc:
            raise ValidationError(str(exc), details={"field": "amount"}) from exc
        if amount <= 0:
            raise ValidationError("Hold amount must be positive.", details={"field": "amount"})
        if amount > to_money(engagement.amount):
            raise ValidationError(
                "Hold amount exceeds the engagement amount.",
                details={"field": "amount", "engagement_amount": str(engagement.amount)},
            )

    now = now or utcnow()
    with atomic(db):
        hold, event = ledger.create_hold(db, engagement, amount=amount, auto_release_delay=delay, now=now)
        log_audit(
            db,
            actor=caller.actor,
            action="HOLD_CREATED",
            entity="EscrowHold",
            entity_id=hold.id,
            data={
                "engagement_id": engagement.id,
                "amount": str(hold.amount),
                "currency": hold.currency,
                "auto_release_at": hold.auto_release_at.isoformat(),
            },
        )
    _notify(db, [event])
    db.refresh(hold)
    logger.info("Escrow hold created", extra={"hold_id": hold.id, "engagement_id": engagement.id})
    return hold


def get_hold(db: Session, caller: Caller, hold_id: int) -> EscrowHold:
    hold = ledger.get_hold(db, hold_id)
    _authorize(caller, hold, Action.READ)
    return hold


def release_hold(db: Session, caller: Caller, hold_id: int, *, now: datetime | None = None) -> EscrowHold:
    """Release an undisputed ``held`` hold to the practitioner before its deadline.

    Only ``held`` holds qualify: a disputed hold settles through the
    arbiter and a hold claimed by the sweep is already on its way out.
    """

    hold = ledger.get_hold(db, hold_id)
    _authorize(caller, hold, Action.RELEASE)
    split = calculate_distribution(hold.amount, DisputeOutcome.RELEASE, terms_for_engagement(hold.engagement))

    now = now or utcnow()
    with atomic(db):
        record, event = ledger.apply_distribution(
            db,
            hold,
            split,
            is_auto_release=False,
            from_statuses=[HoldStatus.HELD],
            now=now,
        )
        log_audit(
            db,
            actor=caller.actor,
            action="HOLD_RELEASED",
            entity="EscrowHold",
            entity_id=hold_id,
            data={"distribution_id": record.id, **split.to_dict()},
        )
    _notify(db, [event])
    db.refresh(hold)
    logger.info(
        "Escrow hold released",
        extra={"hold_id": hold_id, "by": caller.actor, "net_amount": str(split.practitioner_net_amount)},
    )
    return hold


def hold_history(db: Session, caller: Caller, hold_id: int) -> list[AuditLog]:
    _require_admin(caller, "hold_history")
    ledger.get_hold(db, hold_id)
    return audit_trail(db, "EscrowHold", hold_id)


def arm_auto_release(
    db: Session,
    caller: Caller,
    hold_id: int,
    *,
    delay: timedelta | None = None,
    now: datetime | None = None,
) -> EscrowHold:
    delay = delay if delay is not None else timedelta(days=get_settings().ESCROW_AUTO_RELEASE_DAYS)
    hold = ledger.get_hold(db, hold_id)
    _authorize(caller, hold, Action.MANAGE_AUTO_RELEASE)
    with atomic(db):
        deadline = ledger.arm_auto_release(db, hold_id, delay, now=now)
        log_audit(
            db,
            actor=caller.actor,
            action="AUTO_RELEASE_ARMED",
            entity="EscrowHold",
            entity_id=hold_id,
            data={"auto_release_at": deadline.isoformat()},
        )
    db.refresh(hold)
    logger.info("Auto-release armed", extra={"hold_id": hold_id, "auto_release_at": deadline.isoformat()})
    return hold


def disarm_auto_release(db: Session, caller: Caller, hold_id: int) -> EscrowHold:
    hold = ledger.get_hold(db, hold_id)
    _authorize(caller, hold, Action.MANAGE_AUTO_RELEASE)
    with atomic(db):
        ledger.disarm_auto_release(db, hold_id)
        log_audit(db, actor=caller.actor, action="AUTO_RELEASE_DISARMED", entity="EscrowHold", entity_id=hold_id)
    db.refresh(hold)
    logger.info("Auto-release disarmed", extra={"hold_id": hold_id})
    return hold


def auto_release_sweep(db: Session, *, now: datetime | None = None, limit: int | None = None) -> list[EscrowHold]:
    """Release every held hold whose deadline passed without a dispute.

    Safe to run concurrently: each hold is claimed (``held`` ->
    ``release_pending``) and the claim committed before its distribution is
    computed, so only one sweeper settles a given hold. A hold whose release
    fails after the claim stays ``release_pending`` and is picked up again
    once the claim goes stale.
    """

    now = now or utcnow()
    released: list[EscrowHold] = []
    for hold_id in ledger.due_hold_ids(db, now, limit=limit):
        with atomic(db):
            claimed = ledger.claim_for_release(db, hold_id, now)
        if not claimed:
            logger.info("Hold already claimed by another sweep", extra={"hold_id": hold_id})
            continue

        hold = ledger.get_hold(db, hold_id)
        try:
            split = calculate_distribution(hold.amount, DisputeOutcome.RELEASE, terms_for_engagement(hold.engagement))
            with atomic(db):
                record, event = ledger.apply_distribution(db, hold, split, is_auto_release=True, now=now)
                log_audit(
                    db,
                    actor="system:auto_release",
                    action="HOLD_AUTO_RELEASED",
                    entity="EscrowHold",
                    entity_id=hold_id,
                    data={"distribution_id": record.id, **split.to_dict()},
                )
        except (SettlementError, ArithmeticError, ValueError):
            logger.exception("Auto-release failed; claim left for retry", extra={"hold_id": hold_id})
            continue

        _notify(db, [event])
        db.refresh(hold)
        released.append(hold)

    logger.info("Auto-release sweep finished", extra={"released": len(released), "at": now.isoformat()})
    return released


# --- Disputes ------------------------------------------------------------------


def raise_dispute(
    db: Session,
    caller: Caller,
    hold_id: int,
    *,
    reason: str,
    evidence: list[EvidenceItem] | None = None,
    as_party: Party | None = None,
    now: datetime | None = None,
) -> Dispute:
    """Open a dispute against a held escrow, freezing its auto-release."""

    reason = disputes.validate_reason(reason)
    evidence = disputes.validate_evidence(evidence or [])
    hold = ledger.get_hold(db, hold_id)
    _authorize(caller, hold, Action.RAISE_DISPUTE)
    party = _acting_party(caller, hold, as_party)

    with atomic(db):
        dispute, events = disputes.open_dispute(
            db,
            hold,
            party=party,
            raised_by=caller.principal_id,
            reason=reason,
            evidence=evidence,
            now=now,
        )
        log_audit(
            db,
            actor=caller.actor,
            action="DISPUTE_RAISED",
            entity="Dispute",
            entity_id=dispute.id,
            data={
                "hold_id": hold_id,
                "party": party.value,
                "priority": dispute.priority.value,
                "evidence_count": len(evidence),
            },
        )
    _notify(db, events)
    db.refresh(dispute)
    logger.info(
        "Dispute raised",
        extra={"dispute_id": dispute.id, "hold_id": hold_id, "party": party.value, "priority": dispute.priority.value},
    )
    return dispute


def get_dispute(db: Session, caller: Caller, dispute_id: int) -> Dispute:
    dispute = disputes.get_dispute(db, dispute_id)
    _authorize(caller, dispute.hold, Action.READ)
    return dispute


def list_disputes(db: Session, caller: Caller, **filters) -> list[Dispute]:
    if not caller.is_arbiter:
        raise Unauthorized("Arbiter scope required.", details={"action": "list_disputes"})
    return disputes.list_disputes(db, **filters)


def dispute_stats(db: Session, caller: Caller) -> dict:
    if not caller.is_arbiter:
        raise Unauthorized("Arbiter scope required.", details={"action": "dispute_stats"})
    return disputes.dispute_stats(db)


def add_evidence(
    db: Session,
    caller: Caller,
    dispute_id: int,
    evidence: list[EvidenceItem],
    *,
    as_party: Party | None = None,
    now: datetime | None = None,
) -> Dispute:
    if not evidence:
        raise ValidationError("At least one evidence item is required.", details={"field": "evidence"})
    evidence = disputes.validate_evidence(evidence)
    dispute = disputes.get_dispute(db, dispute_id)
    hold = dispute.hold
    _authorize(caller, hold, Action.ADD_EVIDENCE)
    party = _acting_party(caller, hold, as_party)

    with atomic(db):
        rows, events = disputes.append_evidence(
            db,
            dispute,
            party=party,
            submitted_by=caller.principal_id,
            items=evidence,
            now=now,
        )
        log_audit(
            db,
            actor=caller.actor,
            action="DISPUTE_EVIDENCE_ADDED",
            entity="Dispute",
            entity_id=dispute_id,
            data={
                "party": party.value,
                "items": [{"evidence_type": row.evidence_type, "reference_url": row.reference_url} for row in rows],
            },
        )
    _notify(db, events)
    db.refresh(dispute)
    logger.info(
        "Dispute evidence added",
        extra={"dispute_id": dispute_id, "party": party.value, "count": len(rows), "status": dispute.status.value},
    )
    return dispute


def add_arbiter_note(db: Session, caller: Caller, dispute_id: int, note: str, *, now: datetime | None = None) -> Dispute:
    note = disputes.validate_note(note)
    dispute = disputes.get_dispute(db, dispute_id)
    _authorize(caller, dispute.hold, Action.ADD_NOTE)
    with atomic(db):
        row = disputes.append_note(db, dispute, arbiter_id=caller.principal_id, note=note, now=now)
        log_audit(
            db,
            actor=caller.actor,
            action="DISPUTE_NOTE_ADDED",
            entity="Dispute",
            entity_id=dispute_id,
            data={"note_id": row.id, "length": len(note)},
        )
    db.refresh(dispute)
    logger.info("Arbiter note added", extra={"dispute_id": dispute_id, "note_id": row.id})
    return dispute


def update_priority(
    db: Session,
    caller: Caller,
    dispute_id: int,
    priority: DisputePriority | str,
    *,
    now: datetime | None = None,
) -> Dispute:
    try:
        priority = DisputePriority(priority)
    except ValueError as exc:
        raise ValidationError(f"Unknown priority: {priority!r}", details={"field": "priority"}) from exc
    dispute = disputes.get_dispute(db, dispute_id)
    _authorize(caller, dispute.hold, Action.UPDATE_PRIORITY)
    previous = dispute.priority
    with atomic(db):
        disputes.set_priority(db, dispute, priority, now=now)
        log_audit(
            db,
            actor=caller.actor,
            action="DISPUTE_PRIORITY_UPDATED",
            entity="Dispute",
            entity_id=dispute_id,
            data={"from": previous.value, "to": priority.value},
        )
    db.refresh(dispute)
    logger.info("Dispute priority updated", extra={"dispute_id": dispute_id, "priority": priority.value})
    return dispute


def escalate(db: Session, caller: Caller, dispute_id: int, *, now: datetime | None = None) -> Dispute:
    dispute = disputes.get_dispute(db, dispute_id)
    _authorize(caller, dispute.hold, Action.ESCALATE)
    with atomic(db):
        disputes.escalate(db, dispute, escalated_by=caller.principal_id, now=now)
        log_audit(db, actor=caller.actor, action="DISPUTE_ESCALATED", entity="Dispute", entity_id=dispute_id)
    db.refresh(dispute)
    logger.warning("Dispute escalated", extra={"dispute_id": dispute_id, "by": caller.principal_id})
    return dispute


def resolve(
    db: Session,
    caller: Caller,
    dispute_id: int,
    *,
    outcome: DisputeOutcome | str,
    notes: str,
    refund_percentage: Decimal | None = None,
    now: datetime | None = None,
) -> Dispute:
    """Record the arbiter's decision and settle the hold in one transaction.

    Concurrent resolutions of the same dispute are serialized by the
    compare-and-set on the dispute row: the loser gets ``AlreadyResolved``
    and no second distribution is written.
    """

    resolution = disputes.validate_resolution(outcome, notes, refund_percentage)
    dispute = disputes.get_dispute(db, dispute_id)
    hold = dispute.hold
    _authorize(caller, hold, Action.RESOLVE)
    split = calculate_distribution(
        hold.amount,
        resolution.outcome,
        terms_for_engagement(hold.engagement),
        resolution.refund_percentage,
    )

    now = now or utcnow()
    with atomic(db):
        resolved_event = disputes.mark_resolved(db, dispute, resolution, resolved_by=caller.principal_id, now=now)
        record, hold_event = ledger.apply_distribution(db, hold, split, dispute_id=dispute.id, now=now)
        log_audit(
            db,
            actor=caller.actor,
            action="DISPUTE_RESOLVED",
            entity="Dispute",
            entity_id=dispute.id,
            data={"hold_id": hold.id, "distribution_id": record.id, **split.to_dict()},
        )
    _notify(db, [resolved_event, hold_event])
    db.refresh(dispute)
    logger.info(
        "Dispute resolved",
        extra={
            "dispute_id": dispute.id,
            "hold_id": hold.id,
            "outcome": resolution.outcome.value,
            "refund_amount": str(split.refund_amount),
        },
    )
    return dispute


def close_dispute(db: Session, caller: Caller, dispute_id: int, *, now: datetime | None = None) -> Dispute:
    dispute = disputes.get_dispute(db, dispute_id)
    _authorize(caller, dispute.hold, Action.CLOSE)
    with atomic(db):
        event = disputes.close(db, dispute, closed_by=caller.principal_id, now=now)
        log_audit(db, actor=caller.actor, action="DISPUTE_CLOSED", entity="Dispute", entity_id=dispute_id)
    _notify(db, [event])
    db.refresh(dispute)
    logger.info("Dispute closed", extra={"dispute_id": dispute_id})
    return dispute


# --- Events --------------------------------------------------------------------


def redeliver_events(db: Session, caller: Caller, *, limit: int = 100) -> dict[str, int]:
    """Retry undelivered settlement events. Retrying is the caller's call."""

    _require_admin(caller, "redeliver_events")
    delivered = notifications.redeliver_pending(db, limit=limit)
    return {"delivered": delivered, "pending": notifications.pending_count(db)}


__all__ = [
    "add_arbiter_note",
    "add_evidence",
    "arm_auto_release",
    "auto_release_sweep",
    "close_dispute",
    "create_hold",
    "dispute_stats",
    "disarm_auto_release",
    "escalate",
    "get_dispute",
    "get_hold",
    "hold_history",
    "list_disputes",
    "raise_dispute",
    "redeliver_events",
    "release_hold",
    "resolve",
    "update_priority",
]
