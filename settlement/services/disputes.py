"""Dispute workflow state machine.

::

    (none) --raise--> open --counter-party evidence--> under_review
    open / under_review --resolve--> resolved --close--> closed

Evidence, notes, priority changes and escalation are accepted while the
dispute is ``open`` or ``under_review``. Every write is a compare-and-set on
the dispute row so a concurrent resolve is detected instead of overwritten.
Like the ledger, this module never commits.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from settlement.config import Settings, get_settings
from settlement.models.dispute import (
    ACTIVE_DISPUTE_STATUSES,
    ArbiterNote,
    Dispute,
    DisputeEvidence,
    DisputeOutcome,
    DisputePriority,
    DisputeStatus,
    PRIORITY_RANK,
    Party,
)
from settlement.models.escrow import EscrowHold, HoldStatus
from settlement.models.settlement_event import SettlementEvent
from settlement.services import ledger
from settlement.services.money import to_money, to_percent
from settlement.utils.errors import (
    AlreadyDisputed,
    AlreadyResolved,
    InvalidDisputeState,
    NotFound,
    ValidationError,
)
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)

EVIDENCE_TYPE_MAX_LENGTH = 50
REFERENCE_URL_MAX_LENGTH = 2048
EVIDENCE_DESCRIPTION_MAX_LENGTH = 2000


@dataclass(frozen=True)
class EvidenceItem:
    """A reference to a document held by the evidence store."""

    evidence_type: str
    reference_url: str
    description: str | None = None


# --- Validation ---------------------------------------------------------------


def _check_length(field: str, value: str | None, minimum: int, maximum: int) -> str:
    text = (value or "").strip()
    if len(text) < minimum or len(text) > maximum:
        raise ValidationError(
            f"{field} must be between {minimum} and {maximum} characters.",
            details={"field": field, "length": len(text), "min": minimum, "max": maximum},
        )
    return text


def validate_reason(reason: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    return _check_length("reason", reason, settings.DISPUTE_REASON_MIN_LENGTH, settings.DISPUTE_REASON_MAX_LENGTH)


def validate_evidence(items: list[EvidenceItem]) -> list[EvidenceItem]:
    cleaned = []
    for item in items:
        evidence_type = _check_length("evidence_type", item.evidence_type, 1, EVIDENCE_TYPE_MAX_LENGTH)
        reference_url = _check_length("reference_url", item.reference_url, 1, REFERENCE_URL_MAX_LENGTH)
        if not reference_url.startswith(("http://", "https://")):
            raise ValidationError("reference_url must be an http(s) URL.", details={"field": "reference_url"})
        description = item.description.strip() if item.description else None
        if description and len(description) > EVIDENCE_DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"description must be at most {EVIDENCE_DESCRIPTION_MAX_LENGTH} characters.",
                details={"field": "description"},
            )
        cleaned.append(EvidenceItem(evidence_type, reference_url, description or None))
    return cleaned


def validate_note(note: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    return _check_length("note", note, 1, settings.ARBITER_NOTE_MAX_LENGTH)


@dataclass(frozen=True)
class Resolution:
    outcome: DisputeOutcome
    notes: str
    refund_percentage: Decimal | None


def validate_resolution(
    outcome: DisputeOutcome | str,
    notes: str,
    refund_percentage: Decimal | None = None,
    settings: Settings | None = None,
) -> Resolution:
    """Check the arbiter's decision before any transaction is opened."""

    settings = settings or get_settings()
    try:
        outcome = DisputeOutcome(outcome)
    except ValueError as exc:
        raise ValidationError(f"Unknown outcome: {outcome!r}", details={"field": "outcome"}) from exc
    notes = _check_length(
        "resolution_notes",
        notes,
        settings.RESOLUTION_NOTES_MIN_LENGTH,
        settings.RESOLUTION_NOTES_MAX_LENGTH,
    )

    if outcome is DisputeOutcome.PARTIAL_REFUND:
        if refund_percentage is None:
            raise ValidationError(
                "A partial refund requires a refund percentage.",
                details={"field": "refund_percentage"},
            )
        try:
            pct = to_percent(refund_percentage)
        except ValueError as exc:
            raise ValidationError(
                "Refund percentage must be between 0 and 100.",
                details={"field": "refund_percentage"},
            ) from exc
    elif outcome is DisputeOutcome.FULL_REFUND:
        pct = Decimal("100.00")
    else:
        pct = Decimal("0.00")
    return Resolution(outcome=outcome, notes=notes, refund_percentage=pct)


def priority_for_amount(amount: Decimal, settings: Settings | None = None) -> DisputePriority:
    """Initial priority from the disputed amount."""

    settings = settings or get_settings()
    value = to_money(amount)
    if value > settings.DISPUTE_PRIORITY_HIGH_ABOVE:
        return DisputePriority.HIGH
    if value > settings.DISPUTE_PRIORITY_MEDIUM_ABOVE:
        return DisputePriority.MEDIUM
    return DisputePriority.LOW


# --- Lookups -----------------------------------------------------------------


def get_dispute(db: Session, dispute_id: int) -> Dispute:
    dispute = db.get(Dispute, dispute_id)
    if dispute is None:
        raise NotFound("Dispute not found.", code="DISPUTE_NOT_FOUND", details={"dispute_id": dispute_id})
    return dispute


def list_disputes(
    db: Session,
    *,
    status: DisputeStatus | None = None,
    priority: DisputePriority | None = None,
    escalated: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Dispute]:
    """Arbiter queue: most urgent first, newest first within a priority."""

    rank = case(PRIORITY_RANK, value=Dispute.priority, else_=0)
    stmt = select(Dispute).options(selectinload(Dispute.evidence), selectinload(Dispute.notes))
    if status is not None:
        stmt = stmt.where(Dispute.status == status)
    if priority is not None:
        stmt = stmt.where(Dispute.priority == priority)
    if escalated is not None:
        stmt = stmt.where(Dispute.is_escalated.is_(escalated))
    stmt = stmt.order_by(rank.desc(), Dispute.created_at.desc(), Dispute.id.desc()).offset(offset).limit(limit)
    return list(db.scalars(stmt))


def dispute_stats(db: Session) -> dict:
    by_status = {status.value: 0 for status in DisputeStatus}
    for status, count in db.execute(select(Dispute.status, func.count(Dispute.id)).group_by(Dispute.status)):
        by_status[DisputeStatus(status).value] = count

    by_priority = {priority.value: 0 for priority in DisputePriority}
    active = Dispute.status.in_(list(ACTIVE_DISPUTE_STATUSES))
    for priority, count in db.execute(
        select(Dispute.priority, func.count(Dispute.id)).where(active).group_by(Dispute.priority)
    ):
        by_priority[DisputePriority(priority).value] = count

    escalated = db.scalar(select(func.count(Dispute.id)).where(active, Dispute.is_escalated.is_(True))) or 0
    open_amount = db.scalar(
        select(func.coalesce(func.sum(EscrowHold.amount), 0)).join(Dispute, Dispute.hold_id == EscrowHold.id).where(active)
    )
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "active_by_priority": by_priority,
        "escalated": escalated,
        "open_amount": to_money(open_amount or 0),
    }


# --- Transitions -------------------------------------------------------------


def _cas(db: Session, dispute: Dispute, allowed: set[DisputeStatus], **values) -> None:
    """Update ``dispute`` only while its stored status is in ``allowed``."""

    result = db.execute(
        update(Dispute)
        .where(Dispute.id == dispute.id, Dispute.status.in_(list(allowed)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        db.expire(dispute)
        return

    current = DisputeStatus(db.scalar(select(Dispute.status).where(Dispute.id == dispute.id)))
    details = {"dispute_id": dispute.id, "status": current.value}
    if current in {DisputeStatus.RESOLVED, DisputeStatus.CLOSED} and not allowed & {
        DisputeStatus.RESOLVED,
        DisputeStatus.CLOSED,
    }:
        raise AlreadyResolved("Dispute has already been resolved.", details=details)
    raise InvalidDisputeState(f"Dispute is {current.value}.", details=details)


def _event(db: Session, dispute: Dispute, new_status: str, at: datetime) -> SettlementEvent:
    return ledger.record_event(
        db,
        hold_id=dispute.hold_id,
        dispute_id=dispute.id,
        subject="dispute",
        new_status=new_status,
        at=at,
    )


def _add_evidence_rows(
    db: Session,
    dispute: Dispute,
    party: Party,
    submitted_by: str,
    items: list[EvidenceItem],
    at: datetime,
) -> list[DisputeEvidence]:
    rows = [
        DisputeEvidence(
            dispute_id=dispute.id,
            party=party,
            submitted_by=submitted_by,
            evidence_type=item.evidence_type,
            reference_url=item.reference_url,
            description=item.description,
            attached_at=at,
        )
        for item in items
    ]
    db.add_all(rows)
    return rows


def open_dispute(
    db: Session,
    hold: EscrowHold,
    *,
    party: Party,
    raised_by: str,
    reason: str,
    evidence: list[EvidenceItem] | None = None,
    now: datetime | None = None,
) -> tuple[Dispute, list[SettlementEvent]]:
    """Freeze ``hold`` and open its dispute.

    The hold flips to ``disputed`` with its deadline cleared in the same
    transaction that inserts the dispute.
    """

    now = now or utcnow()
    existing = db.scalar(select(Dispute.id).where(Dispute.hold_id == hold.id))
    if existing is not None or hold.status is HoldStatus.DISPUTED:
        raise AlreadyDisputed(
            "Hold already has a dispute.",
            details={"hold_id": hold.id, "dispute_id": existing},
        )

    amount = hold.amount
    ledger.transition(db, hold.id, [HoldStatus.HELD], HoldStatus.DISPUTED, auto_release_at=None)

    dispute = Dispute(
        hold_id=hold.id,
        raised_by_party=party,
        raised_by=raised_by,
        reason=reason,
        status=DisputeStatus.OPEN,
        priority=priority_for_amount(amount),
        is_escalated=False,
    )
    db.add(dispute)
    try:
        db.flush()
    except IntegrityError as exc:
        raise AlreadyDisputed("Hold already has a dispute.", details={"hold_id": hold.id}) from exc

    if evidence:
        _add_evidence_rows(db, dispute, party, raised_by, evidence, now)

    events = [
        ledger.record_event(
            db,
            hold_id=hold.id,
            dispute_id=dispute.id,
            subject="hold",
            new_status=HoldStatus.DISPUTED.value,
            at=now,
        ),
        _event(db, dispute, DisputeStatus.OPEN.value, now),
    ]
    db.flush()
    return dispute, events


def append_evidence(
    db: Session,
    dispute: Dispute,
    *,
    party: Party,
    submitted_by: str,
    items: list[EvidenceItem],
    now: datetime | None = None,
) -> tuple[list[DisputeEvidence], list[SettlementEvent]]:
    """Append evidence; the counter-party's first submission starts the review."""

    now = now or utcnow()
    events: list[SettlementEvent] = []
    first_response = (
        party is dispute.raised_by_party.counterparty
        and dispute.status is DisputeStatus.OPEN
    )
    if first_response:
        _cas(
            db,
            dispute,
            {DisputeStatus.OPEN},
            status=DisputeStatus.UNDER_REVIEW,
            counterparty_responded_at=now,
            updated_at=now,
        )
        events.append(_event(db, dispute, DisputeStatus.UNDER_REVIEW.value, now))
    else:
        # Touch the row so a concurrent resolve either waits or wins cleanly.
        _cas(db, dispute, set(ACTIVE_DISPUTE_STATUSES), updated_at=now)

    rows = _add_evidence_rows(db, dispute, party, submitted_by, items, now)
    db.flush()
    return rows, events


def append_note(db: Session, dispute: Dispute, *, arbiter_id: str, note: str, now: datetime | None = None) -> ArbiterNote:
    now = now or utcnow()
    _cas(db, dispute, set(ACTIVE_DISPUTE_STATUSES), updated_at=now)
    row = ArbiterNote(dispute_id=dispute.id, arbiter_id=arbiter_id, note=note, noted_at=now)
    db.add(row)
    db.flush()
    return row


def set_priority(db: Session, dispute: Dispute, priority: DisputePriority, *, now: datetime | None = None) -> None:
    now = now or utcnow()
    _cas(db, dispute, set(ACTIVE_DISPUTE_STATUSES), priority=DisputePriority(priority), updated_at=now)


def escalate(db: Session, dispute: Dispute, *, escalated_by: str, now: datetime | None = None) -> None:
    """Flag the dispute and force its priority to ``urgent``."""

    now = now or utcnow()
    values = {"priority": DisputePriority.URGENT, "is_escalated": True, "updated_at": now}
    if not dispute.is_escalated:
        values.update(escalated_at=now, escalated_by=escalated_by)
    _cas(db, dispute, set(ACTIVE_DISPUTE_STATUSES), **values)


def resolvable_statuses(settings: Settings | None = None) -> set[DisputeStatus]:
    settings = settings or get_settings()
    if settings.REQUIRE_COUNTERPARTY_EVIDENCE:
        return {DisputeStatus.UNDER_REVIEW}
    return set(ACTIVE_DISPUTE_STATUSES)


def mark_resolved(
    db: Session,
    dispute: Dispute,
    resolution: Resolution,
    *,
    resolved_by: str,
    now: datetime | None = None,
) -> SettlementEvent:
    """Record the arbiter's decision. Exactly one concurrent caller wins."""

    now = now or utcnow()
    _cas(
        db,
        dispute,
        resolvable_statuses(),
        status=DisputeStatus.RESOLVED,
        outcome=resolution.outcome,
        resolution_notes=resolution.notes,
        refund_percentage=resolution.refund_percentage,
        resolved_by=resolved_by,
        resolved_at=now,
        updated_at=now,
    )
    return _event(db, dispute, DisputeStatus.RESOLVED.value, now)


def close(db: Session, dispute: Dispute, *, closed_by: str, now: datetime | None = None) -> SettlementEvent:
    now = now or utcnow()
    _cas(
        db,
        dispute,
        {DisputeStatus.RESOLVED},
        status=DisputeStatus.CLOSED,
        closed_by=closed_by,
        closed_at=now,
        updated_at=now,
    )
    return _event(db, dispute, DisputeStatus.CLOSED.value, now)


__all__ = [
    "EvidenceItem",
    "Resolution",
    "append_evidence",
    "append_note",
    "close",
    "dispute_stats",
    "escalate",
    "get_dispute",
    "list_disputes",
    "mark_resolved",
    "open_dispute",
    "priority_for_amount",
    "resolvable_statuses",
    "set_priority",
    "validate_evidence",
    "validate_note",
    "validate_reason",
    "validate_resolution",
]
