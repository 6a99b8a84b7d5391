"""Escrow hold endpoints."""
from datetime import timedelta

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from settlement.db import get_db
from settlement.models.api_key import ApiScope
from settlement.models.dispute import Dispute
from settlement.models.escrow import EscrowHold
from settlement.schemas.dispute import DisputeRaise, DisputeRead
from settlement.models.audit import AuditLog
from settlement.schemas.hold import AuditEntryRead, AutoReleaseArm, HoldCreate, HoldRead, SweepRequest, SweepResult
from settlement.security import require_caller
from settlement.services import settlement as settlement_service
from settlement.services.access import Caller
from settlement.services.disputes import EvidenceItem

router = APIRouter(prefix="/holds", tags=["holds"])

_admin = require_caller({ApiScope.admin})


@router.post("", response_model=HoldRead, status_code=status.HTTP_201_CREATED)
def create_hold(
    payload: HoldCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(_admin),
) -> EscrowHold:
    delay = timedelta(days=payload.auto_release_days) if payload.auto_release_days is not None else None
    return settlement_service.create_hold(
        db,
        caller,
        payload.engagement_id,
        amount=payload.amount,
        auto_release_delay=delay,
    )


@router.post("/auto-release/sweep", response_model=SweepResult)
def run_auto_release_sweep(
    payload: SweepRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(_admin),
) -> SweepResult:
    limit = payload.limit if payload else None
    released = settlement_service.auto_release_sweep(db, limit=limit)
    return SweepResult(released=len(released), hold_ids=[hold.id for hold in released])


@router.get("/{hold_id}", response_model=HoldRead)
def get_hold(
    hold_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller({ApiScope.party, ApiScope.arbiter})),
) -> EscrowHold:
    return settlement_service.get_hold(db, caller, hold_id)


@router.get("/{hold_id}/audit", response_model=list[AuditEntryRead])
def get_hold_history(
    hold_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(_admin),
) -> list[AuditLog]:
    return settlement_service.hold_history(db, caller, hold_id)


@router.post("/{hold_id}/release", response_model=HoldRead)
def release_hold(
    hold_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller({ApiScope.party})),
) -> EscrowHold:
    return settlement_service.release_hold(db, caller, hold_id)


@router.post("/{hold_id}/auto-release/arm", response_model=HoldRead)
def arm_auto_release(
    hold_id: int,
    payload: AutoReleaseArm | None = Body(default=None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(_admin),
) -> EscrowHold:
    delay = None
    if payload and (payload.days is not None or payload.hours is not None):
        delay = timedelta(days=payload.days or 0, hours=payload.hours or 0)
    return settlement_service.arm_auto_release(db, caller, hold_id, delay=delay)


@router.post("/{hold_id}/auto-release/disarm", response_model=HoldRead)
def disarm_auto_release(
    hold_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(_admin),
) -> EscrowHold:
    return settlement_service.disarm_auto_release(db, caller, hold_id)


@router.post("/{hold_id}/disputes", response_model=DisputeRead, status_code=status.HTTP_201_CREATED)
def raise_dispute(
    hold_id: int,
    payload: DisputeRaise,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller({ApiScope.party})),
) -> Dispute:
    evidence = [EvidenceItem(**item.model_dump()) for item in payload.evidence]
    return settlement_service.raise_dispute(
        db,
        caller,
        hold_id,
        reason=payload.reason,
        evidence=evidence,
        as_party=payload.as_party,
    )
