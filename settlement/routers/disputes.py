"""Dispute workflow endpoints for parties and arbiters."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from settlement.db import get_db
from settlement.models.api_key import ApiScope
from settlement.models.dispute import Dispute, DisputePriority, DisputeStatus
from settlement.schemas.dispute import (
    DisputeRead,
    DisputeResolve,
    DisputeStats,
    EvidenceAdd,
    NoteAdd,
    PriorityUpdate,
)
from settlement.security import require_caller
from settlement.services import settlement as settlement_service
from settlement.services.access import Caller
from settlement.services.disputes import EvidenceItem

router = APIRouter(prefix="/disputes", tags=["disputes"])

_arbiter = require_caller({ApiScope.arbiter})


@router.get("", response_model=list[DisputeRead])
def list_disputes(
    status: DisputeStatus | None = None,
    priority: DisputePriority | None = None,
    escalated: bool | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    caller: Caller = Depends(_arbiter),
) -> list[Dispute]:
    return settlement_service.list_disputes(
        db,
        caller,
        status=status,
        priority=priority,
        escalated=escalated,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=DisputeStats)
def dispute_stats(db: Session = Depends(get_db), caller: Caller = Depends(_arbiter)) -> dict:
    return settlement_service.dispute_stats(db, caller)


@router.get("/{dispute_id}", response_model=DisputeRead)
def get_dispute(
    dispute_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller({ApiScope.party, ApiScope.arbiter})),
) -> Dispute:
    return settlement_service.get_dispute(db, caller, dispute_id)


@router.post("/{dispute_id}/evidence", response_model=DisputeRead)
def add_evidence(
    dispute_id: int,
    payload: EvidenceAdd,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller({ApiScope.party})),
) -> Dispute:
    items = [EvidenceItem(**item.model_dump()) for item in payload.evidence]
    return settlement_service.add_evidence(db, caller, dispute_id, items, as_party=payload.as_party)


@router.post("/{dispute_id}/notes", response_model=DisputeRead)
def add_note(
    dispute_id: int,
    payload: NoteAdd,
    db: Session = Depends(get_db),
    caller: Caller = Depends(_arbiter),
) -> Dispute:
    return settlement_service.add_arbiter_note(db, caller, dispute_id, payload.note)


@router.patch("/{dispute_id}/priority", response_model=DisputeRead)
def update_priority(
    dispute_id: int,
    payload: PriorityUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(_arbiter),
) -> Dispute:
    return settlement_service.update_priority(db, caller, dispute_id, payload.priority)


@router.post("/{dispute_id}/escalate", response_model=DisputeRead)
def escalate(dispute_id: int, db: Session = Depends(get_db), caller: Caller = Depends(_arbiter)) -> Dispute:
    return settlement_service.escalate(db, caller, dispute_id)


@router.post("/{dispute_id}/resolve", response_model=DisputeRead)
def resolve(
    dispute_id: int,
    payload: DisputeResolve,
    db: Session = Depends(get_db),
    caller: Caller = Depends(_arbiter),
) -> Dispute:
    return settlement_service.resolve(
        db,
        caller,
        dispute_id,
        outcome=payload.outcome,
        notes=payload.notes,
        refund_percentage=payload.refund_percentage,
    )


@router.post("/{dispute_id}/close", response_model=DisputeRead)
def close_dispute(dispute_id: int, db: Session = Depends(get_db), caller: Caller = Depends(_arbiter)) -> Dispute:
    return settlement_service.close_dispute(db, caller, dispute_id)
