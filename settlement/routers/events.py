"""Settlement event redelivery."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from settlement.db import get_db
from settlement.models.api_key import ApiScope
from settlement.security import require_caller
from settlement.services import settlement as settlement_service
from settlement.services.access import Caller

router = APIRouter(prefix="/events", tags=["events"])


@router.post("/redeliver")
def redeliver_events(
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller({ApiScope.admin})),
) -> dict[str, int]:
    return settlement_service.redeliver_events(db, caller, limit=limit)
