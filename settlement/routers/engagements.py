"""Engagement ingestion endpoints (stand-in for the upstream workflow)."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from settlement.db import get_db
from settlement.models.api_key import ApiScope
from settlement.models.engagement import Engagement
from settlement.schemas.engagement import EngagementRead, EngagementUpsert
from settlement.security import require_caller
from settlement.services import engagements as engagement_service
from settlement.services.access import Caller

router = APIRouter(prefix="/engagements", tags=["engagements"])


@router.post("", response_model=EngagementRead, status_code=status.HTTP_200_OK)
def upsert_engagement(
    payload: EngagementUpsert,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_caller({ApiScope.admin})),
) -> Engagement:
    return engagement_service.upsert_engagement(db, actor=caller.actor, **payload.model_dump())


@router.get(
    "/{engagement_id}",
    response_model=EngagementRead,
    dependencies=[Depends(require_caller({ApiScope.admin, ApiScope.arbiter}))],
)
def get_engagement(engagement_id: int, db: Session = Depends(get_db)) -> Engagement:
    return engagement_service.get_engagement(db, engagement_id)
