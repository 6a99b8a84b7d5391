"""API key administration."""
from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.db import get_db
from settlement.models.api_key import ApiKey, ApiScope
from settlement.security import require_caller
from settlement.services.access import Caller
from settlement.utils.apikey import gen_key
from settlement.utils.audit import log_audit
from settlement.utils.errors import error_response
from settlement.utils.time import utcnow

router = APIRouter(prefix="/apikeys", tags=["apikeys"])

_admin = require_caller({ApiScope.admin})


class CreateKeyIn(BaseModel):
    name: str
    scope: ApiScope
    principal_id: str | None = None
    days_valid: int | None = 90

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("name cannot be blank")
        return value.strip()

    @model_validator(mode="after")
    def party_keys_need_principal(self) -> "CreateKeyIn":
        if self.scope != ApiScope.admin and not self.principal_id:
            raise ValueError("principal_id is required for party and arbiter keys")
        return self


class ApiKeyCreateOut(BaseModel):
    """Returned once on creation; the raw key is never shown again."""

    id: int
    name: str
    scope: ApiScope
    principal_id: str | None
    key: str
    expires_at: datetime | None


class ApiKeyRead(BaseModel):
    id: int
    name: str
    prefix: str
    scope: ApiScope
    principal_id: str | None
    is_active: bool
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


def _get_or_404(db: Session, api_key_id: int) -> ApiKey:
    row = db.get(ApiKey, api_key_id)
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("APIKEY_NOT_FOUND", "API key not found."),
        )
    return row


@router.post("", response_model=ApiKeyCreateOut, status_code=status.HTTP_201_CREATED)
def create_api_key(
    payload: CreateKeyIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(_admin),
) -> ApiKeyCreateOut:
    raw, prefix, key_hash = gen_key()
    now = utcnow()
    row = ApiKey(
        name=payload.name,
        prefix=prefix,
        key_hash=key_hash,
        scope=payload.scope,
        principal_id=payload.principal_id,
        expires_at=now + timedelta(days=payload.days_valid) if payload.days_valid else None,
        is_active=True,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=error_response("APIKEY_EXISTS", "Key name already exists."),
        ) from exc

    log_audit(
        db,
        actor=caller.actor,
        action="CREATE_API_KEY",
        entity="ApiKey",
        entity_id=row.id,
        data={"name": row.name, "scope": row.scope.value, "principal_id": row.principal_id},
    )
    db.commit()
    db.refresh(row)
    return ApiKeyCreateOut(
        id=row.id,
        name=row.name,
        scope=row.scope,
        principal_id=row.principal_id,
        key=raw,
        expires_at=row.expires_at,
    )


@router.get("", response_model=list[ApiKeyRead], dependencies=[Depends(_admin)])
def list_apikeys(
    scope: ApiScope | None = None,
    principal_id: str | None = None,
    active: bool | None = None,
    db: Session = Depends(get_db),
) -> list[ApiKey]:
    stmt = select(ApiKey).order_by(ApiKey.id)
    if scope is not None:
        stmt = stmt.where(ApiKey.scope == scope)
    if principal_id is not None:
        stmt = stmt.where(ApiKey.principal_id == principal_id)
    if active is not None:
        stmt = stmt.where(ApiKey.is_active.is_(active))
    return list(db.scalars(stmt))


@router.get("/{api_key_id}", response_model=ApiKeyRead, dependencies=[Depends(_admin)])
def get_apikey(api_key_id: int, db: Session = Depends(get_db)) -> ApiKey:
    return _get_or_404(db, api_key_id)


@router.delete(
    "/{api_key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def revoke_apikey(
    api_key_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(_admin),
) -> Response:
    row = _get_or_404(db, api_key_id)
    action = "REVOKE_API_KEY_NOOP"
    if row.is_active:
        row.is_active = False
        action = "REVOKE_API_KEY"
    log_audit(db, actor=caller.actor, action=action, entity="ApiKey", entity_id=api_key_id, data={"name": row.name})
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
