"""Security dependencies for API key validation and scope enforcement."""
from __future__ import annotations

from typing import Callable, Set

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from settlement.config import DEV_API_KEY_ALLOWED, ENV
from settlement.db import get_db
from settlement.models.api_key import ApiKey, ApiScope
from settlement.services.access import Caller
from settlement.utils.apikey import LEGACY, find_valid_key
from settlement.utils.audit import log_audit
from settlement.utils.errors import error_response
from settlement.utils.time import utcnow

LEGACY_PRINCIPAL = "legacy-admin"


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``X-API-Key`` or ``Authorization: Bearer ...``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def _legacy_key(db: Session) -> ApiKey:
    if not DEV_API_KEY_ALLOWED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("LEGACY_KEY_FORBIDDEN", "Legacy dev key disabled."),
        )
    now = utcnow()
    log_audit(
        db,
        actor="legacy-apikey",
        action="LEGACY_API_KEY_USED",
        entity="ApiKey",
        entity_id=0,
        data={"env": ENV},
    )
    db.commit()
    return ApiKey(
        id=0,
        name="__legacy__",
        prefix="legacy",
        key_hash="legacy",
        scope=ApiScope.admin,
        principal_id=LEGACY_PRINCIPAL,
        is_active=True,
        created_at=now,
        expires_at=None,
        last_used_at=now,
    )


def require_api_key(
    db: Session = Depends(get_db),
    token: str | None = Depends(_extract_key),
) -> ApiKey:
    """Validate API key tokens and return the corresponding row."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )

    key = find_valid_key(db, token)
    if key == LEGACY:
        return _legacy_key(db)

    if not isinstance(key, ApiKey) or not key.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid or expired API key"),
        )

    key.last_used_at = utcnow()
    log_audit(
        db,
        actor=f"apikey:{key.id}",
        action="API_KEY_USED",
        entity="ApiKey",
        entity_id=key.id,
        data={"scope": key.scope.value, "prefix": key.prefix},
    )
    db.commit()
    return key


def require_scope(allowed: Set[ApiScope]) -> Callable:
    """Require one of ``allowed`` scopes; admin keys always pass."""

    if not allowed:
        raise RuntimeError("require_scope needs a non-empty set of ApiScope")

    def _dep(key: ApiKey = Depends(require_api_key)) -> ApiKey:
        if key.scope == ApiScope.admin or key.scope in allowed:
            return key
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response(
                "INSUFFICIENT_SCOPE",
                f"Requires one of: {sorted(scope.value for scope in allowed)}",
            ),
        )

    return _dep


def caller_from_key(key: ApiKey) -> Caller:
    principal = key.principal_id or f"apikey:{key.id}"
    return Caller(principal_id=principal, scope=ApiScope(key.scope))


def require_caller(allowed: Set[ApiScope]) -> Callable:
    """Like :func:`require_scope` but hands the route a :class:`Caller`."""

    scope_dep = require_scope(allowed)

    def _dep(key: ApiKey = Depends(scope_dep)) -> Caller:
        return caller_from_key(key)

    return _dep


__all__ = ["caller_from_key", "require_api_key", "require_caller", "require_scope"]
