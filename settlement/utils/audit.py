"""Append-only audit trail for settlement actions."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement.models.audit import AuditLog
from settlement.utils.time import utcnow

# Evidence links are often presigned; the query string is a credential.
URL_KEYS = frozenset({"reference_url", "url"})
SECRET_KEYS = frozenset({"key", "key_hash", "token"})
FREE_TEXT_KEYS = frozenset({"reason", "notes", "note", "resolution_notes"})
FREE_TEXT_LIMIT = 200


def _redact_url(value: str) -> str:
    base = value.split("?", 1)[0].split("#", 1)[0]
    if "/" not in base:
        return "***"
    return f"{base.rsplit('/', 1)[0]}/***"


def _clean(key: str | None, value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _clean(k, v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(key, item) for item in value]
    if value is None:
        return None
    if key in SECRET_KEYS:
        return "***"
    if key in URL_KEYS:
        return _redact_url(str(value))
    if key in FREE_TEXT_KEYS and len(str(value)) > FREE_TEXT_LIMIT:
        return str(value)[:FREE_TEXT_LIMIT] + "..."
    if isinstance(value, Decimal):
        # JSON columns cannot hold Decimal.
        return str(value)
    return value


def sanitize_payload_for_audit(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Copy ``data`` with secrets and evidence links masked and long text clipped."""

    return _clean(None, dict(data or {}))


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction."""

    row = AuditLog(
        actor=actor,
        action=action,
        entity=entity,
        entity_id=entity_id if entity_id is not None else 0,
        data_json=sanitize_payload_for_audit(data),
        at=utcnow(),
    )
    db.add(row)
    return row


def audit_trail(db: Session, entity: str, entity_id: int) -> list[AuditLog]:
    """History of one entity, oldest first."""

    return list(
        db.scalars(
            select(AuditLog)
            .where(AuditLog.entity == entity, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.at, AuditLog.id)
        )
    )


__all__ = ["audit_trail", "log_audit", "sanitize_payload_for_audit"]
