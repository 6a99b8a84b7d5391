"""API key issuance and lookup.

Only an HMAC of the raw key is stored. The raw key is shown once, on
creation, and has the form ``stl_<prefix>.<secret>``.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement.config import settings
from settlement.models.api_key import ApiKey
from settlement.utils.time import ensure_utc, utcnow

KEY_PREFIX = "stl_"
LEGACY = "legacy"


def hash_key(raw: str) -> str:
    return hmac.new(settings.SECRET_KEY.encode(), raw.encode(), hashlib.sha256).hexdigest()


def gen_key(prefix_len: int = 6) -> tuple[str, str, str]:
    """Return ``(raw_key, prefix, key_hash)`` for a fresh key."""

    prefix = KEY_PREFIX + secrets.token_hex(prefix_len)[:prefix_len]
    raw = f"{prefix}.{secrets.token_urlsafe(32)}"
    return raw, prefix, hash_key(raw)


def is_expired(key: ApiKey) -> bool:
    expires_at = ensure_utc(key.expires_at)
    return expires_at is not None and expires_at <= utcnow()


def find_valid_key(db: Session, token: str) -> ApiKey | str | None:
    """Resolve ``token`` to an active, unexpired key.

    Returns :data:`LEGACY` when the token is the configured dev key so the
    caller can decide whether legacy access is allowed in this environment.
    """

    if settings.DEV_API_KEY and secrets.compare_digest(token, settings.DEV_API_KEY):
        return LEGACY

    key = db.scalar(select(ApiKey).where(ApiKey.key_hash == hash_key(token), ApiKey.is_active.is_(True)))
    if key is None or is_expired(key):
        return None
    return key


__all__ = ["LEGACY", "find_valid_key", "gen_key", "hash_key", "is_expired"]
