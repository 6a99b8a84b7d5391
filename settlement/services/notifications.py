"""Delivery of settlement events to the notification collaborator.

Events are written to ``settlement_events`` inside the transaction that
performs the state change and are pushed to the configured notifier only
after that transaction commits. Delivery is fire-and-forget: a failing
notifier never undoes a settlement. Undelivered events stay queued until the
caller asks for a redelivery.
"""
from __future__ import annotations

import logging
from typing import Iterable, Protocol

import httpx
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement.config import get_settings
from settlement.models.settlement_event import SettlementEvent
from settlement.utils.time import utcnow

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, payload: dict) -> None: ...


class LogNotifier:
    """Writes events to the application log; default for dev and tests."""

    def send(self, payload: dict) -> None:
        logger.info("Settlement event", extra={"event": payload})


class WebhookNotifier:
    """POSTs each event as JSON to an HTTP endpoint."""

    def __init__(self, url: str, *, timeout: float = 5.0, client: httpx.Client | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    def send(self, payload: dict) -> None:
        if self._client is not None:
            response = self._client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self.url, json=payload)
            response.raise_for_status()


def get_notifier() -> Notifier:
    """Build the notifier selected by ``NOTIFICATION_BACKEND``."""

    settings = get_settings()
    if settings.NOTIFICATION_BACKEND == "webhook":
        if not settings.NOTIFICATION_WEBHOOK_URL:
            raise RuntimeError("NOTIFICATION_WEBHOOK_URL is required for the webhook backend")
        return WebhookNotifier(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    return LogNotifier()


def dispatch(db: Session, events: Iterable[SettlementEvent]) -> int:
    """Push committed events to the notifier. Returns how many were delivered."""

    pending = [event for event in events if event.delivered_at is None]
    if not pending:
        return 0

    try:
        notifier = get_notifier()
    except Exception:  # noqa: BLE001 - events stay queued for redelivery
        logger.exception("Notifier unavailable", extra={"pending": len(pending)})
        return 0

    delivered = 0
    for event in pending:
        event.attempts = (event.attempts or 0) + 1
        try:
            notifier.send(event.to_payload())
        except Exception:  # noqa: BLE001 - delivery failures must not undo the settlement
            logger.warning(
                "Settlement event delivery failed",
                extra={"event_id": event.id, "hold_id": event.hold_id, "attempts": event.attempts},
                exc_info=True,
            )
            continue
        event.delivered_at = utcnow()
        delivered += 1
    try:
        db.commit()
    except Exception:  # noqa: BLE001 - the settlement itself is already committed
        db.rollback()
        logger.exception("Failed to record settlement event delivery", extra={"pending": len(pending)})
        return 0
    return delivered


def redeliver_pending(db: Session, *, limit: int = 100) -> int:
    """Retry delivery of queued events, oldest first."""

    events = db.scalars(
        select(SettlementEvent)
        .where(SettlementEvent.delivered_at.is_(None))
        .order_by(SettlementEvent.id)
        .limit(limit)
    ).all()
    delivered = dispatch(db, events)
    logger.info(
        "Settlement events redelivered",
        extra={"attempted": len(events), "delivered": delivered},
    )
    return delivered


def pending_count(db: Session) -> int:
    return db.scalar(
        select(func.count(SettlementEvent.id)).where(SettlementEvent.delivered_at.is_(None))
    ) or 0


__all__ = [
    "LogNotifier",
    "Notifier",
    "WebhookNotifier",
    "dispatch",
    "get_notifier",
    "pending_count",
    "redeliver_pending",
]
