"""Background jobs run by the in-process scheduler."""
from __future__ import annotations

import logging

from settlement import db
from settlement.core.runtime_state import record_sweep
from settlement.services.settlement import auto_release_sweep

logger = logging.getLogger(__name__)


def auto_release_sweep_once() -> int:
    """Run one auto-release sweep in its own session. Returns the number released."""

    session = db.new_session()
    try:
        released = auto_release_sweep(session)
    except Exception:
        record_sweep(None, ok=False)
        logger.exception("Scheduled auto-release sweep failed")
        raise
    finally:
        session.close()
    record_sweep(len(released))
    return len(released)
