"""Process-wide scheduler state reported by ``/health``."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from settlement.utils.time import utcnow


@dataclass
class SweepState:
    scheduler_active: bool = False
    last_sweep_at: datetime | None = None
    last_sweep_released: int | None = None
    last_sweep_ok: bool | None = None


_state = SweepState()


def set_scheduler_active(active: bool) -> None:
    _state.scheduler_active = active


def is_scheduler_active() -> bool:
    return _state.scheduler_active


def record_sweep(released: int | None, *, ok: bool = True, at: datetime | None = None) -> None:
    """Remember the outcome of the latest auto-release sweep run by this process."""

    _state.last_sweep_at = at or utcnow()
    _state.last_sweep_released = released
    _state.last_sweep_ok = ok


def last_sweep() -> dict[str, object]:
    return {
        "at": _state.last_sweep_at.isoformat() if _state.last_sweep_at else None,
        "released": _state.last_sweep_released,
        "ok": _state.last_sweep_ok,
    }


def reset() -> None:
    global _state
    _state = SweepState()
