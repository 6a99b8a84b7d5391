"""Standardized error payloads and the settlement error taxonomy."""
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class SettlementError(Exception):
    """Base class for every error raised by the settlement services."""

    status_code = 400
    default_code = "SETTLEMENT_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details or None)


class ValidationError(SettlementError):
    """Caller input is invalid; safe to retry with corrected input."""

    status_code = 422
    default_code = "VALIDATION_ERROR"


class Unauthorized(SettlementError):
    """Caller is neither a party to the engagement nor an arbiter."""

    status_code = 403
    default_code = "UNAUTHORIZED"


class NotFound(SettlementError):
    status_code = 404
    default_code = "NOT_FOUND"


class DuplicateHold(SettlementError):
    status_code = 409
    default_code = "DUPLICATE_HOLD"


class StateConflict(SettlementError):
    """The stored state moved on; callers should refresh and retry."""

    status_code = 409
    default_code = "STATE_CONFLICT"


class InvalidHoldState(StateConflict):
    default_code = "INVALID_HOLD_STATE"


class InvalidDisputeState(StateConflict):
    default_code = "INVALID_DISPUTE_STATE"


class AlreadyDisputed(StateConflict):
    default_code = "ALREADY_DISPUTED"


class AlreadyResolved(StateConflict):
    default_code = "ALREADY_RESOLVED"


__all__ = [
    "error_response",
    "SettlementError",
    "ValidationError",
    "Unauthorized",
    "NotFound",
    "DuplicateHold",
    "StateConflict",
    "InvalidHoldState",
    "InvalidDisputeState",
    "AlreadyDisputed",
    "AlreadyResolved",
]
