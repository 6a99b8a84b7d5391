"""Access-control collaborator.

The engine never authenticates anyone itself; it receives a :class:`Caller`
(resolved from the API key by ``settlement.security``) and asks an
:class:`AccessControl` whether that caller may perform an action on a hold.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from settlement.models.api_key import ApiScope
from settlement.models.dispute import Party
from settlement.models.engagement import Engagement
from settlement.models.escrow import EscrowHold


class Action(str, Enum):
    READ = "read"
    CREATE_HOLD = "create_hold"
    RELEASE = "release"
    MANAGE_AUTO_RELEASE = "manage_auto_release"
    RAISE_DISPUTE = "raise_dispute"
    ADD_EVIDENCE = "add_evidence"
    ADD_NOTE = "add_note"
    UPDATE_PRIORITY = "update_priority"
    ESCALATE = "escalate"
    RESOLVE = "resolve"
    CLOSE = "close"


PARTY_ACTIONS = frozenset({Action.READ, Action.RAISE_DISPUTE, Action.ADD_EVIDENCE})
# Early release is the practitioner's call, never the client's.
PRACTITIONER_ACTIONS = PARTY_ACTIONS | {Action.RELEASE}
ARBITER_ACTIONS = frozenset(
    {
        Action.READ,
        Action.ADD_NOTE,
        Action.UPDATE_PRIORITY,
        Action.ESCALATE,
        Action.RESOLVE,
        Action.CLOSE,
    }
)


@dataclass(frozen=True)
class Caller:
    """Authenticated principal calling the engine."""

    principal_id: str
    scope: ApiScope

    @property
    def actor(self) -> str:
        return f"{self.scope.value}:{self.principal_id}"

    @property
    def is_arbiter(self) -> bool:
        return self.scope in {ApiScope.arbiter, ApiScope.admin}


SYSTEM_CALLER = Caller(principal_id="system", scope=ApiScope.admin)


def party_of(caller: Caller, engagement: Engagement) -> Party | None:
    """Return which side of the engagement ``caller`` is on, if any."""

    if caller.scope is not ApiScope.party:
        return None
    if caller.principal_id == engagement.client_id:
        return Party.CLIENT
    if caller.principal_id == engagement.practitioner_id:
        return Party.PRACTITIONER
    return None


class AccessControl(Protocol):
    def authorize(self, caller: Caller, hold: EscrowHold, action: Action) -> bool: ...


class EngagementAccessControl:
    """Parties act on their own engagements; arbiters review; admins do everything."""

    def authorize(self, caller: Caller, hold: EscrowHold, action: Action) -> bool:
        if caller.scope is ApiScope.admin:
            return True
        if caller.scope is ApiScope.arbiter:
            return action in ARBITER_ACTIONS
        party = party_of(caller, hold.engagement)
        if party is Party.PRACTITIONER:
            return action in PRACTITIONER_ACTIONS
        return party is not None and action in PARTY_ACTIONS


_access_control: AccessControl = EngagementAccessControl()


def get_access_control() -> AccessControl:
    return _access_control


def set_access_control(access_control: AccessControl) -> None:
    """Swap the collaborator, e.g. for an external identity service."""

    global _access_control
    _access_control = access_control


__all__ = [
    "AccessControl",
    "Action",
    "Caller",
    "EngagementAccessControl",
    "SYSTEM_CALLER",
    "get_access_control",
    "party_of",
    "set_access_control",
]
