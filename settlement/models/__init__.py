"""ORM models package."""
from .api_key import ApiKey, ApiScope
from .audit import AuditLog
from .base import Base
from .dispute import (
    ArbiterNote,
    Dispute,
    DisputeEvidence,
    DisputeOutcome,
    DisputePriority,
    DisputeStatus,
    Party,
)
from .distribution import DistributionRecord, PayeeKind, PayoutRequest, PayoutStatus
from .engagement import Engagement
from .escrow import EscrowHold, HoldStatus
from .scheduler_lock import SchedulerLock
from .settlement_event import SettlementEvent

__all__ = [
    "ApiKey",
    "ApiScope",
    "ArbiterNote",
    "AuditLog",
    "Base",
    "Dispute",
    "DisputeEvidence",
    "DisputeOutcome",
    "DisputePriority",
    "DisputeStatus",
    "DistributionRecord",
    "Engagement",
    "EscrowHold",
    "HoldStatus",
    "Party",
    "PayeeKind",
    "PayoutRequest",
    "PayoutStatus",
    "SchedulerLock",
    "SettlementEvent",
]
