"""Schema package exports."""
from .dispute import (
    DisputeRaise,
    DisputeRead,
    DisputeResolve,
    DisputeStats,
    EvidenceAdd,
    EvidenceIn,
    NoteAdd,
    PriorityUpdate,
)
from .engagement import EngagementRead, EngagementUpsert
from .hold import AutoReleaseArm, DistributionRead, HoldCreate, HoldRead, SweepRequest, SweepResult
