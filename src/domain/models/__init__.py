"""Domain models package."""

from .phase import Phase, PHASE_ORDER, get_next_phase, get_phase_index
from .quality import (
    QualityScores,
    ObjectiveScore,
    ObjectiveDimensions,
    KeyResultScore,
    KeyResultDimensions,
    OverallScore,
)
from .session import Session, Message
from .readiness import PhaseReadiness
from .transition import (
    TransitionEvent,
    TransitionEventType,
    TransitionResult,
    TransitionStatistics,
    TransitionTrigger,
    TriggerType,
    ValidationResult,
)
from .snapshot import (
    RollbackPoint,
    RollbackResult,
    SnapshotReason,
    SnapshotStatistics,
    StateSnapshot,
)

__all__ = [
    "Phase",
    "PHASE_ORDER",
    "get_next_phase",
    "get_phase_index",
    "QualityScores",
    "ObjectiveScore",
    "ObjectiveDimensions",
    "KeyResultScore",
    "KeyResultDimensions",
    "OverallScore",
    "Session",
    "Message",
    "PhaseReadiness",
    "TransitionEvent",
    "TransitionEventType",
    "TransitionResult",
    "TransitionStatistics",
    "TransitionTrigger",
    "TriggerType",
    "ValidationResult",
    "RollbackPoint",
    "RollbackResult",
    "SnapshotReason",
    "SnapshotStatistics",
    "StateSnapshot",
]
