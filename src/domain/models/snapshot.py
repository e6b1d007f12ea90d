"""State snapshot and rollback models.

A StateSnapshot is a point-in-time copy of a session's phase, context and
quality scores. Snapshots are owned by the SnapshotManager, created once
and never mutated afterwards.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores


class SnapshotReason(str, Enum):
    BEFORE_TRANSITION = "before_transition"
    MANUAL = "manual"
    CHECKPOINT = "checkpoint"


class StateSnapshot(BaseModel):
    """Complete snapshot of conversation state at a point in time."""

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    timestamp: datetime
    phase: Phase
    context: Optional[Dict[str, Any]] = Field(
        default=None, description="Deep copy of the session context"
    )
    quality_scores: QualityScores = Field(default_factory=QualityScores)
    message_count: int = 0
    reason: SnapshotReason = SnapshotReason.MANUAL
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SnapshotStatistics(BaseModel):
    total_snapshots: int = 0
    active_sessions: int = 0
    session_counts: Dict[str, int] = Field(default_factory=dict)
    by_reason: Dict[str, int] = Field(default_factory=dict)
    average_per_session: float = 0.0


class RollbackResult(BaseModel):
    """Outcome of a rollback; failures are reported, not raised."""

    success: bool
    snapshot: Optional[StateSnapshot] = None
    restored_phase: Optional[Phase] = None
    error: Optional[str] = None


class RollbackPoint(BaseModel):
    """Summary of a snapshot the session can be rolled back to."""

    snapshot_id: str
    phase: Phase
    timestamp: datetime
    message_count: int
