"""Transition triggers, audit events and outcomes.

Exactly one trigger is attached to each transition attempt. Triggers form
a discriminated union on ``type`` so audit records round-trip through JSON
without losing the reason for the transition.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores
from src.domain.models.readiness import PhaseReadiness


class TransitionEventType(str, Enum):
    """Event types published on the transition event bus."""

    BEFORE = "before"
    AFTER = "after"
    FAILED = "failed"


class TriggerType(str, Enum):
    QUALITY_MET = "quality_met"
    USER_APPROVAL = "user_approval"
    TIMEOUT = "timeout"
    FORCED = "forced"
    VALIDATION_FAILED = "validation_failed"


class _Trigger(BaseModel):
    model_config = ConfigDict(frozen=True)


class QualityMetTrigger(_Trigger):
    type: Literal["quality_met"] = "quality_met"
    score: float
    threshold: float


class UserApprovalTrigger(_Trigger):
    type: Literal["user_approval"] = "user_approval"
    signal: str
    confidence: Literal["high", "medium"] = "high"


class TimeoutTrigger(_Trigger):
    type: Literal["timeout"] = "timeout"
    turns_in_phase: int
    limit: int


class ForcedTrigger(_Trigger):
    type: Literal["forced"] = "forced"
    reason: str


class ValidationFailedTrigger(_Trigger):
    type: Literal["validation_failed"] = "validation_failed"
    errors: List[str] = Field(default_factory=list)


TransitionTrigger = Annotated[
    Union[
        QualityMetTrigger,
        UserApprovalTrigger,
        TimeoutTrigger,
        ForcedTrigger,
        ValidationFailedTrigger,
    ],
    Field(discriminator="type"),
]


class ValidationResult(BaseModel):
    """Outcome of TransitionValidator.validate; never raised."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class TransitionEvent(BaseModel):
    """Immutable audit record of a transition attempt."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: Optional[TransitionEventType] = Field(
        default=None, description="Stamped by the event bus on emit"
    )
    from_phase: Phase
    to_phase: Phase
    trigger: TransitionTrigger
    quality_scores: QualityScores = Field(default_factory=QualityScores)
    message_count: int = 0
    turns_in_phase: int = 0
    success: bool
    validation_errors: Optional[List[str]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def transition_key(self) -> str:
        return f"{self.from_phase.value} → {self.to_phase.value}"


class TransitionResult(BaseModel):
    """What attempt_transition reports back to the conversational layer.

    When ``transitioned`` is False, ``errors`` always explains why so the
    conversation can tell the user what is still missing.
    """

    transitioned: bool
    from_phase: Phase
    new_phase: Optional[Phase] = None
    errors: List[str] = Field(default_factory=list)
    trigger: Optional[TransitionTrigger] = None
    readiness: Optional[PhaseReadiness] = None
    snapshot_id: Optional[str] = None


class TurnStatistics(BaseModel):
    """Running sum/count pair used for averages."""

    sum: int = 0
    count: int = 0

    @property
    def average(self) -> float:
        return self.sum / self.count if self.count else 0.0


class TransitionStatistics(BaseModel):
    """Aggregates derived on demand from the event history."""

    total_events: int = 0
    successful_transitions: int = 0
    failed_transitions: int = 0
    by_trigger: Dict[str, int] = Field(default_factory=dict)
    by_phase_transition: Dict[str, int] = Field(default_factory=dict)
    average_turns_in_phase: Dict[str, TurnStatistics] = Field(default_factory=dict)
