"""Phase readiness result.

Recomputed every turn by the ReadinessEvaluator and never persisted.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.domain.models.phase import Phase


class PhaseReadiness(BaseModel):
    """How close the current phase is to handing off to the next one."""

    model_config = ConfigDict(frozen=True)

    current_phase: Phase
    readiness_score: float = Field(ge=0.0, le=1.0, description="Readiness 0-1")
    missing_elements: List[str] = Field(default_factory=list)
    ready_to_transition: bool = False
    recommended_next_actions: List[str] = Field(default_factory=list)
    has_finalization_signal: bool = False
    finalization_phrase: Optional[str] = Field(
        default=None, description="First matched finalization phrase, if any"
    )
    finalization_confidence: Optional[Literal["high", "medium"]] = None
    next_phase: Optional[Phase] = Field(
        default=None, description="Set only when ready_to_transition is True"
    )
    target_score: float = Field(
        default=0.0, description="Readiness bar for this phase on the 0-100 scale"
    )
    user_confirmed: bool = Field(
        default=False, description="Explicit sign-off was given (validation phase)"
    )
