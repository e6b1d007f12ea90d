"""Quality score models consumed by readiness evaluation and validation.

Scores are produced by an external quality scorer (see
``src.services.protocols.IQualityScorer``) and treated as opaque input
here, except for the numeric fields read by the phase engine. Scorer
payloads use camelCase keys; the models accept both camelCase aliases and
snake_case field names.

Numeric fields are deliberately lenient: they may be missing or NaN.
Consumers coerce through ``safe_score`` rather than trusting the values.
"""

import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def safe_score(value: Any) -> tuple[float, bool]:
    """Coerce a raw score to a finite float.

    Returns:
        (score, valid) where ``valid`` is False when the value was missing,
        non-numeric or not finite and has been replaced by 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0, False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0, False
    if math.isnan(number) or math.isinf(number):
        return 0.0, False
    return number, True


class _ScoreModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ObjectiveDimensions(_ScoreModel):
    """Per-dimension objective quality (0-100 each)."""

    outcome_orientation: Optional[float] = Field(default=None, alias="outcomeOrientation")
    inspiration: Optional[float] = None
    clarity: Optional[float] = None
    alignment: Optional[float] = None
    ambition: Optional[float] = None
    scope_appropriateness: Optional[float] = Field(
        default=None, alias="scopeAppropriateness"
    )


class ObjectiveScore(_ScoreModel):
    """Quality assessment of the objective statement."""

    overall: Optional[float] = Field(default=None, description="Composite score 0-100")
    dimensions: Optional[ObjectiveDimensions] = None
    feedback: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


class KeyResultDimensions(_ScoreModel):
    """Per-dimension key result quality (0-100 each)."""

    quantification: Optional[float] = None
    outcome_vs_activity: Optional[float] = Field(default=None, alias="outcomeVsActivity")
    feasibility: Optional[float] = None
    independence: Optional[float] = None
    challenge: Optional[float] = None


class KeyResultScore(_ScoreModel):
    """Quality assessment of a single key result."""

    overall: Optional[float] = Field(default=None, description="Composite score 0-100")
    dimensions: Optional[KeyResultDimensions] = None
    feedback: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


class OverallScore(_ScoreModel):
    """Combined quality of the objective together with its key results."""

    score: Optional[float] = Field(default=None, description="Composite score 0-100")
    breakdown: Dict[str, Any] = Field(default_factory=dict)


class QualityScores(_ScoreModel):
    """Per-turn snapshot of every quality score available to the engine."""

    objective: Optional[ObjectiveScore] = None
    key_results: List[KeyResultScore] = Field(default_factory=list, alias="keyResults")
    overall: Optional[OverallScore] = None

    @property
    def is_empty(self) -> bool:
        return self.objective is None and not self.key_results and self.overall is None

    def key_result_mean(self) -> Optional[float]:
        """Mean of key result overall scores, NaN/missing coerced to 0."""
        if not self.key_results:
            return None
        total = sum(safe_score(kr.overall)[0] for kr in self.key_results)
        return total / len(self.key_results)
