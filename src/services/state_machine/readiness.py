"""Per-phase readiness evaluation.

Readiness means something different in each phase, so each phase has its
own scoring rule rather than a shared weighting:

- discovery: 50 points for a non-trivial objective draft plus up to 50
  points from objective quality. A finalization signal is enough once any
  objective data exists.
- refinement: objective quality alone, with raised dimension floors. User
  approval never overrides missing elements here.
- kr_discovery: at least two key results, then their mean quality; every
  weak key result blocks the transition.
- validation: best available composite score, or explicit user sign-off.
- completed: terminal, never ready.

Evaluation never raises on bad input. Absent scores count as 0 with a
"needs assessment" element; NaN or non-numeric values are coerced to 0 and
reported as missing elements.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores, safe_score
from src.domain.models.readiness import PhaseReadiness
from src.domain.models.session import Message
from src.services.state_machine.context_paths import get_nested_value
from src.services.state_machine.finalization import (
    NO_SIGNAL,
    FinalizationDetector,
    FinalizationSignal,
)
from src.services.state_machine.phase_table import (
    PhaseTable,
    get_phase_focus,
    get_phase_transition_message,
)

log = structlog.get_logger(__name__)

OBJECTIVE_PATH = "okrData.objective"
KEY_RESULTS_PATH = "okrData.keyResults"
USER_CONFIRMED_PATH = "userConfirmed"

# (dimension attribute, floor, missing element)
DimensionFloor = Tuple[str, float, str]


@dataclass
class _PhaseScore:
    """Intermediate result on the 0-100 scale."""

    score: float = 0.0
    is_ready: bool = False
    target: float = 0.0
    missing: List[str] = field(default_factory=list)
    user_confirmed: bool = False


class ReadinessEvaluator:
    """Compute PhaseReadiness for the current phase of a session.

    Stateless apart from its configuration: identical inputs always yield
    identical results.
    """

    MIN_OBJECTIVE_LENGTH = 10
    OBJECTIVE_DRAFT_POINTS = 50.0
    OBJECTIVE_QUALITY_POINTS = 50.0

    DISCOVERY_TARGET = 70.0
    REFINEMENT_TARGET = 75.0
    KR_DISCOVERY_TARGET = 70.0
    KEY_RESULT_FLOOR = 70.0
    VALIDATION_TARGET = 80.0
    MIN_KEY_RESULTS = 2

    DISCOVERY_FLOORS: Tuple[DimensionFloor, ...] = (
        ("outcome_orientation", 60, "Outcome-oriented phrasing"),
        ("clarity", 60, "Clarity and specificity"),
        ("inspiration", 60, "Inspiring language"),
    )
    REFINEMENT_FLOORS: Tuple[DimensionFloor, ...] = (
        ("outcome_orientation", 70, "Strong outcome orientation"),
        ("clarity", 70, "High clarity"),
        ("inspiration", 60, "Inspiring language"),
    )

    def __init__(
        self,
        phase_table: Optional[PhaseTable] = None,
        detector: Optional[FinalizationDetector] = None,
    ):
        self.phase_table = phase_table or PhaseTable()
        self.detector = detector or FinalizationDetector(
            self.phase_table.config.finalization
        )

    def evaluate(
        self,
        phase: Phase,
        quality_scores: Optional[QualityScores],
        turn_count: int,
        recent_messages: Sequence[Message],
        session_data: Optional[Dict[str, Any]] = None,
    ) -> PhaseReadiness:
        """Evaluate readiness of ``phase`` to hand off to the next phase.

        Args:
            phase: Current phase
            quality_scores: Latest scores (None treated as not yet assessed)
            turn_count: Total conversation turns so far
            recent_messages: Message history, oldest first
            session_data: Session context (OKR drafts, userConfirmed flag)

        Returns:
            PhaseReadiness; when not ready, missing_elements is non-empty
            for every phase except the terminal one
        """
        scores = quality_scores or QualityScores()
        data = session_data or {}

        if phase == Phase.COMPLETED:
            return PhaseReadiness(
                current_phase=phase,
                readiness_score=1.0,
                ready_to_transition=False,
                recommended_next_actions=[get_phase_focus(phase)],
                target_score=100.0,
            )

        signal = (
            self.detector.detect(recent_messages, turn_count)
            if recent_messages
            else NO_SIGNAL
        )

        if phase == Phase.DISCOVERY:
            result = self._discovery(scores, data, signal)
        elif phase == Phase.REFINEMENT:
            result = self._refinement(scores)
        elif phase == Phase.KR_DISCOVERY:
            result = self._kr_discovery(scores, data)
        else:
            result = self._validation(scores, data, signal)

        if not result.is_ready and not result.missing:
            result.missing.append(
                f"Overall quality below target ({result.score:.0f}/100, need {result.target:.0f}+)"
            )

        next_phase = self.phase_table.get_next_phase(phase) if result.is_ready else None
        readiness = PhaseReadiness(
            current_phase=phase,
            readiness_score=min(max(result.score / 100.0, 0.0), 1.0),
            missing_elements=list(result.missing),
            ready_to_transition=result.is_ready,
            recommended_next_actions=(
                [get_phase_transition_message(next_phase)]
                if next_phase is not None
                else list(result.missing)
            ),
            has_finalization_signal=signal.detected,
            finalization_phrase=signal.signal if signal.detected else None,
            finalization_confidence=signal.confidence,
            next_phase=next_phase,
            target_score=result.target,
            user_confirmed=result.user_confirmed,
        )

        log.debug(
            "phase_readiness_evaluated",
            phase=phase.value,
            readiness_score=round(readiness.readiness_score, 3),
            ready_to_transition=readiness.ready_to_transition,
            missing_elements=readiness.missing_elements,
            has_finalization_signal=signal.detected,
            turn_count=turn_count,
        )
        return readiness

    # ------------------------------------------------------------------
    # Per-phase rules
    # ------------------------------------------------------------------

    def _discovery(
        self, scores: QualityScores, data: Dict[str, Any], signal: FinalizationSignal
    ) -> _PhaseScore:
        result = _PhaseScore(target=self.DISCOVERY_TARGET)
        draft = objective_text(data)

        if len(draft.strip()) > self.MIN_OBJECTIVE_LENGTH:
            result.score += self.OBJECTIVE_DRAFT_POINTS
        else:
            result.missing.append("Clear objective statement")

        objective_score = 0.0
        if scores.objective is not None:
            objective_score = self._read(scores.objective.overall, "objective", result.missing)
            result.score += objective_score / 100.0 * self.OBJECTIVE_QUALITY_POINTS
            self._check_floors(scores, self.DISCOVERY_FLOORS, result.missing)
        else:
            result.missing.append("Objective quality assessment needed")

        has_objective_data = bool(draft.strip()) or objective_score > 0
        result.is_ready = result.score >= self.DISCOVERY_TARGET or (
            signal.detected and has_objective_data
        )
        return result

    def _refinement(self, scores: QualityScores) -> _PhaseScore:
        result = _PhaseScore(target=self.REFINEMENT_TARGET)

        if scores.objective is None:
            result.missing.append("Objective quality assessment needed")
            return result

        result.score = self._read(scores.objective.overall, "objective", result.missing)
        self._check_floors(scores, self.REFINEMENT_FLOORS, result.missing)
        result.is_ready = result.score >= self.REFINEMENT_TARGET and not result.missing
        return result

    def _kr_discovery(self, scores: QualityScores, data: Dict[str, Any]) -> _PhaseScore:
        result = _PhaseScore(target=self.KR_DISCOVERY_TARGET)

        collected = get_nested_value(data, KEY_RESULTS_PATH)
        kr_count = len(collected) if isinstance(collected, list) else len(scores.key_results)
        if kr_count < self.MIN_KEY_RESULTS:
            result.missing.append("At least 2 key results (recommended: 2-4)")
            return result

        if not scores.key_results:
            result.missing.append("Key result quality assessment needed")
            return result

        values = []
        for index, key_result in enumerate(scores.key_results, start=1):
            value = self._read(key_result.overall, f"key result {index}", result.missing)
            values.append(value)
            if value < self.KEY_RESULT_FLOOR:
                result.missing.append(
                    f"Key result {index} needs improvement "
                    f"({value:.0f}/100, target {self.KEY_RESULT_FLOOR:.0f}+)"
                )

        result.score = sum(values) / len(values)
        result.is_ready = result.score >= self.KR_DISCOVERY_TARGET and not result.missing
        return result

    def _validation(
        self, scores: QualityScores, data: Dict[str, Any], signal: FinalizationSignal
    ) -> _PhaseScore:
        result = _PhaseScore(target=self.VALIDATION_TARGET)

        objective, objective_ok = (
            safe_score(scores.objective.overall) if scores.objective else (0.0, False)
        )
        overall, overall_ok = (
            safe_score(scores.overall.score) if scores.overall else (0.0, False)
        )

        # Priority: objective > overall composite > key result mean
        if objective_ok and objective > 0:
            result.score = objective
        elif overall_ok and overall > 0:
            result.score = overall
        elif scores.key_results:
            result.score = scores.key_result_mean() or 0.0
        else:
            result.missing.append("Complete OKR quality assessment")

        result.user_confirmed = bool(get_nested_value(data, USER_CONFIRMED_PATH)) or (
            signal.is_strong
        )
        result.is_ready = (
            result.score >= self.VALIDATION_TARGET and not result.missing
        ) or result.user_confirmed
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read(self, value: Any, label: str, missing: List[str]) -> float:
        score, valid = safe_score(value)
        if not valid:
            if value is None:
                missing.append(f"{label.capitalize()} quality assessment needed")
            else:
                missing.append(f"Valid {label} quality score (received {value!r})")
                log.warning("invalid_quality_score_coerced", label=label, value=repr(value))
        return score

    def _check_floors(
        self,
        scores: QualityScores,
        floors: Tuple[DimensionFloor, ...],
        missing: List[str],
    ) -> None:
        dimensions = scores.objective.dimensions if scores.objective else None
        if dimensions is None:
            return
        for attribute, floor, element in floors:
            raw = getattr(dimensions, attribute)
            if raw is None:
                continue
            value, valid = safe_score(raw)
            if not valid:
                missing.append(f"Valid {attribute.replace('_', ' ')} score (received {raw!r})")
            if value < floor:
                missing.append(element)


def objective_text(data: Dict[str, Any]) -> str:
    """Objective draft text from session data (plain string or {"text": ...})."""
    value = get_nested_value(data, OBJECTIVE_PATH)
    if isinstance(value, dict):
        value = value.get("text") or value.get("statement")
    return value if isinstance(value, str) else ""
