"""Transition validation.

Checks a proposed (from, to) phase pair against ordering and data
invariants. Validation runs independently of readiness: a readiness pass
does not guarantee the invariants still hold (stale data, forced
transitions), so the state machine always validates before mutating.

Nothing here mutates state or raises on invalid input; failures come back
as a ValidationResult with human-readable errors.
"""

from typing import Any, Dict, List, Optional

import structlog

from src.domain.models.phase import (
    Phase,
    get_next_phase,
    get_phase_index,
    is_backward_transition,
    is_terminal,
)
from src.domain.models.quality import QualityScores, safe_score
from src.domain.models.transition import ValidationResult
from src.services.state_machine.context_paths import get_nested_value, has_data
from src.services.state_machine.phase_table import PhaseTable

log = structlog.get_logger(__name__)

_DATA_LABELS = {
    "okrData.objective": "an objective",
    "okrData.keyResults": "at least one key result",
}


class TransitionValidator:
    """Validate proposed phase transitions.

    Rules, checked in order:
        1. Ordering: never out of the terminal phase, never to the same
           phase, never backward, never skipping a phase.
        2. Required data: every ``requires_data`` path of the target phase
           must be present and non-empty.
        3. Quality floor: the target phase's gating score must reach its
           ``min_data_quality``.

    Ordering errors short-circuit the data checks, since the data
    requirements of an unreachable target are meaningless.
    """

    def __init__(self, phase_table: Optional[PhaseTable] = None):
        self.phase_table = phase_table or PhaseTable()

    def validate(
        self,
        from_phase: Phase,
        to_phase: Phase,
        session_data: Optional[Dict[str, Any]],
        quality_scores: Optional[QualityScores],
    ) -> ValidationResult:
        data = session_data or {}
        scores = quality_scores or QualityScores()

        errors = self._check_ordering(from_phase, to_phase)
        if errors:
            return self._result(from_phase, to_phase, errors, [])

        errors.extend(self._check_required_data(to_phase, data))
        quality_errors, warnings = self._check_quality_floor(to_phase, scores)
        errors.extend(quality_errors)
        return self._result(from_phase, to_phase, errors, warnings)

    def validate_phase_invariants(
        self,
        phase: Phase,
        session_data: Optional[Dict[str, Any]],
        quality_scores: Optional[QualityScores],
    ) -> ValidationResult:
        """Check that a session already in ``phase`` is internally consistent.

        Data the phase requires must be present. Suspicious but legal states
        (e.g. building key results for an objective scored 0) are reported
        as warnings.
        """
        data = session_data or {}
        scores = quality_scores or QualityScores()
        errors = []
        warnings = []

        for path in self.phase_table.get_config(phase).requires_data:
            if not has_data(data, path):
                errors.append(
                    f"Phase '{phase.value}' requires {_DATA_LABELS.get(path, path)} "
                    f"but '{path}' is missing"
                )

        objective, objective_ok = (
            safe_score(scores.objective.overall) if scores.objective else (0.0, False)
        )
        if phase in (Phase.KR_DISCOVERY, Phase.VALIDATION) and objective_ok and objective == 0:
            warnings.append(f"Objective quality is 0 while in '{phase.value}'")

        if phase == Phase.VALIDATION:
            key_results = get_nested_value(data, "okrData.keyResults")
            if isinstance(key_results, list) and len(key_results) > 4:
                warnings.append(
                    f"{len(key_results)} key results collected (recommended: 2-4)"
                )

        if phase == Phase.COMPLETED and scores.is_empty:
            warnings.append("Completed session has no quality scores on record")

        if warnings:
            log.warning(
                "phase_invariant_warnings", phase=phase.value, warnings=warnings
            )
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _check_ordering(self, from_phase: Phase, to_phase: Phase) -> List[str]:
        if is_terminal(from_phase):
            return [
                f"Cannot transition from '{from_phase.value}': it is a terminal phase"
            ]
        if from_phase == to_phase:
            return [f"Cannot transition from '{from_phase.value}' to itself"]
        if is_backward_transition(from_phase, to_phase):
            return [
                f"Cannot move backward from '{from_phase.value}' to '{to_phase.value}'; "
                "use rollback instead"
            ]
        expected = get_next_phase(from_phase)
        if to_phase != expected:
            skipped = get_phase_index(to_phase) - get_phase_index(from_phase) - 1
            return [
                f"Cannot skip from '{from_phase.value}' to '{to_phase.value}' "
                f"({skipped} phase(s) skipped); next phase is '{expected.value}'"
            ]
        return []

    def _check_required_data(self, to_phase: Phase, data: Dict[str, Any]) -> List[str]:
        errors = []
        for path in self.phase_table.get_config(to_phase).requires_data:
            if not has_data(data, path):
                errors.append(
                    f"Entering '{to_phase.value}' requires {_DATA_LABELS.get(path, path)} "
                    f"('{path}' is missing or empty)"
                )
        return errors

    def _check_quality_floor(
        self, to_phase: Phase, scores: QualityScores
    ) -> tuple[List[str], List[str]]:
        floor = self.phase_table.get_config(to_phase).min_data_quality
        errors: List[str] = []
        warnings: List[str] = []

        if to_phase in (Phase.VALIDATION, Phase.COMPLETED) and not scores.key_results:
            errors.append(f"Entering '{to_phase.value}' requires at least one scored key result")

        if floor <= 0:
            return errors, warnings

        gate, label = self._gating_score(to_phase, scores)
        if gate is None:
            errors.append(
                f"Entering '{to_phase.value}' requires {label} of at least {floor:.0f} "
                "(no score available)"
            )
        elif gate < floor:
            errors.append(
                f"Entering '{to_phase.value}' requires {label} of at least {floor:.0f} "
                f"(current: {gate:.0f})"
            )
        elif gate < floor + 10:
            warnings.append(f"{label.capitalize()} {gate:.0f} is close to the floor of {floor:.0f}")
        return errors, warnings

    def _gating_score(
        self, to_phase: Phase, scores: QualityScores
    ) -> tuple[Optional[float], str]:
        """Score compared against the target phase's quality floor."""
        objective = (
            safe_score(scores.objective.overall) if scores.objective else (0.0, False)
        )
        if to_phase in (Phase.REFINEMENT, Phase.KR_DISCOVERY):
            return (objective[0] if objective[1] else None), "objective quality"
        if to_phase == Phase.VALIDATION:
            return scores.key_result_mean(), "average key result quality"

        overall = safe_score(scores.overall.score) if scores.overall else (0.0, False)
        if overall[1]:
            return overall[0], "overall OKR quality"
        return (objective[0] if objective[1] else None), "overall OKR quality"

    def _result(
        self,
        from_phase: Phase,
        to_phase: Phase,
        errors: List[str],
        warnings: List[str],
    ) -> ValidationResult:
        if errors:
            log.debug(
                "transition_validation_failed",
                from_phase=from_phase.value,
                to_phase=to_phase.value,
                errors=errors,
            )
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
