"""Transition trigger selection.

Priority, highest first:

    validation failure > timeout > explicit user approval > quality met

A timeout forces progress even without approval. An explicit approval is
only honoured when the phase's readiness rules accept it (validation is
the one phase where sign-off alone is enough). Quality-met additionally
requires ``min_messages`` turns in the phase and a readiness score of at
least the phase's ``quality_threshold``.
"""

from typing import Optional

from src.core.config import PhaseConfig
from src.domain.models.readiness import PhaseReadiness
from src.domain.models.transition import (
    QualityMetTrigger,
    TimeoutTrigger,
    TransitionTrigger,
    UserApprovalTrigger,
    ValidationFailedTrigger,
    ValidationResult,
)


def is_timed_out(phase_config: PhaseConfig, turns_in_phase: int) -> bool:
    return phase_config.timeout_messages > 0 and turns_in_phase >= phase_config.timeout_messages


def determine_transition_trigger(
    readiness: PhaseReadiness,
    phase_config: PhaseConfig,
    turns_in_phase: int,
    validation: Optional[ValidationResult] = None,
) -> Optional[TransitionTrigger]:
    """Pick the trigger for a transition attempt.

    Args:
        readiness: Readiness of the current phase
        phase_config: Configuration of the current phase
        turns_in_phase: User turns spent in the current phase
        validation: Validator outcome, if validation already ran

    Returns:
        The trigger, or None when nothing justifies a transition yet
    """
    if validation is not None and not validation.valid:
        return ValidationFailedTrigger(errors=list(validation.errors))

    if is_timed_out(phase_config, turns_in_phase):
        return TimeoutTrigger(turns_in_phase=turns_in_phase, limit=phase_config.timeout_messages)

    if not readiness.ready_to_transition:
        return None

    if readiness.has_finalization_signal:
        return UserApprovalTrigger(
            signal=readiness.finalization_phrase or "finalization_detected",
            confidence=readiness.finalization_confidence or "high",
        )
    if readiness.user_confirmed:
        return UserApprovalTrigger(signal="user_confirmed", confidence="high")

    if (
        turns_in_phase >= phase_config.min_messages
        and readiness.readiness_score >= phase_config.quality_threshold
    ):
        return QualityMetTrigger(
            score=round(readiness.readiness_score * 100, 2),
            threshold=round(phase_config.quality_threshold * 100, 2),
        )
    return None
