"""Static phase table: phase order plus per-phase thresholds.

The table is an explicit ordered association of (Phase, PhaseConfig)
pairs following PHASE_ORDER, so iteration order never depends on how the
configuration mapping was built.
"""

from typing import Iterator, Optional, Tuple

import structlog

from src.core.config import PhaseConfig, PhaseMachineConfig, load_phase_config
from src.core.exceptions import ConfigurationError
from src.domain.models.phase import PHASE_ORDER, Phase, get_next_phase, is_terminal
from src.domain.models.quality import QualityScores, safe_score

log = structlog.get_logger(__name__)


_TRANSITION_MESSAGES = {
    Phase.DISCOVERY: "Let's start by discovering what you want to achieve.",
    Phase.REFINEMENT: (
        "Great! Now let's refine your objective to make it more outcome-oriented."
    ),
    Phase.KR_DISCOVERY: (
        "Excellent objective! Now let's create key results to measure your progress."
    ),
    Phase.VALIDATION: "Let's review your complete OKR set to ensure it's ready.",
    Phase.COMPLETED: "Congratulations! Your OKR is complete and ready to use.",
}

_PHASE_FOCUS = {
    Phase.DISCOVERY: "identifying meaningful business outcomes",
    Phase.REFINEMENT: "clarity and outcome orientation",
    Phase.KR_DISCOVERY: "measurable success indicators",
    Phase.VALIDATION: "final quality assessment",
    Phase.COMPLETED: "OKR implementation and tracking",
}


class PhaseTable:
    """Ordered phase configuration.

    Usage:
        table = PhaseTable.from_yaml()
        config = table.get_config(Phase.REFINEMENT)
        next_phase = table.get_next_phase(Phase.REFINEMENT)
    """

    def __init__(self, config: Optional[PhaseMachineConfig] = None):
        self.config = config or PhaseMachineConfig()
        self._entries: Tuple[Tuple[Phase, PhaseConfig], ...] = tuple(
            (phase, self.config.phases[phase]) for phase in PHASE_ORDER
        )

    @classmethod
    def from_yaml(cls, path=None) -> "PhaseTable":
        """Build the table from phase_config.yaml (defaults if absent)."""
        config = load_phase_config(path)
        table = cls(config)
        log.info(
            "phase_table_loaded",
            phases=[p.value for p, _ in table.entries],
            timeouts={p.value: c.timeout_messages for p, c in table.entries},
            strong_phrases=len(config.finalization.strong_phrases),
            weak_phrases=len(config.finalization.weak_phrases),
            weak_signal_min_turns=config.finalization.weak_signal_min_turns,
        )
        return table

    @property
    def entries(self) -> Tuple[Tuple[Phase, PhaseConfig], ...]:
        return self._entries

    def __iter__(self) -> Iterator[Tuple[Phase, PhaseConfig]]:
        return iter(self._entries)

    def get_config(self, phase: Phase) -> PhaseConfig:
        for entry_phase, config in self._entries:
            if entry_phase == phase:
                return config
        raise ConfigurationError(f"No configuration for phase '{phase}'")

    def get_next_phase(self, phase: Phase) -> Phase:
        return get_next_phase(phase)

    def is_terminal(self, phase: Phase) -> bool:
        return is_terminal(phase)


def get_phase_transition_message(phase: Phase) -> str:
    """Message shown to the user when a session enters ``phase``."""
    return _TRANSITION_MESSAGES.get(phase, "Moving to the next phase of OKR development.")


def get_phase_focus(phase: Phase) -> str:
    return _PHASE_FOCUS.get(phase, "OKR development")


def calculate_phase_progress(phase: Phase, quality_scores: Optional[QualityScores]) -> float:
    """Rough 0-1 progress indicator for the current phase.

    Used for progress bars only; transition decisions use readiness.
    """
    scores = quality_scores or QualityScores()
    objective = safe_score(scores.objective.overall)[0] if scores.objective else None

    if phase == Phase.DISCOVERY:
        return min(0.8, objective / 100) if objective is not None else 0.2
    if phase == Phase.REFINEMENT:
        return objective / 100 if objective is not None else 0.0
    if phase == Phase.KR_DISCOVERY:
        mean = scores.key_result_mean()
        return mean / 100 if mean is not None else 0.0
    if phase == Phase.VALIDATION:
        return safe_score(scores.overall.score)[0] / 100 if scores.overall else 0.0
    if phase == Phase.COMPLETED:
        return 1.0
    return 0.0
