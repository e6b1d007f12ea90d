"""Conversation phase enumeration and ordering helpers.

Phases progress forward-only in a fixed total order:

    discovery -> refinement -> kr_discovery -> validation -> completed

``completed`` is terminal: it has no outbound transitions. The order
defined by ``PHASE_ORDER`` is the single source of truth; every
comparison goes through ``get_phase_index``.
"""

from enum import Enum
from typing import Tuple


class Phase(str, Enum):
    """Stage of the OKR authoring conversation."""

    DISCOVERY = "discovery"
    REFINEMENT = "refinement"
    KR_DISCOVERY = "kr_discovery"
    VALIDATION = "validation"
    COMPLETED = "completed"


PHASE_ORDER: Tuple[Phase, ...] = (
    Phase.DISCOVERY,
    Phase.REFINEMENT,
    Phase.KR_DISCOVERY,
    Phase.VALIDATION,
    Phase.COMPLETED,
)

TERMINAL_PHASE = Phase.COMPLETED


def get_phase_index(phase: Phase) -> int:
    """Position of the phase in PHASE_ORDER."""
    return PHASE_ORDER.index(Phase(phase))


def get_next_phase(phase: Phase) -> Phase:
    """Next phase in sequence; the terminal phase maps to itself."""
    index = get_phase_index(phase)
    if index < len(PHASE_ORDER) - 1:
        return PHASE_ORDER[index + 1]
    return PHASE_ORDER[index]


def is_terminal(phase: Phase) -> bool:
    return Phase(phase) == TERMINAL_PHASE


def is_phase_before(phase_a: Phase, phase_b: Phase) -> bool:
    """True if phase_a comes strictly before phase_b."""
    return get_phase_index(phase_a) < get_phase_index(phase_b)


def is_forward_transition(from_phase: Phase, to_phase: Phase) -> bool:
    return get_phase_index(to_phase) > get_phase_index(from_phase)


def is_backward_transition(from_phase: Phase, to_phase: Phase) -> bool:
    """True for backward moves and self-transitions."""
    return get_phase_index(to_phase) <= get_phase_index(from_phase)
