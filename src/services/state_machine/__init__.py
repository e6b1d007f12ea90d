"""
Conversation phase state machine.

Decides after every turn whether an OKR session may advance to its next
phase, audits every attempt and supports rollback to earlier states.
"""

from .events import TransitionEventBus, create_transition_event, register_default_handlers
from .finalization import FinalizationDetector, FinalizationSignal
from .machine import PhaseStateMachine, create_phase_state_machine
from .maintenance import PeriodicSweep
from .phase_table import (
    PhaseTable,
    calculate_phase_progress,
    get_phase_focus,
    get_phase_transition_message,
)
from .readiness import ReadinessEvaluator
from .rollback import RollbackIntent, RollbackManager, detect_rollback_intent
from .snapshots import SnapshotManager
from .triggers import determine_transition_trigger
from .validator import TransitionValidator

__all__ = [
    "PhaseStateMachine",
    "create_phase_state_machine",
    "PhaseTable",
    "ReadinessEvaluator",
    "FinalizationDetector",
    "FinalizationSignal",
    "TransitionValidator",
    "SnapshotManager",
    "RollbackManager",
    "RollbackIntent",
    "detect_rollback_intent",
    "TransitionEventBus",
    "create_transition_event",
    "register_default_handlers",
    "determine_transition_trigger",
    "PeriodicSweep",
    "get_phase_transition_message",
    "get_phase_focus",
    "calculate_phase_progress",
]
