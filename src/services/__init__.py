from src.services.state_machine import PhaseStateMachine, create_phase_state_machine

__all__ = ["PhaseStateMachine", "create_phase_state_machine"]
