"""
Custom exception hierarchy for the phase engine.

All application exceptions inherit from PhaseEngineError.
"""


class PhaseEngineError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(PhaseEngineError):
    """Invalid or missing configuration."""

    pass


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(PhaseEngineError):
    """Session-related error."""

    pass


class SessionNotFoundError(SessionError):
    """Session does not exist."""

    pass


# =============================================================================
# Transition Errors
# =============================================================================


class TransitionError(PhaseEngineError):
    """Base for phase transition errors."""

    pass


class TerminalPhaseError(TransitionError):
    """Attempted to leave the terminal phase."""

    pass


class TransitionExecutionError(TransitionError):
    """Transition passed validation but could not be applied.

    Raised after the pre-transition snapshot has been restored and a
    failed event emitted. The turn must be treated as failed.
    """

    pass


