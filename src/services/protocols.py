"""
Service protocol definitions (interfaces).

Defines the external collaborators of the phase engine using
typing.Protocol. The engine never computes quality scores or talks to a
concrete database; it depends on these structural interfaces only.
"""

from typing import Any, Dict, List, Optional, Protocol

from src.domain.models.phase import Phase
from src.domain.models.quality import KeyResultScore, ObjectiveScore, OverallScore
from src.domain.models.session import Session


class IQualityScorer(Protocol):
    """
    Protocol for quality scorers.

    Produces the 0-100 scores consumed by readiness evaluation and
    transition validation.
    """

    async def score_objective(
        self,
        text: str,
        context: Optional[Dict[str, Any]] = None,
        scope: Optional[str] = None,
    ) -> ObjectiveScore:
        """
        Score an objective statement.

        Args:
            text: Objective text
            context: Session context (industry, team, prior drafts)
            scope: Organisational scope of the objective (e.g. "team")

        Returns:
            ObjectiveScore with overall and per-dimension scores
        """
        ...

    async def score_key_result(
        self,
        text: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> KeyResultScore:
        """Score a single key result."""
        ...

    async def calculate_overall_score(
        self,
        objective: Optional[ObjectiveScore],
        key_results: List[KeyResultScore],
    ) -> OverallScore:
        """Combine objective and key result scores into a composite."""
        ...


class ISessionStore(Protocol):
    """
    Protocol for session stores.

    The port used by the state machine to reload sessions and to apply
    phase changes and rollbacks.
    """

    async def get_session(self, session_id: str) -> Optional[Session]:
        """
        Load a session.

        Args:
            session_id: Session identifier

        Returns:
            Session, or None if it does not exist
        """
        ...

    async def update_session(
        self,
        session_id: str,
        phase: Optional[Phase] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Session:
        """
        Apply a phase and/or context update in one write.

        Args:
            session_id: Session identifier
            phase: New phase (unchanged if None)
            context: Replacement context (unchanged if None)

        Returns:
            The updated session

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        ...
