"""Rollback of a session to a stored snapshot.

RollbackManager never touches a concrete store. Callers pass two async
callables: one that re-fetches the current session and one that applies
``phase``/``context`` updates. Every rollback re-fetches the session and
checks its id before restoring, so a deleted or replaced session fails
instead of silently doing nothing. Restoration is a single update call:
the session gets the snapshot's phase and context together or not at all.
"""

import copy
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

import structlog

from src.domain.models.phase import PHASE_ORDER, Phase, is_terminal
from src.domain.models.session import Session
from src.domain.models.snapshot import RollbackPoint, RollbackResult, StateSnapshot
from src.services.state_machine.snapshots import SnapshotManager

log = structlog.get_logger(__name__)

GetCurrentSession = Callable[[], Awaitable[Optional[Session]]]
UpdateSession = Callable[..., Awaitable[Any]]


class RollbackManager:
    """Restore session state from snapshots held by a SnapshotManager."""

    def __init__(self, snapshot_manager: SnapshotManager):
        self.snapshot_manager = snapshot_manager

    async def rollback_to_previous(
        self,
        session_id: str,
        get_current_session: GetCurrentSession,
        update_session: UpdateSession,
    ) -> RollbackResult:
        """Undo the most recent transition.

        Snapshots are taken before each transition, so the latest snapshot
        holds the state the session was in just before its last move.
        """
        snapshot = self.snapshot_manager.get_latest_snapshot(session_id)
        if snapshot is None:
            return RollbackResult(success=False, error="No previous snapshot available")
        return await self._restore(session_id, snapshot, get_current_session, update_session)

    async def rollback_to_snapshot(
        self,
        session_id: str,
        snapshot_id: str,
        get_current_session: GetCurrentSession,
        update_session: UpdateSession,
    ) -> RollbackResult:
        snapshot = self.snapshot_manager.get_snapshot_by_id(session_id, snapshot_id)
        if snapshot is None:
            return RollbackResult(success=False, error=f"Snapshot {snapshot_id} not found")
        return await self._restore(session_id, snapshot, get_current_session, update_session)

    async def rollback_to_phase(
        self,
        session_id: str,
        target_phase: Phase,
        get_current_session: GetCurrentSession,
        update_session: UpdateSession,
    ) -> RollbackResult:
        """Restore the most recent snapshot taken in ``target_phase``."""
        snapshot = self._latest_in_phase(session_id, target_phase)
        if snapshot is None:
            return RollbackResult(
                success=False, error=f"No snapshot found for phase: {target_phase.value}"
            )
        return await self._restore(session_id, snapshot, get_current_session, update_session)

    def can_rollback_to_phase(self, session_id: str, target_phase: Phase) -> bool:
        return self._latest_in_phase(session_id, target_phase) is not None

    def get_available_rollback_points(self, session_id: str) -> List[RollbackPoint]:
        """Rollback points for the session, oldest first."""
        return [
            RollbackPoint(
                snapshot_id=s.id,
                phase=s.phase,
                timestamp=s.timestamp,
                message_count=s.message_count,
            )
            for s in self.snapshot_manager.get_snapshots(session_id)
        ]

    def _latest_in_phase(self, session_id: str, phase: Phase) -> Optional[StateSnapshot]:
        for snapshot in reversed(self.snapshot_manager.get_snapshots(session_id)):
            if snapshot.phase == phase:
                return snapshot
        return None

    async def _restore(
        self,
        session_id: str,
        snapshot: StateSnapshot,
        get_current_session: GetCurrentSession,
        update_session: UpdateSession,
    ) -> RollbackResult:
        try:
            current = await get_current_session()
            if current is None or current.id != session_id:
                log.warning(
                    "rollback_session_mismatch",
                    session_id=session_id,
                    snapshot_id=snapshot.id,
                    found=current.id if current is not None else None,
                )
                return RollbackResult(
                    success=False, snapshot=snapshot, error="Session not found or ID mismatch"
                )

            await update_session(
                phase=snapshot.phase,
                context=copy.deepcopy(snapshot.context) if snapshot.context is not None else {},
            )
        except Exception as e:
            log.error(
                "rollback_failed",
                session_id=session_id,
                snapshot_id=snapshot.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return RollbackResult(success=False, snapshot=snapshot, error=str(e))

        log.info(
            "rollback_completed",
            session_id=session_id,
            snapshot_id=snapshot.id,
            from_phase=current.phase.value,
            restored_phase=snapshot.phase.value,
            snapshot_timestamp=snapshot.timestamp.isoformat(),
        )
        return RollbackResult(success=True, snapshot=snapshot, restored_phase=snapshot.phase)


# ----------------------------------------------------------------------
# Rollback intent detection
# ----------------------------------------------------------------------

_PREVIOUS_PATTERNS = (
    "go back",
    "undo",
    "revert",
    "rollback",
    "roll back",
    "previous state",
    "go to previous",
    "back to previous",
)

_PHASE_ALIASES = {
    Phase.DISCOVERY: ("discovery",),
    Phase.REFINEMENT: ("refinement", "refining"),
    Phase.KR_DISCOVERY: ("kr_discovery", "kr discovery", "key results"),
    Phase.VALIDATION: ("validation",),
}


@dataclass(frozen=True)
class RollbackIntent:
    """Rollback request recognised in a user message.

    ``kind`` is "previous", "phase" or None when no intent was found.
    """

    intent: bool = False
    kind: Optional[str] = None
    target_phase: Optional[Phase] = None


def detect_rollback_intent(message: str) -> RollbackIntent:
    """Recognise "undo"/"go back" style requests in a user message.

    A request naming a phase ("back to refinement", "return to the key
    results") wins over a generic "go back".
    """
    text = message.lower()

    for phase in PHASE_ORDER:
        if is_terminal(phase):
            continue
        for alias in _PHASE_ALIASES[phase]:
            pattern = (
                rf"\b(?:back to|return to|go to)\s+(?:the\s+)?{re.escape(alias)}\b"
                rf"|\b{re.escape(alias)}\s+phase\b"
            )
            if re.search(pattern, text):
                return RollbackIntent(intent=True, kind="phase", target_phase=phase)

    if any(pattern in text for pattern in _PREVIOUS_PATTERNS):
        return RollbackIntent(intent=True, kind="previous")

    return RollbackIntent()
