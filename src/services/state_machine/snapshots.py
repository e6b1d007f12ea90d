"""Bounded, time-limited history of session state snapshots.

Each session keeps at most ``max_per_session`` snapshots (oldest evicted
first). A periodic sweep drops snapshots older than ``max_age`` and removes
sessions left without any. Snapshot content is cloned on the way in, so
later mutation of the live session never reaches a stored snapshot:

- context: ``copy.deepcopy`` (plain JSON-like data)
- quality scores: ``model_copy(deep=True)``

Snapshots are cloned on the way out as well; callers never hold the
stored instances.
"""

import copy
import threading
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores
from src.domain.models.snapshot import SnapshotReason, SnapshotStatistics, StateSnapshot
from src.services.state_machine.maintenance import PeriodicSweep

log = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _detached(snapshot: StateSnapshot) -> StateSnapshot:
    return snapshot.model_copy(deep=True)


class SnapshotManager:
    """Create, store and look up state snapshots.

    Thread-safe: the per-session map is guarded by an internal lock. Sweeps
    find expired ids outside the lock and filter them out under it.
    """

    def __init__(
        self,
        max_per_session: int = 20,
        max_age: timedelta = timedelta(days=7),
        sweep_interval_seconds: float = 6 * 60 * 60,
        clock: Optional[Clock] = None,
    ):
        if max_per_session < 1:
            raise ValueError("max_per_session must be at least 1")
        self.max_per_session = max_per_session
        self.max_age = max_age
        self._clock = clock or _utcnow
        self._snapshots: Dict[str, List[StateSnapshot]] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicSweep("snapshots", self.sweep, sweep_interval_seconds)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._sweeper.start()

    async def shutdown(self) -> None:
        await self._sweeper.stop()
        log.debug("snapshot_manager_shutdown")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_snapshot(
        self,
        session_id: str,
        phase: Phase,
        context: Optional[Dict[str, Any]],
        quality_scores: Optional[QualityScores],
        message_count: int,
        reason: SnapshotReason = SnapshotReason.MANUAL,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StateSnapshot:
        """Capture a deep copy of the given state and store it."""
        now = self._clock()
        snapshot = StateSnapshot(
            id=self._generate_id(session_id, now),
            session_id=session_id,
            timestamp=now,
            phase=phase,
            context=copy.deepcopy(context) if context is not None else None,
            quality_scores=(
                quality_scores.model_copy(deep=True) if quality_scores else QualityScores()
            ),
            message_count=message_count,
            reason=reason,
            metadata=copy.deepcopy(metadata) if metadata else {},
        )

        with self._lock:
            history = self._snapshots.setdefault(session_id, [])
            history.append(snapshot)
            evicted = len(history) - self.max_per_session
            if evicted > 0:
                del history[:evicted]
            count = len(history)

        log.debug(
            "snapshot_created",
            snapshot_id=snapshot.id,
            session_id=session_id,
            phase=phase.value,
            reason=reason.value,
            snapshot_count=count,
        )
        return _detached(snapshot)

    def clear_snapshots(self, session_id: str) -> None:
        with self._lock:
            self._snapshots.pop(session_id, None)
        log.debug("snapshots_cleared", session_id=session_id)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Remove snapshots older than ``max_age``.

        Returns:
            Number of snapshots removed
        """
        cutoff = (now or self._clock()) - self.max_age
        with self._lock:
            current = {sid: list(items) for sid, items in self._snapshots.items()}

        expired = {
            sid: {s.id for s in items if s.timestamp <= cutoff}
            for sid, items in current.items()
        }
        removed = 0
        with self._lock:
            for sid, expired_ids in expired.items():
                live = self._snapshots.get(sid)
                if live is None or not expired_ids:
                    continue
                kept = [s for s in live if s.id not in expired_ids]
                removed += len(live) - len(kept)
                if kept:
                    self._snapshots[sid] = kept
                else:
                    del self._snapshots[sid]
            active_sessions = len(self._snapshots)

        if removed:
            log.debug("snapshots_swept", removed=removed, active_sessions=active_sessions)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshots(self, session_id: str) -> List[StateSnapshot]:
        """All snapshots for the session, oldest first."""
        with self._lock:
            history = list(self._snapshots.get(session_id, ()))
        return [_detached(s) for s in history]

    def get_latest_snapshot(self, session_id: str) -> Optional[StateSnapshot]:
        return self.get_snapshot_back_n(session_id, 0)

    def get_previous_snapshot(self, session_id: str) -> Optional[StateSnapshot]:
        """Snapshot taken before the latest one."""
        return self.get_snapshot_back_n(session_id, 1)

    def get_snapshot_back_n(self, session_id: str, n: int) -> Optional[StateSnapshot]:
        """Snapshot ``n`` steps back from the latest (0 = latest)."""
        if n < 0:
            return None
        with self._lock:
            history = self._snapshots.get(session_id, ())
            index = len(history) - 1 - n
            snapshot = history[index] if index >= 0 else None
        return _detached(snapshot) if snapshot is not None else None

    def get_snapshot_by_id(self, session_id: str, snapshot_id: str) -> Optional[StateSnapshot]:
        with self._lock:
            for snapshot in self._snapshots.get(session_id, ()):
                if snapshot.id == snapshot_id:
                    return _detached(snapshot)
        return None

    def get_snapshot_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._snapshots.get(session_id, ()))

    def can_rollback(self, session_id: str) -> bool:
        return self.get_snapshot_count(session_id) > 0

    def get_statistics(self) -> SnapshotStatistics:
        with self._lock:
            current = {sid: list(items) for sid, items in self._snapshots.items()}

        session_counts = {sid: len(items) for sid, items in current.items()}
        by_reason = Counter(s.reason.value for items in current.values() for s in items)
        total = sum(session_counts.values())
        return SnapshotStatistics(
            total_snapshots=total,
            active_sessions=len(current),
            session_counts=session_counts,
            by_reason={reason.value: by_reason.get(reason.value, 0) for reason in SnapshotReason},
            average_per_session=total / max(len(current), 1),
        )

    @staticmethod
    def _generate_id(session_id: str, now: datetime) -> str:
        return f"snapshot_{session_id}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}"
