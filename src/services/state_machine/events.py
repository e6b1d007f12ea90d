"""Transition event bus and audit history.

Three event types are published per transition attempt:

- before: a validated transition is about to be applied
- after: the transition was applied
- failed: validation rejected the transition, or applying it failed

Subscribers may be plain functions or coroutine functions. All handlers of
an emit run concurrently; a failing handler is logged and never affects its
siblings or the emitting transition.

History is bounded by count and by age. Statistics are recomputed from the
history on demand instead of being maintained incrementally.
"""

import asyncio
import inspect
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores
from src.domain.models.transition import (
    TransitionEvent,
    TransitionEventType,
    TransitionStatistics,
    TransitionTrigger,
    TurnStatistics,
)
from src.services.state_machine.maintenance import PeriodicSweep

log = structlog.get_logger(__name__)

TransitionEventHandler = Callable[[TransitionEvent], Union[None, Awaitable[None]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransitionEventBus:
    """Publish transition events and retain a bounded audit log."""

    def __init__(
        self,
        max_history_size: int = 1000,
        max_history_age: timedelta = timedelta(hours=24),
        sweep_interval_seconds: float = 60 * 60,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_history_size < 1:
            raise ValueError("max_history_size must be at least 1")
        self.max_history_size = max_history_size
        self.max_history_age = max_history_age
        self._clock = clock or _utcnow
        self._listeners: Dict[TransitionEventType, List[TransitionEventHandler]] = {
            event_type: [] for event_type in TransitionEventType
        }
        self._history: List[TransitionEvent] = []
        self._lock = threading.Lock()
        self._sweeper = PeriodicSweep("transition_events", self.sweep, sweep_interval_seconds)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._sweeper.start()

    async def shutdown(self) -> None:
        await self._sweeper.stop()
        log.debug("transition_event_bus_shutdown")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on(self, event_type: TransitionEventType, handler: TransitionEventHandler) -> None:
        event_type = TransitionEventType(event_type)
        with self._lock:
            handlers = self._listeners[event_type]
            handlers.append(handler)
            count = len(handlers)
        log.debug("event_handler_registered", event_type=event_type.value, handler_count=count)

    def off(self, event_type: TransitionEventType, handler: TransitionEventHandler) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        event_type = TransitionEventType(event_type)
        with self._lock:
            handlers = self._listeners[event_type]
            if handler not in handlers:
                return False
            handlers.remove(handler)
            count = len(handlers)
        log.debug("event_handler_removed", event_type=event_type.value, handler_count=count)
        return True

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def emit(self, event_type: TransitionEventType, event: TransitionEvent) -> None:
        """Record the event and run every handler registered for its type.

        Returns once all handlers have finished. Handler exceptions are
        logged, never raised.
        """
        event_type = TransitionEventType(event_type)
        stamped = event.model_copy(update={"event_type": event_type})

        with self._lock:
            self._history.append(stamped)
            overflow = len(self._history) - self.max_history_size
            if overflow > 0:
                del self._history[:overflow]
            handlers = list(self._listeners[event_type])

        log.info(
            "transition_event",
            event_type=event_type.value,
            session_id=stamped.session_id,
            transition=stamped.transition_key,
            trigger=stamped.trigger.type,
            success=stamped.success,
        )

        if handlers:
            await asyncio.gather(
                *(
                    self._invoke(event_type, index, handler, stamped)
                    for index, handler in enumerate(handlers)
                )
            )

    async def _invoke(
        self,
        event_type: TransitionEventType,
        index: int,
        handler: TransitionEventHandler,
        event: TransitionEvent,
    ) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log.error(
                "transition_event_handler_failed",
                event_type=event_type.value,
                handler_index=index,
                handler=getattr(handler, "__qualname__", repr(handler)),
                session_id=event.session_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history_for_session(self, session_id: str) -> List[TransitionEvent]:
        with self._lock:
            return [e for e in self._history if e.session_id == session_id]

    def get_events_by_type(self, event_type: TransitionEventType) -> List[TransitionEvent]:
        event_type = TransitionEventType(event_type)
        with self._lock:
            return [e for e in self._history if e.event_type == event_type]

    def get_recent_events(self, limit: int = 100) -> List[TransitionEvent]:
        """Last ``limit`` events, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._history[-limit:])

    def clear_history(self) -> None:
        with self._lock:
            self._history = []
        log.debug("transition_event_history_cleared")

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drop events older than ``max_history_age``. Returns the count removed."""
        cutoff = (now or self._clock()) - self.max_history_age
        with self._lock:
            current = list(self._history)

        expired = {id(e) for e in current if e.timestamp <= cutoff}
        if not expired:
            return 0

        with self._lock:
            before = len(self._history)
            self._history = [e for e in self._history if id(e) not in expired]
            removed = before - len(self._history)
            remaining = len(self._history)

        log.debug("transition_events_swept", removed=removed, remaining=remaining)
        return removed

    def get_statistics(self) -> TransitionStatistics:
        """Aggregate the retained history.

        Successes are ``after`` events and failures are ``failed`` events.
        Trigger, phase-pair and turns-in-phase aggregates cover outcomes
        only, so a transition is not counted twice via its ``before`` event.
        """
        with self._lock:
            history = list(self._history)

        outcomes = [
            e
            for e in history
            if e.event_type in (TransitionEventType.AFTER, TransitionEventType.FAILED)
        ]
        by_trigger = Counter(e.trigger.type for e in outcomes)
        by_phase_transition = Counter(e.transition_key for e in outcomes)

        turns: Dict[str, TurnStatistics] = {}
        for event in outcomes:
            entry = turns.setdefault(event.from_phase.value, TurnStatistics())
            entry.sum += event.turns_in_phase
            entry.count += 1

        return TransitionStatistics(
            total_events=len(history),
            successful_transitions=sum(
                1 for e in outcomes if e.event_type == TransitionEventType.AFTER
            ),
            failed_transitions=sum(
                1 for e in outcomes if e.event_type == TransitionEventType.FAILED
            ),
            by_trigger=dict(by_trigger),
            by_phase_transition=dict(by_phase_transition),
            average_turns_in_phase=turns,
        )


def create_transition_event(
    session_id: str,
    from_phase: Phase,
    to_phase: Phase,
    trigger: TransitionTrigger,
    quality_scores: Optional[QualityScores],
    message_count: int,
    turns_in_phase: int,
    success: bool,
    validation_errors: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> TransitionEvent:
    """Build a TransitionEvent, copying the quality scores."""
    return TransitionEvent(
        session_id=session_id,
        timestamp=timestamp or _utcnow(),
        from_phase=from_phase,
        to_phase=to_phase,
        trigger=trigger,
        quality_scores=(
            quality_scores.model_copy(deep=True) if quality_scores else QualityScores()
        ),
        message_count=message_count,
        turns_in_phase=turns_in_phase,
        success=success,
        validation_errors=list(validation_errors) if validation_errors is not None else None,
        metadata=dict(metadata or {}),
    )


def register_default_handlers(bus: TransitionEventBus) -> None:
    """Attach structured-logging handlers for every event type."""

    def log_before(event: TransitionEvent) -> None:
        log.debug(
            "phase_transition_starting",
            session_id=event.session_id,
            from_phase=event.from_phase.value,
            to_phase=event.to_phase.value,
            trigger=event.trigger.type,
            turns_in_phase=event.turns_in_phase,
        )

    def log_after(event: TransitionEvent) -> None:
        log.info(
            "phase_transition_completed",
            session_id=event.session_id,
            from_phase=event.from_phase.value,
            to_phase=event.to_phase.value,
            trigger=event.trigger.type,
            message_count=event.message_count,
            turns_in_phase=event.turns_in_phase,
        )

    def log_failed(event: TransitionEvent) -> None:
        log.warning(
            "phase_transition_failed",
            session_id=event.session_id,
            from_phase=event.from_phase.value,
            to_phase=event.to_phase.value,
            trigger=event.trigger.type,
            validation_errors=event.validation_errors,
        )

    bus.on(TransitionEventType.BEFORE, log_before)
    bus.on(TransitionEventType.AFTER, log_after)
    bus.on(TransitionEventType.FAILED, log_failed)
