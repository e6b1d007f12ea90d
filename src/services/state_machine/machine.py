"""Phase state machine orchestrator.

Runs once per conversational turn:

    reload session -> resolve quality scores -> evaluate readiness
    -> decide trigger -> validate -> snapshot -> emit before
    -> apply phase -> emit after

A validator rejection emits ``failed`` and leaves the session untouched.
If applying the phase fails, the pre-transition snapshot is restored, a
``failed`` event is emitted and TransitionExecutionError is raised.

Turns for the same session are serialized with a per-session asyncio.Lock;
different sessions proceed concurrently. A lock is dropped once no turn
holds or awaits it.
"""

import asyncio
import contextlib
import functools
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import structlog

from src.core.config import Settings, settings
from src.core.exceptions import SessionNotFoundError, TerminalPhaseError, TransitionExecutionError
from src.domain.models.phase import Phase, is_terminal
from src.domain.models.quality import KeyResultScore, QualityScores
from src.domain.models.readiness import PhaseReadiness
from src.domain.models.session import Session
from src.domain.models.snapshot import RollbackResult, SnapshotReason
from src.domain.models.transition import (
    ForcedTrigger,
    TransitionEventType,
    TransitionResult,
    TransitionTrigger,
    ValidationFailedTrigger,
)
from src.services.protocols import IQualityScorer, ISessionStore
from src.services.state_machine.context_paths import get_nested_value
from src.services.state_machine.events import (
    TransitionEventBus,
    TransitionEventHandler,
    create_transition_event,
    register_default_handlers,
)
from src.services.state_machine.phase_table import PhaseTable
from src.services.state_machine.readiness import (
    KEY_RESULTS_PATH,
    ReadinessEvaluator,
    objective_text as objective_text_of,
)
from src.services.state_machine.rollback import RollbackManager
from src.services.state_machine.snapshots import SnapshotManager
from src.services.state_machine.triggers import determine_transition_trigger
from src.services.state_machine.validator import TransitionValidator

log = structlog.get_logger(__name__)

PREVIOUS = "previous"

RollbackTarget = Union[str, Phase]


class PhaseStateMachine:
    """Decide and apply phase transitions for OKR sessions.

    All collaborators are injected; use ``create_phase_state_machine`` to
    wire them from settings.
    """

    def __init__(
        self,
        store: ISessionStore,
        phase_table: Optional[PhaseTable] = None,
        evaluator: Optional[ReadinessEvaluator] = None,
        validator: Optional[TransitionValidator] = None,
        snapshot_manager: Optional[SnapshotManager] = None,
        rollback_manager: Optional[RollbackManager] = None,
        event_bus: Optional[TransitionEventBus] = None,
        quality_scorer: Optional[IQualityScorer] = None,
    ):
        self.store = store
        self.phase_table = phase_table or PhaseTable()
        self.evaluator = evaluator or ReadinessEvaluator(self.phase_table)
        self.validator = validator or TransitionValidator(self.phase_table)
        self.snapshots = snapshot_manager or SnapshotManager()
        self.rollbacks = rollback_manager or RollbackManager(self.snapshots)
        self.events = event_bus or TransitionEventBus()
        self.quality_scorer = quality_scorer
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start background retention sweeps. Requires a running event loop."""
        self.snapshots.start()
        self.events.start()
        log.info("phase_state_machine_started")

    async def shutdown(self) -> None:
        await self.snapshots.shutdown()
        await self.events.shutdown()
        log.info("phase_state_machine_shutdown")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, event_type: TransitionEventType, handler: TransitionEventHandler) -> None:
        self.events.on(event_type, handler)

    def unsubscribe(self, event_type: TransitionEventType, handler: TransitionEventHandler) -> bool:
        return self.events.off(event_type, handler)

    # ------------------------------------------------------------------
    # Readiness and transitions
    # ------------------------------------------------------------------

    def evaluate_readiness(
        self, session: Session, quality_scores: Optional[QualityScores] = None
    ) -> PhaseReadiness:
        """Readiness of the session's current phase. No side effects."""
        window = self.phase_table.config.finalization.window_size
        return self.evaluator.evaluate(
            session.phase,
            quality_scores,
            session.turn_count,
            session.recent_messages(window),
            session.context,
        )

    async def attempt_transition(
        self,
        session: Session,
        quality_scores: Optional[QualityScores] = None,
        target_phase: Optional[Phase] = None,
    ) -> TransitionResult:
        """Advance the session if its current phase is ready.

        Args:
            session: Session to advance (reloaded from the store before use)
            quality_scores: Latest scores; resolved through the quality
                scorer when omitted
            target_phase: Phase to move to (default: the next phase)

        Returns:
            TransitionResult; ``errors`` explains every blocked attempt

        Raises:
            SessionNotFoundError: If the store no longer has the session
            TransitionExecutionError: If applying a validated transition failed
        """
        async with self._lock_for(session.id):
            with structlog.contextvars.bound_contextvars(session_id=session.id):
                current = await self._reload(session.id)
                if is_terminal(current.phase):
                    return TransitionResult(
                        transitioned=False,
                        from_phase=current.phase,
                        errors=[f"Session is in terminal phase '{current.phase.value}'"],
                    )

                scores = await self._resolve_scores(current, quality_scores)
                readiness = self.evaluate_readiness(current, scores)
                config = self.phase_table.get_config(current.phase)
                turns_in_phase = current.turns_in_phase()

                trigger = determine_transition_trigger(readiness, config, turns_in_phase)
                if trigger is None:
                    errors = list(readiness.missing_elements)
                    if readiness.ready_to_transition and turns_in_phase < config.min_messages:
                        errors.append(
                            f"At least {config.min_messages} turns in '{current.phase.value}' "
                            f"needed before moving on ({turns_in_phase}/{config.min_messages})"
                        )
                    elif readiness.ready_to_transition:
                        errors.append(
                            f"Readiness {readiness.readiness_score * 100:.0f} is below the "
                            f"'{current.phase.value}' threshold of "
                            f"{config.quality_threshold * 100:.0f}"
                        )
                    log.debug(
                        "transition_not_ready",
                        phase=current.phase.value,
                        readiness_score=readiness.readiness_score,
                        errors=errors,
                    )
                    return TransitionResult(
                        transitioned=False,
                        from_phase=current.phase,
                        errors=errors,
                        readiness=readiness,
                    )

                to_phase = target_phase or self.phase_table.get_next_phase(current.phase)
                return await self._apply(current, to_phase, trigger, scores, readiness)

    async def force_transition(
        self,
        session: Session,
        reason: str,
        quality_scores: Optional[QualityScores] = None,
        target_phase: Optional[Phase] = None,
    ) -> TransitionResult:
        """Transition without a readiness check. Validation still applies.

        Raises:
            SessionNotFoundError: If the store no longer has the session
            TerminalPhaseError: If the session is already completed
            TransitionExecutionError: If applying the transition failed
        """
        async with self._lock_for(session.id):
            with structlog.contextvars.bound_contextvars(session_id=session.id):
                current = await self._reload(session.id)
                if is_terminal(current.phase):
                    raise TerminalPhaseError(
                        f"Session {session.id} is in terminal phase '{current.phase.value}'"
                    )
                scores = await self._resolve_scores(current, quality_scores)
                to_phase = target_phase or self.phase_table.get_next_phase(current.phase)
                log.info(
                    "forced_transition_requested",
                    from_phase=current.phase.value,
                    to_phase=to_phase.value,
                    reason=reason,
                )
                return await self._apply(
                    current, to_phase, ForcedTrigger(reason=reason), scores, readiness=None
                )

    async def rollback(self, session_id: str, target: RollbackTarget = PREVIOUS) -> RollbackResult:
        """Restore a stored snapshot.

        Args:
            session_id: Session to roll back
            target: "previous" (undo the last transition), a Phase or phase
                name (latest snapshot taken in that phase), or a snapshot id
        """
        async with self._lock_for(session_id):
            get_current = functools.partial(self.store.get_session, session_id)
            update = functools.partial(self.store.update_session, session_id)

            if target == PREVIOUS:
                result = await self.rollbacks.rollback_to_previous(session_id, get_current, update)
            elif isinstance(target, Phase) or target in {p.value for p in Phase}:
                result = await self.rollbacks.rollback_to_phase(
                    session_id, Phase(target), get_current, update
                )
            else:
                result = await self.rollbacks.rollback_to_snapshot(
                    session_id, target, get_current, update
                )

        if not result.success:
            log.warning(
                "rollback_rejected", session_id=session_id, target=str(target), error=result.error
            )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _lock_for(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]
                del self._locks[session_id]

    async def _reload(self, session_id: str) -> Session:
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    async def _resolve_scores(
        self, session: Session, quality_scores: Optional[QualityScores]
    ) -> QualityScores:
        if quality_scores is not None:
            return quality_scores
        if self.quality_scorer is None:
            return QualityScores()

        context = session.context
        try:
            objective_text = objective_text_of(context)
            objective = (
                await self.quality_scorer.score_objective(objective_text, context)
                if objective_text.strip()
                else None
            )
            key_results: List[KeyResultScore] = []
            for item in get_nested_value(context, KEY_RESULTS_PATH) or []:
                text = item.get("text", "") if isinstance(item, dict) else str(item)
                if text.strip():
                    key_results.append(await self.quality_scorer.score_key_result(text, context))
            overall = (
                await self.quality_scorer.calculate_overall_score(objective, key_results)
                if objective is not None or key_results
                else None
            )
        except Exception as e:
            # Unscored turns are evaluated as "needs assessment"
            log.error(
                "quality_scoring_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return QualityScores()

        return QualityScores(objective=objective, key_results=key_results, overall=overall)

    async def _apply(
        self,
        session: Session,
        to_phase: Phase,
        trigger: TransitionTrigger,
        scores: QualityScores,
        readiness: Optional[PhaseReadiness],
    ) -> TransitionResult:
        from_phase = session.phase
        turns_in_phase = session.turns_in_phase()
        event_fields: Dict[str, Any] = dict(
            session_id=session.id,
            from_phase=from_phase,
            to_phase=to_phase,
            quality_scores=scores,
            message_count=session.message_count,
            turns_in_phase=turns_in_phase,
        )

        validation = self.validator.validate(from_phase, to_phase, session.context, scores)
        if validation.warnings:
            log.warning(
                "transition_validation_warnings",
                from_phase=from_phase.value,
                to_phase=to_phase.value,
                warnings=validation.warnings,
            )
        if not validation.valid:
            failed_trigger = ValidationFailedTrigger(errors=list(validation.errors))
            await self.events.emit(
                TransitionEventType.FAILED,
                create_transition_event(
                    **event_fields,
                    trigger=failed_trigger,
                    success=False,
                    validation_errors=validation.errors,
                    metadata={"proposed_trigger": trigger.type},
                ),
            )
            log.warning(
                "transition_rejected",
                from_phase=from_phase.value,
                to_phase=to_phase.value,
                proposed_trigger=trigger.type,
                errors=validation.errors,
            )
            return TransitionResult(
                transitioned=False,
                from_phase=from_phase,
                errors=list(validation.errors),
                trigger=failed_trigger,
                readiness=readiness,
            )

        snapshot = self.snapshots.create_snapshot(
            session.id,
            from_phase,
            session.context,
            scores,
            session.message_count,
            reason=SnapshotReason.BEFORE_TRANSITION,
            metadata={"to_phase": to_phase.value, "trigger": trigger.type},
        )
        metadata = {"snapshot_id": snapshot.id}
        await self.events.emit(
            TransitionEventType.BEFORE,
            create_transition_event(**event_fields, trigger=trigger, success=True, metadata=metadata),
        )

        try:
            await self.store.update_session(session.id, phase=to_phase)
        except Exception as e:
            await self._recover(session, snapshot.id, e)
            await self.events.emit(
                TransitionEventType.FAILED,
                create_transition_event(
                    **event_fields,
                    trigger=trigger,
                    success=False,
                    validation_errors=[f"Failed to apply transition: {e}"],
                    metadata=metadata,
                ),
            )
            raise TransitionExecutionError(
                f"Failed to move session {session.id} from '{from_phase.value}' "
                f"to '{to_phase.value}': {e}"
            ) from e

        await self.events.emit(
            TransitionEventType.AFTER,
            create_transition_event(**event_fields, trigger=trigger, success=True, metadata=metadata),
        )
        log.info(
            "phase_transitioned",
            from_phase=from_phase.value,
            to_phase=to_phase.value,
            trigger=trigger.type,
            turns_in_phase=turns_in_phase,
            snapshot_id=snapshot.id,
        )
        return TransitionResult(
            transitioned=True,
            from_phase=from_phase,
            new_phase=to_phase,
            trigger=trigger,
            readiness=readiness,
            snapshot_id=snapshot.id,
        )

    async def _recover(self, session: Session, snapshot_id: str, error: Exception) -> None:
        log.error(
            "transition_apply_failed",
            error=str(error),
            error_type=type(error).__name__,
            snapshot_id=snapshot_id,
        )
        restored = await self.rollbacks.rollback_to_snapshot(
            session.id,
            snapshot_id,
            functools.partial(self.store.get_session, session.id),
            functools.partial(self.store.update_session, session.id),
        )
        if not restored.success:
            log.error(
                "transition_restore_failed", snapshot_id=snapshot_id, error=restored.error
            )


def create_phase_state_machine(
    store: ISessionStore,
    quality_scorer: Optional[IQualityScorer] = None,
    app_settings: Optional[Settings] = None,
    phase_table: Optional[PhaseTable] = None,
    log_transitions: bool = True,
) -> PhaseStateMachine:
    """Wire a PhaseStateMachine from settings.

    Args:
        store: Session store port
        quality_scorer: Optional scorer used when a turn supplies no scores
        app_settings: Settings to use (default: global settings)
        phase_table: Phase table (default: loaded from phase_config.yaml)
        log_transitions: Register the default logging handlers on the bus
    """
    cfg = app_settings or settings
    table = phase_table or PhaseTable.from_yaml(cfg.resolved_phase_config_path())

    snapshot_manager = SnapshotManager(
        max_per_session=cfg.snapshot_max_per_session,
        max_age=timedelta(hours=cfg.snapshot_max_age_hours),
        sweep_interval_seconds=cfg.snapshot_sweep_interval_seconds,
    )
    event_bus = TransitionEventBus(
        max_history_size=cfg.event_history_max_size,
        max_history_age=timedelta(hours=cfg.event_history_max_age_hours),
        sweep_interval_seconds=cfg.event_sweep_interval_seconds,
    )
    if log_transitions:
        register_default_handlers(event_bus)

    return PhaseStateMachine(
        store=store,
        phase_table=table,
        evaluator=ReadinessEvaluator(table),
        validator=TransitionValidator(table),
        snapshot_manager=snapshot_manager,
        rollback_manager=RollbackManager(snapshot_manager),
        event_bus=event_bus,
        quality_scorer=quality_scorer,
    )
