"""Tests for TransitionEventBus."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores
from src.domain.models.transition import (
    ForcedTrigger,
    QualityMetTrigger,
    TransitionEventType,
    UserApprovalTrigger,
    ValidationFailedTrigger,
)
from src.services.state_machine.events import (
    TransitionEventBus,
    create_transition_event,
    register_default_handlers,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def event(
    session_id="s-1",
    from_phase=Phase.DISCOVERY,
    to_phase=Phase.REFINEMENT,
    trigger=None,
    turns=3,
    success=True,
    timestamp=None,
):
    return create_transition_event(
        session_id=session_id,
        from_phase=from_phase,
        to_phase=to_phase,
        trigger=trigger or QualityMetTrigger(score=82, threshold=70),
        quality_scores=None,
        message_count=turns * 2,
        turns_in_phase=turns,
        success=success,
        timestamp=timestamp,
    )


@pytest.fixture
def bus():
    return TransitionEventBus(max_history_size=5, max_history_age=timedelta(hours=24))


class TestEmit:
    """Tests for emission and handler dispatch."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers_receive_event(self, bus):
        """Both plain functions and coroutine functions are awaited."""
        received = []

        def sync_handler(e):
            received.append(("sync", e.event_type))

        async def async_handler(e):
            await asyncio.sleep(0)
            received.append(("async", e.event_type))

        bus.on(TransitionEventType.AFTER, sync_handler)
        bus.on(TransitionEventType.AFTER, async_handler)

        await bus.emit(TransitionEventType.AFTER, event())

        assert sorted(received) == [
            ("async", TransitionEventType.AFTER),
            ("sync", TransitionEventType.AFTER),
        ]

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, bus):
        """One handler raising never affects the others or the caller."""
        received = []

        def broken(e):
            raise RuntimeError("handler bug")

        async def broken_async(e):
            raise ValueError("async handler bug")

        bus.on(TransitionEventType.FAILED, broken)
        bus.on(TransitionEventType.FAILED, broken_async)
        bus.on(TransitionEventType.FAILED, received.append)

        await bus.emit(TransitionEventType.FAILED, event(success=False))

        assert len(received) == 1
        assert len(bus.get_recent_events()) == 1

    @pytest.mark.asyncio
    async def test_only_matching_type_dispatched(self, bus):
        """Handlers only see their own event type."""
        before = []
        bus.on(TransitionEventType.BEFORE, before.append)

        await bus.emit(TransitionEventType.AFTER, event())

        assert before == []

    @pytest.mark.asyncio
    async def test_event_type_stamped(self, bus):
        """The stored event carries the emitted type; the input is unchanged."""
        original = event()

        await bus.emit("before", original)

        assert original.event_type is None
        assert bus.get_recent_events()[0].event_type == TransitionEventType.BEFORE

    @pytest.mark.asyncio
    async def test_off_removes_handler(self, bus):
        """Removed handlers are no longer invoked."""
        received = []
        bus.on(TransitionEventType.AFTER, received.append)

        assert bus.off(TransitionEventType.AFTER, received.append)
        assert not bus.off(TransitionEventType.AFTER, received.append)

        await bus.emit(TransitionEventType.AFTER, event())
        assert received == []

    @pytest.mark.asyncio
    async def test_handlers_run_concurrently(self, bus):
        """A slow handler does not hold back its siblings."""
        sibling_started = asyncio.Event()
        finished = []

        async def slow(evt):
            await asyncio.wait_for(sibling_started.wait(), timeout=1.0)
            finished.append("slow")

        async def sibling(evt):
            sibling_started.set()
            finished.append("sibling")

        bus.on(TransitionEventType.AFTER, slow)
        bus.on(TransitionEventType.AFTER, sibling)

        await bus.emit(TransitionEventType.AFTER, event())

        assert finished == ["sibling", "slow"]


class TestHistory:
    """Tests for the bounded audit history."""

    @pytest.mark.asyncio
    async def test_history_capped_oldest_dropped(self, bus):
        """History never exceeds max_history_size."""
        for n in range(8):
            await bus.emit(TransitionEventType.AFTER, event(turns=n))

        recent = bus.get_recent_events()
        assert len(recent) == 5
        assert [e.turns_in_phase for e in recent] == [3, 4, 5, 6, 7]

    @pytest.mark.asyncio
    async def test_history_queries(self, bus):
        """Lookups by session, by type and by recency."""
        await bus.emit(TransitionEventType.BEFORE, event(session_id="a"))
        await bus.emit(TransitionEventType.AFTER, event(session_id="a"))
        await bus.emit(TransitionEventType.AFTER, event(session_id="b"))

        assert len(bus.get_history_for_session("a")) == 2
        assert len(bus.get_events_by_type(TransitionEventType.AFTER)) == 2
        assert [e.session_id for e in bus.get_recent_events(limit=1)] == ["b"]
        assert bus.get_recent_events(limit=0) == []

    @pytest.mark.asyncio
    async def test_clear_history(self, bus):
        await bus.emit(TransitionEventType.AFTER, event())
        bus.clear_history()
        assert bus.get_recent_events() == []

    @pytest.mark.asyncio
    async def test_sweep_drops_old_events(self, bus):
        """Events older than max_history_age are swept."""
        await bus.emit(TransitionEventType.AFTER, event(timestamp=T0))
        await bus.emit(TransitionEventType.AFTER, event(timestamp=T0 + timedelta(hours=20)))

        removed = bus.sweep(now=T0 + timedelta(hours=25))

        assert removed == 1
        assert bus.get_recent_events()[0].timestamp == T0 + timedelta(hours=20)
        assert bus.sweep(now=T0 + timedelta(hours=25)) == 0


class TestStatistics:
    """Tests for statistics derived from history."""

    @pytest.mark.asyncio
    async def test_statistics_count_outcomes_once(self, bus):
        """before events count toward the total only."""
        approval = UserApprovalTrigger(signal="i approve")
        rejected = ValidationFailedTrigger(errors=["Cannot skip"])

        await bus.emit(TransitionEventType.BEFORE, event(trigger=approval, turns=4))
        await bus.emit(TransitionEventType.AFTER, event(trigger=approval, turns=4))
        await bus.emit(
            TransitionEventType.FAILED,
            event(to_phase=Phase.VALIDATION, trigger=rejected, turns=2, success=False),
        )

        stats = bus.get_statistics()

        assert stats.total_events == 3
        assert stats.successful_transitions == 1
        assert stats.failed_transitions == 1
        assert stats.by_trigger == {"user_approval": 1, "validation_failed": 1}
        assert stats.by_phase_transition == {
            "discovery → refinement": 1,
            "discovery → validation": 1,
        }
        assert stats.average_turns_in_phase["discovery"].average == 3.0

    def test_empty_statistics(self, bus):
        stats = bus.get_statistics()
        assert stats.total_events == 0
        assert stats.by_trigger == {}


class TestFactoryAndDefaults:
    """Tests for create_transition_event and default handlers."""

    def test_create_event_copies_scores(self):
        """Scores attached to an event are a copy."""
        scores = QualityScores.model_validate({"objective": {"overall": 70}})
        created = create_transition_event(
            "s-1",
            Phase.DISCOVERY,
            Phase.REFINEMENT,
            ForcedTrigger(reason="admin"),
            scores,
            message_count=4,
            turns_in_phase=2,
            success=True,
            metadata={"snapshot_id": "x"},
        )
        scores.objective.overall = 10

        assert created.quality_scores.objective.overall == 70
        assert created.metadata == {"snapshot_id": "x"}
        assert created.trigger.type == "forced"

    @pytest.mark.asyncio
    async def test_default_handlers_registered(self, bus):
        """Default logging handlers run without error for every type."""
        register_default_handlers(bus)

        for event_type in TransitionEventType:
            await bus.emit(event_type, event(success=event_type != TransitionEventType.FAILED))

        assert len(bus.get_recent_events()) == 3

    def test_invalid_history_size(self):
        with pytest.raises(ValueError):
            TransitionEventBus(max_history_size=0)

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, bus):
        bus.start()
        assert bus._sweeper.running
        await bus.shutdown()
        assert not bus._sweeper.running
