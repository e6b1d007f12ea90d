"""Tests for RollbackManager and rollback intent detection."""

import pytest

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores
from src.domain.models.session import Session
from src.services.state_machine.rollback import RollbackManager, detect_rollback_intent
from src.services.state_machine.snapshots import SnapshotManager


class FakeSessionPort:
    """Records rollback updates against a single in-memory session."""

    def __init__(self, session: Session | None, fail_update: bool = False):
        self.session = session
        self.fail_update = fail_update
        self.updates = []

    async def get_current_session(self):
        return self.session

    async def update_session(self, **updates):
        if self.fail_update:
            raise RuntimeError("database is locked")
        self.updates.append(updates)
        self.session = self.session.model_copy(update=updates)


@pytest.fixture
def snapshots():
    return SnapshotManager()


@pytest.fixture
def rollbacks(snapshots):
    return RollbackManager(snapshots)


def snapshot_in(snapshots, phase, context, session_id="s-1"):
    return snapshots.create_snapshot(session_id, phase, context, QualityScores(), 3)


class TestRollback:
    """Tests for restoring snapshots."""

    @pytest.mark.asyncio
    async def test_rollback_to_snapshot_restores_phase_and_context(self, snapshots, rollbacks):
        """Phase and context come back together, deep-equal."""
        context = {"okrData": {"objective": "Grow", "keyResults": ["a"]}}
        snapshot = snapshot_in(snapshots, Phase.REFINEMENT, context)
        port = FakeSessionPort(
            Session(id="s-1", phase=Phase.VALIDATION, context={"okrData": {"objective": "Other"}})
        )

        result = await rollbacks.rollback_to_snapshot(
            "s-1", snapshot.id, port.get_current_session, port.update_session
        )

        assert result.success
        assert result.restored_phase == Phase.REFINEMENT
        assert port.updates == [{"phase": Phase.REFINEMENT, "context": context}]
        assert port.session.context == context

    @pytest.mark.asyncio
    async def test_restored_context_is_a_copy(self, snapshots, rollbacks):
        """Mutating the restored context never reaches the snapshot."""
        snapshot = snapshot_in(snapshots, Phase.DISCOVERY, {"notes": ["a"]})
        port = FakeSessionPort(Session(id="s-1", phase=Phase.REFINEMENT))

        await rollbacks.rollback_to_snapshot(
            "s-1", snapshot.id, port.get_current_session, port.update_session
        )
        port.updates[0]["context"]["notes"].append("b")

        assert snapshots.get_latest_snapshot("s-1").context == {"notes": ["a"]}

    @pytest.mark.asyncio
    async def test_rollback_to_previous_uses_latest_snapshot(self, snapshots, rollbacks):
        """Undo restores the state captured before the last transition."""
        snapshot_in(snapshots, Phase.DISCOVERY, {"n": 1})
        latest = snapshot_in(snapshots, Phase.REFINEMENT, {"n": 2})
        port = FakeSessionPort(Session(id="s-1", phase=Phase.KR_DISCOVERY))

        result = await rollbacks.rollback_to_previous(
            "s-1", port.get_current_session, port.update_session
        )

        assert result.success
        assert result.snapshot == latest

    @pytest.mark.asyncio
    async def test_rollback_to_phase_picks_newest_match(self, snapshots, rollbacks):
        """The newest snapshot in the target phase wins."""
        snapshot_in(snapshots, Phase.REFINEMENT, {"n": 1})
        newest = snapshot_in(snapshots, Phase.REFINEMENT, {"n": 2})
        snapshot_in(snapshots, Phase.KR_DISCOVERY, {"n": 3})
        port = FakeSessionPort(Session(id="s-1", phase=Phase.VALIDATION))

        result = await rollbacks.rollback_to_phase(
            "s-1", Phase.REFINEMENT, port.get_current_session, port.update_session
        )

        assert result.snapshot == newest
        assert port.session.context == {"n": 2}


class TestRollbackFailures:
    """Failures are reported, never partially applied."""

    @pytest.mark.asyncio
    async def test_no_snapshots(self, rollbacks):
        """Nothing to undo."""
        port = FakeSessionPort(Session(id="s-1"))

        result = await rollbacks.rollback_to_previous(
            "s-1", port.get_current_session, port.update_session
        )

        assert not result.success
        assert result.error == "No previous snapshot available"

    @pytest.mark.asyncio
    async def test_unknown_snapshot(self, rollbacks):
        """Unknown ids fail."""
        port = FakeSessionPort(Session(id="s-1"))

        result = await rollbacks.rollback_to_snapshot(
            "s-1", "snapshot_missing", port.get_current_session, port.update_session
        )

        assert not result.success
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_no_snapshot_for_phase(self, snapshots, rollbacks):
        """A phase never snapshotted cannot be restored."""
        snapshot_in(snapshots, Phase.DISCOVERY, {})
        port = FakeSessionPort(Session(id="s-1"))

        result = await rollbacks.rollback_to_phase(
            "s-1", Phase.VALIDATION, port.get_current_session, port.update_session
        )

        assert not result.success
        assert result.error == "No snapshot found for phase: validation"

    @pytest.mark.asyncio
    async def test_deleted_session(self, snapshots, rollbacks):
        """A session that no longer exists fails loudly."""
        snapshot = snapshot_in(snapshots, Phase.DISCOVERY, {})
        port = FakeSessionPort(None)

        result = await rollbacks.rollback_to_snapshot(
            "s-1", snapshot.id, port.get_current_session, port.update_session
        )

        assert not result.success
        assert result.error == "Session not found or ID mismatch"
        assert port.updates == []

    @pytest.mark.asyncio
    async def test_mismatched_session(self, snapshots, rollbacks):
        """A rotated session with a different id is rejected."""
        snapshot = snapshot_in(snapshots, Phase.DISCOVERY, {})
        port = FakeSessionPort(Session(id="s-2"))

        result = await rollbacks.rollback_to_snapshot(
            "s-1", snapshot.id, port.get_current_session, port.update_session
        )

        assert not result.success
        assert port.updates == []

    @pytest.mark.asyncio
    async def test_update_failure_reported(self, snapshots, rollbacks):
        """Store errors become a failed result."""
        snapshot = snapshot_in(snapshots, Phase.DISCOVERY, {})
        port = FakeSessionPort(Session(id="s-1", phase=Phase.REFINEMENT), fail_update=True)

        result = await rollbacks.rollback_to_snapshot(
            "s-1", snapshot.id, port.get_current_session, port.update_session
        )

        assert not result.success
        assert result.error == "database is locked"
        assert port.session.phase == Phase.REFINEMENT


class TestRollbackPoints:
    """Tests for rollback point listing."""

    def test_can_rollback_to_phase(self, snapshots, rollbacks):
        snapshot_in(snapshots, Phase.REFINEMENT, {})

        assert rollbacks.can_rollback_to_phase("s-1", Phase.REFINEMENT)
        assert not rollbacks.can_rollback_to_phase("s-1", Phase.DISCOVERY)

    def test_available_points_oldest_first(self, snapshots, rollbacks):
        first = snapshot_in(snapshots, Phase.DISCOVERY, {})
        second = snapshot_in(snapshots, Phase.REFINEMENT, {})

        points = rollbacks.get_available_rollback_points("s-1")

        assert [p.snapshot_id for p in points] == [first.id, second.id]
        assert points[1].phase == Phase.REFINEMENT
        assert points[0].message_count == 3


class TestDetectRollbackIntent:
    """Tests for rollback intent detection."""

    @pytest.mark.parametrize(
        "message",
        ["Can we undo that?", "Please go back", "revert the last change", "roll back please"],
    )
    def test_previous_requests(self, message):
        intent = detect_rollback_intent(message)
        assert intent.intent
        assert intent.kind == "previous"
        assert intent.target_phase is None

    @pytest.mark.parametrize(
        "message,phase",
        [
            ("Let's go back to refinement", Phase.REFINEMENT),
            ("return to the discovery phase", Phase.DISCOVERY),
            ("I want to go back to the key results", Phase.KR_DISCOVERY),
            ("back to validation", Phase.VALIDATION),
        ],
    )
    def test_phase_requests(self, message, phase):
        intent = detect_rollback_intent(message)
        assert intent.intent
        assert intent.kind == "phase"
        assert intent.target_phase == phase

    def test_no_intent(self):
        intent = detect_rollback_intent("Our revenue grew 20% last quarter")
        assert not intent.intent
        assert intent.kind is None
