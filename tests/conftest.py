"""
Shared test fixtures for phase engine tests.
"""

import pytest
import tempfile
from pathlib import Path

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores
from src.domain.models.session import Message, Session
from src.persistence.database import init_database
from src.persistence.repositories.memory_session_repo import InMemorySessionStore
from src.persistence.repositories.session_repo import SessionRepository
from src.services.state_machine import (
    PhaseStateMachine,
    PhaseTable,
    SnapshotManager,
    TransitionEventBus,
)


OBJECTIVE = "Become the most trusted onboarding experience for small businesses"
KEY_RESULTS = [
    "Increase 30-day activation rate from 42% to 65%",
    "Reduce time-to-first-invoice from 6 days to 2 days",
]


@pytest.fixture
async def test_db():
    """Create and initialize test database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        await init_database(db_path)
        yield db_path


@pytest.fixture
async def session_repo(test_db):
    """Create session repository with test database."""
    return SessionRepository(str(test_db))


@pytest.fixture
def phase_table():
    """Phase table with built-in defaults."""
    return PhaseTable()


@pytest.fixture
def make_session():
    """Factory for sessions with user turns tagged with the session phase."""

    def _make(
        session_id: str = "session-1",
        phase: Phase = Phase.DISCOVERY,
        context: dict | None = None,
        user_messages: list[str] | None = None,
        turns: int = 0,
    ) -> Session:
        texts = list(user_messages or [])
        texts = [f"filler turn {i}" for i in range(max(turns - len(texts), 0))] + texts
        messages = [Message(role="user", content=text, phase=phase) for text in texts]
        return Session(id=session_id, phase=phase, context=context or {}, messages=messages)

    return _make


@pytest.fixture
def okr_context():
    """Session context with an objective and two key results."""
    return {"okrData": {"objective": OBJECTIVE, "keyResults": list(KEY_RESULTS)}}


@pytest.fixture
def strong_scores():
    """Scores that clear every phase's quality bar."""
    return QualityScores.model_validate(
        {
            "objective": {
                "overall": 85,
                "dimensions": {"outcomeOrientation": 82, "clarity": 80, "inspiration": 76},
            },
            "keyResults": [{"overall": 80}, {"overall": 78}],
            "overall": {"score": 84},
        }
    )


@pytest.fixture
def store():
    """Empty in-memory session store."""
    return InMemorySessionStore()


@pytest.fixture
def snapshot_manager():
    return SnapshotManager(max_per_session=5)


@pytest.fixture
def event_bus():
    return TransitionEventBus()


@pytest.fixture
def machine(store, phase_table, snapshot_manager, event_bus):
    """State machine wired to the in-memory store."""
    return PhaseStateMachine(
        store=store,
        phase_table=phase_table,
        snapshot_manager=snapshot_manager,
        event_bus=event_bus,
    )
