"""In-memory session store for simulations and tests."""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from src.core.exceptions import SessionNotFoundError
from src.domain.models.phase import Phase
from src.domain.models.session import Message, Session

log = structlog.get_logger(__name__)


class InMemorySessionStore:
    """Dict-backed implementation of the ISessionStore port.

    Sessions are copied on the way in and out, so callers never share
    state with the store.
    """

    def __init__(self, sessions: Optional[List[Session]] = None):
        self._sessions: Dict[str, Session] = {}
        for session in sessions or []:
            self._sessions[session.id] = session.model_copy(deep=True)

    async def create(self, session: Session) -> Session:
        self._sessions[session.id] = session.model_copy(deep=True)
        log.debug("session_created", session_id=session.id, phase=session.phase.value)
        return session.model_copy(deep=True)

    async def get_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def update_session(
        self,
        session_id: str,
        phase: Optional[Phase] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")

        update: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if phase is not None:
            update["phase"] = Phase(phase)
        if context is not None:
            update["context"] = copy.deepcopy(context)
        self._sessions[session_id] = session.model_copy(update=update)
        return self._sessions[session_id].model_copy(deep=True)

    async def add_message(self, session_id: str, message: Message) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        if message.phase is None:
            message = message.model_copy(update={"phase": session.phase})
        session.messages.append(message)

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None
