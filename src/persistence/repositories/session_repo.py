"""Session repository for database operations."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite
import structlog

from src.core.exceptions import SessionNotFoundError
from src.domain.models.phase import Phase
from src.domain.models.session import Message, Session

log = structlog.get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionRepository:
    """SQLite-backed session store.

    Implements the ISessionStore port used by the phase state machine.
    Sessions live in ``sessions`` (context as a JSON column), their
    message history in ``messages``.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)

    async def create(self, session: Session) -> Session:
        """Insert a new session together with any messages it already has."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute(
                "INSERT INTO sessions (id, phase, context, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.phase.value,
                    json.dumps(session.context),
                    session.created_at.isoformat(),
                    session.updated_at.isoformat(),
                ),
            )
            for message in session.messages:
                await self._insert_message(db, session.id, message)
            await db.commit()

        log.info("session_created", session_id=session.id, phase=session.phase.value)
        created = await self.get_session(session.id)
        if created is None:
            raise SessionNotFoundError(f"Session {session.id} not found after creation")
        return created

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Get a session with its message history, or None."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
            row = await cursor.fetchone()
            if not row:
                return None

            cursor = await db.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY id", (session_id,)
            )
            message_rows = await cursor.fetchall()

        return self._row_to_session(row, message_rows)

    async def update_session(
        self,
        session_id: str,
        phase: Optional[Phase] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Session:
        """Apply phase and/or context in a single UPDATE.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        assignments = ["updated_at = ?"]
        params: List[Any] = [_now()]
        if phase is not None:
            assignments.append("phase = ?")
            params.append(Phase(phase).value)
        if context is not None:
            assignments.append("context = ?")
            params.append(json.dumps(context))
        params.append(session_id)

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"UPDATE sessions SET {', '.join(assignments)} WHERE id = ?", params
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise SessionNotFoundError(f"Session {session_id} not found")

        log.debug(
            "session_updated",
            session_id=session_id,
            phase=Phase(phase).value if phase is not None else None,
            context_updated=context is not None,
        )
        updated = await self.get_session(session_id)
        if updated is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return updated

    async def add_message(self, session_id: str, message: Message) -> None:
        """Append a message, tagging it with the session's current phase if untagged.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA foreign_keys = ON")
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT phase FROM sessions WHERE id = ?", (session_id,))
            row = await cursor.fetchone()
            if not row:
                raise SessionNotFoundError(f"Session {session_id} not found")

            if message.phase is None:
                message = message.model_copy(update={"phase": Phase(row["phase"])})
            await self._insert_message(db, session_id, message)
            await db.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?", (_now(), session_id)
            )
            await db.commit()

    async def delete(self, session_id: str) -> bool:
        """Delete a session by ID. Returns True if deleted."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA foreign_keys = ON")
            cursor = await db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def _insert_message(
        self, db: aiosqlite.Connection, session_id: str, message: Message
    ) -> None:
        await db.execute(
            "INSERT INTO messages (session_id, role, content, phase, timestamp) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                session_id,
                message.role,
                message.content,
                message.phase.value if message.phase is not None else None,
                message.timestamp.isoformat(),
            ),
        )

    def _row_to_session(self, row: aiosqlite.Row, message_rows: List[aiosqlite.Row]) -> Session:
        return Session(
            id=row["id"],
            phase=Phase(row["phase"]),
            context=json.loads(row["context"]) if row["context"] else {},
            messages=[self._row_to_message(m) for m in message_rows],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_message(self, row: aiosqlite.Row) -> Message:
        return Message(
            role=row["role"],
            content=row["content"],
            phase=Phase(row["phase"]) if row["phase"] else None,
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )
