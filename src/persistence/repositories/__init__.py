"""Repository implementations."""

from src.persistence.repositories.memory_session_repo import InMemorySessionStore
from src.persistence.repositories.session_repo import SessionRepository

__all__ = [
    "SessionRepository",
    "InMemorySessionStore",
]
