"""Session domain models for OKR conversation lifecycle management.

Core Models:
    - Message: One conversational turn entry (user or assistant)
    - Session: Conversation entity with its current phase and context

The session context is plain JSON-like data. OKR drafts live under the
``okrData`` key (``okrData.objective``, ``okrData.keyResults``) and are the
dot paths referenced by ``PhaseConfig.requires_data``.

Turn counting:
    - turn_count: number of user messages in the session
    - turns_in_phase(phase): user messages tagged with that phase
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from src.domain.models.phase import Phase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """Single entry of the message history.

    ``phase`` records the phase the session was in when the message was
    recorded and drives turns-in-phase counting. Untagged messages count
    toward the total turn count only.
    """

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    phase: Optional[Phase] = None


class Session(BaseModel):
    """OKR authoring session as seen by the phase engine.

    Attributes:
        - id: Session identifier
        - phase: Current conversation phase
        - context: Session data (OKR drafts, flags such as userConfirmed)
        - messages: Ordered message history (oldest first)
    """

    id: str
    phase: Phase = Phase.DISCOVERY
    context: Dict[str, Any] = Field(default_factory=dict)
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def turn_count(self) -> int:
        return sum(1 for m in self.messages if m.role == "user")

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def turns_in_phase(self, phase: Optional[Phase] = None) -> int:
        """User messages recorded while the session was in ``phase``."""
        target = phase or self.phase
        return sum(1 for m in self.messages if m.role == "user" and m.phase == target)

    def recent_messages(self, limit: int = 3) -> List[Message]:
        """Last ``limit`` messages, oldest first."""
        if limit <= 0:
            return []
        return list(self.messages[-limit:])
