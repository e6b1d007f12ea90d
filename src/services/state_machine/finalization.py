"""Finalization-signal detection over recent conversation messages.

Two tiers of phrases:

- strong: explicit intent to finalize ("let's finalize", "i approve").
  Always counts.
- weak: general approval ("looks good", "perfect"). Counts only once the
  conversation has more than ``weak_signal_min_turns`` turns, or when
  ``weak_signal_min_matches`` distinct weak phrases co-occur.

Only user messages are scanned, and messages phrased as questions are
ignored. Phrases match whole words only, and a phrase preceded by a
negation in the same clause ("not approved", "isn't perfect") does not
count.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Sequence

import structlog

from src.core.config import FinalizationPolicy
from src.domain.models.session import Message

log = structlog.get_logger(__name__)

NEGATIONS = frozenset({"not", "no", "never"})
NEGATION_WINDOW = 2

_CLAUSE_BREAK = re.compile(r"[.,;:!]")
_WORD = re.compile(r"[a-z']+")


@dataclass(frozen=True)
class FinalizationSignal:
    """Detection outcome.

    Attributes:
        detected: Whether the window contains a qualifying signal
        confidence: "high" for strong phrases, "medium" for weak-tier only
        strong_matches: Strong phrases found (most recent message first)
        weak_matches: Weak phrases found (most recent message first)
    """

    detected: bool = False
    confidence: Optional[str] = None
    strong_matches: List[str] = field(default_factory=list)
    weak_matches: List[str] = field(default_factory=list)

    @property
    def is_strong(self) -> bool:
        return self.detected and self.confidence == "high"

    @property
    def signal(self) -> str:
        """First matched phrase, used as the user-approval trigger signal."""
        matches = self.strong_matches or self.weak_matches
        return matches[0] if matches else "finalization_detected"


NO_SIGNAL = FinalizationSignal()


class FinalizationDetector:
    """Scan the latest messages for intent to finalize the current phase."""

    def __init__(self, policy: Optional[FinalizationPolicy] = None):
        self.policy = policy or FinalizationPolicy()
        self._strong = [(p.lower(), _phrase_pattern(p)) for p in self.policy.strong_phrases]
        self._weak = [(p.lower(), _phrase_pattern(p)) for p in self.policy.weak_phrases]

    def detect(self, messages: Sequence[Message], turn_count: int) -> FinalizationSignal:
        """Detect a finalization signal.

        Args:
            messages: Message history, oldest first
            turn_count: Total conversation turns so far

        Returns:
            FinalizationSignal (NO_SIGNAL when nothing qualifies)
        """
        if not messages:
            return NO_SIGNAL

        window = list(messages[-self.policy.window_size:])
        strong_matches: List[str] = []
        weak_matches: List[str] = []

        for message in reversed(window):
            if message.role != "user":
                continue
            text = message.content.lower().replace("\u2019", "'")
            if "?" in text:
                continue
            for phrase, pattern in self._strong:
                if phrase not in strong_matches and _affirms(pattern, text):
                    strong_matches.append(phrase)
            for phrase, pattern in self._weak:
                if phrase not in weak_matches and _affirms(pattern, text):
                    weak_matches.append(phrase)

        if strong_matches:
            confidence = "high"
        elif weak_matches and (
            turn_count > self.policy.weak_signal_min_turns
            or len(weak_matches) >= self.policy.weak_signal_min_matches
        ):
            confidence = "medium"
        else:
            if weak_matches:
                log.debug(
                    "weak_finalization_signal_ignored",
                    weak_matches=weak_matches,
                    turn_count=turn_count,
                    weak_signal_min_turns=self.policy.weak_signal_min_turns,
                )
            return NO_SIGNAL

        signal = FinalizationSignal(
            detected=True,
            confidence=confidence,
            strong_matches=strong_matches,
            weak_matches=weak_matches,
        )
        log.info(
            "finalization_signal_detected",
            confidence=confidence,
            strong_matches=strong_matches,
            weak_matches=weak_matches,
            turn_count=turn_count,
        )
        return signal


def _phrase_pattern(phrase: str) -> Pattern[str]:
    return re.compile(rf"\b{re.escape(phrase.lower())}\b")


def _is_negated(text: str, start: int) -> bool:
    """Whether a negation appears just before ``start`` in the same clause."""
    clause = _CLAUSE_BREAK.split(text[:start])[-1]
    preceding = _WORD.findall(clause)[-NEGATION_WINDOW:]
    return any(word in NEGATIONS or word.endswith("n't") for word in preceding)


def _affirms(pattern: Pattern[str], text: str) -> bool:
    """True if any occurrence of the phrase is not negated."""
    return any(not _is_negated(text, m.start()) for m in pattern.finditer(text))
