#!/usr/bin/env python3
"""
Drive a scripted OKR conversation through every phase.

Uses the in-memory session store and canned quality scores, printing the
readiness and transition outcome of each turn, then the audit statistics.

Usage:
    python scripts/run_phase_simulation.py
    python scripts/run_phase_simulation.py --rollback
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Configure logging first (before importing other modules)
from src.core.logging import bind_context, clear_context, configure_logging

configure_logging()

from src.domain.models.phase import Phase
from src.domain.models.quality import QualityScores
from src.domain.models.session import Message, Session
from src.persistence.repositories.memory_session_repo import InMemorySessionStore
from src.services.state_machine import create_phase_state_machine, detect_rollback_intent

OBJECTIVE = "Become the most trusted onboarding experience for small business customers"
KEY_RESULTS = [
    "Increase 30-day activation rate from 42% to 65%",
    "Reduce median time-to-first-invoice from 6 days to 2 days",
    "Raise onboarding NPS from 21 to 45",
]

# (user message, context update, quality scores)
SCRIPT = [
    ("We want to improve how new customers get started", {}, None),
    (
        "Our objective is to make onboarding great",
        {"okrData": {"objective": OBJECTIVE}},
        {"objective": {"overall": 72, "dimensions": {"outcomeOrientation": 68, "clarity": 70, "inspiration": 65}}},
    ),
    ("I think that captures what we mean", {}, None),
    ("Let's make it more outcome focused", {}, None),
    (
        "This is good, move to next phase",
        {},
        {"objective": {"overall": 84, "dimensions": {"outcomeOrientation": 82, "clarity": 80, "inspiration": 75}}},
    ),
    ("First key result: activation from 42% to 65%", {"okrData": {"objective": OBJECTIVE, "keyResults": KEY_RESULTS[:1]}}, None),
    ("Second: time to first invoice down to 2 days", {"okrData": {"objective": OBJECTIVE, "keyResults": KEY_RESULTS[:2]}}, None),
    (
        "And NPS from 21 to 45",
        {"okrData": {"objective": OBJECTIVE, "keyResults": KEY_RESULTS}},
        {
            "objective": {"overall": 84},
            "keyResults": [{"overall": 78}, {"overall": 74}, {"overall": 81}],
            "overall": {"score": 80},
        },
    ),
    ("I approve, these are final", {}, None),
]


async def main():
    with_rollback = "--rollback" in sys.argv[1:]

    store = InMemorySessionStore()
    machine = create_phase_state_machine(store)
    machine.start()

    session = await store.create(Session(id="simulation"))
    bind_context(simulation=True)
    scores = QualityScores()

    try:
        for turn, (text, context_update, raw_scores) in enumerate(SCRIPT, start=1):
            await store.add_message(session.id, Message(role="user", content=text))
            if context_update:
                await store.update_session(session.id, context=context_update)
            if raw_scores is not None:
                scores = QualityScores.model_validate(raw_scores)

            session = await store.get_session(session.id)
            result = await machine.attempt_transition(session, scores)

            status = (
                f"-> {result.new_phase.value} ({result.trigger.type})"
                if result.transitioned
                else f"stays ({'; '.join(result.errors)})"
            )
            print(f"[turn {turn:2d}] {session.phase.value:<13} {status}")

            await store.add_message(
                session.id, Message(role="assistant", content="Noted, let's continue.")
            )

        if with_rollback:
            request = "Can we go back to refinement"
            intent = detect_rollback_intent(request)
            if intent.intent:
                target = intent.target_phase or "previous"
                rollback = await machine.rollback(session.id, target)
                print(f"\nRollback to {target}: success={rollback.success}")

        final = await store.get_session(session.id)
        stats = machine.events.get_statistics()
        print(f"\nFinal phase: {final.phase.value}")
        print(f"Transitions: {stats.successful_transitions} ok, {stats.failed_transitions} failed")
        for key, count in stats.by_phase_transition.items():
            print(f"  {key}: {count}")
        print(f"Snapshots: {machine.snapshots.get_snapshot_count(session.id)}")
        print(f"Completed: {final.phase == Phase.COMPLETED}")
    finally:
        await machine.shutdown()
        clear_context()


if __name__ == "__main__":
    asyncio.run(main())
