"""
LifeOS Kernel — Policy Context

Builds the read-only view handed to policies: the current state, a bounded
window of recent events, and facts precomputed from that window so that no
policy has to scan the log itself.
"""

from __future__ import annotations

from collections.abc import Iterable

from lifeos.kernel.types import (
    Event,
    EventType,
    LifeState,
    PolicyContext,
    PolicyFacts,
    normalize_offset_minutes,
    shift_day,
)

RECENT_WINDOW_DAYS = 7
RECENT_EVENT_LIMIT = 200
COMPLETION_WINDOW_DAYS = 3


def recent_window(events: Iterable[Event], day: str) -> list[Event]:
    """Events dated within the last 7 local days up to `day`, newest 200 at most."""
    start = shift_day(day, -(RECENT_WINDOW_DAYS - 1))
    window = [e for e in events if e.day is not None and start <= e.day <= day]
    return window[-RECENT_EVENT_LIMIT:]


def compute_facts(state: LifeState, window: list[Event]) -> PolicyFacts:
    completion_start = shift_day(state.day, -(COMPLETION_WINDOW_DAYS - 1))
    completed = 0
    done = 0
    missed = 0
    for event in window:
        if event.type == EventType.TASK_COMPLETED and event.day >= completion_start:
            completed += 1
        elif event.type == EventType.HABIT_DONE:
            done += 1
        elif event.type == EventType.HABIT_MISSED:
            missed += 1

    samples = done + missed
    return PolicyFacts(
        planned_minutes=state.planned_minutes,
        free_minutes=state.free_minutes,
        completed_last_3_days=completed,
        habit_done_7_days=done,
        habit_missed_7_days=missed,
        habit_completion_7_days=round(done / samples, 4) if samples else 1.0,
        streak_breaks=state.streak_breaks,
        spend_vs_intent=state.spend_vs_intent,
        backlog_count=len(state.open_tasks()),
    )


def build_policy_context(
    state: LifeState,
    events: Iterable[Event],
    now: int,
    tz_offset_minutes: int = 0,
) -> PolicyContext:
    """
    Assemble a PolicyContext for one evaluation.

    `events` is the user's ordered log (or any ordered superset of the window).
    `now` is supplied by the caller so the context is reproducible.
    """
    window = recent_window(events, state.day)
    return PolicyContext(
        now=now,
        state=state,
        recent_events=tuple(window),
        facts=compute_facts(state, window),
        tz_offset_minutes=normalize_offset_minutes(tz_offset_minutes),
    )
