"""
LifeOS Reducer -- Determinism Tests

The reducer is a pure function of (events, day). Replaying the same log
yields a bit-identical LifeState every time, which is what lets a client and
the server compare state hashes after reconciliation.

Covers:
  - N-times replay identity
  - Incremental reduce vs. full replay equivalence
  - Replay of a prefix (time travel) matches replay on that day
  - Hash stability and sensitivity
"""

import copy
import json

from lifeos.kernel.events import make_event
from lifeos.kernel.hashing import hash_state
from lifeos.kernel.reducer import create_initial_state, reduce, replay

DAY = "2026-01-03"


# ============================================================================
# Helpers
# ============================================================================


def state_json(state):
    """Canonical JSON with sorted keys for comparison."""
    return json.dumps(state.to_dict(), sort_keys=True)


def week_of_events():
    """Three days of mixed activity covering every event family."""
    events = []
    seq = 0

    def e(type, day, **metadata):
        nonlocal seq
        seq += 1
        events.append(make_event(type, metadata, day=day, seq=seq, key=f"k{seq}"))

    e("SESSION_START", "2026-01-01")
    e("BUDGET_SET", "2026-01-01", category="food", monthly_limit=300)
    e("TASK_CREATED", "2026-01-01", task_id="t1", title="Inbox zero", estimate_min=15)
    e("TASK_CREATED", "2026-01-01", task_id="t2", title="Draft proposal", estimate_min=90, priority=1)
    e("TASK_CREATED", "2026-01-01", task_id="t3", title="Call bank", estimate_min=10)
    e("HABIT_DONE", "2026-01-01", habit_id="walk")
    e("EXPENSE_ADDED", "2026-01-01", amount=42.5, category="food")
    e("TASK_COMPLETED", "2026-01-02", task_id="t1")
    e("MOMENTUM_ADJUSTED", "2026-01-02", delta=15)
    e("HABIT_MISSED", "2026-01-02", habit_id="walk")
    e("TASK_PAUSED", "2026-01-02", task_id="t2", reason="plan_reset")
    e("PLAN_SET", "2026-01-03", focus_items=[{"id": "a", "label": "A", "estimated_minutes": 45}], version=1)
    e("CAL_BLOCK_ADDED", "2026-01-03", block_id="b1", start_min=600, end_min=720, kind="busy")
    e("CAL_BLOCK_ADDED", "2026-01-03", block_id="f1", start_min=780, end_min=840, kind="focus")
    e("TASK_COMPLETED", "2026-01-03", task_id="t3")
    e("MOMENTUM_ADJUSTED", "2026-01-03", delta=10)
    e("CAL_BLOCK_FINISHED", "2026-01-03", block_id="f1", completed=True)
    e("EXPENSE_ADDED", "2026-01-03", amount=280, category="food")
    e("COACHING_FEEDBACK", "2026-01-03", suggestion_id="s1", action="ignored")
    e("REST_ACCEPTED", "2026-01-03", minutes=15)
    e("SESSION_END", "2026-01-03")
    return events


# ============================================================================
# Determinism
# ============================================================================


class TestDeterminism:
    def test_replay_is_identical_every_time(self):
        events = week_of_events()
        expected = state_json(replay(events, DAY))
        for _ in range(50):
            assert state_json(replay(events, DAY)) == expected

    def test_replay_does_not_mutate_events(self):
        events = week_of_events()
        before = copy.deepcopy([e.to_dict() for e in events])
        replay(events, DAY)
        assert [e.to_dict() for e in events] == before

    def test_incremental_matches_full_replay(self):
        events = week_of_events()
        state = create_initial_state(DAY)
        for event in events:
            state = reduce(state, event)
        assert state_json(state) == state_json(replay(events, DAY))

    def test_replay_for_an_earlier_day_matches_prefix(self):
        events = week_of_events()
        prefix = [e for e in events if e.day <= "2026-01-02"]
        assert state_json(replay(events, "2026-01-02")) == state_json(replay(prefix, "2026-01-02"))

    def test_snapshot_values(self):
        state = replay(week_of_events(), DAY)
        assert state.completed_tasks_count == 1
        assert state.completed_minutes == 70
        assert state.momentum_points == 10
        assert state.spend_by_category == {"food": 322.5}
        assert state.financial_drift == "risk"
        assert state.busy_minutes == 120
        assert state.planned_minutes == 105
        assert state.rest_minutes == 15


class TestStateHash:
    def test_hash_is_stable(self):
        events = week_of_events()
        assert hash_state(replay(events, DAY)) == hash_state(replay(events, DAY))
        assert len(hash_state(replay(events, DAY))) == 16

    def test_hash_changes_with_the_log(self):
        events = week_of_events()
        assert hash_state(replay(events, DAY)) != hash_state(replay(events[:-2], DAY))
