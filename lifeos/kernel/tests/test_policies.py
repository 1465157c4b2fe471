"""
LifeOS Built-in Policies -- Scenario Tests

Each scenario builds a log, replays it for the day, and checks what one policy
(or the whole default registry) proposes.
"""

from lifeos.kernel.context import build_policy_context
from lifeos.kernel.events import DEFAULT_TEST_TS, make_event
from lifeos.kernel.policies import (
    backlog_pressure_valve,
    default_registry,
    end_of_day_review,
    financial_drift_watch,
    focus_protection,
    gentle_return,
    habit_downshift,
    momentum_builder,
    overload_guard,
    recovery_protocol,
)
from lifeos.kernel.policy_engine import run_policies
from lifeos.kernel.reducer import replay
from lifeos.kernel.types import LifeState, PolicyContext, PolicyFacts

DAY = "2026-01-01"


# ============================================================================
# Helpers
# ============================================================================


def ev(type, day=DAY, **metadata):
    return make_event(type, metadata, day=day)


def task(task_id, estimate=30):
    return ev("TASK_CREATED", task_id=task_id, title=f"Task {task_id}", estimate_min=estimate)


def busy(block_id, start, end):
    return ev("CAL_BLOCK_ADDED", block_id=block_id, start_min=start, end_min=end, kind="busy")


def plan(*estimates):
    items = [{"id": f"f{i}", "label": f"Focus {i}", "estimated_minutes": m} for i, m in enumerate(estimates)]
    return ev("PLAN_SET", focus_items=items, version=1)


def ctx_for(events, tz_offset_minutes=0, now=DEFAULT_TEST_TS):
    return build_policy_context(replay(events, DAY), events, now, tz_offset_minutes)


def types(actions):
    return [a.type for a in actions]


# ============================================================================
# Load and focus
# ============================================================================


class TestOverloadGuard:
    def test_heavy_overload_suggests_reducing_scope(self):
        events = [
            task("big", 120),
            task("mid", 60),
            task("small", 15),
            task("tiny", 5),
            busy("b1", 540, 960),
            plan(60, 60, 60),
        ]
        [action] = overload_guard(ctx_for(events))
        assert action.type == "SUGGEST_REDUCE_SCOPE"
        assert action.priority == 5
        assert action.cooldown_key == "load"
        assert action.payload["task_ids"] == ["big", "mid", "small"]
        assert action.payload["over_minutes"] == 120

    def test_moderate_overload_suggests_timeblocking(self):
        events = [busy("b1", 540, 900), plan(60, 60, 60)]
        [action] = overload_guard(ctx_for(events))
        assert action.type == "SUGGEST_TIMEBLOCK"
        assert action.priority == 4

    def test_balanced_day_is_quiet(self):
        assert overload_guard(ctx_for([plan(60, 60)])) == []


class TestFocusProtection:
    def test_fragmented_day_protects_a_focus_block(self):
        events = [busy(f"b{i}", 540 + i * 40, 560 + i * 40) for i in range(12)]
        ctx = ctx_for(events)
        assert ctx.state.longest_free_block == 20
        [action] = focus_protection(ctx)
        assert action.type == "PROTECT_FOCUS_BLOCK"
        assert action.payload["longest_free_block"] == 20

    def test_open_day_is_quiet(self):
        assert focus_protection(ctx_for([busy("b1", 540, 600)])) == []

    def test_low_focus_and_overloaded_suggests_replan(self):
        state = LifeState(day=DAY, focus_capacity="low", load="overloaded", mode="maintain")
        ctx = PolicyContext(now=DEFAULT_TEST_TS, state=state, recent_events=(), facts=PolicyFacts())
        [action] = focus_protection(ctx)
        assert action.type == "SUGGEST_REPLAN_DAY"
        assert action.priority == 5

    def test_replan_left_to_recovery_protocol_in_recovery_mode(self):
        state = LifeState(day=DAY, focus_capacity="low", load="overloaded", mode="recovery")
        ctx = PolicyContext(now=DEFAULT_TEST_TS, state=state, recent_events=(), facts=PolicyFacts())
        assert focus_protection(ctx) == []

    def test_low_focus_without_overload_suggests_light_day(self):
        state = LifeState(day=DAY, focus_capacity="low", load="balanced")
        ctx = PolicyContext(now=DEFAULT_TEST_TS, state=state, recent_events=(), facts=PolicyFacts())
        assert types(focus_protection(ctx)) == ["SUGGEST_LIGHT_DAY"]


# ============================================================================
# Momentum
# ============================================================================


class TestMomentumBuilder:
    def test_empty_log_suggests_light_day(self):
        [action] = momentum_builder(ctx_for([]))
        assert action.type == "SUGGEST_LIGHT_DAY"
        assert action.cooldown_key == "light_day"

    def test_stalled_with_tasks_suggests_smallest_task(self):
        [action] = momentum_builder(ctx_for([task("big", 90), task("small", 10)]))
        assert action.type == "SUGGEST_TINY_WIN"
        assert action.payload["task_id"] == "small"
        assert action.requires_user_confirm is False
        assert action.id == f"momentum_builder:SUGGEST_TINY_WIN:{DAY}:small"

    def test_recent_completions_are_enough(self):
        events = [task("a"), task("b"), ev("TASK_COMPLETED", task_id="a"), ev("TASK_COMPLETED", task_id="b")]
        assert momentum_builder(ctx_for(events)) == []


class TestGentleReturn:
    def _base(self):
        return [
            task("a", 10),
            task("b", 10),
            task("parked", 30),
            ev("TASK_COMPLETED", task_id="a"),
            ev("TASK_COMPLETED", task_id="b"),
            ev("TASK_PAUSED", task_id="parked", reason="manual"),
        ]

    def test_suggests_paused_task_that_fits(self):
        [action] = gentle_return(ctx_for(self._base()))
        assert action.type == "GENTLE_RETURN"
        assert action.payload["task_id"] == "parked"
        assert action.payload["remaining_minutes"] == 480

    def test_needs_two_completions_today(self):
        events = [e for e in self._base() if not (e.type == "TASK_COMPLETED" and e.metadata["task_id"] == "b")]
        assert gentle_return(ctx_for(events)) == []

    def test_skips_tasks_resumed_recently(self):
        events = self._base() + [
            ev("TASK_RESUMED", task_id="parked"),
            ev("TASK_PAUSED", task_id="parked", reason="manual"),
        ]
        assert gentle_return(ctx_for(events)) == []


class TestRecoveryProtocol:
    def test_fragile_habits_trigger_recovery(self):
        events = [task("a", 45), task("b", 10), task("c", 20)]
        events += [ev("HABIT_MISSED", habit_id="walk") for _ in range(4)]
        ctx = ctx_for(events)
        assert ctx.state.mode == "recovery"
        [action] = recovery_protocol(ctx)
        assert action.type == "MICRO_RECOVERY_PROTOCOL"
        assert action.payload == {"tiny_win_task_id": "b", "pause_task_ids": ["c", "a"], "rest_minutes": 15}

    def test_quiet_outside_recovery(self):
        assert recovery_protocol(ctx_for([task("a")])) == []


# ============================================================================
# Habits and money
# ============================================================================


class TestHabitDownshift:
    def test_low_completion_suggests_one_downshift(self):
        events = [ev("HABIT_DONE", habit_id="walk")]
        events += [ev("HABIT_MISSED", habit_id="walk") for _ in range(4)]
        ctx = ctx_for(events)
        assert ctx.facts.habit_completion_7_days == 0.2

        actions = run_policies(default_registry(), ctx)
        downshifts = [a for a in actions if a.type == "SUGGEST_HABIT_DOWNSHIFT"]
        assert len(downshifts) == 1
        assert downshifts[0].priority > 2
        assert downshifts[0].payload["habit_id"] == "walk"
        assert downshifts[0].payload["new_target"] == "3x/week"

    def test_picks_most_missed_habit(self):
        events = [ev("HABIT_MISSED", habit_id="read"), ev("HABIT_MISSED", habit_id="walk")]
        events += [ev("HABIT_MISSED", habit_id="walk")]
        [action] = habit_downshift(ctx_for(events))
        assert action.payload["habit_id"] == "walk"
        assert action.cooldown_key == "habit:walk"

    def test_needs_enough_samples(self):
        events = [ev("HABIT_MISSED", habit_id="walk"), ev("HABIT_MISSED", habit_id="walk")]
        assert habit_downshift(ctx_for(events)) == []

    def test_misses_outside_the_week_do_not_count(self):
        events = [ev("HABIT_MISSED", day="2025-12-20", habit_id="walk") for _ in range(5)]
        assert habit_downshift(ctx_for(events)) == []


class TestFinancialDriftWatch:
    def test_over_budget_category_suggests_no_spend(self):
        events = [
            ev("BUDGET_SET", category="food", monthly_limit=100),
            ev("BUDGET_SET", category="fun", monthly_limit=50),
            ev("EXPENSE_ADDED", amount=120, category="food"),
            ev("EXPENSE_ADDED", amount=10, category="fun"),
        ]
        [action] = financial_drift_watch(ctx_for(events))
        assert action.type == "SUGGEST_NO_SPEND_TODAY"
        assert action.payload["category"] == "food"
        assert action.cooldown_key == "financial_drift:food"

    def test_exactly_on_budget_is_quiet(self):
        events = [
            ev("BUDGET_SET", category="food", monthly_limit=100),
            ev("EXPENSE_ADDED", amount=100, category="food"),
        ]
        assert financial_drift_watch(ctx_for(events)) == []


# ============================================================================
# Schedule and backlog
# ============================================================================


class TestEndOfDayReview:
    def test_fires_after_eight_pm_local(self):
        # 12:00 UTC is 20:00 at UTC+8
        [action] = end_of_day_review(ctx_for([], tz_offset_minutes=480))
        assert action.type == "ASK_REFLECTION_QUESTION"
        assert action.priority == 1
        assert action.payload["question_id"] == "q-low-completion"

    def test_quiet_at_noon(self):
        assert end_of_day_review(ctx_for([], tz_offset_minutes=0)) == []


class TestBacklogPressureValve:
    def test_pressure_over_limit_suggests_cleanup(self):
        ctx = ctx_for([task(f"t{i}") for i in range(13)])
        assert ctx.state.backlog_pressure == 65
        [action] = backlog_pressure_valve(ctx)
        assert action.type == "SUGGEST_BACKLOG_CLEANUP"
        assert action.payload == {"count": 2}

    def test_small_backlog_is_quiet(self):
        assert backlog_pressure_valve(ctx_for([task(f"t{i}") for i in range(12)])) == []


class TestDefaultRegistry:
    def test_registration_order(self):
        assert default_registry().names() == [
            "recovery_protocol",
            "overload_guard",
            "focus_protection",
            "momentum_builder",
            "gentle_return",
            "habit_downshift",
            "financial_drift_watch",
            "backlog_pressure_valve",
            "end_of_day_review",
        ]

    def test_fresh_registries_are_independent(self):
        one = default_registry()
        one.unregister("end_of_day_review")
        assert "end_of_day_review" in default_registry()
