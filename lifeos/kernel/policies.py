"""
LifeOS Kernel — Built-in Policies

Each policy encodes one behavioural heuristic. Policies read the PolicyContext
and return data only. Action ids are deterministic
(`<policy>:<type>:<day>[:<discriminator>]`) so a refresh re-proposes the same
suggestion instead of a new one, and feedback recorded against an id sticks.
"""

from __future__ import annotations

import math
from collections import Counter

from lifeos.kernel.policy_engine import Policy, PolicyRegistry
from lifeos.kernel.types import EventType, PolicyContext, ProposedAction

OVERLOAD_THRESHOLD = 1.05
OVERLOAD_HIGH_THRESHOLD = 1.5
TINY_WIN_MAX_MIN = 10
MIN_USABLE_FOCUS_BLOCK = 25
HABIT_DOWNSHIFT_RATIO = 0.5
HABIT_MIN_SAMPLES = 3
BACKLOG_PRESSURE_LIMIT = 60
BACKLOG_COUNT_LIMIT = 15
END_OF_DAY_MINUTE = 20 * 60
GENTLE_RETURN_MIN_COMPLETED = 2
MICRO_REST_MIN = 15


def _action(
    policy: str,
    type: str,
    ctx: PolicyContext,
    priority: int,
    code: str,
    detail: str,
    *,
    payload: dict | None = None,
    cooldown_key: str | None = None,
    discriminator: str | None = None,
    requires_user_confirm: bool = True,
) -> ProposedAction:
    action_id = f"{policy}:{type}:{ctx.state.day}"
    if discriminator:
        action_id = f"{action_id}:{discriminator}"
    return ProposedAction(
        id=action_id,
        type=type,
        priority=priority,
        reason={"code": code, "detail": detail},
        payload=payload or {},
        cooldown_key=cooldown_key,
        requires_user_confirm=requires_user_confirm,
    )


# ---------------------------------------------------------------------------
# Time and load
# ---------------------------------------------------------------------------


def overload_guard(ctx: PolicyContext) -> list[ProposedAction]:
    planned = ctx.facts.planned_minutes
    free = ctx.facts.free_minutes
    ratio = planned / max(1, free)
    if ratio <= OVERLOAD_THRESHOLD:
        return []

    over = max(0, planned - free)
    if ratio > OVERLOAD_HIGH_THRESHOLD:
        largest = sorted(ctx.state.open_tasks(), key=lambda item: (-item[1]["estimate_min"], item[0]))
        return [
            _action(
                "overload_guard",
                "SUGGEST_REDUCE_SCOPE",
                ctx,
                5,
                "OVERLOAD_HIGH",
                f"Planning {round(ratio * 100)}% of free time",
                payload={"over_minutes": over, "task_ids": [tid for tid, _ in largest[:3]]},
                cooldown_key="load",
            )
        ]
    return [
        _action(
            "overload_guard",
            "SUGGEST_TIMEBLOCK",
            ctx,
            4,
            "OVERLOAD_MODERATE",
            "Some tasks need better scheduling",
            payload={"over_minutes": over},
            cooldown_key="load",
        )
    ]


def focus_protection(ctx: PolicyContext) -> list[ProposedAction]:
    state = ctx.state
    if state.focus_capacity in ("low", "very_low"):
        if state.load == "overloaded":
            # The recovery protocol already replans a day in recovery mode
            if state.mode == "recovery":
                return []
            return [
                _action(
                    "focus_protection",
                    "SUGGEST_REPLAN_DAY",
                    ctx,
                    5,
                    "LOW_CAPACITY",
                    "Low focus, reschedule heavy work",
                    payload={"mode": "recovery"},
                    cooldown_key="replan",
                )
            ]
        return [
            _action(
                "focus_protection",
                "SUGGEST_LIGHT_DAY",
                ctx,
                3,
                "LOW_CAPACITY",
                "Focus capacity is low today",
                cooldown_key="light_day",
            )
        ]

    if state.busy_minutes > 0 and state.longest_free_block < MIN_USABLE_FOCUS_BLOCK:
        return [
            _action(
                "focus_protection",
                "PROTECT_FOCUS_BLOCK",
                ctx,
                3,
                "FRAGMENTED_DAY",
                f"Longest free stretch is {state.longest_free_block} min",
                payload={"longest_free_block": state.longest_free_block, "min_block": MIN_USABLE_FOCUS_BLOCK},
                cooldown_key="focus_block",
            )
        ]
    return []


# ---------------------------------------------------------------------------
# Momentum
# ---------------------------------------------------------------------------


def momentum_builder(ctx: PolicyContext) -> list[ProposedAction]:
    if ctx.state.momentum != "stalled" or ctx.facts.completed_last_3_days >= 2:
        return []

    open_tasks = ctx.state.open_tasks()
    if open_tasks:
        # open_tasks() is sorted by estimate, so a task under the tiny-win size comes first
        task_id, task = open_tasks[0]
        detail = (
            "A small win could restart your momentum"
            if task["estimate_min"] <= TINY_WIN_MAX_MIN
            else "Start with your smallest task"
        )
        return [
            _action(
                "momentum_builder",
                "SUGGEST_TINY_WIN",
                ctx,
                4,
                "MOMENTUM_STALLED",
                detail,
                payload={"task_id": task_id, "estimate_min": task["estimate_min"]},
                cooldown_key="momentum",
                discriminator=task_id,
                requires_user_confirm=False,
            )
        ]

    return [
        _action(
            "momentum_builder",
            "SUGGEST_LIGHT_DAY",
            ctx,
            3,
            "MOMENTUM_STALLED",
            "Try a lighter day to build momentum",
            cooldown_key="light_day",
        )
    ]


def gentle_return(ctx: PolicyContext) -> list[ProposedAction]:
    state = ctx.state
    if state.load == "overloaded" or state.completed_tasks_count < GENTLE_RETURN_MIN_COMPLETED:
        return []

    recently_resumed = {
        e.metadata.get("task_id") for e in ctx.recent_events if e.type == EventType.TASK_RESUMED
    }
    room = max(0, state.free_minutes - state.planned_minutes)
    paused = sorted(
        (
            (tid, t)
            for tid, t in state.tasks.items()
            if t["status"] == "paused" and tid not in recently_resumed and t["estimate_min"] <= room
        ),
        key=lambda item: (item[1]["estimate_min"], item[1]["priority"], item[0]),
    )
    if not paused:
        return []

    task_id, task = paused[0]
    return [
        _action(
            "gentle_return",
            "GENTLE_RETURN",
            ctx,
            4,
            "ROOM_TO_RESUME",
            f"{task['title']} fits in the {room} min left today",
            payload={"task_id": task_id, "estimate_min": task["estimate_min"], "remaining_minutes": room},
            cooldown_key="gentle_return",
            discriminator=task_id,
        )
    ]


def recovery_protocol(ctx: PolicyContext) -> list[ProposedAction]:
    if ctx.state.mode != "recovery":
        return []
    open_tasks = ctx.state.open_tasks()
    return [
        _action(
            "recovery_protocol",
            "MICRO_RECOVERY_PROTOCOL",
            ctx,
            5,
            "RECOVERY_MODE",
            "Keep one tiny win, pause the rest, take a short rest",
            payload={
                "tiny_win_task_id": open_tasks[0][0] if open_tasks else None,
                "pause_task_ids": [tid for tid, _ in open_tasks[1:]],
                "rest_minutes": MICRO_REST_MIN,
            },
            cooldown_key="recovery",
        )
    ]


# ---------------------------------------------------------------------------
# Habits and money
# ---------------------------------------------------------------------------


def habit_downshift(ctx: PolicyContext) -> list[ProposedAction]:
    facts = ctx.facts
    samples = facts.habit_done_7_days + facts.habit_missed_7_days
    if samples < HABIT_MIN_SAMPLES or facts.habit_completion_7_days >= HABIT_DOWNSHIFT_RATIO:
        return []

    misses = Counter(
        e.metadata.get("habit_id") for e in ctx.recent_events if e.type == EventType.HABIT_MISSED
    )
    if not misses:
        return []
    habit_id = min(misses, key=lambda hid: (-misses[hid], str(hid)))
    return [
        _action(
            "habit_downshift",
            "SUGGEST_HABIT_DOWNSHIFT",
            ctx,
            3,
            "HABIT_COMPLETION_LOW",
            f"{round(facts.habit_completion_7_days * 100)}% completion over 7 days",
            payload={
                "habit_id": habit_id,
                "new_target": "3x/week",
                "completion_7_days": facts.habit_completion_7_days,
            },
            cooldown_key=f"habit:{habit_id}",
            discriminator=habit_id,
        )
    ]


def financial_drift_watch(ctx: PolicyContext) -> list[ProposedAction]:
    state = ctx.state
    actions = []
    for category, limit in sorted(state.budgets.items()):
        if limit <= 0:
            continue
        spent = state.spend_by_category.get(category, 0.0)
        if spent / limit <= 1.0:
            continue
        actions.append(
            _action(
                "financial_drift_watch",
                "SUGGEST_NO_SPEND_TODAY",
                ctx,
                4,
                "FINANCIAL_DRIFT",
                f"{category} spending is {round(spent / limit * 100)}% of budget",
                payload={"category": category, "spent": spent, "limit": limit},
                cooldown_key=f"financial_drift:{category}",
                discriminator=category,
                requires_user_confirm=False,
            )
        )
    return actions


# ---------------------------------------------------------------------------
# Schedule and backlog
# ---------------------------------------------------------------------------


def reflection_questions(ctx: PolicyContext) -> list[dict[str, str]]:
    state = ctx.state
    questions = []
    if state.completion_rate < 0.5:
        questions.append({"id": "q-low-completion", "text": "What got in the way of your plans today?"})
    if state.momentum == "stalled":
        questions.append({"id": "q-momentum", "text": "What's one small thing that felt good to do?"})
    if state.load == "overloaded":
        questions.append({"id": "q-overload", "text": "What would you remove from today if you could?"})
    if not questions:
        questions.append({"id": "q-general", "text": "What's one thing you're grateful for today?"})
    return questions


def end_of_day_review(ctx: PolicyContext) -> list[ProposedAction]:
    if ctx.local_minute_of_day() < END_OF_DAY_MINUTE:
        return []
    question = reflection_questions(ctx)[0]
    return [
        _action(
            "end_of_day_review",
            "ASK_REFLECTION_QUESTION",
            ctx,
            1,
            "END_OF_DAY",
            "Time for reflection",
            payload={"question_id": question["id"], "text": question["text"]},
            cooldown_key="end_of_day",
            requires_user_confirm=False,
        )
    ]


def backlog_pressure_valve(ctx: PolicyContext) -> list[ProposedAction]:
    count = ctx.facts.backlog_count
    if ctx.state.backlog_pressure <= BACKLOG_PRESSURE_LIMIT and count < BACKLOG_COUNT_LIMIT:
        return []
    return [
        _action(
            "backlog_pressure_valve",
            "SUGGEST_BACKLOG_CLEANUP",
            ctx,
            2,
            "BACKLOG_HIGH",
            f"{count} items waiting",
            payload={"count": max(1, math.ceil(count / 10))},
            cooldown_key="backlog",
        )
    ]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

BUILTIN_POLICIES: tuple[Policy, ...] = (
    Policy("recovery_protocol", recovery_protocol, cooldown_hours=12),
    Policy("overload_guard", overload_guard, cooldown_hours=4),
    Policy("focus_protection", focus_protection, cooldown_hours=4),
    Policy("momentum_builder", momentum_builder, cooldown_hours=6),
    Policy("gentle_return", gentle_return, cooldown_hours=24),
    Policy("habit_downshift", habit_downshift, cooldown_hours=24),
    Policy("financial_drift_watch", financial_drift_watch, cooldown_hours=24),
    Policy("backlog_pressure_valve", backlog_pressure_valve, cooldown_hours=24),
    Policy("end_of_day_review", end_of_day_review, cooldown_hours=12),
)


def default_registry() -> PolicyRegistry:
    """A fresh registry holding every built-in policy, in priority-tie order."""
    return PolicyRegistry(list(BUILTIN_POLICIES))
