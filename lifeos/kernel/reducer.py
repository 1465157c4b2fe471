"""
LifeOS Kernel — Reducer

Pure function: (state, event) → state
No side effects. No IO. No clock. Deterministic.

Given the same sequence of events and the same day, produces the same LifeState
every time. Anything time-dependent (the local day an event belongs to) was
embedded in the event's metadata when it was appended.

Unknown event types are a no-op so older clients can replay logs written by
newer ones. Known event types with missing or ill-typed metadata raise
CorruptEvent: replay fails closed rather than skipping.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from typing import Any

from lifeos.kernel.errors import CorruptEvent
from lifeos.kernel.types import (
    FEEDBACK_ACTIONS,
    Event,
    EventType,
    LifeState,
    is_valid_day,
    parse_event_type,
)

# ---------------------------------------------------------------------------
# Weights and bounds
# ---------------------------------------------------------------------------

BACKLOG_CREATE_WEIGHT = 5
BACKLOG_COMPLETE_WEIGHT = 3
BACKLOG_DELETE_WEIGHT = 5

STREAK_DONE_WEIGHT = 5
STREAK_MISSED_WEIGHT = 10
STREAK_MIN = 0
STREAK_MAX = 100

DAILY_CAPACITY_MIN = 480
WORKDAY_START_MIN = 9 * 60
WORKDAY_END_MIN = 17 * 60

OPEN_STATUSES = ("active", "paused")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def create_initial_state(day: str) -> LifeState:
    """The state for a day before any event has been folded in."""
    if not is_valid_day(day):
        raise ValueError(f"day must be YYYY-MM-DD, got {day!r}")
    return LifeState(day=day)


def reduce(state: LifeState, event: Event) -> LifeState:
    """
    Apply one event to the state. The input state is never modified.

    Returns the same object for event types this kernel does not know.
    """
    event_type = parse_event_type(event.type)
    if event_type is None:
        return state

    day = event_day(event)
    next_state = copy.deepcopy(state)
    _HANDLERS[event_type](next_state, event, day)
    _derive(next_state)
    return next_state


def replay(events: Iterable[Event], day: str) -> LifeState:
    """
    Rebuild the state for `day` from scratch.
    Only events whose local day is on or before `day` are folded.
    """
    state = create_initial_state(day)
    for event in events:
        if parse_event_type(event.type) is None:
            continue
        if event_day(event) > day:
            continue
        state = reduce(state, event)
    return state


def event_day(event: Event) -> str:
    day = event.metadata.get("day")
    if not is_valid_day(day):
        raise CorruptEvent(
            f"{event.type} event has no valid metadata.day: {day!r}",
            idempotency_key=event.idempotency_key,
        )
    return day


# ---------------------------------------------------------------------------
# Metadata access (fail closed)
# ---------------------------------------------------------------------------


def _field(event: Event, key: str, kinds: tuple[type, ...], label: str) -> Any:
    value = event.metadata.get(key)
    if isinstance(value, bool) and bool not in kinds:
        value = None
    if not isinstance(value, kinds):
        raise CorruptEvent(
            f"{event.type} metadata.{key} must be {label}, got {value!r}",
            idempotency_key=event.idempotency_key,
        )
    return value


def _str(event: Event, key: str) -> str:
    value = _field(event, key, (str,), "a string")
    if not value:
        raise CorruptEvent(f"{event.type} metadata.{key} is empty", idempotency_key=event.idempotency_key)
    return value


def _int(event: Event, key: str) -> int:
    return _field(event, key, (int,), "an integer")


def _num(event: Event, key: str) -> float:
    return _field(event, key, (int, float), "a number")


def _bool(event: Event, key: str) -> bool:
    return _field(event, key, (bool,), "a boolean")


def _list(event: Event, key: str) -> list:
    return _field(event, key, (list,), "a list")


def _same_month(a: str, b: str) -> bool:
    return a[:7] == b[:7]


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


def _handle_task_created(state: LifeState, event: Event, day: str) -> None:
    task_id = _str(event, "task_id")
    title = _str(event, "title")
    estimate = _int(event, "estimate_min")
    if task_id in state.tasks:
        return
    state.tasks[task_id] = {
        "id": task_id,
        "title": title,
        "estimate_min": estimate,
        "priority": event.metadata.get("priority", 2),
        "status": "active",
        "due_date": event.metadata.get("due_date"),
        "created_day": day,
        "completed_day": None,
    }
    state.backlog_pressure = state.backlog_pressure + BACKLOG_CREATE_WEIGHT


def _handle_task_completed(state: LifeState, event: Event, day: str) -> None:
    task_id = _str(event, "task_id")
    task = state.tasks.get(task_id)
    if task is not None and task["status"] == "completed":
        return

    state.backlog_pressure = max(0.0, state.backlog_pressure - BACKLOG_COMPLETE_WEIGHT)

    if task is not None:
        estimate = task["estimate_min"]
        task["status"] = "completed"
        task["completed_day"] = day
    else:
        estimate = event.metadata.get("estimate_min", 0)
        if isinstance(estimate, bool) or not isinstance(estimate, int):
            estimate = 0

    if day == state.day:
        state.completed_minutes += estimate
        state.completed_tasks_count += 1


def _handle_task_rescheduled(state: LifeState, event: Event, day: str) -> None:
    task_id = _str(event, "task_id")
    new_date = _str(event, "new_date")
    if not is_valid_day(new_date):
        raise CorruptEvent(f"TASK_RESCHEDULED new_date is not a day: {new_date!r}", idempotency_key=event.idempotency_key)
    task = state.tasks.get(task_id)
    if task is not None:
        task["due_date"] = new_date


def _handle_task_deleted(state: LifeState, event: Event, day: str) -> None:
    task_id = _str(event, "task_id")
    task = state.tasks.get(task_id)
    if task is None or task["status"] == "deleted":
        return
    if task["status"] in OPEN_STATUSES:
        state.backlog_pressure = max(0.0, state.backlog_pressure - BACKLOG_DELETE_WEIGHT)
    task["status"] = "deleted"


def _handle_task_paused(state: LifeState, event: Event, day: str) -> None:
    task_id = _str(event, "task_id")
    task = state.tasks.get(task_id)
    if task is not None and task["status"] == "active":
        task["status"] = "paused"
        task["pause_reason"] = event.metadata.get("reason")


def _handle_task_resumed(state: LifeState, event: Event, day: str) -> None:
    task_id = _str(event, "task_id")
    task = state.tasks.get(task_id)
    if task is not None and task["status"] == "paused":
        task["status"] = "active"
        task.pop("pause_reason", None)


def _handle_momentum_adjusted(state: LifeState, event: Event, day: str) -> None:
    delta = _int(event, "delta")
    if day == state.day:
        state.momentum_points = max(0, state.momentum_points + delta)


# ---------------------------------------------------------------------------
# Habit handlers
# ---------------------------------------------------------------------------


def _habit(state: LifeState, habit_id: str) -> dict[str, Any]:
    return state.habits.setdefault(habit_id, {"done": 0, "missed": 0, "target": None})


def _handle_habit_done(state: LifeState, event: Event, day: str) -> None:
    habit = _habit(state, _str(event, "habit_id"))
    habit["done"] += 1
    state.streak_score = min(STREAK_MAX, state.streak_score + STREAK_DONE_WEIGHT)


def _handle_habit_missed(state: LifeState, event: Event, day: str) -> None:
    habit = _habit(state, _str(event, "habit_id"))
    habit["missed"] += 1
    state.streak_score = max(STREAK_MIN, state.streak_score - STREAK_MISSED_WEIGHT)
    state.streak_breaks += 1


def _handle_habit_downshifted(state: LifeState, event: Event, day: str) -> None:
    habit = _habit(state, _str(event, "habit_id"))
    habit["target"] = _str(event, "new_target")


# ---------------------------------------------------------------------------
# Plan handlers
# ---------------------------------------------------------------------------


def _handle_plan_set(state: LifeState, event: Event, day: str) -> None:
    items = _list(event, "focus_items")
    version = _int(event, "version")
    if day != state.day or version < state.plan_version:
        return

    minutes = 0
    for item in items:
        if not isinstance(item, dict):
            raise CorruptEvent("PLAN_SET focus item must be an object", idempotency_key=event.idempotency_key)
        estimate = item.get("estimated_minutes", 0)
        if isinstance(estimate, bool) or not isinstance(estimate, int | float):
            raise CorruptEvent("PLAN_SET focus item estimate must be a number", idempotency_key=event.idempotency_key)
        minutes += int(estimate)

    state.plan = {
        "version": version,
        "focus_items": items,
        "reason": event.metadata.get("reason"),
    }
    state.plan_version = version
    state.plan_minutes = minutes
    count = len(items)
    state.plan_quality = "clear" if count >= 3 else "rough" if count > 0 else "none"


def _handle_plan_reset_applied(state: LifeState, event: Event, day: str) -> None:
    if day == state.day:
        state.plan_reset_count += 1


# ---------------------------------------------------------------------------
# Calendar handlers
# ---------------------------------------------------------------------------


def _handle_block_added(state: LifeState, event: Event, day: str) -> None:
    block_id = _str(event, "block_id")
    start = _int(event, "start_min")
    end = _int(event, "end_min")
    kind = _str(event, "kind")
    if end < start:
        raise CorruptEvent(f"CAL_BLOCK_ADDED ends before it starts: {start}..{end}", idempotency_key=event.idempotency_key)
    # Only blocks on the state's day contribute to its time metrics
    if day != state.day:
        return
    state.blocks[block_id] = {
        "id": block_id,
        "start_min": start,
        "end_min": end,
        "kind": kind,
        "completed": False,
    }


def _handle_block_finished(state: LifeState, event: Event, day: str) -> None:
    block_id = _str(event, "block_id")
    completed = _bool(event, "completed")
    block = state.blocks.get(block_id)
    if block is None or block["completed"]:
        return
    if completed:
        block["completed"] = True
        state.completed_minutes += block["end_min"] - block["start_min"]


def _handle_block_removed(state: LifeState, event: Event, day: str) -> None:
    state.blocks.pop(_str(event, "block_id"), None)


# ---------------------------------------------------------------------------
# Money, coaching, session handlers
# ---------------------------------------------------------------------------


def _handle_expense_added(state: LifeState, event: Event, day: str) -> None:
    amount = _num(event, "amount")
    category = _str(event, "category")
    if not _same_month(day, state.day):
        return
    spent = state.spend_by_category.get(category, 0.0) + amount
    state.spend_by_category[category] = round(spent, 2)


def _handle_budget_set(state: LifeState, event: Event, day: str) -> None:
    category = _str(event, "category")
    state.budgets[category] = float(_num(event, "monthly_limit"))


def _handle_coaching_feedback(state: LifeState, event: Event, day: str) -> None:
    suggestion_id = _str(event, "suggestion_id")
    action = _str(event, "action")
    if action not in FEEDBACK_ACTIONS:
        raise CorruptEvent(f"COACHING_FEEDBACK action unknown: {action!r}", idempotency_key=event.idempotency_key)
    state.suggestion_feedback[suggestion_id] = action


def _handle_rest_accepted(state: LifeState, event: Event, day: str) -> None:
    minutes = _int(event, "minutes")
    if day == state.day:
        state.rest_minutes += minutes


def _handle_session(state: LifeState, event: Event, day: str) -> None:
    pass


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------


def longest_free_block(blocks: Iterable[dict[str, Any]]) -> int:
    """Largest gap between busy blocks inside the 09:00–17:00 working window."""
    spans = sorted(
        (max(WORKDAY_START_MIN, b["start_min"]), min(WORKDAY_END_MIN, b["end_min"]))
        for b in blocks
        if b["kind"] == "busy"
    )
    longest = 0
    cursor = WORKDAY_START_MIN
    for start, end in spans:
        if end <= start:
            continue
        longest = max(longest, start - cursor)
        cursor = max(cursor, end)
    return max(longest, WORKDAY_END_MIN - cursor)


def _load_state(ratio: float) -> str:
    if ratio < 0.7:
        return "underloaded"
    if ratio <= 1.05:
        return "balanced"
    return "overloaded"


def _momentum(points: int) -> str:
    if points < 25:
        return "stalled"
    if points < 75:
        return "steady"
    return "strong"


def _habit_health(score: int) -> str:
    if score < 40:
        return "fragile"
    if score <= 75:
        return "stable"
    return "strong"


def _financial_drift(ratio: float) -> str:
    if ratio > 1.0:
        return "risk"
    if ratio >= 0.8:
        return "watch"
    return "ok"


def _focus_capacity(load: str, completion_rate: float) -> str:
    if load == "overloaded" and completion_rate < 0.4:
        return "low"
    if load == "balanced" and completion_rate > 0.75:
        return "high"
    return "medium"


def _friction(momentum: str) -> str:
    if momentum == "stalled":
        return "high"
    if momentum == "strong":
        return "low"
    return "medium"


def _life_mode(state: LifeState) -> str:
    if state.habit_health == "fragile":
        return "recovery"
    if state.load == "overloaded" and state.focus_capacity in ("low", "very_low"):
        return "recovery"
    if state.load == "balanced" and state.momentum == "strong" and state.habit_health in ("stable", "strong"):
        return "build"
    return "maintain"


def _derive(state: LifeState) -> None:
    """Recompute every derived field from the numeric fields and projections."""
    blocks = list(state.blocks.values())
    state.busy_minutes = sum(b["end_min"] - b["start_min"] for b in blocks if b["kind"] == "busy")
    state.focus_minutes = sum(b["end_min"] - b["start_min"] for b in blocks if b["kind"] == "focus")
    state.free_minutes = max(0, DAILY_CAPACITY_MIN - state.busy_minutes)
    state.planned_minutes = state.plan_minutes + state.focus_minutes
    state.longest_free_block = longest_free_block(blocks)

    ratio = state.planned_minutes / max(1, state.free_minutes)
    state.load = _load_state(ratio)
    if state.planned_minutes > 0:
        state.completion_rate = round(state.completed_minutes / state.planned_minutes, 4)
    else:
        state.completion_rate = 0.0

    state.momentum = _momentum(state.momentum_points)
    state.habit_health = _habit_health(state.streak_score)

    ratios = [
        state.spend_by_category.get(category, 0.0) / limit
        for category, limit in sorted(state.budgets.items())
        if limit > 0
    ]
    state.spend_vs_intent = round(max(ratios), 4) if ratios else 0.0
    state.financial_drift = _financial_drift(state.spend_vs_intent)

    state.focus_capacity = _focus_capacity(state.load, state.completion_rate)
    state.friction = _friction(state.momentum)
    state.mode = _life_mode(state)
    state.reasons = _reasons(state, ratio)


def _reasons(state: LifeState, load_ratio: float) -> list[dict[str, str]]:
    reasons = []
    if state.mode == "recovery":
        reasons.append({"code": "MODE_TO_RECOVERY", "detail": "Overloaded plan or fragile habits"})
    if state.load == "overloaded":
        reasons.append({"code": "OVERLOAD", "detail": f"Planning {round(load_ratio * 100)}% of free time"})
    if state.momentum == "stalled":
        reasons.append({"code": "MOMENTUM_LOW", "detail": "No meaningful progress detected yet"})
    if state.habit_health == "fragile":
        reasons.append({"code": "HABIT_FRAGILE", "detail": "Habit completion is low"})
    if state.financial_drift == "risk":
        reasons.append({"code": "FINANCIAL_RISK", "detail": "Spending ahead of plan"})
    elif state.financial_drift == "watch":
        reasons.append({"code": "FINANCIAL_WATCH", "detail": "Spending close to budget"})
    if state.backlog_pressure > 60:
        reasons.append({"code": "BACKLOG_HIGH", "detail": f"Backlog pressure at {state.backlog_pressure:g}"})
    if state.rest_minutes > 0:
        reasons.append({"code": "REST_TAKEN", "detail": f"{state.rest_minutes} min of rest today"})
    return reasons


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

_HANDLERS: dict[EventType, Callable[[LifeState, Event, str], None]] = {
    EventType.TASK_CREATED: _handle_task_created,
    EventType.TASK_COMPLETED: _handle_task_completed,
    EventType.TASK_RESCHEDULED: _handle_task_rescheduled,
    EventType.TASK_DELETED: _handle_task_deleted,
    EventType.TASK_PAUSED: _handle_task_paused,
    EventType.TASK_RESUMED: _handle_task_resumed,
    EventType.MOMENTUM_ADJUSTED: _handle_momentum_adjusted,
    EventType.HABIT_DONE: _handle_habit_done,
    EventType.HABIT_MISSED: _handle_habit_missed,
    EventType.HABIT_DOWNSHIFTED: _handle_habit_downshifted,
    EventType.PLAN_SET: _handle_plan_set,
    EventType.PLAN_RESET_APPLIED: _handle_plan_reset_applied,
    EventType.CAL_BLOCK_ADDED: _handle_block_added,
    EventType.CAL_BLOCK_FINISHED: _handle_block_finished,
    EventType.CAL_BLOCK_REMOVED: _handle_block_removed,
    EventType.EXPENSE_ADDED: _handle_expense_added,
    EventType.BUDGET_SET: _handle_budget_set,
    EventType.COACHING_FEEDBACK: _handle_coaching_feedback,
    EventType.REST_ACCEPTED: _handle_rest_accepted,
    EventType.SESSION_START: _handle_session,
    EventType.SESSION_END: _handle_session,
}

_missing = [t.value for t in EventType if t not in _HANDLERS]
if _missing:
    raise RuntimeError(f"Reducer has no handler for event types: {_missing}")
