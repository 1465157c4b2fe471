"""
LifeOS Kernel — Command Executor

Turns one unit of user intent into zero or more events, exactly once per
idempotency key.

    received → idempotency-checked → duplicate: success, deduped=True
                                   → fresh: validate → append (atomic) → success

Validation is per command and returns a list of error strings (empty = valid).
A failed validation appends nothing and comes back as
CommandResult(success=False, code="VALIDATION_ERROR"). StorageUnavailable
propagates so the caller (the outbox) can retry with the same key.

The executor does not re-run the reducer or the policies after appending.
That is the caller's job.
"""

from __future__ import annotations

import hashlib
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from lifeos.kernel.errors import ValidationError
from lifeos.kernel.event_log import EventLogStorage
from lifeos.kernel.events import derived_key
from lifeos.kernel.reducer import replay
from lifeos.kernel.types import (
    BLOCK_KINDS,
    Command,
    CommandResult,
    Event,
    EventType,
    LifeState,
    is_valid_day,
    local_day,
    normalize_offset_minutes,
    now_ms,
)

logger = logging.getLogger(__name__)

MIN_ESTIMATE_MIN = 5
MAX_ESTIMATE_MIN = 480
MAX_TITLE_LEN = 200
MAX_PLAN_ITEMS = 3
PLAN_ESTIMATES = (10, 25, 45, 60)
PLAN_REASONS = ("initial", "adjust", "reset", "recovery")
MINUTES_PER_DAY = 1440


# ---------------------------------------------------------------------------
# Command planning context
# ---------------------------------------------------------------------------


@dataclass
class _Draft:
    type: EventType
    metadata: dict[str, Any]
    suffix: str | None = None
    day: str | None = None


@dataclass
class CommandPlan:
    """Everything a validator or builder may read. Built once per execution."""

    user_id: str
    command: Command
    today: str
    state: LifeState
    events: list[Event] = field(default_factory=list)

    @property
    def input(self) -> dict[str, Any]:
        return self.command.input

    @property
    def key(self) -> str:
        return self.command.idempotency_key


def derived_id(prefix: str, idempotency_key: str) -> str:
    """Entity id derived from the command key, so every replica computes the same id."""
    digest = hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()
    return f"{prefix}_{digest[:12]}"


def snap_plan_estimate(value: Any) -> int:
    """Snap a focus-item estimate to the nearest allowed size (ties go to the smaller)."""
    if not _is_number(value):
        return 25
    return min(PLAN_ESTIMATES, key=lambda allowed: (abs(allowed - value), allowed))


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _input_day(plan: CommandPlan, errors: list[str], *, required: bool = False) -> str:
    day = plan.input.get("day")
    if day is None and not required:
        return plan.today
    if not is_valid_day(day):
        errors.append("day must be YYYY-MM-DD")
        return plan.today
    return day


def _task(plan: CommandPlan, errors: list[str], allowed: tuple[str, ...]) -> dict[str, Any] | None:
    task_id = plan.input.get("taskId")
    if not isinstance(task_id, str) or not task_id:
        errors.append("taskId is required")
        return None
    task = plan.state.tasks.get(task_id)
    if task is None or task["status"] == "deleted":
        errors.append(f"Task not found: {task_id}")
        return None
    if task["status"] not in allowed:
        errors.append(f"Task {task_id} is {task['status']}")
        return None
    return task


def _blocks(plan: CommandPlan) -> dict[str, dict[str, Any]]:
    """Calendar blocks known to the log: id → {day, removed}."""
    blocks: dict[str, dict[str, Any]] = {}
    for event in plan.events:
        if event.type == EventType.CAL_BLOCK_ADDED:
            blocks[event.metadata.get("block_id")] = {"day": event.day, "removed": False}
        elif event.type == EventType.CAL_BLOCK_REMOVED and event.metadata.get("block_id") in blocks:
            blocks[event.metadata["block_id"]]["removed"] = True
    return blocks


def _block(plan: CommandPlan, errors: list[str]) -> dict[str, Any] | None:
    block_id = plan.input.get("blockId")
    if not isinstance(block_id, str) or not block_id:
        errors.append("blockId is required")
        return None
    block = _blocks(plan).get(block_id)
    if block is None or block["removed"]:
        errors.append(f"Calendar block not found: {block_id}")
        return None
    return block


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _create_task(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    p = plan.input
    title = _text(p.get("title"))
    estimate = p.get("estimateMin")
    priority = p.get("priority", 2)
    due_date = p.get("dueDate")

    if not title:
        errors.append("Task title is required")
    elif len(title) > MAX_TITLE_LEN:
        errors.append(f"Task title must be at most {MAX_TITLE_LEN} characters")
    if not _is_number(estimate) or not MIN_ESTIMATE_MIN <= estimate <= MAX_ESTIMATE_MIN:
        errors.append(f"Task estimate must be between {MIN_ESTIMATE_MIN} and {MAX_ESTIMATE_MIN} minutes")
    if isinstance(priority, bool) or not isinstance(priority, int) or priority not in (1, 2, 3):
        errors.append("Task priority must be 1, 2, or 3")
    if due_date is not None and not is_valid_day(due_date):
        errors.append("Task dueDate must be YYYY-MM-DD")
    if errors:
        return []

    meta: dict[str, Any] = {
        "task_id": derived_id("tsk", plan.key),
        "title": title,
        "estimate_min": int(round(estimate)),
        "priority": priority,
    }
    if due_date is not None:
        meta["due_date"] = due_date
    notes = _text(p.get("notes"))
    if notes:
        meta["notes"] = notes
    return [_Draft(EventType.TASK_CREATED, meta)]


def _complete_task(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    task = _task(plan, errors, ("active", "paused"))
    if task is None:
        return []
    estimate = task["estimate_min"]
    return [
        _Draft(EventType.TASK_COMPLETED, {"task_id": task["id"], "estimate_min": estimate}),
        _Draft(
            EventType.MOMENTUM_ADJUSTED,
            {"delta": estimate, "reason": "task_completed", "task_id": task["id"]},
            suffix="momentum",
        ),
    ]


def _reschedule_task(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    task = _task(plan, errors, ("active", "paused"))
    new_date = plan.input.get("newDate")
    if not is_valid_day(new_date):
        errors.append("newDate must be YYYY-MM-DD")
    if errors:
        return []
    meta = {"task_id": task["id"], "old_date": task.get("due_date"), "new_date": new_date}
    return [_Draft(EventType.TASK_RESCHEDULED, meta)]


def _delete_task(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    task = _task(plan, errors, ("active", "paused", "completed"))
    if task is None:
        return []
    return [_Draft(EventType.TASK_DELETED, {"task_id": task["id"]})]


def _pause_task(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    task = _task(plan, errors, ("active",))
    if task is None:
        return []
    reason = _text(plan.input.get("reason")) or "manual"
    return [_Draft(EventType.TASK_PAUSED, {"task_id": task["id"], "reason": reason})]


def _resume_task(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    task = _task(plan, errors, ("paused",))
    if task is None:
        return []
    return [_Draft(EventType.TASK_RESUMED, {"task_id": task["id"]})]


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------


def _log_habit(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    habit_id = _text(plan.input.get("habitId"))
    status = plan.input.get("status")
    day = _input_day(plan, errors)
    if not habit_id:
        errors.append("Habit id is required")
    if status not in ("done", "missed"):
        errors.append("Habit status must be 'done' or 'missed'")
    if errors:
        return []

    meta: dict[str, Any] = {"habit_id": habit_id}
    note = _text(plan.input.get("note"))
    if note:
        meta["note"] = note
    event_type = EventType.HABIT_DONE if status == "done" else EventType.HABIT_MISSED
    return [_Draft(event_type, meta, day=day)]


def _downshift_habit(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    habit_id = _text(plan.input.get("habitId"))
    new_target = _text(plan.input.get("newTarget"))
    if not habit_id:
        errors.append("Habit id is required")
    if not new_target:
        errors.append("newTarget is required")
    if errors:
        return []
    return [_Draft(EventType.HABIT_DOWNSHIFTED, {"habit_id": habit_id, "new_target": new_target})]


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


def _latest_plan_version(plan: CommandPlan, day: str) -> int:
    versions = [
        e.metadata.get("version", 0)
        for e in plan.events
        if e.type == EventType.PLAN_SET and e.day == day
    ]
    return max(versions, default=0)


def _set_daily_plan(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    day = _input_day(plan, errors, required=True)
    raw_items = plan.input.get("focusItems")
    reason = plan.input.get("reason")

    if not isinstance(raw_items, list):
        errors.append("focusItems must be a list")
        return []
    if len(raw_items) > MAX_PLAN_ITEMS:
        errors.append(f"Daily plan allows at most {MAX_PLAN_ITEMS} focus items")

    items = []
    for index, item in enumerate(raw_items[:MAX_PLAN_ITEMS]):
        label = _text(item.get("label")) if isinstance(item, dict) else ""
        if not label:
            errors.append(f"Focus item {index} needs a label")
            continue
        item_id = _text(item.get("id")) or f"focus-{index}"
        items.append(
            {"id": item_id, "label": label, "estimated_minutes": snap_plan_estimate(item.get("estimatedMinutes"))}
        )
    if not raw_items:
        errors.append("Daily plan needs at least one focus item")
    if reason is not None and reason not in PLAN_REASONS:
        errors.append(f"Plan reason must be one of {', '.join(PLAN_REASONS)}")
    if errors:
        return []

    latest = _latest_plan_version(plan, day)
    meta = {
        "focus_items": items,
        "version": latest + 1,
        "reason": reason or ("initial" if latest == 0 else "adjust"),
    }
    return [_Draft(EventType.PLAN_SET, meta, day=day)]


def _apply_plan_reset(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    keep = plan.input.get("keepCount", 1)
    day = _input_day(plan, errors)
    if isinstance(keep, bool) or not isinstance(keep, int) or keep not in (1, 2):
        errors.append("Plan reset keep count must be 1 or 2")
    if errors:
        return []

    active = plan.state.open_tasks()
    kept = [tid for tid, _ in active[:keep]]
    paused = [tid for tid, _ in active[keep:]]
    drafts = [
        _Draft(
            EventType.PLAN_RESET_APPLIED,
            {"kept_task_ids": kept, "paused_task_ids": paused},
            day=day,
        )
    ]
    for task_id in paused:
        drafts.append(
            _Draft(EventType.TASK_PAUSED, {"task_id": task_id, "reason": "plan_reset"}, suffix=f"pause:{task_id}")
        )
    return drafts


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------


def _add_calendar_block(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    p = plan.input
    day = _input_day(plan, errors)
    start = p.get("startMin")
    end = p.get("endMin")
    kind = p.get("kind", "busy")

    if isinstance(start, bool) or isinstance(end, bool) or not isinstance(start, int) or not isinstance(end, int):
        errors.append("startMin and endMin must be integers")
    elif not 0 <= start < end <= MINUTES_PER_DAY:
        errors.append(f"Calendar block must satisfy 0 <= startMin < endMin <= {MINUTES_PER_DAY}")
    if kind not in BLOCK_KINDS:
        errors.append(f"Calendar block kind must be one of {', '.join(BLOCK_KINDS)}")
    if errors:
        return []

    meta: dict[str, Any] = {
        "block_id": derived_id("blk", plan.key),
        "start_min": start,
        "end_min": end,
        "kind": kind,
    }
    title = _text(p.get("title"))
    if title:
        meta["title"] = title
    return [_Draft(EventType.CAL_BLOCK_ADDED, meta, day=day)]


def _finish_calendar_block(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    block = _block(plan, errors)
    completed = plan.input.get("completed", True)
    if not isinstance(completed, bool):
        errors.append("completed must be a boolean")
    if errors:
        return []
    meta = {"block_id": plan.input["blockId"], "completed": completed}
    return [_Draft(EventType.CAL_BLOCK_FINISHED, meta, day=block["day"])]


def _remove_calendar_block(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    block = _block(plan, errors)
    if block is None:
        return []
    return [_Draft(EventType.CAL_BLOCK_REMOVED, {"block_id": plan.input["blockId"]}, day=block["day"])]


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------


def _add_expense(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    amount = plan.input.get("amount")
    category = _text(plan.input.get("category")).lower()
    day = _input_day(plan, errors)
    if not _is_number(amount) or amount <= 0:
        errors.append("Expense amount must be a positive number")
    if not category:
        errors.append("Expense category is required")
    if errors:
        return []

    meta: dict[str, Any] = {
        "expense_id": derived_id("exp", plan.key),
        "amount": round(float(amount), 2),
        "category": category,
    }
    note = _text(plan.input.get("note"))
    if note:
        meta["note"] = note
    return [_Draft(EventType.EXPENSE_ADDED, meta, day=day)]


def _set_budget(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    category = _text(plan.input.get("category")).lower()
    limit = plan.input.get("monthlyLimit")
    if not category:
        errors.append("Budget category is required")
    if not _is_number(limit) or limit <= 0:
        errors.append("Budget monthlyLimit must be a positive number")
    if errors:
        return []
    return [_Draft(EventType.BUDGET_SET, {"category": category, "monthly_limit": round(float(limit), 2)})]


# ---------------------------------------------------------------------------
# Coaching, rest, sessions
# ---------------------------------------------------------------------------


def _accept_rest(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
    minutes = plan.input.get("minutes")
    day = _input_day(plan, errors, required=True)
    if isinstance(minutes, bool) or not isinstance(minutes, int) or not 0 < minutes <= MINUTES_PER_DAY:
        errors.append("Rest minutes must be a positive whole number")
    if errors:
        return []
    return [_Draft(EventType.REST_ACCEPTED, {"minutes": minutes}, day=day)]


def _feedback(action: str) -> Callable[[CommandPlan, list[str]], list[_Draft]]:
    def build(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
        suggestion_id = _text(plan.input.get("suggestionId"))
        if not suggestion_id:
            errors.append("suggestionId is required")
            return []
        meta: dict[str, Any] = {"suggestion_id": suggestion_id, "action": action}
        suggestion_type = _text(plan.input.get("suggestionType"))
        if suggestion_type:
            meta["suggestion_type"] = suggestion_type
        return [_Draft(EventType.COACHING_FEEDBACK, meta)]

    return build


def _session(event_type: EventType) -> Callable[[CommandPlan, list[str]], list[_Draft]]:
    def build(plan: CommandPlan, errors: list[str]) -> list[_Draft]:
        return [_Draft(event_type, {})]

    return build


_BUILDERS: dict[str, Callable[[CommandPlan, list[str]], list[_Draft]]] = {
    "create_task": _create_task,
    "complete_task": _complete_task,
    "reschedule_task": _reschedule_task,
    "delete_task": _delete_task,
    "pause_task": _pause_task,
    "resume_task": _resume_task,
    "log_habit": _log_habit,
    "downshift_habit": _downshift_habit,
    "set_daily_plan": _set_daily_plan,
    "apply_plan_reset": _apply_plan_reset,
    "add_calendar_block": _add_calendar_block,
    "finish_calendar_block": _finish_calendar_block,
    "remove_calendar_block": _remove_calendar_block,
    "add_expense": _add_expense,
    "set_budget": _set_budget,
    "accept_rest": _accept_rest,
    "accept_suggestion": _feedback("accepted"),
    "ignore_suggestion": _feedback("ignored"),
    "start_session": _session(EventType.SESSION_START),
    "end_session": _session(EventType.SESSION_END),
}

COMMANDS: tuple[str, ...] = tuple(_BUILDERS)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_command(raw: Command | dict[str, Any]) -> Command:
    """Check the command envelope. Raises ValidationError on a malformed shape."""
    if isinstance(raw, Command):
        command = raw
    else:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid command shape")
        try:
            command = Command.from_dict(raw)
        except KeyError as e:
            raise ValidationError(f"Invalid command shape: missing {e}") from e

    if not isinstance(command.cmd, str) or not command.cmd:
        raise ValidationError("Invalid command shape: cmd must be a non-empty string")
    if not isinstance(command.input, dict):
        raise ValidationError("Invalid command shape: input must be an object")
    if not isinstance(command.idempotency_key, str) or not command.idempotency_key:
        raise ValidationError("Invalid command shape: idempotencyKey must be a non-empty string")
    return command


def plan_events(plan: CommandPlan, timestamp: int) -> list[Event]:
    """
    Validate a command against the caller's replayed state and build its events.
    Raises ValidationError with every problem found.
    """
    builder = _BUILDERS.get(plan.command.cmd)
    if builder is None:
        raise ValidationError(f"Unknown command: {plan.command.cmd}")

    errors: list[str] = []
    drafts = builder(plan, errors)
    if errors:
        raise ValidationError("; ".join(errors))

    events = []
    for draft in drafts:
        metadata = dict(draft.metadata)
        metadata["day"] = draft.day or plan.today
        key = derived_key(plan.key, draft.suffix) if draft.suffix else plan.key
        events.append(
            Event(
                user_id=plan.user_id,
                timestamp=timestamp,
                type=draft.type.value,
                metadata=metadata,
                idempotency_key=key,
            )
        )
    return events


class CommandExecutor:
    """
    Pure command-to-event translator over an EventLogStorage.

    `clock` returns epoch milliseconds and is the only source of time.
    """

    def __init__(self, storage: EventLogStorage, clock: Callable[[], int] = now_ms):
        self.storage = storage
        self.clock = clock

    async def execute(self, user_id: str, command: Command | dict[str, Any]) -> CommandResult:
        try:
            command = parse_command(command)
        except ValidationError as e:
            return CommandResult(success=False, error=str(e), code=ValidationError.code)

        existing = await self.storage.get_by_key(user_id, command.idempotency_key)
        if existing is not None:
            logger.info("commands: %s deduped for %s (%s)", command.cmd, user_id, command.idempotency_key)
            return CommandResult(success=True, deduped=True, events=[existing])

        now = self.clock()
        offset = normalize_offset_minutes(command.tz_offset_minutes)
        today = local_day(now, offset)
        events = await self.storage.query(user_id)
        horizon = max([today] + [e.day for e in events if is_valid_day(e.day)])
        plan = CommandPlan(
            user_id=user_id,
            command=command,
            today=today,
            state=replay(events, horizon),
            events=events,
        )

        try:
            new_events = plan_events(plan, now)
        except ValidationError as e:
            logger.info("commands: %s rejected for %s: %s", command.cmd, user_id, e)
            return CommandResult(success=False, error=str(e), code=ValidationError.code)

        refs = await self.storage.append_batch(new_events)
        if refs[0].deduped:
            # Lost a race with a concurrent submission of the same key
            stored = await self.storage.get_by_key(user_id, command.idempotency_key)
            return CommandResult(success=True, deduped=True, events=[stored] if stored else [])

        for event, ref in zip(new_events, refs, strict=True):
            event.seq = ref.seq
        logger.info("commands: %s applied for %s (%d events)", command.cmd, user_id, len(new_events))
        return CommandResult(success=True, events=new_events)
