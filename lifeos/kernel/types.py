"""
LifeOS Kernel — Shared Types

Data classes used across the event log, reducer, policy engine, and command executor.
These are the contracts that bind the kernel together.

- Event: an immutable fact in a user's append-only log
- LifeState: the derived snapshot, owned by the reducer
- ProposedAction: a suggestion produced by a policy, never by the reducer
- PolicyContext: ephemeral read-only view handed to policies
- Command / CommandResult: the unit of user intent and its outcome
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

DAY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Largest real-world UTC offsets are -12:00 and +14:00
MAX_TZ_OFFSET_MINUTES = 14 * 60


# ---------------------------------------------------------------------------
# Event types (closed variant)
# ---------------------------------------------------------------------------


class EventType(StrEnum):
    TASK_CREATED = "TASK_CREATED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_RESCHEDULED = "TASK_RESCHEDULED"
    TASK_DELETED = "TASK_DELETED"
    TASK_PAUSED = "TASK_PAUSED"
    TASK_RESUMED = "TASK_RESUMED"
    MOMENTUM_ADJUSTED = "MOMENTUM_ADJUSTED"
    HABIT_DONE = "HABIT_DONE"
    HABIT_MISSED = "HABIT_MISSED"
    HABIT_DOWNSHIFTED = "HABIT_DOWNSHIFTED"
    PLAN_SET = "PLAN_SET"
    PLAN_RESET_APPLIED = "PLAN_RESET_APPLIED"
    CAL_BLOCK_ADDED = "CAL_BLOCK_ADDED"
    CAL_BLOCK_FINISHED = "CAL_BLOCK_FINISHED"
    CAL_BLOCK_REMOVED = "CAL_BLOCK_REMOVED"
    EXPENSE_ADDED = "EXPENSE_ADDED"
    BUDGET_SET = "BUDGET_SET"
    COACHING_FEEDBACK = "COACHING_FEEDBACK"
    REST_ACCEPTED = "REST_ACCEPTED"
    SESSION_START = "SESSION_START"
    SESSION_END = "SESSION_END"


def parse_event_type(value: str) -> EventType | None:
    """Map a stored type tag to the closed variant. Unknown tags return None."""
    try:
        return EventType(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Enumerations used by LifeState
# ---------------------------------------------------------------------------

LIFE_MODES: tuple[str, ...] = ("recovery", "maintain", "build", "sprint")
LOAD_STATES: tuple[str, ...] = ("underloaded", "balanced", "overloaded")
MOMENTUM_STATES: tuple[str, ...] = ("stalled", "steady", "strong")
FOCUS_CAPACITIES: tuple[str, ...] = ("very_low", "low", "medium", "high")
TASK_STATUSES: tuple[str, ...] = ("active", "paused", "completed", "deleted")
BLOCK_KINDS: tuple[str, ...] = ("busy", "focus", "rest", "personal")
FEEDBACK_ACTIONS: tuple[str, ...] = ("accepted", "ignored", "dismissed")
SUGGESTION_STATUSES: tuple[str, ...] = ("pending", "accepted", "ignored", "expired")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class Event:
    """
    One immutable fact in a user's append-only log.

    `seq` is assigned by the storage at append time and breaks timestamp ties
    (insertion order). It is None for events that have not been appended yet.
    """

    user_id: str
    timestamp: int  # epoch milliseconds
    type: str
    metadata: dict[str, Any]
    idempotency_key: str
    seq: int | None = None

    @property
    def day(self) -> str | None:
        """Local day embedded at append time."""
        return self.metadata.get("day")

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "type": self.type,
            "metadata": self.metadata,
            "idempotency_key": self.idempotency_key,
        }
        if self.seq is not None:
            d["seq"] = self.seq
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Event:
        # Decoding failures surface as CorruptEvent at the call sites that replay.
        return cls(
            user_id=d["user_id"],
            timestamp=d["timestamp"],
            type=d["type"],
            metadata=d["metadata"],
            idempotency_key=d["idempotency_key"],
            seq=d.get("seq"),
        )


@dataclass
class EventRef:
    """
    Where an appended event landed. `deduped` is True when the key already existed.
    `seq` is None for speculative events held by a local mirror.
    """

    user_id: str
    idempotency_key: str
    seq: int | None
    deduped: bool = False


@dataclass
class LifeState:
    """
    Derived point-in-time snapshot for one user and one day.
    Owned by the reducer. Nothing else mutates it.
    """

    day: str
    mode: str = "maintain"
    load: str = "balanced"
    momentum: str = "stalled"
    focus_capacity: str = "medium"
    friction: str = "medium"
    habit_health: str = "stable"
    financial_drift: str = "ok"
    plan_quality: str = "none"

    # Time
    planned_minutes: int = 0
    free_minutes: int = 480
    busy_minutes: int = 0
    focus_minutes: int = 0
    plan_minutes: int = 0
    completed_minutes: int = 0
    completed_tasks_count: int = 0
    completion_rate: float = 0.0
    rest_minutes: int = 0
    longest_free_block: int = 480
    plan_version: int = 0
    plan_reset_count: int = 0

    # Behaviour
    momentum_points: int = 0
    streak_score: int = 50
    streak_breaks: int = 0
    backlog_pressure: float = 0.0

    # Money
    spend_vs_intent: float = 0.0
    spend_by_category: dict[str, float] = field(default_factory=dict)
    budgets: dict[str, float] = field(default_factory=dict)

    # Projections
    tasks: dict[str, dict[str, Any]] = field(default_factory=dict)
    habits: dict[str, dict[str, Any]] = field(default_factory=dict)
    blocks: dict[str, dict[str, Any]] = field(default_factory=dict)
    plan: dict[str, Any] | None = None
    suggestion_feedback: dict[str, str] = field(default_factory=dict)

    reasons: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day,
            "mode": self.mode,
            "load": self.load,
            "momentum": self.momentum,
            "focus_capacity": self.focus_capacity,
            "friction": self.friction,
            "habit_health": self.habit_health,
            "financial_drift": self.financial_drift,
            "plan_quality": self.plan_quality,
            "planned_minutes": self.planned_minutes,
            "free_minutes": self.free_minutes,
            "busy_minutes": self.busy_minutes,
            "focus_minutes": self.focus_minutes,
            "plan_minutes": self.plan_minutes,
            "completed_minutes": self.completed_minutes,
            "completed_tasks_count": self.completed_tasks_count,
            "completion_rate": self.completion_rate,
            "rest_minutes": self.rest_minutes,
            "longest_free_block": self.longest_free_block,
            "plan_version": self.plan_version,
            "plan_reset_count": self.plan_reset_count,
            "momentum_points": self.momentum_points,
            "streak_score": self.streak_score,
            "streak_breaks": self.streak_breaks,
            "backlog_pressure": self.backlog_pressure,
            "spend_vs_intent": self.spend_vs_intent,
            "spend_by_category": self.spend_by_category,
            "budgets": self.budgets,
            "tasks": self.tasks,
            "habits": self.habits,
            "blocks": self.blocks,
            "plan": self.plan,
            "suggestion_feedback": self.suggestion_feedback,
            "reasons": self.reasons,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LifeState:
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in d.items() if k in known})

    def open_tasks(self) -> list[tuple[str, dict[str, Any]]]:
        """Active tasks sorted by (estimate, priority, id)."""
        active = [(tid, t) for tid, t in self.tasks.items() if t["status"] == "active"]
        return sorted(active, key=lambda item: (item[1]["estimate_min"], item[1]["priority"], item[0]))


@dataclass
class ProposedAction:
    """A non-binding recommendation awaiting the user's decision."""

    id: str
    type: str
    priority: int  # 1 (lowest) .. 5 (highest)
    reason: dict[str, str]
    payload: dict[str, Any] = field(default_factory=dict)
    cooldown_key: str | None = None
    cooldown_hours: float | None = None  # filled from the proposing policy
    status: str = "pending"
    requires_user_confirm: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority,
            "reason": self.reason,
            "payload": self.payload,
            "cooldown_key": self.cooldown_key,
            "status": self.status,
            "requires_user_confirm": self.requires_user_confirm,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ProposedAction:
        return cls(
            id=d["id"],
            type=d["type"],
            priority=d["priority"],
            reason=d["reason"],
            payload=d.get("payload", {}),
            cooldown_key=d.get("cooldown_key"),
            status=d.get("status", "pending"),
            requires_user_confirm=d.get("requires_user_confirm", True),
        )


@dataclass
class PolicyFacts:
    """Precomputed facts so policies never scan the log themselves."""

    planned_minutes: int = 0
    free_minutes: int = 0
    completed_last_3_days: int = 0
    habit_done_7_days: int = 0
    habit_missed_7_days: int = 0
    habit_completion_7_days: float = 1.0
    streak_breaks: int = 0
    spend_vs_intent: float = 0.0
    backlog_count: int = 0


@dataclass(frozen=True)
class PolicyContext:
    """
    Read-only view built per evaluation. Never persisted.
    `now` is epoch milliseconds supplied by the caller so policies stay pure.
    """

    now: int
    state: LifeState
    recent_events: tuple[Event, ...]
    facts: PolicyFacts
    tz_offset_minutes: int = 0

    def local_minute_of_day(self) -> int:
        local = datetime.fromtimestamp(self.now / 1000, UTC) + timedelta(minutes=self.tz_offset_minutes)
        return local.hour * 60 + local.minute


@dataclass
class Command:
    """The unit of user intent. Not persisted; its effect is the events it produces."""

    cmd: str
    input: dict[str, Any]
    idempotency_key: str
    tz_offset_minutes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "cmd": self.cmd,
            "input": self.input,
            "idempotencyKey": self.idempotency_key,
        }
        if self.tz_offset_minutes is not None:
            d["tzOffsetMinutes"] = self.tz_offset_minutes
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Command:
        return cls(
            cmd=d["cmd"],
            input=d["input"],
            idempotency_key=d["idempotencyKey"],
            tz_offset_minutes=d.get("tzOffsetMinutes"),
        )


@dataclass
class CommandResult:
    """
    Outcome of executing one command.
    Validation failures are reported here, never raised.
    """

    success: bool
    deduped: bool = False
    events: list[Event] = field(default_factory=list)
    error: str | None = None
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.deduped:
            d["deduped"] = True
        if self.error is not None:
            d["error"] = self.error
            d["code"] = self.code
        return d


@dataclass
class TodayView:
    """What the state query returns for "today"."""

    day: str
    state: LifeState
    suggestions: list[ProposedAction]
    state_hash: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_ms() -> int:
    """Current UTC time as epoch milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


def normalize_offset_minutes(value: Any) -> int:
    """Clamp a client-supplied timezone offset to a sane integer range."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(-MAX_TZ_OFFSET_MINUTES, min(MAX_TZ_OFFSET_MINUTES, int(value)))


def local_day(ts_ms: int, tz_offset_minutes: int = 0) -> str:
    """Format an epoch-ms timestamp as the caller's local YYYY-MM-DD."""
    shifted = datetime.fromtimestamp(ts_ms / 1000, UTC) + timedelta(minutes=tz_offset_minutes)
    return shifted.strftime("%Y-%m-%d")


def shift_day(day: str, delta_days: int) -> str:
    date = datetime.strptime(day, "%Y-%m-%d") + timedelta(days=delta_days)
    return date.strftime("%Y-%m-%d")


def is_valid_day(value: Any) -> bool:
    """Check a YYYY-MM-DD string that also parses as a calendar date."""
    if not isinstance(value, str) or not DAY_PATTERN.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True
