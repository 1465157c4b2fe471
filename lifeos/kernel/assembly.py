"""
LifeOS Kernel — Assembly Layer

Sits between the pure functions (reducer, policies) and the outside world
(the event log storage, the HTTP routes, the local-first client).

Operations: execute, events, state_for_day, today, integrity_check

This is where IO happens. The reducer and the policies are pure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from lifeos.kernel.commands import CommandExecutor
from lifeos.kernel.context import build_policy_context
from lifeos.kernel.event_log import EventLogStorage
from lifeos.kernel.hashing import canonical_json, hash_state
from lifeos.kernel.policies import default_registry
from lifeos.kernel.policy_engine import CooldownTable, PolicyRegistry, run_policies
from lifeos.kernel.reducer import replay
from lifeos.kernel.types import (
    Command,
    CommandResult,
    Event,
    LifeState,
    ProposedAction,
    TodayView,
    local_day,
    normalize_offset_minutes,
    now_ms,
)

logger = logging.getLogger(__name__)

DAILY_SUGGESTION_CAP = 3


def pending_suggestions(
    registry: PolicyRegistry,
    state: LifeState,
    events: list[Event],
    now: int,
    tz_offset_minutes: int = 0,
    cooldowns: CooldownTable | None = None,
    cap: int | None = DAILY_SUGGESTION_CAP,
    scope: str = "",
) -> list[ProposedAction]:
    """
    Run every policy against the state and keep the pending ones, capped.
    Cooldown keys are claimed only for the suggestions actually returned.
    """
    ctx = build_policy_context(state, events, now, tz_offset_minutes)
    pending = [a for a in run_policies(registry, ctx) if a.status == "pending"]
    if cooldowns is None:
        return pending if cap is None else pending[:cap]
    return cooldowns.admit(pending, now, scope=scope, limit=cap)


def integrity_check(events: list[Event], state: LifeState) -> tuple[bool, list[str]]:
    """Verify a state matches the replay of the events for its day."""
    replayed = replay(events, state.day).to_dict()
    stored = state.to_dict()
    if canonical_json(stored) == canonical_json(replayed):
        return True, []
    fields = sorted(k for k in replayed if canonical_json({"v": stored.get(k)}) != canonical_json({"v": replayed[k]}))
    return False, [f"State field does not match event replay: {name}" for name in fields]


class LifeKernel:
    """
    One kernel instance per process. Owns its policy registry and cooldown
    table, so independent instances (tests, devices) never share hidden state.
    """

    def __init__(
        self,
        storage: EventLogStorage,
        registry: PolicyRegistry | None = None,
        cooldowns: CooldownTable | None = None,
        clock: Callable[[], int] | None = None,
        suggestion_cap: int = DAILY_SUGGESTION_CAP,
    ):
        self.storage = storage
        self.registry = registry if registry is not None else default_registry()
        self.cooldowns = cooldowns if cooldowns is not None else CooldownTable()
        self.clock = clock or now_ms
        self.suggestion_cap = suggestion_cap
        self.executor = CommandExecutor(storage, clock=self.clock)
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, user_id: str) -> asyncio.Lock:
        """Per-user asyncio lock: commands for one user are applied one at a time."""
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    # -- commands --

    async def execute(self, user_id: str, command: Command | dict[str, Any]) -> CommandResult:
        async with self._get_lock(user_id):
            return await self.executor.execute(user_id, command)

    # -- reads --

    async def events(self, user_id: str, after_seq: int | None = None) -> list[Event]:
        return await self.storage.query(user_id, after_seq=after_seq)

    async def state_for_day(self, user_id: str, day: str) -> LifeState:
        events = await self.storage.query(user_id)
        return replay(events, day)

    async def today(self, user_id: str, tz_offset_minutes: Any = 0) -> TodayView:
        """State and pending suggestions for the caller's local today."""
        now = self.clock()
        offset = normalize_offset_minutes(tz_offset_minutes)
        day = local_day(now, offset)
        events = await self.storage.query(user_id)
        state = replay(events, day)
        suggestions = pending_suggestions(
            self.registry,
            state,
            events,
            now,
            offset,
            cooldowns=self.cooldowns,
            cap=self.suggestion_cap,
            scope=user_id,
        )
        logger.debug("today: %s %s mode=%s suggestions=%d", user_id, day, state.mode, len(suggestions))
        return TodayView(day=day, state=state, suggestions=suggestions, state_hash=hash_state(state))

    # -- integrity --

    async def integrity_check(self, user_id: str, state: LifeState) -> tuple[bool, list[str]]:
        events = await self.storage.query(user_id)
        return integrity_check(events, state)
