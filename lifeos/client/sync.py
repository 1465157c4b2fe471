"""
LocalFirstClient — optimistic apply, outbox draining and reconciliation.

    submit(command)
        → CommandExecutor on the local mirror (same validation, same dedupe)
        → speculative events + outbox entry

    reconcile()
        → drain the outbox in submission order against the remote log
            ack        → remembered until the next pull
            rejected   → rolled back locally, reported
            transient  → backoff, stop (later commands wait their turn)
            corrupt    → CorruptEvent raised, entry stays queued
        → pull the remote feed after the cursor
        → remote events replace speculative copies (remote wins)

    today()
        → replay both tiers, run the policies locally, cache the result

Suggestions are never read from the cache as truth. They are recomputed on
every refresh, so a stale cached suggestion heals itself.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from lifeos.client.local_log import LocalEventLog
from lifeos.client.outbox import Outbox
from lifeos.client.remote import RemoteEventLog
from lifeos.client.store import KEY_PREFIX, LocalStore
from lifeos.kernel.assembly import DAILY_SUGGESTION_CAP, pending_suggestions
from lifeos.kernel.commands import CommandExecutor, parse_command
from lifeos.kernel.errors import CorruptEvent, ReconciliationConflict, StorageUnavailable, ValidationError
from lifeos.kernel.hashing import hash_state
from lifeos.kernel.policies import default_registry
from lifeos.kernel.policy_engine import CooldownTable, PolicyRegistry
from lifeos.kernel.reducer import replay
from lifeos.kernel.types import (
    Command,
    CommandResult,
    LifeState,
    TodayView,
    local_day,
    normalize_offset_minutes,
    now_ms,
)

logger = logging.getLogger(__name__)

TODAY_KEY = f"{KEY_PREFIX}today"

DEFAULT_BASE_DELAY_MS = 1_000
DEFAULT_MAX_DELAY_MS = 5 * 60 * 1_000
DEFAULT_MAX_ATTEMPTS = 8


@dataclass
class ReconcileReport:
    """
    What one reconcile() pass did.
    `stalled` lists pending commands whose retries are exhausted. They stay
    queued and are reported as pending, neither failed nor succeeded.
    """

    acked: list[str] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)
    stalled: list[str] = field(default_factory=list)
    conflicts: list[ReconciliationConflict] = field(default_factory=list)
    pulled: int = 0
    online: bool = True


class LocalFirstClient:
    """One user's device: local mirror, outbox and a remote to reconcile with."""

    def __init__(
        self,
        user_id: str,
        store: LocalStore,
        remote: RemoteEventLog,
        registry: PolicyRegistry | None = None,
        clock: Callable[[], int] | None = None,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        suggestion_cap: int = DAILY_SUGGESTION_CAP,
    ):
        self.user_id = user_id
        self.store = store
        self.remote = remote
        self.log = LocalEventLog(store)
        self.outbox = Outbox(store)
        self.registry = registry if registry is not None else default_registry()
        self.cooldowns = CooldownTable()
        self.clock = clock or now_ms
        self.executor = CommandExecutor(self.log, clock=self.clock)
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.max_attempts = max_attempts
        self.suggestion_cap = suggestion_cap
        self._lock = asyncio.Lock()

    # -- commands --

    async def submit(self, command: Command | dict[str, Any]) -> CommandResult:
        """
        Apply a command optimistically and queue it for the remote log.
        A locally invalid command is reported and never queued.
        """
        try:
            command = parse_command(command)
        except ValidationError as e:
            return CommandResult(success=False, error=str(e), code=ValidationError.code)

        async with self._lock:
            result = await self.executor.execute(self.user_id, command)
            if result.success and not result.deduped:
                self.outbox.enqueue(command, self.clock())
                logger.debug("client: queued %s (%s)", command.cmd, command.idempotency_key)
            return result

    # -- reconciliation --

    async def reconcile(self) -> ReconcileReport:
        async with self._lock:
            report = ReconcileReport()
            await self._drain(report)
            await self._pull(report)
            for entry in self.outbox.pending():
                report.pending.append(entry.key)
                if entry.attempts >= self.max_attempts:
                    report.stalled.append(entry.key)
            return report

    async def _drain(self, report: ReconcileReport) -> None:
        now = self.clock()
        for entry in self.outbox.pending():
            if entry.next_attempt_at > now:
                # Backing off. Later commands wait so submission order holds
                return
            try:
                result = await self.remote.submit(self.user_id, entry.command)
            except StorageUnavailable as e:
                failed = self.outbox.record_failure(entry.key, str(e), now, self.base_delay_ms, self.max_delay_ms)
                logger.warning(
                    "reconcile: %s not delivered (attempt %d): %s", entry.key, failed.attempts if failed else 0, e
                )
                report.online = False
                return
            except CorruptEvent as e:
                logger.error("reconcile: remote log is corrupt, %s stays queued: %s", entry.key, e)
                raise

            if result.success:
                self.outbox.ack(entry.key)
                self.log.mark_acked(entry.key)
                report.acked.append(entry.key)
                continue

            self.outbox.reject(entry.key)
            dropped = self.log.drop_speculative(entry.key)
            report.rejected[entry.key] = result.error or "rejected"
            logger.warning(
                "reconcile: %s rejected remotely, rolled back %d events: %s", entry.key, len(dropped), result.error
            )

    async def _pull(self, report: ReconcileReport) -> None:
        try:
            events = await self.remote.fetch_events(self.user_id, after_seq=self.log.cursor)
        except StorageUnavailable as e:
            logger.warning("reconcile: feed unavailable: %s", e)
            report.online = False
            return
        except CorruptEvent as e:
            logger.error("reconcile: remote log is corrupt, not retrying: %s", e)
            raise
        report.pulled = len(events)
        report.conflicts = self.log.merge_remote(events)
        for conflict in report.conflicts:
            logger.warning("reconcile: superseded local event %s", conflict)

    async def run(self, interval_s: float = 30.0, stop: asyncio.Event | None = None) -> None:
        """Reconcile every `interval_s` seconds until `stop` is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            report = await self.reconcile()
            if report.stalled:
                logger.warning("reconcile: %d commands still pending after retries", len(report.stalled))
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_s)
            except TimeoutError:
                pass

    # -- reads --

    async def state(self, day: str, speculative: bool = True) -> LifeState:
        """Replay the mirror for `day`. speculative=False folds the remote tier only."""
        events = await self.log.query(self.user_id) if speculative else self.log.authoritative()
        return replay(events, day)

    async def today(self, tz_offset_minutes: Any = 0) -> TodayView:
        """Recompute state and suggestions for the local today and cache them."""
        now = self.clock()
        offset = normalize_offset_minutes(tz_offset_minutes)
        day = local_day(now, offset)
        events = await self.log.query(self.user_id)
        state = replay(events, day)
        suggestions = pending_suggestions(
            self.registry,
            state,
            events,
            now,
            offset,
            cooldowns=self.cooldowns,
            cap=self.suggestion_cap,
            scope=self.user_id,
        )
        view = TodayView(day=day, state=state, suggestions=suggestions, state_hash=hash_state(state))

        previous = self.store.get(TODAY_KEY) or {}
        current_ids = {a.id for a in suggestions}
        expired = [s["id"] for s in previous.get("suggestions", []) if s["id"] not in current_ids]
        self.store.set(
            TODAY_KEY,
            {
                "day": day,
                "state": state.to_dict(),
                "suggestions": [a.to_dict() for a in suggestions],
                "expired": expired,
                "state_hash": view.state_hash,
            },
        )
        return view

    def cached_today(self) -> dict[str, Any] | None:
        """Last computed today view, for showing something before the first refresh."""
        return self.store.get(TODAY_KEY)
