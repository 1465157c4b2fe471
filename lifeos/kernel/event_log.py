"""
LifeOS Kernel — Event Log

The append-only, per-user log that is the single source of truth.

Contract:
  append(event)          → EventRef
  append_batch(events)   → list[EventRef]   (atomic: all fresh events land, or none)
  query(user_id, ...)    → events ordered by (timestamp, seq)

A duplicate (user_id, idempotency_key) is never an error. The append is a no-op
and the existing event's ref comes back with deduped=True. This is the only
deduplication boundary in the system, which makes retries safe.

Physical persistence is delegated to an implementation of EventLogStorage:
MemoryEventLog for tests and offline mirrors, PostgresEventLog for production.
"""

from __future__ import annotations

import asyncio
import copy

from lifeos.kernel.types import Event, EventRef

# ---------------------------------------------------------------------------
# Storage protocol
# ---------------------------------------------------------------------------


class EventLogStorage:
    """
    Abstract storage interface.
    Implementations must index by (user_id, timestamp) and (user_id, idempotency_key).
    """

    async def append(self, event: Event) -> EventRef:
        """Append one event. Duplicate key for the same user returns the existing ref."""
        refs = await self.append_batch([event])
        return refs[0]

    async def append_batch(self, events: list[Event]) -> list[EventRef]:
        """Append events produced by one command as a single atomic unit."""
        raise NotImplementedError

    async def query(
        self,
        user_id: str,
        *,
        since: int | None = None,
        until: int | None = None,
        idempotency_key: str | None = None,
        after_seq: int | None = None,
    ) -> list[Event]:
        """Ordered events for a user. All filters are optional and combine with AND."""
        raise NotImplementedError

    async def get_by_key(self, user_id: str, idempotency_key: str) -> Event | None:
        events = await self.query(user_id, idempotency_key=idempotency_key)
        return events[0] if events else None


def sort_events(events: list[Event]) -> list[Event]:
    """Order by timestamp, ties broken by insertion order."""
    return sorted(events, key=lambda e: (e.timestamp, e.seq if e.seq is not None else 0))


def check_batch(events: list[Event]) -> None:
    """A batch belongs to one user. Mixed batches are a programming error."""
    if not events:
        raise ValueError("append_batch requires at least one event")
    users = {e.user_id for e in events}
    if len(users) != 1:
        raise ValueError(f"append_batch events span multiple users: {sorted(users)}")


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class MemoryEventLog(EventLogStorage):
    """In-memory event log for tests and local mirrors."""

    def __init__(self) -> None:
        self._events: dict[str, list[Event]] = {}
        self._by_key: dict[tuple[str, str], Event] = {}
        self._seq = 0
        self._lock = asyncio.Lock()

    async def append_batch(self, events: list[Event]) -> list[EventRef]:
        check_batch(events)
        async with self._lock:
            refs: list[EventRef] = []
            fresh: list[Event] = []
            pending_keys: dict[str, Event] = {}
            seq = self._seq

            # Plan the whole batch first so a failure cannot leave half of it behind
            for event in events:
                key = (event.user_id, event.idempotency_key)
                existing = self._by_key.get(key) or pending_keys.get(event.idempotency_key)
                if existing is not None:
                    refs.append(EventRef(event.user_id, event.idempotency_key, existing.seq, deduped=True))
                    continue
                seq += 1
                stored = Event(
                    user_id=event.user_id,
                    timestamp=event.timestamp,
                    type=event.type,
                    metadata=copy.deepcopy(event.metadata),
                    idempotency_key=event.idempotency_key,
                    seq=seq,
                )
                pending_keys[event.idempotency_key] = stored
                fresh.append(stored)
                refs.append(EventRef(event.user_id, event.idempotency_key, seq))

            self._seq = seq
            for stored in fresh:
                self._events.setdefault(stored.user_id, []).append(stored)
                self._by_key[(stored.user_id, stored.idempotency_key)] = stored
            return refs

    async def query(
        self,
        user_id: str,
        *,
        since: int | None = None,
        until: int | None = None,
        idempotency_key: str | None = None,
        after_seq: int | None = None,
    ) -> list[Event]:
        if idempotency_key is not None:
            hit = self._by_key.get((user_id, idempotency_key))
            candidates = [hit] if hit is not None else []
        else:
            candidates = list(self._events.get(user_id, []))

        result = []
        for event in candidates:
            if since is not None and event.timestamp < since:
                continue
            if until is not None and event.timestamp > until:
                continue
            if after_seq is not None and (event.seq or 0) <= after_seq:
                continue
            result.append(copy.deepcopy(event))
        return sort_events(result)

    def count(self, user_id: str | None = None) -> int:
        if user_id is None:
            return sum(len(v) for v in self._events.values())
        return len(self._events.get(user_id, []))
