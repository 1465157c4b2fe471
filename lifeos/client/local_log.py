"""
LocalEventLog — the client's two-tier mirror of a user's event log.

  authoritative  events pulled from the remote log, in remote seq order.
                 Only ever extended by merge_remote().
  speculative    events applied optimistically on this device, each tagged
                 with the key of the command that produced it. They carry
                 no seq until the remote log has them.

The mirror implements EventLogStorage, so the optimistic apply runs through
the same CommandExecutor and the same idempotency rule as the server. A key
present in either tier is a duplicate.

Promotion rule: a speculative event is replaced by the remote event with the
same idempotency key when the feed is pulled. Speculative events of a command
the remote log has acknowledged, but that have no remote counterpart, are
dropped after the next pull. The remote log always wins.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from lifeos.client.store import KEY_PREFIX, LocalStore
from lifeos.kernel.errors import ReconciliationConflict
from lifeos.kernel.event_log import EventLogStorage, check_batch
from lifeos.kernel.events import decode_event
from lifeos.kernel.types import Event, EventRef

logger = logging.getLogger(__name__)

AUTHORITATIVE_KEY = f"{KEY_PREFIX}events:authoritative"
SPECULATIVE_KEY = f"{KEY_PREFIX}events:speculative"
CURSOR_KEY = f"{KEY_PREFIX}cursor"
ACKED_KEY = f"{KEY_PREFIX}acked"


def _same_fact(a: Event, b: Event) -> bool:
    """Two copies of one logical event. Timestamps differ between devices and are ignored."""
    return a.type == b.type and a.metadata == b.metadata


class LocalEventLog(EventLogStorage):
    """Single-user mirror persisted in a LocalStore."""

    def __init__(self, store: LocalStore):
        self.store = store

    # -- tiers --

    def authoritative(self) -> list[Event]:
        return [decode_event(row) for row in self.store.get(AUTHORITATIVE_KEY, [])]

    def speculative(self, command_key: str | None = None) -> list[Event]:
        return [
            decode_event(entry["event"])
            for entry in self.store.get(SPECULATIVE_KEY, [])
            if command_key is None or entry["command_key"] == command_key
        ]

    @property
    def cursor(self) -> int | None:
        """Highest remote seq merged so far."""
        return self.store.get(CURSOR_KEY)

    # -- EventLogStorage --

    async def append_batch(self, events: list[Event]) -> list[EventRef]:
        """Append a command's events to the speculative tier."""
        check_batch(events)
        known = {e.idempotency_key: e for e in self.authoritative() + self.speculative()}
        # The executor puts the command's own key first in every batch
        command_key = events[0].idempotency_key

        entries = self.store.get(SPECULATIVE_KEY, [])
        refs: list[EventRef] = []
        for event in events:
            existing = known.get(event.idempotency_key)
            if existing is not None:
                refs.append(EventRef(event.user_id, event.idempotency_key, existing.seq, deduped=True))
                continue
            stored = copy.deepcopy(event)
            stored.seq = None
            entries.append({"command_key": command_key, "event": stored.to_dict()})
            known[event.idempotency_key] = stored
            refs.append(EventRef(event.user_id, event.idempotency_key, None))
        self.store.set(SPECULATIVE_KEY, entries)
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
        """
        Both tiers merged by timestamp. Ties keep authoritative events first.
        `after_seq` selects authoritative events only, speculative ones have no seq.
        """
        events = self.authoritative() + self.speculative()
        result = []
        for event in events:
            if event.user_id != user_id:
                continue
            if since is not None and event.timestamp < since:
                continue
            if until is not None and event.timestamp > until:
                continue
            if idempotency_key is not None and event.idempotency_key != idempotency_key:
                continue
            if after_seq is not None and (event.seq is None or event.seq <= after_seq):
                continue
            result.append(event)
        return sorted(result, key=lambda e: e.timestamp)

    # -- reconciliation --

    def drop_speculative(self, command_key: str) -> list[Event]:
        """Roll back every optimistic event a command produced."""
        entries = self.store.get(SPECULATIVE_KEY, [])
        kept = [entry for entry in entries if entry["command_key"] != command_key]
        dropped = [decode_event(entry["event"]) for entry in entries if entry["command_key"] == command_key]
        self.store.set(SPECULATIVE_KEY, kept)
        return dropped

    def mark_acked(self, command_key: str) -> None:
        """The remote log has the command. Its speculative events go at the next pull."""
        acked = self.store.get(ACKED_KEY, [])
        if command_key not in acked:
            acked.append(command_key)
            self.store.set(ACKED_KEY, acked)

    def merge_remote(self, remote_events: list[Event]) -> list[ReconciliationConflict]:
        """
        Promote a page of the remote feed into the authoritative tier.

        Speculative copies of the same keys are discarded. Afterwards the
        leftovers of acknowledged commands are dropped too. Returns one conflict
        for every speculative event that disagreed with the remote log.
        """
        authoritative: list[dict[str, Any]] = self.store.get(AUTHORITATIVE_KEY, [])
        have = {row["idempotency_key"] for row in authoritative}
        entries = self.store.get(SPECULATIVE_KEY, [])
        speculative = {entry["event"]["idempotency_key"]: entry for entry in entries}
        cursor = self.cursor
        conflicts: list[ReconciliationConflict] = []

        for event in sorted(remote_events, key=lambda e: e.seq or 0):
            if event.seq is not None and (cursor is None or event.seq > cursor):
                cursor = event.seq
            if event.idempotency_key in have:
                continue
            authoritative.append(event.to_dict())
            have.add(event.idempotency_key)

            local = speculative.pop(event.idempotency_key, None)
            if local is not None and not _same_fact(decode_event(local["event"]), event):
                conflicts.append(
                    ReconciliationConflict(event.idempotency_key, "remote event differs from the local copy")
                )

        acked = set(self.store.get(ACKED_KEY, []))
        kept = []
        for entry in speculative.values():
            if entry["command_key"] in acked:
                conflicts.append(
                    ReconciliationConflict(entry["event"]["idempotency_key"], "no remote counterpart")
                )
                continue
            kept.append(entry)

        self.store.set(AUTHORITATIVE_KEY, authoritative)
        self.store.set(SPECULATIVE_KEY, kept)
        self.store.set(CURSOR_KEY, cursor)
        self.store.delete(ACKED_KEY)
        logger.debug("local_log: merged %d remote events, cursor=%s", len(remote_events), cursor)
        return conflicts
