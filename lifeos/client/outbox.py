"""
Outbox — commands applied locally but not yet acknowledged by the remote log.

Entries keep submission order. An entry leaves the outbox when the remote log
acknowledges its idempotency key (ack) or rejects it (reject). Transient
failures only bump the attempt counter and push next_attempt_at back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from lifeos.client.store import KEY_PREFIX, LocalStore
from lifeos.kernel.types import Command

OUTBOX_KEY = f"{KEY_PREFIX}outbox"


@dataclass
class OutboxEntry:
    command: Command
    enqueued_at: int
    attempts: int = 0
    last_error: str | None = None
    next_attempt_at: int = 0

    @property
    def key(self) -> str:
        return self.command.idempotency_key

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command.to_dict(),
            "enqueued_at": self.enqueued_at,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "next_attempt_at": self.next_attempt_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> OutboxEntry:
        return cls(
            command=Command.from_dict(d["command"]),
            enqueued_at=d["enqueued_at"],
            attempts=d.get("attempts", 0),
            last_error=d.get("last_error"),
            next_attempt_at=d.get("next_attempt_at", 0),
        )


def backoff_ms(attempts: int, base_ms: int, max_ms: int) -> int:
    """Exponential backoff: base * 2**(attempts - 1), capped."""
    return min(max_ms, base_ms * 2 ** max(0, attempts - 1))


class Outbox:
    """FIFO of OutboxEntry persisted in a LocalStore."""

    def __init__(self, store: LocalStore):
        self.store = store

    def _entries(self) -> list[OutboxEntry]:
        return [OutboxEntry.from_dict(d) for d in self.store.get(OUTBOX_KEY, [])]

    def _save(self, entries: list[OutboxEntry]) -> None:
        self.store.set(OUTBOX_KEY, [e.to_dict() for e in entries])

    def enqueue(self, command: Command, now: int) -> OutboxEntry:
        """Queue a command. A key that is already queued keeps its original entry."""
        entries = self._entries()
        for entry in entries:
            if entry.key == command.idempotency_key:
                return entry
        entry = OutboxEntry(command=command, enqueued_at=now, next_attempt_at=now)
        entries.append(entry)
        self._save(entries)
        return entry

    def pending(self) -> list[OutboxEntry]:
        return self._entries()

    def get(self, key: str) -> OutboxEntry | None:
        for entry in self._entries():
            if entry.key == key:
                return entry
        return None

    def _remove(self, key: str) -> OutboxEntry | None:
        entries = self._entries()
        removed = next((e for e in entries if e.key == key), None)
        if removed is not None:
            self._save([e for e in entries if e.key != key])
        return removed

    def ack(self, key: str) -> OutboxEntry | None:
        """The remote log has the command."""
        return self._remove(key)

    def reject(self, key: str) -> OutboxEntry | None:
        """The remote log refused the command. The caller rolls it back."""
        return self._remove(key)

    def record_failure(self, key: str, error: str, now: int, base_ms: int, max_ms: int) -> OutboxEntry | None:
        entries = self._entries()
        for entry in entries:
            if entry.key == key:
                entry.attempts += 1
                entry.last_error = error
                entry.next_attempt_at = now + backoff_ms(entry.attempts, base_ms, max_ms)
                self._save(entries)
                return entry
        return None

    def __len__(self) -> int:
        return len(self.store.get(OUTBOX_KEY, []))
