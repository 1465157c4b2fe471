"""
LifeOS Kernel — Event Construction

Factory functions for creating well-formed events.
Used by the command executor to build the events a command produces,
and by tests to build events concisely.
"""

from __future__ import annotations

from typing import Any

from lifeos.kernel.errors import CorruptEvent
from lifeos.kernel.types import Event, local_day

# 2026-01-01T12:00:00Z, a fixed default so test events are reproducible
DEFAULT_TEST_TS = 1767268800000


def make_event(
    type: str,
    metadata: dict[str, Any] | None = None,
    *,
    key: str | None = None,
    user_id: str = "user_test",
    timestamp: int | None = None,
    day: str | None = None,
    seq: int | None = None,
) -> Event:
    """
    Build a complete Event from minimal inputs.

    `day` is embedded into metadata the way the executor does at append time.
    Everything else has sensible defaults for testing.
    """
    ts = timestamp if timestamp is not None else DEFAULT_TEST_TS
    meta = dict(metadata or {})
    meta.setdefault("day", day or local_day(ts))
    return Event(
        user_id=user_id,
        timestamp=ts,
        type=type,
        metadata=meta,
        idempotency_key=key or f"test:{type.lower()}:{ts}:{seq or 0}",
        seq=seq,
    )


def derived_key(command_key: str, suffix: str) -> str:
    """Idempotency key for a secondary event produced by the same command."""
    return f"{command_key}:{suffix}"


def decode_event(row: dict[str, Any]) -> Event:
    """
    Decode a stored row into an Event.
    Raises CorruptEvent instead of returning something partial.
    """
    if not isinstance(row, dict):
        raise CorruptEvent(f"Event row must be an object, got {type(row).__name__}")
    try:
        event = Event.from_dict(row)
    except (KeyError, TypeError) as e:
        raise CorruptEvent(f"Event row missing field: {e}", idempotency_key=row.get("idempotency_key")) from e

    if not isinstance(event.type, str) or not event.type:
        raise CorruptEvent("Event type must be a non-empty string", idempotency_key=event.idempotency_key)
    if not isinstance(event.metadata, dict):
        raise CorruptEvent("Event metadata must be an object", idempotency_key=event.idempotency_key)
    if isinstance(event.timestamp, bool) or not isinstance(event.timestamp, int):
        raise CorruptEvent("Event timestamp must be an integer", idempotency_key=event.idempotency_key)
    if not isinstance(event.idempotency_key, str) or not event.idempotency_key:
        raise CorruptEvent("Event idempotency_key must be a non-empty string")
    return event
