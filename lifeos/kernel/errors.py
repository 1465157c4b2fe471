"""
LifeOS Kernel — Exceptions

A duplicate command is not an error: it is reported as success with deduped=True.
"""

from __future__ import annotations


class ValidationError(Exception):
    """Malformed or unauthorized command. No event is appended."""

    code = "VALIDATION_ERROR"


class StorageUnavailable(Exception):
    """Transient storage or network failure. Safe to retry with the same idempotency key."""


class ReconciliationConflict(Exception):
    """Remote log diverged from a local optimistic event sharing its idempotency key."""

    def __init__(self, idempotency_key: str, detail: str = ""):
        self.idempotency_key = idempotency_key
        self.detail = detail
        super().__init__(f"{idempotency_key}: {detail}" if detail else idempotency_key)


class CorruptEvent(Exception):
    """An event could not be decoded during replay. Replay fails closed."""

    code = "CORRUPT_EVENT"

    def __init__(self, message: str, *, idempotency_key: str | None = None):
        self.idempotency_key = idempotency_key
        super().__init__(message)
