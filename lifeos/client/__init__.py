"""
LifeOS local-first client.

Components:
  store      — durable key-value store for the mirror and the outbox
  local_log  — two-tier local mirror of the event log (authoritative + speculative)
  outbox     — queue of commands not yet acknowledged by the remote log
  remote     — adapters for the remote event log (HTTP, in-process kernel)
  sync       — LocalFirstClient: optimistic apply, reconciliation, today()
"""

from lifeos.client.local_log import LocalEventLog
from lifeos.client.outbox import Outbox, OutboxEntry
from lifeos.client.remote import HttpRemoteEventLog, KernelRemoteEventLog, RemoteEventLog
from lifeos.client.store import FileLocalStore, LocalStore, MemoryLocalStore
from lifeos.client.sync import LocalFirstClient, ReconcileReport

__all__ = [
    "FileLocalStore",
    "HttpRemoteEventLog",
    "KernelRemoteEventLog",
    "LocalEventLog",
    "LocalFirstClient",
    "LocalStore",
    "MemoryLocalStore",
    "Outbox",
    "OutboxEntry",
    "ReconcileReport",
    "RemoteEventLog",
]
