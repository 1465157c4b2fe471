"""
LifeOS Kernel — the event-sourcing core.

Components:
  event_log       — append-only per-user log, idempotency-key dedupe
  reducer         — (state, event) → state  (pure, deterministic)
  policy_engine   — registry + cooldown table + run_policies
  policies        — the built-in behavioural heuristics
  commands        — command → events, exactly once per idempotency key
  assembly        — LifeKernel, coordinates the above with storage IO
"""

from lifeos.kernel.assembly import LifeKernel, integrity_check, pending_suggestions
from lifeos.kernel.commands import COMMANDS, CommandExecutor, parse_command
from lifeos.kernel.context import build_policy_context
from lifeos.kernel.errors import CorruptEvent, ReconciliationConflict, StorageUnavailable, ValidationError
from lifeos.kernel.event_log import EventLogStorage, MemoryEventLog
from lifeos.kernel.hashing import hash_state
from lifeos.kernel.policies import default_registry
from lifeos.kernel.policy_engine import CooldownTable, Policy, PolicyRegistry, run_policies
from lifeos.kernel.reducer import create_initial_state, reduce, replay
from lifeos.kernel.types import (
    Command,
    CommandResult,
    Event,
    EventRef,
    EventType,
    LifeState,
    PolicyContext,
    ProposedAction,
    TodayView,
)

__all__ = [
    "COMMANDS",
    "Command",
    "CommandExecutor",
    "CommandResult",
    "CooldownTable",
    "CorruptEvent",
    "Event",
    "EventLogStorage",
    "EventRef",
    "EventType",
    "LifeKernel",
    "LifeState",
    "MemoryEventLog",
    "Policy",
    "PolicyContext",
    "PolicyRegistry",
    "ProposedAction",
    "ReconciliationConflict",
    "StorageUnavailable",
    "TodayView",
    "ValidationError",
    "build_policy_context",
    "create_initial_state",
    "default_registry",
    "hash_state",
    "integrity_check",
    "parse_command",
    "pending_suggestions",
    "reduce",
    "replay",
    "run_policies",
]
