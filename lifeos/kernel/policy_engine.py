"""
LifeOS Kernel — Policy Engine

A policy is a pure function (PolicyContext) → list[ProposedAction] registered
under a unique name. run_policies invokes every registered policy, resolves
cooldown-key collisions, consults the cooldown table, and returns the surviving
suggestions sorted by priority (descending, ties in registration order).

Policies are independent. Running [A, B] or [B, A] on the same context yields
the same set of surviving suggestions:
  - within one run, a cooldown-key collision goes to the highest priority,
    ties to the smaller action id (content, not position, decides);
  - across runs, the cooldown table suppresses a different action claiming a
    key that is still cooling down.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from lifeos.kernel.types import PolicyContext, ProposedAction

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DEFAULT_COOLDOWN_HOURS = 12.0


@dataclass(frozen=True)
class Policy:
    name: str
    propose: Callable[[PolicyContext], list[ProposedAction]]
    cooldown_hours: float = DEFAULT_COOLDOWN_HOURS


class PolicyRegistry:
    """
    Explicit, instance-owned set of policies. Keeps registration order.
    Registering a name twice is a no-op so reloads are safe.
    """

    def __init__(self, policies: list[Policy] | None = None):
        self._policies: dict[str, Policy] = {}
        for policy in policies or []:
            self.register(policy)

    def register(self, policy: Policy) -> bool:
        if policy.name in self._policies:
            return False
        self._policies[policy.name] = policy
        return True

    def unregister(self, name: str) -> bool:
        return self._policies.pop(name, None) is not None

    def get(self, name: str) -> Policy | None:
        return self._policies.get(name)

    def names(self) -> list[str]:
        return list(self._policies)

    def __iter__(self) -> Iterator[Policy]:
        return iter(list(self._policies.values()))

    def __len__(self) -> int:
        return len(self._policies)

    def __contains__(self, name: object) -> bool:
        return name in self._policies


class CooldownTable:
    """
    cooldown_key → (expires_at_ms, action_id), scoped per user.

    admit() checks and claims under one lock so concurrent evaluations cannot
    both surface different actions for the same key.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], tuple[int, str]] = {}
        self._lock = threading.Lock()

    def active(self, key: str, now: int, scope: str = "") -> tuple[int, str] | None:
        with self._lock:
            entry = self._entries.get((scope, key))
        if entry is None or entry[0] <= now:
            return None
        return entry

    def admit(
        self,
        actions: list[ProposedAction],
        now: int,
        scope: str = "",
        limit: int | None = None,
    ) -> list[ProposedAction]:
        """
        Return the actions not blocked by an unexpired claim, claiming keys for them.
        Stops after `limit` admissions so actions that are never shown claim nothing.
        """
        admitted: list[ProposedAction] = []
        with self._lock:
            for action in actions:
                if limit is not None and len(admitted) >= limit:
                    break
                if action.cooldown_key is None:
                    admitted.append(action)
                    continue
                slot = (scope, action.cooldown_key)
                entry = self._entries.get(slot)
                if entry is not None and entry[0] > now:
                    if entry[1] != action.id:
                        continue
                else:
                    hours = action.cooldown_hours if action.cooldown_hours is not None else DEFAULT_COOLDOWN_HOURS
                    expires = now + int(hours * HOUR_MS)
                    self._entries[slot] = (expires, action.id)
                admitted.append(action)
        return admitted

    def clear(self, scope: str | None = None) -> None:
        with self._lock:
            if scope is None:
                self._entries.clear()
            else:
                for slot in [s for s in self._entries if s[0] == scope]:
                    del self._entries[slot]

    def __len__(self) -> int:
        return len(self._entries)


def _feedback_status(ctx: PolicyContext, action: ProposedAction) -> str:
    feedback = ctx.state.suggestion_feedback.get(action.id)
    if feedback is None:
        return action.status
    return "accepted" if feedback == "accepted" else "ignored"


def _resolve_collisions(actions: list[ProposedAction]) -> list[ProposedAction]:
    """One survivor per cooldown key: highest priority, then smallest id."""
    winners: dict[str, ProposedAction] = {}
    for action in actions:
        if action.cooldown_key is None:
            continue
        current = winners.get(action.cooldown_key)
        if current is None or (-action.priority, action.id) < (-current.priority, current.id):
            winners[action.cooldown_key] = action
    return [a for a in actions if a.cooldown_key is None or winners[a.cooldown_key] is a]


def run_policies(
    registry: PolicyRegistry,
    ctx: PolicyContext,
    cooldowns: CooldownTable | None = None,
    limit: int | None = None,
    scope: str = "",
) -> list[ProposedAction]:
    proposed: list[ProposedAction] = []
    for policy in registry:
        actions = policy.propose(ctx)
        for action in actions:
            if action.cooldown_hours is None:
                action.cooldown_hours = policy.cooldown_hours
            action.status = _feedback_status(ctx, action)
        proposed.extend(actions)

    survivors = _resolve_collisions(proposed)
    # Stable sort: equal priorities keep registration order
    ranked = sorted(survivors, key=lambda a: -a.priority)
    if cooldowns is not None:
        ranked = cooldowns.admit(ranked, ctx.now, scope=scope, limit=limit)
    elif limit is not None:
        ranked = ranked[:limit]

    if len(ranked) < len(proposed):
        logger.debug("policies: %d of %d proposals survived", len(ranked), len(proposed))
    return ranked
