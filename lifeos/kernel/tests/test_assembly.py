"""
LifeOS Kernel Assembly -- End-to-End Tests

Exercises LifeKernel on MemoryEventLog: commands in, today's state and
suggestions out.
"""

import asyncio

from lifeos.kernel.assembly import LifeKernel, integrity_check
from lifeos.kernel.hashing import hash_state
from lifeos.kernel.policy_engine import Policy, PolicyRegistry
from lifeos.kernel.reducer import replay
from lifeos.kernel.types import ProposedAction

USER = "user_test"
DAY = "2026-01-01"


def cmd(name, key, **payload):
    return {"cmd": name, "input": payload, "idempotencyKey": key}


def always(action_id, priority, cooldown_key):
    """A policy that proposes one fixed action every run."""

    def propose(ctx):
        return [
            ProposedAction(
                id=action_id,
                type="TEST_ACTION",
                priority=priority,
                reason={"code": "TEST", "detail": action_id},
                cooldown_key=cooldown_key,
            )
        ]

    return Policy(action_id, propose)


async def recovery_day(kernel):
    """Fragile habits, three open tasks and a blown food budget."""
    for i in range(4):
        await kernel.execute(USER, cmd("log_habit", f"h{i}", habitId="walk", status="missed"))
    for i, estimate in enumerate((20, 5, 10)):
        await kernel.execute(USER, cmd("create_task", f"t{i}", title=f"Task {i}", estimateMin=estimate))
    await kernel.execute(USER, cmd("set_budget", "b1", category="food", monthlyLimit=100))
    await kernel.execute(USER, cmd("add_expense", "e1", amount=150, category="food"))


# ============================================================================
# Today
# ============================================================================


class TestToday:
    async def test_empty_log_only_suggests_a_light_day(self, kernel):
        view = await kernel.today(USER)
        assert view.day == DAY
        assert [(a.type, a.id) for a in view.suggestions] == [
            ("SUGGEST_LIGHT_DAY", f"momentum_builder:SUGGEST_LIGHT_DAY:{DAY}")
        ]
        assert view.state_hash == hash_state(view.state)

    async def test_recovery_day_is_capped_and_ordered(self, kernel):
        await recovery_day(kernel)
        view = await kernel.today(USER)
        assert view.state.mode == "recovery"
        assert [a.type for a in view.suggestions] == [
            "MICRO_RECOVERY_PROTOCOL",
            "SUGGEST_TINY_WIN",
            "SUGGEST_NO_SPEND_TODAY",
        ]
        assert [a.priority for a in view.suggestions] == [5, 4, 4]

    async def test_refresh_returns_the_same_suggestions(self, kernel):
        await recovery_day(kernel)
        first = await kernel.today(USER)
        second = await kernel.today(USER)
        assert [a.id for a in first.suggestions] == [a.id for a in second.suggestions]

    async def test_accepted_suggestion_is_no_longer_pending(self, kernel):
        [light_day] = (await kernel.today(USER)).suggestions
        result = await kernel.execute(
            USER, cmd("accept_suggestion", "f1", suggestionId=light_day.id, suggestionType=light_day.type)
        )
        assert result.success
        view = await kernel.today(USER)
        assert view.suggestions == []
        assert view.state.suggestion_feedback == {light_day.id: "accepted"}

    async def test_timezone_offset_picks_the_local_day(self, kernel):
        view = await kernel.today(USER, tz_offset_minutes=720)
        assert view.day == "2026-01-02"

    async def test_empty_registry_suggests_nothing(self, storage, clock):
        kernel = LifeKernel(storage, registry=PolicyRegistry(), clock=clock)
        assert (await kernel.today(USER)).suggestions == []

    async def test_suggestions_cut_by_the_cap_hold_no_cooldown(self, storage, clock):
        registry = PolicyRegistry(
            [always("a", 5, "ka"), always("b", 4, "kb"), always("c", 3, "kc"), always("d", 2, "shared")]
        )
        kernel = LifeKernel(storage, registry=registry, clock=clock)
        view = await kernel.today(USER)
        assert [a.id for a in view.suggestions] == ["a", "b", "c"]
        assert len(kernel.cooldowns) == 3
        assert kernel.cooldowns.active("shared", clock(), scope=USER) is None

        kernel.registry = PolicyRegistry([always("e", 3, "shared")])
        assert [a.id for a in (await kernel.today(USER)).suggestions] == ["e"]

    async def test_accepted_suggestions_hold_no_cooldown(self, kernel):
        [light_day] = (await kernel.today(USER)).suggestions
        kernel.cooldowns.clear()
        await kernel.execute(
            USER, cmd("accept_suggestion", "f1", suggestionId=light_day.id, suggestionType=light_day.type)
        )
        await kernel.today(USER)
        assert len(kernel.cooldowns) == 0


# ============================================================================
# Commands through the kernel
# ============================================================================


class TestKernelCommands:
    async def test_concurrent_submissions_of_one_key_land_once(self, kernel, storage):
        command = cmd("create_task", "k1", title="Once", estimateMin=10)
        results = await asyncio.gather(*(kernel.execute(USER, command) for _ in range(5)))
        assert all(r.success for r in results)
        assert sum(not r.deduped for r in results) == 1
        assert storage.count(USER) == 1

    async def test_events_after_seq(self, kernel):
        for i in range(3):
            await kernel.execute(USER, cmd("start_session", f"s{i}"))
        events = await kernel.events(USER, after_seq=1)
        assert [e.idempotency_key for e in events] == ["s1", "s2"]

    async def test_state_for_an_earlier_day(self, kernel, clock):
        await kernel.execute(USER, cmd("create_task", "k1", title="Day one", estimateMin=10))
        clock.advance(hours=24)
        await kernel.execute(USER, cmd("create_task", "k2", title="Day two", estimateMin=10))

        assert len((await kernel.state_for_day(USER, DAY)).tasks) == 1
        assert len((await kernel.state_for_day(USER, "2026-01-02")).tasks) == 2


# ============================================================================
# Integrity
# ============================================================================


class TestIntegrityCheck:
    async def test_replayed_state_passes(self, kernel):
        await recovery_day(kernel)
        view = await kernel.today(USER)
        assert await kernel.integrity_check(USER, view.state) == (True, [])

    async def test_tampered_state_names_the_field(self, kernel, storage):
        await recovery_day(kernel)
        events = await storage.query(USER)
        state = replay(events, DAY)
        state.momentum_points = 99
        ok, messages = integrity_check(events, state)
        assert ok is False
        assert messages == ["State field does not match event replay: momentum_points"]
