"""
LifeOS Event Log -- Append and Query Tests

The log is append-only and per user. A duplicate (user_id, idempotency_key)
is a no-op that hands back the existing ref with deduped=True.

Covers:
  - seq assignment and (timestamp, seq) ordering
  - dedupe on a single append and within / across batches
  - batch atomicity and single-user batches
  - query filters (since, until, idempotency_key, after_seq)
  - stored events are isolated from caller mutation
"""

import pytest

from lifeos.kernel.event_log import MemoryEventLog
from lifeos.kernel.events import DEFAULT_TEST_TS, make_event


def created(key, ts=DEFAULT_TEST_TS, user_id="user_test"):
    return make_event(
        "TASK_CREATED",
        {"task_id": key, "title": key, "estimate_min": 10},
        key=key,
        timestamp=ts,
        user_id=user_id,
    )


# ============================================================================
# Append
# ============================================================================


class TestAppend:
    async def test_assigns_increasing_seq(self):
        log = MemoryEventLog()
        first = await log.append(created("a"))
        second = await log.append(created("b"))
        assert first.seq == 1
        assert second.seq == 2
        assert not first.deduped and not second.deduped

    async def test_duplicate_key_returns_existing_ref(self):
        log = MemoryEventLog()
        first = await log.append(created("a"))
        again = await log.append(created("a", ts=DEFAULT_TEST_TS + 5000))
        assert again.deduped is True
        assert again.seq == first.seq
        assert log.count("user_test") == 1

    async def test_same_key_for_different_users_is_not_a_duplicate(self):
        log = MemoryEventLog()
        await log.append(created("a", user_id="alice"))
        ref = await log.append(created("a", user_id="bob"))
        assert ref.deduped is False
        assert log.count() == 2

    async def test_stored_event_is_isolated_from_caller(self):
        log = MemoryEventLog()
        event = created("a")
        await log.append(event)
        event.metadata["title"] = "mutated"
        stored = await log.get_by_key("user_test", "a")
        assert stored.metadata["title"] == "a"


class TestAppendBatch:
    async def test_batch_lands_together(self):
        log = MemoryEventLog()
        refs = await log.append_batch([created("a"), created("b"), created("c")])
        assert [r.seq for r in refs] == [1, 2, 3]
        assert log.count("user_test") == 3

    async def test_batch_dedupes_each_event(self):
        log = MemoryEventLog()
        await log.append(created("a"))
        refs = await log.append_batch([created("a"), created("b")])
        assert refs[0].deduped is True
        assert refs[1].deduped is False
        assert log.count("user_test") == 2

    async def test_repeated_key_inside_one_batch_lands_once(self):
        log = MemoryEventLog()
        refs = await log.append_batch([created("a"), created("a")])
        assert refs[1].deduped is True
        assert refs[1].seq == refs[0].seq
        assert log.count("user_test") == 1

    async def test_mixed_users_rejected_without_writing(self):
        log = MemoryEventLog()
        with pytest.raises(ValueError):
            await log.append_batch([created("a", user_id="alice"), created("b", user_id="bob")])
        assert log.count() == 0

    async def test_empty_batch_rejected(self):
        log = MemoryEventLog()
        with pytest.raises(ValueError):
            await log.append_batch([])


# ============================================================================
# Query
# ============================================================================


class TestQuery:
    async def test_orders_by_timestamp_then_insertion(self):
        log = MemoryEventLog()
        await log.append(created("late", ts=DEFAULT_TEST_TS + 1000))
        await log.append(created("tie-1"))
        await log.append(created("tie-2"))
        keys = [e.idempotency_key for e in await log.query("user_test")]
        assert keys == ["tie-1", "tie-2", "late"]

    async def test_filters_by_time_range(self):
        log = MemoryEventLog()
        for i in range(5):
            await log.append(created(f"e{i}", ts=DEFAULT_TEST_TS + i * 1000))
        events = await log.query("user_test", since=DEFAULT_TEST_TS + 1000, until=DEFAULT_TEST_TS + 3000)
        assert [e.idempotency_key for e in events] == ["e1", "e2", "e3"]

    async def test_filters_by_idempotency_key(self):
        log = MemoryEventLog()
        await log.append(created("a"))
        await log.append(created("b"))
        events = await log.query("user_test", idempotency_key="b")
        assert len(events) == 1
        assert events[0].idempotency_key == "b"

    async def test_filters_after_seq(self):
        log = MemoryEventLog()
        for key in ("a", "b", "c"):
            await log.append(created(key))
        events = await log.query("user_test", after_seq=1)
        assert [e.seq for e in events] == [2, 3]

    async def test_unknown_user_is_empty(self):
        log = MemoryEventLog()
        assert await log.query("nobody") == []
        assert await log.get_by_key("nobody", "a") is None
