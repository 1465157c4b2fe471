"""
PostgresEventLog adapter for the LifeOS kernel.

Implements the EventLogStorage protocol using Postgres as the backend.
Events live in the `events` table (see alembic/versions):

    seq              bigserial primary key   (insertion order, breaks timestamp ties)
    user_id          text
    ts               bigint                  (epoch milliseconds)
    type             text
    metadata         jsonb
    idempotency_key  text
    unique (user_id, idempotency_key), index (user_id, ts)

A batch is appended inside one transaction, so a command's events land
together or not at all. Connection-level failures surface as StorageUnavailable.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from lifeos.kernel.errors import StorageUnavailable
from lifeos.kernel.event_log import EventLogStorage, check_batch
from lifeos.kernel.events import decode_event
from lifeos.kernel.types import Event, EventRef

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.CannotConnectNowError,
    OSError,
    TimeoutError,
)

_INSERT = """
    INSERT INTO events (user_id, ts, type, metadata, idempotency_key)
    VALUES ($1, $2, $3, $4, $5)
    ON CONFLICT (user_id, idempotency_key) DO NOTHING
    RETURNING seq
"""

_EXISTING_SEQ = "SELECT seq FROM events WHERE user_id = $1 AND idempotency_key = $2"


async def init_connection(conn: asyncpg.Connection) -> None:
    """JSONB codec so metadata round-trips as Python dicts."""
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


@asynccontextmanager
async def _storage_errors() -> AsyncIterator[None]:
    try:
        yield
    except TRANSIENT_ERRORS as e:
        raise StorageUnavailable(f"Event log unavailable: {e}") from e


def _row_to_event(row: asyncpg.Record) -> Event:
    return decode_event(
        {
            "user_id": row["user_id"],
            "timestamp": row["ts"],
            "type": row["type"],
            "metadata": row["metadata"],
            "idempotency_key": row["idempotency_key"],
            "seq": row["seq"],
        }
    )


class PostgresEventLog(EventLogStorage):
    """
    Postgres-based append-only event log.
    The pool must be created with init_connection so jsonb maps to dicts.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def append_batch(self, events: list[Event]) -> list[EventRef]:
        check_batch(events)
        refs: list[EventRef] = []
        async with _storage_errors():
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    for event in events:
                        seq = await conn.fetchval(
                            _INSERT,
                            event.user_id,
                            event.timestamp,
                            event.type,
                            event.metadata,
                            event.idempotency_key,
                        )
                        if seq is not None:
                            refs.append(EventRef(event.user_id, event.idempotency_key, seq))
                            continue
                        existing = await conn.fetchval(_EXISTING_SEQ, event.user_id, event.idempotency_key)
                        refs.append(EventRef(event.user_id, event.idempotency_key, existing, deduped=True))
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
        clauses = ["user_id = $1"]
        args: list[Any] = [user_id]
        for column, op, value in (
            ("ts", ">=", since),
            ("ts", "<=", until),
            ("idempotency_key", "=", idempotency_key),
            ("seq", ">", after_seq),
        ):
            if value is not None:
                args.append(value)
                clauses.append(f"{column} {op} ${len(args)}")

        sql = (
            "SELECT seq, user_id, ts, type, metadata, idempotency_key FROM events "
            f"WHERE {' AND '.join(clauses)} ORDER BY ts, seq"
        )
        async with _storage_errors():
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(sql, *args)
        return [_row_to_event(row) for row in rows]

    async def close(self) -> None:
        """Close the connection pool."""
        await self.pool.close()
