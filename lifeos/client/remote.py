"""
Remote event log adapters for the local-first client.

The reconciler needs two things from the authoritative side: submit a command
with its idempotency key, and read the user's events after a seq cursor.

  HttpRemoteEventLog   — the backend's /api/commands and /api/events routes
  KernelRemoteEventLog — an in-process LifeKernel (tests, single-process setups)

Transient failures (network errors, 5xx) raise StorageUnavailable so the
outbox retries with the same key. A validation failure comes back as a failed
CommandResult and is never retried. A corrupt remote log (code CORRUPT_EVENT)
raises CorruptEvent: it is fatal and surfaces to the caller of reconcile().
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from lifeos.kernel.assembly import LifeKernel
from lifeos.kernel.errors import CorruptEvent, StorageUnavailable, ValidationError
from lifeos.kernel.events import decode_event
from lifeos.kernel.types import Command, CommandResult, Event

logger = logging.getLogger(__name__)


def _error_code(res: httpx.Response) -> str | None:
    try:
        body = res.json()
    except ValueError:
        return None
    return body.get("code") if isinstance(body, dict) else None


class RemoteEventLog:
    """Abstract remote side of reconciliation."""

    async def submit(self, user_id: str, command: Command) -> CommandResult:
        raise NotImplementedError

    async def fetch_events(self, user_id: str, after_seq: int | None = None) -> list[Event]:
        raise NotImplementedError


class KernelRemoteEventLog(RemoteEventLog):
    """Talks to a LifeKernel in the same process."""

    def __init__(self, kernel: LifeKernel):
        self.kernel = kernel

    async def submit(self, user_id: str, command: Command) -> CommandResult:
        return await self.kernel.execute(user_id, command)

    async def fetch_events(self, user_id: str, after_seq: int | None = None) -> list[Event]:
        return await self.kernel.events(user_id, after_seq=after_seq)


class HttpRemoteEventLog(RemoteEventLog):
    """
    httpx client for the LifeOS backend.

    The caller's identity travels in the X-User-Id header.
    Pass `client` to reuse a configured AsyncClient (for example one mounted on
    an ASGI transport in tests).
    """

    def __init__(self, api_url: str, client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self, user_id: str) -> dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json", "X-User-Id": user_id}

    async def _request(self, method: str, path: str, user_id: str, **kwargs: Any) -> httpx.Response:
        try:
            res = await self.client.request(method, f"{self.api_url}{path}", headers=self._headers(user_id), **kwargs)
        except httpx.TransportError as e:
            raise StorageUnavailable(f"Remote event log unreachable: {e}") from e
        if res.status_code >= 500:
            if _error_code(res) == CorruptEvent.code:
                raise CorruptEvent(f"Remote event log is corrupt: {res.json().get('detail')}")
            raise StorageUnavailable(f"Remote event log returned {res.status_code}")
        return res

    async def submit(self, user_id: str, command: Command) -> CommandResult:
        res = await self._request("POST", "/api/commands", user_id, json={"command": command.to_dict()})
        if res.status_code == 422:
            body = res.json()
            detail = body.get("detail")
            logger.info("remote: %s rejected: %s", command.idempotency_key, detail)
            return CommandResult(
                success=False,
                error=detail if isinstance(detail, str) else str(detail),
                code=body.get("code", ValidationError.code),
            )
        res.raise_for_status()
        body = res.json()
        return CommandResult(success=bool(body["success"]), deduped=bool(body.get("deduped", False)))

    async def fetch_events(self, user_id: str, after_seq: int | None = None) -> list[Event]:
        params = {"afterSeq": after_seq} if after_seq is not None else {}
        res = await self._request("GET", "/api/events", user_id, params=params)
        res.raise_for_status()
        rows = res.json().get("events")
        if not isinstance(rows, list):
            raise CorruptEvent("Remote event feed is not a list")
        return [decode_event(row) for row in rows]

    async def close(self) -> None:
        await self.client.aclose()
