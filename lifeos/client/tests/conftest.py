"""
Client test configuration.

Devices share one in-process LifeKernel as their remote log and one fixed clock.
"""

import pytest

from lifeos.client.remote import KernelRemoteEventLog, RemoteEventLog
from lifeos.client.store import MemoryLocalStore
from lifeos.client.sync import LocalFirstClient
from lifeos.kernel.assembly import LifeKernel
from lifeos.kernel.errors import StorageUnavailable
from lifeos.kernel.event_log import MemoryEventLog
from lifeos.kernel.events import DEFAULT_TEST_TS

USER = "user_test"


class FixedClock:
    """Epoch-ms clock that only moves when told to."""

    def __init__(self, now: int = DEFAULT_TEST_TS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, *, seconds: float = 0, hours: float = 0) -> None:
        self.now += int(seconds * 1000 + hours * 3_600_000)


class SwitchableRemote(RemoteEventLog):
    """Wraps a remote and fails with StorageUnavailable while offline."""

    def __init__(self, inner: RemoteEventLog):
        self.inner = inner
        self.online = True
        self.submitted: list[str] = []

    async def submit(self, user_id, command):
        if not self.online:
            raise StorageUnavailable("offline")
        self.submitted.append(command.idempotency_key)
        return await self.inner.submit(user_id, command)

    async def fetch_events(self, user_id, after_seq=None):
        if not self.online:
            raise StorageUnavailable("offline")
        return await self.inner.fetch_events(user_id, after_seq)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def server(clock):
    return LifeKernel(MemoryEventLog(), clock=clock)


@pytest.fixture
def make_device(server, clock):
    """Factory for devices of USER, each with its own store and network switch."""

    def make(**kwargs):
        remote = SwitchableRemote(KernelRemoteEventLog(server))
        return LocalFirstClient(USER, MemoryLocalStore(), remote, clock=clock, **kwargs)

    return make
