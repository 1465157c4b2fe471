"""
Kernel test configuration.

Kernel tests run entirely on MemoryEventLog with a fixed clock.
PostgresEventLog tests that need DATABASE_URL are skipped automatically when not set.
"""

import pytest

from lifeos.kernel.assembly import LifeKernel
from lifeos.kernel.commands import CommandExecutor
from lifeos.kernel.event_log import MemoryEventLog
from lifeos.kernel.events import DEFAULT_TEST_TS


class FixedClock:
    """Epoch-ms clock that only moves when told to."""

    def __init__(self, now: int = DEFAULT_TEST_TS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, *, hours: float = 0, minutes: float = 0) -> None:
        self.now += int(hours * 3_600_000 + minutes * 60_000)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def storage():
    return MemoryEventLog()


@pytest.fixture
def executor(storage, clock):
    return CommandExecutor(storage, clock=clock)


@pytest.fixture
def kernel(storage, clock):
    return LifeKernel(storage, clock=clock)
