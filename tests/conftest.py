"""Pytest fixtures for tests."""

import asyncio
import heapq
import itertools
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
import serial

from avcontrol.services.amplifier import AmplifierClient
from avcontrol.services.orchestrator import PROJECTOR_COOLDOWN_MS, DeviceOrchestrator
from avcontrol.services.projector import ProjectorDevice
from avcontrol.services.screen import ScreenDevice
from avcontrol.services.types import PowerState


async def let_tasks_run():
    """Give woken tasks a few loop iterations to reach their next await."""
    for _ in range(10):
        await asyncio.sleep(0)


async def run_inline(fn, *args):
    """Stand-in for asyncio.to_thread that runs the call on the loop, keeping timing deterministic."""
    return fn(*args)


class FakeSerialPort:
    """In-memory stand-in for serial.Serial: records writes, replays queued bytes."""

    def __init__(self, reply: bytes = b""):
        self.written = bytearray()
        self._rx = bytearray(reply)
        self.fail_write = False
        self.fail_read = False
        self.closed = False

    def feed(self, data: bytes):
        self._rx += data

    def write(self, data: bytes) -> int:
        if self.fail_write:
            raise serial.SerialException("device disconnected")
        self.written += data
        return len(data)

    def read(self, size: int = 1) -> bytes:
        if self.fail_read:
            raise serial.SerialException("device disconnected")
        chunk = bytes(self._rx[:size])
        del self._rx[:size]
        return chunk

    def close(self):
        self.closed = True


class ManualClock:
    """Virtual clock in milliseconds; `sleep` only returns when `advance` passes its deadline."""

    def __init__(self):
        self.now_ms = 0
        self._waiters = []
        self._seq = itertools.count()

    async def sleep(self, delay: float):
        fut = asyncio.get_running_loop().create_future()
        heapq.heappush(self._waiters, (self.now_ms + round(delay * 1000), next(self._seq), fut))
        await fut

    async def advance(self, ms: int):
        target = self.now_ms + ms
        await let_tasks_run()
        while self._waiters and self._waiters[0][0] <= target:
            deadline, _, fut = heapq.heappop(self._waiters)
            self.now_ms = deadline
            if not fut.done():
                fut.set_result(None)
            await let_tasks_run()
        self.now_ms = target


@pytest.fixture
def serial_port():
    return FakeSerialPort()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def projector():
    device = Mock(spec=ProjectorDevice)
    device.get_power_status.return_value = PowerState.OFF
    return device


@pytest.fixture
def screen():
    return Mock(spec=ScreenDevice)


@pytest.fixture
def amplifier():
    client = Mock(spec=AmplifierClient)
    client.set_power = AsyncMock(return_value="{}")
    client.aclose = AsyncMock()
    client.configured = True
    return client


@pytest_asyncio.fixture
async def orchestrator(projector, screen, amplifier, clock):
    orch = DeviceOrchestrator(
        projector, screen, amplifier,
        screen_wait_ms=100,
        cooldown_ms=PROJECTOR_COOLDOWN_MS,
        sleep=clock.sleep,
        run_blocking=run_inline,
    )
    yield orch
    await orch.shutdown()
