"""Tests for arbitration of manual commands."""

import asyncio

import pytest
import pytest_asyncio

from avcontrol.exceptions.devices import DeviceIOError, DeviceProtocolError
from avcontrol.models.av import AVStatus, Failure, Success
from avcontrol.services.orchestrator import PROJECTOR_COOLDOWN_MS, DeviceOrchestrator
from avcontrol.services.types import PowerState, ScreenPosition

from conftest import let_tasks_run


async def lower_and_settle(orchestrator, clock):
    result = await orchestrator.lower_screen()
    assert isinstance(result, Success)
    await clock.advance(100)
    assert not orchestrator.screen_busy


@pytest.mark.asyncio
class TestScreenLower:

    async def test_lower_then_stop_after_wait(self, orchestrator, screen, clock):
        result = await orchestrator.lower_screen()

        assert result.ok
        screen.send_lower.assert_called_once_with()
        assert orchestrator.screen_position is ScreenPosition.LOWERED
        assert orchestrator.screen_busy

        await clock.advance(99)
        screen.send_stop.assert_not_called()
        assert orchestrator.screen_busy

        await clock.advance(1)
        screen.send_stop.assert_called_once_with()
        assert not orchestrator.screen_busy
        assert orchestrator.screen_position is ScreenPosition.LOWERED

    async def test_repeated_lower_while_busy_is_rejected(self, orchestrator, screen):
        first = await orchestrator.lower_screen()
        rejected = [await orchestrator.lower_screen() for _ in range(5)]

        assert first.ok
        for result in rejected:
            assert isinstance(result, Failure)
            assert result.code == 409
            assert "busy" in result.message.lower()
        assert screen.send_lower.call_count == 1

    async def test_raise_while_lowering_is_rejected(self, orchestrator, screen):
        await orchestrator.lower_screen()
        result = await orchestrator.raise_screen()

        assert isinstance(result, Failure)
        assert "busy" in result.message.lower()
        screen.send_raise.assert_not_called()

    async def test_lower_when_lowered(self, orchestrator, screen, clock):
        await lower_and_settle(orchestrator, clock)

        result = await orchestrator.lower_screen()

        assert isinstance(result, Failure)
        assert result.code == 409
        assert result.message == "Screen already lowered"
        assert screen.send_lower.call_count == 1

    async def test_failed_write_rolls_back(self, orchestrator, screen):
        screen.send_lower.side_effect = DeviceIOError("failed to send lower to screen", "screen")

        result = await orchestrator.lower_screen()

        assert isinstance(result, Failure)
        assert result.code == 502
        assert orchestrator.screen_position is ScreenPosition.RAISED
        assert not orchestrator.screen_busy
        assert orchestrator.pending_tasks == set()


@pytest.mark.asyncio
class TestScreenRaise:

    async def test_raise_when_raised(self, orchestrator, screen):
        result = await orchestrator.raise_screen()

        assert isinstance(result, Failure)
        assert result.message == "Screen already raised"
        screen.send_raise.assert_not_called()

    async def test_raise_clears_busy_after_budget(self, orchestrator, screen, clock):
        await lower_and_settle(orchestrator, clock)

        result = await orchestrator.raise_screen()

        assert result.ok
        screen.send_raise.assert_called_once_with()
        assert orchestrator.screen_position is ScreenPosition.RAISED
        assert orchestrator.screen_busy

        await clock.advance(90)
        assert orchestrator.screen_busy

        await clock.advance(10)
        assert not orchestrator.screen_busy
        # the lower settle already ran; nothing stops a raising screen
        assert screen.send_stop.call_count == 1

    async def test_lower_allowed_after_raise_settles(self, orchestrator, screen, clock):
        await lower_and_settle(orchestrator, clock)
        await orchestrator.raise_screen()
        await clock.advance(100)

        result = await orchestrator.lower_screen()

        assert result.ok
        assert screen.send_lower.call_count == 2


@pytest.mark.asyncio
class TestProjectorCommands:

    async def test_turn_on_starts_cooldown(self, orchestrator, projector):
        result = await orchestrator.projector_on()

        assert result.ok
        projector.turn_on.assert_called_once_with()
        assert orchestrator.projector_cooldown

    async def test_commands_during_cooldown_do_not_touch_serial(self, orchestrator, projector, clock):
        await orchestrator.projector_on()
        queries = projector.get_power_status.call_count

        projector.get_power_status.return_value = PowerState.ON
        for advance in (0, 60_000, PROJECTOR_COOLDOWN_MS - 60_000 - 1):
            await clock.advance(advance)
            result = await orchestrator.projector_off()
            assert isinstance(result, Failure)
            assert result.code == 429

        assert projector.get_power_status.call_count == queries
        projector.turn_off.assert_not_called()

    async def test_cooldown_released_after_window(self, orchestrator, projector, clock):
        await orchestrator.projector_on()
        await clock.advance(PROJECTOR_COOLDOWN_MS)
        assert not orchestrator.projector_cooldown

        projector.get_power_status.return_value = PowerState.ON
        result = await orchestrator.projector_off()

        assert result.ok
        projector.turn_off.assert_called_once_with()

    async def test_already_on(self, orchestrator, projector):
        projector.get_power_status.return_value = PowerState.ON

        result = await orchestrator.projector_on()

        assert isinstance(result, Failure)
        assert result.code == 409
        assert result.message == "Projector is already on"
        projector.turn_on.assert_not_called()
        assert not orchestrator.projector_cooldown

    async def test_already_off(self, orchestrator, projector):
        result = await orchestrator.projector_off()

        assert isinstance(result, Failure)
        assert result.message == "Projector is already off"

    async def test_device_error_still_cools_down(self, orchestrator, projector, clock):
        projector.turn_on.side_effect = DeviceProtocolError("projector error: ERR", response="ERR")

        result = await orchestrator.projector_on()

        assert isinstance(result, Failure)
        assert result.code == 502
        assert "ERR" in result.message
        assert orchestrator.projector_cooldown

        await clock.advance(PROJECTOR_COOLDOWN_MS)
        assert not orchestrator.projector_cooldown


@pytest.mark.asyncio
class TestStatus:

    async def test_status_payload(self, orchestrator, projector):
        projector.get_power_status.return_value = PowerState.ON
        await orchestrator.lower_screen()

        result = await orchestrator.get_status()

        assert result.ok
        assert result.result == AVStatus(projector_on=True, screen_moving=True, screen_lowered=True)

    async def test_status_queries_projector_every_time(self, orchestrator, projector):
        await orchestrator.get_status()
        await orchestrator.get_status()

        assert projector.get_power_status.call_count == 2

    async def test_reset_screen(self, orchestrator, screen):
        await orchestrator.reset_screen()

        screen.send_raise.assert_called_once_with()
        assert orchestrator.screen_position is ScreenPosition.RAISED
        assert not orchestrator.screen_busy


@pytest.mark.asyncio
async def test_shutdown_cancels_timers(orchestrator, amplifier, clock):
    await orchestrator.lower_screen()
    await orchestrator.projector_on()
    await let_tasks_run()
    assert len(orchestrator.pending_tasks) == 2

    await orchestrator.shutdown()

    assert orchestrator.pending_tasks == set()
    amplifier.aclose.assert_awaited()


async def run_yielding(fn, *args):
    """Blocking-call runner that hands control back to the loop first, like a worker thread would."""
    await asyncio.sleep(0)
    return fn(*args)


@pytest_asyncio.fixture
async def racing_orchestrator(projector, screen, amplifier, clock):
    orch = DeviceOrchestrator(
        projector, screen, amplifier,
        screen_wait_ms=100,
        sleep=clock.sleep,
        run_blocking=run_yielding,
    )
    yield orch
    await orch.shutdown()


@pytest.mark.asyncio
class TestConcurrentCommands:
    """Check-and-set stays atomic when requests interleave."""

    async def test_concurrent_projector_on(self, racing_orchestrator, projector):
        results = await asyncio.gather(racing_orchestrator.projector_on(), racing_orchestrator.projector_on())

        assert sum(r.ok for r in results) == 1
        assert sorted(r.code for r in results if not r.ok) == [429]
        projector.turn_on.assert_called_once_with()

    async def test_concurrent_on_and_off(self, racing_orchestrator, projector):
        results = await asyncio.gather(racing_orchestrator.projector_on(), racing_orchestrator.projector_off())

        assert results[0].ok
        assert results[1].code == 429
        projector.turn_off.assert_not_called()

    async def test_concurrent_lower(self, racing_orchestrator, screen):
        results = await asyncio.gather(*(racing_orchestrator.lower_screen() for _ in range(3)))

        assert sum(r.ok for r in results) == 1
        assert all(r.code == 409 for r in results if not r.ok)
        screen.send_lower.assert_called_once_with()

    async def test_concurrent_status_and_lower(self, racing_orchestrator, screen):
        status, lowered = await asyncio.gather(racing_orchestrator.get_status(), racing_orchestrator.lower_screen())

        assert status.ok
        assert lowered.ok
        screen.send_lower.assert_called_once_with()
