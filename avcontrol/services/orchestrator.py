"""
Device Orchestrator - Coordination Layer
Owns the tracked AV state (screen position, screen busy, projector cooldown)
and arbitrates every command sent to the projector, screen and amplifier.

Two surfaces share the same state:
- manual commands from the API, rejected while busy / cooling down / already in state
- the monitor loop, which follows projector power edges and moves the screen
  and amplifier without arbitration
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from avcontrol.exceptions.devices import (
    AlreadyInStateError, DeviceException, ProjectorCooldownError, ScreenBusyError,
)
from avcontrol.models.av import AVStatus, CommandResult, Failure, Success
from avcontrol.services.amplifier import AmplifierClient, AmpPower
from avcontrol.services.projector import ProjectorDevice
from avcontrol.services.screen import ScreenDevice
from avcontrol.services.types import PowerState, ScreenPosition

log = logging.getLogger("avcontrol.orchestrator")

PROJECTOR_COOLDOWN_MS = 120_000
RAISE_POLL_MS = 10
MONITOR_INTERVAL_SEC = 5.0

Sleep = Callable[[float], Awaitable[None]]
RunBlocking = Callable[..., Awaitable[Any]]


class DeviceOrchestrator:
    """
    Single owner of the AV state.

    State:
    - screen position: belief only, set when a move is issued
    - screen busy: set while a move settles, blocks manual screen commands
    - projector cooldown: set for PROJECTOR_COOLDOWN_MS after a power command

    Settle and cooldown timers are tasks tracked by the orchestrator. They are
    not cancelled when superseded; they re-check state when they fire.
    `sleep` and `run_blocking` are injectable so timing can be driven by a
    virtual clock.
    """

    def __init__(
        self,
        projector: ProjectorDevice,
        screen: ScreenDevice,
        amplifier: AmplifierClient,
        *,
        screen_wait_ms: int,
        cooldown_ms: int = PROJECTOR_COOLDOWN_MS,
        monitor_interval: float = MONITOR_INTERVAL_SEC,
        sleep: Sleep = asyncio.sleep,
        run_blocking: RunBlocking = asyncio.to_thread,
    ):
        self._projector = projector
        self._screen = screen
        self._amplifier = amplifier
        self._screen_wait_ms = screen_wait_ms
        self._cooldown_ms = cooldown_ms
        self._monitor_interval = monitor_interval
        self._sleep = sleep
        # projector reads block until the device answers; keep them off the event loop
        self._run_blocking = run_blocking

        # one lock per flag; check-and-set happens under it
        self._screen_lock = asyncio.Lock()
        self._projector_lock = asyncio.Lock()

        self._screen_position = ScreenPosition.RAISED
        self._screen_busy = False
        self._projector_cooldown = False

        # monitor: last projector power seen, edge detection only
        self._powered = False
        self._monitor_task: Optional[asyncio.Task] = None

        self._tasks: Set[asyncio.Task] = set()

    # ---- state (read-only) ----

    @property
    def screen_position(self) -> ScreenPosition:
        return self._screen_position

    @property
    def screen_busy(self) -> bool:
        return self._screen_busy

    @property
    def projector_cooldown(self) -> bool:
        return self._projector_cooldown

    @property
    def amplifier_configured(self) -> bool:
        return self._amplifier.configured

    @property
    def pending_tasks(self) -> Set[asyncio.Task]:
        return set(self._tasks)

    @property
    def monitor_running(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    # ---- task tracking ----

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Task %s failed: %s", task.get_name(), exc, exc_info=exc)

    # ---- screen transitions (caller holds _screen_lock) ----

    def _start_lower(self):
        previous = (self._screen_position, self._screen_busy)
        self._screen_busy = True
        self._screen_position = ScreenPosition.LOWERED
        try:
            self._screen.send_lower()
        except DeviceException:
            self._screen_position, self._screen_busy = previous
            raise
        self._spawn(self._settle_lowered(), "screen-settle-lower")

    def _start_raise(self):
        previous = (self._screen_position, self._screen_busy)
        self._screen_busy = True
        self._screen_position = ScreenPosition.RAISED
        try:
            self._screen.send_raise()
        except DeviceException:
            self._screen_position, self._screen_busy = previous
            raise
        self._spawn(self._settle_raised(), "screen-settle-raise")

    async def _settle_lowered(self):
        await self._sleep(self._screen_wait_ms / 1000)
        async with self._screen_lock:
            # a raise issued meanwhile owns the busy flag now
            if self._screen_position is not ScreenPosition.LOWERED:
                log.debug("Lower superseded, not stopping screen")
                return
            try:
                self._screen.send_stop()
                log.debug("Screen stopped")
            finally:
                self._screen_busy = False

    async def _settle_raised(self):
        remaining = self._screen_wait_ms
        while self._screen_position is ScreenPosition.RAISED and remaining > 0:
            await self._sleep(RAISE_POLL_MS / 1000)
            remaining -= RAISE_POLL_MS
        if self._screen_position is not ScreenPosition.RAISED:
            # a lower took over mid-raise; its settle clears the flag
            log.debug("Raise superseded by lower")
            return
        log.debug("Raise completed")
        self._screen_busy = False

    # ---- manual surface ----

    async def lower_screen(self) -> CommandResult:
        async with self._screen_lock:
            if self._screen_busy:
                return Failure.from_exception(ScreenBusyError())
            if self._screen_position is ScreenPosition.LOWERED:
                return Failure.from_exception(AlreadyInStateError("Screen already lowered", "lowered"))
            try:
                self._start_lower()
            except DeviceException as e:
                log.error("Screen lower failed: %s", e)
                return Failure.from_exception(e)
        log.info("Screen lowering")
        return Success()

    async def raise_screen(self) -> CommandResult:
        async with self._screen_lock:
            if self._screen_busy:
                return Failure.from_exception(ScreenBusyError())
            if self._screen_position is ScreenPosition.RAISED:
                return Failure.from_exception(AlreadyInStateError("Screen already raised", "raised"))
            try:
                self._start_raise()
            except DeviceException as e:
                log.error("Screen raise failed: %s", e)
                return Failure.from_exception(e)
        log.info("Screen raising")
        return Success()

    async def projector_on(self) -> CommandResult:
        return await self._switch_projector(PowerState.ON)

    async def projector_off(self) -> CommandResult:
        return await self._switch_projector(PowerState.OFF)

    async def _switch_projector(self, target: PowerState) -> CommandResult:
        async with self._projector_lock:
            if self._projector_cooldown:
                return Failure.from_exception(ProjectorCooldownError(cooldown_ms=self._cooldown_ms))

            current = await self._run_blocking(self._projector.get_power_status)
            if current is target:
                return Failure.from_exception(
                    AlreadyInStateError(f"Projector is already {target.value}", target.value)
                )

            # the window runs whether or not the command goes through
            self._projector_cooldown = True
            self._spawn(self._release_cooldown(), "projector-cooldown")

            command = self._projector.turn_on if target is PowerState.ON else self._projector.turn_off
            try:
                await self._run_blocking(command)
            except DeviceException as e:
                log.error("Projector %s failed: %s", target.value, e)
                return Failure.from_exception(e)
        log.info("Projector switched %s", target.value)
        return Success()

    async def _release_cooldown(self):
        await self._sleep(self._cooldown_ms / 1000)
        self._projector_cooldown = False
        log.debug("Projector cooldown released")

    async def get_status(self) -> CommandResult:
        power = await self._run_blocking(self._projector.get_power_status)
        return Success[AVStatus](result=AVStatus(
            projector_on=power is PowerState.ON,
            screen_moving=self._screen_busy,
            screen_lowered=self._screen_position is ScreenPosition.LOWERED,
        ))

    async def reset_screen(self):
        """Drive the screen up to match the initial RAISED belief. No settle, no arbitration."""
        async with self._screen_lock:
            self._screen.send_raise()
            self._screen_position = ScreenPosition.RAISED
        log.info("Screen reset to raised")

    # ---- monitor surface ----

    async def poll_once(self):
        """One monitor iteration: query the projector and react to a power edge."""
        state = await self._run_blocking(self._projector.get_power_status)
        if state is PowerState.ON and not self._powered:
            log.info("Projector powered on, turning on components")
            self._powered = True
            async with self._screen_lock:
                self._start_lower()
            await self._set_amplifier("active")
        elif state is PowerState.OFF and self._powered:
            log.info("Projector powered off, shutting down components")
            self._powered = False
            async with self._screen_lock:
                self._start_raise()
            await self._set_amplifier("off")

    async def _set_amplifier(self, state: AmpPower):
        try:
            await self._amplifier.set_power(state)
        except Exception as e:
            log.error("Amp API error (%s): %s", state, e)

    async def run_monitor(self):
        """Poll forever. Any error outside the amplifier call ends the loop."""
        log.info("Projector monitor started (every %.1fs)", self._monitor_interval)
        try:
            while True:
                await self.poll_once()
                await self._sleep(self._monitor_interval)
        except asyncio.CancelledError:
            log.info("Projector monitor stopped")
            raise
        except Exception:
            log.critical("Projector monitor terminated by unhandled error", exc_info=True)

    def start_monitor(self) -> asyncio.Task:
        if self.monitor_running:
            return self._monitor_task
        self._monitor_task = asyncio.create_task(self.run_monitor(), name="projector-monitor")
        return self._monitor_task

    # ---- lifecycle ----

    async def shutdown(self):
        tasks = list(self._tasks)
        if self._monitor_task is not None:
            tasks.append(self._monitor_task)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._monitor_task = None
        await self._amplifier.aclose()
        for device in (self._projector, self._screen):
            try:
                await self._run_blocking(device.close)
            except Exception as e:
                log.error("Error closing %s: %s", device.__class__.__name__, e)
        log.info("Orchestrator stopped")
