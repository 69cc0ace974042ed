"""
Dependency injection for the FastAPI application.
Builds the device adapters and the orchestrator once per process and hands
the orchestrator to routes through app.state.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Request

from avcontrol.core.config import Settings
from avcontrol.exceptions.devices import DeviceConnectionError
from avcontrol.services.amplifier import AmplifierClient
from avcontrol.services.orchestrator import DeviceOrchestrator
from avcontrol.services.projector import ProjectorDevice
from avcontrol.services.screen import ScreenDevice

log = logging.getLogger("avcontrol.dependencies")


class OrchestratorUnavailable(DeviceConnectionError):
    """Raised when a request arrives before startup finished or after shutdown"""
    def __init__(self, message: str = "Device orchestrator not available"):
        super().__init__(message)


def build_orchestrator(settings: Settings) -> DeviceOrchestrator:
    """Open both serial ports and wire the adapters into an orchestrator."""
    log.info("Initializing devices projector=%s screen=%s amp=%s",
             settings.PROJECTOR_PORT, settings.SCREEN_PORT, settings.AMP_HOST or "<unset>")
    projector = ProjectorDevice.open(settings.PROJECTOR_PORT)
    try:
        screen = ScreenDevice.open(settings.SCREEN_PORT)
    except Exception:
        projector.close()
        raise
    amplifier = AmplifierClient(settings.AMP_HOST)
    return DeviceOrchestrator(projector, screen, amplifier, screen_wait_ms=settings.SCREEN_WAIT_MS)


async def start_services(orchestrator: DeviceOrchestrator, settings: Settings):
    if settings.SCREEN_RAISE_ON_START:
        await orchestrator.reset_screen()
    if settings.MODE == "monitor":
        orchestrator.start_monitor()
    log.info("Services started in %s mode", settings.MODE)


async def cleanup_services(orchestrator: Optional[DeviceOrchestrator]):
    """
    Cleanup function to be called during application shutdown.
    Stops the monitor and timers, then releases both serial ports.
    """
    if orchestrator is None:
        return
    try:
        await orchestrator.shutdown()
    except Exception as e:
        log.error(f"Error during orchestrator shutdown: {e}")
    log.info("Service cleanup completed")


def get_orchestrator(req: Request) -> DeviceOrchestrator:
    orchestrator = getattr(req.app.state, "orchestrator", None)
    if orchestrator is None:
        raise OrchestratorUnavailable()
    return orchestrator


def client_ip(req: Request) -> Optional[str]:
    """Client address, preferring proxy headers over the socket peer."""
    for header in ("x-real-ip", "x-forwarded-for"):
        value = req.headers.get(header)
        if value:
            return value
    return req.client.host if req.client else None


async def check_device_health(orchestrator: Optional[DeviceOrchestrator]) -> Dict[str, Any]:
    """Health summary; never raises"""
    if orchestrator is None:
        return {"status": "unhealthy", "error": "orchestrator not started"}
    try:
        result = await orchestrator.get_status()
        return {
            "status": "healthy",
            "projector_on": result.result.projector_on,
            "screen_moving": result.result.screen_moving,
            "screen_lowered": result.result.screen_lowered,
            "projector_cooldown": orchestrator.projector_cooldown,
            "monitor_running": orchestrator.monitor_running,
            "amplifier_configured": orchestrator.amplifier_configured,
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
