from contextlib import asynccontextmanager
import logging
import uvicorn
from fastapi import FastAPI, Request
from avcontrol.core.config import settings
from avcontrol.core.logging import setup_logging
from avcontrol.dependencies import build_orchestrator, start_services, cleanup_services, check_device_health
from avcontrol.exceptions.devices import DeviceException, device_exception_handler, general_exception_handler
from avcontrol.routers import av

setup_logging(settings.LOG_LEVEL)
log = logging.getLogger("avcontrol.main")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Serial ports are opened once here and held until shutdown.
    """
    log.info("Application startup - opening devices")
    app.state.orchestrator = build_orchestrator(settings)
    await start_services(app.state.orchestrator, settings)
    yield
    log.info("Application shutdown - cleaning up services")
    await cleanup_services(app.state.orchestrator)
    app.state.orchestrator = None
    log.info("App services stopped")

app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)

app.add_exception_handler(DeviceException, device_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(av.router, prefix="/api")

@app.get("/health")
async def health_check(request: Request):
    """Device health and orchestrator state"""
    devices = await check_device_health(getattr(request.app.state, "orchestrator", None))
    return {
        "status": devices["status"],
        "mode": settings.MODE,
        "services": {"devices": devices},
        "version": "0.1.0"
    }

def run():
    """Console entry point"""
    uvicorn.run("avcontrol.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
