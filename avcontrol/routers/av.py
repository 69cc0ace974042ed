import logging
from typing import Annotated
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from avcontrol.models.av import CommandResult, Failure
from avcontrol.services.orchestrator import DeviceOrchestrator
from avcontrol.dependencies import client_ip, get_orchestrator

router = APIRouter(tags=["av"])
log = logging.getLogger("avcontrol.router.av")

# Type alias for orchestrator dependency
OrchestratorDep = Annotated[DeviceOrchestrator, Depends(get_orchestrator)]

def _respond(result: CommandResult) -> JSONResponse:
    code = result.code if isinstance(result, Failure) else 200
    return JSONResponse(status_code=code, content=result.model_dump(mode="json"))

@router.get("/status")
async def av_status(orchestrator: OrchestratorDep):
    result = await orchestrator.get_status()
    log.debug("status -> %s", result)
    return _respond(result)

@router.api_route("/screen/lower", methods=["GET", "POST"])
async def screen_lower(request: Request, orchestrator: OrchestratorDep):
    log.info("screen/lower from %s", client_ip(request))
    return _respond(await orchestrator.lower_screen())

@router.api_route("/screen/raise", methods=["GET", "POST"])
async def screen_raise(request: Request, orchestrator: OrchestratorDep):
    log.info("screen/raise from %s", client_ip(request))
    return _respond(await orchestrator.raise_screen())

@router.api_route("/projector/on", methods=["GET", "POST"])
async def projector_on(request: Request, orchestrator: OrchestratorDep):
    log.info("projector/on from %s", client_ip(request))
    return _respond(await orchestrator.projector_on())

@router.api_route("/projector/off", methods=["GET", "POST"])
async def projector_off(request: Request, orchestrator: OrchestratorDep):
    log.info("projector/off from %s", client_ip(request))
    return _respond(await orchestrator.projector_off())
