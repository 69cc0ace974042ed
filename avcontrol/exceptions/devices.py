from fastapi import Request
from fastapi.responses import JSONResponse
import logging
import time
from typing import Optional, Dict, Any

log = logging.getLogger("avcontrol.exceptions.devices")

class DeviceException(Exception):
    """Base device exception with error context"""
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        timestamp: Optional[float] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        self.timestamp = timestamp or time.time()
        super().__init__(self.message)

# ---- device / transport failures ----

class DeviceIOError(DeviceException):
    """Serial write or read failed"""
    def __init__(self, message: str, device: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        ctx = {"device": device, **(context or {})} if device else (context or {})
        super().__init__(message, 502, "DEVICE_IO_ERROR", ctx)

class DeviceProtocolError(DeviceException):
    """Device or remote service reported an explicit error"""
    def __init__(self, message: str, response: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        ctx = {"response": response, **(context or {})} if response is not None else (context or {})
        super().__init__(message, 502, "DEVICE_PROTOCOL_ERROR", ctx)

class DeviceConnectionError(DeviceException):
    """Device is not configured or not reachable"""
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, 503, "DEVICE_CONNECTION_ERROR", context)

# ---- arbitration (expected, user facing) ----

class ArbitrationError(DeviceException):
    """Command rejected by busy/cooldown arbitration"""

class ScreenBusyError(ArbitrationError):
    def __init__(self, message: str = "Screen is busy, try again once it has stopped moving"):
        super().__init__(message, 409, "SCREEN_BUSY")

class ProjectorCooldownError(ArbitrationError):
    def __init__(self, message: str = "Projector is cooling down from the last command, try again later",
                 cooldown_ms: Optional[int] = None):
        ctx = {"cooldown_ms": cooldown_ms} if cooldown_ms else {}
        super().__init__(message, 429, "PROJECTOR_COOLDOWN", ctx)

class AlreadyInStateError(ArbitrationError):
    def __init__(self, message: str, state: Optional[str] = None):
        ctx = {"state": state} if state else {}
        super().__init__(message, 409, "ALREADY_IN_STATE", ctx)

# Exception handlers
async def device_exception_handler(request: Request, exc: DeviceException):
    """Render a DeviceException that escaped a route as a failure envelope"""
    request_info = {
        "method": request.method,
        "url": str(request.url),
    }

    log.error(
        f"Device exception [{exc.error_code}]: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "context": exc.context,
            "request": request_info,
            "timestamp": exc.timestamp
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "code": exc.status_code, "message": exc.message}
    )

async def general_exception_handler(request: Request, exc: Exception):
    """Unexpected errors still answer with the failure envelope"""
    log.error(
        f"Unexpected error: {str(exc)}",
        exc_info=True,
        extra={
            "error_type": exc.__class__.__name__,
            "request": {"method": request.method, "url": str(request.url)},
            "timestamp": time.time()
        }
    )

    return JSONResponse(
        status_code=500,
        content={"ok": False, "code": 500, "message": "An unexpected error occurred"}
    )
