from typing import Generic, Literal, Optional, TypeVar, Union
from pydantic import BaseModel, Field

from avcontrol.exceptions.devices import DeviceException

T = TypeVar("T")

class AVStatus(BaseModel):
    projector_on: bool
    screen_moving: bool = Field(..., description="A screen transition is in flight")
    screen_lowered: bool = Field(..., description="Tracked belief; the screen has no position feedback")

class Success(BaseModel, Generic[T]):
    ok: Literal[True] = True
    result: Optional[T] = None

class Failure(BaseModel):
    ok: Literal[False] = False
    code: int
    message: str

    @classmethod
    def from_exception(cls, exc: DeviceException) -> "Failure":
        return cls(code=exc.status_code, message=exc.message)

CommandResult = Union[Success, Failure]
