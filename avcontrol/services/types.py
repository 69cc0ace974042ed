# shared by services and models without coupling them (avoids cycles)
from enum import Enum

class PowerState(str, Enum):
    ON = "on"
    OFF = "off"
    UNKNOWN = "unknown"

class ScreenPosition(str, Enum):
    RAISED = "raised"
    LOWERED = "lowered"
