from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    APP_NAME: str = "AV Automation Control"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # HTTP listener for the control API
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # "manual": API commands only. "monitor": API plus the projector power monitor loop.
    MODE: Literal["manual", "monitor"] = "manual"

    # ---- Serial ports ----
    # Projector speaks 9600 8N1, screen controller 2400 8N1. Line settings are fixed by the devices.
    PROJECTOR_PORT: str = "/dev/ttyUSB0"
    SCREEN_PORT: str = "/dev/ttyUSB1"

    # ---- Amplifier ----
    # Host or IP of the amplifier's audio control API. Empty disables it (every call fails).
    AMP_HOST: str = ""

    # ---- Screen timing ----
    # Travel time of the screen in either direction; the lower settle stops the motor after this.
    SCREEN_WAIT_MS: int = 25000
    # Drive the screen up on startup so the physical position matches the tracked belief.
    SCREEN_RAISE_ON_START: bool = True

    model_config = SettingsConfigDict(env_file=".env")

settings = Settings()
