"""
Request/response framing for the projector's ASCII serial protocol.

Commands are written as-is. The reply is read byte by byte up to the ':'
prompt the projector prints once it is ready for the next command; any
reply containing "ERR" is the projector rejecting the command.
"""
import logging
from typing import Protocol

import serial

from avcontrol.exceptions.devices import DeviceIOError, DeviceProtocolError

log = logging.getLogger("avcontrol.serial_codec")

TERMINATOR = b":"
ERROR_MARKER = "ERR"


class SerialStream(Protocol):
    """The part of serial.Serial the codec relies on."""

    def write(self, data: bytes) -> int | None: ...

    def read(self, size: int = 1) -> bytes: ...


class SerialFrameCodec:
    def __init__(self, stream: SerialStream, device: str = "projector"):
        self._stream = stream
        self._device = device

    def send(self, command: bytes) -> str:
        """Write one command and return the reply text (terminator excluded).

        Raises DeviceIOError when the line fails or returns nothing, and
        DeviceProtocolError when the device answers with an error.
        """
        try:
            self._stream.write(command)
        except serial.SerialException as e:
            raise DeviceIOError(f"failed to write command: {e}", self._device) from e

        response = bytearray()
        while True:
            try:
                chunk = self._stream.read(1)
            except serial.SerialException as e:
                raise DeviceIOError(f"failed to read response: {e}", self._device) from e
            if len(chunk) != 1:
                raise DeviceIOError("failed to read response", self._device)
            log.debug("read byte from %s: 0x%02X", self._device, chunk[0])
            if chunk == TERMINATOR:
                break
            response += chunk

        # latin-1 maps every byte to one character so nothing the device sends is dropped
        text = response.decode("latin-1")
        if ERROR_MARKER in text:
            raise DeviceProtocolError(f"{self._device} error: {text}", response=text)
        return text
