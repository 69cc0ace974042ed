import logging
import threading

import serial

from avcontrol.services.serial_codec import SerialFrameCodec, SerialStream
from avcontrol.services.types import PowerState

log = logging.getLogger("avcontrol.projector")

CMD_POWER_QUERY = b"PWR?\r\n"
CMD_POWER_ON = b"PWR ON\r\n"
CMD_POWER_OFF = b"PWR OFF\r\n"

# PWR=01 is lamp on, PWR=02 is warming up; both count as on
_POWERED_REPLIES = ("PWR=01", "PWR=02")


class ProjectorDevice:
    """
    Projector on its own serial line (9600 8N1, no handshake).

    Public API:
      get_power_status(), turn_on(), turn_off(), close()

    The port is opened once and owned for the lifetime of the adapter. Calls
    are serialized because the monitor and API requests query from worker
    threads.
    """

    BAUD_RATE = 9600

    def __init__(self, stream: SerialStream):
        self._stream = stream
        self._codec = SerialFrameCodec(stream, device="projector")
        self._lock = threading.Lock()

    @classmethod
    def open(cls, port_name: str) -> "ProjectorDevice":
        log.info("Opening projector serial port %s", port_name)
        port = serial.Serial(
            port=port_name,
            baudrate=cls.BAUD_RATE,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            xonxoff=False,
            rtscts=False,
            timeout=None,
        )
        return cls(port)

    def close(self):
        close = getattr(self._stream, "close", None)
        if close is not None:
            close()

    def _execute(self, command: bytes) -> str:
        with self._lock:
            log.info("Projector command: %r", command.decode("ascii"))
            response = self._codec.send(command)
        log.debug("Projector response: %r", response)
        return response

    def get_power_status(self) -> PowerState:
        """
        Return ON or OFF. Never raises.

        A failed query reports OFF: the monitor then treats a broken line
        as the projector being switched off, and callers never have to
        handle an exception from a status read.
        """
        try:
            response = self._execute(CMD_POWER_QUERY)
        except Exception:
            log.exception("Error requesting projector power status, reporting off")
            return PowerState.OFF
        if any(reply in response for reply in _POWERED_REPLIES):
            return PowerState.ON
        return PowerState.OFF

    def turn_on(self) -> None:
        self._execute(CMD_POWER_ON)

    def turn_off(self) -> None:
        self._execute(CMD_POWER_OFF)
