import logging
import threading

import serial

from avcontrol.exceptions.devices import DeviceIOError

log = logging.getLogger("avcontrol.screen")

FRAME_LOWER = bytes([0xFF, 0xEE, 0xEE, 0xEE, 0xEE])
FRAME_RAISE = bytes([0xFF, 0xEE, 0xEE, 0xEE, 0xDD])
FRAME_STOP = bytes([0xFF, 0xEE, 0xEE, 0xEE, 0xCC])


class ScreenDevice:
    """
    Motorised screen controller (2400 8N1, no handshake).

    Write-only: the controller never answers and cannot report where the
    screen is, so the position is tracked by the orchestrator.
    """

    BAUD_RATE = 2400

    def __init__(self, stream):
        self._stream = stream
        self._lock = threading.Lock()

    @classmethod
    def open(cls, port_name: str) -> "ScreenDevice":
        log.info("Opening screen serial port %s", port_name)
        port = serial.Serial(
            port=port_name,
            baudrate=cls.BAUD_RATE,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            xonxoff=False,
            rtscts=False,
        )
        return cls(port)

    def close(self):
        close = getattr(self._stream, "close", None)
        if close is not None:
            close()

    def _write(self, frame: bytes, name: str):
        try:
            with self._lock:
                self._stream.write(frame)
        except serial.SerialException as e:
            raise DeviceIOError(f"failed to send {name} to screen: {e}", "screen") from e
        log.debug("Screen %s sent (%s)", name, frame.hex(" "))

    def send_lower(self):
        self._write(FRAME_LOWER, "lower")

    def send_raise(self):
        self._write(FRAME_RAISE, "raise")

    def send_stop(self):
        self._write(FRAME_STOP, "stop")
