# serial_link.py
import errno
import logging
import time
from typing import Optional

import serial

log = logging.getLogger(__name__)

OPEN_RETRY_INTERVAL = 0.1
WRITE_TIMEOUT = 1.0

# "Resource busy" on posix, "Access is denied" on Windows
BUSY_MESSAGES = ("busy", "access is denied")


def port_busy(e: serial.SerialException) -> bool:
    if getattr(e, "errno", None) == errno.EBUSY:
        return True
    text = str(e).lower()
    return any(m in text for m in BUSY_MESSAGES)


def port_name(port) -> str:
    """
    Port can be a device string ("COM7", "/dev/ttyUSB2") or a ListPortInfo
    from serial.tools.list_ports.
    """
    return getattr(port, "device", None) or str(port)


class _InputStream:
    def __init__(self, ser: serial.Serial):
        self._ser = ser
        self.closed = False

    def read(self) -> bytes:
        if self.closed:
            raise serial.SerialException("Input stream is closed")
        # blocks up to ser.timeout for the first byte
        return self._ser.read(self._ser.in_waiting or 1)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._ser.reset_input_buffer()


class _OutputStream:
    def __init__(self, ser: serial.Serial):
        self._ser = ser
        self.closed = False

    def write(self, data: bytes):
        if self.closed:
            raise serial.SerialException("Output stream is closed")
        self._ser.write(data)

    def close(self):
        if self.closed:
            return
        self.closed = True
        # drop anything still queued instead of draining it
        self._ser.reset_output_buffer()


class SerialLink:
    """
    One opened serial port:
    - open with a bounded wait while the port is busy
    - configure speed / framing / flow control
    - input_stream / output_stream for AT exchanges
    """
    def __init__(self, ser: serial.Serial):
        self.ser = ser
        self._input: Optional[_InputStream] = None
        self._output: Optional[_OutputStream] = None

    @classmethod
    def open(cls, port, open_timeout: float = 2.0) -> "SerialLink":
        """
        Open `port`, retrying while it is busy until `open_timeout` seconds
        have passed. Other open errors (missing device, no permission) are
        raised at once, the last busy error is raised on timeout.
        """
        ser = serial.Serial()
        ser.port = port_name(port)
        deadline = time.monotonic() + open_timeout
        while True:
            try:
                ser.open()
                return cls(ser)
            except serial.SerialException as e:
                if not port_busy(e) or time.monotonic() >= deadline:
                    raise
                log.debug("Port %s busy (%s), retrying", ser.port, e)
                time.sleep(OPEN_RETRY_INTERVAL)

    def configure(
        self,
        baudrate: int,
        bytesize: int = serial.EIGHTBITS,
        stopbits: float = serial.STOPBITS_ONE,
        parity: str = serial.PARITY_NONE,
        rts: bool = True,
    ):
        """
        RTS/CTS on input only: RTS is raised so the device may send, output
        is never held back waiting for CTS.
        """
        self.ser.rtscts = False
        self.ser.write_timeout = WRITE_TIMEOUT
        self.ser.baudrate = baudrate
        self.ser.bytesize = bytesize
        self.ser.stopbits = stopbits
        self.ser.parity = parity
        self.ser.rts = rts

    def enable_receive_timeout(self, timeout: float):
        self.ser.timeout = timeout

    @property
    def input_stream(self) -> _InputStream:
        if self._input is None:
            self._input = _InputStream(self.ser)
        return self._input

    @property
    def output_stream(self) -> _OutputStream:
        if self._output is None:
            self._output = _OutputStream(self.ser)
        return self._output

    def close(self):
        if self.ser.is_open:
            self.ser.close()
