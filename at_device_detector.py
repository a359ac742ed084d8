# at_device_detector.py
import logging
import threading
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from at_utils import (
    ATDeviceDetectionError,
    is_response_ok,
    read_all,
    trim_response,
    write_command,
)
from serial_link import SerialLink, port_name

log = logging.getLogger(__name__)

# Valid baud rates, tried in this order
BAUD_RATES: Tuple[int, ...] = (
    9600, 14400, 19200, 28800, 33600, 38400,
    56000, 57600, 115200, 230400, 460800, 921600,
)

OPEN_TIMEOUT = 2.0
RECEIVE_TIMEOUT = 1.0
SETTLE_DELAY = 1.0


class DetectorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    baud_rates: Tuple[int, ...] = BAUD_RATES
    open_timeout: float = OPEN_TIMEOUT
    receive_timeout: float = RECEIVE_TIMEOUT
    settle_delay: float = SETTLE_DELAY


class DetectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: str
    finished: bool
    detected: bool
    cancelled: bool = False
    max_baud_rate: int = 0
    serial: Optional[str] = None
    exception_message: Optional[str] = None


class ATDeviceDetector(threading.Thread):
    """
    Detects an AT device on 1 port:
    - tries every baud rate in BAUD_RATES, even after a success
    - keeps the highest baud rate that answered AT and AT+CGSN
    - keeps the last serial number read (AT+CGSN)
    - keeps the message of the last failure

    Start it with start(), then poll is_finished() or call wait().
    """
    def __init__(self, port, config: Optional[DetectorConfig] = None, link_opener=None):
        super().__init__(name=f"ATDeviceDetector: {port_name(port)}", daemon=True)
        self.port = port
        self.config = config or DetectorConfig()
        self.link_opener = link_opener or SerialLink.open

        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._max_baud_rate = 0
        self._serial: Optional[str] = None
        self._finished = False
        self._cancelled = False
        self._exception_message: Optional[str] = None

    def run(self):
        for baud in self.config.baud_rates:
            if self._cancel_event.is_set():
                log.info("Detection cancelled on port %s before trying %d baud", self.port_name, baud)
                with self._lock:
                    self._cancelled = True
                break
            self._detect_at(baud)

        with self._lock:
            self._finished = True
        log.info("Detection completed on port: %s", self.port_name)

    def _detect_at(self, baud: int):
        link = None
        in_stream = None
        out_stream = None

        try:
            link = self.link_opener(self.port, self.config.open_timeout)
            link.configure(baud)
            in_stream = link.input_stream
            out_stream = link.output_stream
            link.enable_receive_timeout(self.config.receive_timeout)

            log.debug("Trying %s at %d baud", self.port_name, baud)

            # discard whatever is already waiting on the line
            read_all(in_stream)

            write_command(out_stream, "AT")
            if self._cancel_event.wait(self.config.settle_delay):
                log.debug("Cancelled on %s while waiting for AT response", self.port_name)
                return
            response = read_all(in_stream)
            if not is_response_ok(response):
                raise ATDeviceDetectionError(f"Bad response: {response}", response)

            write_command(out_stream, "AT+CGSN")
            response = read_all(in_stream)
            if not is_response_ok(response):
                raise ATDeviceDetectionError(
                    f"Bad response to request for serial number: {response}", response
                )

            serial_number = trim_response("AT+CGSN", response)
            log.debug("Found serial: %s", serial_number)
            self._record_success(baud, serial_number)
        except Exception as e:
            log.info("Problem connecting to device on %s at %d baud.", self.port_name, baud, exc_info=True)
            with self._lock:
                self._exception_message = str(e) or e.__class__.__name__
        finally:
            # reverse order: output, input, port
            self._release(out_stream, "output stream")
            self._release(in_stream, "input stream")
            self._release(link, "serial port")

    def _record_success(self, baud: int, serial_number: str):
        with self._lock:
            if self._serial is not None and self._serial != serial_number:
                log.info("New serial detected: '%s'.  Replacing previous: '%s'", serial_number, self._serial)
            self._serial = serial_number
            self._max_baud_rate = max(self._max_baud_rate, baud)

    def _release(self, resource, what: str):
        if resource is None:
            return
        try:
            resource.close()
        except Exception:
            log.warning("Error closing %s on %s.", what, self.port_name, exc_info=True)

    # -------- control --------

    def cancel(self):
        """Stop before the next baud rate. The detector still reports finished."""
        self._cancel_event.set()

    def wait(self, timeout: Optional[float] = None) -> DetectionResult:
        self.join(timeout)
        return self.result()

    # -------- accessors --------

    @property
    def port_identifier(self):
        return self.port

    @property
    def port_name(self) -> str:
        return port_name(self.port)

    def is_finished(self) -> bool:
        with self._lock:
            return self._finished

    def is_detected(self) -> bool:
        with self._lock:
            return self._max_baud_rate > 0

    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def max_baud_rate(self) -> int:
        with self._lock:
            return self._max_baud_rate

    @property
    def serial(self) -> Optional[str]:
        assert self.is_detected(), "Cannot get serial if no device was detected."
        with self._lock:
            return self._serial

    @property
    def exception_message(self) -> Optional[str]:
        assert not self.is_detected(), "Cannot get exception message if device was detected successfully."
        with self._lock:
            return self._exception_message

    def result(self) -> DetectionResult:
        with self._lock:
            detected = self._max_baud_rate > 0
            return DetectionResult(
                port=self.port_name,
                finished=self._finished,
                detected=detected,
                cancelled=self._cancelled,
                max_baud_rate=self._max_baud_rate,
                serial=self._serial if detected else None,
                exception_message=None if detected else self._exception_message,
            )
