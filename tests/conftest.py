import pytest
import serial

from at_device_detector import DetectorConfig

FAST_CONFIG = DetectorConfig(open_timeout=0.0, receive_timeout=0.0, settle_delay=0.0)


def modem(serial_number="356938035643809", echo=True):
    """Responder for a healthy modem at any baud rate."""
    def respond(command, baud):
        prefix = command + "\r\r\n" if echo else ""
        if command == "AT":
            return prefix + "OK\r\n"
        if command == "AT+CGSN":
            return prefix + serial_number + "\r\n\r\nOK\r\n"
        return prefix + "ERROR\r\n"
    return respond


class FakeInput:
    def __init__(self, link):
        self.link = link
        self.closed = False

    def read(self):
        data, self.link.pending = self.link.pending, b""
        return data

    def close(self):
        self.link.events.append("close input")
        if self.link.close_error:
            raise self.link.close_error
        self.closed = True


class FakeOutput:
    def __init__(self, link):
        self.link = link
        self.closed = False

    def write(self, data):
        command = data.decode("ascii").rstrip("\r")
        self.link.commands.append(command)
        self.link.pending += self.link.responder(command, self.link.baud).encode()

    def close(self):
        self.link.events.append("close output")
        if self.link.close_error:
            raise self.link.close_error
        self.closed = True


class FakeLink:
    def __init__(self, responder, stale=b"", close_error=None):
        self.responder = responder
        self.pending = stale
        self.close_error = close_error
        self.baud = None
        self.settings = {}
        self.receive_timeout = None
        self.commands = []
        self.events = []
        self.input_stream = FakeInput(self)
        self.output_stream = FakeOutput(self)

    def configure(self, baudrate, **kwargs):
        self.baud = baudrate
        self.settings = kwargs

    def enable_receive_timeout(self, timeout):
        self.receive_timeout = timeout

    def close(self):
        self.events.append("close port")
        if self.close_error:
            raise self.close_error


class FakeOpener:
    """
    Stands in for SerialLink.open: records every link it hands out.
    """
    def __init__(self, responder=None, open_error=False, stale=b"", close_error=None):
        self.responder = responder or modem()
        self.open_error = open_error
        self.stale = stale
        self.close_error = close_error
        self.links = []
        self.attempts = 0

    def __call__(self, port, open_timeout):
        self.attempts += 1
        if self.open_error:
            raise serial.SerialException(f"could not open port {port}: attempt {self.attempts}")
        link = FakeLink(self.responder, stale=self.stale, close_error=self.close_error)
        self.links.append(link)
        return link


@pytest.fixture
def fast_config():
    return FAST_CONFIG
