# at_utils.py
from typing import Optional

LINE_TERMINATOR = "\r"
RESPONSE_OK = "OK"
RESPONSE_ERRORS = ("ERROR", "+CME ERROR", "+CMS ERROR")


class ATDeviceDetectionError(Exception):
    """
    Bad response from the device.
    `response` keeps the raw text for diagnostics.
    """
    def __init__(self, message: str, response: Optional[str] = None):
        super().__init__(message)
        self.response = response


def write_command(stream, command: str):
    stream.write((command + LINE_TERMINATOR).encode("ascii"))


def read_all(stream) -> str:
    """
    Read everything the device sends until the line stays quiet for
    the stream's receive timeout.
    """
    buf = b""
    while True:
        chunk = stream.read()
        if not chunk:
            break
        buf += chunk
    return buf.decode(errors="ignore")


def _response_lines(response: str):
    return [line.strip() for line in response.splitlines() if line.strip()]


def is_response_ok(response: str) -> bool:
    lines = [line.upper() for line in _response_lines(response or "")]
    if not lines:
        return False
    for line in lines:
        if line.startswith(RESPONSE_ERRORS):
            return False
    return RESPONSE_OK in lines


def trim_response(command: str, response: str) -> str:
    """
    Strip the command echo and the final OK from a response, leaving the value.

    Example:
      AT+CGSN\\r\\r\\n356938035643809\\r\\n\\r\\nOK\\r\\n  → 356938035643809
    """
    echo = command.strip().upper()
    payload = []
    for line in _response_lines(response):
        upper = line.upper()
        if upper == echo or upper == RESPONSE_OK:
            continue
        payload.append(line)

    value = "\n".join(payload)
    value = "".join(ch for ch in value if ch.isprintable() or ch == "\n").strip()
    if not value:
        raise ATDeviceDetectionError(f"No value in response to {command}: {response!r}", response)
    return value
