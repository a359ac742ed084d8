# scan_port.py
import argparse
import logging
from typing import List, Optional

from serial.tools import list_ports

from at_device_detector import ATDeviceDetector, DetectionResult, DetectorConfig

log = logging.getLogger(__name__)


def list_serial_ports():
    ports = list_ports.comports()
    results = []
    for p in ports:
        results.append({
            "device": p.device,        # /dev/ttyUSB0, COM3, ...
            "name": p.name,
            "description": p.description,
            "hwid": p.hwid,
            "vid": hex(p.vid) if p.vid else None,
            "pid": hex(p.pid) if p.pid else None,
        })
    return results


def detect_ports(
    ports: Optional[List] = None,
    config: Optional[DetectorConfig] = None,
    link_opener=None,
) -> List[DetectionResult]:
    """
    Start 1 detector per port, wait for all of them.
    Without `ports`, every port pyserial lists is probed.
    """
    if ports is None:
        ports = list_ports.comports()

    detectors = [ATDeviceDetector(p, config=config, link_opener=link_opener) for p in ports]
    for d in detectors:
        d.start()
    log.info("Started detection on %d port(s)", len(detectors))

    return [d.wait() for d in detectors]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Detect AT devices (GSM modems) on serial ports")
    parser.add_argument("ports", nargs="*", help="ports to probe (default: all listed ports)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(threadName)s %(levelname)s %(message)s",
    )

    for item in detect_ports(args.ports or None):
        print("-" * 40)
        print(f"Port:        {item.port}")
        print(f"Detected:    {item.detected}")
        print(f"Max baud:    {item.max_baud_rate}")
        print(f"Serial:      {item.serial}")
        print(f"Error:       {item.exception_message}")


if __name__ == "__main__":
    main()
