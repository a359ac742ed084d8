from types import SimpleNamespace

import scan_port
from conftest import FAST_CONFIG, FakeOpener, modem


def fake_comports():
    return [
        SimpleNamespace(device="/dev/ttyUSB0", name="ttyUSB0", description="Quectel EC25",
                        hwid="USB VID:PID=2C7C:0125", vid=0x2C7C, pid=0x0125),
        SimpleNamespace(device="/dev/ttyS0", name="ttyS0", description="n/a",
                        hwid="n/a", vid=None, pid=None),
    ]


def test_list_serial_ports(monkeypatch):
    monkeypatch.setattr(scan_port.list_ports, "comports", fake_comports)

    ports = scan_port.list_serial_ports()

    assert ports[0] == {
        "device": "/dev/ttyUSB0",
        "name": "ttyUSB0",
        "description": "Quectel EC25",
        "hwid": "USB VID:PID=2C7C:0125",
        "vid": "0x2c7c",
        "pid": "0x125",
    }
    assert ports[1]["vid"] is None


def test_detect_ports_keeps_order():
    def respond(command, baud):
        return modem("IMEI-A")(command, baud)

    results = scan_port.detect_ports(["COM1", "COM2", "COM3"], config=FAST_CONFIG,
                                     link_opener=FakeOpener(respond))

    assert [r.port for r in results] == ["COM1", "COM2", "COM3"]
    assert all(r.finished and r.detected for r in results)
    assert all(r.serial == "IMEI-A" for r in results)


def test_detect_ports_uses_listed_ports(monkeypatch):
    monkeypatch.setattr(scan_port.list_ports, "comports", fake_comports)

    results = scan_port.detect_ports(config=FAST_CONFIG, link_opener=FakeOpener(open_error=True))

    assert [r.port for r in results] == ["/dev/ttyUSB0", "/dev/ttyS0"]
    assert all(r.finished and not r.detected for r in results)


def test_main_prints_report(monkeypatch, capsys):
    def fake_detect_ports(ports):
        return [
            scan_port.DetectionResult(port="COM7", finished=True, detected=True,
                                      max_baud_rate=115200, serial="IMEI7"),
        ]

    monkeypatch.setattr(scan_port, "detect_ports", fake_detect_ports)
    scan_port.main(["COM7"])

    out = capsys.readouterr().out
    assert "COM7" in out
    assert "115200" in out
    assert "IMEI7" in out
