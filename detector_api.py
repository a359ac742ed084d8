# detector_api.py
import logging
import threading
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import uvicorn

from at_device_detector import ATDeviceDetector, DetectionResult, DetectorConfig
from scan_port import list_serial_ports
from serial_link import port_name

log = logging.getLogger(__name__)

API_HOST = "127.0.0.1"
API_PORT = 8000


# ==========================
#  Detection manager
# ==========================

class DetectionManager:
    """
    Keeps 1 ATDeviceDetector per port name.
    A port is probed again only after its previous detection was removed.
    """
    def __init__(self, config: Optional[DetectorConfig] = None, link_opener=None):
        self.config = config
        self.link_opener = link_opener
        self.detectors: Dict[str, ATDeviceDetector] = {}
        self.lock = threading.Lock()

    def start(self, ports: List) -> List[str]:
        started = []
        with self.lock:
            for p in ports:
                name = port_name(p)
                if name in self.detectors:
                    continue
                d = ATDeviceDetector(p, config=self.config, link_opener=self.link_opener)
                self.detectors[name] = d
                d.start()
                started.append(name)
        if started:
            log.info("Detection started on %s", ", ".join(started))
        return started

    def get(self, port: str) -> Optional[ATDeviceDetector]:
        with self.lock:
            return self.detectors.get(port)

    def results(self) -> List[DetectionResult]:
        with self.lock:
            detectors = list(self.detectors.values())
        return [d.result() for d in detectors]

    def remove(self, port: str) -> bool:
        """Forget a finished detection. Returns False if it is still running."""
        with self.lock:
            d = self.detectors.get(port)
            if d is None:
                raise KeyError(port)
            if not d.is_finished():
                return False
            del self.detectors[port]
            return True

    def cancel_all(self):
        with self.lock:
            for d in self.detectors.values():
                d.cancel()


detection_manager = DetectionManager()


# ==========================
#  FastAPI definitions
# ==========================

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    detection_manager.cancel_all()


api_app = FastAPI(title="AT Device Detector API", version="1.0.0", lifespan=lifespan)


class DetectRequest(BaseModel):
    ports: Optional[List[str]] = None


def _get_detector(port: str) -> ATDeviceDetector:
    d = detection_manager.get(port)
    if not d:
        raise HTTPException(status_code=404, detail="No detection for this port")
    return d


@api_app.get("/ports")
def api_list_ports():
    return list_serial_ports()


@api_app.post("/detections")
def api_start_detection(req: DetectRequest):
    ports = req.ports
    if ports is None:
        ports = [p["device"] for p in list_serial_ports()]
    return {"started": detection_manager.start(ports)}


@api_app.get("/detections", response_model=List[DetectionResult])
def api_list_detections():
    return detection_manager.results()


# port names like /dev/ttyUSB0 contain slashes
@api_app.get("/detections/{port:path}", response_model=DetectionResult)
def api_get_detection(port: str):
    return _get_detector(port).result()


@api_app.post("/detections/{port:path}/cancel")
def api_cancel_detection(port: str):
    _get_detector(port).cancel()
    return {"status": "cancelling", "port": port}


@api_app.delete("/detections/{port:path}")
def api_remove_detection(port: str):
    try:
        removed = detection_manager.remove(port)
    except KeyError:
        raise HTTPException(status_code=404, detail="No detection for this port")
    if not removed:
        raise HTTPException(status_code=409, detail="Detection still running")
    return {"status": "removed", "port": port}


# ==========================
#  Run API
# ==========================

def start_api():
    # Swagger: http://127.0.0.1:8000/docs
    uvicorn.run(api_app, host=API_HOST, port=API_PORT, log_level="info")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    start_api()
