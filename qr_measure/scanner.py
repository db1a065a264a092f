import logging
from dataclasses import dataclass

import cv2
import numpy as np
from pyzbar.pyzbar import decode as pyzbar_decode
from qrdet import QRDetector

from .marker import MarkerResult, select_marker

logger = logging.getLogger(__name__)


@dataclass
class QRCode:
    """Detected QR code data."""
    bbox: tuple[int, int, int, int] | None = None
    confidence: float | None = None
    decoded: str | None = None


def decode_image(raw: bytes) -> np.ndarray:
    buf = np.frombuffer(raw, dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Failed to decode image")
    return image


class MarkerScanner:
    """Finds QR codes with qrdet and reads their payload with pyzbar."""

    def __init__(
        self,
        model_size: str = "s",
        conf_th: float = 0.5,
        pad: int = 10,
        detector=None,
    ) -> None:
        self.pad = pad
        if detector is None:
            detector = QRDetector(model_size=model_size, conf_th=conf_th)
        self.detector = detector

    def scan(self, image: np.ndarray) -> list[QRCode]:
        detections = self.detector.detect(image=image, is_bgr=True)
        if not detections:
            return []

        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image
        h, w = gray.shape

        qr_codes = []
        for detection in detections:
            x1, y1, x2, y2 = detection["bbox_xyxy"]  # type: ignore
            # Ensure coordinates are standard Python ints
            x1, y1, x2, y2 = int(x1), int(y1), int(x2), int(y2)

            pad = self.pad
            crop = gray[max(0, y1 - pad) : min(h, y2 + pad), max(0, x1 - pad) : min(w, x2 + pad)]
            decoded = None
            results = pyzbar_decode(crop)
            if results:
                decoded = results[0].data.decode("utf-8", errors="replace")

            qr_codes.append(
                QRCode(
                    bbox=(x1, y1, x2, y2),
                    confidence=float(detection.get("confidence", 1.0)),  # type: ignore
                    decoded=decoded,
                )
            )

        logger.debug("Scanned %d QR code(s), %d decoded", len(qr_codes), sum(1 for q in qr_codes if q.decoded))
        return qr_codes

    def locate_marker(self, image: np.ndarray) -> MarkerResult:
        return select_marker(self.scan(image))
