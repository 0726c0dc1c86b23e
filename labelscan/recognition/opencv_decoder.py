"""
OpenCV Barcode Decoder

1D barcodes via cv2.barcode.BarcodeDetector and QR codes via
cv2.QRCodeDetector (OpenCV >= 4.8).
"""

import logging
from typing import Callable, List

import cv2
import numpy as np

from .base import BarcodeDecoder
from .result import BarcodeReading

logger = logging.getLogger(__name__)


_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def _box_from_points(points) -> tuple:
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    x, y, w, h = cv2.boundingRect(pts)
    return (int(x), int(y), int(w), int(h))


class OpenCVBarcodeDecoder(BarcodeDecoder):
    """Synchronous decoder; callbacks run on the calling thread."""

    def __init__(self, try_qr: bool = True):
        self.try_qr = try_qr

    @property
    def name(self) -> str:
        return "opencv"

    def configure(self, **kwargs) -> None:
        if "try_qr" in kwargs:
            self.try_qr = bool(kwargs["try_qr"])

    def decode(self, image: np.ndarray, rotation: int,
               on_success: Callable[[List[BarcodeReading]], None],
               on_failure: Callable[[Exception], None]) -> None:
        try:
            readings = self._decode(image, rotation)
        except cv2.error as e:
            on_failure(e)
            return
        on_success(readings)

    def _decode(self, image: np.ndarray, rotation: int) -> List[BarcodeReading]:
        rotate_code = _ROTATIONS.get(rotation % 360)
        if rotate_code is not None:
            image = cv2.rotate(image, rotate_code)

        readings = []
        # Created per call: the detectors are not thread-safe
        detector = cv2.barcode.BarcodeDetector()
        ok, infos, types, points = detector.detectAndDecodeWithType(image)
        if ok and infos:
            for i, content in enumerate(infos):
                if not content:
                    continue
                corners = points[i].reshape(-1, 2) if points is not None else []
                readings.append(BarcodeReading(
                    content=content,
                    format=types[i] if types is not None and i < len(types) else "UNKNOWN",
                    bounding_box=_box_from_points(corners) if len(corners) else None,
                    corners=[(float(x), float(y)) for x, y in corners],
                ))

        if not readings and self.try_qr:
            content, qr_points, _ = cv2.QRCodeDetector().detectAndDecode(image)
            if content:
                corners = qr_points.reshape(-1, 2) if qr_points is not None else []
                readings.append(BarcodeReading(
                    content=content,
                    format="QR_CODE",
                    bounding_box=_box_from_points(corners) if len(corners) else None,
                    corners=[(float(x), float(y)) for x, y in corners],
                ))

        return readings
