"""
Label Detector

Runs the segmentation model, feeds the probability map to the quad
detector and maps the result into full-image coordinates. Also rectifies
the detected label with a perspective warp for LABEL_DETECTION matching.
"""

import logging
import time
from typing import Optional

import cv2
import numpy as np

from .. import geometry
from ..imaging import image_size, is_empty, to_bgr
from .quad_detector import DocumentQuadDetector
from .result import DetectionResult
from .segmentation import SegmentationModel

logger = logging.getLogger(__name__)


# Rectified outputs smaller than this on either side are discarded
MIN_RECTIFIED_SIZE = 10


class LabelDetector:
    """
    Segmentation + quad detection for full-size images.

    Example:
        detector = LabelDetector(OpenCVSegmentationModel("label.onnx"))
        result = detector.detect(frame)
        if result.detected:
            label = detector.extract_and_correct(frame, result)
    """

    def __init__(self, model: SegmentationModel,
                 quad_detector: Optional[DocumentQuadDetector] = None):
        self.model = model
        self.quad_detector = quad_detector or DocumentQuadDetector()

    def detect(self, image, live: bool = True) -> DetectionResult:
        """
        Detect the label quad in image coordinates.

        Args:
            image: BGR array or PIL Image
            live: Per-frame mode (cheap fallbacks). Use False for one-shot
                processing such as template authoring.
        """
        if is_empty(image):
            logger.warning("Empty image passed to label detector")
            return DetectionResult.not_detected((0, 0))

        start = time.perf_counter()
        prob_map = self.model.infer(image)
        result = self.quad_detector.detect(prob_map, live=live)

        width, height = image_size(image)
        scaled = result.scaled_to(width, height)
        logger.debug(f"Label detection: detected={scaled.detected}, "
                     f"confidence={scaled.confidence:.2f}, "
                     f"{(time.perf_counter() - start) * 1000:.1f}ms")
        return scaled

    @staticmethod
    def extract_and_correct(image, result: DetectionResult) -> Optional[np.ndarray]:
        """
        Warp the unexpanded label quad to an upright rectangle.

        The output size is the average of opposite side lengths.

        Returns:
            Rectified BGR image, or None if nothing usable was detected
        """
        if not result.has_valid_corners():
            return None

        corners = result.quad.as_array().astype(np.float32)
        top, right, bottom, left = geometry.side_lengths(corners)
        width = int(round((top + bottom) / 2.0))
        height = int(round((left + right) / 2.0))
        if width < MIN_RECTIFIED_SIZE or height < MIN_RECTIFIED_SIZE:
            logger.debug(f"Rectified label too small: {width}x{height}")
            return None

        target = np.array([[0, 0], [width - 1, 0], [width - 1, height - 1], [0, height - 1]],
                          dtype=np.float32)
        matrix = cv2.getPerspectiveTransform(corners, target)
        return cv2.warpPerspective(to_bgr(image), matrix, (width, height))
