"""
Document detection: probability map -> ordered quad -> rectified label.

Usage:
    from labelscan.detection import DocumentQuadDetector, ProbabilityMap

    detector = DocumentQuadDetector()
    result = detector.detect(ProbabilityMap(model_output))
    if result.detected:
        corners = result.quad.points
"""

from .result import (
    CoordinateSpace,
    DetectionResult,
    ProbabilityMap,
    Quad,
)
from .quad_detector import DocumentQuadDetector
from .segmentation import SegmentationModel, OpenCVSegmentationModel
from .label_detector import LabelDetector

__all__ = [
    # Data types
    "CoordinateSpace",
    "DetectionResult",
    "ProbabilityMap",
    "Quad",
    # Detection
    "DocumentQuadDetector",
    "LabelDetector",
    # Model contract
    "SegmentationModel",
    "OpenCVSegmentationModel",
]
