"""
ORB Feature Extraction

FeatureSet owns the keypoints and the descriptor matrix extracted from
one image. Owners release it explicitly (or use it as a context manager)
once matching is done, since descriptor matrices dominate memory use.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..imaging import image_size, is_empty, to_gray

logger = logging.getLogger(__name__)


# ORB parameters
ORB_MAX_FEATURES = 3000
ORB_SCALE_FACTOR = 1.1
ORB_LEVELS = 20
ORB_EDGE_THRESHOLD = 31
ORB_FIRST_LEVEL = 0
ORB_WTA_K = 2
ORB_PATCH_SIZE = 31
ORB_FAST_THRESHOLD = 3


@dataclass(frozen=True)
class Keypoint:
    """Plain keypoint record, independent of cv2.KeyPoint."""
    x: float
    y: float
    size: float
    angle: float
    response: float
    octave: int = 0
    class_id: int = -1

    @classmethod
    def from_cv(cls, kp: cv2.KeyPoint) -> "Keypoint":
        return cls(float(kp.pt[0]), float(kp.pt[1]), float(kp.size), float(kp.angle),
                   float(kp.response), int(kp.octave), int(kp.class_id))

    def to_cv(self) -> cv2.KeyPoint:
        return cv2.KeyPoint(self.x, self.y, self.size, self.angle, self.response,
                            self.octave, self.class_id)


@dataclass
class FeatureSet:
    """Keypoints plus their descriptor matrix (N x 32 uint8 for ORB)."""
    keypoints: List[Keypoint]
    descriptors: np.ndarray
    extraction_time_ms: float = 0.0
    image_size: Tuple[int, int] = (0, 0)  # (width, height) of the source image
    _released: bool = field(default=False, repr=False, compare=False)

    @property
    def count(self) -> int:
        return len(self.keypoints)

    @property
    def is_valid(self) -> bool:
        return (
            not self._released
            and self.count > 0
            and self.descriptors is not None
            and self.descriptors.shape[0] == self.count
        )

    def points(self) -> np.ndarray:
        return np.array([[kp.x, kp.y] for kp in self.keypoints], dtype=np.float32).reshape(-1, 2)

    def copy(self) -> "FeatureSet":
        return FeatureSet(list(self.keypoints), self.descriptors.copy(),
                          self.extraction_time_ms, self.image_size)

    def release(self) -> None:
        """Drop the descriptor matrix and keypoints."""
        self.keypoints = []
        self.descriptors = np.empty((0, 0), dtype=np.uint8)
        self._released = True

    def __enter__(self) -> "FeatureSet":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class FeatureExtractor:
    """ORB keypoint/descriptor extractor."""

    def __init__(self, max_features: int = ORB_MAX_FEATURES):
        self._orb = cv2.ORB_create(
            nfeatures=max_features,
            scaleFactor=ORB_SCALE_FACTOR,
            nlevels=ORB_LEVELS,
            edgeThreshold=ORB_EDGE_THRESHOLD,
            firstLevel=ORB_FIRST_LEVEL,
            WTA_K=ORB_WTA_K,
            scoreType=cv2.ORB_HARRIS_SCORE,
            patchSize=ORB_PATCH_SIZE,
            fastThreshold=ORB_FAST_THRESHOLD,
        )

    def extract(self, image) -> Optional[FeatureSet]:
        """
        Detect keypoints and compute descriptors.

        Args:
            image: BGR/grayscale array or PIL Image

        Returns:
            FeatureSet, or None if the image is empty or has no features
        """
        if is_empty(image):
            logger.warning("Cannot extract features from an empty image")
            return None

        start = time.perf_counter()
        gray = to_gray(image)
        keypoints, descriptors = self._orb.detectAndCompute(gray, None)
        elapsed_ms = (time.perf_counter() - start) * 1000

        if descriptors is None or not keypoints:
            logger.debug(f"No features found ({elapsed_ms:.1f}ms)")
            return None

        logger.debug(f"Extracted {len(keypoints)} features in {elapsed_ms:.1f}ms")
        return FeatureSet(
            keypoints=[Keypoint.from_cv(kp) for kp in keypoints],
            descriptors=descriptors,
            extraction_time_ms=elapsed_ms,
            image_size=image_size(image),
        )
