"""
Detection Result Dataclasses

Probability maps, ordered quads and per-frame detection results.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from .. import geometry
from ..geometry import Rect


class CoordinateSpace(Enum):
    """Pixel space a quad was computed in."""
    MODEL = "model"  # Segmentation model output resolution
    IMAGE = "image"  # Full-resolution input image


class ProbabilityMap:
    """
    Read-only 2D grid of per-pixel document probabilities in [0, 1].

    The wrapped array is clipped to [0, 1], converted to float32 and
    marked non-writable.
    """

    def __init__(self, values: np.ndarray):
        arr = np.asarray(values, dtype=np.float32)
        if arr.ndim == 3 and arr.shape[2] == 1:
            arr = arr[:, :, 0]
        if arr.ndim != 2:
            raise ValueError(f"Probability map must be 2D, got shape {arr.shape}")
        arr = np.clip(arr, 0.0, 1.0)
        arr.setflags(write=False)
        self._values = arr

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def width(self) -> int:
        return self._values.shape[1]

    @property
    def height(self) -> int:
        return self._values.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def to_uint8(self) -> np.ndarray:
        return np.round(self._values * 255.0).astype(np.uint8)

    def confidence(self) -> float:
        """Mean probability over all cells above 0.5 (0.0 if none)."""
        above = self._values[self._values > 0.5]
        if above.size == 0:
            return 0.0
        return float(above.mean())


@dataclass(frozen=True, eq=False)
class Quad:
    """
    Four corners ordered by polar angle around their centroid.

    Use Quad.from_points to get the canonical order. The coordinate space
    and its size travel with the points so results from the model
    resolution are never mixed with full-image coordinates.
    """
    points: np.ndarray  # (4, 2) float64
    space: CoordinateSpace
    space_size: Tuple[int, int]  # (width, height) of the coordinate space

    @classmethod
    def from_points(cls, points, space: CoordinateSpace, space_size: Tuple[int, int]) -> "Quad":
        pts = geometry.as_points(points)
        if len(pts) != 4:
            raise ValueError(f"A quad needs exactly 4 points, got {len(pts)}")
        sorted_pts = geometry.sort_corners(pts)
        sorted_pts.setflags(write=False)
        return cls(sorted_pts, space, (int(space_size[0]), int(space_size[1])))

    @property
    def area(self) -> float:
        return abs(geometry.polygon_area(self.points))

    @property
    def bounds(self) -> Rect:
        return geometry.bounds_from_corners(self.points)

    @property
    def rotation_angle(self) -> float:
        return geometry.rotation_angle(self.points)

    def is_convex(self) -> bool:
        return geometry.is_convex(self.points)

    def expanded(self, ratio: float) -> "Quad":
        """Expanded copy, clamped to the coordinate space."""
        width, height = self.space_size
        return Quad.from_points(
            geometry.expand_quad(self.points, ratio, width, height),
            self.space, self.space_size,
        )

    def scaled_to(self, width: int, height: int,
                  space: CoordinateSpace = CoordinateSpace.IMAGE) -> "Quad":
        """
        Re-express the quad in another coordinate space of the given size.

        Raises:
            ValueError: If the target space is the one the quad is already in
        """
        if space == self.space:
            raise ValueError(f"Quad is already in {self.space.value} space")
        sx = width / float(self.space_size[0])
        sy = height / float(self.space_size[1])
        scaled = self.points * np.array([sx, sy])
        return Quad.from_points(scaled, space, (width, height))

    def as_array(self) -> np.ndarray:
        return np.array(self.points, dtype=np.float64)


@dataclass(frozen=True)
class DetectionResult:
    """Quad detection outcome for one frame."""
    detected: bool
    quad: Optional[Quad] = None          # Unexpanded, used for cropping
    display_quad: Optional[Quad] = None  # Expanded, used for overlays
    confidence: float = 0.0
    rotation_angle: float = 0.0          # Degrees
    source_size: Tuple[int, int] = (0, 0)
    stage: Optional[str] = None          # Fallback stage that produced the quad
    processing_time_ms: float = field(default=0.0, compare=False)

    @classmethod
    def not_detected(cls, source_size: Tuple[int, int], confidence: float = 0.0,
                     processing_time_ms: float = 0.0) -> "DetectionResult":
        return cls(False, confidence=confidence, source_size=source_size,
                   processing_time_ms=processing_time_ms)

    def has_valid_corners(self) -> bool:
        return self.detected and self.quad is not None

    @property
    def bounding_box(self) -> Optional[Rect]:
        quad = self.display_quad or self.quad
        return quad.bounds if quad is not None else None

    def scaled_to(self, width: int, height: int) -> "DetectionResult":
        """Express the result in full-image space."""
        if not self.has_valid_corners():
            return replace(self, source_size=(width, height))
        quad = self.quad.scaled_to(width, height)
        display = self.display_quad.scaled_to(width, height) if self.display_quad else None
        return replace(
            self,
            quad=quad,
            display_quad=display,
            rotation_angle=(display or quad).rotation_angle,
            source_size=(width, height),
        )
