"""
Region Projector

Maps template regions into frame coordinates and drops the ones whose
projected geometry is implausible. Invalid regions never abort the batch.
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .. import geometry
from ..geometry import Rect
from ..templates.models import TemplateRegion
from .result import TransformedRegion

logger = logging.getLogger(__name__)


# Validation limits (pixels)
MIN_REGION_SIDE = 10.0
MAX_REGION_SCALE = 5.0   # Max side as a multiple of the larger frame dimension
MAX_ASPECT_RATIO = 50.0
MIN_REGION_AREA = 10.0
MIN_CORNER_DISTANCE = 2.0
MIN_POLYGON_AREA = 25.0


def validate_region(bounds: Rect, corners: np.ndarray,
                    frame_size: Tuple[int, int]) -> Optional[str]:
    """
    Check a projected region.

    Args:
        bounds: Axis-aligned bounds of the projected corners
        corners: Projected corners (4, 2)
        frame_size: (width, height) of the target frame

    Returns:
        Rejection reason, or None if the region is usable
    """
    if not bounds.is_finite() or not np.all(np.isfinite(corners)):
        return "non-finite bounds"

    width = bounds.width
    height = bounds.height
    if width <= MIN_REGION_SIDE or height <= MIN_REGION_SIDE:
        return f"too small ({width:.1f}x{height:.1f})"

    frame_dim = float(max(frame_size))
    if width > frame_dim * MAX_REGION_SCALE or height > frame_dim * MAX_REGION_SCALE:
        return f"too large ({width:.1f}x{height:.1f})"

    aspect = max(width, height) / min(width, height)
    if aspect > MAX_ASPECT_RATIO:
        return f"extreme aspect ratio ({aspect:.1f})"

    area = width * height
    if area < MIN_REGION_AREA or area > MAX_REGION_SCALE * frame_dim * frame_dim:
        return f"area out of range ({area:.1f})"

    if geometry.min_corner_distance(corners) < MIN_CORNER_DISTANCE:
        return "corners too close"

    if abs(geometry.polygon_area(corners)) < MIN_POLYGON_AREA:
        return "degenerate polygon"

    return None


class RegionProjector:
    """Projects template regions with the inverse of a frame->template homography."""

    def project(self, regions: Sequence[TemplateRegion],
                homography: Optional[np.ndarray],
                frame_size: Tuple[int, int]) -> List[TransformedRegion]:
        """
        Project regions into the frame.

        Args:
            regions: Template regions in reference space
            homography: Frame->template homography, or None when the frame
                is already rectified to template space
            frame_size: (width, height) of the frame

        Returns:
            Valid projected regions, in sort order. Invalid ones are dropped.
        """
        inverse = None
        if homography is not None:
            inverse = invert_homography(homography)
            if inverse is None:
                logger.warning("Homography is singular, no regions projected")
                return []

        projected = []
        for region in sorted(regions, key=lambda r: r.sort_order):
            if not region.enabled:
                continue

            if inverse is not None:
                corners = geometry.perspective_transform(region.corners(), inverse)
            else:
                corners = region.corners()
            bounds = geometry.bounds_from_corners(corners)

            reason = validate_region(bounds, corners, frame_size)
            if reason is not None:
                logger.debug(f"Region '{region.name}' rejected: {reason}")
                continue

            projected.append(TransformedRegion(region, bounds, corners))

        return projected


def invert_homography(homography: np.ndarray) -> Optional[np.ndarray]:
    h = np.asarray(homography, dtype=np.float64)
    if h.shape != (3, 3) or not np.all(np.isfinite(h)):
        return None
    det = np.linalg.det(h)
    if not math.isfinite(det) or abs(det) < 1e-12:
        return None
    return np.linalg.inv(h)
