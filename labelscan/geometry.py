"""
Geometry Utilities

Pure vector and quadrilateral math shared by the detector, the matcher and
the region projector. Points are numpy arrays of shape (N, 2) in pixel
coordinates with y pointing down.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np


# Cross products below this are treated as collinear
COLLINEAR_EPSILON = 1e-6


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle with float edges."""
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.left + self.right) / 2.0, (self.top + self.bottom) / 2.0)

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.left, self.top, self.right, self.bottom))

    def corners(self) -> np.ndarray:
        """Corners as [topLeft, topRight, bottomRight, bottomLeft]."""
        return np.array([
            [self.left, self.top],
            [self.right, self.top],
            [self.right, self.bottom],
            [self.left, self.bottom],
        ], dtype=np.float64)

    def scaled(self, sx: float, sy: float) -> "Rect":
        return Rect(self.left * sx, self.top * sy, self.right * sx, self.bottom * sy)

    @classmethod
    def from_xywh(cls, x: float, y: float, width: float, height: float) -> "Rect":
        return cls(x, y, x + width, y + height)


def as_points(points) -> np.ndarray:
    """Coerce any (N, 2)-like input to a float64 array."""
    arr = np.asarray(points, dtype=np.float64)
    return arr.reshape(-1, 2)


def centroid(points) -> np.ndarray:
    return as_points(points).mean(axis=0)


def sort_corners(points) -> np.ndarray:
    """
    Sort points by polar angle around their centroid.

    For a roughly axis-aligned quad in image coordinates this yields
    [topLeft, topRight, bottomRight, bottomLeft]. Sorting an already
    sorted quad returns it unchanged.
    """
    pts = as_points(points)
    c = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - c[1], pts[:, 0] - c[0])
    order = np.argsort(angles, kind="stable")
    return pts[order]


def polygon_area(points) -> float:
    """Signed shoelace area. Positive for clockwise order in image coordinates."""
    pts = as_points(points)
    x = pts[:, 0]
    y = pts[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def side_lengths(points) -> List[float]:
    pts = as_points(points)
    return [float(np.linalg.norm(pts[(i + 1) % len(pts)] - pts[i])) for i in range(len(pts))]


def min_corner_distance(points) -> float:
    """Smallest distance between any two of the points."""
    pts = as_points(points)
    best = math.inf
    for i in range(len(pts)):
        for j in range(i + 1, len(pts)):
            best = min(best, float(np.linalg.norm(pts[i] - pts[j])))
    return best


def _cross(o: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    return float((a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0]))


def is_convex(points) -> bool:
    """
    Check that every turn of the closed polygon has the same sign.

    Collinear turns are skipped, so a polygon with a straight vertex still
    counts as convex.
    """
    pts = as_points(points)
    n = len(pts)
    if n < 3:
        return False

    sign = 0
    for i in range(n):
        cross = _cross(pts[i], pts[(i + 1) % n], pts[(i + 2) % n])
        if abs(cross) < COLLINEAR_EPSILON:
            continue
        current = 1 if cross > 0 else -1
        if sign == 0:
            sign = current
        elif current != sign:
            return False
    return sign != 0


def _segments_intersect(p1, p2, p3, p4) -> bool:
    d1 = _cross(p3, p4, p1)
    d2 = _cross(p3, p4, p2)
    d3 = _cross(p1, p2, p3)
    d4 = _cross(p1, p2, p4)
    return ((d1 > 0) != (d2 > 0)) and ((d3 > 0) != (d4 > 0)) \
        and abs(d1) > COLLINEAR_EPSILON and abs(d2) > COLLINEAR_EPSILON


def is_self_intersecting(points) -> bool:
    """True if the opposite edges of a 4-point polygon cross."""
    pts = as_points(points)
    if len(pts) != 4:
        raise ValueError(f"Expected 4 points, got {len(pts)}")
    return _segments_intersect(pts[0], pts[1], pts[2], pts[3]) or \
        _segments_intersect(pts[1], pts[2], pts[3], pts[0])


def angle_at(a, b, c) -> float:
    """Angle ABC in degrees, in [0, 180]."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    c = np.asarray(c, dtype=np.float64)
    v1 = a - b
    v2 = c - b
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 == 0 or n2 == 0:
        return 0.0
    cos = float(np.dot(v1, v2) / (n1 * n2))
    return math.degrees(math.acos(max(-1.0, min(1.0, cos))))


def interior_angles(points) -> List[float]:
    """Interior angle at every vertex of a convex polygon, in degrees."""
    pts = as_points(points)
    n = len(pts)
    return [angle_at(pts[(i - 1) % n], pts[i], pts[(i + 1) % n]) for i in range(n)]


def reflex_vertices(points) -> List[bool]:
    """
    Flag vertices that turn against the polygon's orientation.

    interior_angles cannot tell a 270 degree corner from a 90 degree one;
    this can. Collinear vertices are not reflex.
    """
    pts = as_points(points)
    n = len(pts)
    orientation = np.sign(polygon_area(pts))
    flags = []
    for i in range(n):
        incoming = pts[i] - pts[(i - 1) % n]
        outgoing = pts[(i + 1) % n] - pts[i]
        turn = incoming[0] * outgoing[1] - incoming[1] * outgoing[0]
        flags.append(bool(orientation != 0 and np.sign(turn) == -orientation))
    return flags


def line_intersection(p1, p2, p3, p4) -> Optional[np.ndarray]:
    """
    Intersection of the infinite lines p1-p2 and p3-p4.

    Returns:
        The intersection point, or None if the lines are parallel
    """
    p1, p2, p3, p4 = (np.asarray(p, dtype=np.float64) for p in (p1, p2, p3, p4))
    d1 = p2 - p1
    d2 = p4 - p3
    denom = d1[0] * d2[1] - d1[1] * d2[0]
    if abs(denom) < COLLINEAR_EPSILON:
        return None
    t = ((p3[0] - p1[0]) * d2[1] - (p3[1] - p1[1]) * d2[0]) / denom
    return p1 + t * d1


def perspective_transform(points, matrix: np.ndarray) -> np.ndarray:
    """Apply a 3x3 projective transform to points."""
    pts = as_points(points).reshape(-1, 1, 2)
    mapped = cv2.perspectiveTransform(pts, np.asarray(matrix, dtype=np.float64))
    return mapped.reshape(-1, 2)


def bounds_from_corners(points) -> Rect:
    pts = as_points(points)
    return Rect(
        float(pts[:, 0].min()),
        float(pts[:, 1].min()),
        float(pts[:, 0].max()),
        float(pts[:, 1].max()),
    )


def clamp_points(points, width: float, height: float) -> np.ndarray:
    pts = as_points(points).copy()
    pts[:, 0] = np.clip(pts[:, 0], 0, width)
    pts[:, 1] = np.clip(pts[:, 1], 0, height)
    return pts


def expand_quad(points, ratio: float, width: Optional[float] = None,
                height: Optional[float] = None) -> np.ndarray:
    """
    Push every corner away from the centroid by `ratio` of its offset.

    When width/height are given the result is clamped to that area.
    """
    pts = as_points(points)
    c = pts.mean(axis=0)
    expanded = c + (pts - c) * (1.0 + ratio)
    if width is not None and height is not None:
        expanded = clamp_points(expanded, width, height)
    return expanded


def rotation_angle(points) -> float:
    """Angle in degrees of the vector from the first to the second corner."""
    pts = as_points(points)
    dx, dy = pts[1] - pts[0]
    return math.degrees(math.atan2(dy, dx))


def within_bounds(points, width: float, height: float, tolerance: float = 0.0) -> bool:
    pts = as_points(points)
    return bool(
        np.all(pts[:, 0] >= -tolerance) and np.all(pts[:, 0] <= width + tolerance)
        and np.all(pts[:, 1] >= -tolerance) and np.all(pts[:, 1] <= height + tolerance)
    )


def scale_matrix(sx: float, sy: float) -> np.ndarray:
    return np.array([[sx, 0, 0], [0, sy, 0], [0, 0, 1]], dtype=np.float64)


def to_contour(points: Sequence) -> np.ndarray:
    """Points in the int32 (N, 1, 2) layout cv2 drawing functions expect."""
    return np.round(as_points(points)).astype(np.int32).reshape(-1, 1, 2)
