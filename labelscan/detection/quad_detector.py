"""
Document Quad Detector

Turns a segmentation probability map into a 4-corner document quad using a
layered fallback chain. The first stage that produces a qualifying quad
wins:

1. contour         - clean 4-vertex contour of the refined 0.5 mask
2. threshold_sweep - best-scoring 4-vertex contour over Otsu + fixed levels
3. right_angle     - complete a quad from 3 near-right consecutive corners
4. min_area_rect   - minimum-area rectangle of the largest contour (offline only)
"""

import logging
import time
from collections import Counter
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .. import geometry
from .result import CoordinateSpace, DetectionResult, ProbabilityMap, Quad

logger = logging.getLogger(__name__)


# Quads smaller than this fraction of the map are ignored
MIN_QUAD_AREA_RATIO = 0.02

# Mask refinement
BINARY_THRESHOLD = 0.5
MORPH_KERNEL_SIZE = 5
BLUR_KERNEL_SIZE = 5

# Edge detection (8-bit intensity units)
CANNY_LOW = 75
CANNY_HIGH = 200

# approxPolyDP epsilon as a fraction of the contour perimeter
APPROX_EPSILON_RATIO = 0.02

# Threshold sweep levels
LIVE_THRESHOLDS = (0.25, 0.50, 0.75)
OFFLINE_THRESHOLD_COUNT = 13
OFFLINE_THRESHOLD_RANGE = (0.2, 0.8)
SCORE_AREA_WEIGHT = 0.3

# Right-angle completion
RIGHT_ANGLE_RANGE = (60.0, 120.0)
BOUNDS_TOLERANCE_PX = 1.0

# Display expansion around the centroid
DISPLAY_EXPAND_RATIO = 0.05

STAGE_CONTOUR = "contour"
STAGE_THRESHOLD_SWEEP = "threshold_sweep"
STAGE_RIGHT_ANGLE = "right_angle"
STAGE_MIN_AREA_RECT = "min_area_rect"


def _kernel() -> np.ndarray:
    return cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (MORPH_KERNEL_SIZE, MORPH_KERNEL_SIZE))


def refine_mask(mask: np.ndarray) -> np.ndarray:
    """Close small holes then remove specks."""
    kernel = _kernel()
    closed = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel)
    return cv2.morphologyEx(closed, cv2.MORPH_OPEN, kernel)


def approximate(contour: np.ndarray) -> np.ndarray:
    perimeter = cv2.arcLength(contour, True)
    return cv2.approxPolyDP(contour, APPROX_EPSILON_RATIO * perimeter, True)


def offline_thresholds(count: int = OFFLINE_THRESHOLD_COUNT,
                       low: float = OFFLINE_THRESHOLD_RANGE[0],
                       high: float = OFFLINE_THRESHOLD_RANGE[1]) -> List[float]:
    """Evenly spaced levels in [low, high]."""
    return [float(v) for v in np.linspace(low, high, count)]


class DocumentQuadDetector:
    """
    Quad detector over model-resolution probability maps.

    Stateless apart from stage_counts, which records how many times each
    fallback stage ran. Results are in CoordinateSpace.MODEL; use
    DetectionResult.scaled_to to move them into image space.
    """

    def __init__(self,
                 min_area_ratio: float = MIN_QUAD_AREA_RATIO,
                 live_thresholds: Sequence[float] = LIVE_THRESHOLDS,
                 offline_threshold_count: int = OFFLINE_THRESHOLD_COUNT,
                 right_angle_range: Tuple[float, float] = RIGHT_ANGLE_RANGE,
                 expand_ratio: float = DISPLAY_EXPAND_RATIO):
        self.min_area_ratio = min_area_ratio
        self.live_thresholds = tuple(live_thresholds)
        self.offline_thresholds = tuple(offline_thresholds(offline_threshold_count))
        self.right_angle_range = right_angle_range
        self.expand_ratio = expand_ratio
        self.stage_counts: Counter = Counter()

    def detect(self, prob_map: ProbabilityMap, live: bool = True) -> DetectionResult:
        """
        Detect the document quad in a probability map.

        Args:
            prob_map: Segmentation output
            live: Use the cheap live threshold set and skip the
                minimum-area-rectangle fallback

        Returns:
            DetectionResult in model space. detected=False when no stage
            produced a qualifying quad.
        """
        start = time.perf_counter()
        size = prob_map.size
        confidence = prob_map.confidence()

        points, stage = self._find_quad(prob_map, live)
        elapsed_ms = (time.perf_counter() - start) * 1000

        if points is None:
            logger.debug(f"No quad found ({elapsed_ms:.1f}ms)")
            return DetectionResult.not_detected(size, confidence, elapsed_ms)

        width, height = size
        quad = Quad.from_points(geometry.clamp_points(points, width, height),
                                CoordinateSpace.MODEL, size)
        display = quad.expanded(self.expand_ratio)

        logger.debug(f"Quad found by {stage} stage: area={quad.area:.0f}, "
                     f"confidence={confidence:.2f} ({elapsed_ms:.1f}ms)")
        return DetectionResult(
            detected=True,
            quad=quad,
            display_quad=display,
            confidence=confidence,
            rotation_angle=display.rotation_angle,
            source_size=size,
            stage=stage,
            processing_time_ms=elapsed_ms,
        )

    def reset_counters(self) -> None:
        self.stage_counts.clear()

    def _find_quad(self, prob_map: ProbabilityMap,
                   live: bool) -> Tuple[Optional[np.ndarray], Optional[str]]:
        width, height = prob_map.size
        min_area = self.min_area_ratio * prob_map.area

        _, mask = cv2.threshold(prob_map.to_uint8(), int(BINARY_THRESHOLD * 255), 255, cv2.THRESH_BINARY)
        mask = refine_mask(mask)

        self.stage_counts[STAGE_CONTOUR] += 1
        largest = self._largest_approx_contour(mask)
        if largest is not None and len(largest) == 4 \
                and cv2.contourArea(largest) >= min_area \
                and not geometry.is_self_intersecting(geometry.sort_corners(largest)):
            return geometry.as_points(largest), STAGE_CONTOUR

        self.stage_counts[STAGE_THRESHOLD_SWEEP] += 1
        swept = self._threshold_sweep(prob_map, live, min_area)
        if swept is not None:
            return swept, STAGE_THRESHOLD_SWEEP

        if largest is not None and len(largest) > 4:
            self.stage_counts[STAGE_RIGHT_ANGLE] += 1
            completed = self._complete_right_angles(geometry.as_points(largest), width, height, min_area)
            if completed is not None:
                return completed, STAGE_RIGHT_ANGLE

        if not live:
            self.stage_counts[STAGE_MIN_AREA_RECT] += 1
            box = self._min_area_rect(mask, min_area)
            if box is not None:
                return box, STAGE_MIN_AREA_RECT

        return None, None

    @staticmethod
    def _largest_approx_contour(mask: np.ndarray) -> Optional[np.ndarray]:
        """Blur, Canny and keep the polygon approximation with the largest area."""
        blurred = cv2.GaussianBlur(mask, (BLUR_KERNEL_SIZE, BLUR_KERNEL_SIZE), 0)
        edges = cv2.Canny(blurred, CANNY_LOW, CANNY_HIGH)
        contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)

        best = None
        best_area = 0.0
        for contour in contours:
            approx = approximate(contour)
            area = cv2.contourArea(approx)
            if area > best_area:
                best_area = area
                best = approx
        return best

    def _threshold_sweep(self, prob_map: ProbabilityMap, live: bool,
                         min_area: float) -> Optional[np.ndarray]:
        smoothed = cv2.GaussianBlur(prob_map.to_uint8(), (BLUR_KERNEL_SIZE, BLUR_KERNEL_SIZE), 0)
        kernel = _kernel()

        masks = []
        _, otsu = cv2.threshold(smoothed, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        masks.append(("otsu", otsu))
        levels = self.live_thresholds if live else self.offline_thresholds
        for level in levels:
            _, binary = cv2.threshold(smoothed, int(round(level * 255)), 255, cv2.THRESH_BINARY)
            masks.append((f"{level:.2f}", binary))

        best_quad = None
        best_score = 0.0
        for label, binary in masks:
            binary = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)
            quad = self._quad_from_binary(binary, min_area)
            if quad is None:
                continue
            score = self._score_quad(quad, prob_map)
            logger.debug(f"Threshold {label}: score={score:.3f}")
            if score > best_score:
                best_score = score
                best_quad = quad
        return best_quad

    @staticmethod
    def _quad_from_binary(binary: np.ndarray, min_area: float) -> Optional[np.ndarray]:
        """Largest exactly-4-vertex contour above the area floor."""
        contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        best = None
        best_area = min_area
        for contour in contours:
            if cv2.contourArea(contour) < min_area:
                continue
            approx = approximate(contour)
            if len(approx) != 4:
                continue
            area = cv2.contourArea(approx)
            if area >= best_area:
                best_area = area
                best = geometry.as_points(approx)
        return best

    @staticmethod
    def _score_quad(points: np.ndarray, prob_map: ProbabilityMap) -> float:
        """meanProbabilityInsideQuad * (0.7 + 0.3 * areaRatio)"""
        inside = np.zeros((prob_map.height, prob_map.width), dtype=np.uint8)
        cv2.fillPoly(inside, [geometry.to_contour(geometry.sort_corners(points))], 255)
        mean_prob = cv2.mean(np.array(prob_map.values), mask=inside)[0]
        area_ratio = abs(geometry.polygon_area(geometry.sort_corners(points))) / prob_map.area
        return mean_prob * ((1.0 - SCORE_AREA_WEIGHT) + SCORE_AREA_WEIGHT * area_ratio)

    def _complete_right_angles(self, vertices: np.ndarray, width: int, height: int,
                               min_area: float) -> Optional[np.ndarray]:
        """
        Build a quad from 3 consecutive near-right corners of a polygon.

        The 4th corner is where the edge entering the first corner meets
        the edge leaving the third. Among valid candidates the one whose
        angles deviate least from 90 degrees wins.
        """
        n = len(vertices)
        angles = geometry.interior_angles(vertices)
        reflex = geometry.reflex_vertices(vertices)
        low, high = self.right_angle_range

        best = None
        best_deviation = float("inf")
        for i in range(n):
            triple = [(i + k) % n for k in range(3)]
            if any(reflex[j] or not low <= angles[j] <= high for j in triple):
                continue

            a = vertices[i]
            b = vertices[(i + 1) % n]
            c = vertices[(i + 2) % n]
            fourth = geometry.line_intersection(vertices[(i - 1) % n], a, c, vertices[(i + 3) % n])
            if fourth is None:
                continue

            candidate = np.array([a, b, c, fourth])
            if not geometry.within_bounds(candidate, width, height, BOUNDS_TOLERANCE_PX):
                continue
            if not geometry.is_convex(candidate):
                continue
            if abs(geometry.polygon_area(candidate)) < min_area:
                continue

            deviation = sum(abs(angle - 90.0) for angle in geometry.interior_angles(candidate))
            if deviation < best_deviation:
                best_deviation = deviation
                best = candidate

        if best is not None:
            logger.debug(f"Right-angle completion: deviation={best_deviation:.1f}")
        return best

    @staticmethod
    def _min_area_rect(mask: np.ndarray, min_area: float) -> Optional[np.ndarray]:
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        if not contours:
            return None
        largest = max(contours, key=cv2.contourArea)
        box = cv2.boxPoints(cv2.minAreaRect(largest))
        if abs(geometry.polygon_area(box)) < min_area:
            return None
        return geometry.as_points(box)
