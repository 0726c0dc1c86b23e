"""
Template Matcher

Descriptor matching, RANSAC homography, confidence scoring and geometric
plausibility checks between a frame's features and stored templates.
Every expected failure comes back as a MatchOutcome; only a corrupted
feature blob raises (FeatureStoreError).
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .. import geometry
from ..templates.models import Template
from .feature_store import TemplateFeatureStore
from .features import FeatureSet
from .projector import RegionProjector, invert_homography
from .result import MatchError, MatchOutcome
from .strategy import Coarse, LabelDetectionRectified, MatchStrategy

logger = logging.getLogger(__name__)


# Descriptor filtering
LOWE_RATIO = 0.8
MAX_DESCRIPTOR_DISTANCE = 250.0
MIN_MATCH_COUNT = 3

# Confidence
MIN_CONFIDENCE = 0.3
MATCH_COUNT_SATURATION = 12
INLIER_RATIO_SATURATION = 0.4
LOW_INLIER_RATIO = 0.2

# Template feature cache
FEATURE_CACHE_SIZE = 10


def compute_confidence(match_count: int, inlier_ratio: float, avg_distance: float) -> float:
    """
    Combine match statistics into a confidence in [0, 1].

    0.3 * min(n/12, 1) + 0.5 * min(ir/0.4, 1) + 0.2 * max(0, 1 - d/250) + base,
    where base rewards strong matches, halved when fewer than 20% of the
    matches are inliers.
    """
    match_score = min(match_count / float(MATCH_COUNT_SATURATION), 1.0)
    inlier_score = min(inlier_ratio / INLIER_RATIO_SATURATION, 1.0)
    distance_score = max(0.0, 1.0 - avg_distance / MAX_DESCRIPTOR_DISTANCE)

    if match_count >= 15 and inlier_ratio >= 0.5:
        base = 0.2
    elif match_count >= 8 and inlier_ratio >= 0.3:
        base = 0.1
    else:
        base = 0.0

    confidence = 0.3 * match_score + 0.5 * inlier_score + 0.2 * distance_score + base
    if inlier_ratio < LOW_INLIER_RATIO:
        confidence *= 0.5
    return max(0.0, min(confidence, 1.0))


def validate_template_quad(corners: np.ndarray, frame_size: Tuple[int, int],
                           template_aspect: float, params: Coarse) -> Optional[str]:
    """
    Plausibility checks on the template outline as seen in the frame.

    Returns:
        Rejection reason, or None if the quad is plausible
    """
    if corners is None or len(corners) != 4 or not np.all(np.isfinite(corners)):
        return "invalid corners"

    frame_area = float(frame_size[0] * frame_size[1])
    area_ratio = abs(geometry.polygon_area(corners)) / frame_area if frame_area > 0 else 0.0
    if area_ratio < params.min_area_ratio or area_ratio > params.max_area_ratio:
        return f"area ratio {area_ratio:.3f} out of range"

    bounds = geometry.bounds_from_corners(corners)
    if bounds.height <= 0 or bounds.width <= 0:
        return "empty bounds"
    if template_aspect > 0:
        deviation = abs(bounds.width / bounds.height - template_aspect) / template_aspect
        if deviation > params.max_aspect_deviation:
            return f"aspect deviation {deviation:.2f}"

    if not geometry.is_convex(corners):
        return "not convex"

    for angle in geometry.interior_angles(corners):
        if angle < params.min_angle or angle > params.max_angle:
            return f"interior angle {angle:.1f} out of range"

    sides = geometry.side_lengths(corners)
    shortest = min(sides)
    if shortest <= 0 or max(sides) / shortest > params.max_side_ratio:
        return "side ratio too large"

    return None


def _frame_size_problem(frame_size: Optional[Tuple[int, int]], feature_scale: float) -> Optional[str]:
    if frame_size is None or len(frame_size) != 2 or min(frame_size) <= 0:
        return f"Unknown frame size: {frame_size}"
    if feature_scale <= 0:
        return f"Invalid feature scale: {feature_scale}"
    return None


def estimate_homography(src_points: np.ndarray, dst_points: np.ndarray,
                        threshold: float) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    """
    RANSAC homography mapping src_points onto dst_points.

    Returns:
        (homography, inlier_mask), or (None, None) if there are fewer than
        4 point pairs or OpenCV finds no model
    """
    if len(src_points) < 4:
        return None, None
    try:
        homography, mask = cv2.findHomography(src_points, dst_points, cv2.RANSAC, threshold)
    except cv2.error as e:
        logger.debug(f"findHomography failed: {e}")
        return None, None
    if homography is None or mask is None:
        return None, None
    return homography, mask


class TemplateMatcher:
    """
    Matches frame features against template features.

    Template feature sets are loaded through the feature store and kept
    in a small LRU cache keyed by template id.

    Example:
        matcher = TemplateMatcher()
        with extractor.extract(frame) as frame_features:
            outcome = matcher.match_best(frame_features, templates)
    """

    def __init__(self, store: Optional[TemplateFeatureStore] = None,
                 projector: Optional[RegionProjector] = None,
                 cache_size: int = FEATURE_CACHE_SIZE):
        self.store = store or TemplateFeatureStore()
        self.projector = projector or RegionProjector()
        self._bf = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
        self._cache: "OrderedDict[int, FeatureSet]" = OrderedDict()
        self._cache_size = cache_size
        self._cache_lock = threading.Lock()

    def match(self, frame_features: Optional[FeatureSet], template: Template,
              strategy: Optional[MatchStrategy] = None,
              frame_size: Optional[Tuple[int, int]] = None,
              feature_scale: float = 1.0) -> MatchOutcome:
        """
        Match one template.

        Args:
            frame_features: Features of the frame (not consumed)
            template: Candidate template
            strategy: Coarse (default) or LabelDetectionRectified
            frame_size: (width, height) results are expressed in; defaults
                to frame_features.image_size
            feature_scale: Size of the feature image relative to frame_size,
                e.g. 0.5 when features come from a half-size copy

        Returns:
            MatchOutcome; success=False with an error kind on rejection

        Raises:
            FeatureStoreError: If the template's persisted features are corrupted
        """
        strategy = strategy or Coarse()
        start = time.perf_counter()

        if frame_features is None or not frame_features.is_valid:
            return MatchOutcome.failure(MatchError.INVALID_INPUT, "Frame has no features")
        if template is None or not template.is_valid():
            return MatchOutcome.failure(MatchError.INVALID_INPUT, "Invalid template")

        frame_size = frame_size or frame_features.image_size
        problem = _frame_size_problem(frame_size, feature_scale)
        if problem is not None:
            return MatchOutcome.failure(MatchError.INVALID_INPUT, problem)

        template_features = self._template_features(template)
        if template_features is None:
            return MatchOutcome.failure(MatchError.FEATURES_UNAVAILABLE,
                                        f"Features unavailable for template {template.name}")

        outcome = self._perform_matching(frame_features, template_features, template, strategy,
                                         tuple(frame_size), feature_scale)
        outcome.match_time_ms = (time.perf_counter() - start) * 1000

        if outcome.success:
            logger.info(f"Matched template {outcome.summary()}")
        else:
            logger.debug(f"Template {template.name} rejected: {outcome.error_message}")
        return outcome

    def match_best(self, frame_features: Optional[FeatureSet], templates: Sequence[Template],
                   strategy: Optional[MatchStrategy] = None,
                   frame_size: Optional[Tuple[int, int]] = None,
                   feature_scale: float = 1.0) -> MatchOutcome:
        """
        Match every enabled template and keep the most confident success.

        frame_size and feature_scale are passed through to match().

        Returns:
            The best successful outcome, or MatchOutcome.no_match()
        """
        if not templates:
            return MatchOutcome.failure(MatchError.INVALID_INPUT, "No templates provided")
        if frame_features is not None and frame_features.is_valid:
            problem = _frame_size_problem(frame_size or frame_features.image_size, feature_scale)
            if problem is not None:
                return MatchOutcome.failure(MatchError.INVALID_INPUT, problem)

        start = time.perf_counter()
        best: Optional[MatchOutcome] = None
        for template in templates:
            if not template.enabled or not template.is_valid():
                continue

            outcome = self.match(frame_features, template, strategy, frame_size, feature_scale)
            if not outcome.success:
                outcome.release()
                continue

            if best is None or outcome.confidence > best.confidence:
                if best is not None:
                    best.release()
                best = outcome
            else:
                outcome.release()

        elapsed_ms = (time.perf_counter() - start) * 1000
        if best is None:
            logger.debug(f"No template matched ({len(templates)} candidates, {elapsed_ms:.1f}ms)")
            return MatchOutcome.no_match()

        best.match_time_ms = elapsed_ms
        return best

    def invalidate(self, template_id: Optional[int] = None) -> None:
        """Drop one cached feature set, or all of them."""
        with self._cache_lock:
            if template_id is None:
                self._cache.clear()
            else:
                self._cache.pop(template_id, None)

    def _template_features(self, template: Template) -> Optional[FeatureSet]:
        with self._cache_lock:
            cached = self._cache.get(template.id)
            if cached is not None:
                self._cache.move_to_end(template.id)
                return cached

        if not template.feature_ref.exists():
            logger.warning(f"Feature files missing for template {template.name}")
            return None

        features = self.store.load(template.feature_ref)
        if not features.is_valid:
            return None

        with self._cache_lock:
            self._cache[template.id] = features
            self._cache.move_to_end(template.id)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return features

    def _good_matches(self, frame_features: FeatureSet,
                      template_features: FeatureSet) -> List[cv2.DMatch]:
        """k=2 matches that pass the ratio test and the distance cutoff."""
        pairs = self._bf.knnMatch(frame_features.descriptors, template_features.descriptors, k=2)
        good = []
        for pair in pairs:
            if len(pair) < 2:
                continue
            best, second = pair
            if best.distance < LOWE_RATIO * second.distance and best.distance < MAX_DESCRIPTOR_DISTANCE:
                good.append(best)
        return good

    def _perform_matching(self, frame_features: FeatureSet, template_features: FeatureSet,
                          template: Template, strategy: MatchStrategy,
                          frame_size: Tuple[int, int], feature_scale: float) -> MatchOutcome:
        good = self._good_matches(frame_features, template_features)
        match_count = len(good)
        if match_count < MIN_MATCH_COUNT:
            return MatchOutcome.failure(
                MatchError.INSUFFICIENT_MATCHES,
                f"Insufficient matches: {match_count} < {MIN_MATCH_COUNT}",
                template=template, match_count=match_count,
            )

        avg_distance = float(np.mean([m.distance for m in good]))

        if isinstance(strategy, LabelDetectionRectified):
            homography = None
            inlier_ratio = strategy.assumed_inlier_ratio
        else:
            frame_pts = frame_features.points()[[m.queryIdx for m in good]]
            template_pts = template_features.points()[[m.trainIdx for m in good]]
            homography, mask = estimate_homography(frame_pts, template_pts, strategy.ransac_threshold)
            if homography is None:
                return MatchOutcome.failure(
                    MatchError.HOMOGRAPHY_FAILED, "Homography estimation failed",
                    template=template, match_count=match_count, avg_distance=avg_distance,
                )
            inlier_ratio = int(mask.sum()) / float(match_count)
            if feature_scale != 1.0:
                # frame -> feature image -> template
                homography = homography @ geometry.scale_matrix(feature_scale, feature_scale)

        confidence = compute_confidence(match_count, inlier_ratio, avg_distance)
        metrics = dict(template=template, confidence=confidence, inlier_ratio=inlier_ratio,
                       match_count=match_count, avg_distance=avg_distance)
        if confidence < MIN_CONFIDENCE:
            return MatchOutcome.failure(
                MatchError.LOW_CONFIDENCE,
                f"Low confidence: {confidence:.3f} < {MIN_CONFIDENCE}",
                **metrics,
            )

        template_corners, reason = self._resolve_geometry(homography, template, frame_size, strategy)
        if reason is not None:
            return MatchOutcome.failure(MatchError.IMPLAUSIBLE_GEOMETRY,
                                        f"Implausible template geometry: {reason}", **metrics)

        regions = self.projector.project(template.regions, homography, frame_size)
        if template.enabled_regions() and not regions:
            return MatchOutcome.failure(MatchError.NO_VALID_REGIONS,
                                        "No valid regions after transformation", **metrics)

        return MatchOutcome(
            success=True,
            homography=homography,
            transformed_regions=regions,
            template_corners=template_corners,
            **metrics,
        )

    @staticmethod
    def _resolve_geometry(homography: Optional[np.ndarray], template: Template,
                          frame_size: Tuple[int, int],
                          strategy: MatchStrategy) -> Tuple[Optional[np.ndarray], Optional[str]]:
        """Template outline in frame space, plus a rejection reason if implausible."""
        if isinstance(strategy, LabelDetectionRectified):
            width, height = frame_size
            return np.array([[0, 0], [width, 0], [width, height], [0, height]], dtype=np.float64), None

        inverse = invert_homography(homography)
        if inverse is None:
            return None, "singular homography"

        outline = np.array([
            [0, 0],
            [template.reference_width, 0],
            [template.reference_width, template.reference_height],
            [0, template.reference_height],
        ], dtype=np.float64)
        corners = geometry.perspective_transform(outline, inverse)
        return corners, validate_template_quad(corners, frame_size, template.aspect_ratio, strategy)
