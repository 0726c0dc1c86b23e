"""
Test script for document quad detection

Tests:
1. Clean rectangle found by the first (contour) stage
2. Faint rectangle falls through to the threshold sweep
3. Cut-corner polygon completed by the right-angle stage
4. Minimum-area rectangle only runs offline
5. Empty map is not detected
6. LabelDetector scales into image space and rectifies

Usage:
    python test_quad_detector.py
"""

import sys
from pathlib import Path

import cv2
import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from labelscan import geometry
from labelscan.detection import (
    CoordinateSpace,
    DocumentQuadDetector,
    LabelDetector,
    ProbabilityMap,
    SegmentationModel,
)
from labelscan.detection.quad_detector import (
    STAGE_CONTOUR,
    STAGE_MIN_AREA_RECT,
    STAGE_RIGHT_ANGLE,
    STAGE_THRESHOLD_SWEEP,
)

from synthetic import rect_probability_map

MAP_SIZE = (256, 256)


def _assert_corners_near(actual, expected, tolerance):
    error = np.abs(np.asarray(actual) - np.asarray(expected, dtype=np.float64)).max()
    assert error <= tolerance, f"corner error {error:.1f}px > {tolerance}px: {np.asarray(actual).tolist()}"


def test_clean_rectangle():
    """A crisp rectangle never reaches the fallback stages."""
    print("\n" + "="*60)
    print("TEST: Clean Rectangle")
    print("="*60)

    detector = DocumentQuadDetector()
    prob_map = ProbabilityMap(rect_probability_map(MAP_SIZE, (60, 50, 200, 180)))
    result = detector.detect(prob_map)

    print(f"  Stage: {result.stage}, confidence: {result.confidence:.2f}")
    print(f"  Quad: {result.quad.points.tolist()}")

    assert result.detected
    assert result.stage == STAGE_CONTOUR
    assert result.quad.space is CoordinateSpace.MODEL
    assert abs(result.confidence - 0.95) < 1e-3
    _assert_corners_near(result.quad.points, [[60, 50], [200, 50], [200, 180], [60, 180]], 4.0)
    assert not geometry.is_self_intersecting(result.quad.points)

    assert detector.stage_counts[STAGE_THRESHOLD_SWEEP] == 0
    assert detector.stage_counts[STAGE_RIGHT_ANGLE] == 0
    assert detector.stage_counts[STAGE_MIN_AREA_RECT] == 0

    # Display quad is the 5% expansion of the crop quad
    assert result.display_quad.area > result.quad.area
    print("  [PASS] Clean rectangle")


def test_threshold_sweep_fallback():
    """Probabilities below 0.5 are only picked up by the sweep."""
    print("\n" + "="*60)
    print("TEST: Threshold Sweep Fallback")
    print("="*60)

    detector = DocumentQuadDetector()
    prob_map = ProbabilityMap(rect_probability_map(MAP_SIZE, (40, 60, 210, 190), value=0.4))
    result = detector.detect(prob_map)

    print(f"  Stage: {result.stage}, counts: {dict(detector.stage_counts)}")
    assert result.detected
    assert result.stage == STAGE_THRESHOLD_SWEEP
    assert result.confidence == 0.0
    _assert_corners_near(result.quad.points, [[40, 60], [210, 60], [210, 190], [40, 190]], 4.0)
    assert detector.stage_counts[STAGE_CONTOUR] == 1
    assert detector.stage_counts[STAGE_THRESHOLD_SWEEP] == 1
    assert detector.stage_counts[STAGE_RIGHT_ANGLE] == 0
    print("  [PASS] Threshold sweep fallback")


def test_right_angle_completion():
    """Three right-angle corners of a pentagon imply the fourth."""
    print("\n" + "="*60)
    print("TEST: Right-Angle Completion")
    print("="*60)

    detector = DocumentQuadDetector()

    vertices = np.array([[10, 10], [90, 10], [90, 70], [70, 90], [10, 90]], dtype=np.float64)
    completed = detector._complete_right_angles(vertices, 100, 100, min_area=200)
    assert completed is not None
    _assert_corners_near(geometry.sort_corners(completed), [[10, 10], [90, 10], [90, 90], [10, 90]], 1e-6)
    print(f"  Completed: {geometry.sort_corners(completed).tolist()}")

    # Same shape end to end: a rectangle with its bottom-right corner cut off
    probs = np.zeros((MAP_SIZE[1], MAP_SIZE[0]), dtype=np.float32)
    pentagon = np.array([[40, 40], [216, 40], [216, 160], [160, 216], [40, 216]], dtype=np.int32)
    cv2.fillPoly(probs, [pentagon.reshape(-1, 1, 2)], 0.95)

    detector.reset_counters()
    result = detector.detect(ProbabilityMap(probs))
    print(f"  Stage: {result.stage}, quad: {result.quad.points.tolist() if result.quad else None}")

    assert result.detected
    assert result.stage == STAGE_RIGHT_ANGLE
    _assert_corners_near(result.quad.points, [[40, 40], [216, 40], [216, 216], [40, 216]], 4.0)
    print("  [PASS] Right-angle completion")


def test_right_angle_skips_reflex_corners():
    """A 270 degree corner never counts as one of the three right angles."""
    detector = DocumentQuadDetector()

    # Only B, C, D read as 90 degrees, and D is a reflex corner
    notched = np.array([[0, 0], [100, 0], [100, 60], [60, 60], [60, 80]], dtype=np.float64)
    assert geometry.reflex_vertices(notched) == [False, False, False, True, False]
    assert detector._complete_right_angles(notched, 200, 200, min_area=0.0) is None

    # Orientation does not matter
    reversed_notched = notched[::-1].copy()
    assert geometry.reflex_vertices(reversed_notched) == [False, True, False, False, False]
    assert detector._complete_right_angles(reversed_notched, 200, 200, min_area=0.0) is None
    print("  [PASS] Reflex corners skipped")


def test_min_area_rect_offline_only():
    """A disk has no quad; only offline mode falls back to minAreaRect."""
    print("\n" + "="*60)
    print("TEST: Minimum-Area Rectangle (offline only)")
    print("="*60)

    probs = np.zeros((MAP_SIZE[1], MAP_SIZE[0]), dtype=np.float32)
    cv2.circle(probs, (128, 128), 70, 0.95, -1)
    prob_map = ProbabilityMap(probs)

    detector = DocumentQuadDetector()
    live = detector.detect(prob_map, live=True)
    assert detector.stage_counts[STAGE_MIN_AREA_RECT] == 0
    assert live.stage != STAGE_MIN_AREA_RECT

    offline = detector.detect(prob_map, live=False)
    print(f"  Live: {live.stage}, offline: {offline.stage}")
    assert offline.detected
    assert offline.quad.area > 0.02 * prob_map.area
    print("  [PASS] Minimum-area rectangle")


def test_empty_map():
    """No document: detected=False with no quad."""
    detector = DocumentQuadDetector()
    prob_map = ProbabilityMap(np.zeros((128, 128), dtype=np.float32))

    result = detector.detect(prob_map)
    assert not result.detected
    assert result.quad is None
    assert not result.has_valid_corners()
    assert result.bounding_box is None

    result = detector.detect(prob_map, live=False)
    assert not result.detected
    assert detector.stage_counts[STAGE_MIN_AREA_RECT] == 1
    print("  [PASS] Empty map")


def test_probability_map_contract():
    """Values are clipped and read-only; 3D singleton channel is squeezed."""
    prob_map = ProbabilityMap(np.array([[-0.5, 0.2], [0.8, 1.7]], dtype=np.float32).reshape(2, 2, 1))
    assert prob_map.size == (2, 2)
    assert prob_map.values.min() == 0.0 and prob_map.values.max() == 1.0
    assert not prob_map.values.flags.writeable
    assert abs(prob_map.confidence() - 0.9) < 1e-6

    try:
        ProbabilityMap(np.zeros((2, 2, 3)))
        raise AssertionError("3-channel map should be rejected")
    except ValueError:
        pass
    print("  [PASS] Probability map contract")


class FixedSegmentationModel(SegmentationModel):
    """Returns the same probability map for every image."""

    def __init__(self, probs: np.ndarray):
        self.prob_map = ProbabilityMap(probs)

    @property
    def output_size(self):
        return self.prob_map.size

    def infer(self, image) -> ProbabilityMap:
        return self.prob_map


def test_label_detector_image_space():
    """Model-space quads are scaled to the image and rectified."""
    print("\n" + "="*60)
    print("TEST: LabelDetector")
    print("="*60)

    model = FixedSegmentationModel(rect_probability_map((128, 128), (32, 32, 96, 80)))
    detector = LabelDetector(model)

    image = np.full((600, 800, 3), 50, dtype=np.uint8)
    result = detector.detect(image)
    print(f"  Image quad: {result.quad.points.tolist()}")

    assert result.detected
    assert result.source_size == (800, 600)
    assert result.quad.space is CoordinateSpace.IMAGE
    assert result.display_quad.space is CoordinateSpace.IMAGE
    # One model pixel is 6.25px wide and 4.7px tall in the image
    _assert_corners_near(result.quad.points, [[200, 150], [600, 150], [600, 375], [200, 375]], 15.0)

    label = LabelDetector.extract_and_correct(image, result)
    assert label is not None
    height, width = label.shape[:2]
    print(f"  Rectified: {width}x{height}")
    assert abs(width - 400) <= 15 and abs(height - 225) <= 15

    missing = detector.detect(np.zeros((0, 0, 3), dtype=np.uint8))
    assert not missing.detected
    assert LabelDetector.extract_and_correct(image, missing) is None
    print("  [PASS] LabelDetector")


def main():
    """Run all tests."""
    print("\n" + "#"*60)
    print("# QUAD DETECTOR TESTS")
    print("#"*60)

    tests = [
        ("Clean Rectangle", test_clean_rectangle),
        ("Threshold Sweep", test_threshold_sweep_fallback),
        ("Right-Angle Completion", test_right_angle_completion),
        ("Reflex Corners", test_right_angle_skips_reflex_corners),
        ("Min-Area Rectangle", test_min_area_rect_offline_only),
        ("Empty Map", test_empty_map),
        ("Probability Map", test_probability_map_contract),
        ("LabelDetector", test_label_detector_image_space),
    ]

    results = []
    for name, test in tests:
        try:
            test()
            results.append((name, True))
        except AssertionError as e:
            print(f"  [FAIL] {name}: {e}")
            results.append((name, False))

    print("\n" + "="*60)
    print("SUMMARY")
    print("="*60)
    for name, passed in results:
        print(f"  {name}: [{'PASS' if passed else 'FAIL'}]")

    all_passed = all(passed for _, passed in results)
    print("\nAll tests PASSED!" if all_passed else "\nSome tests FAILED!")
    return 0 if all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
