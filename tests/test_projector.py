"""
Test script for region projection

Tests:
1. Size boundary (10px exclusive)
2. Invalid regions are dropped without aborting the batch
3. Projection goes through the inverse of the frame->template homography
4. Degenerate and non-finite projections are rejected

Usage:
    python test_projector.py
"""

import sys
from pathlib import Path

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from labelscan import geometry
from labelscan.geometry import Rect
from labelscan.matching import RegionProjector, validate_region
from labelscan.matching.projector import invert_homography
from labelscan.templates import RegionType, TemplateRegion

from synthetic import similarity

FRAME = (800, 600)


def _region(region_id, name, rect, **kwargs):
    return TemplateRegion(region_id, name, RegionType.TEXT, rect, **kwargs)


def _check(rect: Rect):
    return validate_region(rect, rect.corners(), FRAME)


def test_size_boundary():
    """5x5 is rejected, just over 10x10 is accepted, exactly 10 is rejected."""
    print("\n" + "="*60)
    print("TEST: Size Boundary")
    print("="*60)

    assert _check(Rect(0, 0, 5, 5)) is not None
    assert _check(Rect(0, 0, 10, 40)) is not None
    assert _check(Rect(0, 0, 10.01, 10.01)) is None
    print(f"  5x5: {_check(Rect(0, 0, 5, 5))}")
    print("  [PASS] Size boundary")


def test_validation_limits():
    """Oversized, extreme-aspect and non-finite regions are rejected."""
    print("\n" + "="*60)
    print("TEST: Validation Limits")
    print("="*60)

    cases = {
        "too large": Rect(0, 0, 4100, 100),
        "extreme aspect": Rect(0, 0, 600, 11),
        "non-finite": Rect(0, 0, float("inf"), 50),
    }
    for label, rect in cases.items():
        reason = validate_region(rect, rect.corners(), FRAME)
        print(f"  {label}: {reason}")
        assert reason is not None, label

    # Spread bounds but collapsed corners
    sliver = np.array([[0, 0], [100, 100], [100.5, 100.5], [0.5, 0.5]])
    assert validate_region(Rect(0, 0, 100.5, 100.5), sliver, FRAME) is not None
    print("  [PASS] Validation limits")


def test_soft_failure_batch():
    """Three regions with one invalid give back two, in sort order."""
    print("\n" + "="*60)
    print("TEST: Soft-Failure Batch")
    print("="*60)

    regions = [
        _region(1, "date", Rect(100, 100, 300, 140), sort_order=2),
        _region(2, "speck", Rect(10, 10, 15, 15), sort_order=0),
        _region(3, "lot", Rect(100, 200, 300, 240), sort_order=1),
    ]
    projected = RegionProjector().project(regions, None, FRAME)

    names = [r.name for r in projected]
    print(f"  Kept: {names}")
    assert names == ["lot", "date"]
    assert projected[0].bounds == Rect(100, 200, 300, 240)
    assert projected[0].recognized_content is None
    print("  [PASS] Soft-failure batch")


def test_inverse_projection():
    """Regions map template->frame with H^-1 when H is frame->template."""
    print("\n" + "="*60)
    print("TEST: Inverse Projection")
    print("="*60)

    template_to_frame = similarity(10.0, 1.5, 120.0, 80.0)
    frame_to_template = np.linalg.inv(template_to_frame)

    region = _region(1, "lot", Rect(20, 30, 220, 90))
    projected = RegionProjector().project([region], frame_to_template, FRAME)
    assert len(projected) == 1

    expected = geometry.perspective_transform(region.corners(), template_to_frame)
    error = np.abs(projected[0].corners - expected).max()
    print(f"  Corner error: {error:.2e}px")
    assert error < 1e-6
    assert projected[0].bounds == geometry.bounds_from_corners(projected[0].corners)
    print("  [PASS] Inverse projection")


def test_singular_homography():
    """A singular homography projects nothing."""
    singular = np.zeros((3, 3))
    assert invert_homography(singular) is None
    region = _region(1, "lot", Rect(20, 30, 220, 90))
    assert RegionProjector().project([region], singular, FRAME) == []
    print("  [PASS] Singular homography")


def main():
    """Run all tests."""
    print("\n" + "#"*60)
    print("# PROJECTOR TESTS")
    print("#"*60)

    tests = [
        ("Size Boundary", test_size_boundary),
        ("Validation Limits", test_validation_limits),
        ("Soft-Failure Batch", test_soft_failure_batch),
        ("Inverse Projection", test_inverse_projection),
        ("Singular Homography", test_singular_homography),
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
