"""
Test script for geometry utilities

Tests:
1. Corner ordering (canonical order, idempotence, no self-intersection)
2. Homography round trip
3. Convexity, angles and line intersection
4. Quad expansion and coordinate spaces

Usage:
    python test_geometry.py
"""

import sys
from pathlib import Path

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from labelscan import geometry
from labelscan.detection import CoordinateSpace, Quad
from labelscan.geometry import Rect

from synthetic import similarity


def test_corner_ordering():
    """Shuffled rectangle corners sort to TL, TR, BR, BL."""
    print("\n" + "="*60)
    print("TEST: Corner Ordering")
    print("="*60)

    shuffled = np.array([[200, 180], [40, 30], [40, 180], [200, 30]], dtype=np.float64)
    ordered = geometry.sort_corners(shuffled)
    print(f"  Ordered: {ordered.tolist()}")

    assert ordered.tolist() == [[40, 30], [200, 30], [200, 180], [40, 180]]
    assert np.array_equal(geometry.sort_corners(ordered), ordered)
    print("  [PASS] Corner ordering")


def test_corner_ordering_random_quads():
    """Sorting random convex-ish quads is idempotent and never self-intersects."""
    print("\n" + "="*60)
    print("TEST: Corner Ordering (random quads)")
    print("="*60)

    rng = np.random.default_rng(3)
    for _ in range(200):
        # Jitter the corners of a random rectangle, then shuffle them
        left, top = rng.uniform(0, 200, 2)
        width, height = rng.uniform(40, 300, 2)
        base = Rect(left, top, left + width, top + height).corners()
        jitter = rng.uniform(-0.2, 0.2, (4, 2)) * np.array([width, height])
        points = (base + jitter)[rng.permutation(4)]

        once = geometry.sort_corners(points)
        twice = geometry.sort_corners(once)
        assert np.array_equal(once, twice)
        assert not geometry.is_self_intersecting(once)

    print("  200 quads checked")
    print("  [PASS] Random corner ordering")


def test_self_intersection():
    """A bow-tie order is detected as self-intersecting."""
    bowtie = np.array([[0, 0], [100, 100], [100, 0], [0, 100]], dtype=np.float64)
    assert geometry.is_self_intersecting(bowtie)
    assert not geometry.is_self_intersecting(geometry.sort_corners(bowtie))
    print("  [PASS] Self intersection")


def test_homography_round_trip():
    """H then H^-1 returns the original points within 1e-3 px."""
    print("\n" + "="*60)
    print("TEST: Homography Round Trip")
    print("="*60)

    h = similarity(12.0, 1.3, 40.0, -25.0)
    h[2, 0] = 1e-4  # Add perspective
    h[2, 1] = -2e-4

    rng = np.random.default_rng(5)
    points = rng.uniform(0, 500, (50, 2))
    forward = geometry.perspective_transform(points, h)
    back = geometry.perspective_transform(forward, np.linalg.inv(h))

    error = np.abs(back - points).max()
    print(f"  Max round-trip error: {error:.2e}px")
    assert error < 1e-3
    print("  [PASS] Homography round trip")


def test_convexity_and_angles():
    """Convexity test, interior angles and the signed area."""
    print("\n" + "="*60)
    print("TEST: Convexity and Angles")
    print("="*60)

    square = Rect(0, 0, 100, 100).corners()
    assert geometry.is_convex(square)
    assert geometry.interior_angles(square) == [90.0, 90.0, 90.0, 90.0]
    assert geometry.polygon_area(square) == 10000.0

    dart = np.array([[0, 0], [100, 0], [30, 30], [0, 100]], dtype=np.float64)
    assert not geometry.is_convex(dart)

    # Straight vertex is skipped, still convex
    with_collinear = np.array([[0, 0], [50, 0], [100, 0], [100, 100], [0, 100]], dtype=np.float64)
    assert geometry.is_convex(with_collinear)

    assert abs(geometry.angle_at([10, 0], [0, 0], [0, 10]) - 90.0) < 1e-9
    print("  [PASS] Convexity and angles")


def test_reflex_vertices():
    """Convex polygons have no reflex corners; an L-shape has one."""
    square = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], dtype=np.float64)
    assert geometry.reflex_vertices(square) == [False] * 4
    assert geometry.reflex_vertices(square[::-1]) == [False] * 4

    l_shape = np.array([[0, 0], [100, 0], [100, 40], [40, 40], [40, 100], [0, 100]], dtype=np.float64)
    assert geometry.reflex_vertices(l_shape) == [False, False, False, True, False, False]
    # Unsigned angles alone cannot tell them apart
    assert all(abs(a - 90.0) < 1e-9 for a in geometry.interior_angles(l_shape))
    print("  [PASS] Reflex vertices")


def test_line_intersection():
    point = geometry.line_intersection([0, 90], [70, 90], [90, 10], [90, 70])
    assert np.allclose(point, [90, 90])
    assert geometry.line_intersection([0, 0], [1, 0], [0, 1], [1, 1]) is None
    print("  [PASS] Line intersection")


def test_quad_expansion_and_spaces():
    """Expansion is clamped; scaling moves a quad between spaces."""
    print("\n" + "="*60)
    print("TEST: Quad Expansion and Coordinate Spaces")
    print("="*60)

    quad = Quad.from_points([[10, 10], [90, 10], [90, 90], [10, 90]], CoordinateSpace.MODEL, (100, 100))
    expanded = quad.expanded(0.05)
    print(f"  Expanded: {expanded.points.tolist()}")
    assert np.allclose(expanded.points[0], [8, 8])
    assert quad.area == 6400.0

    clamped = quad.expanded(0.5)
    assert clamped.points.min() >= 0 and clamped.points.max() <= 100

    image_quad = quad.scaled_to(1000, 500)
    assert image_quad.space is CoordinateSpace.IMAGE
    assert np.allclose(image_quad.points[2], [900, 450])

    try:
        image_quad.scaled_to(10, 10)
        raise AssertionError("Scaling into the same space should fail")
    except ValueError:
        pass
    print("  [PASS] Quad expansion and spaces")


def main():
    """Run all tests."""
    print("\n" + "#"*60)
    print("# GEOMETRY TESTS")
    print("#"*60)

    tests = [
        ("Corner Ordering", test_corner_ordering),
        ("Random Quads", test_corner_ordering_random_quads),
        ("Self Intersection", test_self_intersection),
        ("Homography Round Trip", test_homography_round_trip),
        ("Convexity", test_convexity_and_angles),
        ("Reflex Vertices", test_reflex_vertices),
        ("Line Intersection", test_line_intersection),
        ("Quad Spaces", test_quad_expansion_and_spaces),
    ]
    return run_tests(tests)


def run_tests(tests) -> int:
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
