"""
Test script for debug image output

Tests:
1. Annotated image is written for a detection and a match outcome
2. Old debug images are rotated out
3. Confidence colors

Usage:
    python test_debug.py
"""

import os
import sys
import tempfile
import time
from pathlib import Path

import numpy as np
from PIL import Image

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from labelscan import debug
from labelscan.detection import CoordinateSpace, DetectionResult, Quad
from labelscan.geometry import Rect
from labelscan.matching import MatchOutcome, TransformedRegion
from labelscan.templates import FeatureRef, RegionType, Template, TemplateRegion


def _detection() -> DetectionResult:
    quad = Quad.from_points([[40, 30], [260, 30], [260, 170], [40, 170]], CoordinateSpace.IMAGE, (300, 200))
    return DetectionResult(True, quad, quad.expanded(0.05), 0.9, 0.0, (300, 200), "contour")


def _outcome() -> MatchOutcome:
    rect = Rect(50, 50, 200, 80)
    region = TransformedRegion(TemplateRegion(1, "lot", RegionType.TEXT, rect), rect, rect.corners(),
                               "LOT 4711", "TEXT", 0.85)
    template = Template(1, "shipping", None, 220, 140, FeatureRef("d.bin", "k.bin"))
    return MatchOutcome(success=True, template=template, confidence=0.7, inlier_ratio=0.6, match_count=40,
                        transformed_regions=[region],
                        template_corners=Rect(40, 30, 260, 170).corners())


def test_save_debug_image():
    """A PNG with the frame's size is written."""
    print("\n" + "="*60)
    print("TEST: Save Debug Image")
    print("="*60)

    original_dir = debug.DEBUG_DIR
    with tempfile.TemporaryDirectory() as tmp:
        debug.DEBUG_DIR = Path(tmp)
        try:
            frame = np.full((200, 300, 3), 128, dtype=np.uint8)
            path = Path(tmp) / "debug_scan.png"
            debug.save_debug_image(frame, _detection(), _outcome(), str(path))

            assert path.exists()
            with Image.open(path) as saved:
                print(f"  Saved {saved.size}")
                assert saved.size == (300, 200)
                # Region box outline was drawn over the grey frame
                assert saved.convert("RGB").getpixel((50, 65)) != (128, 128, 128)

            # Nothing to annotate still writes the frame
            bare = Path(tmp) / "debug_bare.png"
            debug.save_debug_image(frame, DetectionResult.not_detected((300, 200)), None, str(bare))
            assert bare.exists()
        finally:
            debug.DEBUG_DIR = original_dir
    print("  [PASS] Save debug image")


def test_cleanup_keeps_most_recent():
    """Only MAX_DEBUG_IMAGES files survive, newest first."""
    print("\n" + "="*60)
    print("TEST: Debug Image Rotation")
    print("="*60)

    original_dir = debug.DEBUG_DIR
    with tempfile.TemporaryDirectory() as tmp:
        debug.DEBUG_DIR = Path(tmp)
        try:
            now = time.time()
            total = debug.MAX_DEBUG_IMAGES + 3
            for i in range(total):
                path = Path(tmp) / f"debug_{i:03d}.png"
                path.write_bytes(b"png")
                os.utime(path, (now - (total - i) * 10, now - (total - i) * 10))
            (Path(tmp) / "notes.txt").write_text("kept")

            debug.cleanup_debug_images()

            remaining = sorted(p.name for p in Path(tmp).glob("debug_*.png"))
            print(f"  Remaining: {len(remaining)}")
            assert len(remaining) == debug.MAX_DEBUG_IMAGES
            assert "debug_000.png" not in remaining
            assert f"debug_{total - 1:03d}.png" in remaining
            assert (Path(tmp) / "notes.txt").exists()
        finally:
            debug.DEBUG_DIR = original_dir
    print("  [PASS] Debug image rotation")


def test_confidence_colors():
    assert debug.get_confidence_color(0.9) == "#4CAF50"
    assert debug.get_confidence_color(0.5) == "#FFC107"
    assert debug.get_confidence_color(0.1) == "#d32f2f"
    print("  [PASS] Confidence colors")


def main():
    """Run all tests."""
    print("\n" + "#"*60)
    print("# DEBUG OUTPUT TESTS")
    print("#"*60)

    tests = [
        ("Save Debug Image", test_save_debug_image),
        ("Debug Image Rotation", test_cleanup_keeps_most_recent),
        ("Confidence Colors", test_confidence_colors),
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
