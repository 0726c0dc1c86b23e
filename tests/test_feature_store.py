"""
Test script for the template feature store

Tests:
1. Descriptor and keypoint blobs survive a save/load cycle
2. Header layout is big-endian with the expected magic numbers
3. Corrupted, truncated and newer-version blobs are rejected
4. Extracted ORB features persist through the store

Usage:
    python test_feature_store.py
"""

import struct
import sys
import tempfile
from pathlib import Path

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from labelscan.matching import FeatureExtractor, FeatureSet, Keypoint, TemplateFeatureStore
from labelscan.matching.feature_store import (
    DESCRIPTOR_MAGIC,
    KEYPOINT_MAGIC,
    FeatureStoreError,
    decode_descriptors,
    decode_keypoints,
    encode_descriptors,
    encode_keypoints,
)

from synthetic import make_template_image


def _sample_features(count: int = 50) -> FeatureSet:
    rng = np.random.default_rng(11)
    descriptors = rng.integers(0, 256, (count, 32), dtype=np.uint8)
    keypoints = [
        Keypoint(x=i * 2.5, y=i * 1.25, size=31.0, angle=float(i), response=0.5,
                 octave=i % 4, class_id=-1)
        for i in range(count)
    ]
    return FeatureSet(keypoints=keypoints, descriptors=descriptors)


def test_save_load_cycle():
    """Saved features load back identical."""
    print("\n" + "="*60)
    print("TEST: Save/Load Cycle")
    print("="*60)

    features = _sample_features()
    with tempfile.TemporaryDirectory() as tmp:
        store = TemplateFeatureStore(Path(tmp) / "features")
        ref = store.save(features, "template_1")
        assert ref.exists()

        loaded = store.load(ref)
        print(f"  Loaded {loaded.count} keypoints, descriptors {loaded.descriptors.shape}")
        assert loaded.descriptors.dtype == np.uint8
        assert np.array_equal(loaded.descriptors, features.descriptors)
        assert loaded.keypoints == features.keypoints

        assert store.delete(ref)
        assert not ref.exists()
        assert not store.delete(ref)
    print("  [PASS] Save/load cycle")


def test_header_layout():
    """Headers are big-endian int32 fields."""
    features = _sample_features(3)

    desc_blob = encode_descriptors(features.descriptors)
    magic, version, rows, cols, cv_type = struct.unpack(">iiiii", desc_blob[:20])
    assert (magic, version, rows, cols, cv_type) == (DESCRIPTOR_MAGIC, 1, 3, 32, 0)
    assert desc_blob[:4] == b"DESC"
    assert len(desc_blob) == 20 + 3 * 32

    kp_blob = encode_keypoints(features.keypoints)
    assert kp_blob[:4] == b"KEYP"
    assert struct.unpack(">iii", kp_blob[:12]) == (KEYPOINT_MAGIC, 1, 3)
    assert len(kp_blob) == 12 + 3 * 28
    print("  [PASS] Header layout")


def test_float_descriptors():
    """Non-uint8 matrices keep their element type."""
    matrix = np.arange(12, dtype=np.float32).reshape(3, 4) / 3.0
    decoded = decode_descriptors(encode_descriptors(matrix))
    assert decoded.dtype == np.float32
    assert np.array_equal(decoded, matrix)
    print("  [PASS] Float descriptors")


def test_rejects_bad_blobs():
    """Wrong magic, newer version and truncation raise FeatureStoreError."""
    print("\n" + "="*60)
    print("TEST: Corrupted Blobs")
    print("="*60)

    features = _sample_features(4)
    desc_blob = encode_descriptors(features.descriptors)
    kp_blob = encode_keypoints(features.keypoints)

    bad_cases = [
        ("descriptor magic", decode_descriptors, b"XXXX" + desc_blob[4:]),
        ("descriptor version", decode_descriptors, desc_blob[:4] + struct.pack(">i", 2) + desc_blob[8:]),
        ("descriptor truncated", decode_descriptors, desc_blob[:-5]),
        ("descriptor header only", decode_descriptors, desc_blob[:10]),
        ("keypoint magic", decode_keypoints, struct.pack(">i", DESCRIPTOR_MAGIC) + kp_blob[4:]),
        ("keypoint version", decode_keypoints, kp_blob[:4] + struct.pack(">i", 99) + kp_blob[8:]),
        ("keypoint truncated", decode_keypoints, kp_blob[:-1]),
    ]

    for label, decode, blob in bad_cases:
        try:
            decode(blob)
            raise AssertionError(f"{label}: expected FeatureStoreError")
        except FeatureStoreError as e:
            print(f"  {label}: {e}")

    # FeatureStoreError is a ValueError
    assert issubclass(FeatureStoreError, ValueError)
    print("  [PASS] Corrupted blobs")


def test_count_mismatch():
    """Keypoint and descriptor files from different sets are rejected."""
    with tempfile.TemporaryDirectory() as tmp:
        store = TemplateFeatureStore(Path(tmp))
        ref = store.save(_sample_features(10), "a")
        other = store.save(_sample_features(12), "b")

        Path(ref.keypoints_path).write_bytes(Path(other.keypoints_path).read_bytes())
        try:
            store.load(ref)
            raise AssertionError("Mismatched counts should fail")
        except FeatureStoreError:
            pass

        try:
            store.load(store.ref_for("missing"))
            raise AssertionError("Missing files should fail")
        except FileNotFoundError:
            pass
    print("  [PASS] Count mismatch")


def test_extracted_features_persist():
    """Real ORB output goes through the store unchanged."""
    print("\n" + "="*60)
    print("TEST: ORB Features Persist")
    print("="*60)

    features = FeatureExtractor().extract(make_template_image())
    assert features is not None and features.is_valid
    print(f"  Extracted {features.count} features in {features.extraction_time_ms:.1f}ms")
    assert features.descriptors.shape[1] == 32
    assert features.image_size == (400, 300)

    with tempfile.TemporaryDirectory() as tmp:
        store = TemplateFeatureStore(Path(tmp))
        loaded = store.load(store.save(features, "orb"))
        assert np.array_equal(loaded.descriptors, features.descriptors)
        assert np.allclose(loaded.points(), features.points(), atol=1e-3)

    features.release()
    assert not features.is_valid
    print("  [PASS] ORB features persist")


def main():
    """Run all tests."""
    print("\n" + "#"*60)
    print("# FEATURE STORE TESTS")
    print("#"*60)

    tests = [
        ("Save/Load Cycle", test_save_load_cycle),
        ("Header Layout", test_header_layout),
        ("Float Descriptors", test_float_descriptors),
        ("Corrupted Blobs", test_rejects_bad_blobs),
        ("Count Mismatch", test_count_mismatch),
        ("ORB Features Persist", test_extracted_features_persist),
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
