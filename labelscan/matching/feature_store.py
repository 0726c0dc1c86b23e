"""
Template Feature Store

Versioned big-endian binary codec for persisted feature sets.

Descriptors blob:
    int32 magic (0x44455343, "DESC"), int32 version, int32 rows,
    int32 cols, int32 cv type, then rows * cols * elem_size raw bytes.

Keypoints blob:
    int32 magic (0x4B455950, "KEYP"), int32 version, int32 count, then per
    keypoint float32 x, y, size, angle, response and int32 octave, class_id.
"""

import logging
import struct
from pathlib import Path
from typing import List, Tuple

import numpy as np

from ..templates.models import FeatureRef
from .features import FeatureSet, Keypoint

logger = logging.getLogger(__name__)


DESCRIPTOR_MAGIC = 0x44455343
KEYPOINT_MAGIC = 0x4B455950
FORMAT_VERSION = 1

_DESC_HEADER = struct.Struct(">iiiii")
_KEYP_HEADER = struct.Struct(">iii")
_KEYP_RECORD = struct.Struct(">fffffii")

# OpenCV depth codes used in the type field (type = depth + (channels - 1) * 8)
_DEPTH_TO_DTYPE = {
    0: np.uint8,
    1: np.int8,
    2: np.uint16,
    3: np.int16,
    4: np.int32,
    5: np.float32,
    6: np.float64,
}
_DTYPE_TO_DEPTH = {np.dtype(v): k for k, v in _DEPTH_TO_DTYPE.items()}


class FeatureStoreError(ValueError):
    """Raised for corrupted or unsupported feature blobs."""
    pass


def _cv_type(arr: np.ndarray) -> Tuple[int, int, int]:
    """(rows, cols, cv type) for a 2D or 3D (multi-channel) matrix."""
    depth = _DTYPE_TO_DEPTH.get(arr.dtype)
    if depth is None:
        raise FeatureStoreError(f"Unsupported descriptor dtype: {arr.dtype}")
    channels = arr.shape[2] if arr.ndim == 3 else 1
    return arr.shape[0], arr.shape[1], depth + (channels - 1) * 8


def encode_descriptors(descriptors: np.ndarray) -> bytes:
    arr = np.ascontiguousarray(descriptors)
    if arr.ndim not in (2, 3):
        raise FeatureStoreError(f"Descriptors must be a 2D matrix, got shape {arr.shape}")
    rows, cols, cv_type = _cv_type(arr)
    header = _DESC_HEADER.pack(DESCRIPTOR_MAGIC, FORMAT_VERSION, rows, cols, cv_type)
    # Raw bytes are written in native element order, as OpenCV stores them
    return header + arr.tobytes()


def decode_descriptors(blob: bytes) -> np.ndarray:
    if len(blob) < _DESC_HEADER.size:
        raise FeatureStoreError("Descriptor blob truncated: missing header")
    magic, version, rows, cols, cv_type = _DESC_HEADER.unpack_from(blob, 0)
    if magic != DESCRIPTOR_MAGIC:
        raise FeatureStoreError(f"Invalid descriptor file format (magic 0x{magic & 0xFFFFFFFF:08X})")
    if version > FORMAT_VERSION:
        raise FeatureStoreError(f"Unsupported descriptor version: {version}")
    if rows < 0 or cols < 0:
        raise FeatureStoreError(f"Invalid descriptor shape: {rows}x{cols}")

    depth = cv_type & 7
    channels = (cv_type >> 3) + 1
    dtype = _DEPTH_TO_DTYPE.get(depth)
    if dtype is None:
        raise FeatureStoreError(f"Unsupported descriptor type: {cv_type}")

    count = rows * cols * channels
    expected = count * np.dtype(dtype).itemsize
    payload = blob[_DESC_HEADER.size:]
    if len(payload) != expected:
        raise FeatureStoreError(f"Descriptor blob size mismatch: expected {expected} bytes, got {len(payload)}")

    arr = np.frombuffer(payload, dtype=dtype, count=count).copy()
    if channels > 1:
        return arr.reshape(rows, cols, channels)
    return arr.reshape(rows, cols)


def encode_keypoints(keypoints: List[Keypoint]) -> bytes:
    parts = [_KEYP_HEADER.pack(KEYPOINT_MAGIC, FORMAT_VERSION, len(keypoints))]
    for kp in keypoints:
        parts.append(_KEYP_RECORD.pack(kp.x, kp.y, kp.size, kp.angle, kp.response,
                                       kp.octave, kp.class_id))
    return b"".join(parts)


def decode_keypoints(blob: bytes) -> List[Keypoint]:
    if len(blob) < _KEYP_HEADER.size:
        raise FeatureStoreError("Keypoint blob truncated: missing header")
    magic, version, count = _KEYP_HEADER.unpack_from(blob, 0)
    if magic != KEYPOINT_MAGIC:
        raise FeatureStoreError(f"Invalid keypoint file format (magic 0x{magic & 0xFFFFFFFF:08X})")
    if version > FORMAT_VERSION:
        raise FeatureStoreError(f"Unsupported keypoint version: {version}")
    if count < 0:
        raise FeatureStoreError(f"Invalid keypoint count: {count}")

    expected = _KEYP_HEADER.size + count * _KEYP_RECORD.size
    if len(blob) != expected:
        raise FeatureStoreError(f"Keypoint blob size mismatch: expected {expected} bytes, got {len(blob)}")

    return [
        Keypoint(*fields)
        for fields in _KEYP_RECORD.iter_unpack(blob[_KEYP_HEADER.size:])
    ]


class TemplateFeatureStore:
    """
    File persistence for template feature sets.

    Example:
        store = TemplateFeatureStore(Path("./features"))
        ref = store.save(features, "template_12")
        features = store.load(ref)
    """

    DESCRIPTORS_SUFFIX = "_descriptors.bin"
    KEYPOINTS_SUFFIX = "_keypoints.bin"

    def __init__(self, base_dir: Path = Path("./features")):
        self.base_dir = Path(base_dir)

    def ref_for(self, name: str) -> FeatureRef:
        return FeatureRef(
            self.base_dir / f"{name}{self.DESCRIPTORS_SUFFIX}",
            self.base_dir / f"{name}{self.KEYPOINTS_SUFFIX}",
        )

    def save(self, features: FeatureSet, name: str) -> FeatureRef:
        """
        Write both blobs for a feature set.

        Returns:
            FeatureRef pointing at the written files
        """
        if not features.is_valid:
            raise ValueError("Cannot save an empty or released feature set")

        self.base_dir.mkdir(parents=True, exist_ok=True)
        ref = self.ref_for(name)
        Path(ref.descriptors_path).write_bytes(encode_descriptors(features.descriptors))
        Path(ref.keypoints_path).write_bytes(encode_keypoints(features.keypoints))
        logger.info(f"Saved {features.count} features to {ref.descriptors_path}")
        return ref

    @staticmethod
    def load(ref: FeatureRef) -> FeatureSet:
        """
        Read a feature set back.

        Raises:
            FileNotFoundError: If either blob is missing
            FeatureStoreError: If a blob is corrupted or the two disagree
        """
        descriptors = decode_descriptors(Path(ref.descriptors_path).read_bytes())
        keypoints = decode_keypoints(Path(ref.keypoints_path).read_bytes())
        if descriptors.shape[0] != len(keypoints):
            raise FeatureStoreError(
                f"Keypoint/descriptor count mismatch: {len(keypoints)} vs {descriptors.shape[0]}"
            )
        return FeatureSet(keypoints=keypoints, descriptors=descriptors)

    @staticmethod
    def delete(ref: FeatureRef) -> bool:
        """Remove both blobs. Returns True if anything was deleted."""
        deleted = False
        for path in (Path(ref.descriptors_path), Path(ref.keypoints_path)):
            if path.exists():
                path.unlink()
                deleted = True
        return deleted
