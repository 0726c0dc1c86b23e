"""
Image helpers: PIL/numpy conversion, bounded crops and CLAHE enhancement.
"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .geometry import Rect

logger = logging.getLogger(__name__)

# Enhancement parameters
CLAHE_CLIP_LIMIT = 2.0
CLAHE_TILE_SIZE = 16
SHARPEN_STRENGTH = 0.2
SHARPEN_SIGMA = 1.5


def to_bgr(image) -> np.ndarray:
    """Convert a PIL image or numpy array to a BGR (or grayscale) array."""
    if isinstance(image, Image.Image):
        rgb = np.array(image.convert("RGB"))
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
    return np.asarray(image)


def to_gray(image) -> np.ndarray:
    arr = to_bgr(image)
    if arr.ndim == 2:
        return arr
    if arr.shape[2] == 4:
        return cv2.cvtColor(arr, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(arr, cv2.COLOR_BGR2GRAY)


def image_size(image) -> Tuple[int, int]:
    """(width, height) of a PIL image or numpy array."""
    if isinstance(image, Image.Image):
        return image.size
    arr = np.asarray(image)
    return arr.shape[1], arr.shape[0]


def is_empty(image) -> bool:
    if image is None:
        return True
    width, height = image_size(image)
    return width <= 0 or height <= 0


def crop(image: np.ndarray, rect: Rect) -> Optional[np.ndarray]:
    """
    Crop a rectangle clamped to the image bounds.

    Returns:
        The crop (a copy), or None if the clamped rectangle is empty
    """
    height, width = image.shape[:2]
    left = max(0, int(rect.left))
    top = max(0, int(rect.top))
    right = min(width, int(rect.right))
    bottom = min(height, int(rect.bottom))
    if right <= left or bottom <= top:
        return None
    return image[top:bottom, left:right].copy()


def enhance(image: np.ndarray,
            clip_limit: float = CLAHE_CLIP_LIMIT,
            tile_size: int = CLAHE_TILE_SIZE,
            sharpen_strength: float = SHARPEN_STRENGTH) -> np.ndarray:
    """
    Grayscale + CLAHE + unsharp mask, for low-contrast region crops.

    Args:
        image: BGR or grayscale crop
        clip_limit: CLAHE clip limit (1.0-4.0)
        tile_size: CLAHE grid size (4-16)
        sharpen_strength: Unsharp mask weight (0-1), 0 disables sharpening

    Returns:
        Enhanced grayscale image
    """
    gray = to_gray(image)
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_size, tile_size))
    enhanced = clahe.apply(gray)

    if sharpen_strength > 0.01:
        blurred = cv2.GaussianBlur(enhanced, (0, 0), SHARPEN_SIGMA)
        enhanced = cv2.addWeighted(enhanced, 1.0 + sharpen_strength, blurred, -sharpen_strength, 0)

    return enhanced


def downscale(image: np.ndarray, max_dimension: int) -> Tuple[np.ndarray, float]:
    """
    Shrink an image so its long side is at most max_dimension.

    Returns:
        (image, scale) where scale is new_size / old_size (1.0 if untouched)
    """
    height, width = image.shape[:2]
    longest = max(width, height)
    if longest <= max_dimension:
        return image, 1.0
    scale = max_dimension / float(longest)
    resized = cv2.resize(image, (int(round(width * scale)), int(round(height * scale))),
                         interpolation=cv2.INTER_AREA)
    logger.debug(f"Downscaled {width}x{height} -> {resized.shape[1]}x{resized.shape[0]}")
    return resized, scale
