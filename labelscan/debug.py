"""
Debug Utilities

Functions for saving annotated debug images and managing debug output.
"""

from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .detection import DetectionResult
from .imaging import to_bgr
from .matching import MatchOutcome


# Debug settings
DEBUG_DIR = Path("./debug")
MAX_DEBUG_IMAGES = 10

# Confidence thresholds for coloring
HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5


def _to_pil(image) -> Image.Image:
    if isinstance(image, Image.Image):
        return image.convert("RGB")
    arr = to_bgr(image)
    if arr.ndim == 2:
        return Image.fromarray(arr).convert("RGB")
    return Image.fromarray(np.ascontiguousarray(arr[:, :, 2::-1]))


def _polygon(points) -> list:
    return [(float(x), float(y)) for x, y in np.asarray(points).reshape(-1, 2)]


def save_debug_image(
    image,
    detection: Optional[DetectionResult],
    outcome: Optional[MatchOutcome],
    path: str
) -> None:
    """
    Save an annotated debug image of a scan.

    Annotations include:
    - Detected label quad (blue) and its display expansion (cyan)
    - Matched template outline (magenta)
    - Region boxes colored by recognition confidence, with their content

    Args:
        image: Frame as BGR array or PIL Image
        detection: Label detection in the image's coordinates (can be None)
        outcome: Match outcome in the image's coordinates (can be None)
        path: Output file path
    """
    DEBUG_DIR.mkdir(parents=True, exist_ok=True)
    Path(path).parent.mkdir(parents=True, exist_ok=True)

    debug_img = _to_pil(image)
    draw = ImageDraw.Draw(debug_img)

    try:
        font = ImageFont.truetype("arial.ttf", 14)
    except OSError:
        font = ImageFont.load_default()

    if detection is not None and detection.has_valid_corners():
        if detection.display_quad is not None:
            draw.polygon(_polygon(detection.display_quad.points), outline="cyan")
        draw.polygon(_polygon(detection.quad.points), outline="blue")
        draw.text((10, 10), f"Detection: {detection.confidence * 100:.1f}% ({detection.stage}), "
                            f"rotation {detection.rotation_angle:.1f}", fill="blue", font=font)

    if outcome is not None:
        if outcome.template_corners is not None:
            draw.polygon(_polygon(outcome.template_corners), outline="magenta")

        for region in outcome.transformed_regions:
            color = get_confidence_color(region.recognition_confidence) if region.has_content else "gray"
            draw.polygon(_polygon(region.corners), outline=color)
            label = region.name
            if region.has_content:
                label = f"{region.name}: {region.recognized_content}"
            draw.text((region.bounds.left, max(0.0, region.bounds.top - 16)), label, fill=color, font=font)

        draw.text((10, 30), outcome.summary(), fill="magenta", font=font)

    debug_img.save(path, "PNG")

    cleanup_debug_images()


def cleanup_debug_images() -> None:
    """Remove old debug images, keeping only the most recent MAX_DEBUG_IMAGES."""
    if not DEBUG_DIR.exists():
        return

    debug_files = sorted(
        DEBUG_DIR.glob("debug_*.png"),
        key=lambda p: p.stat().st_mtime,
        reverse=True
    )

    for old_file in debug_files[MAX_DEBUG_IMAGES:]:
        old_file.unlink(missing_ok=True)


def get_confidence_color(confidence: float) -> str:
    """
    Get color code for confidence level.

    Args:
        confidence: Confidence value 0.0-1.0

    Returns:
        Hex color code string
    """
    if confidence >= HIGH_CONFIDENCE:
        return "#4CAF50"  # Green
    elif confidence >= MEDIUM_CONFIDENCE:
        return "#FFC107"  # Yellow
    else:
        return "#d32f2f"  # Red
