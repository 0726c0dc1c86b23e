"""
Match strategies.

Coarse matches a raw frame and projects regions through the estimated
homography. LabelDetectionRectified matches a frame that was already
rectified by the label detector, so regions are taken as-is.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class MatchMode(Enum):
    """User-facing mode selector."""
    COARSE = "coarse"
    LABEL_DETECTION = "label_detection"


@dataclass(frozen=True)
class Coarse:
    """Homography-based matching on an unrectified frame."""
    ransac_threshold: float = 7.0
    min_area_ratio: float = 0.01
    max_area_ratio: float = 0.95
    max_aspect_deviation: float = 0.5
    min_angle: float = 30.0
    max_angle: float = 150.0
    max_side_ratio: float = 5.0


@dataclass(frozen=True)
class LabelDetectionRectified:
    """Descriptor check on a rectified label, no RANSAC."""
    assumed_inlier_ratio: float = 0.85


MatchStrategy = Union[Coarse, LabelDetectionRectified]


def strategy_for_mode(mode: MatchMode) -> MatchStrategy:
    if mode is MatchMode.LABEL_DETECTION:
        return LabelDetectionRectified()
    return Coarse()
