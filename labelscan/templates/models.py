"""
Template Dataclasses

Templates and their named regions. Region bounds are in template
reference pixel space.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

import numpy as np

from ..geometry import Rect


class RegionType(Enum):
    """Region content kind. Each kind owns its crop expansion ratio."""
    TEXT = "TEXT"
    BARCODE = "BARCODE"

    @property
    def expand_ratio(self) -> float:
        return 0.20 if self is RegionType.BARCODE else 0.10

    @property
    def vertical_factor(self) -> float:
        # Text tolerates baseline drift, so it grows twice as much vertically
        return 2.0 if self is RegionType.TEXT else 1.0


@dataclass(frozen=True)
class TemplateRegion:
    """Named rectangle inside a template."""
    id: int
    name: str
    region_type: RegionType
    bounds: Rect
    sort_order: int = 0
    enabled: bool = True

    def corners(self) -> np.ndarray:
        return self.bounds.corners()

    def is_valid(self) -> bool:
        return bool(self.name) and self.bounds.width > 0 and self.bounds.height > 0


@dataclass(frozen=True)
class FeatureRef:
    """Where a template's persisted feature set lives."""
    descriptors_path: Path
    keypoints_path: Path

    def exists(self) -> bool:
        return Path(self.descriptors_path).exists() and Path(self.keypoints_path).exists()


@dataclass
class Template:
    """
    Previously captured label layout.

    Attributes:
        id: Repository identifier
        name: Display name
        category_id: Grouping used by category and priority matching
        reference_width: Width of the template image in pixels
        reference_height: Height of the template image in pixels
        feature_ref: Persisted keypoints/descriptors
        keypoint_count: Number of keypoints in the persisted set
        regions: Regions in reference pixel space
        enabled: Disabled templates are skipped by match_best
        usage_count: Successful matches so far
        last_used_time: Epoch seconds of the last successful match
    """
    id: int
    name: str
    category_id: Optional[int]
    reference_width: int
    reference_height: int
    feature_ref: Optional[FeatureRef]
    keypoint_count: int = 0
    regions: List[TemplateRegion] = field(default_factory=list)
    enabled: bool = True
    usage_count: int = 0
    last_used_time: float = 0.0
    description: str = ""

    @property
    def aspect_ratio(self) -> float:
        if self.reference_height <= 0:
            return 0.0
        return self.reference_width / float(self.reference_height)

    def is_valid(self) -> bool:
        return (
            bool(self.name)
            and self.reference_width > 0
            and self.reference_height > 0
            and self.feature_ref is not None
        )

    def increment_usage(self) -> None:
        self.usage_count += 1
        self.last_used_time = time.time()

    def enabled_regions(self) -> List[TemplateRegion]:
        return sorted((r for r in self.regions if r.enabled), key=lambda r: r.sort_order)
