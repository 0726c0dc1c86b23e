"""
Match Result Dataclasses
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from ..geometry import Rect
from ..templates.models import Template, TemplateRegion


class MatchError(Enum):
    """Why a match attempt failed."""
    INVALID_INPUT = "invalid-input"
    FEATURES_UNAVAILABLE = "features-unavailable"
    INSUFFICIENT_MATCHES = "insufficient-matches"
    HOMOGRAPHY_FAILED = "homography-failed"
    LOW_CONFIDENCE = "low-confidence"
    IMPLAUSIBLE_GEOMETRY = "implausible-geometry"
    NO_VALID_REGIONS = "no-valid-regions"
    NO_MATCH = "no-match"


@dataclass(eq=False)
class TransformedRegion:
    """A template region projected into frame coordinates."""
    source_region: TemplateRegion
    bounds: Rect
    corners: np.ndarray  # (4, 2) in frame space
    recognized_content: Optional[str] = None
    recognized_format: Optional[str] = None
    recognition_confidence: float = 0.0

    @property
    def name(self) -> str:
        return self.source_region.name

    @property
    def has_content(self) -> bool:
        return bool(self.recognized_content)


@dataclass(eq=False)
class MatchOutcome:
    """Result of one match attempt. Owned by the caller, who releases it."""
    success: bool
    template: Optional[Template] = None
    confidence: float = 0.0
    inlier_ratio: float = 0.0
    match_count: int = 0
    avg_distance: float = 0.0
    homography: Optional[np.ndarray] = None       # 3x3, frame -> template
    transformed_regions: List[TransformedRegion] = field(default_factory=list)
    template_corners: Optional[np.ndarray] = None  # (4, 2) in frame space
    match_time_ms: float = 0.0
    error: Optional[MatchError] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(cls, error: MatchError, message: str, **metrics) -> "MatchOutcome":
        return cls(success=False, error=error, error_message=message, **metrics)

    @classmethod
    def no_match(cls) -> "MatchOutcome":
        return cls.failure(MatchError.NO_MATCH, "No matching template found")

    @property
    def is_reliable(self) -> bool:
        return self.success and self.confidence > 0.6 and self.inlier_ratio > 0.5

    @property
    def confidence_level(self) -> str:
        if self.confidence > 0.8:
            return "Excellent"
        if self.confidence > 0.6:
            return "Good"
        if self.confidence > 0.4:
            return "Fair"
        return "Poor"

    def region_contents(self) -> Dict[str, str]:
        """Region name -> recognized content, for regions that have any."""
        return {
            region.name: region.recognized_content
            for region in self.transformed_regions
            if region.has_content
        }

    def release(self) -> None:
        """Drop the owned matrices and region buffers."""
        self.homography = None
        self.template_corners = None
        self.transformed_regions = []

    def summary(self) -> str:
        if not self.success:
            return f"No match ({self.error.value if self.error else 'unknown'}): {self.error_message}"
        return (f"{self.template.name}: confidence={self.confidence:.2f} ({self.confidence_level}), "
                f"matches={self.match_count}, inliers={self.inlier_ratio:.2f}, "
                f"regions={len(self.transformed_regions)}, {self.match_time_ms:.1f}ms")
