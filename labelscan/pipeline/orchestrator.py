"""
Matching Orchestrator

Composition root of the matching pipeline: feature extraction, template
matching, region projection and region recognition, across one or many
candidate templates. All collaborators are passed in explicitly.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..detection import DetectionResult, LabelDetector
from ..imaging import downscale, image_size, is_empty, to_bgr
from ..matching import (
    Coarse,
    FeatureExtractor,
    FeatureSet,
    LabelDetectionRectified,
    MatchError,
    MatchMode,
    MatchOutcome,
    MatchStrategy,
    TemplateFeatureStore,
    TemplateMatcher,
)
from ..recognition import RegionContentRecognizer
from ..templates import Template, TemplateRegion, TemplateRepository

logger = logging.getLogger(__name__)


# Detection confidence required before a rectified label is matched
MIN_DETECTION_CONFIDENCE = 0.5

# Priority matching accepts the preferred category above this confidence
MIN_ACCEPTABLE_CONFIDENCE = 0.4

MAX_MATCH_DIMENSION = 1920


@dataclass(eq=False)
class ScanResult:
    """Outcome of scanning one frame."""
    outcome: MatchOutcome
    detection: Optional[DetectionResult] = None
    image: Optional[np.ndarray] = None  # Image the region coordinates refer to

    @property
    def success(self) -> bool:
        return self.outcome.success

    def release(self) -> None:
        self.outcome.release()
        self.image = None


class MatchingOrchestrator:
    """
    Runs match -> project -> recognize over candidate templates.

    Example:
        orchestrator = MatchingOrchestrator(
            matcher=TemplateMatcher(store),
            recognizer=RegionContentRecognizer(ocr, decoder),
            repository=repository,
        )
        outcome = orchestrator.match_all(frame)
        print(outcome.region_contents())
    """

    def __init__(self,
                 matcher: TemplateMatcher,
                 recognizer: Optional[RegionContentRecognizer] = None,
                 extractor: Optional[FeatureExtractor] = None,
                 repository: Optional[TemplateRepository] = None,
                 label_detector: Optional[LabelDetector] = None,
                 max_match_dimension: int = MAX_MATCH_DIMENSION,
                 min_acceptable_confidence: float = MIN_ACCEPTABLE_CONFIDENCE,
                 min_detection_confidence: float = MIN_DETECTION_CONFIDENCE):
        self.matcher = matcher
        self.recognizer = recognizer
        self.extractor = extractor or FeatureExtractor()
        self.repository = repository
        self.label_detector = label_detector
        self.max_match_dimension = max_match_dimension
        self.min_acceptable_confidence = min_acceptable_confidence
        self.min_detection_confidence = min_detection_confidence

    @property
    def store(self) -> TemplateFeatureStore:
        return self.matcher.store

    # ------------------------------------------------------------------
    # Matching entry points
    # ------------------------------------------------------------------

    def match_templates(self, frame, templates: Sequence[Template],
                        strategy: Optional[MatchStrategy] = None) -> MatchOutcome:
        """Match a frame against candidate templates and recognize the winner's regions."""
        bgr = None if is_empty(frame) else to_bgr(frame)
        features = self._extract(bgr)
        if features is None:
            return MatchOutcome.failure(MatchError.INVALID_INPUT, "Frame is empty or has no features")

        with features:
            outcome = self.matcher.match_best(features, templates, strategy)
        self._complete(bgr, outcome)
        return outcome

    def match_template(self, frame, template_id: int,
                       strategy: Optional[MatchStrategy] = None) -> MatchOutcome:
        template = self._require_repository().get(template_id)
        if template is None:
            return MatchOutcome.failure(MatchError.INVALID_INPUT, f"Template not found: {template_id}")
        return self.match_templates(frame, [template], strategy)

    def match_in_category(self, frame, category_id: int,
                          strategy: Optional[MatchStrategy] = None) -> MatchOutcome:
        templates = self._require_repository().by_category(category_id)
        if not templates:
            return MatchOutcome.failure(MatchError.INVALID_INPUT, f"No templates in category {category_id}")
        return self.match_templates(frame, templates, strategy)

    def match_all(self, frame, strategy: Optional[MatchStrategy] = None) -> MatchOutcome:
        templates = self._require_repository().all()
        if not templates:
            return MatchOutcome.failure(MatchError.INVALID_INPUT, "No templates available")
        return self.match_templates(frame, templates, strategy)

    def match_with_priority(self, frame, preferred_category_id: Optional[int],
                            strategy: Optional[MatchStrategy] = None) -> MatchOutcome:
        """
        Try the preferred category first, then every template.

        The preferred category's best match is accepted when its confidence
        reaches min_acceptable_confidence.
        """
        repository = self._require_repository()
        bgr = None if is_empty(frame) else to_bgr(frame)
        features = self._extract(bgr)
        if features is None:
            return MatchOutcome.failure(MatchError.INVALID_INPUT, "Frame is empty or has no features")

        with features:
            outcome = None
            if preferred_category_id is not None:
                preferred = repository.by_category(preferred_category_id)
                if preferred:
                    outcome = self.matcher.match_best(features, preferred, strategy)
                    if outcome.success and outcome.confidence >= self.min_acceptable_confidence:
                        logger.debug(f"Preferred category {preferred_category_id} matched")
                    else:
                        outcome.release()
                        outcome = None

            if outcome is None:
                templates = repository.all()
                if not templates:
                    return MatchOutcome.failure(MatchError.INVALID_INPUT, "No templates available")
                outcome = self.matcher.match_best(features, templates, strategy)

        self._complete(bgr, outcome)
        return outcome

    def scan(self, frame, mode: MatchMode = MatchMode.COARSE,
             templates: Optional[Sequence[Template]] = None,
             detection: Optional[DetectionResult] = None) -> ScanResult:
        """
        Full pipeline for one frame in the given mode.

        COARSE matches a downscaled copy and projects regions at full
        resolution. LABEL_DETECTION detects and rectifies the label first,
        unless a detection for this frame is passed in.
        """
        if is_empty(frame):
            return ScanResult(MatchOutcome.failure(MatchError.INVALID_INPUT, "Empty frame"))
        if templates is None:
            templates = self._require_repository().all()

        bgr = to_bgr(frame)
        if mode is MatchMode.LABEL_DETECTION:
            return self._scan_label(bgr, templates, detection)
        return self._scan_coarse(bgr, templates)

    # ------------------------------------------------------------------
    # Template authoring
    # ------------------------------------------------------------------

    def create_template(self, name: str, image,
                        regions: Optional[List[TemplateRegion]] = None,
                        category_id: Optional[int] = None,
                        description: str = "") -> Template:
        """
        Extract and persist features for a new template and register it.

        Raises:
            ValueError: If the image has no usable features
        """
        features = self.extractor.extract(image)
        if features is None:
            raise ValueError(f"No features found in template image for '{name}'")

        width, height = image_size(image)
        with features:
            keypoint_count = features.count
            ref = self.store.save(features, _feature_name(name))

        template = Template(
            id=0,
            name=name,
            category_id=category_id,
            reference_width=width,
            reference_height=height,
            feature_ref=ref,
            keypoint_count=keypoint_count,
            regions=list(regions or []),
            description=description,
        )
        if self.repository is not None:
            template = self.repository.add(template)
        self.matcher.invalidate(template.id)
        logger.info(f"Template created: {name} ({width}x{height}, {keypoint_count} keypoints)")
        return template

    def add_regions(self, template: Template, regions: List[TemplateRegion]) -> Template:
        """Append regions to a template. Only valid while no match is running."""
        template.regions.extend(r for r in regions if r.is_valid())
        return template

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _scan_coarse(self, bgr: np.ndarray, templates: Sequence[Template]) -> ScanResult:
        small, scale = downscale(bgr, self.max_match_dimension)
        features = self._extract(small)
        if features is None:
            return ScanResult(MatchOutcome.failure(MatchError.INVALID_INPUT, "Frame has no features"),
                              image=bgr)

        # Regions are projected and validated at full resolution
        with features:
            outcome = self.matcher.match_best(features, templates, Coarse(),
                                              frame_size=image_size(bgr), feature_scale=scale)
        self._complete(bgr, outcome)
        return ScanResult(outcome, image=bgr)

    def _scan_label(self, bgr: np.ndarray, templates: Sequence[Template],
                    detection: Optional[DetectionResult]) -> ScanResult:
        if self.label_detector is None:
            raise RuntimeError("LABEL_DETECTION mode needs a label detector")

        if detection is None:
            detection = self.label_detector.detect(bgr, live=True)
        if not detection.detected or detection.confidence <= self.min_detection_confidence:
            return ScanResult(MatchOutcome.failure(MatchError.NO_MATCH, "No label detected"), detection)

        rectified = self.label_detector.extract_and_correct(bgr, detection)
        if rectified is None:
            return ScanResult(MatchOutcome.failure(MatchError.NO_MATCH, "Label could not be rectified"),
                              detection)

        features = self._extract(rectified)
        if features is None:
            return ScanResult(MatchOutcome.failure(MatchError.INVALID_INPUT, "Label has no features"),
                              detection, rectified)

        with features:
            outcome = self.matcher.match_best(features, templates, LabelDetectionRectified())
        self._complete(rectified, outcome)
        return ScanResult(outcome, detection, rectified)

    def _extract(self, image) -> Optional[FeatureSet]:
        if image is None:
            logger.warning("Empty frame")
            return None
        return self.extractor.extract(image)

    def _complete(self, frame: Optional[np.ndarray], outcome: MatchOutcome) -> None:
        if not outcome.success:
            return
        if self.recognizer is not None and frame is not None and outcome.transformed_regions:
            self.recognizer.recognize_all(frame, outcome.transformed_regions)
        if self.repository is not None:
            self.repository.increment_usage(outcome.template.id)
        else:
            outcome.template.increment_usage()

    def _require_repository(self) -> TemplateRepository:
        if self.repository is None:
            raise RuntimeError("No template repository configured")
        return self.repository


def _feature_name(name: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9_-]+", "_", name).strip("_").lower() or "template"
    return f"{slug}_{uuid.uuid4().hex[:8]}"
