"""
Template matching: ORB features, persisted feature sets, homography
estimation and region projection.

Usage:
    from labelscan.matching import FeatureExtractor, TemplateMatcher

    extractor = FeatureExtractor()
    matcher = TemplateMatcher()

    with extractor.extract(frame) as features:
        outcome = matcher.match_best(features, templates)
    if outcome.success:
        for region in outcome.transformed_regions:
            print(region.name, region.bounds)
    outcome.release()
"""

# Public API - Features
from .features import FeatureExtractor, FeatureSet, Keypoint

# Public API - Persistence
from .feature_store import (
    FeatureStoreError,
    TemplateFeatureStore,
    decode_descriptors,
    decode_keypoints,
    encode_descriptors,
    encode_keypoints,
)

# Public API - Strategies and results
from .strategy import Coarse, LabelDetectionRectified, MatchMode, MatchStrategy, strategy_for_mode
from .result import MatchError, MatchOutcome, TransformedRegion

# Public API - Matching
from .matcher import (
    MIN_CONFIDENCE,
    MIN_MATCH_COUNT,
    TemplateMatcher,
    compute_confidence,
    estimate_homography,
    validate_template_quad,
)
from .projector import RegionProjector, validate_region

__all__ = [
    # Features
    "FeatureExtractor",
    "FeatureSet",
    "Keypoint",
    # Persistence
    "FeatureStoreError",
    "TemplateFeatureStore",
    "decode_descriptors",
    "decode_keypoints",
    "encode_descriptors",
    "encode_keypoints",
    # Strategies
    "Coarse",
    "LabelDetectionRectified",
    "MatchMode",
    "MatchStrategy",
    "strategy_for_mode",
    # Results
    "MatchError",
    "MatchOutcome",
    "TransformedRegion",
    # Matching
    "MIN_CONFIDENCE",
    "MIN_MATCH_COUNT",
    "TemplateMatcher",
    "compute_confidence",
    "estimate_homography",
    "validate_template_quad",
    "RegionProjector",
    "validate_region",
]
