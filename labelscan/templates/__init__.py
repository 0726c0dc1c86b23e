"""
Template model and repository contract.
"""

from .models import (
    FeatureRef,
    RegionType,
    Template,
    TemplateRegion,
)
from .repository import InMemoryTemplateRepository, TemplateRepository

__all__ = [
    "FeatureRef",
    "RegionType",
    "Template",
    "TemplateRegion",
    "TemplateRepository",
    "InMemoryTemplateRepository",
]
