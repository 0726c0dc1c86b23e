"""
Recognition Result Dataclasses

Shared data structures for OCR engine and barcode decoder results.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass
class OCRFragment:
    """One piece of text found by an OCR engine."""
    text: str
    bounding_box: Optional[Tuple[int, int, int, int]]  # (x, y, width, height)
    confidence: float                                  # 0.0-1.0
    corners: List[Tuple[float, float]] = field(default_factory=list)

    def is_valid(self) -> bool:
        return bool(self.text and self.text.strip()) and self.bounding_box is not None


@dataclass
class BarcodeReading:
    """One decoded barcode."""
    content: str
    format: str                                               # Symbology, e.g. "QR_CODE", "EAN_13"
    bounding_box: Optional[Tuple[int, int, int, int]] = None  # (x, y, width, height)
    corners: List[Tuple[float, float]] = field(default_factory=list)

    @property
    def center(self) -> Optional[Tuple[float, float]]:
        if self.bounding_box is None:
            return None
        x, y, w, h = self.bounding_box
        return (x + w / 2.0, y + h / 2.0)


@dataclass
class RegionReading:
    """Merged recognition result for one region."""
    content: Optional[str] = None
    format: Optional[str] = None
    confidence: float = 0.0

    @property
    def has_content(self) -> bool:
        return bool(self.content)
