"""
Tesseract OCR Engine

Word-level OCR through pytesseract.image_to_data. Requires the tesseract
binary on PATH.
"""

import logging
from typing import List

import cv2
import numpy as np
import pytesseract
from PIL import Image

from .base import OCREngine
from .result import OCRFragment

logger = logging.getLogger(__name__)


DEFAULT_LANG = "eng"
DEFAULT_PSM = 6           # Assume a uniform block of text
DEFAULT_MIN_CONFIDENCE = 0.0


class TesseractOCREngine(OCREngine):
    """OCR engine backed by the tesseract command line tool."""

    def __init__(self, lang: str = DEFAULT_LANG, psm: int = DEFAULT_PSM,
                 min_confidence: float = DEFAULT_MIN_CONFIDENCE):
        self.lang = lang
        self.psm = psm
        self.min_confidence = min_confidence

    @property
    def name(self) -> str:
        return "tesseract"

    def configure(self, **kwargs) -> None:
        for key in ("lang", "psm", "min_confidence"):
            if key in kwargs:
                setattr(self, key, kwargs.pop(key))
        if kwargs:
            logger.warning(f"Ignoring unknown tesseract options: {sorted(kwargs)}")

    def recognize(self, image: np.ndarray) -> List[OCRFragment]:
        if image.ndim == 2:
            pil = Image.fromarray(image)
        else:
            pil = Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))

        data = pytesseract.image_to_data(
            pil, lang=self.lang, config=f"--psm {self.psm}",
            output_type=pytesseract.Output.DICT,
        )

        fragments = []
        for i, raw_text in enumerate(data.get("text", [])):
            text = (raw_text or "").strip()
            if not text:
                continue
            # Tesseract reports -1 for non-word boxes
            conf = float(data["conf"][i])
            if conf < 0:
                continue
            confidence = conf / 100.0
            if confidence < self.min_confidence:
                continue
            box = (int(data["left"][i]), int(data["top"][i]),
                   int(data["width"][i]), int(data["height"][i]))
            fragments.append(OCRFragment(text=text, bounding_box=box, confidence=confidence))

        logger.debug(f"Tesseract found {len(fragments)} words")
        return fragments
