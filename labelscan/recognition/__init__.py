"""
Region content recognition.

Pluggable OCR engines and barcode decoders behind small ABCs, plus the
concurrent recognizer that fills in projected regions.

Usage:
    from labelscan.recognition import (
        RegionContentRecognizer, create_ocr_engine, create_barcode_decoder,
    )

    recognizer = RegionContentRecognizer(
        ocr_engine=create_ocr_engine("tesseract"),
        barcode_decoder=create_barcode_decoder("opencv"),
    )
    recognizer.recognize_all(frame, outcome.transformed_regions)

Example with a custom engine:
    class MyEngine(OCREngine):
        ...

    register_ocr_engine("mine", MyEngine)
    engine = create_ocr_engine("mine")
"""

# Public API - Result types
from .result import (
    BarcodeReading,
    OCRFragment,
    RegionReading,
)

# Public API - Base classes for custom engines
from .base import BarcodeDecoder, OCREngine

# Public API - Factory functions
from .factory import (
    available_barcode_decoders,
    available_ocr_engines,
    create_barcode_decoder,
    create_ocr_engine,
    register_barcode_decoder,
    register_ocr_engine,
)

# Public API - Recognizer
from .recognizer import (
    BATCH_TIMEOUT_SEC,
    REGION_TIMEOUT_SEC,
    RegionContentRecognizer,
    merge_results,
)

__all__ = [
    # Result types
    "BarcodeReading",
    "OCRFragment",
    "RegionReading",
    # Base classes
    "BarcodeDecoder",
    "OCREngine",
    # Factory
    "available_barcode_decoders",
    "available_ocr_engines",
    "create_barcode_decoder",
    "create_ocr_engine",
    "register_barcode_decoder",
    "register_ocr_engine",
    # Recognizer
    "BATCH_TIMEOUT_SEC",
    "REGION_TIMEOUT_SEC",
    "RegionContentRecognizer",
    "merge_results",
]
