"""
Recognition Engine Factory

Factory for creating OCR engines and barcode decoders by name. Engine
modules are imported lazily so optional backends only load when used.
"""

import importlib
from typing import Dict, Type, Union

from .base import BarcodeDecoder, OCREngine


# Registries of available engines ("module.Class" or a class)
_OCR_REGISTRY: Dict[str, Union[str, type]] = {
    "tesseract": "tesseract_engine.TesseractOCREngine",
}

_DECODER_REGISTRY: Dict[str, Union[str, type]] = {
    "opencv": "opencv_decoder.OpenCVBarcodeDecoder",
}

# Cache for loaded classes
_CLASS_CACHE: Dict[str, type] = {}


def _load_class(registry: Dict[str, Union[str, type]], key: str) -> type:
    """Lazily load an engine class by registry key."""
    entry = registry[key]
    if isinstance(entry, type):
        return entry

    if entry in _CLASS_CACHE:
        return _CLASS_CACHE[entry]

    module_name, class_name = entry.rsplit(".", 1)
    module = importlib.import_module(f".{module_name}", package=__package__)
    engine_class = getattr(module, class_name)

    _CLASS_CACHE[entry] = engine_class
    return engine_class


def create_ocr_engine(engine_type: str = "tesseract", **config) -> OCREngine:
    """
    Create an OCR engine by type.

    Args:
        engine_type: Engine type identifier. Available types:
            - "tesseract" (default): pytesseract word-level recognition
        **config: Engine-specific configuration options:
            For "tesseract":
                - lang: Tesseract language code (default "eng")
                - psm: Page segmentation mode (default 6)
                - min_confidence: Drop words below this (0.0-1.0)

    Returns:
        Configured OCREngine instance

    Raises:
        ValueError: If engine_type is not recognized

    Example:
        engine = create_ocr_engine("tesseract", lang="eng+deu")
        fragments = engine.recognize(crop)
    """
    if engine_type not in _OCR_REGISTRY:
        available = ", ".join(_OCR_REGISTRY.keys())
        raise ValueError(f"Unknown OCR engine type: {engine_type}. Available: {available}")

    engine = _load_class(_OCR_REGISTRY, engine_type)()
    if config:
        engine.configure(**config)
    return engine


def create_barcode_decoder(decoder_type: str = "opencv", **config) -> BarcodeDecoder:
    """
    Create a barcode decoder by type.

    Args:
        decoder_type: Decoder type identifier. Available types:
            - "opencv" (default): cv2 1D barcode + QR code detectors

    Raises:
        ValueError: If decoder_type is not recognized
    """
    if decoder_type not in _DECODER_REGISTRY:
        available = ", ".join(_DECODER_REGISTRY.keys())
        raise ValueError(f"Unknown barcode decoder type: {decoder_type}. Available: {available}")

    decoder = _load_class(_DECODER_REGISTRY, decoder_type)()
    if config:
        decoder.configure(**config)
    return decoder


def register_ocr_engine(name: str, engine_class: type) -> None:
    """
    Register a custom OCR engine type.

    Example:
        class MyEngine(OCREngine):
            ...

        register_ocr_engine("custom", MyEngine)
    """
    if not issubclass(engine_class, OCREngine):
        raise TypeError(f"{engine_class} must be a subclass of OCREngine")
    _OCR_REGISTRY[name] = engine_class


def register_barcode_decoder(name: str, decoder_class: type) -> None:
    """Register a custom barcode decoder type."""
    if not issubclass(decoder_class, BarcodeDecoder):
        raise TypeError(f"{decoder_class} must be a subclass of BarcodeDecoder")
    _DECODER_REGISTRY[name] = decoder_class


def available_ocr_engines() -> list[str]:
    return list(_OCR_REGISTRY.keys())


def available_barcode_decoders() -> list[str]:
    return list(_DECODER_REGISTRY.keys())
