"""
Recognition Engine Base Interfaces

Abstract base classes for the OCR engine and barcode decoder contracts.
"""

from abc import ABC, abstractmethod
from typing import Callable, List

import numpy as np

from .result import BarcodeReading, OCRFragment


class OCREngine(ABC):
    """
    Abstract base class for OCR engines.

    Implementations must be safe to call from several worker threads at
    once, since regions are recognized concurrently.
    """

    @abstractmethod
    def recognize(self, image: np.ndarray) -> List[OCRFragment]:
        """
        Recognize text in a cropped region.

        Args:
            image: BGR or grayscale crop

        Returns:
            Text fragments found in the crop (possibly empty)
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Engine identifier.

        Returns:
            String name identifying this engine type (e.g., "tesseract")
        """
        pass

    def configure(self, **kwargs) -> None:
        """
        Configure engine parameters.

        Override in subclasses to support runtime configuration.
        Default implementation does nothing.

        Args:
            **kwargs: Engine-specific configuration options
        """
        pass


class BarcodeDecoder(ABC):
    """
    Abstract base class for barcode decoders.

    Decoding is callback based: exactly one of on_success / on_failure is
    invoked per call, from any thread.
    """

    @abstractmethod
    def decode(self, image: np.ndarray, rotation: int,
               on_success: Callable[[List[BarcodeReading]], None],
               on_failure: Callable[[Exception], None]) -> None:
        """
        Decode barcodes in a cropped region.

        Args:
            image: BGR or grayscale crop
            rotation: Clockwise rotation of the crop in degrees (0/90/180/270)
            on_success: Called with the decoded barcodes (possibly empty)
            on_failure: Called with the error if decoding failed
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    def configure(self, **kwargs) -> None:
        pass
