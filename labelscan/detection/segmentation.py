"""
Segmentation Model Interface

The detector only needs `infer(image) -> ProbabilityMap`; the network
itself is a black box. OpenCVSegmentationModel runs an exported model
(ONNX or TFLite) through cv2.dnn.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

from ..imaging import to_bgr
from .result import ProbabilityMap

logger = logging.getLogger(__name__)


# Default model input resolution (width, height)
DEFAULT_INPUT_SIZE = (256, 256)


class SegmentationModel(ABC):
    """Produces a document probability map at a fixed model resolution."""

    @abstractmethod
    def infer(self, image) -> ProbabilityMap:
        """
        Run segmentation on an image.

        Args:
            image: BGR numpy array or PIL Image

        Returns:
            ProbabilityMap at the model's output resolution
        """
        pass

    @property
    @abstractmethod
    def output_size(self) -> Tuple[int, int]:
        """(width, height) of the produced probability maps."""
        pass


class OpenCVSegmentationModel(SegmentationModel):
    """
    cv2.dnn backed segmentation model.

    Expects a single-channel sigmoid output. Input pixels are scaled to
    [-1, 1] in RGB order.
    """

    def __init__(self, model_path: Path, input_size: Tuple[int, int] = DEFAULT_INPUT_SIZE):
        model_path = Path(model_path)
        if not model_path.exists():
            raise FileNotFoundError(f"Segmentation model not found: {model_path}")
        self._net = cv2.dnn.readNet(str(model_path))
        self._input_size = input_size
        logger.info(f"Loaded segmentation model {model_path.name} ({input_size[0]}x{input_size[1]})")

    @property
    def output_size(self) -> Tuple[int, int]:
        return self._input_size

    def infer(self, image) -> ProbabilityMap:
        bgr = to_bgr(image)
        if bgr.ndim == 2:
            bgr = cv2.cvtColor(bgr, cv2.COLOR_GRAY2BGR)
        blob = cv2.dnn.blobFromImage(
            bgr, scalefactor=1.0 / 127.5, size=self._input_size,
            mean=(127.5, 127.5, 127.5), swapRB=True,
        )
        self._net.setInput(blob)
        output = self._net.forward()

        width, height = self._input_size
        probs = np.squeeze(output)
        if probs.shape != (height, width):
            probs = cv2.resize(probs.astype(np.float32), (width, height))
        return ProbabilityMap(probs)
