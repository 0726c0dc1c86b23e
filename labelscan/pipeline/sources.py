"""
Frame Sources

Minimal frame providers for the scan worker: still images and anything
cv2.VideoCapture can open.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Something that yields BGR frames until it is exhausted."""

    @abstractmethod
    def grab_frame(self) -> Optional[np.ndarray]:
        """
        Next frame, or None if none is available right now.

        Check `exhausted` to tell a temporary gap from the end of input.
        """
        pass

    @property
    def exhausted(self) -> bool:
        return False

    def release(self) -> None:
        pass

    def get_status_string(self) -> str:
        return self.__class__.__name__


class ImageFileSource(FrameSource):
    """Yields each image file once, in order."""

    def __init__(self, paths: Sequence[Union[str, Path]]):
        self._paths: List[Path] = [Path(p) for p in paths]
        self._index = 0

    @property
    def exhausted(self) -> bool:
        return self._index >= len(self._paths)

    def grab_frame(self) -> Optional[np.ndarray]:
        while not self.exhausted:
            path = self._paths[self._index]
            self._index += 1
            frame = cv2.imread(str(path))
            if frame is not None:
                return frame
            logger.warning(f"Could not read image: {path}")
        return None

    def get_status_string(self) -> str:
        return f"Images {min(self._index, len(self._paths))}/{len(self._paths)}"


class VideoCaptureSource(FrameSource):
    """Video file or stream opened with cv2.VideoCapture."""

    def __init__(self, source: Union[str, int]):
        self.source = source
        self._capture = cv2.VideoCapture(source)
        self._ended = not self._capture.isOpened()
        if self._ended:
            logger.error(f"Could not open video source: {source}")
        self.frames_read = 0

    @property
    def exhausted(self) -> bool:
        return self._ended

    def grab_frame(self) -> Optional[np.ndarray]:
        if self._ended:
            return None
        ok, frame = self._capture.read()
        if not ok:
            self._ended = True
            return None
        self.frames_read += 1
        return frame

    def release(self) -> None:
        self._capture.release()
        self._ended = True

    def get_status_string(self) -> str:
        return f"Video {self.source} (frame {self.frames_read})"
