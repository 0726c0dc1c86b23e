"""
Scanning pipeline: orchestration and live frame handling.

The Qt worker lives in labelscan.pipeline.worker and is imported
explicitly by GUI code.
"""

from .orchestrator import MatchingOrchestrator, ScanResult
from .live import LiveScanSession, SingleFlight, LOST_FRAME_THRESHOLD
from .sources import FrameSource, ImageFileSource, VideoCaptureSource

__all__ = [
    "MatchingOrchestrator",
    "ScanResult",
    "LiveScanSession",
    "SingleFlight",
    "LOST_FRAME_THRESHOLD",
    "FrameSource",
    "ImageFileSource",
    "VideoCaptureSource",
]
