"""
Scan Worker Module for labelscan

Provides a background QThread worker that pulls frames from a source and
feeds the live scan session. Communicates with the UI via Qt signals for
thread-safe updates.
"""

import logging
import time
from datetime import datetime
from typing import List, Optional

import numpy as np
from PyQt5.QtCore import QThread, pyqtSignal

from ..debug import DEBUG_DIR, save_debug_image
from ..detection import DetectionResult
from ..matching import MatchMode
from .live import LiveScanSession
from .orchestrator import MatchingOrchestrator, ScanResult
from .sources import FrameSource


# Configure module logger
logger = logging.getLogger(__name__)


class ScanWorker(QThread):
    """
    Background worker thread for the scan pipeline.

    Runs a loop that grabs a frame, hands it to the LiveScanSession (which
    drops it if a match is in flight) and throttles to the FPS cap.

    Signals:
        status_changed(str): Worker status changes
        match_ready(object): ScanResult of each finished match attempt
        detection_changed(object): DetectionResult per frame (label mode)
        guidance_needed(str): Many consecutive misses
        error_occurred(str): Unexpected error in a cycle
        fps_update(float, float): (current_fps, fps_cap)

    Example:
        worker = ScanWorker(orchestrator, VideoCaptureSource(0))
        worker.match_ready.connect(ui.show_result)
        worker.start()
        # ...
        worker.request_stop()
        worker.wait()
    """

    # Signals for UI updates (thread-safe)
    status_changed = pyqtSignal(str)
    match_ready = pyqtSignal(object)
    detection_changed = pyqtSignal(object)
    guidance_needed = pyqtSignal(str)
    error_occurred = pyqtSignal(str)
    fps_update = pyqtSignal(float, float)

    # Performance constants
    MIN_FRAME_TIME_MS = 33  # ~30 FPS cap
    FPS_CAP = 30.0
    FPS_WINDOW_SIZE = 10    # Rolling average window

    def __init__(self, orchestrator: MatchingOrchestrator, source: FrameSource,
                 mode: MatchMode = MatchMode.COARSE, cooldown_ms: int = 300,
                 auto_match_threshold: float = 0.5):
        """
        Initialize the scan worker.

        Args:
            orchestrator: Configured matching pipeline
            source: Frame provider, released when the worker stops
            mode: COARSE or LABEL_DETECTION
            cooldown_ms: Pause after each match attempt
            auto_match_threshold: Detection confidence that triggers a match
        """
        super().__init__()
        self.source = source
        self._running = False
        self._frame_times: List[float] = []

        self.session = LiveScanSession(
            orchestrator,
            mode=mode,
            cooldown_ms=cooldown_ms,
            auto_match_threshold=auto_match_threshold,
            on_result=self._on_result,
            on_detection=self._on_detection,
            on_guidance=self.guidance_needed.emit,
        )

        # Debug image support
        self._last_frame: Optional[np.ndarray] = None
        self._last_detection: Optional[DetectionResult] = None
        self._last_result: Optional[ScanResult] = None

    def run(self):
        """
        Main worker loop. Called when thread starts.

        Stops when requested or when the source runs dry, then waits for
        the in-flight match and releases the source.
        """
        self._running = True
        self._frame_times.clear()

        logger.info("Scan worker started")
        self.status_changed.emit("Running")

        while self._running:
            frame_start = time.perf_counter()

            try:
                self._process_cycle()
            except Exception as e:
                logger.exception("Error in worker cycle")
                self.error_occurred.emit(str(e))

            # Calculate frame time and FPS
            frame_time_ms = (time.perf_counter() - frame_start) * 1000
            self._update_fps(frame_time_ms)

            # Throttle to maintain FPS cap
            if frame_time_ms < self.MIN_FRAME_TIME_MS:
                self.msleep(int(self.MIN_FRAME_TIME_MS - frame_time_ms))

        # Cleanup
        self.session.close()
        self.source.release()
        self.status_changed.emit("Stopped")
        logger.info("Scan worker stopped")

    def _process_cycle(self):
        """
        Single iteration of the worker loop.

        Grabs a frame and offers it to the live session.
        """
        frame = self.source.grab_frame()
        if frame is None:
            if self.source.exhausted:
                logger.info(f"Frame source exhausted: {self.source.get_status_string()}")
                self._running = False
            return

        self._last_frame = frame
        if not self.session.submit_frame(frame):
            logger.debug("Frame dropped, match in flight")

    def _on_result(self, result: ScanResult) -> None:
        self._last_result = result
        self.match_ready.emit(result)

    def _on_detection(self, detection: DetectionResult) -> None:
        self._last_detection = detection
        self.detection_changed.emit(detection)

    def set_mode(self, mode: MatchMode) -> None:
        logger.info(f"Match mode change requested: {mode.value}")
        self.session.mode = mode

    def request_stop(self):
        """
        Request the worker to stop gracefully.

        The worker will complete its current cycle before stopping.
        Use wait() after calling this to block until stopped.
        """
        logger.info("Stop requested")
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def _update_fps(self, frame_time_ms: float) -> None:
        """
        Update FPS rolling average and emit signal.

        Args:
            frame_time_ms: Time taken for current frame in milliseconds
        """
        self._frame_times.append(frame_time_ms)
        if len(self._frame_times) > self.FPS_WINDOW_SIZE:
            self._frame_times.pop(0)

        avg_frame_time = sum(self._frame_times) / len(self._frame_times)
        # Throttling means a cycle never takes less than MIN_FRAME_TIME_MS
        avg_frame_time = max(avg_frame_time, float(self.MIN_FRAME_TIME_MS))
        self.fps_update.emit(1000.0 / avg_frame_time, self.FPS_CAP)

    def save_debug_image(self) -> Optional[str]:
        """
        Save the last frame with detection/match annotations.

        Returns:
            Path to saved file, or None if no frame available
        """
        if self._last_frame is None:
            logger.warning("No frame available for debug image")
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:-3]
        filepath = DEBUG_DIR / f"debug_{timestamp}.png"

        # Region coordinates refer to result.image (the rectified label in
        # label mode), detection coordinates to the raw frame
        result = self._last_result
        if result is not None and result.image is not None:
            save_debug_image(result.image, None, result.outcome, str(filepath))
        else:
            save_debug_image(self._last_frame, self._last_detection, None, str(filepath))

        logger.info(f"Debug image saved: {filepath}")
        return str(filepath)
