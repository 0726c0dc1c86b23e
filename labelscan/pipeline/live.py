"""
Live Scan Session

Per-frame entry point for camera-driven scanning. Frames arriving while a
detection or a match is still in flight are dropped rather than queued,
each match runs on its own thread, and a cooldown follows every match
before the next one may start.
"""

import logging
import threading
from typing import Callable, Optional

from ..detection import DetectionResult
from ..imaging import is_empty, to_bgr
from ..matching import MatchMode
from .orchestrator import MatchingOrchestrator, ScanResult

logger = logging.getLogger(__name__)


# Consecutive misses before the user gets positioning guidance
LOST_FRAME_THRESHOLD = 10
DEFAULT_COOLDOWN_MS = 300
DEFAULT_AUTO_MATCH_THRESHOLD = 0.5

GUIDANCE_MESSAGE = "No label recognized. Hold the label flat and fill the frame."


class SingleFlight:
    """Non-blocking busy flag: at most one holder at a time."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._busy = False

    def try_enter(self) -> bool:
        with self._lock:
            if self._busy:
                return False
            self._busy = True
            return True

    def exit(self) -> None:
        with self._lock:
            self._busy = False

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy


class LiveScanSession:
    """
    Single-flight, cooldown-gated scanning of a frame stream.

    Callbacks run on the session's threads; UI code should marshal them
    (ScanWorker re-emits them as Qt signals).

    Example:
        session = LiveScanSession(orchestrator, on_result=show_result)
        for frame in camera:
            session.submit_frame(frame)
        session.close()
    """

    def __init__(self,
                 orchestrator: MatchingOrchestrator,
                 mode: MatchMode = MatchMode.COARSE,
                 cooldown_ms: int = DEFAULT_COOLDOWN_MS,
                 auto_match_threshold: float = DEFAULT_AUTO_MATCH_THRESHOLD,
                 on_result: Optional[Callable[[ScanResult], None]] = None,
                 on_detection: Optional[Callable[[DetectionResult], None]] = None,
                 on_guidance: Optional[Callable[[str], None]] = None):
        self.orchestrator = orchestrator
        self.mode = mode
        self.cooldown_ms = cooldown_ms
        self.auto_match_threshold = auto_match_threshold
        self.on_result = on_result
        self.on_detection = on_detection
        self.on_guidance = on_guidance

        self._detect_flight = SingleFlight("detect")
        self._match_flight = SingleFlight("match")
        self._stop = threading.Event()
        self._match_thread: Optional[threading.Thread] = None

        self._miss_lock = threading.Lock()
        self._misses = 0
        self._guidance_shown = False

        self._stats_lock = threading.Lock()
        self._submitted = 0
        self._dropped = 0

    @property
    def is_matching(self) -> bool:
        return self._match_flight.busy

    @property
    def frames_submitted(self) -> int:
        with self._stats_lock:
            return self._submitted

    @property
    def frames_dropped(self) -> int:
        with self._stats_lock:
            return self._dropped

    @property
    def consecutive_misses(self) -> int:
        with self._miss_lock:
            return self._misses

    def submit_frame(self, frame) -> bool:
        """
        Offer a frame for processing.

        Returns:
            False if the frame was dropped because work is in flight
        """
        with self._stats_lock:
            self._submitted += 1
        if self._stop.is_set() or is_empty(frame):
            self._record_drop()
            return False
        if self._match_flight.busy or not self._detect_flight.try_enter():
            self._record_drop()
            return False

        try:
            bgr = to_bgr(frame)
            detection = None
            if self.mode is MatchMode.LABEL_DETECTION:
                detection = self.orchestrator.label_detector.detect(bgr, live=True)
                if self.on_detection is not None:
                    self.on_detection(detection)
                if not detection.detected or detection.confidence <= self.auto_match_threshold:
                    self._record_miss()
                    return True

            if not self._match_flight.try_enter():
                self._record_drop()
                return False

            self._match_thread = threading.Thread(
                target=self._run_match, args=(bgr.copy(), detection),
                name="match", daemon=True,
            )
            self._match_thread.start()
            return True
        finally:
            self._detect_flight.exit()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the current match (and its cooldown) finishes."""
        thread = self._match_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def close(self, timeout: float = 5.0) -> None:
        """Stop accepting frames and wait for an in-flight match."""
        self._stop.set()
        self.wait_idle(timeout)
        logger.info(f"Live session closed: {self.frames_submitted} frames, "
                    f"{self.frames_dropped} dropped")

    def _run_match(self, frame, detection: Optional[DetectionResult]) -> None:
        try:
            result = self.orchestrator.scan(frame, self.mode, detection=detection)
            if result.success:
                self._record_hit()
            else:
                self._record_miss()
            if self.on_result is not None:
                self.on_result(result)
        except Exception:
            logger.exception("Match attempt failed")
            self._record_miss()
        finally:
            if self.cooldown_ms > 0:
                self._stop.wait(self.cooldown_ms / 1000.0)
            self._match_flight.exit()

    def _record_drop(self) -> None:
        with self._stats_lock:
            self._dropped += 1

    def _record_hit(self) -> None:
        with self._miss_lock:
            self._misses = 0
            self._guidance_shown = False

    def _record_miss(self) -> None:
        with self._miss_lock:
            self._misses += 1
            notify = self._misses >= LOST_FRAME_THRESHOLD and not self._guidance_shown
            if notify:
                self._guidance_shown = True
        if notify and self.on_guidance is not None:
            logger.info(f"{LOST_FRAME_THRESHOLD} consecutive misses, showing guidance")
            self.on_guidance(GUIDANCE_MESSAGE)
