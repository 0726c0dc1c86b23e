"""
Region Content Recognizer

Crops every projected region out of the frame and recognizes it on a
bounded thread pool. Inside each region task a barcode branch and an OCR
branch race on their own threads against a shared per-region deadline;
the whole batch is bounded by a second deadline.

Each task returns its reading through its own future. Regions are only
written after the batch join, so late results are never applied.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Optional, Sequence

import numpy as np

from ..geometry import Rect
from ..imaging import crop, enhance, is_empty
from ..matching.result import TransformedRegion
from .base import BarcodeDecoder, OCREngine
from .result import BarcodeReading, OCRFragment, RegionReading

logger = logging.getLogger(__name__)


# Concurrency limits
MAX_WORKERS = 4
REGION_TIMEOUT_SEC = 3.0
BATCH_TIMEOUT_SEC = 10.0

TEXT_FORMAT = "TEXT"
BARCODE_CONFIDENCE = 1.0


def merge_results(barcodes: Optional[List[BarcodeReading]],
                  fragments: Optional[List[OCRFragment]]) -> RegionReading:
    """
    Combine the two branches of a region.

    A decoded barcode wins outright. Otherwise valid OCR fragments are
    joined with single spaces and their confidences averaged.
    """
    if barcodes:
        first = barcodes[0]
        return RegionReading(first.content, first.format, BARCODE_CONFIDENCE)

    valid = [f for f in (fragments or []) if f.is_valid()]
    if valid:
        text = " ".join(f.text.strip() for f in valid)
        confidence = sum(f.confidence for f in valid) / len(valid)
        return RegionReading(text, TEXT_FORMAT, confidence)

    return RegionReading()


class _RegionRace:
    """Result slots for the two branches of one region task."""

    def __init__(self):
        self._lock = threading.Lock()
        self._closed = False
        self.barcodes: Optional[List[BarcodeReading]] = None
        self.fragments: Optional[List[OCRFragment]] = None

    def offer_barcodes(self, readings: List[BarcodeReading]) -> None:
        with self._lock:
            if not self._closed:
                self.barcodes = list(readings)

    def offer_fragments(self, fragments: List[OCRFragment]) -> None:
        with self._lock:
            if not self._closed:
                self.fragments = list(fragments)

    def close(self) -> RegionReading:
        """Stop accepting results and merge what arrived in time."""
        with self._lock:
            self._closed = True
            return merge_results(self.barcodes, self.fragments)


class RegionContentRecognizer:
    """
    Concurrent barcode/OCR recognition of projected regions.

    Example:
        with RegionContentRecognizer(ocr_engine, decoder) as recognizer:
            recognizer.recognize_all(frame, outcome.transformed_regions)
        print(outcome.region_contents())
    """

    def __init__(self,
                 ocr_engine: Optional[OCREngine] = None,
                 barcode_decoder: Optional[BarcodeDecoder] = None,
                 enhance_regions: bool = True,
                 region_timeout_sec: float = REGION_TIMEOUT_SEC,
                 batch_timeout_sec: float = BATCH_TIMEOUT_SEC,
                 max_workers: Optional[int] = None):
        self.ocr_engine = ocr_engine
        self.barcode_decoder = barcode_decoder
        self.enhance_regions = enhance_regions
        self.region_timeout_sec = region_timeout_sec
        self.batch_timeout_sec = batch_timeout_sec

        workers = min(max_workers or MAX_WORKERS, MAX_WORKERS, os.cpu_count() or 1)
        self.max_workers = workers
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="region")
        logger.debug(f"Region recognizer pool: {workers} workers")

    def set_enhance(self, enabled: bool) -> None:
        self.enhance_regions = enabled

    def recognize_all(self, frame: np.ndarray, regions: Sequence[TransformedRegion]) -> None:
        """
        Fill recognized_content/format/confidence on each region in place.

        Regions that fail, time out or cannot be cropped keep empty content.
        """
        if is_empty(frame) or not regions:
            return

        start = time.perf_counter()
        futures = {}
        for region in regions:
            image = self.crop_region(frame, region)
            if image is None:
                logger.debug(f"Region '{region.name}' crop is empty, skipped")
                continue
            future = self._executor.submit(self._recognize_image, image)
            futures[future] = region

        if not futures:
            return

        done, not_done = wait(futures, timeout=self.batch_timeout_sec)
        for future in done:
            region = futures[future]
            try:
                reading = future.result()
            except Exception:
                logger.exception(f"Recognition failed for region '{region.name}'")
                continue
            _apply(region, reading)

        if not_done:
            for future in not_done:
                future.cancel()
            logger.warning(f"Recognition batch timed out: {len(not_done)}/{len(futures)} regions unfinished")

        recognized = sum(1 for r in regions if r.has_content)
        logger.info(f"Recognized {recognized}/{len(regions)} regions in "
                    f"{(time.perf_counter() - start) * 1000:.1f}ms")

    def recognize_region(self, frame: np.ndarray, region: TransformedRegion) -> bool:
        """
        Serial variant for a single region.

        Returns:
            True if content was recognized
        """
        image = self.crop_region(frame, region)
        if image is None:
            return False
        _apply(region, self._recognize_image(image))
        return region.has_content

    @staticmethod
    def crop_region(frame: np.ndarray, region: TransformedRegion) -> Optional[np.ndarray]:
        """Crop with the region type's expansion (doubled vertically for text)."""
        region_type = region.source_region.region_type
        bounds = region.bounds
        dx = bounds.width * region_type.expand_ratio
        dy = bounds.height * region_type.expand_ratio * region_type.vertical_factor
        expanded = Rect(bounds.left - dx, bounds.top - dy, bounds.right + dx, bounds.bottom + dy)
        return crop(frame, expanded)

    def _recognize_image(self, image: np.ndarray) -> RegionReading:
        if self.enhance_regions:
            image = enhance(image)

        deadline = time.monotonic() + self.region_timeout_sec
        race = _RegionRace()
        branches = []
        if self.barcode_decoder is not None:
            branches.append(threading.Thread(target=self._barcode_branch,
                                             args=(image, race, deadline), daemon=True))
        if self.ocr_engine is not None:
            branches.append(threading.Thread(target=self._ocr_branch,
                                             args=(image, race), daemon=True))

        for branch in branches:
            branch.start()
        for branch in branches:
            branch.join(max(0.0, deadline - time.monotonic()))

        if any(branch.is_alive() for branch in branches):
            logger.debug("Region recognition hit its timeout")
        return race.close()

    def _barcode_branch(self, image: np.ndarray, race: _RegionRace, deadline: float) -> None:
        finished = threading.Event()

        def on_success(readings: List[BarcodeReading]) -> None:
            race.offer_barcodes(readings)
            finished.set()

        def on_failure(error: Exception) -> None:
            logger.debug(f"Barcode decode failed: {error}")
            finished.set()

        try:
            self.barcode_decoder.decode(image, 0, on_success, on_failure)
        except Exception as e:
            logger.warning(f"Barcode decoder {self.barcode_decoder.name} raised: {e}")
            return
        finished.wait(max(0.0, deadline - time.monotonic()))

    def _ocr_branch(self, image: np.ndarray, race: _RegionRace) -> None:
        try:
            fragments = self.ocr_engine.recognize(image)
        except Exception as e:
            logger.warning(f"OCR engine {self.ocr_engine.name} raised: {e}")
            return
        race.offer_fragments(fragments)

    def close(self) -> None:
        """Shut the pool down without waiting for stragglers."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "RegionContentRecognizer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _apply(region: TransformedRegion, reading: RegionReading) -> None:
    if not reading.has_content:
        return
    region.recognized_content = reading.content
    region.recognized_format = reading.format
    region.recognition_confidence = reading.confidence
