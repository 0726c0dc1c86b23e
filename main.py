"""
labelscan - Entry Point

Builds the matching pipeline from settings and scans still images or a
video against templates given on the command line.

Example:
    python main.py scan photo.jpg --template invoice.png:invoice_regions.json
    python main.py scan photo.jpg --template label.png --mode label_detection --model label.onnx
    python main.py watch clip.mp4 --template label.png:regions.json --debug
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import cv2
from PyQt5.QtCore import QCoreApplication

from labelscan.debug import DEBUG_DIR, save_debug_image
from labelscan.detection import LabelDetector, OpenCVSegmentationModel
from labelscan.geometry import Rect
from labelscan.matching import MatchMode, TemplateFeatureStore, TemplateMatcher
from labelscan.pipeline import MatchingOrchestrator, ScanResult, VideoCaptureSource
from labelscan.pipeline.worker import ScanWorker
from labelscan.recognition import (
    RegionContentRecognizer,
    create_barcode_decoder,
    create_ocr_engine,
)
from labelscan.settings import load_settings
from labelscan.templates import InMemoryTemplateRepository, RegionType, TemplateRegion


# Configure logging - output to both console and file
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
    handlers=[
        logging.StreamHandler(),  # Console output
        logging.FileHandler("labelscan.log", mode='w', encoding='utf-8')  # File output
    ]
)
logger = logging.getLogger(__name__)


def load_regions(path: Path) -> List[TemplateRegion]:
    """
    Read region definitions from a JSON list.

    Each entry: {"name": str, "type": "TEXT"|"BARCODE", "bounds": [left, top, right, bottom]}
    with optional "sort_order".
    """
    with open(path, 'r', encoding='utf-8') as f:
        entries = json.load(f)

    regions = []
    for index, entry in enumerate(entries):
        left, top, right, bottom = entry["bounds"]
        regions.append(TemplateRegion(
            id=index + 1,
            name=entry["name"],
            region_type=RegionType(entry.get("type", "TEXT").upper()),
            bounds=Rect(float(left), float(top), float(right), float(bottom)),
            sort_order=int(entry.get("sort_order", index)),
        ))
    return regions


class Application:
    """
    Composition root.

    Creates the matcher, recognizer, repository and (optionally) the label
    detector once and wires them into a MatchingOrchestrator.
    """

    def __init__(self, settings: dict, model_path: Optional[Path] = None, debug_mode: bool = False):
        self.settings = settings
        self.debug_mode = debug_mode or settings.get("debug_enabled", False)
        self.mode = MatchMode(settings.get("match_mode", MatchMode.COARSE.value))

        store = TemplateFeatureStore(Path(settings["feature_dir"]))
        self.repository = InMemoryTemplateRepository()
        self.recognizer = RegionContentRecognizer(
            ocr_engine=create_ocr_engine(settings["ocr_engine"]),
            barcode_decoder=create_barcode_decoder(settings["barcode_decoder"]),
            enhance_regions=settings["enhance_regions"],
            region_timeout_sec=settings["region_timeout_sec"],
            batch_timeout_sec=settings["batch_timeout_sec"],
        )

        label_detector = None
        if model_path is not None:
            label_detector = LabelDetector(OpenCVSegmentationModel(model_path))
        elif self.mode is MatchMode.LABEL_DETECTION:
            raise ValueError("label_detection mode requires --model")

        self.orchestrator = MatchingOrchestrator(
            matcher=TemplateMatcher(store),
            recognizer=self.recognizer,
            repository=self.repository,
            label_detector=label_detector,
            max_match_dimension=settings["max_match_dimension"],
            min_acceptable_confidence=settings["min_acceptable_confidence"],
        )

    def add_template(self, entry: str) -> None:
        """Register a template from "image[:regions.json]"."""
        image_path, _, regions_path = entry.partition(":")
        image = cv2.imread(image_path)
        if image is None:
            raise FileNotFoundError(f"Could not read template image: {image_path}")

        regions = load_regions(Path(regions_path)) if regions_path else []
        self.orchestrator.create_template(Path(image_path).stem, image, regions)

    def scan_images(self, paths: List[str]) -> int:
        """Scan each image once. Returns the number of matched images."""
        matched = 0
        for path in paths:
            frame = cv2.imread(path)
            if frame is None:
                logger.error(f"Could not read image: {path}")
                continue

            result = self.orchestrator.scan(frame, self.mode)
            self.report(path, result)
            if result.success:
                matched += 1
            result.release()
        return matched

    def watch(self, source: str) -> int:
        """Run the live worker over a video until it ends."""
        app = QCoreApplication.instance() or QCoreApplication(sys.argv)
        worker = ScanWorker(
            self.orchestrator,
            VideoCaptureSource(int(source) if source.isdigit() else source),
            mode=self.mode,
            cooldown_ms=self.settings["match_cooldown_ms"],
            auto_match_threshold=self.settings["auto_match_threshold"],
        )
        worker.match_ready.connect(lambda result: self.report(source, result))
        worker.guidance_needed.connect(lambda message: logger.warning(message))
        worker.error_occurred.connect(lambda message: logger.error(f"Worker error: {message}"))
        worker.finished.connect(app.quit)

        worker.start()
        exit_code = app.exec_()
        worker.wait()
        return exit_code

    def report(self, name: str, result: ScanResult) -> None:
        outcome = result.outcome
        logger.info(f"{name}: {outcome.summary()}")
        for region in outcome.transformed_regions:
            content = region.recognized_content or "<none>"
            logger.info(f"  {region.name} [{region.recognized_format or '-'}] "
                        f"{content} ({region.recognition_confidence:.2f})")

        if self.debug_mode and result.image is not None:
            path = DEBUG_DIR / f"debug_{Path(name).stem}.png"
            save_debug_image(result.image, None, outcome, str(path))

    def shutdown(self) -> None:
        self.recognizer.close()


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="labelscan - match labels against templates and read their regions"
    )
    parser.add_argument("command", choices=["scan", "watch"],
                        help="scan still images, or watch a video/camera index")
    parser.add_argument("inputs", nargs="+", help="Image paths (scan) or one video source (watch)")
    parser.add_argument(
        "--template", "-t",
        action="append", required=True,
        help="Template image, optionally with regions: image.png[:regions.json]"
    )
    parser.add_argument(
        "--mode", "-m",
        choices=[m.value for m in MatchMode],
        help="Match mode (default: from settings)"
    )
    parser.add_argument("--model", type=Path, help="Segmentation model for label detection")
    parser.add_argument("--config", "-c", type=Path, help="Settings file (default: config.json)")
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Enable debug mode (save annotated images)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug-level logging")
    return parser.parse_args()


def main():
    """Build the pipeline and run the requested command."""
    args = parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    settings = load_settings(args.config)
    if args.mode:
        settings["match_mode"] = args.mode

    application = Application(settings, model_path=args.model, debug_mode=args.debug)
    try:
        for entry in args.template:
            application.add_template(entry)

        if args.command == "watch":
            return application.watch(args.inputs[0])

        matched = application.scan_images(args.inputs)
        logger.info(f"Matched {matched}/{len(args.inputs)} images")
        return 0 if matched else 1
    finally:
        application.shutdown()


if __name__ == "__main__":
    sys.exit(main())
