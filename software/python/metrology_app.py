"""
Coin Metrology System - Application
Per-frame sequencing: edges, contours, classification, metrology, rendering
"""

from __future__ import annotations

import argparse
import contextlib
import json
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np

from camera_interface import CameraError, CameraInterface
from config.settings import (CAMERA_MAX_READ_FAILURES, CAMERA_RETRY_BACKOFF_MAX_S, CAMERA_RETRY_BACKOFF_S,
                             DEBUG_CONFIG, DEFAULT_REFERENCE_OBJECT, DISPLAY_CONFIG, PHONE_POLICIES,
                             MetrologyConfig, build_metrology_config, get_available_reference_objects,
                             get_reference_diameter)
from image_processing import ImagePipeline
from measurement_algorithms import MeasurementBundle, MeasurementLog, compute_measurements
from object_detection import CoinDetector, CoinResult, PhoneDetector, PhoneResult
from scene_renderer import SceneRenderer


def log_with_timestamp(message):
    """Print message with timestamp"""
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    print(f"[{timestamp}] APP: {message}")


@dataclass
class FrameReport:
    """Everything derived from one frame"""
    edges: np.ndarray
    contours: List[np.ndarray] = field(default_factory=list)
    coin: CoinResult = field(default_factory=CoinResult)
    phone: PhoneResult = field(default_factory=PhoneResult)
    measurements: MeasurementBundle = field(default_factory=MeasurementBundle)

    def to_dict(self):
        return {
            'contour_count': len(self.contours),
            'coin': self.coin.to_dict(),
            'phone': self.phone.to_dict(),
            'measurements': self.measurements.to_dict()
        }


class MetrologyApp:
    """
    Frame orchestrator

    Frames are processed one at a time and nothing measured in one frame is
    reused for the next.
    """

    def __init__(self, camera=None, config: MetrologyConfig = None, pipeline=None, renderer=None,
                 measurement_log: Optional[MeasurementLog] = None, show_window=True,
                 max_read_failures=CAMERA_MAX_READ_FAILURES, retry_backoff=CAMERA_RETRY_BACKOFF_S,
                 retry_backoff_max=CAMERA_RETRY_BACKOFF_MAX_S):
        self.camera = camera
        self.config = config or build_metrology_config()
        self.pipeline = pipeline or ImagePipeline()
        self.coin_detector = CoinDetector(self.config)
        self.phone_detector = PhoneDetector(self.config)
        self.renderer = renderer or SceneRenderer()
        self.measurement_log = measurement_log
        self.show_window = show_window
        self.max_read_failures = max_read_failures
        self.retry_backoff = retry_backoff
        self.retry_backoff_max = retry_backoff_max

    def process_frame(self, frame) -> FrameReport:
        """Run the full classification and metrology chain on one frame"""
        edges = self.pipeline.process_frame(frame)
        contours = self.pipeline.find_contours(edges)

        coin = self.coin_detector.detect_best_coin(contours)
        phone = self.phone_detector.detect_best_phone(contours)
        measurements = compute_measurements(coin, phone, self.config)

        return FrameReport(edges=edges, contours=contours, coin=coin, phone=phone,
                           measurements=measurements)

    def annotate(self, frame, report: FrameReport):
        return self.renderer.render_frame(frame, report)

    def process_image(self, path, output_path=None) -> FrameReport:
        """Measure a still image, optionally writing the annotated copy"""
        frame = cv2.imread(str(path))
        if frame is None:
            raise FileNotFoundError(f"Failed to read image: {path}")

        report = self.process_frame(frame)
        if self.measurement_log is not None:
            self.measurement_log.record(report.measurements, frame_index=0)

        if output_path:
            annotated = self.annotate(frame.copy(), report)
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            cv2.imwrite(str(output_path), annotated)
            log_with_timestamp(f"Annotated image saved: {output_path}")
        return report

    def run(self, max_frames=None):
        """
        Main processing loop

        A missed read is retried with exponential backoff; after
        max_read_failures consecutive misses CameraError is raised. The
        camera is stopped on every exit path.

        Returns:
            Number of frames processed
        """
        if self.camera is None:
            raise CameraError("No camera configured")

        frame_count = 0
        log_every = DEBUG_CONFIG['log_every_n_frames']
        try:
            if not getattr(self.camera, 'is_running', False):
                self.camera.start()
            log_with_timestamp("Metrology loop started. Press ESC to exit.")

            while max_frames is None or frame_count < max_frames:
                frame = self._read_frame_with_retry()
                report = self.process_frame(frame)
                frame_count += 1

                if self.measurement_log is not None:
                    self.measurement_log.record(report.measurements, frame_index=frame_count)

                if log_every and frame_count % log_every == 0:
                    log_with_timestamp(f"{frame_count} frames processed, "
                                       f"edge density {self.pipeline.edge_density(report.edges):.3f}")

                if self.show_window:
                    self.annotate(frame, report)
                    cv2.imshow(DISPLAY_CONFIG['window_name'], frame)
                    if cv2.waitKey(1) & 0xFF == DISPLAY_CONFIG['exit_key']:
                        break
        finally:
            self.camera.stop()
            if self.show_window:
                cv2.destroyAllWindows()
            log_with_timestamp(f"Metrology loop ended after {frame_count} frames")

        return frame_count

    def _read_frame_with_retry(self):
        delay = self.retry_backoff
        failures = 0
        while True:
            frame = self.camera.get_frame()
            if frame is not None:
                return frame

            failures += 1
            log_with_timestamp(f"Error: Failed to capture frame ({failures}/{self.max_read_failures})")
            if failures >= self.max_read_failures:
                raise CameraError(f"No frame after {failures} consecutive attempts")
            if delay > 0:
                time.sleep(delay)
            delay = min(delay * 2, self.retry_backoff_max)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate distance, tilt and phone dimensions using a reference coin.")
    parser.add_argument("--camera", type=int, default=None, help="Camera index for live mode")
    parser.add_argument("--image", type=Path, default=None, help="Measure a still image instead of the camera")
    parser.add_argument("--output", type=Path, default=None, help="Annotated image output (image mode)")
    parser.add_argument("--coin", default=DEFAULT_REFERENCE_OBJECT, choices=get_available_reference_objects(),
                        help="Reference coin in view")
    parser.add_argument("--focal-length", type=float, default=None, help="Focal length in pixels")
    parser.add_argument("--phone-policy", choices=PHONE_POLICIES, default=None)
    parser.add_argument("--max-frames", type=int, default=None)
    parser.add_argument("--log-file", type=Path, default=None,
                        help="Export per-frame measurements (.json or .csv) when the run ends")
    parser.add_argument("--no-display", action="store_true", help="Do not open a preview window")
    parser.add_argument("--debug", action="store_true", help="Trace classifier candidates")
    return parser


def config_from_args(args) -> MetrologyConfig:
    overrides = {'coin_diameter_mm': get_reference_diameter(args.coin), 'debug': args.debug}
    if args.focal_length is not None:
        overrides['focal_length_px'] = args.focal_length
    if args.phone_policy is not None:
        overrides['phone_policy'] = args.phone_policy
    return build_metrology_config(**overrides)


def export_log(measurement_log, log_file):
    """Export the run log, as CSV when the file suffix asks for it"""
    if measurement_log is None or not measurement_log.measurement_history:
        return None
    fmt = 'csv' if log_file.suffix.lower() == '.csv' else 'json'
    return measurement_log.export(str(log_file), fmt)


def measure_image(args, config, measurement_log) -> int:
    """Image mode; stdout carries only the JSON report, log lines go to stderr"""
    app = MetrologyApp(config=config, measurement_log=measurement_log, show_window=False)
    with contextlib.redirect_stdout(sys.stderr):
        try:
            report = app.process_image(args.image, args.output)
        except FileNotFoundError as e:
            log_with_timestamp(f"Fatal: {e}")
            return 1
        export_log(measurement_log, args.log_file)

    json.dump(report.to_dict(), sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    measurement_log = MeasurementLog(debug_mode=args.debug) if args.log_file else None

    if args.image is not None:
        return measure_image(args, config, measurement_log)

    camera = CameraInterface() if args.camera is None else CameraInterface(camera_id=args.camera)
    app = MetrologyApp(camera=camera, config=config, measurement_log=measurement_log,
                       show_window=not args.no_display)
    try:
        app.run(max_frames=args.max_frames)
    except CameraError as e:
        log_with_timestamp(f"Fatal: {e}")
        return 1
    finally:
        export_log(measurement_log, args.log_file)

    return 0


if __name__ == "__main__":
    sys.exit(main())
