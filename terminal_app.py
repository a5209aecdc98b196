"""
Terminal-only application entry point.

Runs frame acquisition (TIFF folder replay or the simulated camera),
phasor localization and histogram accumulation.
Prints progress and a run summary to the terminal.
"""

import argparse
import datetime
import json
import logging
import sys
import time
from typing import Optional, Sequence

from config import (
    DEFAULT_BACKGROUND_SIGMA,
    DEFAULT_EXPOSURE_MS,
    DEFAULT_FRAMES,
    DEFAULT_MAGNIFICATION,
    DEFAULT_MIN_PEAK_DISTANCE,
    DEFAULT_PEAK_THRESHOLD,
    DEFAULT_ROI_SIZE,
    DEFAULT_SMOOTHING_SIGMA,
    DEFAULT_UPDATE_INTERVAL,
    AcquisitionConfig,
)
from frames import FrameSourceError, open_frame_source
from pipeline.runtime import PipelineRuntime
from pipeline.types import PipelineStartError
from simulator import EmitterField, SimulatedCamera


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%H:%M:%S")


class TerminalProgress:
    """Prints progress lines, throttled to one per ``every`` frames."""

    def __init__(self, every: int = 50):
        self.every = max(1, every)
        self.pending = 0

    def init_progress(self, total_frames: int) -> None:
        print(f"[{_timestamp()}] Acquiring {total_frames} frames")

    def update_progress(self, processed: int, total_frames: int, eta_text: str) -> None:
        if processed % self.every == 0 or processed == total_frames:
            print(
                f"[{_timestamp()}] {processed}/{total_frames} frames | "
                f"queue: {self.pending} | ETA {eta_text}"
            )

    def close_progress(self) -> None:
        print(f"[{_timestamp()}] Processing finished")

    def on_source_finished(self) -> None:
        print(f"[{_timestamp()}] Acquisition finished, draining queue")

    def on_queue_depth(self, pending_count: int) -> None:
        self.pending = pending_count


def create_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Real-time phasor SMLM localizer")

    parser.add_argument("--config", default=None, help="JSON file with acquisition options")
    parser.add_argument("--frames", type=int, default=DEFAULT_FRAMES)
    parser.add_argument("--exposure-ms", type=int, default=DEFAULT_EXPOSURE_MS)
    parser.add_argument("--mag", dest="magnification", type=int, default=DEFAULT_MAGNIFICATION)
    parser.add_argument("--update-interval", type=int, default=DEFAULT_UPDATE_INTERVAL)
    parser.add_argument("--background-sigma", type=float, default=DEFAULT_BACKGROUND_SIGMA)
    parser.add_argument("--smoothing-sigma", type=float, default=DEFAULT_SMOOTHING_SIGMA)
    parser.add_argument("--min-peak-distance", type=int, default=DEFAULT_MIN_PEAK_DISTANCE)
    parser.add_argument("--peak-threshold", type=float, default=DEFAULT_PEAK_THRESHOLD)
    parser.add_argument("--roi-size", type=int, default=DEFAULT_ROI_SIZE)
    parser.add_argument("--output-dir", default=None, help="Directory for CSV, histogram and raw frames")
    parser.add_argument("--save-raw", action="store_true", help="Persist raw frames as TIFF")
    parser.add_argument("--per-frame-files", action="store_true", help="One TIFF per frame instead of a stack")
    parser.add_argument("--simulation-folder", default=None, help="Replay TIFF files from this folder")
    parser.add_argument("--emitters", type=int, default=20, help="Simulated camera: number of emitters")
    parser.add_argument("--seed", type=int, default=None, help="Simulated camera: random seed")
    parser.add_argument("--preview", action="store_true", help="Only detect peaks on the first frame")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def build_config(args: argparse.Namespace) -> AcquisitionConfig:
    options = dict(
        frames=args.frames,
        exposure_ms=args.exposure_ms,
        magnification=args.magnification,
        update_interval=args.update_interval,
        background_sigma=args.background_sigma,
        smoothing_sigma=args.smoothing_sigma,
        min_peak_distance=args.min_peak_distance,
        peak_threshold=args.peak_threshold,
        roi_size=args.roi_size,
        save_raw=args.save_raw,
        output_dir=args.output_dir,
        simulation_mode=args.simulation_folder is not None,
        simulation_folder=args.simulation_folder,
        save_as_single_stack=not args.per_frame_files,
        save_as_per_frame_files=args.per_frame_files,
    )
    if args.config:
        with open(args.config) as fh:
            options.update(json.load(fh))
    return AcquisitionConfig.from_mapping(options)


class LocalizerTerminalApp:
    def __init__(self, config: AcquisitionConfig, camera: Optional[SimulatedCamera] = None):
        self.config = config
        self.camera = camera
        self.runtime = PipelineRuntime(progress=TerminalProgress(every=config.update_interval))
        self.start_time = None

    def preview(self) -> None:
        source = open_frame_source(self.config, driver=self.camera)
        result = self.runtime.preview(self.config, source)
        print(f"Preview: {len(result.peaks)} candidate peaks")
        for x, y in result.peaks:
            print(f"  x={x} y={y}")

    def start(self) -> None:
        print("=== SMLM Localizer Terminal Mode ===")
        source = open_frame_source(self.config, driver=self.camera)
        self.start_time = time.time()
        self.runtime.start(self.config, source)

    def stop(self) -> None:
        print("\nStopping run...")
        if not self.runtime.request_stop():
            print("Workers still finishing in the background")

    def report(self) -> None:
        elapsed = time.time() - self.start_time
        summary = self.runtime.get_summary()
        print(f"Run duration: {elapsed:.2f} seconds")
        print(
            f"Frames acquired: {summary.acquired_frames} | processed: {summary.processed_frames} | "
            f"dropped: {summary.dropped_frames} | failed: {summary.failed_frames}"
        )
        print(f"Localizations: {summary.localizations}")
        if summary.producer_error:
            print(f"Acquisition error: {summary.producer_error}")
        if summary.export_error:
            print(f"Export error: {summary.export_error}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = create_argparser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(threadName)s: %(message)s",
    )

    try:
        config = build_config(args)
    except (OSError, ValueError) as exc:
        logging.error(f"Invalid configuration: {exc}")
        return 2

    camera = None
    if not config.simulation_mode:
        camera = SimulatedCamera(EmitterField(num_emitters=args.emitters, seed=args.seed))

    app = LocalizerTerminalApp(config, camera=camera)

    try:
        if args.preview:
            app.preview()
            return 0
        app.start()
    except PipelineStartError:
        # Already reported by the runtime
        return 1
    except FrameSourceError as exc:
        logging.error(f"Cannot start: {exc}")
        return 1

    try:
        # Run until finished or interrupted
        while not app.runtime.wait(timeout=0.5):
            pass
    except KeyboardInterrupt:
        app.stop()
        app.runtime.wait(timeout=5.0)

    app.report()
    return 0


if __name__ == "__main__":
    sys.exit(main())
