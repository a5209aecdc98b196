"""Runtime coordinator for the threaded acquisition/localization pipeline."""

import logging
import os
import queue
import threading
import time
from typing import Callable, List, Optional

from accumulator import HistogramAccumulator, HistogramSnapshot
from config import (
    CSV_FILENAME,
    ETA_ALPHA,
    HISTOGRAM_FILENAME,
    QUEUE_CAPACITY,
    QUEUE_POLL_TIMEOUT_S,
    STOP_JOIN_TIMEOUT_S,
    AcquisitionConfig,
)
from fft_engine import FftEngine
from frames import Frame, FrameSource
from image_processor import FrameProcessor, display_image
from localizer import Localization, PhasorLocalizer

from pipeline.persistence import RawFrameWriter, save_histogram_png, write_localizations_csv
from pipeline.types import (
    LocalizationRow,
    PipelineStartError,
    PipelineSummary,
    PreviewResult,
    ProgressListener,
    SafeProgress,
)
from pipeline.workers import AcquisitionWorker, LocalizationWorker


def format_eta(seconds: float) -> str:
    """Render a duration as "12s", "1m 03s" or "1h 02m 03s"."""
    total = max(0, int(round(seconds)))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


class EtaEstimator:
    """Exponentially weighted per-frame cost, seeded by the first sample.

    The instantaneous sample is elapsed-since-start / frames-so-far, so the
    average settles on the true mean frame period.
    """

    def __init__(self, alpha: float = ETA_ALPHA):
        self.alpha = alpha
        self.avg_frame_s: Optional[float] = None
        self._start: Optional[float] = None

    def start(self, now: Optional[float] = None) -> None:
        self._start = time.monotonic() if now is None else now
        self.avg_frame_s = None

    def observe(self, instant_s: float) -> float:
        if self.avg_frame_s is None:
            self.avg_frame_s = instant_s
        else:
            self.avg_frame_s = self.alpha * instant_s + (1.0 - self.alpha) * self.avg_frame_s
        return self.avg_frame_s

    def update(self, processed: int, total: int, now: Optional[float] = None) -> float:
        """Fold in progress after ``processed`` frames; return the ETA in seconds."""
        if self._start is None:
            self.start(now)
        now = time.monotonic() if now is None else now
        elapsed = now - self._start
        instant = elapsed / processed if processed > 0 else 0.0
        avg = self.observe(instant)
        return max(0, total - processed) * avg


class PipelineRuntime:
    """Owns the producer/consumer threads, the bounded queue and run counters."""

    def __init__(
        self,
        *,
        accumulator: Optional[HistogramAccumulator] = None,
        fft_engine: Optional[FftEngine] = None,
        progress: Optional[ProgressListener] = None,
        error_logger: Optional[Callable[[str], None]] = None,
        display_sink: Optional[Callable[[HistogramSnapshot], None]] = None,
        preview_sink: Optional[Callable[[Frame, List[Localization]], None]] = None,
        queue_capacity: int = QUEUE_CAPACITY,
        poll_timeout_s: float = QUEUE_POLL_TIMEOUT_S,
        stop_timeout_s: float = STOP_JOIN_TIMEOUT_S,
    ):
        self.accumulator = accumulator if accumulator is not None else HistogramAccumulator()
        self.fft_engine = fft_engine if fft_engine is not None else FftEngine()
        self.progress = SafeProgress(progress)
        self.error_logger = error_logger if error_logger is not None else logging.error
        self.display_sink = display_sink
        self.preview_sink = preview_sink
        self.queue_capacity = queue_capacity
        self.poll_timeout_s = poll_timeout_s
        self.stop_timeout_s = stop_timeout_s

        self.frame_queue: queue.Queue = queue.Queue(maxsize=queue_capacity)
        self.eta = EtaEstimator()

        self._config: Optional[AcquisitionConfig] = None
        self._source: Optional[FrameSource] = None
        self._acquisition_worker: Optional[AcquisitionWorker] = None
        self._localization_worker: Optional[LocalizationWorker] = None
        self._producer_thread: Optional[threading.Thread] = None
        self._consumer_thread: Optional[threading.Thread] = None

        self._stop_event = threading.Event()
        self._producer_done = threading.Event()
        self._finished = threading.Event()
        self._finished.set()

        self._lock = threading.Lock()
        self._rows: List[LocalizationRow] = []
        self._reset_counters()

    def _reset_counters(self) -> None:
        with self._lock:
            self._rows = []
            self._acquired_frames = 0
            self._queued_frames = 0
            self._dropped_frames = 0
            self._processed_frames = 0
            self._failed_frames = 0
            self._export_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return not self._finished.is_set()

    def start(self, config: AcquisitionConfig, frame_source: FrameSource) -> None:
        """Validate resources and start the producer and consumer threads."""
        if self.is_running():
            raise RuntimeError("A run is already in progress")

        if config.output_dir is not None:
            try:
                os.makedirs(config.output_dir, exist_ok=True)
            except OSError as exc:
                self._fail_start(f"Failed to create output directory {config.output_dir}: {exc}")

        try:
            frame_source.start(config)
        except Exception as exc:
            self._fail_start(f"Frame source unavailable: {exc}")

        self._config = config
        self._source = frame_source
        self._reset_counters()
        self._drain_queue(self.frame_queue)
        self._stop_event.clear()
        self._producer_done.clear()
        self._finished.clear()

        self._acquisition_worker = AcquisitionWorker(
            config=config,
            source=frame_source,
            frame_queue=self.frame_queue,
            stop_event=self._stop_event,
            on_acquired_frame=self._on_acquired_frame,
            on_queued_frame=self._on_queued_frame,
            on_dropped_frame=self._on_dropped_frame,
            on_source_finished=self._on_source_finished,
            on_error=self.error_logger,
            writer=RawFrameWriter.for_config(config),
        )
        self._localization_worker = LocalizationWorker(
            config=config,
            frame_queue=self.frame_queue,
            stop_event=self._stop_event,
            producer_done=self._producer_done,
            processor=FrameProcessor(
                config.background_sigma,
                config.smoothing_sigma,
                config.min_peak_distance,
                config.peak_threshold,
            ),
            localizer=PhasorLocalizer(config.roi_size, self.fft_engine),
            accumulator=self.accumulator,
            on_rows=self._on_rows,
            on_processed_frame=self._on_processed_frame,
            on_failed_frame=self._on_failed_frame,
            on_queue_depth=self.progress.on_queue_depth,
            on_error=self.error_logger,
            display_sink=self.display_sink,
            preview_sink=self.preview_sink,
            poll_timeout_s=self.poll_timeout_s,
        )

        self.progress.init_progress(config.frames)
        self.eta.start()
        logging.info(f"Starting run: {config.frames} frames, roi={config.roi_size}, mag={config.magnification}")

        self._producer_thread = threading.Thread(
            target=self._acquisition_worker.run, name="SMLM-Acq-Thread", daemon=True
        )
        self._consumer_thread = threading.Thread(
            target=self._run_consumer, name="SMLM-Proc-Thread", daemon=True
        )
        self._producer_thread.start()
        self._consumer_thread.start()

    def request_stop(self, timeout_s: Optional[float] = None) -> bool:
        """Ask both loops to finish and wait a bounded time. Returns True if both exited."""
        timeout_s = self.stop_timeout_s if timeout_s is None else timeout_s
        self._stop_event.set()
        source = self._source
        if source is not None:
            try:
                source.stop()
            except Exception as exc:
                self.error_logger(f"Error stopping frame source: {exc}")

        stopped = True
        current = threading.current_thread()
        for thread in (self._producer_thread, self._consumer_thread):
            if thread is None or thread is current:
                continue
            thread.join(timeout=timeout_s)
            stopped = stopped and not thread.is_alive()
        return stopped

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the run has been finalized."""
        return self._finished.wait(timeout)

    def preview(self, config: AcquisitionConfig, frame_source: FrameSource) -> PreviewResult:
        """Detect peaks on a single frame without localizing or accumulating."""
        frame_source.start(config)
        try:
            pixels = frame_source.next_frame(0)
        finally:
            frame_source.stop()
        if pixels is None:
            raise PipelineStartError("Frame source returned no frame for preview")

        processor = FrameProcessor(
            config.background_sigma,
            config.smoothing_sigma,
            config.min_peak_distance,
            config.peak_threshold,
        )
        processed = processor.analyze(pixels)
        return PreviewResult(
            raw_display=display_image(pixels),
            processed_display=display_image(processed.smoothed),
            peaks=processed.peaks,
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def results(self) -> List[LocalizationRow]:
        with self._lock:
            return list(self._rows)

    def get_summary(self) -> PipelineSummary:
        producer_error = self._acquisition_worker.error if self._acquisition_worker else None
        with self._lock:
            return PipelineSummary(
                acquired_frames=self._acquired_frames,
                queued_frames=self._queued_frames,
                dropped_frames=self._dropped_frames,
                processed_frames=self._processed_frames,
                failed_frames=self._failed_frames,
                localizations=len(self._rows),
                producer_error=producer_error,
                export_error=self._export_error,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fail_start(self, message: str) -> None:
        self.error_logger(message)
        raise PipelineStartError(message)

    def _run_consumer(self) -> None:
        try:
            self._localization_worker.run()
        except Exception as exc:
            self.error_logger(f"Error in localization worker: {exc}")
        finally:
            self._finalize()

    def _finalize(self) -> None:
        producer = self._producer_thread
        if producer is not None and producer.is_alive():
            producer.join(timeout=self.stop_timeout_s)
        try:
            self.progress.close_progress()
            self._export()
        finally:
            summary = self.get_summary()
            logging.info(
                f"Run finished: acquired={summary.acquired_frames}, processed={summary.processed_frames}, "
                f"dropped={summary.dropped_frames}, localizations={summary.localizations}"
            )
            self._finished.set()

    def _export(self) -> None:
        config = self._config
        if config is None or config.output_dir is None:
            return

        rows = self.results()
        try:
            write_localizations_csv(
                os.path.join(config.output_dir, CSV_FILENAME),
                rows,
                include_filename=config.persists_raw_frames,
            )
            snapshot = self.accumulator.snapshot()
            if snapshot is not None:
                save_histogram_png(os.path.join(config.output_dir, HISTOGRAM_FILENAME), snapshot)
        except Exception as exc:
            message = f"Failed to write results: {exc}"
            with self._lock:
                self._export_error = message
            self.error_logger(message)

    def _on_acquired_frame(self, acquired: int) -> None:
        with self._lock:
            self._acquired_frames = acquired
        total = self._config.frames
        eta_s = self.eta.update(acquired, total)
        self.progress.update_progress(acquired, total, format_eta(eta_s))

    def _on_queued_frame(self) -> None:
        with self._lock:
            self._queued_frames += 1

    def _on_dropped_frame(self) -> None:
        with self._lock:
            self._dropped_frames += 1

    def _on_processed_frame(self) -> None:
        with self._lock:
            self._processed_frames += 1

    def _on_failed_frame(self) -> None:
        with self._lock:
            self._failed_frames += 1

    def _on_rows(self, rows: List[LocalizationRow]) -> None:
        with self._lock:
            self._rows.extend(rows)

    def _on_source_finished(self) -> None:
        self._producer_done.set()
        self.progress.on_source_finished()

    @staticmethod
    def _drain_queue(q: queue.Queue) -> None:
        while True:
            try:
                q.get_nowait()
            except queue.Empty:
                break
