"""Worker implementations for the acquisition/localization pipeline."""

import queue
import threading
from typing import Callable, List, Optional

from accumulator import HistogramAccumulator, HistogramSnapshot
from config import AcquisitionConfig
from frames import Frame, FrameSource
from image_processor import FrameProcessor
from localizer import Localization, PhasorLocalizer

from pipeline.persistence import RawFrameWriter
from pipeline.types import LocalizationRow, QueuedFrame


class AcquisitionWorker:
    """Producer: pull frames from the source, optionally persist, offer to the queue."""

    def __init__(
        self,
        *,
        config: AcquisitionConfig,
        source: FrameSource,
        frame_queue: queue.Queue,
        stop_event: threading.Event,
        on_acquired_frame: Callable[[int], None],
        on_queued_frame: Callable[[], None],
        on_dropped_frame: Callable[[], None],
        on_source_finished: Callable[[], None],
        on_error: Callable[[str], None],
        writer: Optional[RawFrameWriter] = None,
    ):
        self.config = config
        self.source = source
        self.frame_queue = frame_queue
        self.stop_event = stop_event
        self.on_acquired_frame = on_acquired_frame
        self.on_queued_frame = on_queued_frame
        self.on_dropped_frame = on_dropped_frame
        self.on_source_finished = on_source_finished
        self.on_error = on_error
        self.writer = writer
        self.error: Optional[str] = None

    def run(self) -> None:
        try:
            for index in range(self.config.frames):
                if self.stop_event.is_set():
                    break

                pixels = self.source.next_frame(index)
                if pixels is None:
                    # Source completion (e.g. camera sequence ended)
                    break

                frame = Frame(pixels=pixels, index=index, origin=type(self.source).__name__)
                saved_filename = self.writer.write(pixels, index) if self.writer else ""

                # Never block acquisition: a full queue drops the frame from processing only.
                try:
                    self.frame_queue.put_nowait(QueuedFrame(frame=frame, saved_filename=saved_filename))
                    self.on_queued_frame()
                except queue.Full:
                    self.on_dropped_frame()

                self.on_acquired_frame(index + 1)
        except Exception as exc:
            self.error = f"Acquisition error: {exc}"
            self.on_error(self.error)
        finally:
            if self.writer is not None:
                try:
                    self.writer.close()
                except Exception as exc:
                    self.on_error(f"Error closing raw frame writer: {exc}")
            self.on_source_finished()


class LocalizationWorker:
    """Consumer: detect, localize and accumulate each queued frame."""

    def __init__(
        self,
        *,
        config: AcquisitionConfig,
        frame_queue: queue.Queue,
        stop_event: threading.Event,
        producer_done: threading.Event,
        processor: FrameProcessor,
        localizer: PhasorLocalizer,
        accumulator: HistogramAccumulator,
        on_rows: Callable[[List[LocalizationRow]], None],
        on_processed_frame: Callable[[], None],
        on_failed_frame: Callable[[], None],
        on_queue_depth: Callable[[int], None],
        on_error: Callable[[str], None],
        display_sink: Optional[Callable[[HistogramSnapshot], None]] = None,
        preview_sink: Optional[Callable[[Frame, List[Localization]], None]] = None,
        poll_timeout_s: float = 0.1,
    ):
        self.config = config
        self.frame_queue = frame_queue
        self.stop_event = stop_event
        self.producer_done = producer_done
        self.processor = processor
        self.localizer = localizer
        self.accumulator = accumulator
        self.on_rows = on_rows
        self.on_processed_frame = on_processed_frame
        self.on_failed_frame = on_failed_frame
        self.on_queue_depth = on_queue_depth
        self.on_error = on_error
        self.display_sink = display_sink
        self.preview_sink = preview_sink
        self.poll_timeout_s = poll_timeout_s

    def _refresh_display(self) -> None:
        if self.display_sink is None:
            return
        snapshot = self.accumulator.snapshot()
        if snapshot is None:
            return
        try:
            self.display_sink(snapshot)
        except Exception as exc:
            self.on_error(f"Display refresh failed: {exc}")

    def _show_preview(self, frame: Frame, locs: List[Localization]) -> None:
        if self.preview_sink is None:
            return
        try:
            self.preview_sink(frame, locs)
        except Exception as exc:
            self.on_error(f"Live preview failed for frame {frame.index + 1}: {exc}")

    def process(self, item: QueuedFrame) -> List[Localization]:
        """Run one frame through detection, localization and accumulation."""
        frame = item.frame
        peaks = self.processor.process(frame.pixels)
        locs = self.localizer.localize(frame.pixels, peaks, item.frame_number)

        self.accumulator.ensure_geometry(frame.width, frame.height, self.config.magnification)
        self.accumulator.accumulate(locs)
        self.on_rows([LocalizationRow.from_localization(loc, item.saved_filename) for loc in locs])

        if self.config.show_live_preview:
            self._show_preview(frame, locs)
        if item.frame_number % self.config.update_interval == 0:
            self._refresh_display()
        return locs

    def _finished(self) -> bool:
        # Stop ends the producer; queued frames are still processed.
        return (self.producer_done.is_set() or self.stop_event.is_set()) and self.frame_queue.empty()

    def run(self) -> None:
        while True:
            if self._finished():
                break
            self.on_queue_depth(self.frame_queue.qsize())

            try:
                item = self.frame_queue.get(timeout=self.poll_timeout_s)
            except queue.Empty:
                if self._finished():
                    break
                continue

            try:
                self.process(item)
                self.on_processed_frame()
            except Exception as exc:
                self.on_failed_frame()
                self.on_error(f"Processing error in frame {item.frame_number}: {exc}")

        self._refresh_display()
