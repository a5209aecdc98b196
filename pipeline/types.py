"""Data types used by the acquisition/localization pipeline."""

import logging
import threading
from typing import List, NamedTuple, Optional, Protocol

import numpy as np

from frames import Frame
from image_processor import Peak
from localizer import Localization


class PipelineStartError(RuntimeError):
    """A run could not be started (source unavailable, output directory uncreatable)."""


class QueuedFrame(NamedTuple):
    """A frame handed from the producer to the consumer."""

    frame: Frame
    saved_filename: str

    @property
    def frame_number(self) -> int:
        """1-based frame number used in exports."""
        return self.frame.index + 1


class LocalizationRow(NamedTuple):
    """One export row: Frame,Amplitude,X,Y[,Filename]."""

    frame: int
    amplitude: float
    x: float
    y: float
    filename: str

    @classmethod
    def from_localization(cls, loc: Localization, filename: str) -> 'LocalizationRow':
        return cls(loc.frame, loc.amplitude, loc.x, loc.y, filename)


class PreviewResult(NamedTuple):
    """Single-frame detection preview."""

    raw_display: np.ndarray
    processed_display: np.ndarray
    peaks: List[Peak]


class PipelineSummary(NamedTuple):
    """Run counters exposed to the caller."""

    acquired_frames: int
    queued_frames: int
    dropped_frames: int
    processed_frames: int
    failed_frames: int
    localizations: int
    producer_error: Optional[str]
    export_error: Optional[str]


class ProgressListener(Protocol):
    """Observer for acquisition progress and queue state."""

    def init_progress(self, total_frames: int) -> None: ...

    def update_progress(self, processed: int, total_frames: int, eta_text: str) -> None: ...

    def close_progress(self) -> None: ...

    def on_source_finished(self) -> None: ...

    def on_queue_depth(self, pending_count: int) -> None: ...


class NullProgress:
    """Observer used when the caller does not supply one."""

    def init_progress(self, total_frames: int) -> None:
        pass

    def update_progress(self, processed: int, total_frames: int, eta_text: str) -> None:
        pass

    def close_progress(self) -> None:
        pass

    def on_source_finished(self) -> None:
        pass

    def on_queue_depth(self, pending_count: int) -> None:
        pass


class SafeProgress:
    """Serializes observer calls and keeps observer failures out of the pipeline."""

    def __init__(self, listener: Optional[ProgressListener]):
        self._listener = listener if listener is not None else NullProgress()
        self._lock = threading.Lock()

    def _call(self, name: str, *args) -> None:
        with self._lock:
            try:
                getattr(self._listener, name)(*args)
            except Exception as exc:
                logging.error(f"Progress listener {name} failed: {exc}")

    def init_progress(self, total_frames: int) -> None:
        self._call('init_progress', total_frames)

    def update_progress(self, processed: int, total_frames: int, eta_text: str) -> None:
        self._call('update_progress', processed, total_frames, eta_text)

    def close_progress(self) -> None:
        self._call('close_progress')

    def on_source_finished(self) -> None:
        self._call('on_source_finished')

    def on_queue_depth(self, pending_count: int) -> None:
        self._call('on_queue_depth', pending_count)
