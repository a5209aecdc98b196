"""Magnified 2D histogram of localizations, shared between the consumer and the display."""

import threading
from typing import Iterable, NamedTuple, Optional, Tuple

import numpy as np

from localizer import Localization


class HistogramSnapshot(NamedTuple):
    """Copy of the canvas plus the running max used for display scaling."""

    canvas: np.ndarray  # (cam_h * mag, cam_w * mag) float32
    running_max: float
    magnification: int


class HistogramAccumulator:
    """Magnified 2D histogram of localizations.

    Coordinates are in raw-frame pixels; each one is scaled by the
    magnification and rounded half-up to a canvas cell. The canvas is
    recreated (counts discarded) whenever frame geometry or magnification
    changes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._canvas: Optional[np.ndarray] = None
        self._running_max = 1.0
        self._cam_w = -1
        self._cam_h = -1
        self._mag = 1

    @property
    def geometry(self) -> Optional[Tuple[int, int, int]]:
        """(cam_w, cam_h, mag) of the live canvas, or None before the first frame."""
        with self._lock:
            if self._canvas is None:
                return None
            return self._cam_w, self._cam_h, self._mag

    def ensure_geometry(self, cam_w: int, cam_h: int, magnification: int) -> bool:
        """Allocate a zeroed canvas if geometry changed. Returns True when reallocated."""
        mag = max(1, int(magnification))
        with self._lock:
            if (
                self._canvas is not None
                and self._cam_w == cam_w
                and self._cam_h == cam_h
                and self._mag == mag
            ):
                return False
            self._cam_w = int(cam_w)
            self._cam_h = int(cam_h)
            self._mag = mag
            self._canvas = np.zeros((self._cam_h * mag, self._cam_w * mag), dtype=np.float32)
            self._running_max = 1.0
            return True

    def accumulate(self, localizations: Iterable[Localization]) -> int:
        """Add one count per in-bounds localization. Returns the number added."""
        locs = list(localizations)
        if not locs:
            return 0

        with self._lock:
            if self._canvas is None:
                return 0
            h, w = self._canvas.shape
            xs = np.array([loc.x for loc in locs], dtype=np.float64)
            ys = np.array([loc.y for loc in locs], dtype=np.float64)
            ix = np.floor(xs * self._mag + 0.5).astype(np.int64)
            iy = np.floor(ys * self._mag + 0.5).astype(np.int64)

            inside = (ix >= 0) & (ix < w) & (iy >= 0) & (iy < h)
            if not inside.any():
                return 0
            ix, iy = ix[inside], iy[inside]

            np.add.at(self._canvas, (iy, ix), 1.0)
            # Counts only grow, so the touched cells hold the new maximum candidates.
            touched_max = float(self._canvas[iy, ix].max())
            if touched_max > self._running_max:
                self._running_max = touched_max
            return int(ix.size)

    def snapshot(self) -> Optional[HistogramSnapshot]:
        with self._lock:
            if self._canvas is None:
                return None
            return HistogramSnapshot(
                canvas=self._canvas.copy(),
                running_max=self._running_max,
                magnification=self._mag,
            )

    def clear(self) -> None:
        """Zero all cells and reset the running max, keeping geometry."""
        with self._lock:
            if self._canvas is not None:
                self._canvas.fill(0.0)
            self._running_max = 1.0

    def reset(self) -> None:
        """Drop the canvas and stored geometry."""
        with self._lock:
            self._canvas = None
            self._running_max = 1.0
            self._cam_w = self._cam_h = -1
            self._mag = 1
