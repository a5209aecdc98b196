"""
Phasor sub-pixel localization.
"""

import math
from typing import Iterable, List, NamedTuple, Optional, Tuple

import numpy as np

from fft_engine import FftEngine

TWO_PI = 2.0 * math.pi


class Localization(NamedTuple):
    """One emitter position in raw-frame pixel units."""

    frame: int
    amplitude: float
    x: float
    y: float


# ==============================
# Phase -> position
# ==============================

def wrap_phase(angle: float) -> float:
    """Map a positive phase onto (-2*pi, 0]; non-positive phases are kept."""
    if angle > 0:
        angle -= TWO_PI
    return angle


def phase_to_position(angle: float, roi_size: int) -> float:
    return abs(wrap_phase(angle)) / (TWO_PI / roi_size)


def phasor_offset(spectrum: np.ndarray, roi_size: int) -> Tuple[float, float]:
    """Return the (x, y) offset inside the region from its first-order coefficients."""
    fx = spectrum[0, 1]
    fy = spectrum[1, 0]
    ang_x = math.atan2(fx.imag, fx.real)
    ang_y = math.atan2(fy.imag, fy.real)
    return phase_to_position(ang_x, roi_size), phase_to_position(ang_y, roi_size)


# ==============================
# Localizer
# ==============================

class PhasorLocalizer:
    def __init__(self, roi_size: int, fft_engine: Optional[FftEngine] = None):
        if roi_size < 3 or roi_size % 2 == 0:
            raise ValueError(f"roi_size must be an odd integer >= 3, got {roi_size}")
        self.roi_size = int(roi_size)
        self.half = self.roi_size // 2
        self.fft_engine = fft_engine if fft_engine is not None else FftEngine()

    def localize(
        self,
        raw: np.ndarray,
        peaks: Iterable[Tuple[int, int]],
        frame_index: int,
    ) -> List[Localization]:
        """Localize every candidate peak whose region fits inside ``raw``.

        Regions are cut from the unfiltered frame; peaks closer than
        roi_size // 2 to any edge are skipped.
        """
        raw = np.asarray(raw, dtype=np.float64)
        h, w = raw.shape
        half = self.half
        roi = self.roi_size

        locs: List[Localization] = []
        for px, py in peaks:
            if py - half < 0 or py + half + 1 > h or px - half < 0 or px + half + 1 > w:
                continue

            region = raw[py - half:py + half + 1, px - half:px + half + 1]
            spectrum = self.fft_engine.fft2(region)
            pos_x, pos_y = phasor_offset(spectrum, roi)

            locs.append(Localization(
                frame=frame_index,
                amplitude=float(region.max()),
                x=px - half + pos_x,
                y=py - half + pos_y,
            ))
        return locs


def localize(
    raw: np.ndarray,
    peaks: Iterable[Tuple[int, int]],
    roi_size: int,
    frame_index: int,
    fft_engine: Optional[FftEngine] = None,
) -> List[Localization]:
    return PhasorLocalizer(roi_size, fft_engine).localize(raw, peaks, frame_index)
