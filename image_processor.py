"""Frame image processing: normalization, background suppression and peak detection.

Interface contract:
- FrameProcessor.process(raw) -> List[(x, y)] candidate peaks
- FrameProcessor.analyze(raw) -> ProcessedFrame (smoothed image + peaks)

Behavior:
- Min-max normalize to [0, 255] (constant rasters pass through)
- Subtract a large-sigma Gaussian background estimate
- Small-sigma Gaussian smoothing (skipped for sigma == 0)
- Non-maximum suppression in a Chebyshev window; plateaus produce no peak
"""

import math
from typing import List, NamedTuple, Tuple

import numpy as np
from scipy.ndimage import gaussian_filter, maximum_filter

from config import BLUR_ACCURACY

# Kernel radius in sigmas at which the Gaussian falls to BLUR_ACCURACY of its peak
BLUR_TRUNCATE = math.sqrt(-2.0 * math.log(BLUR_ACCURACY))

Peak = Tuple[int, int]  # (x, y)


class ProcessedFrame(NamedTuple):
    """Background-subtracted, smoothed image and the peaks found on it."""

    smoothed: np.ndarray
    peaks: List[Peak]


def normalize(raw: np.ndarray) -> np.ndarray:
    """Min-max normalize to [0, 255]; a constant raster is returned unchanged."""
    image = np.asarray(raw, dtype=np.float64)
    lo = float(image.min())
    hi = float(image.max())
    value_range = hi - lo
    if value_range == 0:
        return image.copy()
    return (image - lo) / value_range * 255.0


def gaussian_blur(image: np.ndarray, sigma: float) -> np.ndarray:
    """Gaussian blur with edge replication; sigma == 0 returns a copy."""
    if sigma <= 0:
        return np.array(image, dtype=np.float64)
    return gaussian_filter(image, sigma, mode='nearest', truncate=BLUR_TRUNCATE)


def subtract_background(image: np.ndarray, sigma: float) -> np.ndarray:
    return image - gaussian_blur(image, sigma)


def smooth(image: np.ndarray, sigma: float) -> np.ndarray:
    return gaussian_blur(image, sigma)


def find_peaks(image: np.ndarray, min_distance: int, threshold: float) -> List[Peak]:
    """Return (x, y) of pixels >= threshold that are strictly above every other
    pixel within Chebyshev radius max(1, min_distance).

    Windows are clipped to the image. Complexity O(H * W * radius^2).
    """
    image = np.asarray(image, dtype=np.float64)
    radius = max(1, int(min_distance))
    size = 2 * radius + 1

    footprint = np.ones((size, size), dtype=bool)
    footprint[radius, radius] = False
    # Pixels outside the image never disqualify a candidate.
    neighbour_max = maximum_filter(image, footprint=footprint, mode='constant', cval=-np.inf)

    mask = (image >= threshold) & (image > neighbour_max)
    ys, xs = np.nonzero(mask)
    return [(int(x), int(y)) for y, x in zip(ys, xs)]


def display_image(image: np.ndarray) -> np.ndarray:
    """Rescale to [0, 255] float32 for previews."""
    image = np.asarray(image, dtype=np.float64)
    lo = float(image.min())
    value_range = max(1e-6, float(image.max()) - lo)
    return ((image - lo) / value_range * 255.0).astype(np.float32)


class FrameProcessor:
    """Runs the per-frame detection chain with fixed parameters."""

    def __init__(
        self,
        background_sigma: float,
        smoothing_sigma: float,
        min_peak_distance: int,
        peak_threshold: float,
    ):
        if background_sigma <= 0:
            raise ValueError("background_sigma must be positive")
        if smoothing_sigma < 0:
            raise ValueError("smoothing_sigma must be non-negative")
        self.background_sigma = float(background_sigma)
        self.smoothing_sigma = float(smoothing_sigma)
        self.min_peak_distance = int(min_peak_distance)
        self.peak_threshold = float(peak_threshold)

    def analyze(self, raw: np.ndarray) -> ProcessedFrame:
        raw = np.asarray(raw)
        if raw.ndim != 2:
            raise ValueError(f"Expected a 2D frame, got shape {raw.shape}")

        norm = normalize(raw)
        flattened = subtract_background(norm, self.background_sigma)
        smoothed = smooth(flattened, self.smoothing_sigma)
        peaks = find_peaks(smoothed, self.min_peak_distance, self.peak_threshold)
        return ProcessedFrame(smoothed=smoothed, peaks=peaks)

    def process(self, raw: np.ndarray) -> List[Peak]:
        return self.analyze(raw).peaks


def process_frame(
    raw: np.ndarray,
    background_sigma: float,
    smoothing_sigma: float,
    min_peak_distance: int,
    peak_threshold: float,
) -> List[Peak]:
    """Detect candidate peaks in one raw frame."""
    processor = FrameProcessor(background_sigma, smoothing_sigma, min_peak_distance, peak_threshold)
    return processor.process(raw)
