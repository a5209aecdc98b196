"""Application configuration."""

from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

# Pipeline / queueing
QUEUE_CAPACITY = 100            # Bounded producer -> consumer queue (good for 512x512 frames)
QUEUE_POLL_TIMEOUT_S = 0.1      # Consumer poll wait before re-checking termination
STOP_JOIN_TIMEOUT_S = 0.2       # Per-thread join budget when a stop is requested
CAMERA_POLL_INTERVAL_S = 0.001  # Live source wait while the camera buffer is empty

# Progress estimation
ETA_ALPHA = 0.12

# FFT engine
SMALL_DFT_MAX = 9  # Square regions up to 9x9 use the direct DFT

# Gaussian blur kernel accuracy (kernel edge value relative to the centre)
BLUR_ACCURACY = 0.02

# Acquisition defaults
DEFAULT_FRAMES = 1000
DEFAULT_EXPOSURE_MS = 20
DEFAULT_MAGNIFICATION = 4
DEFAULT_UPDATE_INTERVAL = 50
DEFAULT_BACKGROUND_SIGMA = 10.0
DEFAULT_SMOOTHING_SIGMA = 1.0
DEFAULT_MIN_PEAK_DISTANCE = 3
DEFAULT_PEAK_THRESHOLD = 20.0
DEFAULT_ROI_SIZE = 7

# Export file names
CSV_FILENAME = 'localizations.csv'
HISTOGRAM_FILENAME = 'localization_histogram.png'
STACK_FILENAME = 'frames_stack.tif'
FRAME_FILENAME_PATTERN = 'frame_{:06d}.tif'


@dataclass(frozen=True)
class AcquisitionConfig:
    """Immutable snapshot of run parameters, captured once when a run starts."""

    frames: int = DEFAULT_FRAMES
    exposure_ms: int = DEFAULT_EXPOSURE_MS
    magnification: int = DEFAULT_MAGNIFICATION
    update_interval: int = DEFAULT_UPDATE_INTERVAL
    background_sigma: float = DEFAULT_BACKGROUND_SIGMA
    smoothing_sigma: float = DEFAULT_SMOOTHING_SIGMA
    min_peak_distance: int = DEFAULT_MIN_PEAK_DISTANCE
    peak_threshold: float = DEFAULT_PEAK_THRESHOLD
    roi_size: int = DEFAULT_ROI_SIZE
    save_raw: bool = False
    output_dir: Optional[str] = None
    simulation_mode: bool = False
    simulation_folder: Optional[str] = None
    save_as_single_stack: bool = True
    save_as_per_frame_files: bool = False
    show_live_preview: bool = False

    def __post_init__(self):
        if self.frames <= 0:
            raise ValueError(f"frames must be > 0, got {self.frames}")
        if self.exposure_ms <= 0:
            raise ValueError(f"exposure_ms must be > 0, got {self.exposure_ms}")
        if self.magnification < 1:
            raise ValueError(f"magnification must be >= 1, got {self.magnification}")
        if self.update_interval <= 0:
            raise ValueError(f"update_interval must be > 0, got {self.update_interval}")
        if self.background_sigma <= 0:
            raise ValueError(f"background_sigma must be > 0, got {self.background_sigma}")
        if self.smoothing_sigma < 0:
            raise ValueError(f"smoothing_sigma must be >= 0, got {self.smoothing_sigma}")
        if self.min_peak_distance < 1:
            raise ValueError(f"min_peak_distance must be >= 1, got {self.min_peak_distance}")
        if self.roi_size < 3 or self.roi_size % 2 == 0:
            raise ValueError(f"roi_size must be an odd integer >= 3, got {self.roi_size}")

    @property
    def persists_raw_frames(self) -> bool:
        """True when raw frames are written to the output directory."""
        return self.save_raw and self.output_dir is not None

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> 'AcquisitionConfig':
        """Build a config from a flat option mapping (e.g. a parsed JSON file).

        Unknown keys raise ValueError so typos do not silently fall back to defaults.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValueError(f"Unknown configuration options: {', '.join(unknown)}")
        return cls(**dict(options))
