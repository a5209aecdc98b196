"""Persistence helpers for pipeline workers."""

import logging
import os
from typing import Iterable, Optional

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend
matplotlib.set_loglevel("warning")
import matplotlib.pyplot as plt
import numpy as np
import tifffile

from accumulator import HistogramSnapshot
from config import FRAME_FILENAME_PATTERN, STACK_FILENAME, AcquisitionConfig
from pipeline.types import LocalizationRow


def to_uint16(pixels: np.ndarray) -> np.ndarray:
    """Convert a raw raster to uint16 for TIFF storage.

    uint8 is scaled by 257 to fill the 16-bit range, uint16 is kept as is,
    anything else is min-max scaled to 0..65535.
    """
    pixels = np.asarray(pixels)
    if pixels.dtype == np.uint16:
        return pixels
    if pixels.dtype == np.uint8:
        return pixels.astype(np.uint16) * 257
    data = pixels.astype(np.float64)
    lo = float(data.min())
    value_range = float(data.max()) - lo
    if value_range <= 0:
        value_range = 1.0
    return ((data - lo) / value_range * 65535.0).astype(np.uint16)


class RawFrameWriter:
    """Writes acquired frames to the output directory.

    A single multi-page stack is written unless per-frame files are requested.
    """

    def __init__(self, output_dir: str, single_stack: bool = True, per_frame_files: bool = False):
        self.output_dir = output_dir
        self.stacking = single_stack and not per_frame_files
        self._stack: Optional[tifffile.TiffWriter] = None

    @classmethod
    def for_config(cls, config: AcquisitionConfig) -> Optional['RawFrameWriter']:
        if not config.persists_raw_frames:
            return None
        return cls(
            config.output_dir,
            single_stack=config.save_as_single_stack,
            per_frame_files=config.save_as_per_frame_files,
        )

    def write(self, pixels: np.ndarray, index: int) -> str:
        """Persist one frame and return the file name it was saved under."""
        data = to_uint16(pixels)
        if self.stacking:
            if self._stack is None:
                self._stack = tifffile.TiffWriter(os.path.join(self.output_dir, STACK_FILENAME))
            self._stack.write(data)
            return STACK_FILENAME

        filename = FRAME_FILENAME_PATTERN.format(index)
        tifffile.imwrite(os.path.join(self.output_dir, filename), data)
        return filename

    def close(self) -> None:
        if self._stack is not None:
            self._stack.close()
            self._stack = None
            logging.info(f"Wrote raw stack {os.path.join(self.output_dir, STACK_FILENAME)}")


def format_row(row: LocalizationRow, include_filename: bool) -> str:
    line = f"{row.frame},{row.amplitude:.6f},{row.x:.6f},{row.y:.6f}"
    if include_filename:
        line += f",{row.filename}"
    return line


def write_localizations_csv(path: str, rows: Iterable[LocalizationRow], include_filename: bool = True) -> int:
    """Write rows as CSV and return how many were written."""
    header = "Frame,Amplitude,X,Y,Filename" if include_filename else "Frame,Amplitude,X,Y"
    count = 0
    with open(path, 'w', newline='') as fh:
        fh.write(header + "\n")
        for row in rows:
            fh.write(format_row(row, include_filename) + "\n")
            count += 1
    logging.info(f"Saved {count} localizations to {path}")
    return count


def save_histogram_png(path: str, snapshot: HistogramSnapshot, cmap: str = "hot") -> None:
    """Render the histogram canvas scaled to [0, running max]."""
    plt.imsave(
        path,
        snapshot.canvas,
        cmap=cmap,
        vmin=0.0,
        vmax=max(1.0, snapshot.running_max),
    )
    logging.info(f"Saved localization histogram to {path}")
