"""Frame records and the frame sources that feed the acquisition pipeline.

A frame source exposes one capability, ``next_frame(index)``, plus start/stop
hooks. Two variants are selected by configuration:

- ``FolderReplaySource`` replays TIFF files from a simulation folder
- ``LiveCameraSource`` pulls images from a camera driver's sequence buffer
"""

import logging
import os
import threading
import time
from typing import List, NamedTuple, Optional, Protocol

import numpy as np
import tifffile

from config import CAMERA_POLL_INTERVAL_S, AcquisitionConfig


class FrameSourceError(RuntimeError):
    """Raised when a source cannot produce a frame."""


class Frame(NamedTuple):
    """One raw raster plus its position in the acquisition sequence."""

    pixels: np.ndarray  # (height, width)
    index: int
    origin: str = ''

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])


class FrameSource(Protocol):
    """Capability interface consumed by the producer loop."""

    def start(self, config: AcquisitionConfig) -> None:
        """Prepare for a run; raise FrameSourceError if no frame can be delivered."""

    def next_frame(self, index: int) -> Optional[np.ndarray]:
        """Return the raster for ``index``, or None once the source is exhausted."""

    def stop(self) -> None:
        """Ask the source to halt. Must be idempotent."""


class CameraDriver(Protocol):
    """Subset of the camera/host API used for sequence acquisition."""

    def set_exposure(self, exposure_ms: float) -> None: ...

    def start_sequence_acquisition(self, frames: int) -> None: ...

    def stop_sequence_acquisition(self) -> None: ...

    def is_sequence_running(self) -> bool: ...

    def remaining_image_count(self) -> int: ...

    def pop_next_image(self) -> np.ndarray: ...


def list_tiff_files(folder: str) -> List[str]:
    """Return absolute paths of *.tif / *.tiff files in ``folder``, sorted by name."""
    try:
        names = os.listdir(folder)
    except OSError:
        return []
    tiffs = [n for n in names if n.lower().endswith(('.tif', '.tiff'))]
    return [os.path.abspath(os.path.join(folder, n)) for n in sorted(tiffs)]


def load_tiff_frame(path: str) -> np.ndarray:
    """Load the first page of a TIFF file as a 2D float64 raster."""
    try:
        image = tifffile.imread(path, key=0)
    except Exception as exc:
        raise FrameSourceError(f"Cannot open image: {path} ({exc})") from exc

    image = np.asarray(image)
    if image.ndim == 3:
        # RGB(A) pages are averaged down to one channel.
        image = image.mean(axis=2)
    if image.ndim != 2:
        raise FrameSourceError(f"Expected 2D image in {path}, got shape {image.shape}")
    return image.astype(np.float64)


class FolderReplaySource:
    """Replays TIFF files from a folder, cycling when more frames are requested than files exist."""

    def __init__(self, folder: str):
        self.folder = folder
        self._files: List[str] = []

    @property
    def files(self) -> List[str]:
        return list(self._files)

    def start(self, config: AcquisitionConfig) -> None:
        if not self.folder:
            raise FrameSourceError("Simulation folder not set")
        if not os.path.isdir(self.folder):
            raise FrameSourceError(f"Simulation folder does not exist: {self.folder}")
        self._files = list_tiff_files(self.folder)
        if not self._files:
            raise FrameSourceError(f"No TIFF files found in {self.folder}")
        # Fail fast when the first frame is unreadable.
        load_tiff_frame(self._files[0])
        logging.info(f"Replaying {len(self._files)} TIFF files from {self.folder}")

    def next_frame(self, index: int) -> Optional[np.ndarray]:
        if not self._files:
            raise FrameSourceError("Source was not started")
        return load_tiff_frame(self._files[index % len(self._files)])

    def stop(self) -> None:
        pass


class LiveCameraSource:
    """Pulls frames from a running camera sequence acquisition."""

    def __init__(self, driver: CameraDriver, poll_interval_s: float = CAMERA_POLL_INTERVAL_S):
        self.driver = driver
        self.poll_interval_s = poll_interval_s
        self._stop_event = threading.Event()

    def start(self, config: AcquisitionConfig) -> None:
        if self.driver is None:
            raise FrameSourceError("Camera driver not available")
        self._stop_event.clear()
        try:
            self.driver.set_exposure(config.exposure_ms)
            self.driver.start_sequence_acquisition(config.frames)
        except Exception as exc:
            raise FrameSourceError(f"Cannot start camera sequence: {exc}") from exc

    def next_frame(self, index: int) -> Optional[np.ndarray]:
        while not self._stop_event.is_set():
            if self.driver.remaining_image_count() > 0:
                return np.asarray(self.driver.pop_next_image())
            if not self.driver.is_sequence_running():
                # The last image may have landed between the two checks.
                if self.driver.remaining_image_count() > 0:
                    continue
                return None
            time.sleep(self.poll_interval_s)
        return None

    def stop(self) -> None:
        self._stop_event.set()
        try:
            if self.driver.is_sequence_running():
                self.driver.stop_sequence_acquisition()
        except Exception as exc:
            logging.error(f"Error stopping camera sequence: {exc}")


def open_frame_source(config: AcquisitionConfig, driver: Optional[CameraDriver] = None) -> FrameSource:
    """Select the frame source variant for ``config``."""
    if config.simulation_mode:
        return FolderReplaySource(config.simulation_folder or '')
    if driver is None:
        raise FrameSourceError("Live mode requested but no camera driver was provided")
    return LiveCameraSource(driver)
