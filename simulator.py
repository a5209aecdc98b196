"""Synthetic blinking-emitter frames and a simulated camera for demos and tests."""

import threading
import time
from collections import deque
from typing import Deque, List, Optional, Tuple

import numpy as np


class EmitterField:
    """Generates blinking single-molecule frames.

    frame model:
        pixels = background + sum_k on_k * photons * gauss(x - cx_k, y - cy_k; psf_sigma)
        followed by Poisson shot noise and Gaussian read noise

    Each emitter is independently "on" with probability ``on_fraction`` per
    frame, so repeated frames sample the same fixed structure.
    """

    def __init__(
        self,
        width: int = 64,
        height: int = 64,
        num_emitters: int = 20,
        photons: float = 800.0,
        psf_sigma: float = 1.2,
        background: float = 100.0,
        read_noise: float = 2.0,
        on_fraction: float = 0.2,
        border: int = 4,
        seed: Optional[int] = None,
    ):
        self.width = width
        self.height = height
        self.photons = photons
        self.psf_sigma = psf_sigma
        self.background = background
        self.read_noise = read_noise
        self.on_fraction = on_fraction
        self.seed = seed

        layout_rng = np.random.default_rng(seed)
        self.positions = np.column_stack([
            layout_rng.uniform(border, width - 1 - border, num_emitters),
            layout_rng.uniform(border, height - 1 - border, num_emitters),
        ])

    def _psf(self, cx: float, cy: float) -> np.ndarray:
        ys, xs = np.mgrid[0:self.height, 0:self.width]
        d2 = (xs - cx) ** 2 + (ys - cy) ** 2
        return np.exp(-d2 / (2.0 * self.psf_sigma ** 2))

    def active_emitters(self, index: int) -> np.ndarray:
        """Return the (x, y) positions switched on in frame ``index``."""
        rng = np.random.default_rng(None if self.seed is None else [self.seed, index])
        on = rng.random(len(self.positions)) < self.on_fraction
        return self.positions[on]

    def render(self, index: int) -> np.ndarray:
        """Render frame ``index`` as uint16. Deterministic for a fixed seed."""
        rng = np.random.default_rng(None if self.seed is None else [self.seed, index, 1])
        expected = np.full((self.height, self.width), self.background, dtype=np.float64)
        for cx, cy in self.active_emitters(index):
            expected += self.photons * self._psf(cx, cy)

        # ----------------------------
        # Shot + read noise
        # ----------------------------
        frame = rng.poisson(expected).astype(np.float64)
        frame += rng.normal(0.0, self.read_noise, frame.shape)
        return np.clip(frame, 0, 65535).astype(np.uint16)


class SyntheticEmitterSource:
    """Frame source that renders frames on demand from an EmitterField."""

    def __init__(self, field: Optional[EmitterField] = None, **field_kwargs):
        self.field = field if field is not None else EmitterField(**field_kwargs)

    def start(self, config) -> None:
        pass

    def next_frame(self, index: int) -> Optional[np.ndarray]:
        return self.field.render(index)

    def stop(self) -> None:
        pass


class SimulatedCamera:
    """Camera driver stand-in that streams EmitterField frames.

    A background thread renders one frame per exposure into a bounded
    circular buffer, like a camera sequence acquisition; readers poll
    ``remaining_image_count`` and pop the oldest image.
    """

    def __init__(self, field: Optional[EmitterField] = None, buffer_frames: int = 256):
        self.field = field if field is not None else EmitterField()
        self.exposure_ms = 10.0
        self._images: Deque[np.ndarray] = deque(maxlen=buffer_frames)
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._running = False
        self._overflowed = 0

    def set_exposure(self, exposure_ms: float) -> None:
        self.exposure_ms = float(exposure_ms)

    def _run_loop(self, frames: int):
        """Render ``frames`` images at the exposure rate."""
        interval = self.exposure_ms / 1000.0
        try:
            for index in range(frames):
                if self._stop_event.is_set():
                    break
                image = self.field.render(index)
                with self._lock:
                    if len(self._images) == self._images.maxlen:
                        self._overflowed += 1
                    self._images.append(image)
                time.sleep(interval)
        finally:
            self._running = False

    def start_sequence_acquisition(self, frames: int) -> None:
        if self._running:
            raise RuntimeError("Sequence acquisition is already running")
        self._stop_event.clear()
        with self._lock:
            self._images.clear()
            self._overflowed = 0
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, args=(frames,), daemon=True)
        self._thread.start()

    def stop_sequence_acquisition(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
        self._running = False
        self._thread = None

    def is_sequence_running(self) -> bool:
        return self._running

    def remaining_image_count(self) -> int:
        with self._lock:
            return len(self._images)

    def pop_next_image(self) -> np.ndarray:
        with self._lock:
            if not self._images:
                raise RuntimeError("Circular buffer is empty")
            return self._images.popleft()

    def overflowed_frames(self) -> int:
        """Images lost because the circular buffer was full."""
        with self._lock:
            return self._overflowed


def ground_truth(field: EmitterField, frames: int) -> List[Tuple[int, float, float]]:
    """(frame_index, x, y) of every active emitter over the first ``frames`` frames."""
    truth = []
    for index in range(frames):
        for cx, cy in field.active_emitters(index):
            truth.append((index, float(cx), float(cy)))
    return truth


if __name__ == '__main__':
    cam = SimulatedCamera(EmitterField(seed=1))
    cam.set_exposure(5)
    cam.start_sequence_acquisition(20)
    time.sleep(0.3)
    cam.stop_sequence_acquisition()

    print(f"Buffered {cam.remaining_image_count()} frames")
    while cam.remaining_image_count():
        img = cam.pop_next_image()
        print(f"  shape={img.shape} min={img.min()} max={img.max()}")
