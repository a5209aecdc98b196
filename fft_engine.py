"""2D Fourier transforms for small localization regions.

Interface contract:
- FftEngine.fft2(region) -> complex ndarray with the same shape as ``region``

Behavior:
- Square regions up to ``small_dft_max`` per side use a direct DFT
- Larger or rectangular regions use a cached plan keyed by (height, width),
  executed in place on a per-thread scratch buffer
- Both paths use the exp(-2*pi*i*freq*index/N) sign convention
"""

import threading
from typing import Dict, List, Tuple

import numpy as np
import scipy.fft

from config import SMALL_DFT_MAX


def _dft_matrix(n: int) -> np.ndarray:
    """Return W[u, k] = exp(-2*pi*i*u*k/n)."""
    idx = np.arange(n)
    # Reduce u*k modulo n before scaling so the phase stays small and exact.
    phase = (np.outer(idx, idx) % n) * (-2.0 * np.pi / n)
    return np.cos(phase) + 1j * np.sin(phase)


def dft2(region: np.ndarray) -> np.ndarray:
    """Direct 2D DFT of a square region.

    F[u][v] = sum_y sum_x region[y][x] * exp(-2*pi*i*(u*y + v*x)/N)

    Evaluated as W @ region @ W with the symmetric DFT matrix W.
    """
    region = np.asarray(region, dtype=np.float64)
    if region.ndim != 2 or region.shape[0] != region.shape[1]:
        raise ValueError(f"dft2 expects a square 2D region, got shape {region.shape}")
    w = _dft_matrix(region.shape[0])
    return w @ region @ w


class FftPlan:
    """Reusable forward transform for one (height, width)."""

    def __init__(self, height: int, width: int):
        self.height = height
        self.width = width
        self.shape = (height, width)

    def new_buffer(self) -> np.ndarray:
        # complex128 is stored as interleaved (re, im) float64 pairs
        return np.zeros(self.shape, dtype=np.complex128)

    def execute(self, buffer: np.ndarray) -> np.ndarray:
        """Forward transform of ``buffer`` in place; returns the buffer."""
        out = scipy.fft.fft2(buffer, overwrite_x=True, workers=1)
        # overwrite_x is only a hint; keep the scratch buffer authoritative
        if out is not buffer:
            buffer[...] = out
        return buffer


class FftEngine:
    """Caches transform plans and per-thread scratch buffers keyed by region size."""

    def __init__(self, small_dft_max: int = SMALL_DFT_MAX):
        self.small_dft_max = small_dft_max
        self._plans: Dict[Tuple[int, int], FftPlan] = {}
        self._plans_lock = threading.Lock()
        self._local = threading.local()

    def fft2(self, region: np.ndarray) -> np.ndarray:
        region = np.asarray(region, dtype=np.float64)
        if region.ndim != 2:
            raise ValueError(f"fft2 expects a 2D region, got shape {region.shape}")

        h, w = region.shape
        if h == 0 or w == 0:
            return np.zeros((h, w), dtype=np.complex128)

        if h == w and max(h, w) <= self.small_dft_max:
            return dft2(region)

        plan = self._get_plan(h, w)
        buffer = self._get_buffer(plan)
        buffer.real = region
        buffer.imag = 0.0
        return plan.execute(buffer).copy()

    def plan_count(self) -> int:
        with self._plans_lock:
            return len(self._plans)

    def cached_sizes(self) -> List[Tuple[int, int]]:
        with self._plans_lock:
            return sorted(self._plans)

    def _get_plan(self, h: int, w: int) -> FftPlan:
        key = (h, w)
        plan = self._plans.get(key)
        if plan is not None:
            return plan
        with self._plans_lock:
            return self._plans.setdefault(key, FftPlan(h, w))

    def _get_buffer(self, plan: FftPlan) -> np.ndarray:
        buffers = getattr(self._local, 'buffers', None)
        if buffers is None:
            buffers = {}
            self._local.buffers = buffers
        buf = buffers.get(plan.shape)
        if buf is None:
            buf = plan.new_buffer()
            buffers[plan.shape] = buf
        return buf
