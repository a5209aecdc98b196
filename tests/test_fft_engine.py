# -*- coding: utf-8 -*-
"""Tests for the FFT engine."""

import threading

import numpy as np
import pytest

from fft_engine import FftEngine, dft2


def _assert_close(actual, expected, rel=1e-9):
    scale = max(1.0, float(np.abs(expected).max()))
    np.testing.assert_allclose(actual, expected, rtol=rel, atol=rel * scale)


class TestDirectDft:
    @pytest.mark.parametrize("n", [1, 3, 5, 7, 9])
    def test_matches_numpy(self, n):
        region = np.random.default_rng(n).uniform(0, 1000, (n, n))
        _assert_close(dft2(region), np.fft.fft2(region))

    def test_sign_convention(self):
        # A single pixel at (y=0, x=1) gives F[0][1] = exp(-2*pi*i/N)
        region = np.zeros((5, 5))
        region[0, 1] = 1.0
        F = dft2(region)
        expected = np.exp(-2j * np.pi / 5)
        assert abs(F[0, 1] - expected) < 1e-12

    def test_rejects_non_square(self):
        with pytest.raises(ValueError):
            dft2(np.zeros((3, 4)))


class TestFftEngine:
    @pytest.mark.parametrize("n", [3, 5, 7, 9])
    def test_path_equivalence(self, n):
        region = np.random.default_rng(100 + n).uniform(0, 500, (n, n))
        direct = FftEngine().fft2(region)
        planned = FftEngine(small_dft_max=0).fft2(region)
        _assert_close(planned, direct)

    def test_small_square_uses_direct_path(self):
        engine = FftEngine()
        engine.fft2(np.ones((7, 7)))
        assert engine.plan_count() == 0

    def test_large_region_is_planned_and_cached(self):
        engine = FftEngine()
        region = np.random.default_rng(0).normal(size=(16, 16))
        first = engine.fft2(region)
        second = engine.fft2(region)
        assert engine.cached_sizes() == [(16, 16)]
        _assert_close(first, np.fft.fft2(region))
        np.testing.assert_array_equal(first, second)

    def test_rectangular_region(self):
        engine = FftEngine()
        region = np.random.default_rng(1).normal(size=(5, 8))
        out = engine.fft2(region)
        assert out.shape == (5, 8)
        assert (5, 8) in engine.cached_sizes()
        _assert_close(out, np.fft.fft2(region))

    def test_result_is_not_the_scratch_buffer(self):
        engine = FftEngine(small_dft_max=0)
        a = engine.fft2(np.ones((4, 4)))
        engine.fft2(np.zeros((4, 4)))
        assert a[0, 0] == pytest.approx(16.0)

    def test_empty_region(self):
        out = FftEngine().fft2(np.zeros((0, 0)))
        assert out.shape == (0, 0)
        assert out.dtype == np.complex128

    def test_rejects_non_2d(self):
        with pytest.raises(ValueError):
            FftEngine().fft2(np.zeros(5))

    def test_concurrent_workers(self):
        engine = FftEngine(small_dft_max=0)
        failures = []

        def worker(seed):
            rng = np.random.default_rng(seed)
            for _ in range(50):
                region = rng.normal(size=(12, 12))
                out = engine.fft2(region)
                if not np.allclose(out, np.fft.fft2(region), atol=1e-9):
                    failures.append(seed)

        threads = [threading.Thread(target=worker, args=(s,)) for s in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert failures == []
        assert engine.cached_sizes() == [(12, 12)]
