# -*- coding: utf-8 -*-
"""Tests for the magnified localization histogram."""

import threading

import numpy as np
import pytest

from accumulator import HistogramAccumulator
from localizer import Localization


def _loc(x, y, frame=1):
    return Localization(frame=frame, amplitude=100.0, x=x, y=y)


@pytest.fixture
def acc():
    accumulator = HistogramAccumulator()
    accumulator.ensure_geometry(32, 16, 4)
    return accumulator


class TestGeometry:
    def test_canvas_shape(self, acc):
        snap = acc.snapshot()
        assert snap.canvas.shape == (64, 128)
        assert snap.canvas.dtype == np.float32
        assert snap.running_max == 1.0
        assert snap.magnification == 4
        assert acc.geometry == (32, 16, 4)

    def test_same_geometry_keeps_counts(self, acc):
        acc.accumulate([_loc(5.0, 5.0)])
        assert acc.ensure_geometry(32, 16, 4) is False
        assert acc.snapshot().canvas.sum() == 1.0

    @pytest.mark.parametrize("geometry", [(33, 16, 4), (32, 17, 4), (32, 16, 2)])
    def test_geometry_change_resets(self, acc, geometry):
        acc.accumulate([_loc(5.0, 5.0)] * 3)
        assert acc.ensure_geometry(*geometry) is True
        snap = acc.snapshot()
        assert snap.canvas.sum() == 0.0
        assert snap.running_max == 1.0

    def test_accumulate_before_geometry_is_noop(self):
        acc = HistogramAccumulator()
        assert acc.accumulate([_loc(1.0, 1.0)]) == 0
        assert acc.snapshot() is None
        assert acc.geometry is None


class TestAccumulate:
    def test_round_trip_cell(self, acc):
        k = 5
        added = acc.accumulate([_loc(10.4, 3.2)] * k)
        snap = acc.snapshot()

        assert added == k
        # x: floor(10.4*4 + 0.5) = 42, y: floor(3.2*4 + 0.5) = 13
        assert snap.canvas[13, 42] == k
        assert snap.canvas.sum() == k
        assert snap.running_max >= k

    def test_half_up_rounding(self):
        acc = HistogramAccumulator()
        acc.ensure_geometry(10, 10, 1)
        acc.accumulate([_loc(2.5, 1.5)])
        assert acc.snapshot().canvas[2, 3] == 1.0

    def test_out_of_bounds_dropped(self):
        acc = HistogramAccumulator()
        acc.ensure_geometry(10, 10, 1)
        added = acc.accumulate([
            _loc(-0.6, 5.0),   # rounds to -1
            _loc(5.0, 9.6),    # rounds to 10
            _loc(-0.2, 5.0),   # rounds to 0
        ])
        snap = acc.snapshot()
        assert added == 1
        assert snap.canvas.sum() == 1.0
        assert snap.canvas[5, 0] == 1.0

    def test_running_max_never_below_one(self, acc):
        acc.accumulate([])
        assert acc.snapshot().running_max == 1.0

    def test_running_max_tracks_peak_cell(self, acc):
        acc.accumulate([_loc(1.0, 1.0)] * 2 + [_loc(20.0, 10.0)] * 7)
        acc.accumulate([_loc(1.0, 1.0)] * 3)
        snap = acc.snapshot()
        assert snap.running_max == pytest.approx(float(snap.canvas.max()))
        assert snap.running_max == 7.0

    def test_snapshot_is_a_copy(self, acc):
        snap = acc.snapshot()
        snap.canvas[:] = 99.0
        assert acc.snapshot().canvas.sum() == 0.0

    def test_clear_keeps_geometry(self, acc):
        acc.accumulate([_loc(3.0, 3.0)] * 4)
        acc.clear()
        snap = acc.snapshot()
        assert snap.canvas.shape == (64, 128)
        assert snap.canvas.sum() == 0.0
        assert snap.running_max == 1.0

    def test_reset_drops_canvas(self, acc):
        acc.reset()
        assert acc.snapshot() is None
        assert acc.ensure_geometry(32, 16, 4) is True

    def test_concurrent_accumulate(self, acc):
        def worker():
            for _ in range(200):
                acc.accumulate([_loc(4.0, 4.0), _loc(8.0, 2.0)])

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = acc.snapshot()
        assert snap.canvas.sum() == 1600.0
        assert snap.canvas[16, 16] == 800.0
        assert snap.running_max == 800.0
