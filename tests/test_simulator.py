# -*- coding: utf-8 -*-
"""Tests for the synthetic emitter field and simulated camera."""

import time

import numpy as np
import pytest

from image_processor import FrameProcessor
from localizer import PhasorLocalizer
from simulator import EmitterField, SimulatedCamera, SyntheticEmitterSource, ground_truth


class TestEmitterField:
    def test_render_is_deterministic(self):
        a = EmitterField(seed=7).render(3)
        b = EmitterField(seed=7).render(3)
        assert a.dtype == np.uint16
        assert a.shape == (64, 64)
        np.testing.assert_array_equal(a, b)

    def test_frames_differ(self):
        field = EmitterField(seed=7)
        assert not np.array_equal(field.render(0), field.render(1))

    def test_positions_inside_border(self):
        field = EmitterField(width=40, height=30, num_emitters=50, border=4, seed=1)
        assert field.positions[:, 0].min() >= 4
        assert field.positions[:, 0].max() <= 40 - 1 - 4
        assert field.positions[:, 1].max() <= 30 - 1 - 4

    def test_ground_truth_matches_active_emitters(self):
        field = EmitterField(seed=4)
        truth = ground_truth(field, 5)
        assert len(truth) == sum(len(field.active_emitters(i)) for i in range(5))

    @pytest.mark.parametrize("seed", [11, 12, 13])
    def test_localization_near_truth(self, seed):
        field = EmitterField(num_emitters=1, on_fraction=1.0, photons=3000.0, seed=seed, border=8)
        frame = field.render(0).astype(np.float64)

        peaks = FrameProcessor(10.0, 1.0, 3, 20.0).process(frame)
        locs = PhasorLocalizer(7).localize(frame, peaks, 1)

        for cx, cy in field.active_emitters(0):
            nearest = min(locs, key=lambda loc: (loc.x - cx) ** 2 + (loc.y - cy) ** 2)
            assert nearest.x == pytest.approx(cx, abs=0.3)
            assert nearest.y == pytest.approx(cy, abs=0.3)


class TestSyntheticEmitterSource:
    def test_builds_field_from_kwargs(self):
        source = SyntheticEmitterSource(width=20, height=10, seed=0)
        source.start(None)
        assert source.next_frame(0).shape == (10, 20)


class TestSimulatedCamera:
    def test_sequence_fills_buffer(self):
        camera = SimulatedCamera(EmitterField(width=16, height=16, seed=0))
        camera.set_exposure(1)
        camera.start_sequence_acquisition(5)

        deadline = time.monotonic() + 5.0
        while camera.is_sequence_running() and time.monotonic() < deadline:
            time.sleep(0.005)

        assert not camera.is_sequence_running()
        assert camera.remaining_image_count() == 5
        assert camera.pop_next_image().shape == (16, 16)

    def test_overflow_counted(self):
        camera = SimulatedCamera(EmitterField(width=8, height=8, seed=0), buffer_frames=2)
        camera.set_exposure(1)
        camera.start_sequence_acquisition(5)
        camera._thread.join(timeout=5.0)

        assert camera.remaining_image_count() == 2
        assert camera.overflowed_frames() == 3

    def test_pop_empty_raises(self):
        with pytest.raises(RuntimeError):
            SimulatedCamera().pop_next_image()

    def test_double_start_rejected(self):
        camera = SimulatedCamera(EmitterField(width=8, height=8, seed=0))
        camera.set_exposure(50)
        camera.start_sequence_acquisition(100)
        try:
            with pytest.raises(RuntimeError):
                camera.start_sequence_acquisition(1)
        finally:
            camera.stop_sequence_acquisition()
        assert not camera.is_sequence_running()
