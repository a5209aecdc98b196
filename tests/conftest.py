# -*- coding: utf-8 -*-
"""Shared fixtures for the localizer tests."""

import threading

import numpy as np
import pytest


def gaussian_spot(shape, cx, cy, sigma=1.0, amplitude=1000.0, background=50.0):
    ys, xs = np.mgrid[0:shape[0], 0:shape[1]]
    d2 = (xs - cx) ** 2 + (ys - cy) ** 2
    return background + amplitude * np.exp(-d2 / (2.0 * sigma ** 2))


@pytest.fixture
def spot_image():
    """Factory for images with Gaussian spots: spot_image(shape, [(cx, cy), ...])."""
    def make(shape, centres, sigma=1.0, amplitude=1000.0, background=50.0):
        image = np.full(shape, background, dtype=np.float64)
        for cx, cy in centres:
            image += gaussian_spot(shape, cx, cy, sigma, amplitude, 0.0)
        return image
    return make


class RecordingProgress:
    def __init__(self):
        self.lock = threading.Lock()
        self.calls = []

    def _record(self, *call):
        with self.lock:
            self.calls.append(call)

    def init_progress(self, total_frames):
        self._record('init', total_frames)

    def update_progress(self, processed, total_frames, eta_text):
        self._record('update', processed, total_frames, eta_text)

    def close_progress(self):
        self._record('close')

    def on_source_finished(self):
        self._record('source_finished')

    def on_queue_depth(self, pending_count):
        self._record('queue', pending_count)

    def named(self, name):
        with self.lock:
            return [c for c in self.calls if c[0] == name]


@pytest.fixture
def progress():
    return RecordingProgress()


class ErrorLog:
    def __init__(self):
        self.lock = threading.Lock()
        self.messages = []

    def __call__(self, message):
        with self.lock:
            self.messages.append(message)


@pytest.fixture
def error_log():
    return ErrorLog()
