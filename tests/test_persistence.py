# -*- coding: utf-8 -*-
"""Tests for CSV, histogram and raw frame export."""

import numpy as np
import pytest
import tifffile

from accumulator import HistogramSnapshot
from config import CSV_FILENAME, STACK_FILENAME, AcquisitionConfig
from pipeline.persistence import (
    RawFrameWriter,
    format_row,
    save_histogram_png,
    to_uint16,
    write_localizations_csv,
)
from pipeline.types import LocalizationRow


class TestToUint16:
    def test_uint16_kept(self):
        data = np.array([[1, 65535]], dtype=np.uint16)
        assert to_uint16(data) is data

    def test_uint8_scaled(self):
        out = to_uint16(np.array([[0, 1, 255]], dtype=np.uint8))
        assert out.dtype == np.uint16
        assert out.tolist() == [[0, 257, 65535]]

    def test_float_min_max_scaled(self):
        out = to_uint16(np.array([[10.0, 20.0, 30.0]]))
        assert out.tolist() == [[0, 32767, 65535]]

    def test_constant_float(self):
        assert to_uint16(np.full((2, 2), 5.0)).tolist() == [[0, 0], [0, 0]]


class TestCsv:
    def test_row_format(self):
        row = LocalizationRow(3, 120.5, 10.25, 4.0, "frames_stack.tif")
        assert format_row(row, True) == "3,120.500000,10.250000,4.000000,frames_stack.tif"
        assert format_row(row, False) == "3,120.500000,10.250000,4.000000"

    def test_write_with_filename(self, tmp_path):
        path = tmp_path / CSV_FILENAME
        rows = [LocalizationRow(1, 1.0, 2.0, 3.0, "frame_000000.tif")]
        assert write_localizations_csv(str(path), rows) == 1
        assert path.read_text().splitlines() == [
            "Frame,Amplitude,X,Y,Filename",
            "1,1.000000,2.000000,3.000000,frame_000000.tif",
        ]

    def test_write_without_filename(self, tmp_path):
        path = tmp_path / CSV_FILENAME
        write_localizations_csv(str(path), [], include_filename=False)
        assert path.read_text() == "Frame,Amplitude,X,Y\n"


class TestRawFrameWriter:
    def test_disabled_without_output_dir(self):
        assert RawFrameWriter.for_config(AcquisitionConfig(save_raw=True)) is None
        assert RawFrameWriter.for_config(AcquisitionConfig(output_dir="/tmp")) is None

    def test_single_stack(self, tmp_path):
        writer = RawFrameWriter(str(tmp_path))
        names = [writer.write(np.full((6, 5), i, dtype=np.uint16), i) for i in range(4)]
        writer.close()

        assert names == [STACK_FILENAME] * 4
        with tifffile.TiffFile(str(tmp_path / STACK_FILENAME)) as tif:
            assert len(tif.pages) == 4
            assert int(tif.pages[2].asarray()[0, 0]) == 2

    def test_per_frame_files(self, tmp_path):
        config = AcquisitionConfig(save_raw=True, output_dir=str(tmp_path), save_as_per_frame_files=True)
        writer = RawFrameWriter.for_config(config)
        names = [writer.write(np.ones((3, 3), dtype=np.uint16), i) for i in range(2)]
        writer.close()

        assert names == ["frame_000000.tif", "frame_000001.tif"]
        assert (tmp_path / "frame_000001.tif").exists()
        assert not (tmp_path / STACK_FILENAME).exists()


class TestHistogramPng:
    def test_writes_png(self, tmp_path):
        canvas = np.zeros((8, 12), dtype=np.float32)
        canvas[2, 3] = 4.0
        path = tmp_path / "hist.png"
        save_histogram_png(str(path), HistogramSnapshot(canvas, 4.0, 2))

        assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"

    def test_unwritable_path_raises(self, tmp_path):
        snap = HistogramSnapshot(np.zeros((2, 2), dtype=np.float32), 1.0, 1)
        with pytest.raises(OSError):
            save_histogram_png(str(tmp_path / "missing" / "hist.png"), snap)
