"""
Unit tests for raster buffers and weight snapshots.
"""

import numpy as np
import pytest
import torch

from cbmsim.constants import CellType, GR_SAMPLE_RASTER_FILE
from cbmsim.errors import KernelStepError, OutputIOError
from cbmsim.io.raster import RasterRecorder, load_raster, raster_file_name, save_weight_snapshot


@pytest.mark.unit
class TestRasterRecorder:
    """Test buffer filling and flushing."""

    def test_buffer_shapes(self, small_config):
        recorder = RasterRecorder(small_config)
        assert recorder.buffers[CellType.GO].shape == (16, 12)
        assert recorder.buffers[CellType.DCN].shape == (2, 12)
        # Sample is capped at the population size
        assert len(recorder.gr_sample) == 256

    def test_column_mapping(self, small_config):
        recorder = RasterRecorder(small_config)
        assert recorder.column_for(1) is None
        assert recorder.column_for(2) == 0
        assert recorder.column_for(13) == 11
        assert recorder.column_for(14) is None

    def test_gr_sample_is_seeded_and_distinct(self):
        a = RasterRecorder.generate_gr_sample(1000, 50, seed=3)
        b = RasterRecorder.generate_gr_sample(1000, 50, seed=3)
        assert torch.equal(a, b)
        assert len(set(a.tolist())) == 50
        assert a.tolist() == sorted(a.tolist())

    def test_record_and_reset(self, small_config):
        recorder = RasterRecorder(small_config, cell_types=(CellType.IO,))
        recorder.record(4, {CellType.IO: torch.tensor([0, 1], dtype=torch.uint8)})
        assert recorder.buffers[CellType.IO][:, 4].tolist() == [0, 1]
        recorder.reset()
        assert int(recorder.buffers[CellType.IO].sum()) == 0

    def test_record_checks_column_and_length(self, small_config):
        recorder = RasterRecorder(small_config, cell_types=(CellType.IO,))
        with pytest.raises(IndexError):
            recorder.record(12, {})
        with pytest.raises(KernelStepError):
            recorder.record(0, {CellType.IO: torch.zeros(3, dtype=torch.uint8)})

    def test_granule_sample_recorded(self, small_config):
        recorder = RasterRecorder(small_config, cell_types=(), gr_sample_size=8)
        gr = torch.zeros(256, dtype=torch.uint8)
        gr[recorder.gr_sample[0]] = 1
        recorder.record(0, {CellType.GR: gr})
        assert recorder.gr_buffer[:, 0].tolist() == [1] + [0] * 7

    def test_save_and_load(self, tmp_path, small_config):
        recorder = RasterRecorder(small_config, cell_types=(CellType.PC,), gr_sample_size=4)
        recorder.record(2, {CellType.PC: torch.tensor([1, 0, 0, 1], dtype=torch.uint8)})
        written = recorder.save(tmp_path / "out")

        assert written["PC"].name == raster_file_name(CellType.PC) == "allPCRaster.bin"
        assert written["GR"].name == GR_SAMPLE_RASTER_FILE
        raster = load_raster(written["PC"], 4)
        assert raster.shape == (4, 12)
        assert raster[:, 2].tolist() == [1, 0, 0, 1]

    def test_save_failure(self, tmp_path, small_config):
        blocker = tmp_path / "file"
        blocker.write_bytes(b"")
        with pytest.raises(OutputIOError):
            RasterRecorder(small_config).save(blocker)

    def test_load_rejects_bad_size(self, tmp_path):
        path = tmp_path / "raster.bin"
        np.zeros(7, dtype=np.uint8).tofile(path)
        with pytest.raises(ValueError):
            load_raster(path, 2)


@pytest.mark.unit
class TestWeightSnapshot:
    """Test PF→PC weight snapshots."""

    def test_writes_float32_sample(self, tmp_path, small_state, small_config):
        path = tmp_path / "weights.bin"
        count = save_weight_snapshot(path, small_state, zone=1, sample=10)
        assert count == 10
        weights = np.fromfile(path, dtype="<f4")
        expected = small_state.zone_activity(1).gr_pc_w.reshape(-1)[:10].numpy()
        np.testing.assert_array_equal(weights, expected)

    def test_sample_capped_at_synapse_count(self, tmp_path, small_state):
        count = save_weight_snapshot(tmp_path / "w.bin", small_state, sample=10_000)
        assert count == 4 * 64
