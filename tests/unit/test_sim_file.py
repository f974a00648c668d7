"""
Unit tests for simulation and state files.

Tests:
- Save/load of full simulation files and state-only files
- Parameters in the file override the caller's configuration
- Truncated files, trailing data and unwritable destinations
"""

from dataclasses import replace

import pytest

from cbmsim.config import ActivityParams
from cbmsim.core.sim_core import SimCore
from cbmsim.errors import CorruptStateError, OutputIOError, PreconditionViolation
from cbmsim.io.sim_file import load_sim_file, load_state_file, save_sim_file, save_state_file


@pytest.mark.unit
class TestSimFile:
    """Test whole-simulation files."""

    def test_save_then_load(self, tmp_path, small_state, small_config):
        path = tmp_path / "sim.bin"
        written = save_sim_file(path, small_config, small_state)
        assert written == path.stat().st_size

        con, act, state = load_sim_file(path, small_config)
        with state:
            assert con == small_config.connectivity
            assert act == small_config.activity
            assert state.equals(small_state)

    def test_file_parameters_win(self, tmp_path, small_state, small_config):
        path = tmp_path / "sim.bin"
        saved_config = small_config.with_params(activity=ActivityParams(us_magnitude=0.9))
        save_sim_file(path, saved_config, small_state)

        _con, act, state = load_sim_file(path, small_config)
        with state:
            assert act.us_magnitude == 0.9
            assert state.config.activity.us_magnitude == 0.9
            assert state.config.num_zones == small_config.num_zones

    def test_kernel_preferred_over_state(self, tmp_path, small_state, small_config):
        path = tmp_path / "sim.bin"
        save_sim_file(path, small_config, kernel=SimCore(small_state))
        _con, _act, state = load_sim_file(path, small_config)
        with state:
            assert state.equals(small_state)

    def test_parent_directories_created(self, tmp_path, small_state, small_config):
        path = tmp_path / "runs" / "a" / "sim.bin"
        save_sim_file(path, small_config, small_state)
        assert path.exists()

    def test_nothing_to_save(self, tmp_path, small_config):
        with pytest.raises(PreconditionViolation):
            save_sim_file(tmp_path / "sim.bin", small_config)

    def test_unwritable_destination(self, tmp_path, small_state, small_config):
        blocker = tmp_path / "file"
        blocker.write_bytes(b"")
        with pytest.raises(OutputIOError):
            save_sim_file(blocker / "sim.bin", small_config, small_state)

    def test_missing_file(self, tmp_path, small_config):
        with pytest.raises(FileNotFoundError):
            load_sim_file(tmp_path / "missing.bin", small_config)

    def test_truncated_file(self, tmp_path, small_state, small_config):
        path = tmp_path / "sim.bin"
        save_sim_file(path, small_config, small_state)
        data = path.read_bytes()
        path.write_bytes(data[: len(data) - 10])
        with pytest.raises(CorruptStateError):
            load_sim_file(path, small_config)

    def test_fewer_zones_than_written(self, tmp_path, small_state, small_config):
        path = tmp_path / "sim.bin"
        save_sim_file(path, small_config, small_state)
        with pytest.raises(CorruptStateError, match="zone count"):
            load_sim_file(path, replace(small_config, num_zones=1))

    def test_more_zones_than_written(self, tmp_path, small_state, small_config):
        path = tmp_path / "sim.bin"
        save_sim_file(path, small_config, small_state)
        with pytest.raises(CorruptStateError, match="zone 2 of 3"):
            load_sim_file(path, replace(small_config, num_zones=3))

    def test_invalid_parameters_are_corruption(self, tmp_path, small_state, small_config):
        path = tmp_path / "sim.bin"
        save_sim_file(path, small_config, small_state)
        data = bytearray(path.read_bytes())
        key = b'"num_io": 2'
        start = data.index(key)
        data[start:start + len(key)] = b'"num_io": 0'
        path.write_bytes(bytes(data))
        with pytest.raises(CorruptStateError, match="Invalid parameters"):
            load_sim_file(path, small_config)


@pytest.mark.unit
class TestStateFile:
    """Test state-only files."""

    def test_save_then_load(self, tmp_path, small_state, small_config):
        path = tmp_path / "state.bin"
        written = save_state_file(path, small_state)
        assert written == len(small_state.to_bytes())
        with load_state_file(path, small_config) as state:
            assert state.equals(small_state)

    def test_state_file_is_sim_file_without_parameters(self, tmp_path, small_state, small_config):
        sim_path = tmp_path / "sim.bin"
        state_path = tmp_path / "state.bin"
        save_sim_file(sim_path, small_config, small_state)
        save_state_file(state_path, small_state)
        assert sim_path.read_bytes().endswith(state_path.read_bytes())
