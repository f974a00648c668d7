"""
Unit tests for the reference kernel.

Tests:
- Stepping a real state and exporting spikes
- Error drive delivery to the inferior olive
- PF→PC plasticity modes
- Views are fetched fresh after the owning state is replaced or released
"""

import io
from dataclasses import replace

import pytest
import torch

from cbmsim.constants import CellType, ConductancePathway, PlasticityMode
from cbmsim.core.protocols import KernelWeights, SimKernel
from cbmsim.core.sim_core import SimCore
from cbmsim.errors import KernelStepError
from cbmsim.state import SimulationState


def _weights(config):
    return KernelWeights.from_activity(config.activity)


def _drive(kernel, config, steps=10):
    mf = torch.ones(config.connectivity.num_mf, dtype=torch.uint8)
    for _ in range(steps):
        kernel.step_timestep(mf, _weights(config))


@pytest.mark.unit
class TestSimCore:
    """Test the reference kernel on a small network."""

    def test_is_a_sim_kernel(self, small_state):
        assert isinstance(SimCore(small_state), SimKernel)

    def test_exports_have_population_lengths(self, small_state, small_config):
        kernel = SimCore(small_state)
        _drive(kernel, small_config, steps=3)
        counts = small_config.connectivity.cell_counts
        for cell_type in CellType:
            spikes = kernel.export_spikes(cell_type)
            assert len(spikes) == counts[cell_type.name]
            assert spikes.dtype == torch.uint8
        assert len(kernel.export_conductance_sum(ConductancePathway.GR_GO)) == counts["GO"]
        assert kernel.steps == 3

    def test_exports_are_copies(self, small_state, small_config):
        kernel = SimCore(small_state)
        _drive(kernel, small_config, steps=1)
        kernel.export_spikes(CellType.MF).zero_()
        assert int(small_state.innet_activity.ap_mf.sum()) == small_config.connectivity.num_mf

    def test_mf_history_shifts(self, small_state, small_config):
        kernel = SimCore(small_state)
        n = small_config.connectivity.num_mf
        kernel.step_timestep(torch.ones(n, dtype=torch.uint8), _weights(small_config))
        kernel.step_timestep(torch.zeros(n, dtype=torch.uint8), _weights(small_config))
        act = small_state.innet_activity
        assert int(act.hist_mf.sum()) == n
        assert int(act.ap_mf.sum()) == 0

    def test_mossy_fiber_drive_depolarizes_granule_cells(self, small_state, small_config):
        kernel = SimCore(small_state)
        _drive(kernel, small_config, steps=1)
        v_gr = small_state.innet_activity.v_gr
        assert torch.all(v_gr > small_config.activity.e_leak)
        assert float(small_state.innet_activity.g_mf_gr.min()) > 0.0

    def test_error_drive_is_consumed_by_one_step(self, small_state, small_config):
        kernel = SimCore(small_state)
        kernel.update_error_drive(1, 5.0)
        assert float(small_state.zone_activity(1).err_drive) == 5.0
        assert float(small_state.zone_activity(0).err_drive) == 0.0
        _drive(kernel, small_config, steps=1)
        assert float(small_state.zone_activity(1).err_drive) == 0.0

    def test_wrong_input_length_raises(self, small_state):
        kernel = SimCore(small_state)
        with pytest.raises(KernelStepError):
            kernel.step_timestep(torch.zeros(3, dtype=torch.uint8), _weights(small_state.config))

    def test_released_state_raises_kernel_error(self, small_config):
        state = SimulationState.create(small_config)
        kernel = SimCore(state)
        state.release()
        with pytest.raises(KernelStepError, match="released"):
            _drive(kernel, small_config, steps=1)

    def test_state_replacement_picked_up(self, small_state, small_config):
        """The kernel reads the state's current sub-states on every step."""
        kernel = SimCore(small_state)
        snapshot = small_state.to_bytes()
        _drive(kernel, small_config, steps=5)
        small_state.read_state(io.BytesIO(snapshot))
        assert int(kernel.export_spikes(CellType.MF).sum()) == 0
        _drive(kernel, small_config, steps=1)
        assert int(kernel.export_spikes(CellType.MF).sum()) == small_config.connectivity.num_mf

    def test_write_state_delegates(self, small_state):
        kernel = SimCore(small_state)
        buffer = io.BytesIO()
        assert kernel.write_state(buffer) == len(small_state.to_bytes())
        assert buffer.getvalue() == small_state.to_bytes()


@pytest.mark.unit
class TestPlasticity:
    """Test PF→PC weight updates."""

    def _run(self, config, steps=20):
        state = SimulationState.create(config)
        kernel = SimCore(state)
        before = state.zone_activity(0).gr_pc_w.clone()
        _drive(kernel, config, steps=steps)
        return state, before

    def test_off_freezes_weights(self, small_config):
        config = replace(small_config, plasticity=PlasticityMode.OFF)
        state, before = self._run(config)
        assert torch.equal(state.zone_activity(0).gr_pc_w, before)
        state.release()

    def test_graded_weights_stay_in_range(self, small_config):
        state, _before = self._run(small_config)
        w = state.zone_activity(0).gr_pc_w
        assert float(w.min()) >= 0.0
        assert float(w.max()) <= small_config.activity.gr_pc_w_max
        state.release()

    def test_binary_weights_are_all_or_nothing(self, small_config):
        config = replace(small_config, plasticity=PlasticityMode.BINARY)
        state, _before = self._run(config)
        act = state.zone_activity(0)
        w_max = config.activity.gr_pc_w_max
        assert torch.all((act.gr_pc_w == 0.0) | (act.gr_pc_w == w_max))
        assert torch.equal(act.gr_pc_syn_state.bool(), act.gr_pc_w == w_max)
        state.release()
