"""
Unit tests for spike sum accumulation and firing rates.

Tests:
- Half-open CS window classification
- total == sum(counter) after every update
- Disjoint CS / non-CS windows
- Snapshots and medians leave the live accumulator untouched
"""

import logging

import pytest
import torch

from cbmsim.constants import CellType
from cbmsim.core import spike_sums
from cbmsim.core.spike_sums import (
    SpikeSumAccumulator,
    WindowPhase,
    compute_firing_rates,
    mean_rate,
    median_rate,
    window_phase,
)
from cbmsim.errors import KernelStepError


def _spikes(n, active=()):
    spikes = torch.zeros(n, dtype=torch.uint8)
    spikes[list(active)] = 1
    return spikes


@pytest.mark.unit
class TestWindowPhase:
    """Test the CS window convention."""

    def test_half_open_window(self):
        assert window_phase(4, 5, 11) is WindowPhase.NON_CS
        assert window_phase(5, 5, 11) is WindowPhase.CS
        assert window_phase(10, 5, 11) is WindowPhase.CS
        assert window_phase(11, 5, 11) is WindowPhase.NON_CS

    def test_post_cs_counts_as_non_cs(self):
        assert all(window_phase(ts, 5, 11) is WindowPhase.NON_CS for ts in range(11, 20))


@pytest.mark.unit
class TestSpikeSumAccumulator:
    """Test live spike sums."""

    def test_accepts_names_or_cell_types(self):
        acc = SpikeSumAccumulator({"GO": 4, CellType.PC: 2})
        assert CellType.GO in acc and CellType.PC in acc
        assert acc[CellType.GO].num_cells == 4

    def test_invariant_holds_after_every_record(self):
        acc = SpikeSumAccumulator({CellType.GO: 16, CellType.GR: 64}, check_invariants=True)
        for ts in range(20):
            phase = window_phase(ts, 5, 11)
            acc.record_timestep(
                phase,
                {
                    CellType.GO: (torch.rand(16) > 0.7).to(torch.uint8),
                    CellType.GR: (torch.rand(64) > 0.9).to(torch.uint8),
                },
            )
        acc.check_invariant()

    def test_windows_are_disjoint(self):
        acc = SpikeSumAccumulator({CellType.GO: 8})
        per_cell = torch.zeros(8, dtype=torch.int64)
        for ts in range(20):
            spikes = (torch.rand(8) > 0.5).to(torch.uint8)
            per_cell += spikes.to(torch.int64)
            acc.record_timestep(window_phase(ts, 5, 11), {CellType.GO: spikes})
        go = acc[CellType.GO]
        assert go.cs_spike_sum + go.non_cs_spike_sum == int(per_cell.sum())
        assert torch.equal(go.cs_spike_counter + go.non_cs_spike_counter, per_cell)

    def test_nonzero_values_count_once(self):
        acc = SpikeSumAccumulator({CellType.PC: 3})
        acc.record_timestep(WindowPhase.CS, {CellType.PC: torch.tensor([2, 0, 7], dtype=torch.uint8)})
        assert acc[CellType.PC].cs_spike_sum == 2
        assert acc[CellType.PC].cs_spike_counter.tolist() == [1, 0, 1]

    def test_untracked_types_ignored(self):
        acc = SpikeSumAccumulator({CellType.PC: 3})
        acc.record_timestep(WindowPhase.CS, {CellType.GR: torch.ones(1000, dtype=torch.uint8)})
        assert CellType.GR not in acc

    def test_wrong_export_length_raises(self):
        acc = SpikeSumAccumulator({CellType.GO: 16})
        with pytest.raises(KernelStepError, match="GO spikes"):
            acc.record_timestep(WindowPhase.NON_CS, {CellType.GO: _spikes(15)})

    def test_reset_is_idempotent(self):
        acc = SpikeSumAccumulator({CellType.IO: 2})
        acc.record_timestep(WindowPhase.CS, {CellType.IO: _spikes(2, [0, 1])})
        acc.reset()
        acc.reset()
        io = acc[CellType.IO]
        assert io.cs_spike_sum == io.non_cs_spike_sum == 0
        assert int(io.cs_spike_counter.sum()) == int(io.non_cs_spike_counter.sum()) == 0

    def test_corrupted_totals_detected(self):
        acc = SpikeSumAccumulator({CellType.IO: 2})
        acc[CellType.IO].cs_spike_sum = 5
        with pytest.raises(RuntimeError, match="IO"):
            acc.check_invariant()


@pytest.mark.unit
class TestFiringRates:
    """Test rate computation from snapshots."""

    def test_golgi_scenario(self):
        """One Golgi cell: 3 spikes inside the CS window, 2 outside."""
        acc = SpikeSumAccumulator({CellType.GO: 4})
        spike_steps = {1, 5, 7, 9, 15}
        for ts in range(20):
            active = [0] if ts in spike_steps else []
            acc.record_timestep(window_phase(ts, 5, 11), {CellType.GO: _spikes(4, active)})

        go = acc[CellType.GO]
        assert go.cs_spike_sum == 3
        assert go.non_cs_spike_sum == 2

        rates = compute_firing_rates(acc.snapshot(), non_cs_seconds=0.014, cs_seconds=0.006)
        assert rates[CellType.GO].cs_mean == pytest.approx(3 / (0.006 * 4))
        assert rates[CellType.GO].non_cs_mean == pytest.approx(2 / (0.014 * 4))
        assert rates[CellType.GO].cs_median == 0.0

    def test_snapshot_is_independent(self):
        acc = SpikeSumAccumulator({CellType.GO: 3})
        acc.record_timestep(WindowPhase.CS, {CellType.GO: _spikes(3, [2])})
        snapshot = acc.snapshot()
        acc.record_timestep(WindowPhase.CS, {CellType.GO: _spikes(3, [0, 1, 2])})
        assert snapshot[CellType.GO].cs_spike_sum == 1
        assert snapshot[CellType.GO].cs_spike_counter.tolist() == [0, 0, 1]

    def test_rates_do_not_reorder_live_counters(self):
        acc = SpikeSumAccumulator({CellType.GO: 3})
        acc.record_timestep(WindowPhase.CS, {CellType.GO: _spikes(3, [0])})
        acc.record_timestep(WindowPhase.CS, {CellType.GO: _spikes(3, [0, 1])})
        before = acc[CellType.GO].cs_spike_counter.clone()
        compute_firing_rates(acc.snapshot(), 1.0, 1.0)
        median_rate(acc[CellType.GO].cs_spike_counter, 1.0)
        assert torch.equal(acc[CellType.GO].cs_spike_counter, before)

    def test_median_even_and_odd(self):
        assert median_rate(torch.tensor([4, 1, 3, 2]), 1.0) == pytest.approx(2.5)
        assert median_rate(torch.tensor([5, 1, 3]), 1.0) == pytest.approx(3.0)
        assert median_rate(torch.tensor([5, 1, 3]), 0.5) == pytest.approx(6.0)

    def test_odd_population_warns_once(self, monkeypatch, caplog):
        monkeypatch.setattr(spike_sums, "_odd_sizes_reported", set())
        with caplog.at_level(logging.WARNING, logger="cbmsim.core.spike_sums"):
            median_rate(torch.tensor([5, 1, 3, 2, 2, 9, 0]), 1.0)
            median_rate(torch.tensor([1, 1, 1, 1, 1, 1, 1]), 1.0)
            median_rate(torch.tensor([4, 1, 3, 2]), 1.0)
        warnings = [r for r in caplog.records if "odd population of 7" in r.getMessage()]
        assert len(warnings) == 1
        assert len(caplog.records) == 1

    def test_degenerate_windows_give_zero(self):
        assert mean_rate(10, 4, 0.0) == 0.0
        assert mean_rate(10, 0, 1.0) == 0.0
        assert median_rate(torch.tensor([], dtype=torch.int64), 1.0) == 0.0
