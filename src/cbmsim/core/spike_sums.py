"""
Spike Sums - Per-trial spike totals and per-cell counters by window.

Each tracked cell type has a ``SpikeSum``: a CS-window total, a non-CS total,
and one per-cell counter sequence for each window. Every recorded timestep
is credited to exactly one window, chosen by ``window_phase``:

    [cs_start, cs_offset)  -> CS
    everything else        -> NON_CS

Invariant (checked by ``check_invariant``):
    total == sum(counter)  for both windows of every cell type

Counters are written during a trial and only read afterwards. Rate
computation works on a ``SpikeSumSnapshot`` (cloned counters) and sorts
copies, so computing medians never disturbs the live accumulator.

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Union

import torch

from cbmsim.constants import CellType
from cbmsim.errors import check_export_length

logger = logging.getLogger(__name__)

# Odd population sizes already reported by median_rate
_odd_sizes_reported: set = set()


class WindowPhase(Enum):
    """Which accumulation window a timestep belongs to."""

    NON_CS = "non_cs"
    CS = "cs"


def window_phase(ts: int, cs_start: int, cs_offset: int) -> WindowPhase:
    """Window of timestep ``ts`` under the half-open CS window convention."""
    return WindowPhase.CS if cs_start <= ts < cs_offset else WindowPhase.NON_CS


@dataclass
class SpikeSum:
    """Spike totals and per-cell counters of one cell type."""

    num_cells: int
    non_cs_spike_sum: int
    cs_spike_sum: int
    non_cs_spike_counter: torch.Tensor
    cs_spike_counter: torch.Tensor

    @classmethod
    def zeros(cls, num_cells: int) -> "SpikeSum":
        return cls(
            num_cells=num_cells,
            non_cs_spike_sum=0,
            cs_spike_sum=0,
            non_cs_spike_counter=torch.zeros(num_cells, dtype=torch.int64),
            cs_spike_counter=torch.zeros(num_cells, dtype=torch.int64),
        )

    def copy(self) -> "SpikeSum":
        return SpikeSum(
            num_cells=self.num_cells,
            non_cs_spike_sum=self.non_cs_spike_sum,
            cs_spike_sum=self.cs_spike_sum,
            non_cs_spike_counter=self.non_cs_spike_counter.clone(),
            cs_spike_counter=self.cs_spike_counter.clone(),
        )

    def is_consistent(self) -> bool:
        return (
            int(self.non_cs_spike_counter.sum()) == self.non_cs_spike_sum
            and int(self.cs_spike_counter.sum()) == self.cs_spike_sum
        )


@dataclass(frozen=True)
class SpikeSumSnapshot:
    """Read-only copy of every ``SpikeSum`` at one point in time."""

    sums: Mapping[CellType, SpikeSum]

    def __getitem__(self, cell_type: CellType) -> SpikeSum:
        return self.sums[CellType(cell_type)]

    def __contains__(self, cell_type: object) -> bool:
        return cell_type in self.sums

    def cell_types(self) -> Iterable[CellType]:
        return self.sums.keys()


class SpikeSumAccumulator:
    """Live spike sums of one trial, owned by the trial controller.

    Args:
        cell_counts: Number of cells per tracked type, keyed by ``CellType``
            or by ``CellType`` name (as ``ConnectivityParams.cell_counts``)
        check_invariants: Verify ``total == sum(counter)`` after every call
    """

    def __init__(
        self,
        cell_counts: Mapping[Union[CellType, str], int],
        check_invariants: bool = False,
    ):
        self.cell_counts: Dict[CellType, int] = {
            (CellType[k] if isinstance(k, str) else CellType(k)): int(n)
            for k, n in cell_counts.items()
        }
        self.check_invariants = check_invariants
        self._sums: Dict[CellType, SpikeSum] = {}
        self.reset()

    def reset(self) -> None:
        """Zero every total and counter."""
        self._sums = {ct: SpikeSum.zeros(n) for ct, n in self.cell_counts.items()}
        if self.check_invariants:
            self.check_invariant()

    def record_timestep(
        self,
        phase: WindowPhase,
        spikes_by_type: Mapping[CellType, torch.Tensor],
    ) -> None:
        """Add one timestep of exported spikes to the ``phase`` window.

        Any nonzero spike value counts as one spike. Cell types that are not
        tracked are ignored.

        Raises:
            KernelStepError: If an exported array has the wrong length
        """
        cs = phase is WindowPhase.CS
        for cell_type, spikes in spikes_by_type.items():
            spike_sum = self._sums.get(CellType(cell_type))
            if spike_sum is None:
                continue
            check_export_length(f"{CellType(cell_type).name} spikes", spikes, spike_sum.num_cells)
            counts = (spikes.detach().to("cpu") != 0).to(torch.int64)
            if cs:
                spike_sum.cs_spike_counter += counts
                spike_sum.cs_spike_sum += int(counts.sum())
            else:
                spike_sum.non_cs_spike_counter += counts
                spike_sum.non_cs_spike_sum += int(counts.sum())
        if self.check_invariants:
            self.check_invariant()

    def snapshot(self) -> SpikeSumSnapshot:
        """Independent copy for rate computation."""
        return SpikeSumSnapshot(MappingProxyType({ct: s.copy() for ct, s in self._sums.items()}))

    def check_invariant(self) -> None:
        """Raise ``RuntimeError`` if any total differs from its counter sum."""
        for cell_type, spike_sum in self._sums.items():
            if not spike_sum.is_consistent():
                raise RuntimeError(
                    f"Spike sum of {cell_type.name} does not match its per-cell counters"
                )

    def __getitem__(self, cell_type: CellType) -> SpikeSum:
        return self._sums[CellType(cell_type)]

    def __contains__(self, cell_type: object) -> bool:
        return cell_type in self._sums


# =============================================================================
# Firing rates
# =============================================================================


@dataclass(frozen=True)
class FiringRate:
    """Mean and median firing rates (Hz) of one cell type in both windows."""

    non_cs_mean: float
    non_cs_median: float
    cs_mean: float
    cs_median: float


def mean_rate(total: int, num_cells: int, seconds: float) -> float:
    if seconds <= 0 or num_cells <= 0:
        return 0.0
    return total / (seconds * num_cells)


def median_rate(counter: torch.Tensor, seconds: float) -> float:
    """Median per-cell rate of ``counter``; sorts a copy.

    Even counts average the two central elements. The rate model assumes
    even-sized populations; for an odd count the middle element is used and
    a warning is logged once per population size.
    """
    n = counter.numel()
    if n == 0 or seconds <= 0:
        return 0.0
    ordered = torch.sort(counter.clone()).values
    if n % 2 == 0:
        middle = (float(ordered[n // 2 - 1]) + float(ordered[n // 2])) / 2.0
    else:
        if n not in _odd_sizes_reported:
            _odd_sizes_reported.add(n)
            logger.warning(
                "Median over an odd population of %d cells uses the middle counter; "
                "rates assume even population sizes",
                n,
            )
        middle = float(ordered[n // 2])
    return middle / seconds


def compute_firing_rates(
    snapshot: SpikeSumSnapshot,
    non_cs_seconds: float,
    cs_seconds: float,
) -> Dict[CellType, FiringRate]:
    """Firing rates of every cell type in ``snapshot``."""
    rates = {}
    for cell_type in snapshot.cell_types():
        s = snapshot[cell_type]
        rates[cell_type] = FiringRate(
            non_cs_mean=mean_rate(s.non_cs_spike_sum, s.num_cells, non_cs_seconds),
            non_cs_median=median_rate(s.non_cs_spike_counter, non_cs_seconds),
            cs_mean=mean_rate(s.cs_spike_sum, s.num_cells, cs_seconds),
            cs_median=median_rate(s.cs_spike_counter, cs_seconds),
        )
    return rates


__all__ = [
    "WindowPhase",
    "window_phase",
    "SpikeSum",
    "SpikeSumSnapshot",
    "SpikeSumAccumulator",
    "FiringRate",
    "mean_rate",
    "median_rate",
    "compute_firing_rates",
]
