"""
Collaborator protocols consumed by the trial controller.

The controller drives three collaborators it does not own the internals of:

- ``SimKernel``: the numerical kernel. "Advance one timestep" is a single
  blocking call; exports are only valid after it returns.
- ``StimulusSource``: per-phase mossy fiber rate tables.
- ``FrontEnd``: an interactive front end. ``process_pending_events`` is the
  only cooperative yield point of a run and may re-enter the controller to
  set pause or cancel flags.

These are structural ``Protocol``s, so any object with matching methods
works (the reference ``SimCore``, a GPU kernel, or a test fake).

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence, runtime_checkable

import torch

from cbmsim.config import ActivityParams
from cbmsim.constants import CellType, ConductancePathway


@dataclass(frozen=True)
class KernelWeights:
    """Per-step gains handed to ``SimKernel.step_timestep``."""

    mfgo: float
    gogr: float
    grgo: float
    gogo: float
    spill_frac: float

    @classmethod
    def from_activity(cls, activity: ActivityParams) -> "KernelWeights":
        return cls(
            mfgo=activity.mfgo_w,
            gogr=activity.gogr_w,
            grgo=activity.grgo_w,
            gogo=activity.gogo_w,
            spill_frac=activity.spill_frac,
        )


@runtime_checkable
class SimKernel(Protocol):
    """Numerical kernel advancing the network one timestep at a time."""

    @property
    def zones(self) -> Sequence[Any]:
        """Per-zone views handed to the stimulus source (DCN collaterals)."""
        ...

    def update_true_mfs(self, is_true_mf: torch.Tensor) -> None:
        ...

    def step_timestep(self, mf_input: torch.Tensor, weights: KernelWeights) -> None:
        """Advance exactly one timestep driven by ``mf_input`` spikes."""
        ...

    def export_spikes(self, cell_type: CellType, zone: int = 0) -> torch.Tensor:
        ...

    def export_conductance_sum(self, pathway: ConductancePathway) -> torch.Tensor:
        ...

    def update_error_drive(self, zone: int, magnitude: float) -> None:
        ...

    def write_state(self, stream: Any) -> int:
        ...


@runtime_checkable
class StimulusSource(Protocol):
    """Per-phase mossy fiber rate tables (Hz)."""

    def background_rates(self) -> torch.Tensor:
        ...

    def cs_tonic_rates(self) -> torch.Tensor:
        ...

    def cs_phasic_rates(self) -> torch.Tensor:
        ...


@runtime_checkable
class SpikeGenerator(Protocol):
    """Turns rate tables into mossy fiber spikes."""

    def compute_poisson_activity(self, rates: torch.Tensor, zones: Sequence[Any]) -> torch.Tensor:
        ...

    def compute_true_mf_mask(self, rates: torch.Tensor) -> torch.Tensor:
        ...


@runtime_checkable
class FrontEnd(Protocol):
    """Interactive front end polled once per timestep."""

    def process_pending_events(self) -> None:
        ...


__all__ = [
    "KernelWeights",
    "SimKernel",
    "StimulusSource",
    "SpikeGenerator",
    "FrontEnd",
]
