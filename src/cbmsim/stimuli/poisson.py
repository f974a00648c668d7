"""Poisson mossy fiber spike generation with a relative refractory period."""

from __future__ import annotations

import math
from typing import Any, Optional, Sequence

import torch

from cbmsim.errors import KernelStepError, check_export_length
from cbmsim.state.seeds import make_generator


class PoissonRegenCells:
    """Bernoulli spike generator for the mossy fiber population.

    Each fiber spikes with probability ``rate * dt / 1000 * threshold``. The
    threshold factor drops to zero after a spike and recovers towards one with
    time constant ``threshold_decay_tau``, which suppresses implausible
    back-to-back spikes.

    Collateral fibers ignore their rate and copy a nucleus (DCN) cell's spike
    from the previous step. Collateral ``k`` follows DCN cell
    ``k % num_nc`` of zone ``(k // num_nc) % num_zones``.

    Args:
        num_mf: Number of mossy fibers
        seed: Seed of the spike draws
        threshold_decay_tau: Recovery time constant in ms
        ms_per_timestep: Timestep in ms
        num_zones: Number of zones available to collaterals
        num_nc: DCN cells per zone
        collateral_mask: Bool mask of collateral fibers (None = no collaterals)
        collaterals_off: Silence collateral fibers instead of driving them
    """

    def __init__(
        self,
        num_mf: int,
        seed: int,
        threshold_decay_tau: float,
        ms_per_timestep: float,
        num_zones: int,
        num_nc: int,
        collateral_mask: Optional[torch.Tensor] = None,
        collaterals_off: bool = False,
    ):
        self.num_mf = num_mf
        self.num_zones = num_zones
        self.num_nc = num_nc
        self.ms_per_timestep = ms_per_timestep
        self.collaterals_off = collaterals_off
        self._generator = make_generator(seed)
        self._threshold_decay = 1.0 - math.exp(-ms_per_timestep / threshold_decay_tau)
        self._thresholds = torch.ones(num_mf, dtype=torch.float32)

        if collateral_mask is None:
            collateral_mask = torch.zeros(num_mf, dtype=torch.bool)
        check_export_length("collateral mask", collateral_mask, num_mf)
        self.collateral_mask = collateral_mask.to(torch.bool)
        self._collateral_index = torch.nonzero(self.collateral_mask).flatten()

    def compute_poisson_activity(
        self,
        rates: torch.Tensor,
        zones: Optional[Sequence[Any]] = None,
    ) -> torch.Tensor:
        """Draw one timestep of mossy fiber spikes.

        Args:
            rates: Firing rate of every fiber in Hz
            zones: Zone activity states (anything with an ``ap_nc`` tensor);
                required when collaterals are active

        Returns:
            uint8 spike tensor of length ``num_mf``
        """
        check_export_length("mossy fiber rates", rates, self.num_mf)
        p_spike = rates.detach().to("cpu", torch.float32) * (self.ms_per_timestep / 1000.0)
        p_spike = p_spike * self._thresholds
        spikes = torch.rand(self.num_mf, generator=self._generator) < p_spike

        if len(self._collateral_index) > 0:
            spikes[self._collateral_index] = False
            if not self.collaterals_off:
                spikes[self._collateral_index] = self._collateral_spikes(zones)

        self._thresholds += (1.0 - self._thresholds) * self._threshold_decay
        self._thresholds[spikes] = 0.0
        return spikes.to(torch.uint8)

    def _collateral_spikes(self, zones: Optional[Sequence[Any]]) -> torch.Tensor:
        if not zones:
            raise KernelStepError("Collateral mossy fibers need the zone list to read DCN spikes")
        k = torch.arange(len(self._collateral_index))
        zone_of = (k // self.num_nc) % min(self.num_zones, len(zones))
        cell_of = k % self.num_nc
        out = torch.zeros(len(k), dtype=torch.bool)
        for z in range(min(self.num_zones, len(zones))):
            dcn = zones[z].ap_nc.detach().to("cpu")
            check_export_length(f"zone {z} DCN spikes", dcn, self.num_nc)
            selected = zone_of == z
            out[selected] = dcn[cell_of[selected]] > 0
        return out

    def compute_true_mf_mask(self, rates: torch.Tensor) -> torch.Tensor:
        """Fibers driven by a rate (everything except collaterals)."""
        check_export_length("mossy fiber rates", rates, self.num_mf)
        return ~self.collateral_mask

    def reset(self) -> None:
        """Restore full excitability of every fiber."""
        self._thresholds.fill_(1.0)
