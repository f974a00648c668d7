"""
Mossy Fiber Population - Per-fiber firing rates for each stimulus phase.

Every mossy fiber is assigned one kind when the population is built:

    COLLATERAL  - driven by nucleus (DCN) output instead of a rate
    CS_TONIC    - fires at a tonic rate throughout the CS
    CS_PHASIC   - fires at a high rate at CS onset, tonic rate afterwards
    CONTEXT     - constant elevated rate, independent of the CS
    BACKGROUND  - everything else

Kinds are assigned from the configured fractions with a seeded permutation,
and per-fiber rates are drawn uniformly from each kind's frequency range, so a
population is fully reproducible from ``(num_mf, params, seed)``.

Rate tables (Hz, float32, length ``num_mf``):
    background_rates()     - outside the CS
    cs_tonic_rates()       - CS window after the phasic sub-window
    cs_phasic_rates()      - first ``cs_phasic_size`` ms of the CS
"""

from __future__ import annotations

import logging
from enum import IntEnum

import torch

from cbmsim.config import StimulusParams
from cbmsim.state.seeds import make_generator

logger = logging.getLogger(__name__)


class MossyFiberKind(IntEnum):
    BACKGROUND = 0
    CS_TONIC = 1
    CS_PHASIC = 2
    CONTEXT = 3
    COLLATERAL = 4


class MossyFiberPopulation:
    """Assigns mossy fiber kinds and draws their rates.

    Args:
        num_mf: Number of mossy fibers
        params: Fractions and frequency ranges
        seed: Seed for kind assignment and rate draws
    """

    def __init__(self, num_mf: int, params: StimulusParams, seed: int):
        self.num_mf = num_mf
        self.params = params
        self.seed = seed
        gen = make_generator(seed)

        self.kinds = self._assign_kinds(num_mf, params, gen)

        def draw(low: float, high: float) -> torch.Tensor:
            return low + (high - low) * torch.rand(num_mf, generator=gen)

        bg = draw(params.bg_freq_min, params.bg_freq_max)
        csbg = draw(params.csbg_freq_min, params.csbg_freq_max)
        context = draw(params.context_freq_min, params.context_freq_max)
        tonic = draw(params.tonic_freq_min, params.tonic_freq_max)
        phasic = draw(params.phasic_freq_min, params.phasic_freq_max)

        cs_fibers = self.is_kind(MossyFiberKind.CS_TONIC) | self.is_kind(MossyFiberKind.CS_PHASIC)

        background = torch.where(cs_fibers, csbg, bg)
        background = torch.where(self.is_kind(MossyFiberKind.CONTEXT), context, background)
        background = torch.where(self.collateral_mask, torch.zeros_like(bg), background)

        in_cs_tonic = torch.where(cs_fibers, tonic, background)
        in_cs_phasic = torch.where(self.is_kind(MossyFiberKind.CS_PHASIC), phasic, in_cs_tonic)

        self._background = background.to(torch.float32)
        self._cs_tonic = in_cs_tonic.to(torch.float32)
        self._cs_phasic = in_cs_phasic.to(torch.float32)

        logger.debug(
            "Mossy fibers: %d tonic, %d phasic, %d context, %d collateral of %d",
            int(self.is_kind(MossyFiberKind.CS_TONIC).sum()),
            int(self.is_kind(MossyFiberKind.CS_PHASIC).sum()),
            int(self.is_kind(MossyFiberKind.CONTEXT).sum()),
            int(self.collateral_mask.sum()),
            num_mf,
        )

    @staticmethod
    def _assign_kinds(num_mf: int, params: StimulusParams, gen: torch.Generator) -> torch.Tensor:
        order = torch.randperm(num_mf, generator=gen)
        kinds = torch.full((num_mf,), int(MossyFiberKind.BACKGROUND), dtype=torch.int8)
        start = 0
        for kind, frac in (
            (MossyFiberKind.COLLATERAL, params.collateral_frac),
            (MossyFiberKind.CS_TONIC, params.cs_tonic_frac),
            (MossyFiberKind.CS_PHASIC, params.cs_phasic_frac),
            (MossyFiberKind.CONTEXT, params.context_frac),
        ):
            count = min(int(frac * num_mf), num_mf - start)
            kinds[order[start:start + count]] = int(kind)
            start += count
        return kinds

    def is_kind(self, kind: MossyFiberKind) -> torch.Tensor:
        return self.kinds == int(kind)

    @property
    def collateral_mask(self) -> torch.Tensor:
        """Fibers driven by nucleus collaterals."""
        return self.is_kind(MossyFiberKind.COLLATERAL)

    # Rate tables are returned as copies so callers cannot alter the population

    def background_rates(self) -> torch.Tensor:
        return self._background.clone()

    def cs_tonic_rates(self) -> torch.Tensor:
        return self._cs_tonic.clone()

    def cs_phasic_rates(self) -> torch.Tensor:
        return self._cs_phasic.clone()

    def __repr__(self) -> str:
        return f"MossyFiberPopulation(num_mf={self.num_mf}, seed={self.seed})"
