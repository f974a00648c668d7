"""Mossy fiber stimulus: per-fiber rates and Poisson spike generation.

Example:
    >>> from cbmsim.stimuli import MossyFiberPopulation, PoissonRegenCells
    >>>
    >>> population = MossyFiberPopulation(num_mf, config.stimulus, seed=3)
    >>> poisson = PoissonRegenCells(num_mf, seed=3, threshold_decay_tau=4.0,
    ...                             ms_per_timestep=1.0, num_zones=1, num_nc=8,
    ...                             collateral_mask=population.collateral_mask)
    >>> spikes = poisson.compute_poisson_activity(population.background_rates(), zones)
"""

from __future__ import annotations

from .mossy_fibers import MossyFiberKind, MossyFiberPopulation
from .poisson import PoissonRegenCells

__all__ = [
    "MossyFiberKind",
    "MossyFiberPopulation",
    "PoissonRegenCells",
]
