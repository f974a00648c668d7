"""
Seed provisioning for stochastic subsystems.

Every stochastic piece of a simulation (input-network wiring, each zone's
wiring, each zone's initial activity, the mossy fiber generator, ...) draws
from its own generator. Those generators are seeded from one master generator
so that a whole simulation is reproducible from a single master seed.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

import torch

from cbmsim.constants import INT_MAX

logger = logging.getLogger(__name__)


class RandomSeedProvider:
    """Draws independent seeds from one master seed.

    Args:
        master_seed: Seed of the master generator. ``None`` seeds from the
            wall clock, which makes the run non-reproducible; the chosen
            seed is logged and kept in ``master_seed`` so it can be reused.

    Example:
        seeds = RandomSeedProvider(1234)
        innet_seed = seeds.next_seed()
        zone_gen = seeds.spawn_generator()
    """

    def __init__(self, master_seed: Optional[int] = None):
        if master_seed is None:
            master_seed = int(time.time())
            logger.info("No master seed given, seeding from clock: %d", master_seed)
        self.master_seed = int(master_seed)
        self._generator = torch.Generator(device="cpu")
        self._generator.manual_seed(self.master_seed)
        self._draws = 0

    def next_seed(self) -> int:
        """Draw the next seed in ``[0, INT_MAX)``."""
        self._draws += 1
        return int(torch.randint(0, INT_MAX, (1,), generator=self._generator).item())

    def next_seeds(self, count: int) -> List[int]:
        return [self.next_seed() for _ in range(count)]

    def spawn_generator(self) -> torch.Generator:
        """CPU generator seeded with the next drawn seed."""
        return make_generator(self.next_seed())

    @property
    def draws(self) -> int:
        """Number of seeds drawn so far."""
        return self._draws

    def __repr__(self) -> str:
        return f"RandomSeedProvider(master_seed={self.master_seed}, draws={self._draws})"


def make_generator(seed: int) -> torch.Generator:
    """CPU ``torch.Generator`` seeded with ``seed``."""
    generator = torch.Generator(device="cpu")
    generator.manual_seed(int(seed))
    return generator
