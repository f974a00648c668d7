"""
Control - Lifecycle owner of one simulation.

``Control`` ties together the pieces of a simulation: configuration, the
owned ``SimulationState``, the kernel stepping it, the mossy fiber stimulus,
raster recording, and the pause/cancel flags of a run.

Two ways to get a simulation:
    Control.from_config(config)             build a fresh network
    Control.from_sim_file(path, config)     restore one from a simulation file

Both population steps are set-once: building or loading a second time on the
same ``Control`` is a ``PreconditionViolation``. The public operations report
precondition and file-system failures by logging them and returning
``False`` (or ``None`` for runs), leaving the simulation untouched. Corrupt
simulation files raise ``CorruptStateError``, and kernel failures during a
run raise ``KernelStepError``.

Usage:
    with Control.from_config(config) as control:
        summary = control.run_trials()
        control.save_rasters("out/")
        control.save_sim_to_file("out/trained.sim")

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

from cbmsim.config import SimulationConfig
from cbmsim.constants import PFPC_WEIGHT_SAMPLE_SIZE
from cbmsim.core.protocols import FrontEnd
from cbmsim.core.sim_core import SimCore
from cbmsim.core.trial_controller import (
    RunControl,
    RunSummary,
    TrialController,
    TrialResult,
    TrialSpec,
)
from cbmsim.errors import OutputIOError, PreconditionViolation
from cbmsim.io.raster import RasterRecorder, save_weight_snapshot
from cbmsim.io.sim_file import load_sim_file, save_sim_file, save_state_file
from cbmsim.state import RandomSeedProvider, SimulationState
from cbmsim.stimuli import MossyFiberPopulation, PoissonRegenCells

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class Control:
    """Owns a simulation and exposes its operations.

    Args:
        front_end: Interactive front end polled once per timestep during runs
        on_trial_end: Listener for per-trial results (e.g. firing-rate display)
    """

    def __init__(
        self,
        front_end: Optional[FrontEnd] = None,
        on_trial_end: Optional[Callable[[TrialResult], None]] = None,
    ):
        self.config: Optional[SimulationConfig] = None
        self.state: Optional[SimulationState] = None
        self.kernel: Optional[SimCore] = None
        self.mf_population: Optional[MossyFiberPopulation] = None
        self.poisson: Optional[PoissonRegenCells] = None
        self.raster: Optional[RasterRecorder] = None
        self.run_control = RunControl(front_end)
        self.on_trial_end = on_trial_end
        self.last_summary: Optional[RunSummary] = None

    # =====================================================================
    # CONSTRUCTION
    # =====================================================================

    @classmethod
    def from_config(cls, config: SimulationConfig, **kwargs: Any) -> "Control":
        """Build a fresh simulation (raises on failure)."""
        control = cls(**kwargs)
        control._build_sim(config)
        return control

    @classmethod
    def from_sim_file(
        cls, path: PathLike, config: Optional[SimulationConfig] = None, **kwargs: Any
    ) -> "Control":
        """Restore a simulation from a simulation file (raises on failure).

        ``config`` supplies zone count, plasticity, stimulus and timing; the
        connectivity and activity parameters come from the file.
        """
        control = cls(**kwargs)
        control._init_sim_state(path, config if config is not None else SimulationConfig())
        return control

    def build_sim(self, config: SimulationConfig) -> bool:
        """Generate a new simulation. Returns False if one already exists."""
        try:
            self._build_sim(config)
        except PreconditionViolation as exc:
            logger.error("Could not build simulation: %s", exc)
            return False
        return True

    def init_sim_state(self, path: PathLike, config: Optional[SimulationConfig] = None) -> bool:
        """Load a simulation file. Returns False if a simulation already exists,
        no configuration is available, or the file cannot be opened.

        Raises:
            CorruptStateError: If the file is truncated or inconsistent
        """
        try:
            config = config if config is not None else self.config
            if config is None:
                raise PreconditionViolation(
                    "No configuration to initialize the simulation state with"
                )
            self._init_sim_state(path, config)
        except (PreconditionViolation, OSError) as exc:
            logger.error("Could not initialize simulation state: %s", exc)
            return False
        return True

    def _build_sim(self, config: SimulationConfig) -> None:
        self._require_unpopulated()
        seeds = RandomSeedProvider(config.seed)
        state = SimulationState.create(config, seeds)
        self._adopt(config, state, seeds)

    def _init_sim_state(self, path: PathLike, config: SimulationConfig) -> None:
        self._require_unpopulated()
        _con, _act, state = load_sim_file(path, config)
        self._adopt(state.config, state, RandomSeedProvider(config.seed))

    def _require_unpopulated(self) -> None:
        if self.state is not None:
            raise PreconditionViolation("Simulation already initialized; create a new Control")

    def _adopt(
        self, config: SimulationConfig, state: SimulationState, seeds: RandomSeedProvider
    ) -> None:
        mf_seed = config.stimulus.mf_seed
        if mf_seed is None:
            mf_seed = seeds.next_seed()
        num_mf = config.connectivity.num_mf

        self.config = config
        self.state = state
        self.kernel = SimCore(state, config)
        self.mf_population = MossyFiberPopulation(num_mf, config.stimulus, mf_seed)
        self.poisson = PoissonRegenCells(
            num_mf,
            seed=mf_seed,
            threshold_decay_tau=config.activity.mf_threshold_decay_tau,
            ms_per_timestep=config.activity.ms_per_timestep,
            num_zones=config.num_zones,
            num_nc=config.connectivity.num_nc,
            collateral_mask=self.mf_population.collateral_mask,
            collaterals_off=config.stimulus.collaterals_off,
        )
        self.raster = RasterRecorder(config)
        logger.info(
            "Simulation ready: %d zones, %s plasticity", config.num_zones, state.plasticity.name
        )

    # =====================================================================
    # PERSISTENCE
    # =====================================================================

    def save_sim_to_file(self, path: PathLike) -> bool:
        """Write parameters and state. Returns False on failure."""
        try:
            self._require_populated("save the simulation")
            save_sim_file(path, self.config, self.state, self.kernel)
        except (PreconditionViolation, OutputIOError) as exc:
            logger.error("Could not save simulation: %s", exc)
            return False
        return True

    def save_sim_state_to_file(self, path: PathLike) -> bool:
        """Write the state only. Returns False on failure."""
        try:
            self._require_populated("save the simulation state")
            save_state_file(path, self.state, self.kernel)
        except (PreconditionViolation, OutputIOError) as exc:
            logger.error("Could not save simulation state: %s", exc)
            return False
        return True

    def save_rasters(self, directory: PathLike) -> bool:
        """Flush raster buffers to ``directory``. Returns False on failure."""
        try:
            self._require_populated("save rasters")
            self.raster.save(directory)
        except (PreconditionViolation, OutputIOError) as exc:
            logger.error("Could not save rasters: %s", exc)
            return False
        return True

    def save_weights(
        self, path: PathLike, zone: int = 0, sample: int = PFPC_WEIGHT_SAMPLE_SIZE
    ) -> bool:
        """Write a PF→PC weight sample of ``zone``. Returns False on failure."""
        try:
            self._require_populated("save weights")
            save_weight_snapshot(path, self.state, zone, sample)
        except (PreconditionViolation, OutputIOError) as exc:
            logger.error("Could not save PF→PC weights: %s", exc)
            return False
        return True

    # =====================================================================
    # RUNS
    # =====================================================================

    def run_trials(self, front_end: Optional[FrontEnd] = None) -> Optional[RunSummary]:
        """Training run using the configured timing. None if not initialized.

        Raises:
            KernelStepError: If the kernel fails mid-run (the run is aborted)
        """
        controller = self._controller(front_end, "run trials")
        if controller is None:
            return None
        self.last_summary = controller.run_trials()
        return self.last_summary

    def run_experiment(
        self, trials: Sequence[TrialSpec], front_end: Optional[FrontEnd] = None
    ) -> Optional[RunSummary]:
        """Run explicit trial definitions. None if not initialized."""
        controller = self._controller(front_end, "run experiment")
        if controller is None:
            return None
        self.last_summary = controller.run_experiment(trials)
        return self.last_summary

    def _controller(self, front_end: Optional[FrontEnd], what: str) -> Optional[TrialController]:
        try:
            self._require_populated(what)
        except PreconditionViolation as exc:
            logger.error("Could not %s: %s", what, exc)
            return None
        if front_end is not None:
            self.run_control.front_end = front_end
        self.run_control.clear()
        return TrialController(
            self.config,
            self.kernel,
            self.mf_population,
            self.poisson,
            raster=self.raster,
            run_control=self.run_control,
            on_trial_end=self.on_trial_end,
            seed=self.config.seed,
        )

    def pause(self) -> None:
        self.run_control.pause()

    def resume(self) -> None:
        self.run_control.resume()

    def cancel(self) -> None:
        self.run_control.cancel()

    # =====================================================================
    # LIFETIME
    # =====================================================================

    @property
    def is_populated(self) -> bool:
        return self.state is not None and not self.state.is_released

    def _require_populated(self, what: str) -> None:
        if not self.is_populated:
            raise PreconditionViolation(f"Cannot {what}: simulation not initialized")

    def close(self) -> None:
        """Release the simulation state. The Control cannot be reused."""
        if self.state is not None:
            self.state.release()
        self.kernel = None

    def __enter__(self) -> "Control":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = ["Control"]
