"""
Simulation Configuration.

One immutable ``SimulationConfig`` is constructed per simulation and passed by
reference into every component that needs sizes, timing or gains. It replaces
populate-once global parameter tables: there is nothing to "populate" later,
and a config cannot change under a running simulation.

Structure:
==========
SimulationConfig
├── connectivity: ConnectivityParams  (cell counts and fan-in sizes)
├── activity: ActivityParams          (time constants, thresholds, gains)
├── stimulus: StimulusParams          (mossy fiber kinds and frequency ranges)
├── timing: TrialTiming               (trial length, CS/US windows, trial counts)
├── num_zones, plasticity
└── device, dtype, seed               (from BaseConfig)

Connectivity and activity parameters are what a full simulation file stores
ahead of the state blob; the remaining sections belong to an experiment and
are supplied fresh on every run.

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional

from cbmsim.config.base import BaseConfig, ParamsMixin
from cbmsim.constants import SECONDS_PER_MS, PlasticityMode
from cbmsim.errors import ConfigurationError


def _require_positive(owner: object, *names: str) -> None:
    for name in names:
        value = getattr(owner, name)
        if value <= 0:
            raise ConfigurationError(
                f"{type(owner).__name__}.{name} must be positive, got {value}"
            )


def _require_fraction(owner: object, *names: str) -> None:
    for name in names:
        value = getattr(owner, name)
        if not 0.0 <= value <= 1.0:
            raise ConfigurationError(
                f"{type(owner).__name__}.{name} must be in [0, 1], got {value}"
            )


# =============================================================================
# CONNECTIVITY
# =============================================================================


@dataclass(frozen=True)
class ConnectivityParams(ParamsMixin):
    """Cell counts and fan-in sizes of the cerebellar network.

    Fan-in sizes are the number of presynaptic partners each postsynaptic
    cell receives (``mf_per_gr`` = mossy fibers per granule cell, etc.).
    """

    # Input network populations
    num_mf: int = 4096
    num_gr: int = 1048576
    num_go: int = 4096
    num_sc: int = 512

    # Per-zone populations
    num_bc: int = 128
    num_pc: int = 32
    num_io: int = 4
    num_nc: int = 8

    # Input network fan-in
    mf_per_gr: int = 4
    go_per_gr: int = 3
    mf_per_go: int = 20
    gr_per_go: int = 3000
    go_per_go: int = 12
    gr_per_sc: int = 100

    # Zone fan-in
    gr_per_pc: int = 32768
    gr_per_bc: int = 100
    bc_per_pc: int = 16
    sc_per_pc: int = 64
    pc_per_nc: int = 16
    mf_per_nc: int = 8
    nc_per_io: int = 8

    def __post_init__(self) -> None:
        _require_positive(self, *(f.name for f in fields(self)))

        fan_ins = {
            "mf_per_gr": self.num_mf,
            "go_per_gr": self.num_go,
            "mf_per_go": self.num_mf,
            "gr_per_go": self.num_gr,
            "gr_per_sc": self.num_gr,
            "gr_per_pc": self.num_gr,
            "gr_per_bc": self.num_gr,
            "bc_per_pc": self.num_bc,
            "sc_per_pc": self.num_sc,
            "pc_per_nc": self.num_pc,
            "mf_per_nc": self.num_mf,
            "nc_per_io": self.num_nc,
        }
        for name, pool in fan_ins.items():
            if getattr(self, name) > pool:
                raise ConfigurationError(
                    f"ConnectivityParams.{name}={getattr(self, name)} exceeds "
                    f"presynaptic population size {pool}"
                )
        # Golgi-Golgi connections exclude self connections
        if self.go_per_go >= self.num_go:
            raise ConfigurationError(
                f"ConnectivityParams.go_per_go={self.go_per_go} must be smaller "
                f"than num_go={self.num_go} (no self connections)"
            )

    @property
    def cell_counts(self) -> Dict[str, int]:
        """Population sizes keyed by CellType name."""
        return {
            "MF": self.num_mf,
            "GR": self.num_gr,
            "GO": self.num_go,
            "BC": self.num_bc,
            "SC": self.num_sc,
            "PC": self.num_pc,
            "IO": self.num_io,
            "DCN": self.num_nc,
        }


# =============================================================================
# ACTIVITY
# =============================================================================


@dataclass(frozen=True)
class ActivityParams(ParamsMixin):
    """Dynamics parameters used to initialize and advance activity state."""

    ms_per_timestep: float = 1.0

    # Reversal potentials (mV)
    e_leak: float = -70.0
    e_exc: float = 0.0
    e_inh: float = -80.0

    # Resting spike thresholds (mV)
    thresh_rest_gr: float = -40.0
    thresh_rest_go: float = -34.0
    thresh_rest_sc: float = -50.0
    thresh_rest_bc: float = -50.0
    thresh_rest_pc: float = -62.0
    thresh_rest_nc: float = -72.0
    thresh_rest_io: float = -57.4

    # Post-spike threshold jump and its recovery
    thresh_max: float = 10.0
    thresh_decay_tau: float = 3.0

    # Membrane and synaptic time constants (ms)
    g_leak: float = 0.1
    tau_exc: float = 5.0
    tau_inh: float = 10.0

    # Input network gains
    mf_gr_w: float = 0.0042
    gr_sc_w: float = 0.002
    mfgo_w: float = 0.00315
    gogr_w: float = 0.017
    grgo_w: float = 0.00063
    gogo_w: float = 0.0125
    spill_frac: float = 0.15

    # Zone gains and initial plastic weights
    gr_pc_w_init: float = 0.5
    mf_nc_w_init: float = 0.00146
    gr_bc_w: float = 0.002
    bc_pc_w: float = 0.05
    sc_pc_w: float = 0.05
    pc_nc_w: float = 0.05
    nc_io_w: float = 0.03

    # PF→PC plasticity
    gr_pc_ltd_step: float = -0.00275
    gr_pc_ltp_step: float = 0.00030556
    gr_pc_w_max: float = 1.0

    # Error drive
    us_magnitude: float = 0.3
    io_jitter_mv: float = 2.0

    # Mossy fiber generator threshold recovery (ms)
    mf_threshold_decay_tau: float = 4.0

    def __post_init__(self) -> None:
        _require_positive(
            self,
            "ms_per_timestep",
            "thresh_decay_tau",
            "tau_exc",
            "tau_inh",
            "mf_threshold_decay_tau",
        )
        _require_fraction(self, "spill_frac")
        if not 0.0 <= self.gr_pc_w_init <= self.gr_pc_w_max:
            raise ConfigurationError(
                f"ActivityParams.gr_pc_w_init={self.gr_pc_w_init} must be in "
                f"[0, gr_pc_w_max={self.gr_pc_w_max}]"
            )


# =============================================================================
# STIMULUS
# =============================================================================


@dataclass(frozen=True)
class StimulusParams(ParamsMixin):
    """Mossy fiber population make-up and frequency ranges (Hz)."""

    cs_tonic_frac: float = 0.05
    cs_phasic_frac: float = 0.03
    context_frac: float = 0.03
    collateral_frac: float = 0.02

    bg_freq_min: float = 1.0
    bg_freq_max: float = 10.0
    csbg_freq_min: float = 1.0
    csbg_freq_max: float = 5.0
    context_freq_min: float = 20.0
    context_freq_max: float = 50.0
    tonic_freq_min: float = 40.0
    tonic_freq_max: float = 50.0
    phasic_freq_min: float = 120.0
    phasic_freq_max: float = 130.0

    collaterals_off: bool = False
    mf_seed: Optional[int] = None

    def __post_init__(self) -> None:
        fracs = ("cs_tonic_frac", "cs_phasic_frac", "context_frac", "collateral_frac")
        _require_fraction(self, *fracs)
        if sum(getattr(self, name) for name in fracs) > 1.0:
            raise ConfigurationError(
                "StimulusParams mossy fiber fractions must sum to at most 1.0"
            )
        for kind in ("bg", "csbg", "context", "tonic", "phasic"):
            lo = getattr(self, f"{kind}_freq_min")
            hi = getattr(self, f"{kind}_freq_max")
            if lo < 0 or hi < lo:
                raise ConfigurationError(
                    f"StimulusParams.{kind}_freq range [{lo}, {hi}] is invalid"
                )


# =============================================================================
# TIMING
# =============================================================================


@dataclass(frozen=True)
class TrialTiming(ParamsMixin):
    """Trial length, CS/US windows and trial counts (all in timesteps).

    The CS window is half-open: ``[cs_start, cs_start + cs_length)``.
    """

    trial_time: int = 5000
    cs_start: int = 2000
    cs_length: int = 500
    cs_phasic_size: int = 50
    ms_pre_cs: int = 400
    ms_post_cs: int = 400

    homeo_tuning_trials: int = 0
    granule_act_detect_trials: int = 0
    num_training_trials: int = 1

    def __post_init__(self) -> None:
        _require_positive(self, "trial_time", "cs_length")
        for name in (
            "cs_start",
            "cs_phasic_size",
            "ms_pre_cs",
            "ms_post_cs",
            "homeo_tuning_trials",
            "granule_act_detect_trials",
            "num_training_trials",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"TrialTiming.{name} must be non-negative")
        # The US and end-of-CS report fire at cs_offset, so it must be inside the trial
        if self.cs_offset >= self.trial_time:
            raise ConfigurationError(
                f"CS window [{self.cs_start}, {self.cs_offset}) must end before "
                f"trial_time={self.trial_time}"
            )
        if self.cs_phasic_size > self.cs_length:
            raise ConfigurationError(
                f"cs_phasic_size={self.cs_phasic_size} exceeds cs_length={self.cs_length}"
            )
        if self.cs_start - self.ms_pre_cs < 0 or self.cs_offset + self.ms_post_cs > self.trial_time:
            raise ConfigurationError(
                "Raster window [cs_start - ms_pre_cs, cs_offset + ms_post_cs) "
                "must lie inside the trial"
            )

    @property
    def cs_offset(self) -> int:
        """First timestep after the CS window."""
        return self.cs_start + self.cs_length

    @property
    def pre_trial_number(self) -> int:
        """Trials before training proper (homeostatic tuning + granule detection)."""
        return self.homeo_tuning_trials + self.granule_act_detect_trials

    @property
    def num_total_trials(self) -> int:
        return self.pre_trial_number + self.num_training_trials

    @property
    def raster_column_size(self) -> int:
        """Number of timesteps recorded per trial into raster buffers."""
        return self.ms_pre_cs + self.cs_length + self.ms_post_cs


# =============================================================================
# TOP LEVEL
# =============================================================================


@dataclass(frozen=True)
class SimulationConfig(BaseConfig):
    """Complete, immutable configuration of one simulation.

    Example:
        config = SimulationConfig(
            connectivity=ConnectivityParams(num_gr=8192, gr_per_pc=1024, ...),
            num_zones=2,
            seed=1234,
        )
        state = SimulationState.create(config)
    """

    connectivity: ConnectivityParams = field(default_factory=ConnectivityParams)
    activity: ActivityParams = field(default_factory=ActivityParams)
    stimulus: StimulusParams = field(default_factory=StimulusParams)
    timing: TrialTiming = field(default_factory=TrialTiming)
    num_zones: int = 1
    plasticity: PlasticityMode = PlasticityMode.GRADED

    def __post_init__(self) -> None:
        if self.num_zones < 1:
            raise ConfigurationError(f"num_zones must be at least 1, got {self.num_zones}")
        if not isinstance(self.plasticity, PlasticityMode):
            # Accept names and raw ints from parsed files
            try:
                mode = (
                    PlasticityMode.from_name(self.plasticity)
                    if isinstance(self.plasticity, str)
                    else PlasticityMode(self.plasticity)
                )
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
            object.__setattr__(self, "plasticity", mode)
        self.get_torch_dtype()

    # ------------------------------------------------------------------
    # Derived windows
    # ------------------------------------------------------------------

    def cs_seconds(self, cs_length: int | None = None) -> float:
        """Length of the CS window in seconds."""
        length = self.timing.cs_length if cs_length is None else cs_length
        return length * self.activity.ms_per_timestep * SECONDS_PER_MS

    def non_cs_seconds(self, cs_length: int | None = None) -> float:
        """Length of the part of a trial outside the CS window, in seconds."""
        length = self.timing.cs_length if cs_length is None else cs_length
        return (self.timing.trial_time - length) * self.activity.ms_per_timestep * SECONDS_PER_MS

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device,
            "dtype": self.dtype,
            "seed": self.seed,
            "num_zones": self.num_zones,
            "plasticity": self.plasticity.name.lower(),
            "connectivity": self.connectivity.to_dict(),
            "activity": self.activity.to_dict(),
            "stimulus": self.stimulus.to_dict(),
            "timing": self.timing.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SimulationConfig":
        """Build from a nested dictionary (e.g. a JSON parameter file).

        Missing sections fall back to their defaults.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown SimulationConfig keys: {sorted(unknown)}")
        kwargs: Dict[str, Any] = {k: v for k, v in data.items() if k not in _SECTIONS}
        for name, params_cls in _SECTIONS.items():
            if name in data:
                kwargs[name] = params_cls.from_dict(data[name])
        return cls(**kwargs)

    def with_params(
        self,
        connectivity: ConnectivityParams | None = None,
        activity: ActivityParams | None = None,
    ) -> "SimulationConfig":
        """Copy with connectivity/activity parameters replaced (e.g. read from a file)."""
        return replace(
            self,
            connectivity=connectivity if connectivity is not None else self.connectivity,
            activity=activity if activity is not None else self.activity,
        )


_SECTIONS = {
    "connectivity": ConnectivityParams,
    "activity": ActivityParams,
    "stimulus": StimulusParams,
    "timing": TrialTiming,
}
