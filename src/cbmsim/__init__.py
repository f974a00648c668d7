"""
CBMSIM - Cerebellar simulation state and trial control

Owns the persistent state of a cerebellar network (input network plus one
or more microzones), drives trials of discrete timesteps through a kernel,
accumulates spike statistics and writes snapshots.

Quick Start:
============

    from cbmsim import Control, SimulationConfig

    config = SimulationConfig(num_zones=1, seed=1234)
    with Control.from_config(config) as control:
        summary = control.run_trials()
        control.save_sim_to_file("trained.sim")

Internal code should use explicit imports:

    from cbmsim.state.simulation_state import SimulationState
    from cbmsim.core.spike_sums import SpikeSumAccumulator
    from cbmsim.io.sim_file import load_sim_file
"""

__version__ = "0.1.0"

# ============================================================================
# PUBLIC API
# ============================================================================

# Configuration
from cbmsim.config import (
    ActivityParams,
    ConnectivityParams,
    SimulationConfig,
    StimulusParams,
    TrialTiming,
)
from cbmsim.constants import CellType, PlasticityMode

# Errors
from cbmsim.errors import (
    CbmSimError,
    ConfigurationError,
    CorruptStateError,
    KernelStepError,
    OutputIOError,
    PreconditionViolation,
)

# State
from cbmsim.state import RandomSeedProvider, SimulationState, Zone

# Simulation loop
from cbmsim.core import (
    Control,
    RunControl,
    SimCore,
    SpikeSumAccumulator,
    TrialController,
    TrialSpec,
    compute_firing_rates,
    translate_parsed_trials,
)

# I/O
from cbmsim.io import RasterRecorder, save_weight_snapshot
from cbmsim.io.sim_file import load_sim_file, load_state_file, save_sim_file, save_state_file

__all__ = [
    "__version__",
    "ActivityParams",
    "ConnectivityParams",
    "SimulationConfig",
    "StimulusParams",
    "TrialTiming",
    "CellType",
    "PlasticityMode",
    "CbmSimError",
    "ConfigurationError",
    "CorruptStateError",
    "KernelStepError",
    "OutputIOError",
    "PreconditionViolation",
    "RandomSeedProvider",
    "SimulationState",
    "Zone",
    "Control",
    "RunControl",
    "SimCore",
    "SpikeSumAccumulator",
    "TrialController",
    "TrialSpec",
    "compute_firing_rates",
    "translate_parsed_trials",
    "RasterRecorder",
    "save_weight_snapshot",
    "load_sim_file",
    "load_state_file",
    "save_sim_file",
    "save_state_file",
]
