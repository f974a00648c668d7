"""
Core simulation loop: kernel, spike accounting, trial control.

Usage:
    from cbmsim.core import Control

    control = Control.from_config(config)
    summary = control.run_trials()
"""

from cbmsim.core.protocols import FrontEnd, KernelWeights, SimKernel, SpikeGenerator, StimulusSource
from cbmsim.core.spike_sums import (
    FiringRate,
    SpikeSum,
    SpikeSumAccumulator,
    SpikeSumSnapshot,
    WindowPhase,
    compute_firing_rates,
    window_phase,
)
from cbmsim.core.trial_controller import (
    CSReport,
    RunControl,
    RunSummary,
    StimulusPhase,
    TrialController,
    TrialResult,
    TrialSpec,
    stimulus_phase,
)
from cbmsim.core.trials import translate_parsed_trials, trials_from_dict
from cbmsim.core.sim_core import SimCore
from cbmsim.core.control import Control

__all__ = [
    "FrontEnd",
    "KernelWeights",
    "SimKernel",
    "SpikeGenerator",
    "StimulusSource",
    "FiringRate",
    "SpikeSum",
    "SpikeSumAccumulator",
    "SpikeSumSnapshot",
    "WindowPhase",
    "compute_firing_rates",
    "window_phase",
    "CSReport",
    "RunControl",
    "RunSummary",
    "StimulusPhase",
    "TrialController",
    "TrialResult",
    "TrialSpec",
    "stimulus_phase",
    "translate_parsed_trials",
    "trials_from_dict",
    "SimCore",
    "Control",
]
