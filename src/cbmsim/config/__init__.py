"""
Configuration for cbmsim.

Usage:
    from cbmsim.config import SimulationConfig, ConnectivityParams, TrialTiming

    config = SimulationConfig(
        connectivity=ConnectivityParams(num_gr=8192, gr_per_pc=1024),
        timing=TrialTiming(trial_time=1000, cs_start=400, cs_length=200),
        seed=42,
    )
"""

from cbmsim.config.base import BaseConfig, ParamsMixin
from cbmsim.config.sim_config import (
    ActivityParams,
    ConnectivityParams,
    SimulationConfig,
    StimulusParams,
    TrialTiming,
)

__all__ = [
    "BaseConfig",
    "ParamsMixin",
    "ActivityParams",
    "ConnectivityParams",
    "SimulationConfig",
    "StimulusParams",
    "TrialTiming",
]
