"""
Simulation state containers.

Usage:
    from cbmsim.state import SimulationState, RandomSeedProvider

    state = SimulationState.create(config)
    zone0 = state.zone_activity(0)
"""

from cbmsim.state.activity import InNetActivityState, MZoneActivityState
from cbmsim.state.base import FieldSpec, SubState
from cbmsim.state.connectivity import (
    InNetConnectivityState,
    MZoneConnectivityState,
    sample_fan_in,
)
from cbmsim.state.seeds import RandomSeedProvider, make_generator
from cbmsim.state.simulation_state import SimulationState, Zone

__all__ = [
    "InNetActivityState",
    "MZoneActivityState",
    "FieldSpec",
    "SubState",
    "InNetConnectivityState",
    "MZoneConnectivityState",
    "sample_fan_in",
    "RandomSeedProvider",
    "make_generator",
    "SimulationState",
    "Zone",
]
