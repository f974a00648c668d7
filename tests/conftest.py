"""Shared test fixtures and configuration."""

import pytest
import torch
import numpy as np

from cbmsim.config import ConnectivityParams, SimulationConfig, TrialTiming
from cbmsim.state import SimulationState


@pytest.fixture(autouse=True)
def set_random_seed():
    """Ensure reproducible tests by setting all random seeds.

    This fixture runs automatically for every test to ensure deterministic behavior.
    Components under test draw from their own seeded generators; this only
    pins the global ones used by test helpers.
    """
    torch.manual_seed(42)
    np.random.seed(42)


@pytest.fixture
def small_connectivity():
    """Network small enough to step in milliseconds."""
    return ConnectivityParams(
        num_mf=64,
        num_gr=256,
        num_go=16,
        num_sc=16,
        num_bc=8,
        num_pc=4,
        num_io=2,
        num_nc=2,
        mf_per_gr=4,
        go_per_gr=3,
        mf_per_go=8,
        gr_per_go=32,
        go_per_go=4,
        gr_per_sc=16,
        gr_per_pc=64,
        gr_per_bc=16,
        bc_per_pc=4,
        sc_per_pc=8,
        pc_per_nc=2,
        mf_per_nc=4,
        nc_per_io=2,
    )


@pytest.fixture
def small_timing():
    """20-step trial with the CS window at [5, 11)."""
    return TrialTiming(
        trial_time=20,
        cs_start=5,
        cs_length=6,
        cs_phasic_size=2,
        ms_pre_cs=3,
        ms_post_cs=3,
        num_training_trials=2,
    )


@pytest.fixture
def small_config(small_connectivity, small_timing):
    """Two-zone configuration with a fixed master seed."""
    return SimulationConfig(
        connectivity=small_connectivity,
        timing=small_timing,
        num_zones=2,
        seed=1234,
    )


@pytest.fixture
def small_state(small_config):
    """Freshly generated state, released after the test."""
    state = SimulationState.create(small_config)
    yield state
    state.release()
