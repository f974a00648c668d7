"""
Time conversion constants for spike-based simulations.

Timesteps are counted in milliseconds while firing rates are reported in Hz,
so conversions between the two show up wherever rates are computed.

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

# ============================================================================
# TIME UNIT CONVERSIONS
# ============================================================================

MS_PER_SECOND = 1000.0
"""Milliseconds per second (1000.0 ms/s)."""

SECONDS_PER_MS = 1.0 / 1000.0
"""Seconds per millisecond (0.001 s/ms)."""

DEFAULT_MS_PER_TIMESTEP = 1.0
"""Default simulation resolution (one timestep per millisecond)."""

# Common uses:
# - firing_rate_hz = spike_count / (window_ms * SECONDS_PER_MS)
# - spike_probability = rate_hz * ms_per_timestep * SECONDS_PER_MS

__all__ = [
    "MS_PER_SECOND",
    "SECONDS_PER_MS",
    "DEFAULT_MS_PER_TIMESTEP",
]
