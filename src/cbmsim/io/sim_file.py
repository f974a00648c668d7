"""
Simulation Files - Whole-simulation and state-only snapshots on disk.

Two file kinds share the state stream format:

    simulation file:  [conParams JSON][actParams JSON][state blob]
    state file:       [state blob]

The parameter sections are length-prefixed JSON written by ``StateWriter``.
Zone count and plasticity mode are not stored; the caller's
``SimulationConfig`` supplies them when reading.

The state blob can come from a ``SimulationState`` or from a kernel that
implements ``write_state``. When both are given the kernel wins, since a
kernel may hold device-side copies newer than the host state.

Usage:
    save_sim_file("sim.bin", config, state)
    con_params, act_params, state = load_sim_file("sim.bin", config)

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Tuple, Union

from cbmsim.config import ActivityParams, ConnectivityParams, SimulationConfig
from cbmsim.constants import PlasticityMode
from cbmsim.errors import (
    ConfigurationError,
    CorruptStateError,
    OutputIOError,
    PreconditionViolation,
)
from cbmsim.io.stream import StateReader, StateWriter
from cbmsim.state.simulation_state import SimulationState

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _state_source(state: Optional[SimulationState], kernel: Optional[Any]) -> Any:
    if kernel is not None:
        return kernel
    if state is None:
        raise PreconditionViolation("No simulation state to save")
    return state


def _open_for_write(path: PathLike):
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, "wb")
    except OSError as exc:
        raise OutputIOError(f"Could not open '{path}' for writing: {exc}") from exc


def save_sim_file(
    path: PathLike,
    config: SimulationConfig,
    state: Optional[SimulationState] = None,
    kernel: Optional[Any] = None,
) -> int:
    """Write connectivity params, activity params and state to ``path``.

    Args:
        path: Destination file (parent directories are created)
        config: Configuration whose parameters are written
        state: Simulation state to persist
        kernel: Optional kernel with ``write_state``; preferred over ``state``

    Returns:
        Number of bytes written

    Raises:
        PreconditionViolation: If neither a state nor a kernel is given
        OutputIOError: If the file cannot be opened or written
    """
    source = _state_source(state, kernel)
    with _open_for_write(path) as f:
        writer = StateWriter(f)
        try:
            writer.write_json(config.connectivity.to_dict())
            writer.write_json(config.activity.to_dict())
            source.write_state(writer)
        except OSError as exc:
            raise OutputIOError(f"Failed writing simulation file '{path}': {exc}") from exc
    logger.info("Saved simulation to %s (%d bytes)", path, writer.bytes_written)
    return writer.bytes_written


def save_state_file(
    path: PathLike,
    state: Optional[SimulationState] = None,
    kernel: Optional[Any] = None,
) -> int:
    """Write only the state blob to ``path``. Returns bytes written."""
    source = _state_source(state, kernel)
    with _open_for_write(path) as f:
        writer = StateWriter(f)
        try:
            source.write_state(writer)
        except OSError as exc:
            raise OutputIOError(f"Failed writing state file '{path}': {exc}") from exc
    logger.info("Saved simulation state to %s (%d bytes)", path, writer.bytes_written)
    return writer.bytes_written


def _read_params(reader: StateReader) -> Tuple[ConnectivityParams, ActivityParams]:
    try:
        con_params = ConnectivityParams.from_dict(reader.read_json("connectivity parameters"))
        act_params = ActivityParams.from_dict(reader.read_json("activity parameters"))
    except ConfigurationError as exc:
        raise CorruptStateError(f"Invalid parameters in simulation file: {exc}") from exc
    return con_params, act_params


def load_sim_file(
    path: PathLike,
    config: SimulationConfig,
    plasticity: Optional[PlasticityMode] = None,
) -> Tuple[ConnectivityParams, ActivityParams, SimulationState]:
    """Read a simulation file.

    The parameters stored in the file replace ``config.connectivity`` and
    ``config.activity``; zone count, plasticity, device and dtype come from
    ``config``.

    Returns:
        (connectivity params, activity params, state). The state's
        ``config`` carries the file's parameters.

    Raises:
        FileNotFoundError: If ``path`` does not exist
        CorruptStateError: If the file is truncated or inconsistent
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Simulation file not found: {path}")

    with open(path, "rb") as f:
        reader = StateReader(f, device=config.device)
        con_params, act_params = _read_params(reader)
        file_config = config.with_params(con_params, act_params)
        state = SimulationState.load(reader, file_config, plasticity)
    logger.info("Loaded simulation from %s (%d zones)", path, file_config.num_zones)
    return con_params, act_params, state


def load_state_file(
    path: PathLike,
    config: SimulationConfig,
    plasticity: Optional[PlasticityMode] = None,
) -> SimulationState:
    """Read a state-only file written by ``save_state_file``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"State file not found: {path}")

    with open(path, "rb") as f:
        reader = StateReader(f, device=config.device)
        state = SimulationState.load(reader, config, plasticity)
    logger.info("Loaded simulation state from %s", path)
    return state


__all__ = [
    "save_sim_file",
    "save_state_file",
    "load_sim_file",
    "load_state_file",
]
