"""
cbmsim I/O Module - State streams, simulation files and raster output.

This module provides:
- Tensor encoding (dtype, shape, raw little-endian data)
- Sequential state streams with SHA-256 running digests
- Raster buffers and PF→PC weight snapshots

Simulation and state files live in ``cbmsim.io.sim_file``; import it
directly (it depends on ``cbmsim.state``, which depends on this package).

Example:
    from cbmsim.io.sim_file import save_sim_file, load_sim_file

    save_sim_file("sim.bin", config, state)
    con_params, act_params, state = load_sim_file("sim.bin", config)
"""

from .tensor_encoding import DType, decode_tensor, encode_tensor, estimate_encoding_size
from .stream import StateReader, StateWriter, as_reader, as_writer
from .raster import (
    DEFAULT_RASTER_CELL_TYPES,
    RasterRecorder,
    load_raster,
    raster_file_name,
    save_weight_snapshot,
)

__all__ = [
    "DType",
    "encode_tensor",
    "decode_tensor",
    "estimate_encoding_size",
    "StateReader",
    "StateWriter",
    "as_reader",
    "as_writer",
    "DEFAULT_RASTER_CELL_TYPES",
    "RasterRecorder",
    "load_raster",
    "raster_file_name",
    "save_weight_snapshot",
]
