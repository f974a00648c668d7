"""
Shared constants for cbmsim.

Usage:
    from cbmsim.constants import CellType, PlasticityMode, MS_PER_SECOND
"""

from cbmsim.constants.cells import (
    CellType,
    ConductancePathway,
    INNET_CELL_TYPES,
    NUM_CELL_TYPES,
    PlasticityMode,
    ZONE_CELL_TYPES,
)
from cbmsim.constants.limits import (
    GR_SAMPLE_RASTER_FILE,
    GR_SAMPLE_SIZE,
    INT_MAX,
    PFPC_WEIGHT_SAMPLE_SIZE,
    RASTER_FILE_NAMES,
)
from cbmsim.constants.time import DEFAULT_MS_PER_TIMESTEP, MS_PER_SECOND, SECONDS_PER_MS

__all__ = [
    "CellType",
    "ConductancePathway",
    "INNET_CELL_TYPES",
    "NUM_CELL_TYPES",
    "PlasticityMode",
    "ZONE_CELL_TYPES",
    "GR_SAMPLE_RASTER_FILE",
    "GR_SAMPLE_SIZE",
    "INT_MAX",
    "PFPC_WEIGHT_SAMPLE_SIZE",
    "RASTER_FILE_NAMES",
    "DEFAULT_MS_PER_TIMESTEP",
    "MS_PER_SECOND",
    "SECONDS_PER_MS",
]
