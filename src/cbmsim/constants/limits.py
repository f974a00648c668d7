"""Fixed sizes and file names shared across the simulator."""

from __future__ import annotations

INT_MAX = 2**31 - 1
"""Upper bound (exclusive) for drawn seeds, matching a signed 32-bit int."""

GR_SAMPLE_SIZE = 4096
"""Number of granule cells sampled into the granule raster."""

PFPC_WEIGHT_SAMPLE_SIZE = 4096
"""Number of PF→PC weights written by a weight snapshot."""

RASTER_FILE_NAMES = {
    "MF": "allMFRaster.bin",
    "GO": "allGORaster.bin",
    "SC": "allSCRaster.bin",
    "BC": "allBCRaster.bin",
    "PC": "allPCRaster.bin",
    "IO": "allIORaster.bin",
    "DCN": "allNCRaster.bin",
}
GR_SAMPLE_RASTER_FILE = "sampleGRRaster.bin"

__all__ = [
    "INT_MAX",
    "GR_SAMPLE_SIZE",
    "PFPC_WEIGHT_SAMPLE_SIZE",
    "RASTER_FILE_NAMES",
    "GR_SAMPLE_RASTER_FILE",
]
