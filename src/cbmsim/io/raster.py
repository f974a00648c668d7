"""
Raster Recording - Per-cell-type spike matrices for offline analysis.

A raster buffer is a ``uint8`` matrix ``[num_cells, raster_column_size]``.
Column ``c`` holds the spikes of timestep ``cs_start - ms_pre_cs + c`` of
the current trial, so one buffer covers the pre-CS, CS and post-CS windows.
Buffers are flushed to flat files (row-major, one byte per element) that can
be read back with ``numpy.fromfile(path, dtype=np.uint8).reshape(n, cols)``.

Granule cells are too numerous to record in full; a fixed random sample of
``GR_SAMPLE_SIZE`` distinct cells (seeded, so identical across runs) is
recorded instead.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np
import torch

from cbmsim.config import SimulationConfig
from cbmsim.constants import (
    GR_SAMPLE_RASTER_FILE,
    GR_SAMPLE_SIZE,
    PFPC_WEIGHT_SAMPLE_SIZE,
    RASTER_FILE_NAMES,
    CellType,
)
from cbmsim.errors import OutputIOError, check_export_length

logger = logging.getLogger(__name__)

DEFAULT_RASTER_CELL_TYPES = (CellType.GO, CellType.PC, CellType.DCN, CellType.IO)


def raster_file_name(cell_type: CellType) -> str:
    return RASTER_FILE_NAMES[CellType(cell_type).name]


class RasterRecorder:
    """Fills raster buffers from exported spikes and writes them to disk.

    Args:
        config: Simulation configuration (cell counts and raster window)
        cell_types: Cell types recorded in full
        gr_sample_seed: Seed of the granule sample draw
        gr_sample_size: Number of sampled granule cells (0 disables the sample)
    """

    def __init__(
        self,
        config: SimulationConfig,
        cell_types: Sequence[CellType] = DEFAULT_RASTER_CELL_TYPES,
        gr_sample_seed: int = 0,
        gr_sample_size: int = GR_SAMPLE_SIZE,
    ):
        self.config = config
        self.columns = config.timing.raster_column_size
        counts = config.connectivity.cell_counts
        self.cell_counts: Dict[CellType, int] = {
            CellType(ct): counts[CellType(ct).name] for ct in cell_types
        }
        self.buffers: Dict[CellType, torch.Tensor] = {
            ct: torch.zeros((n, self.columns), dtype=torch.uint8)
            for ct, n in self.cell_counts.items()
        }

        self.gr_sample: Optional[torch.Tensor] = None
        self.gr_buffer: Optional[torch.Tensor] = None
        if gr_sample_size > 0:
            self.gr_sample = self.generate_gr_sample(
                config.connectivity.num_gr, gr_sample_size, gr_sample_seed
            )
            self.gr_buffer = torch.zeros((len(self.gr_sample), self.columns), dtype=torch.uint8)

    @staticmethod
    def generate_gr_sample(num_gr: int, sample_size: int, seed: int) -> torch.Tensor:
        """Sorted indices of ``min(sample_size, num_gr)`` distinct granule cells."""
        generator = torch.Generator(device="cpu")
        generator.manual_seed(seed)
        count = min(sample_size, num_gr)
        return torch.randperm(num_gr, generator=generator)[:count].sort().values

    def column_for(self, ts: int) -> Optional[int]:
        """Raster column of timestep ``ts``, or None outside the window."""
        timing = self.config.timing
        column = ts - (timing.cs_start - timing.ms_pre_cs)
        if 0 <= column < self.columns:
            return column
        return None

    def record(self, column: int, spikes_by_type: Mapping[CellType, torch.Tensor]) -> None:
        """Copy one timestep of exported spikes into column ``column``.

        Cell types that are not monitored are ignored. A monitored type
        missing from ``spikes_by_type`` is skipped for this column.

        Raises:
            KernelStepError: If an export has the wrong length
            IndexError: If ``column`` is outside the raster window
        """
        if not 0 <= column < self.columns:
            raise IndexError(f"Raster column {column} out of range [0, {self.columns})")
        for cell_type, buffer in self.buffers.items():
            spikes = spikes_by_type.get(cell_type)
            if spikes is None:
                continue
            check_export_length(f"{cell_type.name} spikes", spikes, self.cell_counts[cell_type])
            buffer[:, column] = spikes.detach().to("cpu", torch.uint8)

        if self.gr_buffer is not None:
            gr_spikes = spikes_by_type.get(CellType.GR)
            if gr_spikes is not None:
                check_export_length("GR spikes", gr_spikes, self.config.connectivity.num_gr)
                self.gr_buffer[:, column] = gr_spikes.detach().to("cpu", torch.uint8)[self.gr_sample]

    def reset(self) -> None:
        for buffer in self.buffers.values():
            buffer.zero_()
        if self.gr_buffer is not None:
            self.gr_buffer.zero_()

    def save(self, directory: Union[str, Path]) -> Dict[str, Path]:
        """Write every buffer as ``<directory>/all<TYPE>Raster.bin``.

        Returns:
            Mapping of cell type name to written path

        Raises:
            OutputIOError: If the directory or a file cannot be written
        """
        directory = Path(directory)
        written: Dict[str, Path] = {}
        try:
            directory.mkdir(parents=True, exist_ok=True)
            for cell_type, buffer in self.buffers.items():
                path = directory / raster_file_name(cell_type)
                buffer.numpy().tofile(path)
                written[cell_type.name] = path
            if self.gr_buffer is not None:
                path = directory / GR_SAMPLE_RASTER_FILE
                self.gr_buffer.numpy().tofile(path)
                written[CellType.GR.name] = path
        except OSError as exc:
            raise OutputIOError(f"Failed to write rasters to '{directory}': {exc}") from exc

        logger.info("Saved %d raster file(s) to %s", len(written), directory)
        return written


def save_weight_snapshot(
    path: Union[str, Path],
    state: Any,
    zone: int = 0,
    sample: int = PFPC_WEIGHT_SAMPLE_SIZE,
) -> int:
    """Write the first ``sample`` PF→PC weights of ``zone`` as flat float32.

    Args:
        path: Destination file
        state: ``SimulationState`` (or anything with ``zone_activity(i)``)
        zone: Zone index
        sample: Number of weights, in row-major order

    Returns:
        Number of weights written

    Raises:
        OutputIOError: If the file cannot be written
    """
    weights = state.zone_activity(zone).pfpc_weight_sample(sample)
    array = weights.detach().to("cpu", torch.float32).numpy().astype("<f4", copy=False)
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        array.tofile(path)
    except OSError as exc:
        raise OutputIOError(f"Failed to write PF→PC weights to '{path}': {exc}") from exc
    logger.debug("Saved %d PF→PC weights of zone %d to %s", array.size, zone, path)
    return int(array.size)


def load_raster(path: Union[str, Path], num_cells: int) -> np.ndarray:
    """Read a raster file back as ``[num_cells, columns]`` uint8."""
    data = np.fromfile(path, dtype=np.uint8)
    if num_cells <= 0 or data.size % num_cells != 0:
        raise ValueError(
            f"Raster '{path}' has {data.size} bytes, not a multiple of {num_cells} cells"
        )
    return data.reshape(num_cells, data.size // num_cells)


__all__ = [
    "DEFAULT_RASTER_CELL_TYPES",
    "RasterRecorder",
    "raster_file_name",
    "save_weight_snapshot",
    "load_raster",
]
