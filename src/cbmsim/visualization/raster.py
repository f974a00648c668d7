"""Raster and firing-rate plots of recorded simulation output."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import torch

from cbmsim.constants import CellType
from cbmsim.core.spike_sums import FiringRate
from cbmsim.io.raster import load_raster


def plot_raster(
    raster: Union[np.ndarray, torch.Tensor],
    dt: float = 1.0,
    cell_ids: Optional[Sequence[int]] = None,
    cs_window: Optional[tuple] = None,
    title: str = "Spike Raster",
    ax=None,
):
    """Create a raster plot of one recorded buffer.

    Args:
        raster: Spike matrix, shape (cells, timesteps), as written by
            ``RasterRecorder``
        dt: Timestep in ms for the time axis
        cell_ids: Subset of cell indices to plot
        cs_window: Optional (start, end) in timesteps to shade
        title: Plot title
        ax: Matplotlib axes (creates new if None)

    Returns:
        Matplotlib axes object
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        raise ImportError("matplotlib required for visualization. Install with: pip install matplotlib")

    if isinstance(raster, torch.Tensor):
        raster = raster.detach().cpu().numpy()
    if cell_ids is not None:
        raster = raster[list(cell_ids)]
    n_cells, n_time = raster.shape

    if ax is None:
        _fig, ax = plt.subplots(figsize=(12, 6))

    cells, times = raster.nonzero()
    ax.scatter(times * dt, cells, s=1, c="black", marker="|")
    if cs_window is not None:
        ax.axvspan(cs_window[0] * dt, cs_window[1] * dt, color="tab:orange", alpha=0.15)
    ax.set_xlabel("Time (ms)")
    ax.set_ylabel("Cell")
    ax.set_title(title)
    ax.set_xlim(0, n_time * dt)
    ax.set_ylim(-0.5, n_cells - 0.5)
    return ax


def plot_raster_file(path: Union[str, Path], num_cells: int, **kwargs):
    """Load a raster file and plot it (see ``plot_raster``)."""
    kwargs.setdefault("title", Path(path).name)
    return plot_raster(load_raster(path, num_cells), **kwargs)


def plot_firing_rates(
    rates: Mapping[CellType, FiringRate],
    title: str = "Firing Rates",
    ax=None,
):
    """Bar chart of mean non-CS and CS firing rates per cell type.

    Returns:
        Matplotlib axes object
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        raise ImportError("matplotlib required for visualization. Install with: pip install matplotlib")

    cell_types = sorted(rates)
    x = np.arange(len(cell_types))
    width = 0.4

    if ax is None:
        _fig, ax = plt.subplots(figsize=(10, 5))

    ax.bar(x - width / 2, [rates[ct].non_cs_mean for ct in cell_types], width, label="non-CS")
    ax.bar(x + width / 2, [rates[ct].cs_mean for ct in cell_types], width, label="CS")
    ax.set_xticks(x)
    ax.set_xticklabels([CellType(ct).name for ct in cell_types])
    ax.set_ylabel("Rate (Hz)")
    ax.set_title(title)
    ax.legend()
    return ax
