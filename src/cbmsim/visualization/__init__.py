"""Plotting of rasters and firing rates (requires matplotlib)."""

from cbmsim.visualization.raster import plot_firing_rates, plot_raster, plot_raster_file

__all__ = ["plot_raster", "plot_raster_file", "plot_firing_rates"]
