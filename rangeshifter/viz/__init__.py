"""Plotting helpers for recorded runs and landscapes."""

from rangeshifter.viz.range import (  # noqa: F401
    plot_connectivity,
    plot_k_map,
    plot_occupancy,
    plot_range_trajectory,
    plot_stage_totals,
)
