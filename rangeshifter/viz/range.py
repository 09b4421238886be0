"""Range, occupancy and landscape plots.

Every function:
  - Returns a matplotlib Figure
  - Has an optional ``save_path`` parameter (saves PNG when given)
  - Uses the shared styling from ``rangeshifter.viz.style``

matplotlib backend is forced to Agg (no display) on import.

Landscape maps are drawn with y increasing upwards, so row 0 of the
arrays (y = 0) is the bottom of the map.
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

from typing import TYPE_CHECKING, Dict, Optional, Union

import matplotlib.pyplot as plt
import numpy as np

from rangeshifter.viz.style import (
    FLOW_CMAP,
    K_CMAP,
    NODATA_COLOR,
    TEXT_COLOR,
    new_figure,
    save_figure,
    series_color,
    stage_colors,
)

if TYPE_CHECKING:
    from rangeshifter.landscape import Landscape
    from rangeshifter.records import RangeRecorder


def _arrays(source: Union['RangeRecorder', Dict[str, np.ndarray]]) -> Dict[str, np.ndarray]:
    if isinstance(source, dict):
        return source
    return source.as_arrays()


def _colorbar(fig, im, ax, label: str) -> None:
    cbar = fig.colorbar(im, ax=ax)
    cbar.set_label(label, color=TEXT_COLOR)
    cbar.ax.yaxis.set_tick_params(color=TEXT_COLOR)
    plt.setp(cbar.ax.get_yticklabels(), color=TEXT_COLOR)


# ═══════════════════════════════════════════════════════════════════════
# TIME SERIES
# ═══════════════════════════════════════════════════════════════════════

def plot_range_trajectory(
    source: Union['RangeRecorder', Dict[str, np.ndarray]],
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Total abundance (top) and occupied y-extent (bottom) per replicate."""
    data = _arrays(source)
    fig, (ax_n, ax_y) = new_figure(2, 1, figsize=(9, 7), sharex=True)
    reps = np.unique(data['rep']) if len(data.get('rep', [])) else []
    for i, rep in enumerate(reps):
        m = data['rep'] == rep
        years = data['year'][m]
        color = series_color(i)
        ax_n.plot(years, data['ninds'][m], color=color, lw=1.2, label=f'rep {rep}')
        occupied = data['occupied'][m] > 0
        ax_y.fill_between(years, np.where(occupied, data['min_y'][m], np.nan),
                          np.where(occupied, data['max_y'][m], np.nan),
                          color=color, alpha=0.25, linewidth=0)
    ax_n.set_ylabel('Individuals')
    ax_n.set_title('Population size')
    ax_y.set_ylabel('Occupied rows (y)')
    ax_y.set_xlabel('Year')
    ax_y.set_title('Range extent')
    if len(reps) > 1:
        ax_n.legend(fontsize=8, facecolor='none', labelcolor=TEXT_COLOR)
    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_stage_totals(
    source: Union['RangeRecorder', Dict[str, np.ndarray]],
    rep: int = 0,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Stacked individuals per stage for one replicate."""
    data = _arrays(source)
    fig, ax = new_figure()
    m = data['rep'] == rep
    stages = data['stage_totals'][m]
    if stages.size:
        colors = stage_colors(stages.shape[1])
        ax.stackplot(data['year'][m], stages.T, colors=colors,
                     labels=[f'stage {s}' for s in range(stages.shape[1])])
        ax.legend(fontsize=8, loc='upper left', facecolor='none', labelcolor=TEXT_COLOR)
    ax.set_xlabel('Year')
    ax.set_ylabel('Individuals')
    ax.set_title(f'Stage structure (rep {rep})')
    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_occupancy(
    proportions: np.ndarray,
    interval: int = 1,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Mean ± SD proportion of suitable patches occupied.

    Args:
        proportions: (n_rows, 2) array from Community.occupancy_proportions().
        interval: Years between occupancy rows.
    """
    fig, ax = new_figure()
    if len(proportions):
        years = np.arange(len(proportions)) * interval
        mean, sd = proportions[:, 0], proportions[:, 1]
        ax.plot(years, mean, color=series_color(0), lw=1.5)
        ax.fill_between(years, np.clip(mean - sd, 0, 1), np.clip(mean + sd, 0, 1),
                        color=series_color(0), alpha=0.25, linewidth=0)
    ax.set_ylim(0, 1.05)
    ax.set_xlabel('Year')
    ax.set_ylabel('Occupied / suitable')
    ax.set_title('Patch occupancy')
    if save_path:
        save_figure(fig, save_path)
    return fig


# ═══════════════════════════════════════════════════════════════════════
# LANDSCAPE MAPS
# ═══════════════════════════════════════════════════════════════════════

def plot_k_map(
    landscape: 'Landscape',
    species_id: int = 0,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Carrying capacity per cell (patch K shared over its cells)."""
    kmap = landscape.k_map(species_id)
    fig, ax = new_figure(figsize=(7, 7))
    cmap = matplotlib.colormaps[K_CMAP].copy()
    cmap.set_bad(NODATA_COLOR)
    im = ax.imshow(np.ma.masked_invalid(kmap), origin='lower', cmap=cmap,
                   interpolation='nearest')
    _colorbar(fig, im, ax, 'K per cell')
    ax.set_xlabel('x')
    ax.set_ylabel('y')
    ax.set_title(f'Carrying capacity (species {species_id})')
    ax.grid(False)
    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_connectivity(
    landscape: 'Landscape',
    species_id: int = 0,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Heatmap of settlers from natal patch (row) to new patch (column)."""
    conn = landscape.get_connect_matrix(species_id)
    fig, ax = new_figure(figsize=(7, 6))
    im = ax.imshow(np.log1p(conn), origin='upper', cmap=FLOW_CMAP,
                   interpolation='nearest', aspect='auto')
    _colorbar(fig, im, ax, 'log(1 + settlers)')
    ax.set_xlabel('Settlement patch')
    ax.set_ylabel('Natal patch')
    ax.set_title(f'Connectivity (species {species_id})')
    ax.grid(False)
    if save_path:
        save_figure(fig, save_path)
    return fig
