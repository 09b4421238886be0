"""Shared look for RangeShifter plots.

Landscape maps use a light habitat palette; time series use a dark
panel so that several replicates stay readable when overlaid.
"""

import matplotlib as mpl
import matplotlib.pyplot as plt
import numpy as np

# ═══════════════════════════════════════════════════════════════════════
# COLOURS
# ═══════════════════════════════════════════════════════════════════════

PANEL_BG = '#1b1d2a'
FIGURE_BG = '#121420'
TEXT_COLOR = '#dcdcdc'
GRID_COLOR = '#33364a'
NODATA_COLOR = '#3a3a3a'

SERIES_COLORS = [
    '#4fc3f7',  # light blue
    '#ffb74d',  # orange
    '#81c784',  # green
    '#e57373',  # red
    '#ba68c8',  # violet
    '#fff176',  # yellow
]

# Stage 0 = juveniles, higher stages progressively warmer
STAGE_CMAP = 'plasma'
K_CMAP = 'YlGn'
FLOW_CMAP = 'magma'


def series_color(i: int) -> str:
    return SERIES_COLORS[i % len(SERIES_COLORS)]


def stage_colors(n_stages: int):
    cmap = mpl.colormaps[STAGE_CMAP]
    return [cmap(v) for v in np.linspace(0.15, 0.85, max(1, n_stages))]


# ═══════════════════════════════════════════════════════════════════════
# FIGURE HELPERS
# ═══════════════════════════════════════════════════════════════════════

def style_axes(fig=None, ax=None):
    """Give a Figure and/or Axes the shared background, text and grid."""
    if fig is not None:
        fig.patch.set_facecolor(FIGURE_BG)
    if ax is not None:
        ax.set_facecolor(PANEL_BG)
        ax.tick_params(colors=TEXT_COLOR)
        ax.xaxis.label.set_color(TEXT_COLOR)
        ax.yaxis.label.set_color(TEXT_COLOR)
        ax.title.set_color(TEXT_COLOR)
        for spine in ax.spines.values():
            spine.set_color(GRID_COLOR)
        ax.grid(True, color=GRID_COLOR, alpha=0.4, linewidth=0.5)


def new_figure(nrows=1, ncols=1, figsize=None, **kwargs):
    """plt.subplots() with style_axes applied to every Axes."""
    if figsize is None:
        figsize = (9, 5) if nrows * ncols == 1 else (5 * ncols, 4 * nrows)
    fig, axes = plt.subplots(nrows, ncols, figsize=figsize, **kwargs)
    style_axes(fig=fig)
    for a in np.atleast_1d(axes).flat:
        style_axes(ax=a)
    return fig, axes


def save_figure(fig, save_path, dpi=150):
    """Write ``fig`` to ``save_path`` and close it."""
    fig.tight_layout()
    fig.savefig(save_path, dpi=dpi, facecolor=fig.get_facecolor(),
                edgecolor='none', bbox_inches='tight')
    plt.close(fig)
