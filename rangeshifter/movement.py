"""Transfer models: dispersal kernel, correlated random walk and SMS.

Each function moves one in-transit Individual and updates its current
cell (arena index), continuous position and, on death, its status. They
never decide settlement; Population.transfer does that from the cell
the individual ends up in.

Kernel (one-shot jump):
    distance ~ Exponential(mean dist_I) [or dist_II with prob 1 - p_kernel_I]
    angle ~ Uniform(0, 2π)
    redraw (up to 1000 times) while the target is the natal patch or,
    in a non-absorbing landscape, outside the data area.

CRW (one step per call):
    heading += Normal(0, sigma_turn),  sigma_turn = sqrt(-2 ln rho)
    x += step_length × cos(heading) / resolution
    y += step_length × sin(heading) / resolution

SMS (one step per call):
    P(neighbour) ∝ (1 / effective cost) × direction persistence
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from rangeshifter.individual import Individual, Status

if TYPE_CHECKING:
    from rangeshifter.context import SimulationContext
    from rangeshifter.landscape import Landscape
    from rangeshifter.species import Species

TWO_PI = 2.0 * math.pi

# Attempts to draw a usable kernel target / CRW step before giving up
MAX_REDRAWS = 1000


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def sigma_turn(rho: float) -> float:
    """Wrapped-normal turning SD giving mean resultant length ``rho``.

    rho = 0 (uncorrelated) maps to a very wide distribution, which is
    effectively uniform turning.
    """
    if rho <= 0.0:
        return 1.0e3
    return math.sqrt(-2.0 * math.log(rho))


def _in_limits(landscape: 'Landscape', x: int, y: int) -> bool:
    return (landscape.min_x <= x <= landscape.max_x
            and landscape.min_y <= y <= landscape.max_y)


def _target_cell(landscape: 'Landscape', fx: float, fy: float) -> Tuple[int, int, Optional[int]]:
    x, y = int(math.floor(fx)), int(math.floor(fy))
    if not _in_limits(landscape, x, y):
        return x, y, None
    return x, y, landscape.find_cell_ix(x, y)


def kernel_distance(species: 'Species', rng) -> float:
    """Draw a dispersal distance (m) from the (possibly twin) kernel."""
    trfr = species.transfer
    mean = trfr.dist_I
    if trfr.twin_kernel and not rng.bernoulli(trfr.p_kernel_I):
        mean = trfr.dist_II
    return -mean * math.log(1.0 - rng.random())


# ═══════════════════════════════════════════════════════════════════════
# DISPERSAL KERNEL
# ═══════════════════════════════════════════════════════════════════════

def kernel_jump(
    ind: Individual,
    species: 'Species',
    landscape: 'Landscape',
    ctx: 'SimulationContext',
) -> None:
    """Relocate ``ind`` by a single kernel draw.

    Starting from a uniformly random point inside the current cell, the
    jump is redrawn while it lands in the natal patch. Landing outside the
    landscape (or on no data) kills the individual in an absorbing
    landscape and triggers a redraw otherwise. If no acceptable target is
    found within MAX_REDRAWS draws the individual dies in transfer.
    """
    rng = ctx.rng
    absorbing = ctx.simulation.absorbing
    sp = species.id
    start = landscape.cells[ind.cur_cell]
    x0 = start.x + rng.random()
    y0 = start.y + rng.random()
    resol = float(landscape.resol)

    for _ in range(MAX_REDRAWS):
        dist = kernel_distance(species, rng) / resol
        angle = rng.random() * TWO_PI
        fx = x0 + dist * math.cos(angle)
        fy = y0 + dist * math.sin(angle)
        _, _, cell_ix = _target_cell(landscape, fx, fy)
        if cell_ix is None:
            if absorbing:
                ind.status = Status.DIED_IN_TRANSFER
                return
            continue
        seq = landscape.cells[cell_ix].get_patch(sp)
        if seq is not None and seq == ind.natal_patch:
            continue
        ind.cur_cell = cell_ix
        ind.pos_x, ind.pos_y = fx, fy
        return
    ind.status = Status.DIED_IN_TRANSFER


# ═══════════════════════════════════════════════════════════════════════
# CORRELATED RANDOM WALK
# ═══════════════════════════════════════════════════════════════════════

def crw_step(
    ind: Individual,
    species: 'Species',
    landscape: 'Landscape',
    ctx: 'SimulationContext',
) -> None:
    """Advance ``ind`` one CRW step (in place)."""
    rng = ctx.rng
    trfr = species.transfer
    step = trfr.step_length / float(landscape.resol)
    sigma = sigma_turn(trfr.rho)

    if ind.heading is None:
        ind.heading = rng.random() * TWO_PI

    for attempt in range(MAX_REDRAWS):
        if attempt == 0:
            heading = (ind.heading + rng.normal(0.0, sigma)) % TWO_PI
        else:
            heading = rng.random() * TWO_PI
        fx = ind.pos_x + step * math.cos(heading)
        fy = ind.pos_y + step * math.sin(heading)
        _, _, cell_ix = _target_cell(landscape, fx, fy)
        if cell_ix is None:
            if ctx.simulation.absorbing:
                ind.status = Status.DIED_IN_TRANSFER
                return
            continue
        ind.heading = heading
        ind.pos_x, ind.pos_y = fx, fy
        ind.cur_cell = cell_ix
        landscape.cells[cell_ix].incr_visits(species.id)
        break

    if trfr.step_mortality > 0.0 and rng.bernoulli(trfr.step_mortality):
        ind.status = Status.DIED_TRANSFER_MORT


# ═══════════════════════════════════════════════════════════════════════
# STOCHASTIC MOVEMENT SIMULATOR
# ═══════════════════════════════════════════════════════════════════════

# Compass order, used to find the two directions adjacent to a heading
_COMPASS = [(1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1), (0, -1), (1, -1)]


def sms_weights(
    eff_costs: np.ndarray,
    prev_dx: int,
    prev_dy: int,
    dp: float,
) -> np.ndarray:
    """Unnormalised 3×3 step weights from effective costs.

    Cells with no data (effective cost < 0) and the centre get weight 0.
    The previous direction is up-weighted by ``dp`` and its two adjacent
    directions by ``sqrt(dp)``.
    """
    w = np.zeros((3, 3), dtype=np.float64)
    valid = eff_costs > 0.0
    w[valid] = 1.0 / eff_costs[valid]
    w[1, 1] = 0.0
    if (prev_dx, prev_dy) in _COMPASS and dp != 1.0:
        i = _COMPASS.index((prev_dx, prev_dy))
        w[prev_dy + 1, prev_dx + 1] *= dp
        for j in (i - 1, i + 1):
            ax, ay = _COMPASS[j % 8]
            w[ay + 1, ax + 1] *= math.sqrt(dp)
    return w


def sms_step(
    ind: Individual,
    species: 'Species',
    landscape: 'Landscape',
    ctx: 'SimulationContext',
) -> None:
    """Move ``ind`` to one of its 8 neighbours (in place)."""
    rng = ctx.rng
    trfr = species.transfer
    eff = landscape.effective_costs(ind.cur_cell, trfr.perceptual_range)
    w = sms_weights(eff, ind.prev_dx, ind.prev_dy, trfr.directional_persistence).ravel()
    positive = np.flatnonzero(w > 0.0)
    if positive.size > 0:
        cum = np.cumsum(w[positive])
        j = int(np.searchsorted(cum, rng.random() * cum[-1], side='right'))
        k = int(positive[min(j, positive.size - 1)])
        dy, dx = divmod(k, 3)
        dx -= 1
        dy -= 1
        cell = landscape.cells[ind.cur_cell]
        nx, ny = cell.x + dx, cell.y + dy
        cell_ix = landscape.find_cell_ix(nx, ny)
        if cell_ix is not None and _in_limits(landscape, nx, ny):
            ind.cur_cell = cell_ix
            ind.pos_x = nx + 0.5
            ind.pos_y = ny + 0.5
            ind.prev_dx, ind.prev_dy = dx, dy
            landscape.cells[cell_ix].incr_visits(species.id)

    if trfr.step_mortality > 0.0 and rng.bernoulli(trfr.step_mortality):
        ind.status = Status.DIED_TRANSFER_MORT
