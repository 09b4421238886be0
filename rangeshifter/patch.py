"""Patches: aggregates of cells that form one demographic unit.

A Patch refers to its member cells by arena index into the Landscape's
cell list (``ix = y * dim_x + x``). It owns the patch carrying capacity
``local_k`` (individuals), the centroid, the per-sex possible-settler
counters used during dispersal and the occupancy history. The Population
resident in the patch, if any, is bound through ``population``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

import numpy as np

from rangeshifter.config import GradientSection, InitialisationSection, StochasticitySection
from rangeshifter.rng import RandomStream
from rangeshifter.types import (
    N_SEXES,
    NO_LOCN,
    GradientType,
    InitDensity,
    Locn,
    PatchLimits,
    RasterType,
)

if TYPE_CHECKING:
    from rangeshifter.landscape import Landscape
    from rangeshifter.population import Population
    from rangeshifter.species import Species

_BIG = 999999999


class Patch:
    """A contiguous (or virtual) group of cells for one species.

    Args:
        seq_num: Dense index of the patch in the species' patch list.
        patch_num: External patch number (never 0).
        species_id: Owning species.
        dim_x: Landscape width, used to decode cell arena indices.
    """

    def __init__(self, seq_num: int, patch_num: int, species_id: int, dim_x: int):
        self.seq_num = seq_num
        self.patch_num = patch_num
        self.species_id = species_id
        self.dim_x = dim_x
        self.cells: List[Optional[int]] = []
        self.n_cells = 0
        self.x_min = self.y_min = _BIG
        self.x_max = self.y_max = 0
        self.x = self.y = 0
        self.local_k = 0.0
        self.population: Optional['Population'] = None
        self._n_temp = [0] * N_SEXES
        self.occupancy = np.zeros(0, dtype=np.int32)
        self.changed = False

    def __repr__(self) -> str:
        return (f"Patch(seq={self.seq_num}, num={self.patch_num}, "
                f"species={self.species_id}, cells={self.n_cells}, K={self.local_k:.2f})")

    # ── membership ─────────────────────────────────────────────────

    def _locn_of(self, cell_ix: int) -> Locn:
        return Locn(cell_ix % self.dim_x, cell_ix // self.dim_x)

    def add_cell(self, cell_ix: int, x: int, y: int) -> None:
        self.cells.append(cell_ix)
        self.n_cells += 1
        self.x_min = min(self.x_min, x)
        self.x_max = max(self.x_max, x)
        self.y_min = min(self.y_min, y)
        self.y_max = max(self.y_max, y)

    def remove_cell(self, cell_ix: int) -> None:
        """Blank out a member cell; compaction is deferred to reset_limits()."""
        for i, ix in enumerate(self.cells):
            if ix == cell_ix:
                self.cells[i] = None
                self.n_cells -= 1
                self.changed = True
                return

    def reset_limits(self) -> None:
        """Compact removed cells and recompute the bounding rectangle."""
        if not self.changed:
            return
        self.cells = [ix for ix in self.cells if ix is not None]
        self.x_min = self.y_min = _BIG
        self.x_max = self.y_max = 0
        for ix in self.cells:
            loc = self._locn_of(ix)
            self.x_min = min(self.x_min, loc.x)
            self.x_max = max(self.x_max, loc.x)
            self.y_min = min(self.y_min, loc.y)
            self.y_max = max(self.y_max, loc.y)
        self.changed = False

    def get_limits(self) -> PatchLimits:
        return PatchLimits(self.x_min, self.x_max, self.y_min, self.y_max)

    def within_limits(self, rect: PatchLimits) -> bool:
        """Does the patch fall (at least partly) within ``rect``?

        An irregular patch whose bounding box only clips a corner of the
        rectangle is inside only if one of its cells is.
        """
        if not (self.x_min <= rect.x_max and self.x_max >= rect.x_min
                and self.y_min <= rect.y_max and self.y_max >= rect.y_min):
            return False
        if ((self.x_min >= rect.x_min and self.x_max <= rect.x_max)
                or (self.y_min >= rect.y_min and self.y_max <= rect.y_max)):
            return True
        for ix in self.cells:
            if ix is None:
                continue
            loc = self._locn_of(ix)
            if rect.x_min <= loc.x <= rect.x_max and rect.y_min <= loc.y <= rect.y_max:
                return True
        return False

    def get_cell_locn(self, ix: int) -> Locn:
        if 0 <= ix < len(self.cells) and self.cells[ix] is not None:
            return self._locn_of(self.cells[ix])
        return Locn(NO_LOCN, NO_LOCN)

    def get_cell(self, ix: int) -> Optional[int]:
        if 0 <= ix < len(self.cells):
            return self.cells[ix]
        return None

    def get_random_cell(self, rng: RandomStream) -> Optional[int]:
        """Arena index of a random member cell (the only one in a cell-based model)."""
        live = [ix for ix in self.cells if ix is not None]
        if not live:
            return None
        if len(live) == 1:
            return live[0]
        return live[rng.irandom(0, len(live) - 1)]

    @property
    def centroid(self) -> Locn:
        return Locn(self.x, self.y)

    def is_suitable(self) -> bool:
        return self.local_k > 0.0

    # ── carrying capacity ──────────────────────────────────────────

    def set_carrying_capacity(
        self,
        species: 'Species',
        land_limits: PatchLimits,
        eps_global: float,
        n_hab: int,
        raster_type: RasterType,
        land_ix: int,
        grad_k: bool,
        landscape: 'Landscape',
        stoch: StochasticitySection,
    ) -> None:
        """Recompute ``local_k`` and the centroid.

        Each member cell contributes ``envval * k`` where k is the cell's
        unweighted capacity for the raster type and envval is the gradient
        value (if ``grad_k``) plus the local or global epsilon when
        stochasticity acts on K. With stochasticity in K, the total is
        clamped to the species' per-cell min/max times the number of
        suitable cells.
        """
        self.local_k = 0.0
        if (self.x_min > land_limits.x_max or self.x_max < land_limits.x_min
                or self.y_min > land_limits.y_max or self.y_max < land_limits.y_min):
            return

        in_k = stoch.enabled and stoch.in_K
        n_suitable = 0
        xsum = ysum = ncells = 0
        local_k = 0.0
        for ix in self.cells:
            if ix is None:
                continue
            cell = landscape.cells[ix]
            envval = cell.env_val if grad_k else 1.0
            if in_k:
                envval += cell.get_eps() if stoch.local else eps_global

            if raster_type == RasterType.HABITAT:
                k = species.get_hab_K(cell.get_hab_index(land_ix))
                if k > 0.0:
                    n_suitable += 1
                    local_k += envval * k
            elif raster_type == RasterType.COVER:
                k = 0.0
                for j in range(n_hab):
                    k += cell.get_habitat(j) * species.get_hab_K(j) / 100.0
                if k > 0.0:
                    n_suitable += 1
                    local_k += envval * k
            else:
                q = cell.get_habitat(land_ix)
                if q > 0.0:
                    n_suitable += 1
                    local_k += envval * species.get_hab_K(0) * q / 100.0
            xsum += cell.x
            ysum += cell.y
            ncells += 1

        if ncells > 0:
            self.x = int(xsum / ncells + 0.5)
            self.y = int(ysum / ncells + 0.5)
        if in_k:
            local_k = max(local_k, species.get_min_max(0) * n_suitable)
            local_k = min(local_k, species.get_min_max(1) * n_suitable)
        self.local_k = max(0.0, local_k)

    def get_init_nb_inds(
        self,
        is_patch_model: bool,
        resol: int,
        init: InitialisationSection,
    ) -> int:
        """Initial number of individuals; 0 for an unsuitable patch."""
        if self.local_k <= 0.0:
            return 0
        density = init.density
        if density == InitDensity.AT_K:
            return int(self.local_k)
        if density == InitDensity.HALF_K:
            return int(self.local_k / 2.0)
        if is_patch_model:
            return int(init.inds_per_ha * (self.n_cells * resol * resol) / 10000.0)
        return init.inds_per_cell * self.n_cells

    def get_env_val(
        self,
        is_patch_model: bool,
        eps_global: float,
        landscape: 'Landscape',
        grad: GradientSection,
        stoch: StochasticitySection,
        rng: RandomStream,
    ) -> float:
        """Environmental multiplier for fecundity; 0 for an unsuitable patch."""
        if self.local_k <= 0.0:
            return 0.0
        envval = 1.0
        if not is_patch_model and grad.kind == GradientType.FECUNDITY:
            ix = self.get_random_cell(rng)
            if ix is not None:
                envval = landscape.cells[ix].env_val
        if stoch.enabled and not stoch.in_K:
            if stoch.local:
                if not is_patch_model:
                    ix = self.get_random_cell(rng)
                    if ix is not None:
                        envval += landscape.cells[ix].get_eps()
            else:
                envval += eps_global
        return envval

    # ── population binding ─────────────────────────────────────────

    def set_pop(self, population: Optional['Population']) -> None:
        self.population = population

    def reset_pop(self) -> None:
        self.population = None

    # ── possible settlers ──────────────────────────────────────────

    def reset_poss_settlers(self) -> None:
        self._n_temp = [0] * N_SEXES

    def incr_poss_settler(self, sex: int) -> None:
        if 0 <= sex < N_SEXES:
            self._n_temp[sex] += 1

    def get_poss_settlers(self, sex: int) -> int:
        if 0 <= sex < N_SEXES:
            return self._n_temp[sex]
        return 0

    # ── occupancy ──────────────────────────────────────────────────

    def create_occupancy(self, n_rows: int) -> None:
        self.occupancy = np.zeros(n_rows, dtype=np.int32)

    def update_occupancy(self, row: int) -> None:
        occupied = False
        if self.population is not None:
            stats = self.population.get_stats()
            occupied = stats.n_inds > 0 and stats.breeding
        self.occupancy[row] += int(occupied)

    def get_occupancy(self, row: int) -> int:
        return int(self.occupancy[row])
