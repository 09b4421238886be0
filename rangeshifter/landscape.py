"""Landscape: the cell arena, per-species patches and environmental state.

The Landscape owns:
  - A dense arena of Cells (``cells[y * dim_x + x]``; None = no data)
  - Per species, a list of Patches indexed by sequence number plus a
    map from external patch number to sequence number
  - The global environmental-stochasticity time series and the
    environmental gradient
  - Dynamic landscape changes (extra habitat layers, patch and cost
    changes applied atomically at specified years)
  - Initial species distributions and connectivity matrices

Patch number 0 is reserved for the matrix and never assigned to a Patch;
cells outside any patch are bound to None.

Landscapes are built from in-memory arrays (row index = y):
  - Landscape.from_habitat_codes(codes, species, ...)
  - Landscape.from_habitat_quality(quality, species, ...)
  - Landscape.from_cover(cover, species, ...)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np

from rangeshifter.cell import Cell, DistCell
from rangeshifter.patch import Patch
from rangeshifter.types import (
    GradientType,
    Locn,
    MATRIX_PATCH_NUM,
    PatchData,
    PatchLimits,
    RasterType,
)

logger = logging.getLogger('rangeshifter.landscape')

NODATA = -9999


# ═══════════════════════════════════════════════════════════════════════
# PARAMETER RECORDS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class LandParams:
    """Grid and patch-mode configuration of a Landscape."""
    patch_model: bool
    use_sp_dist: bool
    dynamic: bool
    resol: int
    sp_resol: int
    n_hab: int
    dim_x: int
    dim_y: int
    min_x: int
    min_y: int
    max_x: int
    max_y: int
    raster_type: RasterType


@dataclass
class LandData:
    resol: int
    dim_x: int
    dim_y: int
    min_x: int
    min_y: int
    max_x: int
    max_y: int


@dataclass
class LandChange:
    """One dynamic landscape change (becomes habitat layer ``number``)."""
    number: int
    year: int
    patches: bool = False
    costs: bool = False


@dataclass
class PatchChange:
    chg_num: int
    x: int
    y: int
    old_patch: int
    new_patch: int


@dataclass
class CostChange:
    chg_num: int
    x: int
    y: int
    old_cost: int
    new_cost: int


@dataclass
class InitDist:
    """Initial species distribution on a coarser grid of DistCells."""
    resol: int
    max_x: int
    max_y: int
    cells: List[DistCell] = field(default_factory=list)

    def set_distribution(self, n_cells: int, rng) -> None:
        """Select all squares (n_cells == 0) or ``n_cells`` random squares."""
        if n_cells <= 0:
            for c in self.cells:
                c.set_cell(True)
            return
        for c in self.cells:
            c.set_cell(False)
        for c in rng.sample(self.cells, n_cells):
            c.set_cell(True)

    def set_dist_cell(self, x: int, y: int, value: bool) -> None:
        for c in self.cells:
            if c.x == x and c.y == y:
                c.set_cell(value)

    def is_in_initial_dist(self, x: int, y: int) -> bool:
        return any(c.to_initialise(x, y) for c in self.cells)

    def get_selected_cell(self, ix: int) -> Locn:
        c = self.cells[ix]
        return c.locn if c.selected() else Locn(-1, -1)

    def reset(self) -> None:
        for c in self.cells:
            c.set_cell(False)


# ═══════════════════════════════════════════════════════════════════════
# LANDSCAPE
# ═══════════════════════════════════════════════════════════════════════

class Landscape:
    """Cell arena plus per-species patch tables.

    Args:
        dim_x, dim_y: Grid dimensions (cells).
        species: Ids of the species sharing the landscape.
        resolution: Cell side (m).
        patch_model: True for a patch-based model, False for cell-based.
        raster_type: Habitat encoding of the cells.
        n_habitats: Number of habitat classes (cover layers).
        sp_resolution: Species-distribution square side (m).
    """

    def __init__(
        self,
        dim_x: int,
        dim_y: int,
        species: Iterable[int] = (0,),
        resolution: int = 100,
        patch_model: bool = False,
        raster_type: RasterType = RasterType.HABITAT,
        n_habitats: int = 1,
        sp_resolution: Optional[int] = None,
    ):
        self.dim_x = dim_x
        self.dim_y = dim_y
        self.species_ids = list(species)
        self.resol = resolution
        self.sp_resol = sp_resolution or resolution
        self.patch_model = patch_model
        self.raster_type = RasterType(raster_type)
        self.n_hab = n_habitats
        self.dynamic = False
        self.min_x = self.min_y = 0
        self.max_x = dim_x - 1
        self.max_y = dim_y - 1

        self.cells: List[Optional[Cell]] = [None] * (dim_x * dim_y)
        self.hab_codes: List[int] = []
        self.patches: Dict[int, List[Patch]] = {sp: [] for sp in self.species_ids}
        self._patch_nums: Dict[int, Dict[int, int]] = {sp: {} for sp in self.species_ids}

        self.eps_global = np.zeros(0, dtype=np.float32)
        self.opt_y: Optional[float] = None

        self.land_changes: List[LandChange] = []
        self.patch_changes: List[PatchChange] = []
        self.cost_changes: List[CostChange] = []
        self._patch_layers: List[np.ndarray] = []
        self._cost_layers: List[np.ndarray] = []

        self.distributions: Dict[int, InitDist] = {}
        self.connect: Dict[int, np.ndarray] = {}

    def __repr__(self) -> str:
        counts = {sp: len(p) for sp, p in self.patches.items()}
        return f"Landscape({self.dim_x}x{self.dim_y}, patches={counts})"

    # ── construction helpers ───────────────────────────────────────

    @classmethod
    def from_habitat_codes(
        cls,
        codes: np.ndarray,
        species_map: Dict[int, 'object'],
        resolution: int = 100,
        patch_ids: Optional[np.ndarray] = None,
        nodata: int = NODATA,
        sp_resolution: Optional[int] = None,
    ) -> 'Landscape':
        """Build from a 2-D array of integer habitat codes.

        Habitat codes are mapped to indices in ascending code order; the
        species' ``habitat_K`` is indexed by that habitat index. Cells
        equal to ``nodata`` (or negative) are absent.
        """
        codes = np.asarray(codes)
        dim_y, dim_x = codes.shape
        land = cls(dim_x, dim_y, species_map.keys(), resolution,
                   patch_model=patch_ids is not None,
                   raster_type=RasterType.HABITAT, sp_resolution=sp_resolution)
        land.hab_codes = sorted(int(c) for c in np.unique(codes)
                                if c != nodata and c >= 0)
        land.n_hab = max(1, len(land.hab_codes))
        for y in range(dim_y):
            for x in range(dim_x):
                code = int(codes[y, x])
                if code == nodata or code < 0:
                    continue
                cell = land.add_new_cell(x, y)
                cell.add_hab_index(land.find_hab_code(code))
        land._finish_patches(species_map, patch_ids, nodata)
        return land

    @classmethod
    def from_habitat_quality(
        cls,
        quality: np.ndarray,
        species_map: Dict[int, 'object'],
        resolution: int = 100,
        patch_ids: Optional[np.ndarray] = None,
        nodata: float = NODATA,
        sp_resolution: Optional[int] = None,
    ) -> 'Landscape':
        """Build from a 2-D array of habitat quality (0–100 %)."""
        quality = np.asarray(quality, dtype=float)
        dim_y, dim_x = quality.shape
        land = cls(dim_x, dim_y, species_map.keys(), resolution,
                   patch_model=patch_ids is not None,
                   raster_type=RasterType.QUALITY, sp_resolution=sp_resolution)
        for y in range(dim_y):
            for x in range(dim_x):
                q = float(quality[y, x])
                if q == nodata or q < 0:
                    continue
                land.add_new_cell(x, y).add_habitat(q)
        land._finish_patches(species_map, patch_ids, nodata)
        return land

    @classmethod
    def from_cover(
        cls,
        cover: np.ndarray,
        species_map: Dict[int, 'object'],
        resolution: int = 100,
        patch_ids: Optional[np.ndarray] = None,
        nodata: float = NODATA,
        sp_resolution: Optional[int] = None,
    ) -> 'Landscape':
        """Build from a 3-D array (n_habitats, dim_y, dim_x) of percent cover."""
        cover = np.asarray(cover, dtype=float)
        n_hab, dim_y, dim_x = cover.shape
        land = cls(dim_x, dim_y, species_map.keys(), resolution,
                   patch_model=patch_ids is not None,
                   raster_type=RasterType.COVER, n_habitats=n_hab,
                   sp_resolution=sp_resolution)
        for y in range(dim_y):
            for x in range(dim_x):
                column = cover[:, y, x]
                if np.any(column == nodata) or np.any(column < 0):
                    continue
                cell = land.add_new_cell(x, y)
                for q in column:
                    cell.add_habitat(float(q))
        land._finish_patches(species_map, patch_ids, nodata)
        return land

    def _finish_patches(self, species_map, patch_ids, nodata) -> None:
        if patch_ids is None:
            self.allocate_patches(species_map)
            return
        patch_ids = np.asarray(patch_ids, dtype=int)
        if patch_ids.shape != (self.dim_y, self.dim_x):
            raise ValueError(
                f"patch_ids shape {patch_ids.shape} does not match "
                f"landscape ({self.dim_y}, {self.dim_x})"
            )
        for y in range(self.dim_y):
            for x in range(self.dim_x):
                ix = self.cell_index(x, y)
                num = int(patch_ids[y, x])
                if self.cells[ix] is None or num == nodata or num <= MATRIX_PATCH_NUM:
                    continue
                for sp in self.species_ids:
                    patch = self._find_or_add_patch(sp, num)
                    self.add_cell_to_patch(sp, ix, patch)
        self._patch_layers.append(patch_ids.copy())

    # ── habitat codes ──────────────────────────────────────────────

    def find_hab_code(self, code: int) -> int:
        """Habitat index of ``code``; unseen codes are appended."""
        if code not in self.hab_codes:
            self.hab_codes.append(code)
            self.n_hab = len(self.hab_codes)
        return self.hab_codes.index(code)

    def get_hab_code(self, hab_ix: int) -> int:
        if 0 <= hab_ix < len(self.hab_codes):
            return self.hab_codes[hab_ix]
        return -999

    # ── cells ──────────────────────────────────────────────────────

    def cell_index(self, x: int, y: int) -> int:
        return y * self.dim_x + x

    def in_landscape(self, x: int, y: int) -> bool:
        return 0 <= x < self.dim_x and 0 <= y < self.dim_y

    def add_new_cell(self, x: int, y: int) -> Cell:
        cell = Cell(x, y, self.species_ids)
        self.cells[self.cell_index(x, y)] = cell
        return cell

    def find_cell(self, x: int, y: int) -> Optional[Cell]:
        """Cell at (x, y), or None for no data / outside the grid."""
        if not self.in_landscape(x, y):
            return None
        return self.cells[self.cell_index(x, y)]

    def find_cell_ix(self, x: int, y: int) -> Optional[int]:
        if not self.in_landscape(x, y):
            return None
        ix = self.cell_index(x, y)
        return ix if self.cells[ix] is not None else None

    def data_cells(self):
        """Iterate over (arena index, Cell) for every data cell."""
        for ix, cell in enumerate(self.cells):
            if cell is not None:
                yield ix, cell

    # ── patches ────────────────────────────────────────────────────

    def add_new_patch(self, species_id: int, num: int) -> Patch:
        """Create patch ``num`` for a species and return it.

        Raises:
            ValueError: If num is the reserved matrix number or already used.
        """
        if num == MATRIX_PATCH_NUM:
            raise ValueError("patch number 0 is reserved for the matrix")
        nums = self._patch_nums[species_id]
        if num in nums:
            raise ValueError(f"patch {num} already exists for species {species_id}")
        seq = len(self.patches[species_id])
        patch = Patch(seq, num, species_id, self.dim_x)
        self.patches[species_id].append(patch)
        nums[num] = seq
        return patch

    def _find_or_add_patch(self, species_id: int, num: int) -> Patch:
        seq = self._patch_nums[species_id].get(num)
        if seq is None:
            return self.add_new_patch(species_id, num)
        return self.patches[species_id][seq]

    def add_cell_to_patch(self, species_id: int, cell_ix: int, patch: Patch) -> None:
        cell = self.cells[cell_ix]
        patch.add_cell(cell_ix, cell.x, cell.y)
        cell.set_patch(species_id, patch.seq_num)

    def _cell_suitable_anywhere(self, cell: Cell, species) -> bool:
        if self.raster_type == RasterType.HABITAT:
            return any(species.get_hab_K(hx) > 0.0 for hx in cell.hab_ixx)
        if self.raster_type == RasterType.COVER:
            return sum(cell.get_habitat(j) * species.get_hab_K(j)
                       for j in range(self.n_hab)) > 0.0
        return any(q > 0.0 for q in cell.habitats) and species.get_hab_K(0) > 0.0

    def allocate_patches(self, species_map: Dict[int, 'object']) -> None:
        """Cell-based model: one patch per data cell suitable in any layer."""
        for sp, species in species_map.items():
            for ix, cell in self.data_cells():
                if cell.get_patch(sp) is not None:
                    continue
                if self._cell_suitable_anywhere(cell, species):
                    patch = self.add_new_patch(sp, len(self.patches[sp]) + 1)
                    self.add_cell_to_patch(sp, ix, patch)

    def find_patch(self, species_id: int, num: int) -> Patch:
        """Patch by external number.

        Raises:
            KeyError: If no such patch exists for the species.
        """
        try:
            return self.patches[species_id][self._patch_nums[species_id][num]]
        except KeyError:
            raise KeyError(
                f"Patch {num} does not exist for species {species_id}"
            ) from None

    def exists_patch(self, species_id: int, num: int) -> bool:
        return num in self._patch_nums.get(species_id, {})

    def get_patch(self, species_id: int, seq: int) -> Patch:
        """Patch by sequence number."""
        return self.patches[species_id][seq]

    def patch_of(self, cell_ix: int, species_id: int) -> Optional[Patch]:
        """Patch a cell belongs to for a species, or None in the matrix."""
        cell = self.cells[cell_ix]
        if cell is None:
            return None
        seq = cell.get_patch(species_id)
        return None if seq is None else self.patches[species_id][seq]

    def patch_count(self, species_id: int) -> int:
        return len(self.patches.get(species_id, []))

    def all_patch_count(self) -> int:
        return sum(len(p) for p in self.patches.values())

    def get_patch_data(self, species_id: int, ix: int) -> PatchData:
        p = self.patches[species_id][ix]
        return PatchData(p, p.patch_num, p.n_cells, p.x, p.y)

    def reset_patch_limits(self) -> None:
        for plist in self.patches.values():
            for p in plist:
                p.reset_limits()

    def reset_patch_popns(self) -> None:
        for plist in self.patches.values():
            for p in plist:
                p.reset_pop()

    # ── parameters and limits ──────────────────────────────────────

    @property
    def land_params(self) -> LandParams:
        return LandParams(
            patch_model=self.patch_model,
            use_sp_dist=bool(self.distributions),
            dynamic=self.dynamic,
            resol=self.resol,
            sp_resol=self.sp_resol,
            n_hab=self.n_hab,
            dim_x=self.dim_x,
            dim_y=self.dim_y,
            min_x=self.min_x,
            min_y=self.min_y,
            max_x=self.max_x,
            max_y=self.max_y,
            raster_type=self.raster_type,
        )

    @property
    def land_data(self) -> LandData:
        return LandData(self.resol, self.dim_x, self.dim_y,
                        self.min_x, self.min_y, self.max_x, self.max_y)

    @property
    def limits(self) -> PatchLimits:
        return PatchLimits(self.min_x, self.max_x, self.min_y, self.max_y)

    def set_land_limits(self, min_x: int, min_y: int, max_x: int, max_y: int) -> None:
        """Restrict the available landscape; out-of-range values are ignored."""
        if 0 <= min_x <= max_x < self.dim_x:
            self.min_x, self.max_x = min_x, max_x
        if 0 <= min_y <= max_y < self.dim_y:
            self.min_y, self.max_y = min_y, max_y

    def reset_land_limits(self) -> None:
        self.min_x = self.min_y = 0
        self.max_x = self.dim_x - 1
        self.max_y = self.dim_y - 1

    # ── carrying capacity ──────────────────────────────────────────

    def update_carrying_capacity(self, species_map, year: int, land_ix: int, ctx) -> None:
        """Recompute ``local_k`` of every patch of every species."""
        stoch = ctx.stochasticity
        eps_global = 0.0
        if stoch.enabled and not stoch.local:
            eps_global = self.get_global_stoch(year)
        grad_k = (ctx.gradient.kind == GradientType.K and not self.patch_model)
        limits = self.limits
        for sp, species in species_map.items():
            for patch in self.patches.get(sp, []):
                patch.set_carrying_capacity(
                    species, limits, eps_global, self.n_hab, self.raster_type,
                    land_ix, grad_k, self, stoch,
                )

    # ── environmental gradient ─────────────────────────────────────

    def set_env_gradient(self, ctx, is_initial: bool) -> None:
        """Set each cell's gradient value from its distance to the optimum row.

        On the initial call every cell draws its fixed deviation
        ``env_dev`` uniformly in [-1, 1).
        """
        grad = ctx.gradient
        kind = grad.kind
        if kind == GradientType.NONE:
            return
        if self.opt_y is None or is_initial:
            self.opt_y = grad.opt_y
        rng = ctx.rng
        for _, cell in self.data_cells():
            if is_initial:
                cell.env_dev = rng.random() * 2.0 - 1.0
            dist = abs(cell.y - self.opt_y)
            if kind == GradientType.EXTINCTION:
                val = grad.ext_prob_opt + dist * grad.grad_inc + cell.env_dev * grad.factor
                cell.env_val = min(1.0, max(0.0, val))
            else:
                val = 1.0 - dist * grad.grad_inc + cell.env_dev * grad.factor
                cell.env_val = max(0.0, val)

    def shift_gradient(self, ctx, year: int) -> bool:
        """Move the optimum by ``shift_rate`` rows if ``year`` is in the shift window.

        Returns True if the gradient moved.
        """
        grad = ctx.gradient
        if grad.kind == GradientType.NONE or not grad.shifting:
            return False
        if not (grad.shift_begin <= year < grad.shift_stop):
            return False
        if self.opt_y is None:
            self.opt_y = grad.opt_y
        self.opt_y += grad.shift_rate
        self.set_env_gradient(ctx, False)
        return True

    # ── environmental stochasticity ────────────────────────────────

    def set_global_stoch(self, n_years: int, ctx) -> np.ndarray:
        """Pre-compute the global AR(1) epsilon series for ``n_years``."""
        stoch = ctx.stochasticity
        rng = ctx.rng
        scale = math.sqrt(1.0 - stoch.ac * stoch.ac)
        eps = np.zeros(n_years, dtype=np.float32)
        if n_years > 0:
            eps[0] = rng.normal(0.0, stoch.std) * scale
            for i in range(1, n_years):
                eps[i] = stoch.ac * eps[i - 1] + rng.normal(0.0, stoch.std) * scale
        self.eps_global = eps
        return eps

    def get_global_stoch(self, year: int) -> float:
        if 0 <= year < len(self.eps_global):
            return float(self.eps_global[year])
        return 0.0

    def update_local_stoch(self, ctx) -> None:
        """One AR(1) update of every cell's local epsilon."""
        stoch = ctx.stochasticity
        sd = stoch.std * math.sqrt(1.0 - stoch.ac * stoch.ac)
        rng = ctx.rng
        for _, cell in self.data_cells():
            cell.update_eps(stoch.ac, rng.normal(0.0, sd))

    # ── SMS costs ──────────────────────────────────────────────────

    def set_costs(self, costs: np.ndarray) -> None:
        """Assign movement costs from a 2-D integer array (row index = y)."""
        costs = np.asarray(costs, dtype=int)
        for ix, cell in self.data_cells():
            cell.set_cost(int(costs[cell.y, cell.x]))
        self._cost_layers = [costs.copy()]

    def reset_costs(self) -> None:
        for _, cell in self.data_cells():
            cell.reset_cost()

    def reset_eff_costs(self) -> None:
        for _, cell in self.data_cells():
            cell.reset_eff_costs()

    def effective_costs(self, cell_ix: int, perceptual_range: int = 1) -> np.ndarray:
        """3×3 effective costs around a cell, cached on the cell.

        Each neighbour's effective cost is the mean raw cost of the data
        cells in a square of side ``perceptual_range`` centred
        ``perceptual_range`` cells away in that direction. Directions with
        no data cells get -1; the centre is 0.
        """
        cell = self.cells[cell_ix]
        if cell.has_eff_costs():
            return cell.get_eff_costs()
        pr = max(1, perceptual_range)
        half = pr // 2
        eff = np.full((3, 3), -1.0, dtype=np.float32)
        eff[1, 1] = 0.0
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                if dx == 0 and dy == 0:
                    continue
                cx, cy = cell.x + dx * pr, cell.y + dy * pr
                total, n = 0.0, 0
                for yy in range(cy - half, cy + half + 1):
                    for xx in range(cx - half, cx + half + 1):
                        other = self.find_cell(xx, yy)
                        if other is not None:
                            total += max(1, other.get_cost())
                            n += 1
                if n > 0 and self.find_cell(cell.x + dx, cell.y + dy) is not None:
                    eff[dy + 1, dx + 1] = total / n
        cell.set_eff_costs(eff)
        return eff

    def reset_visits(self) -> None:
        for _, cell in self.data_cells():
            cell.reset_visits()

    # ── dynamic landscape ──────────────────────────────────────────

    def add_land_change(
        self,
        year: int,
        habitats: Optional[np.ndarray] = None,
        patch_ids: Optional[np.ndarray] = None,
        costs: Optional[np.ndarray] = None,
    ) -> LandChange:
        """Record a landscape change taking effect in ``year``.

        ``habitats`` becomes a new habitat layer on every data cell (codes
        or quality, matching the raster type; None repeats the current
        layer). Patch and cost differences against the previous layer are
        recorded for apply_land_change().

        Raises:
            ValueError: For percent-cover landscapes or a non-increasing year.
        """
        if self.raster_type == RasterType.COVER:
            raise ValueError("dynamic changes are not supported for cover landscapes")
        if self.land_changes and year <= self.land_changes[-1].year:
            raise ValueError(
                f"land change year {year} must follow {self.land_changes[-1].year}"
            )
        number = len(self.land_changes) + 1
        for _, cell in self.data_cells():
            if self.raster_type == RasterType.HABITAT:
                if habitats is None:
                    cell.add_hab_index(cell.hab_ixx[-1])
                else:
                    cell.add_hab_index(self.find_hab_code(int(habitats[cell.y, cell.x])))
            else:
                if habitats is None:
                    cell.add_habitat(cell.habitats[-1])
                else:
                    cell.add_habitat(float(habitats[cell.y, cell.x]))

        change = LandChange(number, year)
        if patch_ids is not None and self.patch_model:
            new = np.asarray(patch_ids, dtype=int)
            old = self._patch_layers[-1]
            for ix, cell in self.data_cells():
                o, n = int(old[cell.y, cell.x]), int(new[cell.y, cell.x])
                if o != n:
                    self.patch_changes.append(
                        PatchChange(number, cell.x, cell.y, max(o, 0), max(n, 0)))
            self._patch_layers.append(new.copy())
            change.patches = True
        if costs is not None:
            new = np.asarray(costs, dtype=int)
            for ix, cell in self.data_cells():
                old_cost = cell.get_cost()
                new_cost = int(new[cell.y, cell.x])
                if old_cost != new_cost:
                    self.cost_changes.append(
                        CostChange(number, cell.x, cell.y, old_cost, new_cost))
            self._cost_layers.append(new.copy())
            change.costs = True
        self.land_changes.append(change)
        self.dynamic = True
        return change

    def num_land_changes(self) -> int:
        return len(self.land_changes)

    def get_land_change(self, ix: int) -> LandChange:
        return self.land_changes[ix]

    def apply_land_change(self, ix: int, species_map, ctx, year: int = 0) -> int:
        """Apply change ``ix`` atomically and return the new habitat layer index.

        Patch membership and costs are rewritten, effective-cost caches
        reset, patch limits recomputed and all carrying capacities updated.
        """
        change = self.land_changes[ix]
        land_ix = change.number

        if change.patches:
            for pc in (c for c in self.patch_changes if c.chg_num == change.number):
                cell_ix = self.cell_index(pc.x, pc.y)
                for sp in self.species_ids:
                    if pc.old_patch != MATRIX_PATCH_NUM:
                        self.find_patch(sp, pc.old_patch).remove_cell(cell_ix)
                    if pc.new_patch != MATRIX_PATCH_NUM:
                        patch = self._find_or_add_patch(sp, pc.new_patch)
                        self.add_cell_to_patch(sp, cell_ix, patch)
                    else:
                        self.cells[cell_ix].set_patch(sp, None)
        if not self.patch_model:
            self.allocate_patches(species_map)

        if change.costs:
            for cc in (c for c in self.cost_changes if c.chg_num == change.number):
                self.find_cell(cc.x, cc.y).set_cost(cc.new_cost)
            self.reset_eff_costs()

        self.reset_patch_limits()
        self.update_carrying_capacity(species_map, year, land_ix, ctx)
        logger.debug("applied land change %d (year %d): layer %d",
                     change.number, change.year, land_ix)
        return land_ix

    # ── species distributions ──────────────────────────────────────

    def new_distribution(self, species_id: int, presence: np.ndarray,
                         resol: Optional[int] = None) -> InitDist:
        """Load a presence grid (row index = y) on squares of side ``resol`` m."""
        presence = np.asarray(presence)
        resol = resol or self.sp_resol
        dim_y, dim_x = presence.shape
        dist = InitDist(resol, dim_x - 1, dim_y - 1)
        for y in range(dim_y):
            for x in range(dim_x):
                if presence[y, x] > 0:
                    dist.cells.append(DistCell(x, y))
        self.distributions[species_id] = dist
        return dist

    def set_distribution(self, species_id: int, n_cells: int, rng) -> None:
        self.distributions[species_id].set_distribution(n_cells, rng)

    def set_distn_cell(self, species_id: int, x: int, y: int, value: bool) -> None:
        self.distributions[species_id].set_dist_cell(x, y, value)

    def dist_cell_count(self, species_id: int) -> int:
        dist = self.distributions.get(species_id)
        return 0 if dist is None else len(dist.cells)

    def get_selected_distn_cell(self, species_id: int, ix: int) -> Locn:
        return self.distributions[species_id].get_selected_cell(ix)

    def selected_distn_cells(self, species_id: int) -> List[Locn]:
        dist = self.distributions.get(species_id)
        if dist is None:
            return []
        return [c.locn for c in dist.cells if c.selected()]

    def is_in_initial_dist(self, species_id: int, x: int, y: int) -> bool:
        dist = self.distributions.get(species_id)
        return dist is not None and dist.is_in_initial_dist(x, y)

    def reset_distribution(self, species_id: int) -> None:
        if species_id in self.distributions:
            self.distributions[species_id].reset()

    # ── connectivity ───────────────────────────────────────────────

    def create_connect_matrix(self) -> None:
        for sp in self.species_ids:
            n = len(self.patches[sp])
            self.connect[sp] = np.zeros((n, n), dtype=np.int64)

    def reset_connect_matrix(self) -> None:
        for m in self.connect.values():
            m[:] = 0

    def incr_connect_matrix(self, species_id: int, origin_seq: int, dest_seq: int) -> None:
        """Count one settler moving from patch ``origin_seq`` to ``dest_seq``."""
        m = self.connect.get(species_id)
        n = len(self.patches[species_id])
        if m is None or m.shape[0] < n:
            grown = np.zeros((n, n), dtype=np.int64)
            if m is not None:
                grown[:m.shape[0], :m.shape[1]] = m
            m = self.connect[species_id] = grown
        if 0 <= origin_seq < n and 0 <= dest_seq < n:
            m[origin_seq, dest_seq] += 1

    def get_connect_matrix(self, species_id: int) -> np.ndarray:
        m = self.connect.get(species_id)
        if m is None:
            n = len(self.patches[species_id])
            return np.zeros((n, n), dtype=np.int64)
        return m

    # ── array views ────────────────────────────────────────────────

    def k_map(self, species_id: int) -> np.ndarray:
        """Per-cell share of patch K (NaN for no data), for plotting."""
        out = np.full((self.dim_y, self.dim_x), np.nan)
        for ix, cell in self.data_cells():
            patch = self.patch_of(ix, species_id)
            out[cell.y, cell.x] = 0.0 if patch is None else patch.local_k / max(1, patch.n_cells)
        return out
