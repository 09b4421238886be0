"""Landscape cells and initial-distribution squares.

A Cell stores its habitat layers, environmental gradient value, the
autocorrelated local stochastic term, an optional SMS cost record and,
for every registered species, the sequence number of the Patch it
belongs to (or None in the matrix).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np

from rangeshifter.types import Locn


# Placeholder for uncomputed effective costs
_NO_EFF_COSTS = np.full((3, 3), -1.0, dtype=np.float32)


@dataclass
class _CostRecord:
    cost: int = 0
    eff_costs: Optional[np.ndarray] = None


class Cell:
    """One grid cell.

    Args:
        x, y: Integer grid coordinates.
        species: Ids of every species that may bind this cell to a patch.
    """

    def __init__(self, x: int, y: int, species: Iterable[int] = ()):
        self.x = x
        self.y = y
        self.hab_ixx: List[int] = []
        self.habitats: List[float] = []
        self.env_val: float = 1.0
        self.env_dev: float = 0.0
        self.eps = np.float32(0.0)
        self._sms: Optional[_CostRecord] = None
        self.patches: Dict[int, Optional[int]] = {sp: None for sp in species}
        self.visits: Dict[int, int] = {sp: 0 for sp in species}

    def __repr__(self) -> str:
        return f"Cell(x={self.x}, y={self.y})"

    @property
    def locn(self) -> Locn:
        return Locn(self.x, self.y)

    # ── habitat ─────────────────────────────────────────────────────

    def add_hab_index(self, hx: int) -> None:
        self.hab_ixx.append(hx if hx >= 0 else 0)

    def change_hab_index(self, layer: int, hx: int) -> None:
        if 0 <= layer < len(self.hab_ixx) and hx >= 0:
            self.hab_ixx[layer] = hx
        elif 0 <= layer < len(self.hab_ixx):
            self.hab_ixx[layer] = 0

    def get_hab_index(self, layer: int) -> int:
        """Habitat index of dynamic layer ``layer``, or -1 for no data."""
        if layer < 0 or layer >= len(self.hab_ixx):
            return -1
        return self.hab_ixx[layer]

    def add_habitat(self, q: float) -> None:
        """Append a quality / cover value; values outside [0, 100] become 0."""
        self.habitats.append(float(q) if 0.0 <= q <= 100.0 else 0.0)

    def get_habitat(self, ix: int) -> float:
        """Quality / cover of layer ``ix``, or -1.0 for no data."""
        if ix < 0 or ix >= len(self.habitats):
            return -1.0
        return self.habitats[ix]

    def n_habitats(self) -> int:
        return max(len(self.hab_ixx), len(self.habitats))

    # ── local environmental stochasticity ──────────────────────────

    def update_eps(self, ac: float, randpart: float) -> None:
        """AR(1) update ``eps = eps * ac + randpart`` in single precision."""
        self.eps = np.float32(self.eps * np.float32(ac) + np.float32(randpart))

    def get_eps(self) -> float:
        return float(self.eps)

    # ── SMS costs ──────────────────────────────────────────────────

    def set_cost(self, cost: int) -> None:
        if self._sms is None:
            self._sms = _CostRecord()
        self._sms.cost = int(cost)

    def get_cost(self) -> int:
        return 0 if self._sms is None else self._sms.cost

    def reset_cost(self) -> None:
        self._sms = None

    def set_eff_costs(self, costs: np.ndarray) -> None:
        if self._sms is None:
            self._sms = _CostRecord()
        self._sms.eff_costs = np.array(costs, dtype=np.float32).reshape(3, 3)

    def get_eff_costs(self) -> np.ndarray:
        if self._sms is None or self._sms.eff_costs is None:
            return _NO_EFF_COSTS.copy()
        return self._sms.eff_costs.copy()

    def has_eff_costs(self) -> bool:
        return self._sms is not None and self._sms.eff_costs is not None

    def reset_eff_costs(self) -> None:
        """Drop the cached effective costs, keeping the raw cost."""
        if self._sms is not None:
            self._sms.eff_costs = None

    # ── per-species patch binding ──────────────────────────────────

    def register_species(self, species_id: int) -> None:
        self.patches.setdefault(species_id, None)
        self.visits.setdefault(species_id, 0)

    def set_patch(self, species_id: int, seq: Optional[int]) -> None:
        """Bind this cell to patch ``seq`` (None = matrix) for a species.

        Raises:
            KeyError: If the species was never registered on this cell.
        """
        if species_id not in self.patches:
            raise KeyError(f"Species {species_id} is not registered on {self!r}")
        self.patches[species_id] = seq

    def get_patch(self, species_id: int) -> Optional[int]:
        """Patch sequence number for a species (None = matrix).

        Raises:
            KeyError: If the species was never registered on this cell.
        """
        try:
            return self.patches[species_id]
        except KeyError:
            raise KeyError(
                f"Species {species_id} is not registered on {self!r}"
            ) from None

    # ── SMS visit counts ───────────────────────────────────────────

    def reset_visits(self) -> None:
        for sp in self.visits:
            self.visits[sp] = 0

    def incr_visits(self, species_id: int) -> None:
        self.visits[species_id] += 1

    def get_visits(self, species_id: int) -> int:
        return self.visits[species_id]


class DistCell:
    """One square of an initial species distribution."""

    def __init__(self, x: int, y: int):
        self.x = x
        self.y = y
        self.initialise = False

    def set_cell(self, init: bool) -> None:
        self.initialise = bool(init)

    def to_initialise(self, x: int, y: int) -> bool:
        return self.initialise and x == self.x and y == self.y

    def selected(self) -> bool:
        return self.initialise

    @property
    def locn(self) -> Locn:
        return Locn(self.x, self.y)
