"""Species: demographic and dispersal parameters for one simulated species.

A Species is read-only during a run. Landscape uses its per-habitat
carrying capacities and stochastic K bounds; Population uses the
demography, emigration, transfer and settlement sections.

All carrying capacities are individuals per cell.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

import numpy as np

from rangeshifter.config import (
    DemographySection,
    EmigrationSection,
    SettlementSection,
    SimulationConfig,
    SpeciesSection,
    TransferSection,
)
from rangeshifter.types import MoveType


@dataclass
class Species:
    id: int
    habitat_K: np.ndarray
    min_K: float = 0.0
    max_K: float = 1.0e6
    demography: DemographySection = field(default_factory=DemographySection)
    emigration: EmigrationSection = field(default_factory=EmigrationSection)
    transfer: TransferSection = field(default_factory=TransferSection)
    settlement: SettlementSection = field(default_factory=SettlementSection)

    @classmethod
    def from_section(cls, section: SpeciesSection) -> 'Species':
        return cls(
            id=section.id,
            habitat_K=np.asarray(section.habitat_K, dtype=np.float32),
            min_K=float(section.min_K),
            max_K=float(section.max_K),
            demography=section.demography,
            emigration=section.emigration,
            transfer=section.transfer,
            settlement=section.settlement,
        )

    def get_hab_K(self, hab_ix: int) -> float:
        """Carrying capacity (per cell) of habitat index ``hab_ix``; 0 if unknown."""
        if 0 <= hab_ix < len(self.habitat_K):
            return float(self.habitat_K[hab_ix])
        return 0.0

    def get_min_max(self, which: int) -> float:
        """0 → minimum K per cell, 1 → maximum K per cell."""
        return self.min_K if which == 0 else self.max_K

    @property
    def stage_structured(self) -> bool:
        return self.demography.stage_structured

    @property
    def n_stages(self) -> int:
        return self.demography.n_stages if self.demography.stage_structured else 2

    @property
    def sexual(self) -> bool:
        return self.demography.sexual

    @property
    def move_type(self) -> MoveType:
        return self.transfer.kind

    @property
    def uses_movt_proc(self) -> bool:
        return self.transfer.uses_movt_proc


def build_species_map(config: SimulationConfig) -> Dict[int, Species]:
    """Build the species table, keyed by species id, from a config."""
    return {s.id: Species.from_section(s) for s in config.species}
