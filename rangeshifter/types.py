"""Core data types for the RangeShifter engine.

This module is the single home for:
  - Enumerations shared across modules (RasterType, InitDensity, SeedType,
    FreeType, SpDistType, MoveType, Sex, GradientType)
  - The Location tagged union (a patch, or in transit through the matrix)
  - Small transfer objects (Locn, PatchLimits, Disperser, PopStats,
    CommStats, PatchData)

No other module defines these.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from rangeshifter.individual import Individual


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class RasterType(IntEnum):
    """How habitat is encoded in each cell."""
    HABITAT = 0     # discrete habitat codes (one index per cell)
    COVER = 1       # percentage cover of each habitat class
    QUALITY = 2     # continuous habitat quality index (0–100 %)


class InitDensity(IntEnum):
    """Initial density policy for seeded patches."""
    AT_K = 0        # at carrying capacity
    HALF_K = 1      # at half carrying capacity
    SPECIFIED = 2   # explicit individuals per cell / per hectare


class SeedType(IntEnum):
    FREE = 0            # free initialisation within a rectangle
    DISTRIBUTION = 1    # from a loaded species distribution
    INDIVIDUALS = 2     # explicit initial individuals


class FreeType(IntEnum):
    RANDOM = 0          # n randomly chosen suitable patches
    ALL_SUITABLE = 1    # every suitable patch


class SpDistType(IntEnum):
    ALL = 0             # all presence squares
    RANDOM = 1          # n random presence squares
    MANUAL = 2          # squares selected beforehand


class MoveType(IntEnum):
    """Transfer model."""
    KERNEL = 0      # dispersal kernel (one-shot jump)
    SMS = 1         # stochastic movement simulator (cost-distance steps)
    CRW = 2         # correlated random walk


class GradientType(IntEnum):
    NONE = 0
    K = 1           # gradient in carrying capacity
    FECUNDITY = 2   # gradient in growth rate / fecundity
    EXTINCTION = 3  # gradient in local extinction probability


class Sex(IntEnum):
    FEMALE = 0
    MALE = 1


N_SEXES = 2
MAX_STAGES = 10

# Patch numbers are external (sparse) identifiers; 0 is reserved for the
# matrix and never assigned to a real Patch.
MATRIX_PATCH_NUM = 0

# Sentinel returned for out-of-range cell lookups
NO_LOCN = -666


# ═══════════════════════════════════════════════════════════════════════
# LOCATION
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PatchLocation:
    """A Population resident in the patch with sequence number ``seq``."""
    seq: int

    @property
    def in_transit(self) -> bool:
        return False


@dataclass(frozen=True)
class InTransit:
    """The matrix: individuals that have left a patch and not yet settled."""

    @property
    def in_transit(self) -> bool:
        return True


Location = Union[PatchLocation, InTransit]


# ═══════════════════════════════════════════════════════════════════════
# SMALL VALUE TYPES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Locn:
    x: int
    y: int


@dataclass
class PatchLimits:
    """Inclusive rectangle in cell coordinates."""
    x_min: int = 0
    x_max: int = 99999999
    y_min: int = 0
    y_max: int = 99999999


@dataclass
class PatchData:
    """Enumeration record returned by Landscape.get_patch_data()."""
    patch: 'object'     # Patch
    patch_num: int
    n_cells: int
    x: int
    y: int


@dataclass
class Disperser:
    """Ownership hand-off record for one individual.

    Produced by Population.extract_disperser (emigration) and
    Population.extract_settler (settlement resolution). It carries no
    state of its own beyond the move.
    """
    individual: Optional['Individual']
    cell: Optional[int]         # arena index of the individual's current cell
    is_dispersing: bool = False
    is_settling: bool = False


@dataclass
class PopStats:
    """Summary counts for one Population."""
    species_id: int
    location: Location
    n_inds: int = 0
    n_non_juvs: int = 0
    n_adults: int = 0
    breeding: bool = False


@dataclass
class CommStats:
    """Community-wide counts and occupied range rectangle."""
    ninds: int = 0
    nnonjuvs: int = 0
    suitable: int = 0
    occupied: int = 0
    min_x: int = 0
    max_x: int = 0
    min_y: int = 0
    max_y: int = 0
