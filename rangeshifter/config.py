"""Configuration system for the RangeShifter engine.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys:
  simulation, landscape, stochasticity, gradient, initialisation,
  species (a list, one entry per species), output

Species entries are themselves nested (demography, emigration, transfer,
settlement) and are turned into :class:`rangeshifter.species.Species`
objects by :func:`rangeshifter.species.build_species_map`.

Design decisions:
  - Carrying capacities (habitat_K, min_K, max_K) are stored as
    individuals per CELL, not per hectare; convert before loading.
  - Enumerated options are written as lower-case strings in YAML and
    parsed into the IntEnums in rangeshifter.types.
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from rangeshifter.types import (
    FreeType,
    GradientType,
    InitDensity,
    MoveType,
    RasterType,
    SeedType,
    SpDistType,
)


# ═══════════════════════════════════════════════════════════════════════
# OPTION NAMES
# ═══════════════════════════════════════════════════════════════════════

RASTER_TYPES = {
    'habitat': RasterType.HABITAT,
    'cover': RasterType.COVER,
    'quality': RasterType.QUALITY,
}
INIT_DENSITIES = {
    'K': InitDensity.AT_K,
    'half_K': InitDensity.HALF_K,
    'specified': InitDensity.SPECIFIED,
}
SEED_TYPES = {
    'free': SeedType.FREE,
    'distribution': SeedType.DISTRIBUTION,
    'individuals': SeedType.INDIVIDUALS,
}
FREE_TYPES = {
    'random': FreeType.RANDOM,
    'all_suitable': FreeType.ALL_SUITABLE,
}
SP_DIST_TYPES = {
    'all': SpDistType.ALL,
    'random': SpDistType.RANDOM,
    'manual': SpDistType.MANUAL,
}
GRADIENT_TYPES = {
    'none': GradientType.NONE,
    'K': GradientType.K,
    'fecundity': GradientType.FECUNDITY,
    'extinction': GradientType.EXTINCTION,
}
MOVE_TYPES = {
    'kernel': MoveType.KERNEL,
    'sms': MoveType.SMS,
    'crw': MoveType.CRW,
}
UNSUITABLE_RULES = {'die', 'wait', 'neighbour', 'wait_neighbour'}
REPRODUCTION_TYPES = {'asexual', 'sexual'}


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Replicate control and dispersal bookkeeping."""
    seed: int = 42                  # master seed; negative = nondeterministic
    replicates: int = 1
    years: int = 100
    rep_seasons: int = 1            # reproductive seasons (generations) per year
    absorbing: bool = False         # dispersers leaving the landscape die
    out_connect: bool = False       # accumulate patch connectivity matrices
    max_transfer_iterations: int = 10000   # cap on dispersal fixed-point iterations


@dataclass
class LandscapeSection:
    """Grid and patch-model parameters."""
    patch_model: bool = False       # False = cell-based (each cell its own patch)
    resolution: int = 100           # cell side (m)
    sp_resolution: int = 100        # species distribution square side (m)
    raster_type: str = 'habitat'    # 'habitat', 'cover', 'quality'
    n_habitats: int = 1
    dynamic: bool = False
    use_sp_dist: bool = False

    @property
    def raster(self) -> RasterType:
        return RASTER_TYPES[self.raster_type]


@dataclass
class StochasticitySection:
    """Environmental stochasticity (global or local; in K or in fecundity)."""
    enabled: bool = False
    local: bool = False             # per-cell AR(1) instead of one global series
    in_K: bool = False              # perturb carrying capacity (else fecundity)
    local_extinction: bool = False
    ac: float = 0.0                 # temporal autocorrelation coefficient
    std: float = 0.25               # amplitude: innovations ~ N(0, std)
    local_ext_prob: float = 0.1


@dataclass
class GradientSection:
    """Environmental gradient along the y axis."""
    enabled: bool = False
    gradient_type: str = 'K'        # 'K', 'fecundity', 'extinction'
    grad_inc: float = 0.05          # steepness (per row)
    opt_y: float = 0.0              # optimum row
    factor: float = 0.0             # local scaling of the random deviation
    ext_prob_opt: float = 0.0       # local extinction probability at optimum
    shifting: bool = False
    shift_rate: float = 0.5         # rows per year
    shift_begin: int = 0
    shift_stop: int = 100

    @property
    def kind(self) -> GradientType:
        if not self.enabled:
            return GradientType.NONE
        return GRADIENT_TYPES[self.gradient_type]


@dataclass
class InitialIndividual:
    """One explicitly specified initial individual."""
    year: int = 0
    species: int = 0
    patch_id: int = 0               # patch-based model
    x: int = 0                      # cell-based model
    y: int = 0
    sex: int = 0
    age: int = 1
    stage: int = 1


@dataclass
class InitialisationSection:
    """How the initial population is seeded."""
    seed_type: str = 'free'             # 'free', 'distribution', 'individuals'
    free_type: str = 'all_suitable'     # 'random', 'all_suitable'
    sp_dist_type: str = 'all'           # 'all', 'random', 'manual'
    init_density: str = 'K'             # 'K', 'half_K', 'specified'
    inds_per_cell: int = 1              # SPECIFIED, cell-based
    inds_per_ha: float = 0.0            # SPECIFIED, patch-based
    min_seed_x: int = 0
    max_seed_x: int = 99999999
    min_seed_y: int = 0
    max_seed_y: int = 99999999
    n_seed_patches: int = 1
    n_sp_dist_patches: int = 1
    stage_proportions: List[float] = field(default_factory=list)
    initial_individuals: List[InitialIndividual] = field(default_factory=list)

    @property
    def seed(self) -> SeedType:
        return SEED_TYPES[self.seed_type]

    @property
    def free(self) -> FreeType:
        return FREE_TYPES[self.free_type]

    @property
    def sp_dist(self) -> SpDistType:
        return SP_DIST_TYPES[self.sp_dist_type]

    @property
    def density(self) -> InitDensity:
        return INIT_DENSITIES[self.init_density]


@dataclass
class DemographySection:
    """Reproduction, survival and development."""
    stage_structured: bool = False
    reproduction: str = 'asexual'   # 'asexual' (female-only) or 'sexual'
    prop_males: float = 0.5
    # Non-stage-structured (discrete generations)
    lambda_: float = 1.5            # YAML key: 'lambda'
    bc: float = 1.0                 # competition exponent
    # Stage-structured
    n_stages: int = 2               # including juvenile stage 0
    fecundity: List[float] = field(default_factory=lambda: [0.0, 3.0])
    survival: List[float] = field(default_factory=lambda: [0.5, 0.8])
    development: List[float] = field(default_factory=lambda: [0.5, 0.0])
    fec_dens_dep: bool = False
    fec_dens_coef: float = 1.0
    surv_dens_dep: bool = False
    surv_dens_coef: float = 1.0
    max_age: int = 1000
    disperse_on_loss: bool = False

    @property
    def sexual(self) -> bool:
        return self.reproduction == 'sexual'


@dataclass
class EmigrationSection:
    density_dependent: bool = False
    probability: List[float] = field(default_factory=lambda: [0.1])   # per stage (last value repeats)
    D0: float = 0.5
    alpha: float = 10.0
    beta: float = 1.0
    emig_stage: int = 1             # stage that emigrates (stage-structured)


@dataclass
class TransferSection:
    move_type: str = 'kernel'       # 'kernel', 'sms', 'crw'
    # Kernel
    dist_I: float = 100.0           # mean dispersal distance (m)
    twin_kernel: bool = False
    dist_II: float = 1000.0
    p_kernel_I: float = 1.0
    # Movement processes
    step_length: float = 100.0      # CRW step length (m)
    rho: float = 0.5                # CRW step correlation
    perceptual_range: int = 1       # SMS perceptual range (cells)
    directional_persistence: float = 1.0   # SMS DP
    max_steps: int = 100
    min_steps: int = 0
    step_mortality: float = 0.0

    @property
    def kind(self) -> MoveType:
        return MOVE_TYPES[self.move_type]

    @property
    def uses_movt_proc(self) -> bool:
        return self.kind != MoveType.KERNEL


@dataclass
class SettlementSection:
    unsuitable: str = 'die'         # 'die', 'wait', 'neighbour', 'wait_neighbour'
    density_dependent: bool = False
    S0: float = 1.0
    alpha_S: float = -10.0
    beta_S: float = 1.0
    find_mate: bool = False


@dataclass
class SpeciesSection:
    """One species entry in the ``species`` list."""
    id: int = 0
    habitat_K: List[float] = field(default_factory=lambda: [10.0])   # per cell
    min_K: float = 0.0              # per cell (stochasticity in K)
    max_K: float = 1.0e6            # per cell
    demography: DemographySection = field(default_factory=DemographySection)
    emigration: EmigrationSection = field(default_factory=EmigrationSection)
    transfer: TransferSection = field(default_factory=TransferSection)
    settlement: SettlementSection = field(default_factory=SettlementSection)


@dataclass
class OutputSection:
    """Statistics capture intervals (0 = off)."""
    range_interval: int = 1
    occupancy_interval: int = 0
    population_interval: int = 0


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    landscape: LandscapeSection = field(default_factory=LandscapeSection)
    stochasticity: StochasticitySection = field(default_factory=StochasticitySection)
    gradient: GradientSection = field(default_factory=GradientSection)
    initialisation: InitialisationSection = field(default_factory=InitialisationSection)
    species: List[SpeciesSection] = field(default_factory=lambda: [SpeciesSection()])
    output: OutputSection = field(default_factory=OutputSection)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values (including lists) are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _species_from_dict(data: Dict) -> SpeciesSection:
    data = dict(data)
    nested = {
        'demography': DemographySection,
        'emigration': EmigrationSection,
        'transfer': TransferSection,
        'settlement': SettlementSection,
    }
    sub = {}
    for key, cls in nested.items():
        raw = data.pop(key, None)
        if isinstance(raw, dict):
            raw = dict(raw)
            if key == 'demography' and 'lambda' in raw:
                raw['lambda_'] = raw.pop('lambda')
            sub[key] = _dict_to_section(cls, raw)
        else:
            sub[key] = cls()
    section = _dict_to_section(SpeciesSection, data)
    for key, value in sub.items():
        setattr(section, key, value)
    return section


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    section_map = {
        'simulation': SimulationSection,
        'landscape': LandscapeSection,
        'stochasticity': StochasticitySection,
        'gradient': GradientSection,
        'output': OutputSection,
    }
    for key, cls in section_map.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    init_data = data.get('initialisation')
    if isinstance(init_data, dict):
        init_data = dict(init_data)
        inds = init_data.pop('initial_individuals', None) or []
        init = _dict_to_section(InitialisationSection, init_data)
        init.initial_individuals = [
            _dict_to_section(InitialIndividual, d) for d in inds
            if isinstance(d, dict)
        ]
        sections['initialisation'] = init
    else:
        sections['initialisation'] = InitialisationSection()

    species = data.get('species')
    if isinstance(species, list) and species:
        sections['species'] = [
            _species_from_dict(s) for s in species if isinstance(s, dict)
        ]

    return SimulationConfig(**sections)


def _check_choice(value: str, options, name: str) -> None:
    if value not in options:
        raise ValueError(
            f"{name} must be one of {sorted(options)}, got '{value}'"
        )


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Enumerated options are recognised
      - Stochasticity parameters are in range
      - Landscape resolution and iteration cap are positive
      - Species ids are unique and K bounds are consistent
    """
    sim = config.simulation
    if sim.replicates < 1:
        raise ValueError(f"simulation.replicates must be >= 1, got {sim.replicates}")
    if sim.years < 0:
        raise ValueError(f"simulation.years must be >= 0, got {sim.years}")
    if sim.rep_seasons < 1:
        raise ValueError(
            f"simulation.rep_seasons must be >= 1, got {sim.rep_seasons}"
        )
    if sim.max_transfer_iterations < 1:
        raise ValueError(
            f"simulation.max_transfer_iterations must be >= 1, "
            f"got {sim.max_transfer_iterations}"
        )

    land = config.landscape
    _check_choice(land.raster_type, RASTER_TYPES, 'landscape.raster_type')
    if land.resolution <= 0:
        raise ValueError(f"landscape.resolution must be positive, got {land.resolution}")
    if land.sp_resolution < land.resolution or land.sp_resolution % land.resolution:
        raise ValueError(
            f"landscape.sp_resolution ({land.sp_resolution}) must be a "
            f"multiple of landscape.resolution ({land.resolution})"
        )
    if land.n_habitats < 1:
        raise ValueError(f"landscape.n_habitats must be >= 1, got {land.n_habitats}")

    env = config.stochasticity
    if not (0.0 <= env.ac < 1.0):
        raise ValueError(f"stochasticity.ac must be in [0, 1), got {env.ac}")
    if not (0.0 < env.std <= 1.0):
        raise ValueError(f"stochasticity.std must be in (0, 1], got {env.std}")
    if not (0.0 <= env.local_ext_prob <= 1.0):
        raise ValueError(
            f"stochasticity.local_ext_prob must be in [0, 1], got {env.local_ext_prob}"
        )
    if env.enabled and env.local and land.patch_model and not env.in_K:
        warnings.warn(
            "local stochasticity in fecundity is ignored for patch-based "
            "models; only the gradient-free value 1.0 is applied.",
            UserWarning,
            stacklevel=2,
        )

    grad = config.gradient
    _check_choice(grad.gradient_type, GRADIENT_TYPES, 'gradient.gradient_type')
    if grad.enabled and land.patch_model:
        warnings.warn(
            "environmental gradients are only applied in cell-based models",
            UserWarning,
            stacklevel=2,
        )
    if grad.shifting and grad.shift_begin > grad.shift_stop:
        raise ValueError(
            f"gradient.shift_begin ({grad.shift_begin}) must be <= "
            f"gradient.shift_stop ({grad.shift_stop})"
        )

    init = config.initialisation
    _check_choice(init.seed_type, SEED_TYPES, 'initialisation.seed_type')
    _check_choice(init.free_type, FREE_TYPES, 'initialisation.free_type')
    _check_choice(init.sp_dist_type, SP_DIST_TYPES, 'initialisation.sp_dist_type')
    _check_choice(init.init_density, INIT_DENSITIES, 'initialisation.init_density')
    if init.inds_per_cell < 0 or init.inds_per_ha < 0:
        raise ValueError("initialisation densities must be non-negative")
    if init.seed == SeedType.DISTRIBUTION and not land.use_sp_dist:
        warnings.warn(
            "initialisation.seed_type is 'distribution' but "
            "landscape.use_sp_dist is False; no individuals will be seeded.",
            UserWarning,
            stacklevel=2,
        )

    if not config.species:
        raise ValueError("at least one species must be configured")
    seen = set()
    for i, sp in enumerate(config.species):
        if sp.id in seen:
            raise ValueError(f"species[{i}].id {sp.id} is duplicated")
        seen.add(sp.id)
        if any(k < 0 for k in sp.habitat_K):
            raise ValueError(f"species[{i}].habitat_K must be non-negative")
        if sp.min_K < 0 or sp.min_K > sp.max_K:
            raise ValueError(
                f"species[{i}]: require 0 <= min_K <= max_K, "
                f"got min_K={sp.min_K}, max_K={sp.max_K}"
            )
        if land.raster != RasterType.QUALITY and len(sp.habitat_K) < land.n_habitats:
            raise ValueError(
                f"species[{i}].habitat_K has {len(sp.habitat_K)} values for "
                f"{land.n_habitats} habitats"
            )
        dem = sp.demography
        _check_choice(dem.reproduction, REPRODUCTION_TYPES,
                      f'species[{i}].demography.reproduction')
        if not (0.0 <= dem.prop_males <= 1.0):
            raise ValueError(f"species[{i}].demography.prop_males must be in [0, 1]")
        if dem.stage_structured:
            n = dem.n_stages
            if not (2 <= n <= 10):
                raise ValueError(
                    f"species[{i}].demography.n_stages must be in [2, 10], got {n}"
                )
            for name in ('fecundity', 'survival', 'development'):
                if len(getattr(dem, name)) != n:
                    raise ValueError(
                        f"species[{i}].demography.{name} must have {n} values"
                    )
        elif dem.lambda_ < 0:
            raise ValueError(f"species[{i}].demography.lambda must be >= 0")
        trfr = sp.transfer
        _check_choice(trfr.move_type, MOVE_TYPES, f'species[{i}].transfer.move_type')
        if trfr.kind == MoveType.KERNEL and trfr.dist_I <= 0:
            raise ValueError(f"species[{i}].transfer.dist_I must be positive")
        if trfr.uses_movt_proc and trfr.max_steps < 1:
            raise ValueError(f"species[{i}].transfer.max_steps must be >= 1")
        if not (0.0 <= trfr.rho < 1.0):
            raise ValueError(f"species[{i}].transfer.rho must be in [0, 1)")
        _check_choice(sp.settlement.unsuitable, UNSUITABLE_RULES,
                      f'species[{i}].settlement.unsuitable')
        if sp.settlement.unsuitable.startswith('wait') and not dem.stage_structured:
            warnings.warn(
                f"species[{i}]: settlement rule '{sp.settlement.unsuitable}' "
                f"only delays settlement for stage-structured species; "
                f"waiting individuals of a non-structured species die at "
                f"the end of the generation.",
                UserWarning,
                stacklevel=2,
            )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter sweep overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def config_from_dict(data: Dict) -> SimulationConfig:
    """Build and validate a config from an in-memory dict (YAML layout)."""
    config = _yaml_to_config(data)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
