"""Shared builders for small hand-made landscapes and communities."""

import numpy as np
import pytest

from rangeshifter.community import Community
from rangeshifter.config import (
    DemographySection,
    EmigrationSection,
    SettlementSection,
    SimulationConfig,
    SpeciesSection,
    TransferSection,
)
from rangeshifter.context import SimulationContext
from rangeshifter.landscape import Landscape
from rangeshifter.species import Species


def make_species(species_id=0, habitat_K=(10.0,), demography=None, emigration=None,
                 transfer=None, settlement=None, min_K=0.0, max_K=1.0e6):
    section = SpeciesSection(
        id=species_id,
        habitat_K=list(habitat_K),
        min_K=min_K,
        max_K=max_K,
        demography=demography or DemographySection(),
        emigration=emigration or EmigrationSection(),
        transfer=transfer or TransferSection(),
        settlement=settlement or SettlementSection(),
    )
    return Species.from_section(section)


def make_ctx(seed=1, **sections):
    """Context with default sections, any of which may be replaced."""
    config = SimulationConfig()
    for name, value in sections.items():
        setattr(config, name, value)
    config.simulation.seed = seed
    return SimulationContext.from_config(config)


def make_community(codes, species, ctx=None, patch_ids=None, resolution=100):
    """Landscape from habitat codes, K computed, wrapped in a Community."""
    species_map = {species.id: species}
    ctx = ctx or make_ctx()
    land = Landscape.from_habitat_codes(np.asarray(codes), species_map,
                                        resolution=resolution, patch_ids=patch_ids)
    land.update_carrying_capacity(species_map, 0, 0, ctx)
    return Community(land, species_map, ctx)


@pytest.fixture
def species():
    return make_species()


@pytest.fixture
def ctx():
    return make_ctx()
