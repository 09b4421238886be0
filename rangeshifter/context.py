"""Per-replicate simulation context.

One SimulationContext is built for each replicate and passed explicitly
into Landscape, Community and Population operations. It carries the
configuration sections that every layer consults (simulation, landscape,
stochasticity, gradient, initialisation) and the replicate's RandomStream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from rangeshifter.config import (
    GradientSection,
    InitialisationSection,
    LandscapeSection,
    OutputSection,
    SimulationConfig,
    SimulationSection,
    StochasticitySection,
    default_config,
)
from rangeshifter.rng import RandomStream, replicate_stream


@dataclass
class SimulationContext:
    """Explicit replacement for process-wide parameter state."""
    simulation: SimulationSection = field(default_factory=SimulationSection)
    landscape: LandscapeSection = field(default_factory=LandscapeSection)
    stochasticity: StochasticitySection = field(default_factory=StochasticitySection)
    gradient: GradientSection = field(default_factory=GradientSection)
    initialisation: InitialisationSection = field(default_factory=InitialisationSection)
    output: OutputSection = field(default_factory=OutputSection)
    rng: RandomStream = field(default_factory=lambda: RandomStream(0))
    replicate: int = 0
    ind_counter: int = 0

    def next_ind_id(self) -> int:
        """Allocate a fresh individual id (ids restart with each replicate)."""
        ind_id = self.ind_counter
        self.ind_counter += 1
        return ind_id

    @classmethod
    def from_config(
        cls,
        config: Optional[SimulationConfig] = None,
        replicate: int = 0,
    ) -> 'SimulationContext':
        """Build the context for one replicate of ``config``.

        The replicate's stream is spawned from ``simulation.seed`` so that
        replicates are independent and individually reproducible.
        """
        if config is None:
            config = default_config()
        return cls(
            simulation=config.simulation,
            landscape=config.landscape,
            stochasticity=config.stochasticity,
            gradient=config.gradient,
            initialisation=config.initialisation,
            output=config.output,
            rng=replicate_stream(config.simulation.seed, replicate),
            replicate=replicate,
        )

    @property
    def stoch_in_k(self) -> bool:
        return self.stochasticity.enabled and self.stochasticity.in_K

    @property
    def stoch_in_fecundity(self) -> bool:
        return self.stochasticity.enabled and not self.stochasticity.in_K
