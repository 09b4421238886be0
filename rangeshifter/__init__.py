"""RangeShifter: individual-based, spatially explicit population and
dispersal engine.

A landscape of cells grouped into habitat patches hosts one population
per (species, patch). Each generation the community runs:
  - Reproduction with density-dependent fecundity
  - Emigration (density-independent or density-dependent)
  - Dispersal by kernel, correlated random walk or SMS until every
    disperser has settled or died
  - Survival and development, drawn for all individuals then applied
  - Environmental stochasticity and gradients acting on K or fecundity
"""

__version__ = "0.1.0"
