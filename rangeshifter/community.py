"""Community: every Population of one replicate and the per-generation
dispersal/settlement algorithm.

Per generation the driver calls, strictly in this order:
  1. reproduction(year)      → offspring in every suitable patch
  2. emigration()            → emigrants marked as dispersing
  3. dispersal(land_ix)      → fixed point: emigrants → matrix → settled
  4. draw_survival_devlpt()  → all outcomes drawn ...
     apply_survival_devlpt() → ... then applied
  5. age_increment()
  6. get_stats()             → statistics at the output call point

Dispersal fixed point:
  a. Move every disperser into its species' matrix population
  b. Reset possible-settler counters on all patches
  c. transfer() on every matrix population → ndispersers still undecided
  d. complete_dispersal(): settlers leave the matrix for their new patch
  e. Repeat b–d while ndispersers > 0, at most
     ``simulation.max_transfer_iterations`` times; individuals still
     undecided at the cap die in transit.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np

from rangeshifter.context import SimulationContext
from rangeshifter.landscape import Landscape
from rangeshifter.patch import Patch
from rangeshifter.population import Population
from rangeshifter.species import Species
from rangeshifter.types import (
    CommStats,
    FreeType,
    InTransit,
    PatchLimits,
    PatchLocation,
    SeedType,
    Sex,
    SpDistType,
)

logger = logging.getLogger('rangeshifter.community')


class Community:
    """Container of every Population in one replicate.

    Args:
        landscape: The replicate's Landscape.
        species_map: Species table keyed by species id.
        ctx: The replicate's SimulationContext.
    """

    def __init__(
        self,
        landscape: Landscape,
        species_map: Dict[int, Species],
        ctx: SimulationContext,
    ):
        self.landscape = landscape
        self.species_map = dict(species_map)
        self.ctx = ctx
        self.matrix_pops: Dict[int, Population] = {}
        self.popns: List[Population] = []
        self.occ_suit = np.zeros((0, 0), dtype=np.float64)
        self.last_dispersal_iterations = 0

    def __repr__(self) -> str:
        return (f"Community(species={sorted(self.species_map)}, "
                f"popns={len(self.popns)}, inds={self.total_inds()})")

    # ── lookup ─────────────────────────────────────────────────────

    def find_species(self, species_id: int) -> Species:
        """Species by id.

        Raises:
            KeyError: If the species is not in the community's table.
        """
        try:
            return self.species_map[species_id]
        except KeyError:
            raise KeyError(f"Species {species_id} couldn't be found") from None

    def matrix_pop(self, species_id: int) -> Population:
        """The matrix population of a species.

        Raises:
            RuntimeError: If no matrix population was registered.
        """
        pop = self.matrix_pops.get(species_id)
        if pop is None:
            raise RuntimeError(
                f"No matrix population registered for species {species_id}"
            )
        return pop

    def patch_of_pop(self, pop: Population) -> Optional[Patch]:
        if pop.is_matrix:
            return None
        return self.landscape.get_patch(pop.species_id, pop.patch_seq)

    def _population_for(self, species: Species, patch: Patch) -> Population:
        """Population bound to ``patch``, created on first use."""
        if patch.population is None:
            pop = Population(species, PatchLocation(patch.seq_num))
            patch.set_pop(pop)
            self.popns.append(pop)
            logger.debug("new population of species %d in patch %d",
                         species.id, patch.patch_num)
        return patch.population

    # ── initialisation ─────────────────────────────────────────────

    def _ensure_matrix_pops(self) -> None:
        for sp, species in self.species_map.items():
            if sp not in self.matrix_pops:
                self.matrix_pops[sp] = Population(species, InTransit())

    def _seed_patches(self, species: Species, patch_nums) -> None:
        land = self.landscape
        for num in sorted(patch_nums):
            patch = land.find_patch(species.id, num)
            n_inds = patch.get_init_nb_inds(land.patch_model, land.resol,
                                            self.ctx.initialisation)
            if n_inds > 0:
                self._population_for(species, patch).populate(n_inds, patch, self.ctx)

    def initialise(self, year: int = -1) -> None:
        """Create matrix populations and seed initial populations.

        Free and distribution seeding run on every call (the driver makes
        one call per replicate). Explicit initial individuals are added
        only for the individuals scheduled in ``year`` (none when year < 0).
        """
        self._ensure_matrix_pops()
        init = self.ctx.initialisation
        land = self.landscape
        seed = init.seed

        for sp, species in self.species_map.items():
            if seed == SeedType.FREE:
                limits = PatchLimits(init.min_seed_x, init.max_seed_x,
                                     init.min_seed_y, init.max_seed_y)
                candidates = []
                for i in range(land.patch_count(sp)):
                    patch = land.get_patch_data(sp, i).patch
                    if not patch.within_limits(limits):
                        continue
                    if init.free == FreeType.RANDOM and land.patch_model:
                        candidates.append(patch.patch_num)
                    elif patch.is_suitable():
                        candidates.append(patch.patch_num)
                if init.free == FreeType.RANDOM:
                    candidates = self.ctx.rng.sample(sorted(candidates), init.n_seed_patches)
                self._seed_patches(species, candidates)

            elif seed == SeedType.DISTRIBUTION:
                if sp not in land.distributions:
                    continue
                if init.sp_dist == SpDistType.ALL:
                    land.set_distribution(sp, 0, self.ctx.rng)
                elif init.sp_dist == SpDistType.RANDOM:
                    land.set_distribution(sp, init.n_sp_dist_patches, self.ctx.rng)
                ratio = land.sp_resol // land.resol
                selected = set()
                for loc in land.selected_distn_cells(sp):
                    for dx in range(ratio):
                        for dy in range(ratio):
                            ix = land.find_cell_ix(loc.x * ratio + dx, loc.y * ratio + dy)
                            if ix is None:
                                continue
                            patch = land.patch_of(ix, sp)
                            if patch is not None:
                                selected.add(patch.patch_num)
                self._seed_patches(species, selected)

            else:
                self._initial_individuals(species, year)

        logger.debug("initialised community: %d populations, %d individuals",
                     len(self.popns), self.total_inds())

    def _initial_individuals(self, species: Species, year: int) -> None:
        if year < 0:
            return
        land = self.landscape
        inds = sorted(self.ctx.initialisation.initial_individuals, key=lambda i: i.year)
        for ix, iind in enumerate(inds):
            if iind.year != year or iind.species != species.id:
                continue
            if land.patch_model:
                if not land.exists_patch(species.id, iind.patch_id):
                    continue
                patch = land.find_patch(species.id, iind.patch_id)
                cell_ix = patch.get_random_cell(self.ctx.rng)
            else:
                cell_ix = land.find_cell_ix(iind.x, iind.y)
                if cell_ix is None:
                    continue
                patch = land.patch_of(cell_ix, species.id)
                if patch is None:
                    continue
            if patch.is_suitable():
                self.initial_ind(species, patch, cell_ix, ix)

    def initial_ind(self, species: Species, patch: Patch, cell_ix: int, ix: int) -> None:
        """Add the explicitly specified initial individual number ``ix``."""
        iind = sorted(self.ctx.initialisation.initial_individuals,
                      key=lambda i: i.year)[ix]
        pop = self._population_for(species, patch)
        if species.stage_structured:
            stage, age = iind.stage, iind.age
        else:
            stage = age = 1
        sex = Sex.MALE if species.sexual and iind.sex == 1 else Sex.FEMALE
        pop.recruit(pop.new_individual(cell_ix, self.ctx, stage=stage, age=age, sex=sex))

    def reset_popns(self) -> None:
        """Discard every population (end of replicate)."""
        for pop in self.popns:
            patch = self.patch_of_pop(pop)
            if patch is not None:
                patch.reset_pop()
        self.popns = []
        self.matrix_pops = {}
        self.ctx.ind_counter = 0

    # ── patch suitability ──────────────────────────────────────────

    def local_extinction(self, option: int) -> int:
        """Random local extinction of every population; returns extinctions.

        No-op unless ``stochasticity.local_extinction`` is set.
        """
        if not self.ctx.stochasticity.local_extinction:
            return 0
        n = 0
        for pop in self.popns:
            if pop.local_extinction(option, self.ctx, self.landscape, self.patch_of_pop(pop)):
                n += 1
        return n

    def scan_unsuitable_patches(self) -> None:
        """Empty populations whose patch has K <= 0.

        Stage-structured species with ``disperse_on_loss`` emigrate;
        everything else is extirpated.
        """
        for pop in self.popns:
            patch = self.patch_of_pop(pop)
            if patch.local_k > 0.0:
                continue
            species = pop.species
            if species.stage_structured and species.demography.disperse_on_loss:
                pop.all_emigrate(self.landscape)
            else:
                pop.extirpate()

    # ── demography ─────────────────────────────────────────────────

    def _eps_global(self, year: int) -> float:
        stoch = self.ctx.stochasticity
        if stoch.enabled and not stoch.local:
            return self.landscape.get_global_stoch(year)
        return 0.0

    def reproduction(self, year: int) -> int:
        """Reproduce and fledge in every suitable patch; returns births."""
        eps = self._eps_global(year)
        land = self.landscape
        births = 0
        for pop in self.popns:
            patch = self.patch_of_pop(pop)
            if patch.local_k <= 0.0:
                continue
            envval = patch.get_env_val(land.patch_model, eps, land,
                                       self.ctx.gradient, self.ctx.stochasticity,
                                       self.ctx.rng)
            births += pop.reproduction(patch.local_k, envval, land.resol, self.ctx)
            pop.fledge()
        return births

    def emigration(self) -> int:
        n = 0
        for pop in self.popns:
            n += pop.emigration(self.patch_of_pop(pop).local_k, self.ctx, self.landscape)
        return n

    # ── dispersal ──────────────────────────────────────────────────

    def _reset_poss_settlers(self) -> None:
        for plist in self.landscape.patches.values():
            for patch in plist:
                patch.reset_poss_settlers()

    def dispersal(self, land_ix: int = 0, next_season: int = 0) -> int:
        """Run the dispersal fixed point; returns the number of iterations.

        Raises:
            RuntimeError: If a disperser's species has no matrix population.
        """
        for pop in self.popns:
            for j in range(len(pop.inds)):
                disp = pop.extract_disperser(j)
                if disp.is_dispersing:
                    self.matrix_pop(pop.species_id).recruit(disp.individual)
            pop.clean()

        for mtx in self.matrix_pops.values():
            mtx.resume_waiting()

        cap = self.ctx.simulation.max_transfer_iterations
        iterations = 0
        ndispersers = sum(
            1 for mtx in self.matrix_pops.values()
            for ind in mtx.individuals() if ind.in_transit
        )
        while ndispersers > 0:
            if iterations >= cap:
                n_forced = sum(m.force_transit_death() for m in self.matrix_pops.values())
                logger.warning(
                    "dispersal did not converge after %d iterations; "
                    "%d undecided individuals died in transit", cap, n_forced)
                break
            self._reset_poss_settlers()
            ndispersers = 0
            for mtx in self.matrix_pops.values():
                ndispersers += mtx.transfer(self.landscape, land_ix, self.ctx, next_season)
            self.complete_dispersal(self.ctx.simulation.out_connect)
            iterations += 1

        self.last_dispersal_iterations = iterations
        return iterations

    def complete_dispersal(self, connect: bool = False) -> int:
        """Move every settler from its matrix population into its new patch.

        Returns the number of settlers.
        """
        land = self.landscape
        n_settled = 0
        for sp, mtx in self.matrix_pops.items():
            species = self.find_species(sp)
            for j in range(len(mtx.inds)):
                settler = mtx.extract_settler(j)
                if not settler.is_settling:
                    continue
                ind = settler.individual
                new_patch = land.patch_of(settler.cell, sp)
                origin = ind.natal_patch
                self._population_for(species, new_patch).recruit(ind)
                n_settled += 1
                if connect and origin is not None:
                    land.incr_connect_matrix(sp, origin, new_patch.seq_num)
            mtx.clean()
        return n_settled

    # ── survival, development, ageing ─────────────────────────────

    def draw_survival_devlpt(self, resolve_juvs: bool = True, resolve_adults: bool = True,
                             resolve_dev: bool = True, resolve_surv: bool = True) -> None:
        for mtx in self.matrix_pops.values():
            mtx.draw_survival_devlpt(resolve_juvs, resolve_adults, resolve_dev,
                                     resolve_surv, self.ctx)
        for pop in self.popns:
            pop.draw_survival_devlpt(resolve_juvs, resolve_adults, resolve_dev,
                                     resolve_surv, self.ctx,
                                     local_k=self.patch_of_pop(pop).local_k)

    def apply_survival_devlpt(self) -> int:
        n_dead = 0
        for mtx in self.matrix_pops.values():
            n_dead += mtx.apply_survival_devlpt()
        for pop in self.popns:
            n_dead += pop.apply_survival_devlpt()
        return n_dead

    def age_increment(self) -> None:
        for mtx in self.matrix_pops.values():
            mtx.age_increment()
        for pop in self.popns:
            pop.age_increment()

    # ── statistics ─────────────────────────────────────────────────

    def total_inds(self) -> int:
        total = sum(m.get_stats().n_inds for m in self.matrix_pops.values())
        return total + sum(p.get_stats().n_inds for p in self.popns)

    def stage_totals(self) -> np.ndarray:
        """Individuals per stage summed over all populations."""
        n = max((s.n_stages for s in self.species_map.values()), default=2)
        out = np.zeros(n, dtype=np.int64)
        for pop in list(self.matrix_pops.values()) + self.popns:
            counts = pop.sex_stage_counts().sum(axis=0)
            out[:len(counts)] += counts
        return out

    def get_stats(self) -> CommStats:
        """Counts and occupied range over all populations."""
        land = self.landscape
        s = CommStats(min_x=land.max_x, min_y=land.max_y, max_x=0, max_y=0)
        for mtx in self.matrix_pops.values():
            ps = mtx.get_stats()
            s.ninds += ps.n_inds
            s.nnonjuvs += ps.n_non_juvs
        for pop in self.popns:
            ps = pop.get_stats()
            s.ninds += ps.n_inds
            s.nnonjuvs += ps.n_non_juvs
            patch = self.patch_of_pop(pop)
            if patch.is_suitable():
                s.suitable += 1
            if ps.n_inds > 0 and ps.breeding:
                s.occupied += 1
                s.min_x = min(s.min_x, patch.x_min)
                s.max_x = max(s.max_x, patch.x_max)
                s.min_y = min(s.min_y, patch.y_min)
                s.max_y = max(s.max_y, patch.y_max)
        return s

    def population_rows(self) -> List[dict]:
        """One row per non-matrix population, for tabular output."""
        rows = []
        for pop in self.popns:
            patch = self.patch_of_pop(pop)
            ps = pop.get_stats()
            counts = pop.sex_stage_counts()
            rows.append({
                'species': pop.species_id,
                'patch': patch.patch_num,
                'x': patch.x,
                'y': patch.y,
                'K': patch.local_k,
                'n_inds': ps.n_inds,
                'n_adults': ps.n_adults,
                'n_females': int(counts[int(Sex.FEMALE)].sum()),
                'n_males': int(counts[int(Sex.MALE)].sum()),
                'stages': counts.sum(axis=0).tolist(),
            })
        return rows

    # ── occupancy ──────────────────────────────────────────────────

    def create_occupancy(self, n_rows: int, n_reps: int) -> None:
        for plist in self.landscape.patches.values():
            for patch in plist:
                patch.create_occupancy(n_rows)
        self.occ_suit = np.zeros((n_rows, n_reps), dtype=np.float64)

    def update_occupancy(self, row: int, rep: int) -> None:
        """Record occupancy of each patch and occupied/suitable for ``rep``."""
        for plist in self.landscape.patches.values():
            for patch in plist:
                if len(patch.occupancy) > row:
                    patch.update_occupancy(row)
        s = self.get_stats()
        self.occ_suit[row, rep] = s.occupied / s.suitable if s.suitable > 0 else 0.0

    def capture_occupancy(self, year: int, rep: int) -> bool:
        """Update occupancy row ``year // output.occupancy_interval`` on capture years."""
        interval = self.ctx.output.occupancy_interval
        if interval <= 0 or year % interval != 0:
            return False
        self.update_occupancy(year // interval, rep)
        return True

    def occupancy_proportions(self) -> np.ndarray:
        """Mean and SD of occupied/suitable across replicates, per row.

        Returns an array of shape (n_rows, 2).
        """
        if self.occ_suit.size == 0:
            return np.zeros((0, 2))
        return np.column_stack([self.occ_suit.mean(axis=1), self.occ_suit.std(axis=1)])
