"""Population: the individuals of one species resident in (or transiting
through) one patch.

Each Population has a Location: ``PatchLocation(seq)`` for a real patch,
or ``InTransit()`` for the species' matrix population, which holds every
individual that has left its patch and not yet settled.

Individuals live in a list; removing one leaves a hole (None) so that
indices stay stable while Community iterates, and clean() compacts.

Demography
----------
Non-stage-structured (discrete generations):
    fec = λ / (1 + |λ − 1| · (N / K)^b)     (×2 for females if sexual)
    offspring ~ Poisson(fec · envval); fledge() replaces the parents.

Stage-structured (overlapping generations):
    fec_s, survival_s, development_s per stage; optional density
    dependence exp(−c · N / K) on fecundity and survival.

Emigration
----------
    density-independent:  d = probability[stage]
    density-dependent:    d = D0 / (1 + exp(−(N/K − β) · α))
    K ≤ 0 ⇒ d = 1.

Settlement (density-dependent)
------------------------------
    s = S0 / (1 + exp(−(N/K − β_S) · α_S))
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy as np

from rangeshifter.individual import Individual, Status
from rangeshifter.movement import crw_step, kernel_jump, sms_step
from rangeshifter.types import (
    N_SEXES,
    Disperser,
    Location,
    MoveType,
    PopStats,
    Sex,
)

if TYPE_CHECKING:
    from rangeshifter.context import SimulationContext
    from rangeshifter.landscape import Landscape
    from rangeshifter.patch import Patch
    from rangeshifter.species import Species

logger = logging.getLogger('rangeshifter.population')


# ═══════════════════════════════════════════════════════════════════════
# SURVIVAL / DEVELOPMENT PLAN
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Fate:
    """Drawn outcome for the individual at ``index``."""
    index: int
    survives: bool
    develops: bool
    status: Status


@dataclass(frozen=True)
class TransitionPlan:
    """All survival/development outcomes of one population, drawn before
    any of them is applied."""
    fates: Tuple[Fate, ...]
    n_inds: int


# ═══════════════════════════════════════════════════════════════════════
# POPULATION
# ═══════════════════════════════════════════════════════════════════════

class Population:
    """Individuals of ``species`` at ``location``.

    Args:
        species: Species parameters (read-only).
        location: PatchLocation(seq) or InTransit() for the matrix.
    """

    def __init__(self, species: 'Species', location: Location):
        self.species = species
        self.location = location
        self.inds: List[Optional[Individual]] = []
        self._juvs: List[Individual] = []
        self._plan: Optional[TransitionPlan] = None

    def __repr__(self) -> str:
        return (f"Population(species={self.species.id}, "
                f"location={self.location}, n={self.total_pop()})")

    @property
    def species_id(self) -> int:
        return self.species.id

    @property
    def is_matrix(self) -> bool:
        return self.location.in_transit

    @property
    def patch_seq(self) -> Optional[int]:
        return None if self.location.in_transit else self.location.seq

    def individuals(self):
        """Iterate over present individuals, skipping holes."""
        return (ind for ind in self.inds if ind is not None)

    # ── initial individuals ────────────────────────────────────────

    def new_individual(
        self,
        cell_ix: int,
        ctx: 'SimulationContext',
        stage: int = 1,
        age: int = 1,
        sex: Optional[Sex] = None,
    ) -> Individual:
        if sex is None:
            sex = Sex.FEMALE
            if self.species.sexual and ctx.rng.bernoulli(self.species.demography.prop_males):
                sex = Sex.MALE
        return Individual(
            id=ctx.next_ind_id(),
            species_id=self.species.id,
            cur_cell=cell_ix,
            stage=stage,
            age=age,
            sex=sex,
            natal_cell=cell_ix,
            natal_patch=self.patch_seq,
        )

    def populate(self, n_inds: int, patch: 'Patch', ctx: 'SimulationContext') -> None:
        """Add ``n_inds`` initial individuals at random cells of ``patch``.

        Stage-structured species draw each stage from
        ``initialisation.stage_proportions`` (stages 1..n-1) when given,
        otherwise every individual starts in stage 1.
        """
        props = ctx.initialisation.stage_proportions
        n_stages = self.species.n_stages
        cum = None
        if self.species.stage_structured and props:
            p = np.asarray(props[:n_stages - 1], dtype=float)
            if p.sum() > 0:
                cum = np.cumsum(p / p.sum())
        for _ in range(n_inds):
            stage = 1
            if cum is not None:
                stage = 1 + min(int(np.searchsorted(cum, ctx.rng.random(), side='right')),
                                n_stages - 2)
            cell_ix = patch.get_random_cell(ctx.rng)
            self.inds.append(self.new_individual(cell_ix, ctx, stage=stage, age=stage))

    # ── ownership hand-off ─────────────────────────────────────────

    def recruit(self, ind: Individual) -> None:
        """Take ownership of ``ind`` (O(1)).

        A settler arriving in a patch becomes resident there; individuals
        entering the matrix keep their dispersal state.
        """
        if not self.is_matrix and ind.is_settled:
            ind.settle()
        self.inds.append(ind)

    def extract_disperser(self, ix: int) -> Disperser:
        """Remove the individual at ``ix`` if it is dispersing.

        Its slot becomes a hole until clean() runs.
        """
        ind = self.inds[ix]
        if ind is None:
            return Disperser(None, None)
        if ind.status == Status.DISPERSING:
            self.inds[ix] = None
            return Disperser(ind, ind.cur_cell, is_dispersing=True)
        return Disperser(ind, ind.cur_cell)

    def extract_settler(self, ix: int) -> Disperser:
        """Matrix only: remove the individual at ``ix`` if it has settled."""
        ind = self.inds[ix]
        if ind is None:
            return Disperser(None, None)
        if ind.is_settled:
            self.inds[ix] = None
            return Disperser(ind, ind.cur_cell, is_settling=True)
        return Disperser(ind, ind.cur_cell)

    def clean(self) -> None:
        """Compact holes left by extractions and deaths."""
        if any(ind is None for ind in self.inds):
            self.inds = [ind for ind in self.inds if ind is not None]

    # ── statistics ─────────────────────────────────────────────────

    def _is_adult(self, ind: Individual) -> bool:
        if ind.stage <= 0:
            return False
        if self.species.stage_structured:
            fec = self.species.demography.fecundity
            return ind.stage < len(fec) and fec[ind.stage] > 0.0
        return True

    def get_stats(self) -> PopStats:
        n_inds = n_non_juvs = n_adults = 0
        females = males = 0
        for ind in self.individuals():
            n_inds += 1
            if ind.stage > 0:
                n_non_juvs += 1
            if ind.is_alive and self._is_adult(ind):
                n_adults += 1
                if ind.sex == Sex.MALE:
                    males += 1
                else:
                    females += 1
        if self.species.sexual:
            breeding = females > 0 and males > 0
        else:
            breeding = n_adults > 0
        return PopStats(self.species.id, self.location, n_inds, n_non_juvs,
                        n_adults, breeding)

    def total_pop(self) -> int:
        return sum(1 for _ in self.individuals())

    def stage_pop(self, stage: int) -> int:
        return sum(1 for ind in self.individuals() if ind.stage == stage)

    def sex_stage_counts(self) -> np.ndarray:
        """Counts indexed [sex, stage]."""
        counts = np.zeros((N_SEXES, self.species.n_stages), dtype=np.int64)
        for ind in self.individuals():
            counts[int(ind.sex), min(ind.stage, self.species.n_stages - 1)] += 1
        return counts

    def _alive_count(self) -> int:
        return sum(1 for ind in self.individuals() if ind.is_alive)

    # ── reproduction ───────────────────────────────────────────────

    def reproduction(self, local_k: float, envval: float, resol: int,
                     ctx: 'SimulationContext') -> int:
        """Draw offspring for every breeding female; returns the number born.

        Offspring are held aside until fledge().
        """
        self._juvs = []
        if local_k <= 0.0 or envval <= 0.0:
            return 0
        dem = self.species.demography
        rng = ctx.rng
        sexual = self.species.sexual
        alive = [ind for ind in self.individuals() if ind.is_alive]
        if not alive:
            return 0
        if sexual and not any(ind.sex == Sex.MALE and self._is_adult(ind) for ind in alive):
            return 0

        density = len(alive) / local_k
        if dem.stage_structured:
            dd = math.exp(-dem.fec_dens_coef * density) if dem.fec_dens_dep else 1.0
        else:
            lam = dem.lambda_
            denom = 1.0 + abs(lam - 1.0) * density ** dem.bc
            base_fec = lam / denom

        for parent in alive:
            if sexual and parent.sex == Sex.MALE:
                continue
            if dem.stage_structured:
                if not self._is_adult(parent):
                    continue
                fec = dem.fecundity[parent.stage] * dd
            else:
                if parent.stage < 1:
                    continue
                fec = base_fec
            if sexual:
                fec *= 2.0
            n_off = rng.poisson(max(0.0, fec * envval))
            for _ in range(n_off):
                self._juvs.append(self.new_individual(
                    parent.cur_cell, ctx, stage=0, age=0))
        return len(self._juvs)

    def fledge(self) -> None:
        """Add the new offspring; discrete generations also drop the parents."""
        if not self.species.stage_structured:
            self.inds = []
        self.inds.extend(self._juvs)
        self._juvs = []

    # ── emigration ─────────────────────────────────────────────────

    def emigration_prob(self, stage: int, density: Optional[float]) -> float:
        """Emigration probability for ``stage`` at density N/K (None ⇒ K ≤ 0)."""
        emig = self.species.emigration
        if density is None:
            return 1.0
        if emig.density_dependent:
            return emig.D0 / (1.0 + math.exp(-(density - emig.beta) * emig.alpha))
        probs = emig.probability
        if not probs:
            return 0.0
        return probs[min(stage, len(probs) - 1)]

    def _may_emigrate(self, ind: Individual) -> bool:
        if ind.status != Status.RESIDENT:
            return False
        if self.species.stage_structured:
            return ind.stage == self.species.emigration.emig_stage
        return True

    def emigration(self, local_k: float, ctx: 'SimulationContext',
                   landscape: 'Landscape') -> int:
        """Mark emigrants as dispersing; returns the number marked."""
        n_total = self._alive_count()
        density = n_total / local_k if local_k > 0.0 else None
        rng = ctx.rng
        n_emig = 0
        for ind in self.individuals():
            if not self._may_emigrate(ind):
                continue
            if rng.bernoulli(self.emigration_prob(ind.stage, density)):
                cell = landscape.cells[ind.cur_cell]
                ind.start_dispersal(self.patch_seq, cell.x, cell.y)
                n_emig += 1
        return n_emig

    def all_emigrate(self, landscape: 'Landscape') -> None:
        """Every individual leaves (patch became unsuitable)."""
        for ind in self.individuals():
            if ind.is_alive:
                cell = landscape.cells[ind.cur_cell]
                ind.start_dispersal(self.patch_seq, cell.x, cell.y)

    # ── transfer (matrix only) ─────────────────────────────────────

    def resume_waiting(self) -> int:
        """Matrix only: waiting individuals start dispersing again."""
        n = 0
        for ind in self.individuals():
            if ind.status == Status.WAITING:
                ind.status = Status.DISPERSING
                ind.steps = 0
                n += 1
        return n

    def transfer(self, landscape: 'Landscape', land_ix: int,
                 ctx: 'SimulationContext', season: int = 0) -> int:
        """Matrix only: one movement step for every undecided individual.

        Individuals reaching a suitable patch other than their natal one
        become potential settlers and are counted on that patch; the
        settlement decision is then taken for all of them together. Returns
        the number still dispersing.

        Raises:
            RuntimeError: If called on a non-matrix population.
        """
        if not self.is_matrix:
            raise RuntimeError("transfer() applies only to the matrix population")
        species = self.species
        trfr = species.transfer
        move = species.move_type
        sp = species.id

        movers = [ind for ind in self.individuals() if ind.status == Status.DISPERSING]
        for ind in movers:
            if move == MoveType.KERNEL:
                kernel_jump(ind, species, landscape, ctx)
            elif move == MoveType.CRW:
                crw_step(ind, species, landscape, ctx)
            else:
                sms_step(ind, species, landscape, ctx)
            if ind.status != Status.DISPERSING:
                continue
            ind.steps += 1
            patch = landscape.patch_of(ind.cur_cell, sp)
            arrived = (patch is not None and patch.is_suitable()
                       and patch.seq_num != ind.natal_patch)
            if move == MoveType.KERNEL:
                if arrived:
                    ind.status = Status.POTENTIAL_SETTLER
                    patch.incr_poss_settler(int(ind.sex))
                else:
                    self._unsuitable(ind, landscape, ctx)
            elif arrived and ind.steps >= trfr.min_steps:
                ind.status = Status.POTENTIAL_SETTLER
                patch.incr_poss_settler(int(ind.sex))
            elif ind.steps >= trfr.max_steps:
                ind.status = Status.DIED_IN_TRANSFER

        for ind in movers:
            if ind.status == Status.POTENTIAL_SETTLER:
                self._settle_or_not(ind, landscape, ctx)

        return sum(1 for ind in self.individuals() if ind.status == Status.DISPERSING)

    def _suitable_neighbour(self, ind: Individual, landscape: 'Landscape',
                            ctx: 'SimulationContext') -> Optional[int]:
        cell = landscape.cells[ind.cur_cell]
        options = []
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                if dx == 0 and dy == 0:
                    continue
                ix = landscape.find_cell_ix(cell.x + dx, cell.y + dy)
                if ix is None:
                    continue
                patch = landscape.patch_of(ix, self.species.id)
                if (patch is not None and patch.is_suitable()
                        and patch.seq_num != ind.natal_patch):
                    options.append(ix)
        if not options:
            return None
        return options[ctx.rng.irandom(0, len(options) - 1)]

    def _unsuitable(self, ind: Individual, landscape: 'Landscape',
                    ctx: 'SimulationContext', allow_neighbour: bool = True) -> None:
        """Kernel landing (or rejection) without a usable patch."""
        rule = self.species.settlement.unsuitable
        if allow_neighbour and rule in ('neighbour', 'wait_neighbour'):
            ix = self._suitable_neighbour(ind, landscape, ctx)
            if ix is not None:
                ind.cur_cell = ix
                ind.status = Status.POTENTIAL_SETTLER
                ind.neighbour_move = True
                landscape.patch_of(ix, self.species.id).incr_poss_settler(int(ind.sex))
                return
        if rule in ('wait', 'wait_neighbour') and self.species.stage_structured:
            ind.status = Status.WAITING
        else:
            ind.status = Status.DIED_IN_TRANSFER

    def settlement_prob(self, patch: 'Patch') -> float:
        sett = self.species.settlement
        if not sett.density_dependent:
            return 1.0
        if patch.local_k <= 0.0:
            return 0.0
        n = 0 if patch.population is None else patch.population.total_pop()
        density = n / patch.local_k
        return sett.S0 / (1.0 + math.exp(-(density - sett.beta_S) * sett.alpha_S))

    def _mate_available(self, ind: Individual, patch: 'Patch') -> bool:
        if not (self.species.sexual and self.species.settlement.find_mate):
            return True
        other = Sex.FEMALE if ind.sex == Sex.MALE else Sex.MALE
        if patch.get_poss_settlers(int(other)) > 0:
            return True
        if patch.population is not None:
            return any(i.sex == other and i.is_alive
                       for i in patch.population.individuals())
        return False

    def _settle_or_not(self, ind: Individual, landscape: 'Landscape',
                       ctx: 'SimulationContext') -> None:
        """Resolve a potential settler.

        Kernel dispersers that are rejected fall back to the unsuitable-patch
        rule (at most one neighbour search); movement-process dispersers
        keep moving.
        """
        patch = landscape.patch_of(ind.cur_cell, self.species.id)
        accept = (self._mate_available(ind, patch)
                  and ctx.rng.bernoulli(self.settlement_prob(patch)))
        if accept:
            ind.status = Status.SETTLED_NEIGHBOUR if ind.neighbour_move else Status.SETTLED
            return
        if self.species.uses_movt_proc:
            ind.status = Status.DISPERSING
            return
        self._unsuitable(ind, landscape, ctx, allow_neighbour=not ind.neighbour_move)
        if ind.status == Status.POTENTIAL_SETTLER:
            self._settle_or_not(ind, landscape, ctx)

    def force_transit_death(self) -> int:
        """Matrix only: every still-undecided individual dies in transfer."""
        n = 0
        for ind in self.individuals():
            if ind.status in (Status.DISPERSING, Status.POTENTIAL_SETTLER):
                ind.status = Status.DIED_IN_TRANSFER
                n += 1
        return n

    # ── survival and development ───────────────────────────────────

    def plan_transition(
        self,
        resolve_juvs: bool,
        resolve_adults: bool,
        resolve_dev: bool,
        resolve_surv: bool,
        ctx: 'SimulationContext',
        local_k: Optional[float] = None,
    ) -> TransitionPlan:
        """Draw survival and development for every individual without
        changing the population."""
        dem = self.species.demography
        rng = ctx.rng
        n_stages = self.species.n_stages
        density = None
        if local_k is not None and local_k > 0.0:
            density = self._alive_count() / local_k

        fates = []
        for ix, ind in enumerate(self.inds):
            if ind is None:
                continue
            if not ind.is_alive:
                fates.append(Fate(ix, False, False, ind.status))
                continue
            if ind.status == Status.WAITING and not dem.stage_structured:
                fates.append(Fate(ix, False, False, Status.DIED_IN_TRANSFER))
                continue
            if not dem.stage_structured:
                develops = resolve_dev and resolve_juvs and ind.stage == 0
                fates.append(Fate(ix, True, develops, ind.status))
                continue
            if (ind.stage == 0 and not resolve_juvs) or (ind.stage > 0 and not resolve_adults):
                fates.append(Fate(ix, True, False, ind.status))
                continue
            survives = True
            if resolve_surv:
                p_surv = dem.survival[min(ind.stage, len(dem.survival) - 1)]
                if dem.surv_dens_dep and density is not None:
                    p_surv *= math.exp(-dem.surv_dens_coef * density)
                survives = rng.bernoulli(p_surv)
            develops = False
            if survives and resolve_dev and ind.stage < n_stages - 1:
                develops = rng.bernoulli(dem.development[ind.stage])
            status = ind.status if survives else Status.DIED_DEMOGRAPHIC
            fates.append(Fate(ix, survives, develops, status))
        return TransitionPlan(tuple(fates), len(self.inds))

    def apply_transition(self, plan: TransitionPlan) -> int:
        """Apply a plan drawn by plan_transition(); returns deaths.

        Raises:
            ValueError: If the population changed since the plan was drawn.
        """
        if plan.n_inds != len(self.inds):
            raise ValueError("population changed between plan and apply")
        n_dead = 0
        n_stages = self.species.n_stages
        for fate in plan.fates:
            ind = self.inds[fate.index]
            if ind is None:
                continue
            if not fate.survives:
                ind.status = fate.status
                self.inds[fate.index] = None
                n_dead += 1
            elif fate.develops:
                ind.develop(n_stages)
        self.clean()
        return n_dead

    def draw_survival_devlpt(self, resolve_juvs: bool, resolve_adults: bool,
                             resolve_dev: bool, resolve_surv: bool,
                             ctx: 'SimulationContext',
                             local_k: Optional[float] = None) -> None:
        self._plan = self.plan_transition(resolve_juvs, resolve_adults,
                                          resolve_dev, resolve_surv, ctx, local_k)

    def apply_survival_devlpt(self) -> int:
        if self._plan is None:
            return 0
        plan, self._plan = self._plan, None
        return self.apply_transition(plan)

    def age_increment(self) -> int:
        """Age every individual; those beyond max age die. Returns deaths."""
        max_age = self.species.demography.max_age
        stage_structured = self.species.stage_structured
        n_dead = 0
        for ix, ind in enumerate(self.inds):
            if ind is None or not ind.is_alive:
                continue
            ind.age += 1
            if stage_structured and ind.age > max_age:
                ind.status = Status.DIED_MAX_AGE
                self.inds[ix] = None
                n_dead += 1
        self.clean()
        return n_dead

    # ── local extinction ───────────────────────────────────────────

    def extirpate(self) -> int:
        """Remove every individual; returns how many were removed."""
        n = self.total_pop()
        for ind in self.individuals():
            ind.status = Status.DIED_DEMOGRAPHIC
        self.inds = []
        self._juvs = []
        if n:
            logger.debug("extirpated %s (%d individuals)", self.location, n)
        return n

    def local_extinction(self, option: int, ctx: 'SimulationContext',
                         landscape: 'Landscape', patch: Optional['Patch'] = None) -> bool:
        """Random local extinction; returns True if the population was wiped.

        option 0: probability ``stochasticity.local_ext_prob``
        option 1: the extinction-gradient value of a random patch cell
        """
        if self.is_matrix:
            return False
        if option == 0:
            p = ctx.stochasticity.local_ext_prob
        else:
            if patch is None:
                return False
            ix = patch.get_random_cell(ctx.rng)
            p = 0.0 if ix is None else landscape.cells[ix].env_val
        if ctx.rng.bernoulli(p):
            self.extirpate()
            return True
        return False
