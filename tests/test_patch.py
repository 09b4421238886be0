"""Tests for rangeshifter.patch — limits, carrying capacity, initial sizes."""

import numpy as np
import pytest

from rangeshifter.config import InitialisationSection, StochasticitySection
from rangeshifter.landscape import Landscape
from rangeshifter.patch import Patch
from rangeshifter.rng import RandomStream
from rangeshifter.types import NO_LOCN, PatchLimits, RasterType

from conftest import make_species


def _k_of(habitat_K, codes=((1, 1), (1, 1))):
    species = make_species(habitat_K=habitat_K)
    ids = np.ones_like(np.asarray(codes))
    land = Landscape.from_habitat_codes(np.asarray(codes), {0: species}, patch_ids=ids)
    patch = land.find_patch(0, 1)
    patch.set_carrying_capacity(species, land.limits, 0.0, land.n_hab,
                                RasterType.HABITAT, 0, False, land,
                                StochasticitySection())
    return patch


class TestLimits:
    def _patch(self):
        p = Patch(0, 1, 0, dim_x=10)
        # L shape; (2, 1) and (3, 1) are empty
        for x, y in [(1, 1), (1, 2), (2, 2), (3, 2)]:
            p.add_cell(y * 10 + x, x, y)
        return p

    def test_bounding_box(self):
        p = self._patch()
        lim = p.get_limits()
        assert (lim.x_min, lim.x_max, lim.y_min, lim.y_max) == (1, 3, 1, 2)

    def test_within_limits(self):
        p = self._patch()
        assert p.within_limits(PatchLimits(0, 9, 0, 9))
        assert not p.within_limits(PatchLimits(5, 9, 5, 9))
        # clips the corner of the bounding box that holds no cell
        assert not p.within_limits(PatchLimits(3, 5, 0, 1))
        # clips a corner that does hold a cell
        assert p.within_limits(PatchLimits(0, 1, 0, 1))

    def test_remove_and_reset(self):
        p = self._patch()
        p.remove_cell(2 * 10 + 3)   # (3, 2)
        assert p.n_cells == 3
        assert p.changed
        p.reset_limits()
        assert not p.changed
        assert p.x_max == 2
        assert None not in p.cells

    def test_cell_locn(self):
        p = self._patch()
        assert (p.get_cell_locn(0).x, p.get_cell_locn(0).y) == (1, 1)
        assert p.get_cell_locn(99).x == NO_LOCN
        assert p.get_cell(1) == 2 * 10 + 1
        assert p.get_cell(99) is None

    def test_random_cell_is_member(self):
        p = self._patch()
        rng = RandomStream(0)
        for _ in range(20):
            assert p.get_random_cell(rng) in p.cells

    def test_empty_patch_random_cell(self):
        assert Patch(0, 1, 0, dim_x=3).get_random_cell(RandomStream(0)) is None


class TestCarryingCapacity:
    def test_sum_over_cells(self):
        assert _k_of([10.0]).local_k == pytest.approx(40.0)

    def test_centroid(self):
        p = _k_of([10.0], codes=((1, 1, 1),))
        assert (p.centroid.x, p.centroid.y) == (1, 0)

    def test_monotone_in_habitat_k(self):
        ks = [_k_of([k]).local_k for k in (0.0, 1.0, 5.0, 5.0, 12.0)]
        assert all(a <= b for a, b in zip(ks, ks[1:]))

    def test_zero_k_is_unsuitable(self):
        p = _k_of([0.0])
        assert p.local_k == 0.0
        assert not p.is_suitable()

    def test_outside_landscape_limits(self):
        species = make_species()
        codes = np.ones((2, 2), dtype=int)
        land = Landscape.from_habitat_codes(codes, {0: species}, patch_ids=codes)
        patch = land.find_patch(0, 1)
        patch.set_carrying_capacity(species, PatchLimits(5, 9, 5, 9), 0.0, 1,
                                    RasterType.HABITAT, 0, False, land,
                                    StochasticitySection())
        assert patch.local_k == 0.0

    def test_stochastic_k_clamped(self):
        species = make_species(habitat_K=[10.0], min_K=9.0, max_K=10.5)
        codes = np.ones((1, 2), dtype=int)
        land = Landscape.from_habitat_codes(codes, {0: species}, patch_ids=codes)
        patch = land.find_patch(0, 1)
        stoch = StochasticitySection(enabled=True, in_K=True)
        patch.set_carrying_capacity(species, land.limits, 0.5, 1,
                                    RasterType.HABITAT, 0, False, land, stoch)
        assert patch.local_k == pytest.approx(21.0)
        patch.set_carrying_capacity(species, land.limits, -0.5, 1,
                                    RasterType.HABITAT, 0, False, land, stoch)
        assert patch.local_k == pytest.approx(18.0)


class TestInitialSize:
    def test_at_k(self):
        p = _k_of([10.0])
        assert p.get_init_nb_inds(False, 100, InitialisationSection(init_density='K')) == 40

    def test_half_k(self):
        p = _k_of([5.0])
        assert p.get_init_nb_inds(False, 100, InitialisationSection(init_density='half_K')) == 10

    def test_specified_cell_based(self):
        p = _k_of([5.0])
        init = InitialisationSection(init_density='specified', inds_per_cell=3)
        assert p.get_init_nb_inds(False, 100, init) == 12

    def test_specified_patch_based(self):
        p = _k_of([5.0])
        init = InitialisationSection(init_density='specified', inds_per_ha=2.5)
        # 4 cells of 1 ha each
        assert p.get_init_nb_inds(True, 100, init) == 10

    def test_zero_k_contributes_nothing(self):
        p = _k_of([0.0])
        for density in ('K', 'half_K', 'specified'):
            init = InitialisationSection(init_density=density, inds_per_cell=5)
            assert p.get_init_nb_inds(False, 100, init) == 0


class TestPossibleSettlers:
    def test_counters(self):
        p = Patch(0, 1, 0, dim_x=3)
        p.incr_poss_settler(0)
        p.incr_poss_settler(1)
        p.incr_poss_settler(1)
        p.incr_poss_settler(7)
        assert p.get_poss_settlers(0) == 1
        assert p.get_poss_settlers(1) == 2
        p.reset_poss_settlers()
        assert p.get_poss_settlers(1) == 0
