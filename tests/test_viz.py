"""Smoke tests for rangeshifter.viz: every plot builds and saves a PNG."""

import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import numpy as np
import pytest

from rangeshifter.config import EmigrationSection, SimulationSection
from rangeshifter.records import RangeRecorder
from rangeshifter.viz import (
    plot_connectivity,
    plot_k_map,
    plot_occupancy,
    plot_range_trajectory,
    plot_stage_totals,
)
from rangeshifter.viz.style import SERIES_COLORS, series_color, stage_colors

from conftest import make_community, make_ctx, make_species


@pytest.fixture
def community():
    species = make_species(habitat_K=[10.0, 0.0],
                           emigration=EmigrationSection(probability=[0.2]))
    codes = np.ones((4, 4), dtype=int)
    codes[0, 0] = 2
    ctx = make_ctx(seed=5, simulation=SimulationSection(out_connect=True))
    comm = make_community(codes, species, ctx=ctx)
    comm.landscape.create_connect_matrix()
    comm.initialise()
    return comm


@pytest.fixture
def recorder(community):
    rec = RangeRecorder(enabled=True)
    for rep in range(2):
        for year in range(4):
            community.reproduction(year)
            community.emigration()
            community.dispersal()
            community.draw_survival_devlpt()
            community.apply_survival_devlpt()
            community.age_increment()
            rec.capture(rep, year, 0, community)
    return rec


class TestStyle:
    def test_series_colors_cycle(self):
        assert series_color(len(SERIES_COLORS)) == series_color(0)
        assert isinstance(series_color(123), str)

    def test_stage_colors(self):
        assert len(stage_colors(4)) == 4


class TestPlots:
    def test_range_trajectory(self, recorder, tmp_path):
        path = tmp_path / 'range.png'
        fig = plot_range_trajectory(recorder, save_path=str(path))
        assert isinstance(fig, plt.Figure)
        assert path.exists()

    def test_range_trajectory_from_arrays(self, recorder):
        fig = plot_range_trajectory(recorder.as_arrays())
        assert len(fig.axes) == 2
        plt.close(fig)

    def test_stage_totals(self, recorder, tmp_path):
        path = tmp_path / 'stages.png'
        fig = plot_stage_totals(recorder, rep=1, save_path=str(path))
        assert isinstance(fig, plt.Figure)
        assert path.exists()

    def test_occupancy(self, tmp_path):
        props = np.array([[1.0, 0.0], [0.8, 0.1], [0.5, 0.2]])
        path = tmp_path / 'occ.png'
        fig = plot_occupancy(props, interval=10, save_path=str(path))
        assert isinstance(fig, plt.Figure)
        assert path.exists()

    def test_occupancy_empty(self):
        fig = plot_occupancy(np.zeros((0, 2)))
        assert isinstance(fig, plt.Figure)
        plt.close(fig)

    def test_k_map(self, community, tmp_path):
        path = tmp_path / 'k.png'
        fig = plot_k_map(community.landscape, save_path=str(path))
        assert isinstance(fig, plt.Figure)
        assert path.exists()

    def test_connectivity(self, community, recorder, tmp_path):
        assert community.landscape.get_connect_matrix(0).sum() > 0
        path = tmp_path / 'conn.png'
        fig = plot_connectivity(community.landscape, save_path=str(path))
        assert isinstance(fig, plt.Figure)
        assert path.exists()
