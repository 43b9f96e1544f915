"""
Tests for the traditional and search media modules.
"""

import logging

import numpy as np
import pytest

from amss import SearchMedia, TraditionalMedia
from amss.media import build_media

from conftest import POPULATION, search_config, simulation_config, tv_config


def _rng(seed=0):
    return np.random.default_rng(seed)


class TestTraditionalMedia:
    """Flighting, impressions and Hill reach."""

    def test_spend_follows_flighting(self, initial_state):
        config = tv_config(8, budget=[100.0, 200.0], period_length=4,
                           flighting=[1, 2, 1, 0, 3, 1, 0, 0])
        media = TraditionalMedia(config, POPULATION)

        spend = np.array([media.step(t, initial_state, _rng()).spend for t in range(8)])

        assert spend[:4].sum() == pytest.approx(100.0)
        assert spend[4:].sum() == pytest.approx(200.0)
        np.testing.assert_allclose(spend, [25, 50, 25, 0, 150, 50, 0, 0])

    def test_dark_period_spends_nothing(self, initial_state, caplog):
        config = tv_config(4, budget=[100.0, 100.0], period_length=2, flighting=[1, 1, 0, 0])

        with caplog.at_level(logging.WARNING, logger='amss.media'):
            media = TraditionalMedia(config, POPULATION)

        assert media.step(3, initial_state, _rng()).spend == 0.0
        assert 'zero flighting' in caplog.text

    def test_hill_reach(self, initial_state):
        """Exposure of one impression per head at half saturation 1 reaches half the audience."""
        config = tv_config(4, budget=[400.0], half_saturation=1.0, cpm=10.0)
        media = TraditionalMedia(config, POPULATION)

        out = media.step(0, initial_state, _rng())

        assert out.spend == pytest.approx(100.0)
        assert out.volume['impressions'] == pytest.approx(10000.0)
        assert out.volume['reach'] == pytest.approx(0.5 * POPULATION)
        np.testing.assert_allclose(out.perturbation.reach, 0.5)

    def test_audience_restricts_reach(self, index, initial_state):
        config = tv_config(4, audience={'market': [0.0, 1.0]})
        media = TraditionalMedia(config, POPULATION)

        reach = media.step(0, initial_state, _rng()).perturbation.reach

        assert np.all(reach[index.mask(market='out')] == 0.0)
        assert np.all(reach[index.mask(market='in')] > 0.0)

    def test_reach_grows_with_budget(self, initial_state):
        small = TraditionalMedia(tv_config(4, budget=[100.0]), POPULATION)
        large = TraditionalMedia(tv_config(4, budget=[10000.0]), POPULATION)

        assert (small.step(0, initial_state, _rng()).volume['reach']
                < large.step(0, initial_state, _rng()).volume['reach'])

    def test_zero_budget_has_no_effect(self, initial_state):
        media = TraditionalMedia(tv_config(4, budget=[0.0]), POPULATION)
        out = media.step(0, initial_state, _rng())
        assert out.spend == 0.0
        assert np.all(out.perturbation.reach == 0.0)


class TestSearchMedia:
    """Queries, auction, clicks and spend cap."""

    def _module(self, n_steps=4, **kwargs):
        config = simulation_config(n_steps, media=[search_config(n_steps, **kwargs)])
        return build_media(config)[0]

    def test_uncapped_spend_is_clicks_times_cpc(self, index, initial_state):
        media = self._module(cpc_min=1.0, cpc_max=1.0)

        out = media.step(0, initial_state, _rng())

        queries = initial_state * index.product({'activity': [0.0, 0.5, 1.0]})
        assert out.volume['queries'] == pytest.approx(queries.sum())
        assert out.volume['impressions'] == pytest.approx(queries.sum())
        assert out.volume['clicks'] == pytest.approx(0.05 * queries.sum())
        assert out.volume['cpc'] == 1.0
        assert out.spend == pytest.approx(out.volume['clicks'])

    def test_spend_capped_at_budget(self, initial_state):
        media = self._module(budget=[20.0], cpc_min=1.0, cpc_max=1.0)

        out = media.step(0, initial_state, _rng())

        assert out.spend == pytest.approx(5.0)
        assert out.volume['clicks'] == pytest.approx(5.0)

    def test_cpc_within_range(self, initial_state):
        media = self._module(cpc_min=0.5, cpc_max=1.5, bid_fn=lambda t, b, p: 1.0)
        for seed in range(20):
            cpc = media.step(0, initial_state, _rng(seed)).volume['cpc']
            assert 0.5 <= cpc <= 1.0

    def test_budget_driven_bid_moves_uncapped_spend(self, initial_state):
        """Below the cap, spend responds to budget only through the bid."""
        bid_fn = lambda t, per_capita_budget, period: 0.5 + per_capita_budget / 10
        small = self._module(budget=[1e5], cpc_min=0.5, cpc_max=1.5, bid_fn=bid_fn)
        large = self._module(budget=[2e5], cpc_min=0.5, cpc_max=1.5, bid_fn=bid_fn)

        out_small = small.step(0, initial_state, _rng(3))
        out_large = large.step(0, initial_state, _rng(3))

        assert out_small.spend < small.caps[0] * small.population_total
        assert 0 < out_small.spend < out_large.spend

    def test_low_bid_wins_nothing_but_draws(self, initial_state):
        """A losing bid still consumes exactly one random draw."""
        media = self._module(cpc_min=1.0, cpc_max=2.0, bid_fn=lambda t, b, p: 0.5)
        rng = _rng(7)

        out = media.step(0, initial_state, rng)

        assert out.spend == 0.0
        assert out.volume['impressions'] == 0.0
        reference = _rng(7)
        reference.random()
        assert rng.random() == reference.random()

    def test_match_rate_scales_impressions(self, initial_state):
        full = self._module(cpc_min=1.0, cpc_max=1.0)
        half = self._module(cpc_min=1.0, cpc_max=1.0, kw_fn=lambda t, b, p: 0.5)

        assert (half.step(0, initial_state, _rng()).volume['impressions']
                == pytest.approx(0.5 * full.step(0, initial_state, _rng()).volume['impressions']))

    def test_click_tier_reach(self, index, initial_state):
        media = self._module(cpc_min=1.0, cpc_max=1.0, relative_effectiveness=(0.0, 0.0, 1.0))

        reach = media.step(0, initial_state, _rng()).perturbation.reach

        purchase = index.mask(activity='purchase')
        exploration = index.mask(activity='exploration')
        np.testing.assert_allclose(reach[purchase], 0.05)
        np.testing.assert_allclose(reach[exploration], 0.025)
        assert np.all(reach[index.mask(activity='inactive')] == 0.0)


class TestBuildMedia:
    """Module construction from a simulation configuration."""

    def test_types_and_order(self):
        config = simulation_config(4, media=[search_config(4), tv_config(4)])
        modules = build_media(config)
        assert [type(m) for m in modules] == [SearchMedia, TraditionalMedia]
        assert [m.name for m in modules] == ['search', 'tv']
