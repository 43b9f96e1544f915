"""
Tests for configuration validation.
"""

import numpy as np
import pytest
from pydantic import ValidationError

from amss import (
    ConfigurationError,
    NaturalMigrationConfig,
    SalesConfig,
    SearchMediaConfig,
    SimulationConfig,
    TraditionalMediaConfig,
)

from conftest import POPULATION, search_config, simulation_config, tv_config


class TestNaturalMigrationConfig:
    """Population and natural dynamics."""

    def test_defaults(self):
        config = NaturalMigrationConfig(population_total=POPULATION)
        assert set(config.initial_shares) == {
            'market', 'satiation', 'activity', 'favorability', 'loyalty', 'availability'
        }
        assert config.transition_matrices == {}
        assert config.resolved_entry_shares.keys() == config.initial_shares.keys()

    def test_partial_shares_merge_with_defaults(self):
        config = NaturalMigrationConfig(population_total=1.0,
                                        initial_shares={'market': [0.0, 1.0]})
        np.testing.assert_array_equal(config.initial_shares['market'], [0.0, 1.0])
        assert len(config.initial_shares) == 6

    def test_non_positive_population(self):
        with pytest.raises(ConfigurationError):
            NaturalMigrationConfig(population_total=0)

    def test_shares_must_sum_to_one(self):
        with pytest.raises(ConfigurationError):
            NaturalMigrationConfig(population_total=1.0, initial_shares={'market': [0.5, 0.6]})

    def test_bad_transition_matrix(self):
        with pytest.raises(ConfigurationError):
            NaturalMigrationConfig(population_total=1.0,
                                   transition_matrices={'market': [[0.5, 0.4], [0.0, 1.0]]})

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError):
            NaturalMigrationConfig(population_total=1.0, churn=0.1)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            NaturalMigrationConfig(population_total=-1.0)


class TestMediaConfig:
    """Traditional and search media parameters."""

    def test_arrays_are_read_only(self):
        config = tv_config(8)
        assert not config.budget.flags.writeable
        assert config.budget_index.dtype.kind == 'i'

    def test_budget_period_without_entry(self):
        with pytest.raises(ConfigurationError):
            TraditionalMediaConfig(name='tv', budget=[100.0], budget_index=[0, 0, 1, 1])

    def test_non_integer_period_ids(self):
        with pytest.raises(ConfigurationError):
            TraditionalMediaConfig(name='tv', budget=[100.0, 100.0], budget_index=[0, 0.5])

    @pytest.mark.parametrize('field', ['half_saturation', 'slope', 'cpm'])
    def test_non_positive_hill_parameters(self, field):
        with pytest.raises(ConfigurationError):
            tv_config(4, **{field: 0.0})

    def test_negative_budget(self):
        with pytest.raises(ConfigurationError):
            tv_config(4, budget=[-1.0])

    def test_audience_above_one(self):
        with pytest.raises(ConfigurationError):
            tv_config(4, audience={'market': [0.0, 1.5]})

    def test_cpc_range(self):
        with pytest.raises(ConfigurationError):
            search_config(4, cpc_min=2.0, cpc_max=1.0)

    def test_relative_effectiveness_must_be_ordered(self):
        with pytest.raises(ConfigurationError):
            search_config(4, relative_effectiveness=(0.5, 0.1, 1.0))

    def test_with_budget_revalidates(self):
        config = tv_config(4, budget=[100.0])
        updated = config.with_budget([50.0])
        assert updated.budget[0] == 50.0
        assert config.budget[0] == 100.0
        with pytest.raises(ConfigurationError):
            config.with_budget([-5.0])

    def test_period_lengths_and_per_step_budget(self):
        config = tv_config(6, budget=[90.0, 30.0], period_length=3)
        np.testing.assert_array_equal(config.period_lengths(), [3, 3])
        np.testing.assert_allclose(config.per_step_budget(), [30, 30, 30, 10, 10, 10])

    def test_frozen(self):
        config = tv_config(4)
        with pytest.raises(ValidationError):
            config.cpm = 5.0


class TestSearchFunctions:
    """Pluggable search functions are checked over the whole horizon."""

    def test_defaults_evaluate(self):
        config = simulation_config(4, media=[search_config(4, budget=[400.0])])
        caps, bids, match = config.media[0].evaluate_functions(config.per_capita_budget('search'))
        np.testing.assert_allclose(caps, 100.0 / POPULATION)
        np.testing.assert_allclose(bids, 1.5)
        assert match.shape == (4, 198)

    def test_infinite_cap_allowed(self):
        media = search_config(4, spend_cap_fn=lambda t, b, p: np.inf)
        simulation_config(4, media=[media])

    @pytest.mark.parametrize('kwargs', [
        {'spend_cap_fn': lambda t, b, p: -1.0},
        {'spend_cap_fn': lambda t, b, p: np.nan},
        {'bid_fn': lambda t, b, p: np.inf},
        {'kw_fn': lambda t, b, p: 1.5},
        {'kw_fn': lambda t, b, p: np.ones(5)},
    ])
    def test_bad_function_output(self, kwargs):
        media = search_config(4, **kwargs)
        with pytest.raises(ConfigurationError):
            simulation_config(4, media=[media])

    def test_late_bad_output_is_caught(self):
        """A function that only misbehaves late in the horizon still fails up front."""
        media = search_config(10, bid_fn=lambda t, b, p: -1.0 if t == 9 else 1.0)
        with pytest.raises(ConfigurationError):
            simulation_config(10, media=[media])


class TestSalesConfig:
    """Demand and competition parameters."""

    def test_defaults(self):
        config = SalesConfig(price=[10.0])
        assert config.demand_intercept.shape == (5,)
        assert config.replacement_rate.shape == (3,)

    def test_non_positive_price(self):
        with pytest.raises(ConfigurationError):
            SalesConfig(price=[10.0, 0.0])

    def test_wrong_length_curve(self):
        with pytest.raises(ConfigurationError):
            SalesConfig(price=[10.0], demand_intercept=[0.1, 0.2])

    def test_rates_in_unit_interval(self):
        with pytest.raises(ConfigurationError):
            SalesConfig(price=[10.0], replacement_rate=[0.5, 1.5, 0.1])


class TestSimulationConfig:
    """Cross-field consistency."""

    def test_media_from_mappings(self):
        config = SimulationConfig(
            n_steps=4,
            natural_migration={'population_total': POPULATION},
            media=[{'kind': 'search', 'name': 'search', 'budget': [100.0],
                    'budget_index': [0, 0, 0, 0]}],
            sales={'price': [10.0] * 4},
        )
        assert isinstance(config.media[0], SearchMediaConfig)
        assert config.media_names == ['search']

    def test_price_length(self):
        with pytest.raises(ConfigurationError):
            SimulationConfig(
                n_steps=4,
                natural_migration={'population_total': POPULATION},
                sales={'price': [10.0] * 3},
            )

    def test_budget_map_length(self):
        with pytest.raises(ConfigurationError):
            simulation_config(6, media=[tv_config(4)])

    def test_flighting_length(self):
        with pytest.raises(ConfigurationError):
            simulation_config(4, media=[tv_config(4, flighting=[1.0, 1.0])])

    def test_market_size_length(self):
        natural = NaturalMigrationConfig(population_total=POPULATION, market_size=[POPULATION] * 3)
        with pytest.raises(ConfigurationError):
            simulation_config(4, natural=natural)

    def test_duplicate_media_names(self):
        with pytest.raises(ConfigurationError):
            simulation_config(4, media=[tv_config(4), tv_config(4)])

    def test_initial_state_shape(self):
        with pytest.raises(ConfigurationError):
            simulation_config(4, initial_state=np.ones(10))

    def test_unknown_media(self):
        config = simulation_config(4)
        with pytest.raises(ConfigurationError):
            config.get_media('radio')

    def test_with_budget_scaled(self):
        config = simulation_config(6, media=[tv_config(6, budget=[90.0, 30.0], period_length=3)])

        scaled = config.with_budget_scaled(['tv'], 0.5, {'tv': [1]})
        everything = config.with_budget_scaled(['tv'], 0.0)

        np.testing.assert_array_equal(scaled.get_media('tv').budget, [90.0, 15.0])
        np.testing.assert_array_equal(everything.get_media('tv').budget, [0.0, 0.0])
        np.testing.assert_array_equal(config.get_media('tv').budget, [90.0, 30.0])
