"""
Shared scenario builders for the simulator tests.
"""

import numpy as np
import pytest

from amss import (
    NaturalMigrationConfig,
    SalesConfig,
    SearchMediaConfig,
    SimulationConfig,
    TraditionalMediaConfig,
    get_segment_index,
)
from amss.settings import get_settings


POPULATION = 10000.0

# Reached consumers move one favorability level up
FAVORABILITY_LIFT = [
    [0.5, 0.5, 0.0, 0.0, 0.0],
    [0.0, 0.5, 0.5, 0.0, 0.0],
    [0.0, 0.0, 0.5, 0.5, 0.0],
    [0.0, 0.0, 0.0, 0.5, 0.5],
    [0.0, 0.0, 0.0, 0.0, 1.0],
]

NATURAL_DRIFT = {
    'activity': [[0.8, 0.15, 0.05],
                 [0.4, 0.4, 0.2],
                 [0.5, 0.3, 0.2]],
    'favorability': [[0.95, 0.0, 0.05, 0.0, 0.0],
                     [0.0, 0.9, 0.1, 0.0, 0.0],
                     [0.0, 0.05, 0.9, 0.05, 0.0],
                     [0.0, 0.0, 0.1, 0.85, 0.05],
                     [0.0, 0.0, 0.0, 0.1, 0.9]],
}


def random_stochastic(rng, n):
    m = rng.random((n, n))
    return m / m.sum(axis=1, keepdims=True)


def tv_config(n_steps, budget=(1000.0,), period_length=None, **kwargs):
    period_length = period_length or n_steps
    fields = dict(
        name='tv',
        budget=list(budget),
        budget_index=np.arange(n_steps) // period_length,
        cpm=10.0,
        half_saturation=0.5,
        transition_matrices={'favorability': FAVORABILITY_LIFT},
    )
    fields.update(kwargs)
    return TraditionalMediaConfig(**fields)


def search_config(n_steps, budget=(1e6,), **kwargs):
    fields = dict(
        name='search',
        budget=list(budget),
        budget_index=np.zeros(n_steps, dtype=int),
        transition_matrices={'favorability': FAVORABILITY_LIFT},
    )
    fields.update(kwargs)
    return SearchMediaConfig(**fields)


def simulation_config(n_steps=26, media=None, natural=None, price=10.0, **kwargs):
    return SimulationConfig(
        n_steps=n_steps,
        natural_migration=natural or NaturalMigrationConfig(population_total=POPULATION),
        media=media if media is not None else [tv_config(n_steps)],
        sales=SalesConfig(price=np.full(n_steps, price)),
        **kwargs
    )


@pytest.fixture
def index():
    return get_segment_index()


@pytest.fixture
def initial_state(index):
    config = NaturalMigrationConfig(population_total=POPULATION)
    return index.from_shares(config.initial_shares, POPULATION)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached per process; start every test from the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
