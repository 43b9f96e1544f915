"""
Simulation driver.

Runs the population engine over the whole horizon in strict time order and
assembles two tables:

- observed: one row per step with spend and volume per media, price,
  advertiser and competitor unit sales and revenue
- full: one row per (step, segment) with the segment's population and sales

The configuration and seed are kept with the output so any run can be
re-derived, which the ROAS estimator relies on.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import MediaConfig, NaturalMigrationConfig, SalesConfig, SimulationConfig
from .population import PopulationEngine
from .sales import SalesModule
from .states import get_segment_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SimulationRecord:
    """
    Output of one simulation run.

    Attributes
    ----------
    observed : pd.DataFrame
        Aggregated per-step table
    full : pd.DataFrame
        Per-step, per-segment table
    config : SimulationConfig
        Configuration that produced the tables
    seed : int
        Seed that reproduces the run
    """
    observed: pd.DataFrame
    full: pd.DataFrame
    config: SimulationConfig
    seed: int

    @property
    def media_names(self) -> List[str]:
        return self.config.media_names

    def _window(self, t_start: Optional[int], t_end: Optional[int]) -> pd.DataFrame:
        time = self.observed['time']
        start = 0 if t_start is None else t_start
        end = self.config.n_steps - 1 if t_end is None else t_end
        return self.observed[(time >= start) & (time <= end)]

    def revenue(self, t_start: Optional[int] = None, t_end: Optional[int] = None) -> float:
        """Advertiser revenue over [t_start, t_end] (inclusive)."""
        return float(self._window(t_start, t_end)['revenue'].sum())

    def spend(self, media_names: Optional[Union[str, Sequence[str]]] = None,
              t_start: Optional[int] = None, t_end: Optional[int] = None) -> float:
        """Spend of the given media (all media by default) over [t_start, t_end]."""
        if media_names is None:
            media_names = self.media_names
        elif isinstance(media_names, str):
            media_names = [media_names]
        window = self._window(t_start, t_end)
        return float(sum(window[f'{name}_spend'].sum() for name in media_names))


def simulate(config: SimulationConfig, seed: Optional[int] = None) -> SimulationRecord:
    """
    Run one simulation.

    Parameters
    ----------
    config : SimulationConfig
        Validated configuration
    seed : int, optional
        Seed of the run. Identical seeds and configurations give identical
        tables

    Returns
    -------
    SimulationRecord
        Observed and full tables plus the configuration and seed

    Examples
    --------
    >>> record = simulate(config, seed=42)
    >>> record.observed[['time', 'tv_spend', 'sales', 'revenue']].head()
    """
    engine = PopulationEngine(config, seed=seed)
    sales = SalesModule(config.sales)
    index = get_segment_index()
    in_market = index.mask(market='in')

    n_steps, n_segments = config.n_steps, index.n_segments
    population = np.empty((n_steps, n_segments))
    advertiser = np.empty((n_steps, n_segments))
    competitor = np.empty((n_steps, n_segments))
    rows = []

    logger.info("Simulating %d steps with media %s (seed=%s)", n_steps, config.media_names, engine.seed)

    state = engine.initial_state()
    for t in range(n_steps):
        state, step = engine.step(state, t)
        price = float(config.sales.price[t])
        _, by_brand = sales.sell(state, price)

        row = {
            'time': t,
            'population': float(state.sum()),
            'in_market': float(state[in_market].sum()),
        }
        for name in config.media_names:
            row[f'{name}_spend'] = step.spend[name]
            for metric, value in step.volume[name].items():
                row[f'{name}_{metric}'] = value
        units = float(by_brand['advertiser'].sum())
        row['price'] = price
        row['sales'] = units
        row['competitor_sales'] = float(by_brand['competitor'].sum())
        row['revenue'] = units * price
        rows.append(row)

        population[t] = state
        advertiser[t] = by_brand['advertiser']
        competitor[t] = by_brand['competitor']

    observed = pd.DataFrame(rows)

    segments = index.frame()
    full = pd.concat([segments] * n_steps, ignore_index=True)
    full.insert(0, 'time', np.repeat(np.arange(n_steps), n_segments))
    full['population'] = population.ravel()
    full['sales'] = advertiser.ravel()
    full['competitor_sales'] = competitor.ravel()

    logger.info("Simulation done: total revenue %.2f, total spend %.2f",
                observed['revenue'].sum(),
                sum(observed[f'{name}_spend'].sum() for name in config.media_names))

    return SimulationRecord(observed=observed, full=full, config=config, seed=engine.seed)


def run(horizon: int,
        initial_state: Optional[np.ndarray],
        natural_migration_config: NaturalMigrationConfig,
        media_module_configs: Iterable[MediaConfig],
        sales_config: SalesConfig,
        seed: Optional[int] = None) -> SimulationRecord:
    """
    Build a SimulationConfig from its parts and run it.

    Parameters
    ----------
    horizon : int
        Number of time steps
    initial_state : np.ndarray, optional
        Population by segment at the start; derived from the initial shares
        when None
    natural_migration_config : NaturalMigrationConfig
        Population size and natural dynamics
    media_module_configs : iterable of MediaConfig
        Media, in the order their effects are applied
    sales_config : SalesConfig
        Demand and competition parameters
    seed : int, optional
        Seed of the run

    Returns
    -------
    SimulationRecord
    """
    config = SimulationConfig(
        n_steps=horizon,
        natural_migration=natural_migration_config,
        media=list(media_module_configs),
        sales=sales_config,
        initial_state=initial_state
    )
    return simulate(config, seed=seed)
