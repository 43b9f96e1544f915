"""
Media modules.

A media module turns a budget into observed spend and volume and into a
transition perturbation of the population for one time step. There are two
variants behind one interface:

- TraditionalMedia: reach-based (TV, radio, print). Spend follows the
  flighting pattern; reach follows a Hill curve of per-capita exposure.
- SearchMedia: auction-based paid search. Spend follows query volume,
  keyword match, click-through and cost per click, capped per step.

Both express their effect as a full-effect transition mixed with the
identity by a per-segment reach in [0, 1].
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, NamedTuple, Tuple

import numpy as np

from .config import MediaConfig, SearchMediaConfig, SimulationConfig, TraditionalMediaConfig
from .errors import ConfigurationError
from .states import get_segment_index
from .transformations import hill_transform
from .transition import MediaPerturbation, TransitionOperator

logger = logging.getLogger(__name__)


class MediaStep(NamedTuple):
    """Output of one media module for one time step."""
    spend: float
    volume: Dict[str, float]
    perturbation: MediaPerturbation


class MediaModule(ABC):
    """
    Base class for media modules.

    Parameters
    ----------
    config : MediaConfig
        Validated media configuration
    population_total : float
        Initial population size, used to express budgets per capita
    """

    volume_metrics: Tuple[str, ...] = ()

    def __init__(self, config: MediaConfig, population_total: float):
        self.config = config
        self.name = config.name
        self.population_total = population_total
        self.effect = TransitionOperator(config.transition_matrices, name=config.name)

    def period_of(self, t: int) -> int:
        """Budget-period id of step t."""
        return int(self.config.budget_index[t])

    def budget_for(self, t: int) -> float:
        """Budget of the period containing step t."""
        period = self.period_of(t)
        if period >= self.config.n_periods:
            raise ConfigurationError(
                f"Media '{self.name}': step {t} maps to period {period} with no budget entry"
            )
        return float(self.config.budget[period])

    @abstractmethod
    def step(self, t: int, state: np.ndarray, rng: np.random.Generator) -> MediaStep:
        """
        Compute spend, volume and the transition perturbation for step t.

        Parameters
        ----------
        t : int
            Time step
        state : np.ndarray
            Pre-transition population by segment
        rng : np.random.Generator
            Random stream of the run

        Returns
        -------
        MediaStep
            (spend, volume metrics, perturbation)
        """

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


class TraditionalMedia(MediaModule):
    """Reach-based media with flighting and a Hill reach curve."""

    volume_metrics = ('impressions', 'reach')

    def __init__(self, config: TraditionalMediaConfig, population_total: float):
        super().__init__(config, population_total)
        index = get_segment_index()
        self.membership = index.product(config.audience)

        budget_index = config.budget_index
        flighting = config.flighting
        if flighting is None:
            flighting = np.ones(len(budget_index))

        # Share of its period budget spent at each step
        period_weight = np.bincount(budget_index, weights=flighting, minlength=config.n_periods)
        step_weight = period_weight[budget_index]
        self.step_share = np.divide(
            flighting, step_weight,
            out=np.zeros(len(flighting)), where=step_weight > 0
        )

        dark = np.flatnonzero((period_weight == 0) & (config.budget > 0))
        if len(dark):
            logger.warning(
                "Media '%s': periods %s have budget but zero flighting; nothing is spent",
                self.name, dark.tolist()
            )

    def step(self, t: int, state: np.ndarray, rng: np.random.Generator) -> MediaStep:
        spend = self.budget_for(t) * self.step_share[t]
        impressions = 1000.0 * spend / self.config.cpm

        audience = float(np.dot(self.membership, state))
        exposure = impressions / audience if audience > 0 else 0.0
        multiplier = float(hill_transform(exposure, self.config.half_saturation, self.config.slope))
        reach = self.membership * multiplier

        volume = {
            'impressions': impressions,
            'reach': float(np.dot(reach, state)),
        }
        return MediaStep(spend, volume, MediaPerturbation(self.effect, reach, self.name))


class SearchMedia(MediaModule):
    """
    Paid search driven by queries and a second-price style auction.

    Parameters
    ----------
    config : SearchMediaConfig
        Validated search configuration
    population_total : float
        Initial population size
    per_capita_budget : np.ndarray
        Per-capita budget of every step, passed to the pluggable functions
    """

    volume_metrics = ('queries', 'impressions', 'clicks', 'cpc')

    def __init__(self, config: SearchMediaConfig, population_total: float,
                 per_capita_budget: np.ndarray):
        super().__init__(config, population_total)
        index = get_segment_index()
        self.caps, self.bids, self.match = config.evaluate_functions(per_capita_budget)
        self.query_rate = index.product(config.query_rate)
        self.ctr = np.minimum(config.base_ctr * index.product(config.ctr_modifiers), 1.0)

    def _auction(self, bid: float, u: float) -> Tuple[float, float]:
        """Impression share won and cost per click for a bid."""
        lo, hi = self.config.cpc_min, self.config.cpc_max
        if hi > lo:
            share = float(np.clip((bid - lo) / (hi - lo), 0.0, 1.0))
        else:
            share = 1.0 if bid >= lo else 0.0
        if share == 0.0:
            return 0.0, 0.0
        return share, lo + u * (min(bid, hi) - lo)

    def step(self, t: int, state: np.ndarray, rng: np.random.Generator) -> MediaStep:
        # Always consume one draw so baseline and counterfactual stay in sync
        share, cpc = self._auction(self.bids[t], rng.random())

        queries = state * self.query_rate
        impressions = queries * self.match[t] * share
        clicks = impressions * self.ctr
        spend = float(clicks.sum() * cpc)

        cap = self.caps[t] * self.population_total
        if spend > cap:
            scale = cap / spend
            impressions = impressions * scale
            clicks = clicks * scale
            spend = float(cap)

        zeros = np.zeros_like(state)
        populated = state > 0
        organic = np.divide(queries - impressions, state, out=zeros.copy(), where=populated)
        paid_view = np.divide(impressions - clicks, state, out=zeros.copy(), where=populated)
        paid_click = np.divide(clicks, state, out=zeros.copy(), where=populated)

        r_organic, r_view, r_click = self.config.relative_effectiveness
        reach = np.clip(r_organic * organic + r_view * paid_view + r_click * paid_click, 0.0, 1.0)

        volume = {
            'queries': float(queries.sum()),
            'impressions': float(impressions.sum()),
            'clicks': float(clicks.sum()),
            'cpc': cpc,
        }
        return MediaStep(spend, volume, MediaPerturbation(self.effect, reach, self.name))


def build_media(config: SimulationConfig) -> List[MediaModule]:
    """Instantiate the media modules of a simulation, in configuration order."""
    population_total = config.natural_migration.population_total
    modules = []
    for media in config.media:
        if isinstance(media, TraditionalMediaConfig):
            modules.append(TraditionalMedia(media, population_total))
        elif isinstance(media, SearchMediaConfig):
            modules.append(SearchMedia(media, population_total, config.per_capita_budget(media.name)))
        else:
            raise ConfigurationError(f"Unsupported media configuration: {type(media).__name__}")
    return modules
