"""
Population engine: advances the segment state one time step at a time.

Per step:

1. every media module resolves its budget and computes spend, volume and
   its perturbation from the pre-transition state
2. natural migration and the media perturbations are composed, natural
   migration first, then media in registration order
3. the composed operator is applied to the state
4. market entry/exit moves the population to the step's market size:
   entrants follow the entry shares, exits are proportional
5. the new state and a record of the step are returned

Each step depends only on the previous state, the step index, the static
configuration and the run's seed; the random stream of step t is derived
from (seed, t).
"""

import logging
from typing import Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .config import SimulationConfig
from .media import MediaModule, build_media
from .states import get_segment_index
from .transition import TransitionOperator, apply, compose

logger = logging.getLogger(__name__)


class StepRecord(NamedTuple):
    """Inputs and outputs of one population step."""
    t: int
    spend: Dict[str, float]
    volume: Dict[str, Dict[str, float]]
    order: Tuple[str, ...]
    mass_before: float
    net_flow: float


class PopulationEngine:
    """
    Owns the natural migration operator, the media modules and the
    entry/exit rule of one simulation.

    Parameters
    ----------
    config : SimulationConfig
        Validated simulation configuration
    seed : int, optional
        Seed of the run. A fresh one is drawn when omitted and exposed as
        `self.seed`
    media : sequence of MediaModule, optional
        Pre-built media modules; built from `config` when omitted
    """

    def __init__(self, config: SimulationConfig, seed: Optional[int] = None,
                 media: Optional[Sequence[MediaModule]] = None):
        self.config = config
        self.seed = np.random.SeedSequence(seed).entropy
        self.media = list(media) if media is not None else build_media(config)

        natural = config.natural_migration
        self.natural = TransitionOperator(natural.transition_matrices, name='natural')
        self.entry_shares = get_segment_index().from_shares(natural.resolved_entry_shares, 1.0)
        if natural.market_size is not None:
            self.market_size = natural.market_size
        else:
            self.market_size = np.full(config.n_steps, natural.population_total)

    def initial_state(self) -> np.ndarray:
        """Population by segment before the first step."""
        if self.config.initial_state is not None:
            return np.array(self.config.initial_state)
        natural = self.config.natural_migration
        return get_segment_index().from_shares(natural.initial_shares, natural.population_total)

    def rng_for(self, t: int) -> np.random.Generator:
        """Random stream of step t."""
        return np.random.default_rng(np.random.SeedSequence(self.seed, spawn_key=(t,)))

    def step(self, state: np.ndarray, t: int) -> Tuple[np.ndarray, StepRecord]:
        """
        Advance the population by one step.

        Parameters
        ----------
        state : np.ndarray
            Population by segment at the start of step t
        t : int
            Time step

        Returns
        -------
        new_state : np.ndarray
            Population by segment at the end of step t (a new array)
        record : StepRecord
            Spend, volume, composition order and entry/exit flow
        """
        rng = self.rng_for(t)
        outputs = [module.step(t, state, rng) for module in self.media]

        operator = compose(self.natural, *(out.perturbation for out in outputs))
        mass_before = float(state.sum())
        new_state = apply(operator, state)

        target = float(self.market_size[t])
        net_flow = target - float(new_state.sum())
        if net_flow > 0:
            new_state = new_state + net_flow * self.entry_shares
        elif net_flow < 0:
            total = new_state.sum()
            new_state = new_state * (target / total) if total > 0 else np.zeros_like(new_state)

        record = StepRecord(
            t=t,
            spend={m.name: out.spend for m, out in zip(self.media, outputs)},
            volume={m.name: out.volume for m, out in zip(self.media, outputs)},
            order=operator.order,
            mass_before=mass_before,
            net_flow=net_flow,
        )
        logger.debug("Step %d: population %.1f, net flow %.3f", t, target, net_flow)
        return new_state, record
