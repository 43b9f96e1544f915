"""
Sales module: converts the population state and price into unit sales.

Only segments in the 'purchase' activity state buy. For a segment of N
purchasers:

- advertiser potential share p_a = clip(intercept[fav] + slope[fav] * price, 0, 1)
  times the availability multiplier
- competitor potential share p_c = competitor_max_share[loyalty]
- contested purchasers (wanting both) = N * p_a * p_c
- advertiser sales = (N * p_a - contested) + r * contested
- competitor sales = (N * p_c - contested) + (1 - r) * contested

where r = replacement_rate[loyalty]. Advertiser sales never exceed N or the
advertiser potential demand N * p_a.

Examples
--------
100 purchasers, p_a = 1, p_c = 0.8, r = 0.5: contested = 80, advertiser
sells 20 + 0.5 * 80 = 60 and the competitor sells 0 + 0.5 * 80 = 40.
"""

import logging
import warnings
from typing import Dict, Tuple

import numpy as np

from .config import SalesConfig
from .errors import NumericalWarning
from .states import get_segment_index

logger = logging.getLogger(__name__)


class SalesModule:
    """
    Demand and competitive substitution rule.

    Parameters
    ----------
    config : SalesConfig
        Demand curve and competition parameters
    """

    def __init__(self, config: SalesConfig):
        index = get_segment_index()
        self.config = config
        self.purchasing = index.mask(activity='purchase')
        self._favorability = index.codes_of('favorability')

        loyalty = index.codes_of('loyalty')
        self.availability = config.availability_multiplier[index.codes_of('availability')]
        self.competitor_share = config.competitor_max_share[loyalty]
        self.replacement_rate = config.replacement_rate[loyalty]

    def potential_demand(self, price: float) -> np.ndarray:
        """Share of each segment's purchasers that would buy the advertiser's brand."""
        linear = (self.config.demand_intercept[self._favorability]
                  + self.config.demand_slope[self._favorability] * price)
        clipped = np.clip(linear, 0.0, 1.0)
        if np.any(clipped[self.purchasing] != linear[self.purchasing]):
            logger.debug("Demand curve clipped to [0, 1] at price %.4f", price)
            warnings.warn("Linear demand curve clipped to [0, 1]", NumericalWarning, stacklevel=2)
        return np.clip(clipped * self.availability, 0.0, 1.0)

    def sell(self, state: np.ndarray, price: float) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
        """
        Realize sales for one time step.

        Parameters
        ----------
        state : np.ndarray
            Post-transition population by segment
        price : float
            Advertiser price at this step

        Returns
        -------
        units_sold : np.ndarray
            Units sold by segment across both brands
        units_by_brand : dict
            'advertiser' and 'competitor' units by segment
        """
        purchasers = np.where(self.purchasing, np.asarray(state, dtype=float), 0.0)

        advertiser_potential = purchasers * self.potential_demand(price)
        competitor_potential = purchasers * self.competitor_share
        contested = advertiser_potential * self.competitor_share

        advertiser = (advertiser_potential - contested) + self.replacement_rate * contested
        competitor = (competitor_potential - contested) + (1 - self.replacement_rate) * contested

        units_by_brand = {'advertiser': advertiser, 'competitor': competitor}
        return advertiser + competitor, units_by_brand


def sell(state: np.ndarray, price: float,
         params: SalesConfig) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
    """Functional form of `SalesModule.sell`."""
    return SalesModule(params).sell(state, price)
