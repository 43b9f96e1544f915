"""
Latent consumer-mindset dimensions and the process-wide segment index.

The population is described by six ordered dimensions. A segment is one
combination of states across all of them. Only 198 of the 540 grid cells
are logically valid; the rest carry structurally zero mass:

1. activity other than 'inactive' requires 'in' market and 'unsatiated'
2. 'unaware' consumers are always 'switcher'
3. 'loyal' consumers are at least 'somewhat_favorable'

Operators act on the full grid (one axis per dimension) and the result is
folded back onto valid cells with `SegmentIndex.project`.
"""

import itertools
from collections import OrderedDict
from functools import lru_cache, reduce
from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError


DIMENSIONS = OrderedDict([
    ('market', ('out', 'in')),
    ('satiation', ('satiated', 'unsatiated')),
    ('activity', ('inactive', 'exploration', 'purchase')),
    ('favorability', ('unaware', 'negative', 'neutral',
                      'somewhat_favorable', 'favorable')),
    ('loyalty', ('switcher', 'loyal', 'competitor_loyal')),
    ('availability', ('low', 'average', 'high')),
])

DIMENSION_NAMES = tuple(DIMENSIONS)
GRID_SHAPE = tuple(len(states) for states in DIMENSIONS.values())

_MARKET_IN = DIMENSIONS['market'].index('in')
_UNSATIATED = DIMENSIONS['satiation'].index('unsatiated')
_INACTIVE = DIMENSIONS['activity'].index('inactive')
_UNAWARE = DIMENSIONS['favorability'].index('unaware')
_SOMEWHAT_FAVORABLE = DIMENSIONS['favorability'].index('somewhat_favorable')
_SWITCHER = DIMENSIONS['loyalty'].index('switcher')
_LOYAL = DIMENSIONS['loyalty'].index('loyal')


def axis_of(dimension: str) -> int:
    """Return the grid axis of a dimension."""
    try:
        return DIMENSION_NAMES.index(dimension)
    except ValueError:
        raise ConfigurationError(
            f"Unknown dimension '{dimension}'. Expected one of {DIMENSION_NAMES}"
        ) from None


def state_code(dimension: str, state: str) -> int:
    """Return the ordinal code of a named state within its dimension."""
    states = DIMENSIONS[DIMENSION_NAMES[axis_of(dimension)]]
    try:
        return states.index(state)
    except ValueError:
        raise ConfigurationError(
            f"Unknown state '{state}' for dimension '{dimension}'. "
            f"Expected one of {states}"
        ) from None


def _canonical(codes: Sequence[int]) -> Tuple[int, ...]:
    market, satiation, activity, favorability, loyalty, availability = codes

    if activity != _INACTIVE and (market != _MARKET_IN or satiation != _UNSATIATED):
        activity = _INACTIVE
    if favorability == _UNAWARE and loyalty != _SWITCHER:
        loyalty = _SWITCHER
    if loyalty == _LOYAL and favorability < _SOMEWHAT_FAVORABLE:
        loyalty = _SWITCHER

    return market, satiation, activity, favorability, loyalty, availability


class SegmentIndex:
    """
    Immutable lookup table between valid segments and the dimension grid.

    Attributes
    ----------
    n_segments : int
        Number of valid segments (198)
    n_cells : int
        Number of grid cells (540)
    valid_mask : np.ndarray
        Boolean grid marking valid cells
    codes : np.ndarray
        State codes of each valid segment, shape (n_segments, 6)
    flat_index : np.ndarray
        Flat grid position of each valid segment
    canonical : np.ndarray
        For every flat grid position, the flat position of the valid cell
        its mass is folded into
    """

    def __init__(self):
        grid = np.array(list(itertools.product(*(range(n) for n in GRID_SHAPE))))
        canonical = np.array([_canonical(c) for c in grid])
        valid = np.all(canonical == grid, axis=1)

        self.n_cells = grid.shape[0]
        self.valid_mask = valid.reshape(GRID_SHAPE)
        self.flat_index = np.flatnonzero(valid)
        self.codes = grid[valid]
        self.canonical = np.ravel_multi_index(tuple(canonical.T), GRID_SHAPE)
        self.n_segments = len(self.flat_index)

        for array in (self.valid_mask, self.flat_index, self.codes, self.canonical):
            array.setflags(write=False)

    def __repr__(self):
        return f"SegmentIndex(n_segments={self.n_segments}, n_cells={self.n_cells})"

    def to_tensor(self, vector: np.ndarray) -> np.ndarray:
        """Scatter a segment vector onto the dimension grid."""
        vector = np.asarray(vector, dtype=float)
        if vector.shape != (self.n_segments,):
            raise ConfigurationError(
                f"State vector must have shape ({self.n_segments},), got {vector.shape}"
            )
        tensor = np.zeros(self.n_cells)
        tensor[self.flat_index] = vector
        return tensor.reshape(GRID_SHAPE)

    def to_vector(self, tensor: np.ndarray) -> np.ndarray:
        """Gather the valid cells of a grid into a segment vector."""
        return np.asarray(tensor, dtype=float).reshape(-1)[self.flat_index]

    def project(self, tensor: np.ndarray) -> np.ndarray:
        """Fold mass held by invalid cells into their canonical valid cells."""
        folded = np.bincount(
            self.canonical,
            weights=np.asarray(tensor, dtype=float).reshape(-1),
            minlength=self.n_cells
        )
        return folded.reshape(GRID_SHAPE)

    def codes_of(self, dimension: str) -> np.ndarray:
        """State code of every segment along one dimension."""
        return self.codes[:, axis_of(dimension)]

    def mask(self, **conditions: Union[str, Sequence[str]]) -> np.ndarray:
        """
        Boolean segment vector selecting segments by state names.

        Examples
        --------
        >>> index = get_segment_index()
        >>> int(index.mask(activity='purchase').sum())
        33
        >>> int(index.mask(loyalty=['loyal', 'competitor_loyal']).sum())
        108
        """
        selected = np.ones(self.n_segments, dtype=bool)
        for dimension, states in conditions.items():
            if isinstance(states, str):
                states = [states]
            codes = [state_code(dimension, s) for s in states]
            selected &= np.isin(self.codes_of(dimension), codes)
        return selected

    def product(self, factors: Optional[Mapping[str, Sequence[float]]] = None) -> np.ndarray:
        """
        Per-segment product of per-dimension factors.

        Dimensions missing from `factors` contribute a factor of 1.
        """
        result = np.ones(self.n_segments)
        for dimension, values in (factors or {}).items():
            values = np.asarray(values, dtype=float)
            result = result * values[self.codes_of(dimension)]
        return result

    def from_shares(self, shares: Mapping[str, Sequence[float]], total: float) -> np.ndarray:
        """
        Segment vector with `total` mass distributed as the product of
        per-dimension marginal shares, projected onto valid segments.
        """
        missing = [d for d in DIMENSION_NAMES if d not in shares]
        if missing:
            raise ConfigurationError(f"Missing shares for dimensions: {missing}")
        marginals = [np.asarray(shares[d], dtype=float) for d in DIMENSION_NAMES]
        joint = reduce(np.multiply.outer, marginals)
        return total * self.to_vector(self.project(joint))

    def frame(self) -> pd.DataFrame:
        """One row per segment with an ordered categorical column per dimension."""
        df = pd.DataFrame({'segment': np.arange(self.n_segments)})
        for axis, (dimension, states) in enumerate(DIMENSIONS.items()):
            df[dimension] = pd.Categorical.from_codes(
                self.codes[:, axis], categories=list(states), ordered=True
            )
        return df


@lru_cache(maxsize=None)
def get_segment_index() -> SegmentIndex:
    """Get the shared segment index, building it on first use."""
    return SegmentIndex()
