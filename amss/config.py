"""
Structured simulation configuration.

Every model forbids unknown keys, is frozen after construction, and turns
any validation failure into a ConfigurationError. Numeric series and
matrices are stored as read-only float arrays.

The bundle consumed by the simulation driver is `SimulationConfig`:

- natural_migration : NaturalMigrationConfig
- media : list of TraditionalMediaConfig / SearchMediaConfig (order matters:
  it is the order media effects are applied within a step)
- sales : SalesConfig
"""

from typing import Annotated, Callable, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError
from .states import DIMENSIONS, GRID_SHAPE, axis_of, get_segment_index
from .transition import validate_stochastic


DEFAULT_INITIAL_SHARES = {
    'market': (0.4, 0.6),
    'satiation': (0.3, 0.7),
    'activity': (0.6, 0.3, 0.1),
    'favorability': (0.3, 0.1, 0.3, 0.2, 0.1),
    'loyalty': (0.8, 0.1, 0.1),
    'availability': (0.2, 0.6, 0.2),
}

SHARE_TOL = 1e-8


def _array(value, name: str, ndim: int = 1, nonnegative: bool = True) -> np.ndarray:
    try:
        arr = np.array(value, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{name}' must be numeric") from exc
    if arr.ndim != ndim:
        raise ConfigurationError(f"'{name}' must be {ndim}-dimensional, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"'{name}' has non-finite values")
    if nonnegative and np.any(arr < 0):
        raise ConfigurationError(f"'{name}' has negative values")
    arr.setflags(write=False)
    return arr


def _dimension_vectors(value, name: str, upper: Optional[float] = None) -> Dict[str, np.ndarray]:
    """Validate a mapping of dimension name -> per-state vector."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"'{name}' must map dimension names to vectors")

    vectors = {}
    for dimension, vector in value.items():
        n_states = GRID_SHAPE[axis_of(dimension)]
        arr = _array(vector, f"{name}['{dimension}']")
        if arr.shape != (n_states,):
            raise ConfigurationError(
                f"'{name}['{dimension}']' must have {n_states} entries, got {arr.shape[0]}"
            )
        if upper is not None and np.any(arr > upper):
            raise ConfigurationError(f"'{name}['{dimension}']' has values above {upper}")
        vectors[dimension] = arr
    return vectors


def _shares(value, name: str) -> Dict[str, np.ndarray]:
    shares = _dimension_vectors(value, name)
    for dimension, arr in shares.items():
        if abs(arr.sum() - 1.0) > SHARE_TOL:
            raise ConfigurationError(
                f"'{name}['{dimension}']' must sum to 1, got {arr.sum():.6f}"
            )
    return shares


def _matrices(value, name: str) -> Dict[str, np.ndarray]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"'{name}' must map dimension names to matrices")
    return {dimension: validate_stochastic(m, dimension) for dimension, m in value.items()}


class ConfigModel(BaseModel):
    """Base for configuration models: strict keys, frozen, ConfigurationError on failure."""
    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra='forbid',
        frozen=True
    )

    def __init__(self, **data):
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid {type(self).__name__}: {exc}") from exc


class NaturalMigrationConfig(ConfigModel):
    """
    Population size and natural (non-media) dynamics.

    Attributes
    ----------
    population_total : float
        Initial population size
    initial_shares : dict
        Dimension -> marginal share vector of the initial population.
        Missing dimensions use DEFAULT_INITIAL_SHARES
    transition_matrices : dict
        Dimension -> row-stochastic matrix of natural migration.
        Missing dimensions do not migrate
    market_size : np.ndarray, optional
        Target population per step. Differences from the current
        population enter or exit at the end of each step. Defaults to a
        constant `population_total`
    entry_shares : dict, optional
        Dimension -> share vector for new entrants. Missing dimensions use
        the initial shares
    """

    population_total: float = Field(gt=0)
    initial_shares: Dict[str, np.ndarray] = Field(default_factory=dict, validate_default=True)
    transition_matrices: Dict[str, np.ndarray] = Field(default_factory=dict)
    market_size: Optional[np.ndarray] = None
    entry_shares: Optional[Dict[str, np.ndarray]] = None

    @field_validator('initial_shares', mode='before')
    @classmethod
    def _check_initial_shares(cls, value):
        return {**_shares(DEFAULT_INITIAL_SHARES, 'initial_shares'),
                **_shares(value, 'initial_shares')}

    @field_validator('entry_shares', mode='before')
    @classmethod
    def _check_entry_shares(cls, value):
        return None if value is None else _shares(value, 'entry_shares')

    @field_validator('transition_matrices', mode='before')
    @classmethod
    def _check_matrices(cls, value):
        return _matrices(value, 'transition_matrices')

    @field_validator('market_size', mode='before')
    @classmethod
    def _check_market_size(cls, value):
        return None if value is None else _array(value, 'market_size')

    @property
    def resolved_entry_shares(self) -> Dict[str, np.ndarray]:
        return {**self.initial_shares, **(self.entry_shares or {})}


class MediaConfig(ConfigModel):
    """
    Fields shared by all media modules.

    Attributes
    ----------
    name : str
        Unique media name, used as column prefix in the output
    budget : np.ndarray
        Budget of each budget period
    budget_index : np.ndarray
        Budget-period id of every time step
    transition_matrices : dict
        Dimension -> full-effect transition for fully reached consumers
    """

    name: str = Field(min_length=1)
    budget: np.ndarray
    budget_index: np.ndarray
    transition_matrices: Dict[str, np.ndarray] = Field(default_factory=dict)

    @field_validator('budget', mode='before')
    @classmethod
    def _check_budget(cls, value):
        return _array(value, 'budget')

    @field_validator('budget_index', mode='before')
    @classmethod
    def _check_budget_index(cls, value):
        arr = _array(value, 'budget_index')
        if np.any(arr != np.round(arr)):
            raise ConfigurationError("'budget_index' must hold integer period ids")
        index = arr.astype(int)
        index.setflags(write=False)
        return index

    @field_validator('transition_matrices', mode='before')
    @classmethod
    def _check_matrices(cls, value):
        return _matrices(value, 'transition_matrices')

    @model_validator(mode='after')
    def _check_budget_map(self):
        if len(self.budget_index) and self.budget_index.max() >= len(self.budget):
            missing = sorted({int(p) for p in self.budget_index if p >= len(self.budget)})
            raise ConfigurationError(
                f"Media '{self.name}': budget periods {missing} have no budget entry"
            )
        return self

    @property
    def n_periods(self) -> int:
        return len(self.budget)

    def period_lengths(self) -> np.ndarray:
        """Number of time steps in each budget period."""
        return np.bincount(self.budget_index, minlength=self.n_periods)

    def per_step_budget(self) -> np.ndarray:
        """Period budget spread evenly over the steps of each period."""
        lengths = self.period_lengths()
        return self.budget[self.budget_index] / lengths[self.budget_index]

    def with_budget(self, budget: np.ndarray) -> 'MediaConfig':
        """Return a re-validated copy with a new per-period budget."""
        fields = {name: getattr(self, name) for name in type(self).model_fields}
        fields['budget'] = budget
        return type(self)(**fields)


class TraditionalMediaConfig(MediaConfig):
    """
    Reach-based media (TV, radio, print...).

    Attributes
    ----------
    flighting : np.ndarray, optional
        Non-negative weight per step. Within a budget period spend follows
        the weights and sums to the period budget. Defaults to flat
    cpm : float
        Cost per thousand impressions
    half_saturation : float
        Per-capita exposure at which half of the audience is reached
    slope : float
        Hill slope of the reach curve
    audience : dict
        Dimension -> membership probability per state. Missing dimensions
        contribute 1
    """

    kind: Literal['traditional'] = 'traditional'
    flighting: Optional[np.ndarray] = None
    cpm: float = Field(default=10.0, gt=0)
    half_saturation: float = Field(default=1.0, gt=0)
    slope: float = Field(default=1.0, gt=0)
    audience: Dict[str, np.ndarray] = Field(default_factory=dict)

    @field_validator('flighting', mode='before')
    @classmethod
    def _check_flighting(cls, value):
        return None if value is None else _array(value, 'flighting')

    @field_validator('audience', mode='before')
    @classmethod
    def _check_audience(cls, value):
        return _dimension_vectors(value, 'audience', upper=1.0)


def budget_spend_cap(t: int, per_capita_budget: float, period: int) -> float:
    """Default spend cap: never spend more than the per-step budget."""
    return per_capita_budget


def full_match(t: int, per_capita_budget: float, period: int) -> float:
    """Default keyword function: every query matches."""
    return 1.0


class SearchMediaConfig(MediaConfig):
    """
    Auction-based paid search.

    The three pluggable functions take (time step, per-capita budget,
    budget-period id). They are evaluated over the whole horizon when the
    enclosing SimulationConfig is built.

    Attributes
    ----------
    query_rate : dict
        Dimension -> queries per consumer per step factors
    base_ctr : float
        Click-through rate before modifiers
    ctr_modifiers : dict
        Dimension -> multiplicative CTR factors
    cpc_min, cpc_max : float
        Range of the auction cost per click
    spend_cap_fn : callable
        Per-capita spend ceiling per step (may return inf)
    bid_fn : callable, optional
        Bid per click; defaults to `cpc_max`
    kw_fn : callable
        Keyword match rate in [0, 1], scalar or per-segment vector
    relative_effectiveness : tuple of float
        Effect strength of (organic result only, paid impression without
        click, paid click), non-decreasing in [0, 1]
    """

    kind: Literal['search'] = 'search'
    query_rate: Dict[str, np.ndarray] = Field(
        default_factory=lambda: {'activity': (0.0, 0.5, 1.0)}, validate_default=True
    )
    base_ctr: float = Field(default=0.05, gt=0, le=1)
    ctr_modifiers: Dict[str, np.ndarray] = Field(default_factory=dict)
    cpc_min: float = Field(default=0.5, gt=0)
    cpc_max: float = Field(default=1.5, gt=0)
    spend_cap_fn: Callable = budget_spend_cap
    bid_fn: Optional[Callable] = None
    kw_fn: Callable = full_match
    relative_effectiveness: Tuple[float, float, float] = (0.0, 0.1, 1.0)

    @field_validator('query_rate', mode='before')
    @classmethod
    def _check_query_rate(cls, value):
        return _dimension_vectors(value, 'query_rate')

    @field_validator('ctr_modifiers', mode='before')
    @classmethod
    def _check_ctr_modifiers(cls, value):
        return _dimension_vectors(value, 'ctr_modifiers')

    @field_validator('relative_effectiveness')
    @classmethod
    def _check_relative_effectiveness(cls, value):
        if any(not 0 <= v <= 1 for v in value):
            raise ConfigurationError("relative_effectiveness values must be in [0, 1]")
        if not value[0] <= value[1] <= value[2]:
            raise ConfigurationError(
                "relative_effectiveness must be non-decreasing: organic <= impression <= click"
            )
        return value

    @model_validator(mode='after')
    def _check_cpc_range(self):
        if self.cpc_min > self.cpc_max:
            raise ConfigurationError(
                f"Media '{self.name}': cpc_min ({self.cpc_min}) exceeds cpc_max ({self.cpc_max})"
            )
        return self

    def evaluate_functions(self, per_capita_budget: np.ndarray
                           ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Evaluate spend cap, bid and match rate at every step.

        Parameters
        ----------
        per_capita_budget : np.ndarray
            Per-capita budget of every step

        Returns
        -------
        caps : np.ndarray
            Per-capita spend cap per step (may contain inf)
        bids : np.ndarray
            Bid per step
        match : np.ndarray
            Match rate per step and segment, shape (n_steps, n_segments)

        Raises
        ------
        ConfigurationError
            If a function returns negative or non-finite values (an
            infinite spend cap is allowed) or a match rate outside [0, 1]
        """
        n_segments = get_segment_index().n_segments
        n_steps = len(per_capita_budget)
        caps = np.empty(n_steps)
        bids = np.empty(n_steps)
        match = np.empty((n_steps, n_segments))

        for t in range(n_steps):
            args = (t, float(per_capita_budget[t]), int(self.budget_index[t]))

            cap = float(self.spend_cap_fn(*args))
            if np.isnan(cap) or cap < 0 or cap == -np.inf:
                raise ConfigurationError(
                    f"Media '{self.name}': spend_cap_fn returned {cap} at step {t}"
                )

            bid = self.cpc_max if self.bid_fn is None else float(self.bid_fn(*args))
            if not np.isfinite(bid) or bid < 0:
                raise ConfigurationError(
                    f"Media '{self.name}': bid_fn returned {bid} at step {t}"
                )

            rate = np.asarray(self.kw_fn(*args), dtype=float)
            if rate.ndim == 0:
                rate = np.full(n_segments, float(rate))
            if rate.shape != (n_segments,):
                raise ConfigurationError(
                    f"Media '{self.name}': kw_fn must return a scalar or "
                    f"{n_segments} segment rates, got shape {rate.shape}"
                )
            if not np.all(np.isfinite(rate)) or np.any(rate < 0) or np.any(rate > 1):
                raise ConfigurationError(
                    f"Media '{self.name}': kw_fn returned match rates outside [0, 1] at step {t}"
                )

            caps[t], bids[t], match[t] = cap, bid, rate

        return caps, bids, match


MediaConfigType = Annotated[
    Union[TraditionalMediaConfig, SearchMediaConfig],
    Field(discriminator='kind')
]


class SalesConfig(ConfigModel):
    """
    Demand and competition parameters.

    Attributes
    ----------
    price : np.ndarray
        Advertiser price per step
    demand_intercept, demand_slope : np.ndarray
        Linear demand curve per favorability state: the potential share of
        purchasers wanting the advertiser's brand is
        clip(intercept + slope * price, 0, 1)
    availability_multiplier : np.ndarray
        Factor on potential demand per availability state
    competitor_max_share : np.ndarray
        Per loyalty state, share of purchasers wanting a competitor brand
    replacement_rate : np.ndarray
        Per loyalty state, share of contested purchasers won by the advertiser
    """

    price: np.ndarray
    demand_intercept: np.ndarray = Field(
        default_factory=lambda: np.array([0.0, 0.2, 0.5, 0.7, 0.9]), validate_default=True
    )
    demand_slope: np.ndarray = Field(
        default_factory=lambda: np.array([0.0, -0.01, -0.02, -0.02, -0.02]), validate_default=True
    )
    availability_multiplier: np.ndarray = Field(
        default_factory=lambda: np.array([0.6, 0.9, 1.0]), validate_default=True
    )
    competitor_max_share: np.ndarray = Field(
        default_factory=lambda: np.array([0.5, 0.1, 0.9]), validate_default=True
    )
    replacement_rate: np.ndarray = Field(
        default_factory=lambda: np.array([0.5, 0.9, 0.1]), validate_default=True
    )

    @field_validator('price', mode='before')
    @classmethod
    def _check_price(cls, value):
        arr = _array(value, 'price')
        if np.any(arr <= 0):
            raise ConfigurationError("'price' must be positive")
        return arr

    @field_validator('demand_intercept', 'demand_slope', mode='before')
    @classmethod
    def _check_demand_curve(cls, value, info):
        arr = _array(value, info.field_name, nonnegative=False)
        n_states = len(DIMENSIONS['favorability'])
        if arr.shape != (n_states,):
            raise ConfigurationError(
                f"'{info.field_name}' needs one value per favorability state ({n_states})"
            )
        return arr

    @field_validator('availability_multiplier', mode='before')
    @classmethod
    def _check_availability(cls, value):
        arr = _array(value, 'availability_multiplier')
        if arr.shape != (len(DIMENSIONS['availability']),):
            raise ConfigurationError("'availability_multiplier' needs one value per availability state")
        return arr

    @field_validator('competitor_max_share', 'replacement_rate', mode='before')
    @classmethod
    def _check_loyalty_rates(cls, value, info):
        arr = _array(value, info.field_name)
        if arr.shape != (len(DIMENSIONS['loyalty']),):
            raise ConfigurationError(f"'{info.field_name}' needs one value per loyalty state")
        if np.any(arr > 1):
            raise ConfigurationError(f"'{info.field_name}' values must be in [0, 1]")
        return arr


class SimulationConfig(ConfigModel):
    """
    Complete configuration of one simulation run.

    Examples
    --------
    >>> config = SimulationConfig(
    ...     n_steps=104,
    ...     natural_migration={'population_total': 1e6},
    ...     media=[TraditionalMediaConfig(name='tv', budget=[1e5, 1e5],
    ...                                   budget_index=np.arange(104) // 52)],
    ...     sales={'price': np.full(104, 10.0)},
    ... )
    """

    n_steps: int = Field(gt=0)
    natural_migration: NaturalMigrationConfig
    media: List[MediaConfigType] = Field(default_factory=list)
    sales: SalesConfig
    initial_state: Optional[np.ndarray] = None

    @field_validator('initial_state', mode='before')
    @classmethod
    def _check_initial_state(cls, value):
        if value is None:
            return None
        arr = _array(value, 'initial_state')
        n_segments = get_segment_index().n_segments
        if arr.shape != (n_segments,):
            raise ConfigurationError(f"'initial_state' must have {n_segments} entries")
        return arr

    @model_validator(mode='after')
    def _check_consistency(self):
        n = self.n_steps
        market_size = self.natural_migration.market_size
        if market_size is not None and len(market_size) != n:
            raise ConfigurationError(f"'market_size' has length {len(market_size)}, expected {n}")
        if len(self.sales.price) != n:
            raise ConfigurationError(f"'price' has length {len(self.sales.price)}, expected {n}")

        population_total = self.natural_migration.population_total
        if self.initial_state is not None and \
                not np.isclose(self.initial_state.sum(), population_total, rtol=1e-9, atol=0.0):
            raise ConfigurationError(
                f"'initial_state' holds {self.initial_state.sum():g} people, "
                f"but population_total is {population_total:g}"
            )

        names = [m.name for m in self.media]
        duplicates = sorted({x for x in names if names.count(x) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate media names: {duplicates}")

        for media in self.media:
            if len(media.budget_index) != n:
                raise ConfigurationError(
                    f"Media '{media.name}': budget_index has length "
                    f"{len(media.budget_index)}, expected {n}"
                )
            if isinstance(media, TraditionalMediaConfig) and media.flighting is not None \
                    and len(media.flighting) != n:
                raise ConfigurationError(
                    f"Media '{media.name}': flighting has length {len(media.flighting)}, expected {n}"
                )
            if isinstance(media, SearchMediaConfig):
                media.evaluate_functions(self.per_capita_budget(media.name))
        return self

    @property
    def media_names(self) -> List[str]:
        return [m.name for m in self.media]

    def get_media(self, name: str) -> MediaConfig:
        for media in self.media:
            if media.name == name:
                return media
        raise ConfigurationError(f"Unknown media '{name}'. Available: {self.media_names}")

    def per_capita_budget(self, name: str) -> np.ndarray:
        """Per-step budget of a media divided by the initial population."""
        return self.get_media(name).per_step_budget() / self.natural_migration.population_total

    def with_media_budgets(self, budgets: Mapping[str, np.ndarray]) -> 'SimulationConfig':
        """Return a re-validated copy with new per-period budgets for some media."""
        for name in budgets:
            self.get_media(name)
        media = [m.with_budget(budgets[m.name]) if m.name in budgets else m for m in self.media]
        return SimulationConfig(
            n_steps=self.n_steps,
            natural_migration=self.natural_migration,
            media=media,
            sales=self.sales,
            initial_state=self.initial_state
        )

    def with_budget_scaled(self, names: Sequence[str], factor: float,
                           periods: Optional[Mapping[str, Sequence[int]]] = None
                           ) -> 'SimulationConfig':
        """
        Return a copy with the budgets of some media multiplied by `factor`.

        Parameters
        ----------
        names : sequence of str
            Media whose budgets are scaled
        factor : float
            Multiplier applied to the selected periods
        periods : dict, optional
            Media name -> budget-period ids to scale. All periods of a media
            are scaled when it is missing
        """
        budgets = {}
        for name in names:
            budget = np.array(self.get_media(name).budget, dtype=float)
            selected = slice(None) if periods is None or name not in periods else list(periods[name])
            budget[selected] *= factor
            budgets[name] = budget
        return self.with_media_budgets(budgets)
