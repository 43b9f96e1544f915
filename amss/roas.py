"""
Ground-truth ROAS and marginal ROAS by counterfactual simulation.

For a finished simulation, the effectiveness of one or more media over a
time window is measured by re-running the same configuration with the
media budgets scaled by `budget_proportion` over the budget periods that
overlap the window:

    ROAS = (revenue_baseline - revenue_counterfactual)
           / (spend_baseline - spend_counterfactual)

Baseline and counterfactual of a replicate share the same seed, so random
draws cancel out of the difference. Replicates are added in batches until
the sample mean is precise enough or the time budget runs out.

- budget_proportion = 0 gives the average ROAS of the media
- budget_proportion close to 1 (default 0.99 in `calculate_mroas`) gives
  the marginal ROAS at the current budget
"""

import enum
import logging
import time
import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
from joblib import Parallel, delayed
from scipy import stats

from .config import SimulationConfig
from .errors import ConfigurationError, PrecisionNotMetWarning
from .settings import get_settings
from .simulation import SimulationRecord, simulate

logger = logging.getLogger(__name__)

CONFIDENCE = 0.95
SPEND_TOL = 1e-9


class EstimatorState(enum.Enum):
    INIT = 'init'
    SAMPLING = 'sampling'
    CONVERGED = 'converged'
    TIMED_OUT = 'timed_out'


@dataclass
class ROASResult:
    """
    Estimate and sampling diagnostics.

    Attributes
    ----------
    mean : float
        Sample mean of the replicate ROAS values
    sample : np.ndarray
        Replicate ROAS values in completion order
    margin_of_error : float
        Half-width of the 95% normal confidence interval of the mean
    coefficient_of_variation : float
        Standard error over absolute mean
    converged : bool
        Whether a precision target was met
    state : EstimatorState
        Final estimator state
    n_reps : int
        Number of replicates
    elapsed : float
        Wall time in seconds
    """
    mean: float
    sample: np.ndarray
    margin_of_error: float
    coefficient_of_variation: float
    converged: bool
    state: EstimatorState
    n_reps: int
    elapsed: float


def _replicate(baseline: SimulationConfig,
               counterfactual: SimulationConfig,
               media_names: Sequence[str],
               seed: int,
               t_start: int,
               t_end: int,
               revenue_end: int) -> float:
    """Run one baseline/counterfactual pair with a shared seed and return its ROAS."""
    base = simulate(baseline, seed=seed)
    alt = simulate(counterfactual, seed=seed)

    base_spend = base.spend(media_names, t_start, t_end)
    delta_spend = base_spend - alt.spend(media_names, t_start, t_end)
    if abs(delta_spend) <= SPEND_TOL * max(abs(base_spend), 1.0):
        raise ConfigurationError(
            f"Spend of {list(media_names)} over steps {t_start}-{t_end} does not change "
            f"in the counterfactual (seed={seed}); ROAS is undefined"
        )
    delta_revenue = base.revenue(t_start, revenue_end) - alt.revenue(t_start, revenue_end)
    return delta_revenue / delta_spend


class ROASEstimator:
    """
    Monte Carlo estimator of ROAS for a set of media over a time window.

    Parameters
    ----------
    record : SimulationRecord
        Baseline simulation whose configuration is re-run
    media_names : str or sequence of str
        Media whose budgets are scaled jointly
    t_start, t_end : int, optional
        Inclusive measurement window; defaults to the whole horizon
    budget_proportion : float
        Counterfactual budget as a fraction of the baseline budget, in
        [0, 2] and different from 1
    min_reps : int, optional
        Replicates per batch and minimum sample size
    max_time : float, optional
        Wall-time budget in seconds, checked between batches
    target_margin : float, optional
        Target 95% margin of error of the mean
    target_cv : float, optional
        Target coefficient of variation of the mean
    include_carryover : bool
        Measure revenue through the end of the horizon instead of only the
        window, to capture lagged effects
    n_jobs : int, optional
        joblib workers per batch
    seed : int, optional
        Seed of the generator that draws replicate seeds

    Defaults of min_reps, max_time, target_margin, target_cv and n_jobs come
    from `get_settings().roas`. Once the estimator reaches a terminal state,
    `run` returns the same result without sampling further.
    """

    def __init__(self,
                 record: SimulationRecord,
                 media_names: Union[str, Sequence[str]],
                 t_start: Optional[int] = None,
                 t_end: Optional[int] = None,
                 budget_proportion: float = 0.0,
                 min_reps: Optional[int] = None,
                 max_time: Optional[float] = None,
                 target_margin: Optional[float] = None,
                 target_cv: Optional[float] = None,
                 include_carryover: bool = False,
                 n_jobs: Optional[int] = None,
                 seed: Optional[int] = None):
        defaults = get_settings().roas
        self.state = EstimatorState.INIT
        self.record = record
        self.media_names = [media_names] if isinstance(media_names, str) else list(media_names)
        self.budget_proportion = budget_proportion
        self.min_reps = defaults.min_reps if min_reps is None else min_reps
        self.max_time = defaults.max_time if max_time is None else max_time
        self.target_margin = defaults.target_margin if target_margin is None else target_margin
        self.target_cv = defaults.target_cv if target_cv is None else target_cv
        self.n_jobs = defaults.n_jobs if n_jobs is None else n_jobs
        self.include_carryover = include_carryover
        self.rng = np.random.default_rng(seed)

        config = record.config
        self.t_start = 0 if t_start is None else int(t_start)
        self.t_end = config.n_steps - 1 if t_end is None else int(t_end)
        self._validate()

        self.baseline = config
        self.counterfactual = config.with_budget_scaled(
            self.media_names, budget_proportion, self._overlapping_periods()
        )
        self.sample: List[float] = []
        self.result: Optional[ROASResult] = None

    def _validate(self):
        config = self.record.config
        if not self.media_names:
            raise ConfigurationError("At least one media name is required")
        unknown = [name for name in self.media_names if name not in config.media_names]
        if unknown:
            raise ConfigurationError(f"Unknown media {unknown}. Available: {config.media_names}")
        if not 0 <= self.t_start <= self.t_end < config.n_steps:
            raise ConfigurationError(
                f"Invalid window [{self.t_start}, {self.t_end}] for a horizon of {config.n_steps} steps"
            )
        if not 0 <= self.budget_proportion <= 2:
            raise ConfigurationError(
                f"budget_proportion must be in [0, 2], got {self.budget_proportion}"
            )
        if self.budget_proportion == 1:
            raise ConfigurationError("budget_proportion of 1 leaves spend unchanged")
        if self.min_reps < 2:
            raise ConfigurationError(f"min_reps must be at least 2, got {self.min_reps}")
        if self.max_time <= 0:
            raise ConfigurationError(f"max_time must be positive, got {self.max_time}")

    def _overlapping_periods(self) -> Dict[str, List[int]]:
        """Budget periods of each media that share at least one step with the window."""
        config = self.record.config
        periods = {}
        for name in self.media_names:
            budget_index = config.get_media(name).budget_index
            inside = np.unique(budget_index[self.t_start:self.t_end + 1])
            outside = np.concatenate([budget_index[:self.t_start], budget_index[self.t_end + 1:]])
            cut = np.intersect1d(inside, outside)
            if len(cut):
                logger.warning(
                    "Media '%s': window [%d, %d] cuts through budget periods %s; "
                    "their whole budget is scaled but spend is measured in the window only",
                    name, self.t_start, self.t_end, cut.tolist()
                )
            periods[name] = inside.tolist()
        return periods

    def _batch(self, n: int) -> List[float]:
        seeds = self.rng.integers(0, 2**32, size=n)
        revenue_end = self.record.config.n_steps - 1 if self.include_carryover else self.t_end
        return Parallel(n_jobs=self.n_jobs)(
            delayed(_replicate)(
                self.baseline, self.counterfactual, self.media_names,
                int(s), self.t_start, self.t_end, revenue_end
            )
            for s in seeds
        )

    def _statistics(self):
        sample = np.asarray(self.sample)
        mean = float(sample.mean())
        se = float(sample.std(ddof=1)) / np.sqrt(len(sample))
        margin = float(stats.norm.ppf(0.5 + CONFIDENCE / 2) * se)
        cv = se / abs(mean) if mean != 0 else (0.0 if se == 0 else np.inf)
        return mean, margin, cv

    def run(self) -> ROASResult:
        """
        Sample replicates until a precision target is met or time runs out.

        Returns
        -------
        ROASResult
            Estimate and diagnostics

        Warns
        -----
        PrecisionNotMetWarning
            If the time budget ran out before either precision target was met
        """
        if self.result is not None:
            return self.result

        start = time.perf_counter()
        self.state = EstimatorState.SAMPLING
        logger.info(
            "Estimating ROAS of %s over [%d, %d] at budget proportion %.3f",
            self.media_names, self.t_start, self.t_end, self.budget_proportion
        )

        while True:
            self.sample.extend(self._batch(self.min_reps))
            mean, margin, cv = self._statistics()
            elapsed = time.perf_counter() - start
            logger.info(
                "%d replicates: mean=%.4f, margin=%.4f, cv=%.4f (%.1fs)",
                len(self.sample), mean, margin, cv, elapsed
            )

            if margin <= self.target_margin or cv <= self.target_cv:
                self.state = EstimatorState.CONVERGED
                break
            if elapsed > self.max_time:
                self.state = EstimatorState.TIMED_OUT
                warnings.warn(PrecisionNotMetWarning(mean, margin, cv, len(self.sample)), stacklevel=2)
                break

        self.result = ROASResult(
            mean=mean,
            sample=np.array(self.sample),
            margin_of_error=margin,
            coefficient_of_variation=cv,
            converged=self.state is EstimatorState.CONVERGED,
            state=self.state,
            n_reps=len(self.sample),
            elapsed=time.perf_counter() - start
        )
        return self.result


def calculate_roas(record: SimulationRecord,
                   media_names: Union[str, Sequence[str]],
                   t_start: Optional[int] = None,
                   t_end: Optional[int] = None,
                   budget_proportion: float = 0.0,
                   verbose: bool = False,
                   **kwargs) -> Union[float, ROASResult]:
    """
    Estimate the ROAS of some media over a time window.

    Parameters
    ----------
    record : SimulationRecord
        Baseline simulation
    media_names : str or sequence of str
        Media to evaluate jointly
    t_start, t_end : int, optional
        Inclusive window; the whole horizon by default
    budget_proportion : float, default=0.0
        Counterfactual budget fraction; 0 removes the media entirely
    verbose : bool, default=False
        Return the full ROASResult instead of the mean
    **kwargs
        Passed to ROASEstimator (min_reps, max_time, target_margin,
        target_cv, include_carryover, n_jobs, seed)

    Returns
    -------
    float or ROASResult

    Examples
    --------
    >>> record = simulate(config, seed=1)
    >>> calculate_roas(record, 'tv', t_start=52, t_end=103, seed=7)
    """
    estimator = ROASEstimator(record, media_names, t_start, t_end,
                              budget_proportion=budget_proportion, **kwargs)
    result = estimator.run()
    return result if verbose else result.mean


def calculate_mroas(record: SimulationRecord,
                    media_names: Union[str, Sequence[str]],
                    t_start: Optional[int] = None,
                    t_end: Optional[int] = None,
                    budget_proportion: float = 0.99,
                    verbose: bool = False,
                    **kwargs) -> Union[float, ROASResult]:
    """Marginal ROAS: `calculate_roas` with a small budget cut (1% by default)."""
    return calculate_roas(record, media_names, t_start, t_end,
                          budget_proportion=budget_proportion, verbose=verbose, **kwargs)
