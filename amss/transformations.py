"""
Response curves and exogenous series helpers.

This module implements the saturating response curve used by reach-based
media and a few convenience generators for the numeric series a simulation
consumes (seasonality, budget-period maps, flighting patterns). The
simulator never depends on how such series were produced; these helpers
only make scenarios quicker to write.
"""

import numpy as np
from typing import Optional, Sequence, Union


def hill_transform(x: Union[float, np.ndarray], half_saturation: float,
                   slope: float) -> np.ndarray:
    """
    Apply Hill saturation to model diminishing returns of exposure.

    The Hill equation creates an S-shaped curve mapping exposure intensity
    to an effect multiplier in [0, 1]:

    f(x) = x^slope / (x^slope + half_saturation^slope)

    Parameters
    ----------
    x : float or np.ndarray
        Exposure intensity (should be non-negative), e.g. impressions per
        audience member
    half_saturation : float
        Input level at which the output reaches 0.5
    slope : float
        Shape parameter controlling steepness. slope=1 is concave,
        slope>1 is S-shaped

    Returns
    -------
    np.ndarray
        Effect multipliers in [0, 1]

    Examples
    --------
    >>> hill_transform(np.array([0.0, 1.0, 3.0]), half_saturation=1.0, slope=2.0)
    array([0. , 0.5, 0.9])
    """
    if half_saturation <= 0:
        raise ValueError("half_saturation must be positive")
    if slope <= 0:
        raise ValueError("slope must be positive")

    x = np.asarray(x, dtype=float)
    if np.any(x < 0):
        raise ValueError("Input array must be non-negative")

    return x**slope / (x**slope + half_saturation**slope)


def seasonal_series(n_steps: int, amplitude: float = 0.1,
                    period: int = 52, phase: float = 0.0,
                    base: float = 1.0) -> np.ndarray:
    """
    Generate a sinusoidal seasonal index.

    s_t = base * (1 + amplitude * sin(2*pi*(t - phase) / period))

    Parameters
    ----------
    n_steps : int
        Length of the series
    amplitude : float, default=0.1
        Relative swing around `base`. Must be in [0, 1) so the series stays
        positive
    period : int, default=52
        Cycle length in steps (52 for weekly data with yearly seasonality)
    phase : float, default=0.0
        Shift of the cycle in steps
    base : float, default=1.0
        Level of the series

    Returns
    -------
    np.ndarray
        Seasonal series of length `n_steps`

    Examples
    --------
    >>> market_size = seasonal_series(104, amplitude=0.05, base=1e6)
    """
    if not 0 <= amplitude < 1:
        raise ValueError("amplitude must be in [0, 1)")
    if period <= 0:
        raise ValueError("period must be positive")

    t = np.arange(n_steps)
    return base * (1 + amplitude * np.sin(2 * np.pi * (t - phase) / period))


def budget_periods(n_steps: int, period_length: int) -> np.ndarray:
    """
    Map each time step to a budget-period id of contiguous equal blocks.

    Parameters
    ----------
    n_steps : int
        Number of time steps
    period_length : int
        Steps per budget period; the last period may be shorter

    Returns
    -------
    np.ndarray
        Integer period id per step

    Examples
    --------
    >>> budget_periods(6, 4)
    array([0, 0, 0, 0, 1, 1])
    """
    if period_length <= 0:
        raise ValueError("period_length must be positive")
    return np.arange(n_steps) // period_length


def pulsed_flighting(n_steps: int, on_weeks: int, off_weeks: int,
                     weights: Optional[Sequence[float]] = None) -> np.ndarray:
    """
    Build a flighting pattern that alternates on and off bursts.

    Parameters
    ----------
    n_steps : int
        Length of the pattern
    on_weeks : int
        Consecutive steps with media on
    off_weeks : int
        Consecutive steps with media off
    weights : sequence of float, optional
        Weights for the on steps of each burst (length `on_weeks`).
        Defaults to equal weights of 1

    Returns
    -------
    np.ndarray
        Non-negative flighting weights

    Examples
    --------
    >>> pulsed_flighting(6, on_weeks=2, off_weeks=1)
    array([1., 1., 0., 1., 1., 0.])
    """
    if on_weeks <= 0 or off_weeks < 0:
        raise ValueError("on_weeks must be positive and off_weeks non-negative")

    burst = np.ones(on_weeks) if weights is None else np.asarray(weights, dtype=float)
    if burst.shape != (on_weeks,) or np.any(burst < 0):
        raise ValueError("weights must be non-negative with length on_weeks")

    cycle = np.concatenate([burst, np.zeros(off_weeks)])
    n_cycles = int(np.ceil(n_steps / len(cycle)))
    return np.tile(cycle, n_cycles)[:n_steps]
