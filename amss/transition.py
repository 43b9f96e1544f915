"""
Transition operators over the population segments.

An operator holds one row-stochastic matrix per latent dimension. Applying
it contracts each matrix along its own axis of the segment grid, which is
the product-of-marginals transition: every dimension migrates independently
given the pre-transition segment. A dense segment x segment matrix is never
built.

Within one time step operators are applied in a fixed order:

1. natural migration (all six dimensions)
2. each media module's perturbation, in the order the modules were
   registered

Transitions do not commute in general, so `compose` keeps the order it was
given and exposes it via `ComposedTransition.order`. After every component
the grid is folded back onto valid segments.
"""

import logging
import warnings
from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigurationError, NumericalWarning
from .settings import get_settings
from .states import DIMENSION_NAMES, GRID_SHAPE, axis_of, get_segment_index

logger = logging.getLogger(__name__)

STOCHASTIC_TOL = 1e-8


def validate_stochastic(matrix: Sequence[Sequence[float]], dimension: str) -> np.ndarray:
    """
    Check that `matrix` is a row-stochastic transition matrix for `dimension`.

    Parameters
    ----------
    matrix : array-like
        Square matrix; entry (i, j) is the probability of moving from
        state i to state j
    dimension : str
        Name of the latent dimension the matrix acts on

    Returns
    -------
    np.ndarray
        Read-only float copy of the matrix

    Raises
    ------
    ConfigurationError
        If the shape does not match the dimension, or entries are negative,
        non-finite, or rows do not sum to 1
    """
    n_states = GRID_SHAPE[axis_of(dimension)]
    try:
        m = np.array(matrix, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Transition matrix for '{dimension}' is not numeric") from exc

    if m.shape != (n_states, n_states):
        raise ConfigurationError(
            f"Transition matrix for '{dimension}' must have shape "
            f"({n_states}, {n_states}), got {m.shape}"
        )
    if not np.all(np.isfinite(m)):
        raise ConfigurationError(f"Transition matrix for '{dimension}' has non-finite entries")
    if np.any(m < 0):
        raise ConfigurationError(f"Transition matrix for '{dimension}' has negative entries")
    if not np.allclose(m.sum(axis=1), 1.0, rtol=0, atol=STOCHASTIC_TOL):
        raise ConfigurationError(
            f"Rows of the transition matrix for '{dimension}' must sum to 1, "
            f"got {m.sum(axis=1)}"
        )

    m.setflags(write=False)
    return m


class TransitionOperator:
    """
    Dimension-wise transition applied uniformly to every segment.

    Parameters
    ----------
    matrices : dict, optional
        Dimension name -> row-stochastic matrix. Dimensions left out do not
        move (identity)
    name : str, default='natural'
        Label used in composition order and logs

    Examples
    --------
    >>> churn = TransitionOperator({'loyalty': [[0.9, 0.05, 0.05],
    ...                                          [0.1, 0.9, 0.0],
    ...                                          [0.1, 0.0, 0.9]]})
    >>> churn.is_identity
    False
    """

    def __init__(self, matrices: Optional[Mapping[str, Sequence[Sequence[float]]]] = None,
                 name: str = 'natural'):
        self.name = name
        self.matrices = {}
        for dimension, matrix in (matrices or {}).items():
            m = validate_stochastic(matrix, dimension)
            if not np.array_equal(m, np.eye(len(m))):
                self.matrices[dimension] = m

    @classmethod
    def identity(cls, name: str = 'identity') -> 'TransitionOperator':
        """Operator that leaves every dimension unchanged."""
        return cls(None, name=name)

    @property
    def is_identity(self) -> bool:
        return not self.matrices

    def matrix(self, dimension: str) -> np.ndarray:
        """Transition matrix of one dimension (identity when not set)."""
        if dimension in self.matrices:
            return self.matrices[dimension]
        return np.eye(GRID_SHAPE[axis_of(dimension)])

    def apply_tensor(self, tensor: np.ndarray) -> np.ndarray:
        """Contract each non-identity matrix along its dimension axis."""
        for dimension in DIMENSION_NAMES:
            if dimension not in self.matrices:
                continue
            axis = axis_of(dimension)
            tensor = np.moveaxis(
                np.tensordot(tensor, self.matrices[dimension], axes=([axis], [0])),
                -1, axis
            )
        return tensor

    def __repr__(self):
        return f"TransitionOperator(name={self.name!r}, dimensions={sorted(self.matrices)})"


class MediaPerturbation:
    """
    One step of media effect: a full-effect operator mixed with the identity.

    A fraction `reach[s]` of segment s migrates with the full-effect
    operator; the rest stays put:

    x' = (1 - reach) * x + T_full(reach * x)

    Parameters
    ----------
    operator : TransitionOperator
        Transition experienced by fully reached consumers
    reach : np.ndarray
        Per-segment reached fraction in [0, 1]
    name : str, optional
        Label (defaults to the operator's name)
    """

    def __init__(self, operator: TransitionOperator, reach: np.ndarray,
                 name: Optional[str] = None):
        index = get_segment_index()
        reach = np.asarray(reach, dtype=float)
        if reach.shape != (index.n_segments,):
            raise ConfigurationError(
                f"Reach must have shape ({index.n_segments},), got {reach.shape}"
            )
        if not np.all(np.isfinite(reach)):
            raise ConfigurationError("Reach has non-finite entries")

        self.operator = operator
        self.reach = np.clip(reach, 0.0, 1.0)
        self.name = name or operator.name

    def apply_tensor(self, tensor: np.ndarray) -> np.ndarray:
        if self.operator.is_identity or not np.any(self.reach > 0):
            return tensor
        reached = tensor * get_segment_index().to_tensor(self.reach)
        return tensor - reached + self.operator.apply_tensor(reached)

    def __repr__(self):
        return f"MediaPerturbation(name={self.name!r}, mean_reach={self.reach.mean():.4f})"


Component = Union[TransitionOperator, MediaPerturbation]


class ComposedTransition:
    """Ordered sequence of operators applied within a single time step."""

    def __init__(self, steps: Sequence[Component]):
        self.steps: Tuple[Component, ...] = tuple(steps)

    @property
    def order(self) -> Tuple[str, ...]:
        return tuple(step.name for step in self.steps)

    def apply(self, state: np.ndarray) -> np.ndarray:
        return apply(self, state)

    def __repr__(self):
        return f"ComposedTransition(order={self.order})"


def compose(base: Union[Component, ComposedTransition],
            *perturbations: Union[Component, ComposedTransition]) -> ComposedTransition:
    """
    Compose operators in the given order.

    `base` (natural migration) is applied first, then each perturbation in
    turn. Nested compositions are flattened without reordering.
    """
    steps = []
    for operator in (base,) + perturbations:
        if isinstance(operator, ComposedTransition):
            steps.extend(operator.steps)
        elif isinstance(operator, (TransitionOperator, MediaPerturbation)):
            steps.append(operator)
        else:
            raise ConfigurationError(
                f"Cannot compose object of type {type(operator).__name__}"
            )
    return ComposedTransition(steps)


def apply(operator: Union[Component, ComposedTransition], state: np.ndarray) -> np.ndarray:
    """
    Apply an operator to a population state vector.

    Parameters
    ----------
    operator : TransitionOperator, MediaPerturbation or ComposedTransition
        Transition to apply
    state : np.ndarray
        Segment counts (non-negative)

    Returns
    -------
    np.ndarray
        New state vector with the same total mass as `state`
    """
    index = get_segment_index()
    state = np.asarray(state, dtype=float)
    steps = operator.steps if isinstance(operator, ComposedTransition) else (operator,)

    tensor = index.to_tensor(state)
    for step in steps:
        tensor = index.project(step.apply_tensor(tensor))

    return _conserve_mass(state.sum(), index.to_vector(tensor))


def _conserve_mass(expected: float, result: np.ndarray) -> np.ndarray:
    tol = get_settings().mass_tolerance
    scale = max(abs(expected), 1.0)

    if result.min() < -tol * scale:
        logger.warning("Transition produced negative mass (min=%g); clipping", result.min())
        warnings.warn("Transition produced negative segment mass; clipped to zero",
                      NumericalWarning, stacklevel=3)
    result = np.maximum(result, 0.0)

    total = result.sum()
    if abs(total - expected) > tol * scale:
        logger.warning("Mass drift %g beyond tolerance; rescaling", total - expected)
        warnings.warn("Transition mass drift beyond tolerance; state rescaled",
                      NumericalWarning, stacklevel=3)
        if total > 0:
            result = result * (expected / total)

    return result
