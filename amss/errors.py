"""
Exceptions and warnings raised by the simulator.

- ConfigurationError: malformed or inconsistent input. Always fatal.
- NumericalWarning: a value had to be clipped or rescaled; the run continues.
- PrecisionNotMetWarning: the ROAS estimator ran out of time before
  reaching its precision targets.
"""

from typing import Optional


class ConfigurationError(ValueError):
    """Raised when a simulation or estimator configuration is invalid."""


class NumericalWarning(RuntimeWarning):
    """Issued when a computed quantity is corrected by clipping or rescaling."""


class PrecisionNotMetWarning(UserWarning):
    """
    Issued when the ROAS estimator stops on its time budget.

    Attributes
    ----------
    estimate : float
        Best available sample mean
    margin_of_error : float
        Realized 95% margin of error
    coefficient_of_variation : float
        Realized standard error over absolute mean
    n_reps : int
        Number of completed replicates
    """

    def __init__(self, estimate: float,
                 margin_of_error: float,
                 coefficient_of_variation: float,
                 n_reps: int,
                 message: Optional[str] = None):
        self.estimate = estimate
        self.margin_of_error = margin_of_error
        self.coefficient_of_variation = coefficient_of_variation
        self.n_reps = n_reps
        if message is None:
            message = (
                f"Precision targets not met after {n_reps} replicates: "
                f"estimate={estimate:.4f}, margin of error={margin_of_error:.4f}, "
                f"CV={coefficient_of_variation:.4f}"
            )
        super().__init__(message)
