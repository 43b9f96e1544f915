"""
Aggregate Marketing System Simulator

Synthetic marketing time series from a simulated consumer population:
- Population segments over six latent mindset dimensions
- Natural migration and media effects as transition operators
- Traditional (reach-based) and paid search media modules
- Sales with competitive substitution
- Ground-truth ROAS / marginal ROAS by counterfactual replicates
"""

import logging

__version__ = "0.1.0"

from .errors import (
    ConfigurationError,
    NumericalWarning,
    PrecisionNotMetWarning
)

from .states import (
    DIMENSIONS,
    SegmentIndex,
    get_segment_index
)

from .transformations import (
    hill_transform,
    seasonal_series,
    budget_periods,
    pulsed_flighting
)

from .transition import (
    TransitionOperator,
    MediaPerturbation,
    compose,
    apply
)

from .config import (
    NaturalMigrationConfig,
    TraditionalMediaConfig,
    SearchMediaConfig,
    SalesConfig,
    SimulationConfig
)

from .media import (
    TraditionalMedia,
    SearchMedia
)

from .population import PopulationEngine
from .sales import SalesModule

from .simulation import (
    SimulationRecord,
    simulate,
    run
)

from .roas import (
    EstimatorState,
    ROASEstimator,
    ROASResult,
    calculate_roas,
    calculate_mroas
)

from .settings import (
    Settings,
    get_settings,
    configure_logging
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Errors
    'ConfigurationError',
    'NumericalWarning',
    'PrecisionNotMetWarning',
    # Segments
    'DIMENSIONS',
    'SegmentIndex',
    'get_segment_index',
    # Transformations
    'hill_transform',
    'seasonal_series',
    'budget_periods',
    'pulsed_flighting',
    # Transitions
    'TransitionOperator',
    'MediaPerturbation',
    'compose',
    'apply',
    # Configuration
    'NaturalMigrationConfig',
    'TraditionalMediaConfig',
    'SearchMediaConfig',
    'SalesConfig',
    'SimulationConfig',
    # Simulation
    'TraditionalMedia',
    'SearchMedia',
    'PopulationEngine',
    'SalesModule',
    'SimulationRecord',
    'simulate',
    'run',
    # Effectiveness
    'EstimatorState',
    'ROASEstimator',
    'ROASResult',
    'calculate_roas',
    'calculate_mroas',
    # Settings
    'Settings',
    'get_settings',
    'configure_logging'
]
