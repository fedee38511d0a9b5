"""estimkit: Bayesian parameter estimation for black-box likelihoods.

Typical workflow::

    from estimkit import EstimationProblem, estimate_posterior_mode, sample_posterior, chain_stats

    problem = EstimationProblem(specs, provider)
    estimate = estimate_posterior_mode(problem)
    result = sample_posterior(estimate, 20000, random_seed=0)
    stats = chain_stats(estimate, result)
"""

from estimkit._version import __version__
from estimkit.config import (
    EstimationConfig,
    NeighbourhoodConfig,
    OptimizerConfig,
    SamplerConfig,
    StatsConfig,
)
from estimkit.estimation import (
    AdaptiveMetropolisSampler,
    ChainStats,
    ConcentratedTerms,
    EstimationProblem,
    FunctionProvider,
    NeighbourhoodGrid,
    PosteriorEstimate,
    PosteriorModeOptimizer,
    SamplerResult,
    arwm,
    chain_stats,
    estimate_posterior_mode,
    neighbourhood,
    sample_posterior,
)
from estimkit.exceptions import (
    BoundViolation,
    ConfigurationError,
    ConvergenceWarning,
    EstimationError,
    EstimkitError,
    EvaluationFailure,
    InvalidMomentsError,
    StatInsufficiencyError,
)
from estimkit.io import load_config, load_specs
from estimkit.logging_config import get_logger, setup_logging
from estimkit.model import Distribution, ParameterSpec, parse_specs

__all__ = [
    "__version__",
    "AdaptiveMetropolisSampler",
    "BoundViolation",
    "ChainStats",
    "ConcentratedTerms",
    "ConfigurationError",
    "ConvergenceWarning",
    "Distribution",
    "EstimationConfig",
    "EstimationError",
    "EstimationProblem",
    "EstimkitError",
    "EvaluationFailure",
    "FunctionProvider",
    "InvalidMomentsError",
    "NeighbourhoodConfig",
    "NeighbourhoodGrid",
    "OptimizerConfig",
    "ParameterSpec",
    "PosteriorEstimate",
    "PosteriorModeOptimizer",
    "SamplerConfig",
    "SamplerResult",
    "StatInsufficiencyError",
    "StatsConfig",
    "arwm",
    "chain_stats",
    "estimate_posterior_mode",
    "get_logger",
    "load_config",
    "load_specs",
    "neighbourhood",
    "parse_specs",
    "sample_posterior",
    "setup_logging",
]
