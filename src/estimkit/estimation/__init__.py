"""Estimation: posterior mode, neighbourhood sweep, MCMC sampling and chain statistics."""

from estimkit.estimation.marginal_data_density import (
    MarginalDataDensityResult,
    estimate_mdd_harmonic_mean,
    estimate_mdd_laplace,
    estimate_mdd_modified_harmonic_mean,
)
from estimkit.estimation.mcmc import (
    AdaptiveMetropolisSampler,
    MCMCDiagnostics,
    SamplerResult,
    arwm,
    effective_sample_size,
    sample_posterior,
    split_rhat,
)
from estimkit.estimation.mode import (
    PosteriorEstimate,
    PosteriorModeOptimizer,
    estimate_posterior_mode,
)
from estimkit.estimation.neighbourhood import (
    NeighbourhoodGrid,
    NeighbourhoodPoint,
    neighbourhood,
)
from estimkit.estimation.problem import (
    ConcentratedTerms,
    EstimationProblem,
    Evaluation,
    FunctionProvider,
    ObjectiveProvider,
)
from estimkit.estimation.stats import ChainStats, chain_stats, hpd_interval
from estimkit.estimation.transforms import BoundTransform

__all__ = [
    "AdaptiveMetropolisSampler",
    "BoundTransform",
    "ChainStats",
    "ConcentratedTerms",
    "EstimationProblem",
    "Evaluation",
    "FunctionProvider",
    "MarginalDataDensityResult",
    "MCMCDiagnostics",
    "NeighbourhoodGrid",
    "NeighbourhoodPoint",
    "ObjectiveProvider",
    "PosteriorEstimate",
    "PosteriorModeOptimizer",
    "SamplerResult",
    "arwm",
    "chain_stats",
    "effective_sample_size",
    "estimate_mdd_harmonic_mean",
    "estimate_mdd_laplace",
    "estimate_mdd_modified_harmonic_mean",
    "estimate_posterior_mode",
    "hpd_interval",
    "neighbourhood",
    "sample_posterior",
    "split_rhat",
]
