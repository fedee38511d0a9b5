"""Marginal data density estimators for Bayesian model comparison."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy import special, stats

from estimkit.exceptions import StatInsufficiencyError

if TYPE_CHECKING:
    from estimkit.estimation.mcmc import SamplerResult
    from estimkit.estimation.mode import PosteriorEstimate


@dataclass
class MarginalDataDensityResult:
    """Result container for marginal data density estimation."""

    method: str
    log_mdd: float
    n_params: int
    n_samples: int | None = None
    log_posterior_mode: float | None = None
    hessian_logdet: float | None = None
    notes: list[str] = field(default_factory=list)

    def summary(self) -> str:
        lines = [
            "Marginal Data Density",
            "=" * 50,
            f"  Method:          {self.method}",
            f"  Log MDD:         {self.log_mdd:.6f}",
            f"  Parameters:      {self.n_params}",
        ]
        if self.n_samples is not None:
            lines.append(f"  Samples used:    {self.n_samples}")
        if self.log_posterior_mode is not None:
            lines.append(f"  Log posterior*:  {self.log_posterior_mode:.6f}")
        if self.hessian_logdet is not None:
            lines.append(f"  log|H| at mode:  {self.hessian_logdet:.6f}")
        if self.notes:
            lines.append("")
            for note in self.notes:
                lines.append(f"  Note: {note}")
        return "\n".join(lines)


def _laplace_log_mdd_from_mode(
    *,
    log_posterior_mode: float,
    hessian: NDArray[np.float64],
) -> tuple[float, float]:
    """Compute Laplace log-MDD from mode value and Hessian."""
    if not np.isfinite(log_posterior_mode):
        raise StatInsufficiencyError("log posterior at the mode must be finite")

    mat = np.asarray(hessian, dtype=np.float64)
    if mat.ndim != 2 or mat.shape[0] != mat.shape[1]:
        raise StatInsufficiencyError("hessian must be a square 2D matrix")
    if not np.all(np.isfinite(mat)):
        raise StatInsufficiencyError("Hessian at the mode is not available")

    sign, logdet = np.linalg.slogdet(mat)
    if not np.isfinite(logdet) or sign <= 0.0:
        raise StatInsufficiencyError(
            "Hessian at the mode is not positive definite; Laplace approximation is invalid"
        )

    k = int(mat.shape[0])
    log_mdd = log_posterior_mode + 0.5 * k * math.log(2.0 * math.pi) - 0.5 * logdet
    return float(log_mdd), float(logdet)


def _harmonic_mean_log_mdd(log_likelihood_samples: NDArray[np.float64]) -> float:
    """Harmonic-mean log-MDD from posterior log-likelihood draws."""
    ll = np.asarray(log_likelihood_samples, dtype=np.float64).reshape(-1)
    finite = ll[np.isfinite(ll)]
    if finite.size == 0:
        raise StatInsufficiencyError("No finite log-likelihood samples available for harmonic mean")

    log_inv_lik_mean = float(special.logsumexp(-finite) - math.log(float(finite.size)))
    return float(-log_inv_lik_mean)


def _modified_harmonic_mean_log_mdd(
    samples: NDArray[np.float64],
    log_posterior: NDArray[np.float64],
    coverages: Sequence[float],
) -> tuple[float, list[str]]:
    """Modified harmonic mean with truncated-normal weighting densities.

    For each coverage ``p`` the weighting density is the chain's normal
    approximation truncated to its ``p`` mass region; the log-MDD estimates
    are averaged over ``p``.
    """
    theta = np.asarray(samples, dtype=np.float64)
    logp = np.asarray(log_posterior, dtype=np.float64).reshape(-1)
    n, k = theta.shape
    if n <= k + 1:
        raise StatInsufficiencyError(
            f"Modified harmonic mean needs more than {k + 1} draws, got {n}"
        )
    if not np.all(np.isfinite(logp)):
        raise StatInsufficiencyError("Log posterior draws must be finite")

    mean = theta.mean(axis=0)
    cov = np.atleast_2d(np.cov(theta, rowvar=False))
    sign, logdet = np.linalg.slogdet(cov)
    if sign <= 0.0 or not np.isfinite(logdet):
        raise StatInsufficiencyError("Chain covariance is singular; chain may not be mixing")

    centered = theta - mean
    dist = np.einsum("ij,ij->i", centered @ np.linalg.inv(cov), centered)
    base = -0.5 * k * math.log(2.0 * math.pi) - 0.5 * logdet - 0.5 * dist

    estimates: list[float] = []
    notes: list[str] = []
    for p in coverages:
        inside = dist <= stats.chi2.ppf(p, k)
        if not np.any(inside):
            notes.append(f"No draws inside the {p:.0%} region; coverage skipped.")
            continue
        log_weights = base[inside] - math.log(p) - logp[inside]
        log_inv_mdd = float(special.logsumexp(log_weights) - math.log(float(n)))
        estimates.append(-log_inv_mdd)

    if not estimates:
        raise StatInsufficiencyError("No coverage level produced a usable estimate")
    return float(np.mean(estimates)), notes


def estimate_mdd_laplace(estimate: PosteriorEstimate) -> MarginalDataDensityResult:
    """Laplace approximation around the posterior mode."""
    log_mdd, hessian_logdet = _laplace_log_mdd_from_mode(
        log_posterior_mode=float(estimate.log_posterior),
        hessian=estimate.hessian,
    )
    notes = []
    if not estimate.converged:
        notes.append("Mode optimizer did not converge; Laplace estimate may be off.")
    return MarginalDataDensityResult(
        method="laplace",
        log_mdd=log_mdd,
        n_params=len(estimate.names),
        log_posterior_mode=float(estimate.log_posterior),
        hessian_logdet=hessian_logdet,
        notes=notes,
    )


def estimate_mdd_harmonic_mean(result: SamplerResult) -> MarginalDataDensityResult:
    """Harmonic mean of the likelihood over post burn-in draws.

    Notes:
        This estimator is known to be high-variance in practice.
        It is provided mainly for comparison against the other estimators.
    """
    ll = np.asarray(result.log_likelihood_samples, dtype=np.float64)
    if ll.size == 0:
        raise StatInsufficiencyError("No post burn-in draws available")
    finite_count = int(np.sum(np.isfinite(ll)))
    log_mdd = _harmonic_mean_log_mdd(ll)
    notes = ["Harmonic mean can be unstable; interpret with caution."]
    if finite_count < ll.size:
        notes.append(f"Dropped {ll.size - finite_count} non-finite likelihood draws.")
    return MarginalDataDensityResult(
        method="harmonic_mean",
        log_mdd=log_mdd,
        n_params=len(result.param_names),
        n_samples=finite_count,
        notes=notes,
    )


def estimate_mdd_modified_harmonic_mean(
    result: SamplerResult,
    coverages: Sequence[float] = (0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9),
) -> MarginalDataDensityResult:
    """Modified harmonic mean estimator over post burn-in draws."""
    samples = np.asarray(result.samples, dtype=np.float64)
    log_mdd, notes = _modified_harmonic_mean_log_mdd(
        samples, result.log_posterior_samples, coverages
    )
    return MarginalDataDensityResult(
        method="modified_harmonic_mean",
        log_mdd=log_mdd,
        n_params=len(result.param_names),
        n_samples=int(samples.shape[0]),
        notes=notes,
    )
