"""Posterior mode (MAP) optimization.

Uses ``scipy.optimize.minimize`` on the negative log posterior expressed in
free (unbounded) coordinates, then builds a Hessian-based covariance in
natural coordinates.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray
from scipy import optimize

from estimkit.config import OptimizerConfig
from estimkit.estimation.numerics import covariance_from_hessian
from estimkit.exceptions import ConvergenceWarning, EstimationError, EvaluationFailure

if TYPE_CHECKING:
    import pandas as pd

    from estimkit.estimation.problem import EstimationProblem

logger = logging.getLogger(__name__)

# scipy option names for the function-evaluation budget
_MAXFEV_OPTION = {
    "l-bfgs-b": "maxfun",
    "tnc": "maxfun",
    "nelder-mead": "maxfev",
    "powell": "maxfev",
}


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class PosteriorEstimate:
    """Posterior mode bound to its estimation problem.

    Attributes:
        problem: The estimation problem the mode was found for.
        mode: Mode in natural coordinates, ordered as ``problem.names``.
        covariance: Inverse of the natural-space Hessian at the mode.
        hessian: Hessian of the negative log posterior at the mode.
        hessian_prior: Diagonal prior contribution to ``hessian``.
        neg_log_posterior: Objective value at the mode.
        log_likelihood: Log-likelihood at the mode.
        log_prior: Log prior at the mode.
        variance_factor: Concentrated common variance factor (1 when off).
        concentrated: Out-of-likelihood parameter estimates at the mode.
        converged: Whether the optimizer met its tolerance.
        message: Optimizer status message.
        n_iterations: Optimizer iterations.
        n_evaluations: Objective evaluations used by the optimizer.
        notes: Non-fatal remarks (e.g. Hessian repair).
    """

    problem: EstimationProblem
    mode: NDArray[np.float64]
    covariance: NDArray[np.float64]
    hessian: NDArray[np.float64]
    hessian_prior: NDArray[np.float64]
    neg_log_posterior: float
    log_likelihood: float
    log_prior: float
    variance_factor: float = 1.0
    concentrated: dict[str, float] = field(default_factory=dict)
    converged: bool = True
    message: str = ""
    n_iterations: int = 0
    n_evaluations: int = 0
    notes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        k = self.problem.n_params
        self.mode = np.asarray(self.mode, dtype=np.float64).reshape(-1)
        self.covariance = np.asarray(self.covariance, dtype=np.float64)
        self.hessian = np.asarray(self.hessian, dtype=np.float64)
        self.hessian_prior = np.asarray(self.hessian_prior, dtype=np.float64)
        if self.mode.shape != (k,):
            raise EstimationError(f"mode must have length {k}, got {self.mode.shape}")
        for label in ("covariance", "hessian", "hessian_prior"):
            if getattr(self, label).shape != (k, k):
                raise EstimationError(
                    f"{label} must be {k}x{k}, got {getattr(self, label).shape}"
                )

    @property
    def names(self) -> list[str]:
        return list(self.problem.names)

    @property
    def log_posterior(self) -> float:
        return -self.neg_log_posterior

    @property
    def hessian_likelihood(self) -> NDArray[np.float64]:
        return self.hessian - self.hessian_prior

    @property
    def parameters(self) -> dict[str, float]:
        return {name: float(v) for name, v in zip(self.names, self.mode, strict=True)}

    @property
    def std_errors(self) -> dict[str, float]:
        diag = np.diag(self.covariance)
        return {
            name: float(math.sqrt(d)) if d >= 0.0 else math.nan
            for name, d in zip(self.names, diag, strict=True)
        }

    def scaled_parameters(self) -> dict[str, float]:
        """Mode with shock standard deviations rescaled by the variance factor."""
        out = self.parameters
        factor = math.sqrt(self.variance_factor)
        for name in self.problem.shock_std_names:
            out[name] *= factor
        return out

    def summary(self) -> str:
        lines = [
            "Posterior Mode",
            "=" * 50,
            f"  Converged:       {self.converged}",
            f"  Log-posterior:   {self.log_posterior:.4f}",
            f"  Log-likelihood:  {self.log_likelihood:.4f}",
            f"  Log-prior:       {self.log_prior:.4f}",
            f"  Parameters:      {len(self.names)}",
            f"  Iterations:      {self.n_iterations}",
            f"  Evaluations:     {self.n_evaluations}",
        ]
        if self.problem.variance_factor:
            lines.append(f"  Variance factor: {self.variance_factor:.6f}")
        lines += [
            "",
            f"  {'Parameter':<15} {'Mode':>12} {'Std.Err':>12}",
            f"  {'-' * 15} {'-' * 12} {'-' * 12}",
        ]
        se = self.std_errors
        for name, value in self.parameters.items():
            se_str = f"{se[name]:12.6f}" if math.isfinite(se[name]) else f"{'n/a':>12}"
            lines.append(f"  {name:<15} {value:12.6f} {se_str}")
        if self.concentrated:
            lines.append("")
            lines.append("  Out-of-likelihood parameters:")
            for name, value in self.concentrated.items():
                lines.append(f"  {name:<15} {value:12.6f}")
        if self.notes:
            lines.append("")
            for note in self.notes:
                lines.append(f"  Note: {note}")
        return "\n".join(lines)

    def to_frame(self) -> pd.DataFrame:
        """Estimation summary table indexed by parameter name."""
        import pandas as pd

        specs = self.problem.specs
        se = self.std_errors
        rows = []
        for name, value in self.parameters.items():
            spec = specs[name]
            prior = spec.prior
            rows.append(
                {
                    "parameter": name,
                    "mode": value,
                    "std": se[name],
                    "start": spec.start,
                    "lower": spec.lower,
                    "upper": spec.upper,
                    "prior": prior.family if prior is not None else "flat",
                    "prior_mean": prior.mean if prior is not None else math.nan,
                    "prior_std": prior.std if prior is not None else math.nan,
                }
            )
        return pd.DataFrame(rows).set_index("parameter")

    def to_dict(self) -> dict[str, Any]:
        """Plain-Python representation (floats survive a round-trip exactly)."""
        return {
            "names": self.names,
            "mode": self.mode.tolist(),
            "covariance": self.covariance.tolist(),
            "hessian": self.hessian.tolist(),
            "hessian_prior": self.hessian_prior.tolist(),
            "neg_log_posterior": float(self.neg_log_posterior),
            "log_likelihood": float(self.log_likelihood),
            "log_prior": float(self.log_prior),
            "variance_factor": float(self.variance_factor),
            "concentrated": dict(self.concentrated),
            "converged": bool(self.converged),
            "message": self.message,
            "n_iterations": int(self.n_iterations),
            "n_evaluations": int(self.n_evaluations),
            "notes": list(self.notes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], problem: EstimationProblem) -> PosteriorEstimate:
        """Rebind a stored estimate to *problem*; parameter names must match."""
        names = list(data["names"])
        if names != problem.names:
            raise EstimationError(
                f"Stored parameter order {names} does not match problem order {problem.names}"
            )
        return cls(
            problem=problem,
            mode=np.array(data["mode"], dtype=np.float64),
            covariance=np.array(data["covariance"], dtype=np.float64),
            hessian=np.array(data["hessian"], dtype=np.float64),
            hessian_prior=np.array(data["hessian_prior"], dtype=np.float64),
            neg_log_posterior=float(data["neg_log_posterior"]),
            log_likelihood=float(data["log_likelihood"]),
            log_prior=float(data["log_prior"]),
            variance_factor=float(data.get("variance_factor", 1.0)),
            concentrated=dict(data.get("concentrated", {})),
            converged=bool(data.get("converged", True)),
            message=str(data.get("message", "")),
            n_iterations=int(data.get("n_iterations", 0)),
            n_evaluations=int(data.get("n_evaluations", 0)),
            notes=list(data.get("notes", [])),
        )


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------


class PosteriorModeOptimizer:
    """Locate the posterior mode of an :class:`EstimationProblem`."""

    def __init__(self, config: OptimizerConfig | None = None) -> None:
        self.config = config or OptimizerConfig()

    def _options(self) -> dict[str, Any]:
        cfg = self.config
        options: dict[str, Any] = {"maxiter": int(cfg.max_iterations)}
        fev_key = _MAXFEV_OPTION.get(cfg.method.lower())
        if fev_key is not None:
            options[fev_key] = int(cfg.max_function_evaluations)
        return options

    def maximize(self, problem: EstimationProblem) -> PosteriorEstimate:
        """Maximize the posterior and package the result.

        Never fails on non-convergence: the best point found is returned
        with ``converged=False`` and a :class:`ConvergenceWarning`.
        """
        cfg = self.config
        z0 = problem.initial_free()
        logger.info(
            "Maximizing posterior over %d parameters (%s)", problem.n_params, cfg.method
        )

        result = optimize.minimize(
            problem.neg_log_posterior,
            z0,
            method=cfg.method,
            tol=cfg.tolerance,
            options=self._options(),
        )

        z_hat = np.asarray(result.x, dtype=np.float64)
        # scipy may return a point other than the best one it evaluated
        if float(result.fun) > problem.neg_log_posterior(z0):
            z_hat = z0
        mode = problem.expand(z_hat)
        if not problem.in_bounds(mode):
            raise EstimationError(
                f"Posterior mode {mode.tolist()} violates parameter bounds; "
                "the reparameterization is inconsistent"
            )

        converged = bool(result.success)
        message = str(result.message)
        notes: list[str] = []
        if not converged:
            msg = f"Posterior mode optimizer did not converge: {message}"
            logger.warning(msg)
            warnings.warn(msg, ConvergenceWarning, stacklevel=2)
            notes.append(msg)

        try:
            evaluation = problem.evaluate(mode)
        except EvaluationFailure as exc:
            raise EstimationError(
                f"Objective cannot be evaluated at the posterior mode: {exc}"
            ) from exc

        k = problem.n_params
        hessian = np.full((k, k), np.nan, dtype=np.float64)
        covariance = np.full((k, k), np.nan, dtype=np.float64)
        hessian_prior = problem.prior_hessian(mode)
        if cfg.compute_covariance:
            hessian, covariance = self._covariance(problem, z_hat, notes)

        estimate = PosteriorEstimate(
            problem=problem,
            mode=mode,
            covariance=covariance,
            hessian=hessian,
            hessian_prior=hessian_prior,
            neg_log_posterior=problem.natural_neg_log_posterior(mode),
            log_likelihood=-evaluation.neg_log_likelihood,
            log_prior=evaluation.log_prior,
            variance_factor=evaluation.variance_factor,
            concentrated=dict(evaluation.out_of_lik),
            converged=converged,
            message=message,
            n_iterations=int(getattr(result, "nit", 0)),
            n_evaluations=int(getattr(result, "nfev", 0)),
            notes=notes,
        )
        logger.info(
            "Posterior mode found: log-posterior=%.6f converged=%s",
            estimate.log_posterior,
            converged,
        )
        return estimate

    def _covariance(
        self,
        problem: EstimationProblem,
        z_hat: NDArray[np.float64],
        notes: list[str],
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        k = problem.n_params
        try:
            hessian = problem.natural_hessian_at_free(z_hat, eps=self.config.hessian_step)
            covariance, repaired = covariance_from_hessian(hessian)
        except (EstimationError, np.linalg.LinAlgError) as exc:
            note = f"Hessian-based covariance unavailable: {exc}"
            logger.warning(note)
            notes.append(note)
            nan = np.full((k, k), np.nan, dtype=np.float64)
            return nan, nan.copy()
        if repaired:
            note = "Hessian at the mode is not positive definite; eigenvalues were clipped."
            logger.warning(note)
            notes.append(note)
        return hessian, covariance


def estimate_posterior_mode(
    problem: EstimationProblem,
    config: OptimizerConfig | None = None,
    **overrides: Any,
) -> PosteriorEstimate:
    """Find the posterior mode of *problem*.

    Keyword overrides are applied on top of *config*, e.g.
    ``estimate_posterior_mode(problem, max_iterations=100)``.
    """
    if overrides:
        config = replace(config or OptimizerConfig(), **overrides)
    return PosteriorModeOptimizer(config).maximize(problem)
