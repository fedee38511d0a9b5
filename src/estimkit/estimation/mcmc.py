"""Adaptive random-walk Metropolis posterior sampler."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from estimkit.config import SamplerConfig
from estimkit.estimation.numerics import nearest_positive_definite
from estimkit.exceptions import BoundViolation, EstimationError, EvaluationFailure

if TYPE_CHECKING:
    import pandas as pd

    from estimkit.estimation.mode import PosteriorEstimate

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], "bool | None"]


# ---------------------------------------------------------------------------
# Chain diagnostics
# ---------------------------------------------------------------------------


def _autocorrelation_at_lag(
    centered: NDArray[np.float64],
    lag: int,
    variance: float,
) -> float:
    """Estimate lag-k autocorrelation for a centered series."""
    n = centered.shape[0]
    if lag <= 0 or lag >= n:
        raise EstimationError(f"lag must satisfy 1 <= lag < n, got lag={lag}, n={n}")
    cov = float(np.dot(centered[:-lag], centered[lag:]) / (n - lag))
    return cov / variance


def effective_sample_size(values: NDArray[np.float64]) -> float:
    """Geyer-style ESS estimator with positive-pair truncation."""
    x = np.asarray(values, dtype=np.float64).reshape(-1)
    n = x.shape[0]
    if n <= 2:
        return float(n)

    centered = x - float(x.mean())
    variance = float(np.dot(centered, centered) / n)
    if not np.isfinite(variance) or variance <= 0.0:
        return float(n)

    rho_pair_sum = 0.0
    prev_pair = float("inf")
    max_lag = max(1, n - 1)
    lag = 1
    while lag <= max_lag:
        rho_odd = _autocorrelation_at_lag(centered, lag, variance)
        rho_even = 0.0
        if lag + 1 <= max_lag:
            rho_even = _autocorrelation_at_lag(centered, lag + 1, variance)

        pair = float(rho_odd + rho_even)
        if not np.isfinite(pair) or pair <= 0.0:
            break

        if pair > prev_pair:
            pair = prev_pair
        prev_pair = pair
        rho_pair_sum += pair
        lag += 2

    tau = 1.0 + 2.0 * rho_pair_sum
    if not np.isfinite(tau) or tau <= 0.0:
        return 1.0

    return float(np.clip(n / tau, 1.0, float(n)))


def split_rhat(
    samples: NDArray[np.float64],
) -> tuple[NDArray[np.float64], str | None]:
    """Split-chain R-hat per parameter; NaN with a note when too short."""
    arr = np.asarray(samples, dtype=np.float64)
    if arr.ndim != 2:
        raise EstimationError(f"samples must be 2D [n_samples, n_params], got ndim={arr.ndim}")
    n_samples, n_params = arr.shape
    if n_samples < 4:
        return np.full(n_params, np.nan, dtype=np.float64), "R-hat unavailable: need >= 4 samples."

    n = n_samples // 2
    trimmed = arr[: 2 * n, :]
    chains = np.stack((trimmed[:n, :], trimmed[n:, :]), axis=0)  # [2, n, p]

    chain_means = chains.mean(axis=1)
    chain_vars = chains.var(axis=1, ddof=1)
    w = chain_vars.mean(axis=0)
    b = n * chain_means.var(axis=0, ddof=1)
    var_hat = ((n - 1.0) / n) * w + (1.0 / n) * b

    with np.errstate(divide="ignore", invalid="ignore"):
        rhat = np.sqrt(var_hat / w)

    near_constant = (w <= 1e-14) & (b <= 1e-14)
    rhat = np.where(near_constant, 1.0, rhat)
    rhat = np.where(np.isfinite(rhat), rhat, np.nan).astype(np.float64, copy=False)

    note = None
    if 2 * n != n_samples:
        note = "R-hat computed on an even-length prefix (one sample dropped)."
    return rhat, note


@dataclass
class MCMCDiagnostics:
    """ESS and split R-hat over post burn-in samples."""

    param_names: list[str]
    n_samples: int
    acceptance_rate: float
    ess: dict[str, float]
    r_hat: dict[str, float]
    notes: list[str]

    def summary(self) -> str:
        lines = [
            "MCMC Diagnostics",
            "=" * 50,
            f"  Saved samples:   {self.n_samples}",
            f"  Acceptance rate: {self.acceptance_rate:.3f}",
            "",
            f"  {'Parameter':<15} {'ESS':>12} {'R-hat':>12}",
            f"  {'-' * 15} {'-' * 12} {'-' * 12}",
        ]
        for name in self.param_names:
            rhat = self.r_hat[name]
            rhat_str = f"{rhat:12.4f}" if np.isfinite(rhat) else f"{'n/a':>12}"
            lines.append(f"  {name:<15} {self.ess[name]:12.1f} {rhat_str}")
        if self.notes:
            lines.append("")
            for note in self.notes:
                lines.append(f"  Note: {note}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class SamplerResult:
    """Output of an adaptive random-walk Metropolis run.

    The full chain is kept in ``chain``; ``samples`` and the other
    ``*_samples`` arrays are the same draws with the first ``burn_in``
    iterations trimmed.

    Attributes:
        param_names: Parameter order of the chain columns.
        chain: Draws, shape ``(n_recorded, k)``.
        log_posterior_chain: Log posterior of each draw.
        log_likelihood_chain: Log-likelihood of each draw.
        accepted: Per-iteration acceptance flags.
        acceptance_ratio_trace: Running acceptance ratio after each iteration.
        n_draws: Requested number of draws.
        burn_in: Number of leading draws trimmed from ``samples``.
        seed: Random seed used.
        final_scale: Proposal step size at the end of the run.
        proposal_covariance: Proposal covariance shape at the end of the run.
        cancelled: Whether the run was stopped by the progress callback.
    """

    param_names: list[str]
    chain: NDArray[np.float64]
    log_posterior_chain: NDArray[np.float64]
    log_likelihood_chain: NDArray[np.float64]
    accepted: NDArray[np.bool_]
    acceptance_ratio_trace: NDArray[np.float64]
    n_draws: int
    burn_in: int
    seed: int | None
    final_scale: float
    proposal_covariance: NDArray[np.float64]
    cancelled: bool = False
    _diagnostics_cache: MCMCDiagnostics | None = field(default=None, init=False, repr=False)

    @property
    def n_recorded(self) -> int:
        return int(self.chain.shape[0])

    @property
    def samples(self) -> NDArray[np.float64]:
        return self.chain[self.burn_in :, :]

    @property
    def log_posterior_samples(self) -> NDArray[np.float64]:
        return self.log_posterior_chain[self.burn_in :]

    @property
    def log_likelihood_samples(self) -> NDArray[np.float64]:
        return self.log_likelihood_chain[self.burn_in :]

    @property
    def acceptance_rate(self) -> float:
        if self.n_recorded == 0:
            return math.nan
        return float(self.accepted.mean())

    @property
    def post_burn_acceptance_rate(self) -> float:
        kept = self.accepted[self.burn_in :]
        if kept.size == 0:
            return math.nan
        return float(kept.mean())

    def posterior_mean(self) -> dict[str, float]:
        return {
            name: float(self.samples[:, i].mean())
            for i, name in enumerate(self.param_names)
        }

    def posterior_std(self) -> dict[str, float]:
        return {
            name: float(self.samples[:, i].std(ddof=1))
            for i, name in enumerate(self.param_names)
        }

    def trace_dict(self, *, post_burn: bool = True) -> dict[str, NDArray[np.float64]]:
        """Return parameter traces as ``name -> vector``."""
        arr = self.samples if post_burn else self.chain
        return {name: arr[:, i].copy() for i, name in enumerate(self.param_names)}

    def to_frame(self, *, post_burn: bool = True) -> pd.DataFrame:
        """Draws and their log posterior as a DataFrame."""
        import pandas as pd

        arr = self.samples if post_burn else self.chain
        logp = self.log_posterior_samples if post_burn else self.log_posterior_chain
        df = pd.DataFrame(arr, columns=self.param_names)
        df["log_posterior"] = logp
        return df

    def diagnostics(self) -> MCMCDiagnostics:
        """Compute (and cache) ESS and split R-hat."""
        if self._diagnostics_cache is not None:
            return self._diagnostics_cache

        samples = self.samples
        ess_values = {
            name: effective_sample_size(samples[:, i])
            for i, name in enumerate(self.param_names)
        }
        rhat_values, rhat_note = split_rhat(samples)
        notes: list[str] = []
        if rhat_note:
            notes.append(rhat_note)

        diag = MCMCDiagnostics(
            param_names=list(self.param_names),
            n_samples=int(samples.shape[0]),
            acceptance_rate=self.acceptance_rate,
            ess=ess_values,
            r_hat={name: float(rhat_values[i]) for i, name in enumerate(self.param_names)},
            notes=notes,
        )
        self._diagnostics_cache = diag
        return diag

    def summary(self) -> str:
        lines = [
            "Adaptive Random-Walk Metropolis",
            "=" * 50,
            f"  Draws:           {self.n_draws}",
            f"  Burn-in:         {self.burn_in}",
            f"  Saved samples:   {self.samples.shape[0]}",
            f"  Acceptance rate: {self.acceptance_rate:.3f}",
            f"  Final scale:     {self.final_scale:.4f}",
        ]
        if self.cancelled:
            lines.append(f"  Cancelled after: {self.n_recorded} draws")
        if self.samples.shape[0] >= 2:
            lines += [
                "",
                f"  {'Parameter':<15} {'Mean':>12} {'Std':>12}",
                f"  {'-' * 15} {'-' * 12} {'-' * 12}",
            ]
            means = self.posterior_mean()
            stds = self.posterior_std()
            for name in self.param_names:
                lines.append(f"  {name:<15} {means[name]:12.6f} {stds[name]:12.6f}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Plain-Python representation (floats survive a round-trip exactly)."""
        return {
            "param_names": list(self.param_names),
            "chain": self.chain.tolist(),
            "log_posterior_chain": self.log_posterior_chain.tolist(),
            "log_likelihood_chain": self.log_likelihood_chain.tolist(),
            "accepted": self.accepted.tolist(),
            "acceptance_ratio_trace": self.acceptance_ratio_trace.tolist(),
            "n_draws": int(self.n_draws),
            "burn_in": int(self.burn_in),
            "seed": self.seed,
            "final_scale": float(self.final_scale),
            "proposal_covariance": self.proposal_covariance.tolist(),
            "cancelled": bool(self.cancelled),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SamplerResult:
        names = list(data["param_names"])
        k = len(names)
        return cls(
            param_names=names,
            chain=np.array(data["chain"], dtype=np.float64).reshape(-1, k),
            log_posterior_chain=np.array(data["log_posterior_chain"], dtype=np.float64),
            log_likelihood_chain=np.array(data["log_likelihood_chain"], dtype=np.float64),
            accepted=np.array(data["accepted"], dtype=bool),
            acceptance_ratio_trace=np.array(data["acceptance_ratio_trace"], dtype=np.float64),
            n_draws=int(data["n_draws"]),
            burn_in=int(data["burn_in"]),
            seed=data.get("seed"),
            final_scale=float(data["final_scale"]),
            proposal_covariance=np.array(data["proposal_covariance"], dtype=np.float64),
            cancelled=bool(data.get("cancelled", False)),
        )


# ---------------------------------------------------------------------------
# Sampler
# ---------------------------------------------------------------------------


class AdaptiveMetropolisSampler:
    """Random-walk Metropolis with adaptive step size and proposal shape.

    Proposals are ``current + scale * L @ u`` with ``u ~ N(0, I)`` and
    ``L`` the Cholesky factor of the proposal covariance shape. During the
    adaptation phase the log step size follows the Robbins-Monro update
    ``log(scale) += gain * t**-decay * (alpha - target)``, and, when enabled,
    the shape is re-estimated from the covariance of accepted draws.

    All adaptive state lives on the instance and is reset by each
    :meth:`sample` call; instances must not be shared between threads.

    Args:
        estimate: Posterior mode estimate supplying the start point,
            the initial proposal covariance and the objective.
        config: Sampler configuration.
        proposal_covariance: Overrides ``estimate.covariance`` as the initial
            proposal shape (e.g. when the Hessian was unavailable).
    """

    def __init__(
        self,
        estimate: PosteriorEstimate,
        config: SamplerConfig | None = None,
        *,
        proposal_covariance: NDArray[np.float64] | None = None,
    ) -> None:
        self.estimate = estimate
        self.problem = estimate.problem
        self.config = config or SamplerConfig()

        k = self.problem.n_params
        cov = estimate.covariance if proposal_covariance is None else proposal_covariance
        cov = np.asarray(cov, dtype=np.float64)
        if cov.shape != (k, k):
            raise EstimationError(f"proposal covariance must be {k}x{k}, got {cov.shape}")
        if not np.all(np.isfinite(cov)):
            raise EstimationError(
                "Initial proposal covariance is not finite; pass proposal_covariance explicitly"
            )
        cov = 0.5 * (cov + cov.T)
        try:
            np.linalg.cholesky(cov)
        except np.linalg.LinAlgError:
            logger.warning("Initial proposal covariance is not positive definite; repairing")
            cov = nearest_positive_definite(cov)
        self.initial_covariance = cov

        self._reset()

    def _reset(self) -> None:
        k = self.problem.n_params
        self.scale = float(self.config.initial_scale)
        self.shape = self.initial_covariance.copy()
        self.chol = np.linalg.cholesky(self.shape)
        self.n_accepted = 0
        self._acc_count = 0
        self._acc_mean = np.zeros(k, dtype=np.float64)
        self._acc_m2 = np.zeros((k, k), dtype=np.float64)

    def _log_target(self, theta: NDArray[np.float64]) -> tuple[float, float]:
        """Return ``(log posterior, log likelihood)``; ``-inf`` when rejected."""
        try:
            ev = self.problem.evaluate(theta)
        except (EvaluationFailure, BoundViolation) as exc:
            logger.debug("Candidate rejected: %s", exc)
            return -math.inf, -math.inf
        logp = ev.log_posterior
        if not math.isfinite(logp) or ev.neg_log_likelihood >= self.problem.penalty:
            return -math.inf, -math.inf
        return logp, -ev.neg_log_likelihood

    def _record_accepted(self, theta: NDArray[np.float64]) -> None:
        # Welford update of the accepted-draw mean and scatter matrix
        self._acc_count += 1
        delta = theta - self._acc_mean
        self._acc_mean += delta / self._acc_count
        self._acc_m2 += np.outer(delta, theta - self._acc_mean)

    def _adapt(self, t: int, alpha: float) -> None:
        cfg = self.config
        gain = float(t) ** (-cfg.adaptation_decay)
        if cfg.adaptive_scale_factor > 0.0:
            log_scale = math.log(self.scale)
            log_scale += cfg.adaptive_scale_factor * gain * (alpha - cfg.target_acceptance_ratio)
            self.scale = math.exp(min(max(log_scale, -50.0), 50.0))

        k = self.problem.n_params
        if cfg.adapt_proposal_covariance and self._acc_count >= 2 * k + 2:
            sample_cov = self._acc_m2 / (self._acc_count - 1)
            sample_cov = 0.5 * (sample_cov + sample_cov.T)
            jitter = 1e-10 * max(float(np.max(np.abs(np.diag(sample_cov)))), 1e-300)
            try:
                self.chol = np.linalg.cholesky(sample_cov + jitter * np.eye(k))
            except np.linalg.LinAlgError:
                return
            self.shape = sample_cov

    def sample(
        self,
        n_draws: int,
        *,
        progress: ProgressCallback | None = None,
    ) -> SamplerResult:
        """Draw *n_draws* iterations from the posterior.

        Args:
            n_draws: Number of iterations (all recorded in ``chain``).
            progress: Called as ``progress(iteration, n_draws)`` after every
                iteration; returning ``False`` stops the run.

        Returns:
            SamplerResult with the full chain and burn-in-trimmed views.
        """
        if int(n_draws) != n_draws or n_draws < 0:
            raise EstimationError(f"n_draws must be a non-negative integer, got {n_draws}")
        n_draws = int(n_draws)
        cfg = self.config
        self._reset()

        k = self.problem.n_params
        burn_in = int(round(cfg.burn_in_fraction * n_draws))
        n_adapt = int(round(cfg.effective_adaptation_fraction * n_draws))
        rng = np.random.default_rng(cfg.random_seed)

        chain = np.zeros((n_draws, k), dtype=np.float64)
        logp_chain = np.full(n_draws, -np.inf, dtype=np.float64)
        loglik_chain = np.full(n_draws, -np.inf, dtype=np.float64)
        accepted = np.zeros(n_draws, dtype=bool)
        ar_trace = np.zeros(n_draws, dtype=np.float64)

        current = np.array(self.estimate.mode, dtype=np.float64)
        current_logp, current_loglik = self._log_target(current)
        if not math.isfinite(current_logp):
            raise EstimationError(
                "Initial point has non-finite log posterior; check the mode estimate"
            )

        logger.info(
            "Running adaptive random-walk Metropolis: %d draws, burn-in %d, adaptation %d",
            n_draws,
            burn_in,
            n_adapt,
        )
        report_every = max(1, n_draws // 10)
        n_done = n_draws
        cancelled = False

        for t in range(n_draws):
            u = rng.standard_normal(k)
            candidate = current + self.scale * (self.chol @ u)
            uniform = rng.uniform()

            if self.problem.in_bounds(candidate):
                cand_logp, cand_loglik = self._log_target(candidate)
            else:
                cand_logp, cand_loglik = -math.inf, -math.inf

            if math.isfinite(cand_logp):
                alpha = math.exp(min(0.0, cand_logp - current_logp))
            else:
                alpha = 0.0

            if uniform < alpha:
                current = candidate
                current_logp = cand_logp
                current_loglik = cand_loglik
                self.n_accepted += 1
                accepted[t] = True
                if t < n_adapt and cfg.adapt_proposal_covariance:
                    self._record_accepted(candidate)

            chain[t, :] = current
            logp_chain[t] = current_logp
            loglik_chain[t] = current_loglik
            ar_trace[t] = self.n_accepted / (t + 1.0)

            if t < n_adapt:
                self._adapt(t + 1, alpha)

            if cfg.progress and (t + 1) % report_every == 0:
                logger.info(
                    "ARWM %3d%% (%d/%d), acceptance ratio %.3f",
                    int(100 * (t + 1) / n_draws),
                    t + 1,
                    n_draws,
                    ar_trace[t],
                )
            if progress is not None and progress(t + 1, n_draws) is False:
                n_done = t + 1
                cancelled = True
                logger.info("Sampler cancelled after %d of %d draws", n_done, n_draws)
                break

        if cancelled:
            chain = chain[:n_done]
            logp_chain = logp_chain[:n_done]
            loglik_chain = loglik_chain[:n_done]
            accepted = accepted[:n_done]
            ar_trace = ar_trace[:n_done]
            burn_in = min(burn_in, n_done)

        result = SamplerResult(
            param_names=list(self.problem.names),
            chain=chain,
            log_posterior_chain=logp_chain,
            log_likelihood_chain=loglik_chain,
            accepted=accepted,
            acceptance_ratio_trace=ar_trace,
            n_draws=n_draws,
            burn_in=burn_in,
            seed=cfg.random_seed,
            final_scale=self.scale,
            proposal_covariance=self.shape.copy(),
            cancelled=cancelled,
        )
        if n_draws:
            logger.info(
                "Sampler finished: final acceptance ratio %.3f", float(ar_trace[-1])
            )
        return result


def sample_posterior(
    estimate: PosteriorEstimate,
    n_draws: int,
    config: SamplerConfig | None = None,
    *,
    progress: ProgressCallback | None = None,
    proposal_covariance: NDArray[np.float64] | None = None,
    **overrides: Any,
) -> SamplerResult:
    """Run the adaptive random-walk Metropolis sampler from *estimate*.

    Keyword overrides are applied on top of *config*, e.g.
    ``sample_posterior(est, 1000, adaptive_scale_factor=2, burn_in_fraction=0.2)``.
    """
    if overrides:
        config = replace(config or SamplerConfig(), **overrides)
    sampler = AdaptiveMetropolisSampler(
        estimate, config, proposal_covariance=proposal_covariance
    )
    return sampler.sample(n_draws, progress=progress)


def arwm(*args, **kwargs) -> SamplerResult:
    """Alias for ``sample_posterior``."""
    return sample_posterior(*args, **kwargs)
