"""Bayesian estimation of an AR(1) with a concentrated variance factor.

Run from repository root:
    python examples/estimate_ar1.py
"""

from __future__ import annotations

from pathlib import Path

import numpy as np

from estimkit import (
    ConcentratedTerms,
    EstimationProblem,
    chain_stats,
    estimate_posterior_mode,
    load_config,
    load_specs,
    neighbourhood,
    sample_posterior,
    setup_logging,
)


class AR1Likelihood:
    """Gaussian AR(1) likelihood around a sample mean.

    ``y_t - mu = rho * (y_{t-1} - mu) + std_e * e_t``. The mean is
    concentrated out (reported as ``mu``); with the variance factor on, only
    the ratio of shock scales matters, so ``std_e`` acts as a normalization.
    """

    def __init__(self, y: np.ndarray) -> None:
        self.y = np.asarray(y, dtype=np.float64)

    def current_values(self) -> dict[str, float]:
        x = self.y - self.y.mean()
        return {"rho": float(x[1:] @ x[:-1] / (x[:-1] @ x[:-1]))}

    def concentrated_terms(self, theta: np.ndarray) -> ConcentratedTerms:
        rho, std_e = float(theta[0]), float(theta[1])
        mu = float(self.y.mean())
        x = self.y - mu
        e = x[1:] - rho * x[:-1]
        n = int(e.size)
        return ConcentratedTerms(
            n_obs=n,
            log_det=n * np.log(std_e**2),
            weighted_rss=float(e @ e) / std_e**2,
            out_of_lik={"mu": mu},
        )

    def raw_neg_log_lik(self, theta: np.ndarray) -> float:
        t = self.concentrated_terms(theta)
        return 0.5 * (t.n_obs * np.log(2.0 * np.pi) + t.log_det + t.weighted_rss)


def main() -> None:
    setup_logging("INFO")
    config_path = Path(__file__).resolve().parent / "configs" / "ar1_run.yaml"
    specs = load_specs(config_path)
    config = load_config(config_path)

    rng = np.random.default_rng(7)
    y = np.zeros(300)
    for t in range(1, y.size):
        y[t] = 0.7 * y[t - 1] + 0.4 * rng.standard_normal()
    y += 1.5

    problem = EstimationProblem(
        specs, AR1Likelihood(y), variance_factor=True, out_of_lik=["mu"]
    )
    estimate = estimate_posterior_mode(problem, config.optimizer)
    print(estimate.summary())
    print("Scaled parameters:", estimate.scaled_parameters())
    print()

    grid = neighbourhood(estimate, config=config.neighbourhood)
    print(grid.to_frame().to_string(index=False))
    print()

    result = sample_posterior(estimate, 20000, config.sampler)
    print(result.summary())
    print()
    print(chain_stats(estimate, result, config=config.stats).summary())


if __name__ == "__main__":
    np.set_printoptions(precision=6, suppress=True)
    main()
