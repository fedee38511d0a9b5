"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import math

import numpy as np
import pytest

from estimkit.estimation import ConcentratedTerms
from estimkit.exceptions import EvaluationFailure

LOG_2PI = math.log(2.0 * math.pi)


class ConstantProvider:
    """Likelihood that carries no information: the posterior is the prior."""

    def __init__(self) -> None:
        self.calls = 0

    def raw_neg_log_lik(self, theta):
        self.calls += 1
        return 0.0


class GaussianMeanProvider:
    """``y_i ~ N(mu, 1)``; theta = [mu]."""

    def __init__(self, y):
        self.y = np.asarray(y, dtype=np.float64)
        self.calls = 0

    def raw_neg_log_lik(self, theta):
        self.calls += 1
        r = self.y - float(theta[0])
        return 0.5 * (self.y.size * LOG_2PI + float(r @ r))

    def exact_log_mdd(self, prior_var: float = 1.0) -> float:
        """log p(y) under a N(0, prior_var) prior on mu."""
        n = self.y.size
        total = float(self.y.sum())
        quad = float(self.y @ self.y) - prior_var * total**2 / (1.0 + n * prior_var)
        return -0.5 * (n * LOG_2PI + math.log(1.0 + n * prior_var) + quad)


class FailingProvider:
    """Fails whenever the first coordinate exceeds ``threshold``."""

    def __init__(self, threshold: float = 0.6):
        self.threshold = threshold

    def raw_neg_log_lik(self, theta):
        if float(theta[0]) > self.threshold:
            raise EvaluationFailure(f"model does not solve at {float(theta[0])}")
        return 0.5 * float(np.sum((np.asarray(theta) - 0.5) ** 2)) / 0.01


class AR1Provider:
    """AR(1) around a mean that is concentrated out of the likelihood.

    ``y_t - mu = rho * (y_{t-1} - mu) + e_t`` with unit shock variance; the
    common variance factor absorbs the actual shock scale.
    """

    def __init__(self, y, current=None):
        self.y = np.asarray(y, dtype=np.float64)
        self._current = dict(current or {})

    def current_values(self):
        return dict(self._current)

    def _residuals(self, theta):
        mu = float(self.y.mean())
        x = self.y - mu
        return x[1:] - float(theta[0]) * x[:-1], mu

    def raw_neg_log_lik(self, theta):
        e, _ = self._residuals(theta)
        return 0.5 * (e.size * LOG_2PI + float(e @ e))

    def concentrated_terms(self, theta):
        e, mu = self._residuals(theta)
        return ConcentratedTerms(
            n_obs=int(e.size),
            log_det=0.0,
            weighted_rss=float(e @ e),
            out_of_lik={"mu": mu},
        )


def simulate_ar1(n: int, rho: float, sigma: float, mu: float = 0.0, seed: int = 7):
    rng = np.random.default_rng(seed)
    y = np.zeros(n, dtype=np.float64)
    for t in range(1, n):
        y[t] = rho * y[t - 1] + sigma * rng.standard_normal()
    return y + mu


@pytest.fixture
def constant_provider() -> ConstantProvider:
    return ConstantProvider()


@pytest.fixture
def gaussian_data() -> np.ndarray:
    rng = np.random.default_rng(2024)
    return 0.7 + rng.standard_normal(50)


@pytest.fixture
def gaussian_provider(gaussian_data) -> GaussianMeanProvider:
    return GaussianMeanProvider(gaussian_data)


@pytest.fixture
def failing_provider() -> FailingProvider:
    return FailingProvider()


@pytest.fixture
def ar1_data() -> np.ndarray:
    return simulate_ar1(400, rho=0.6, sigma=0.5, mu=2.0, seed=11)


@pytest.fixture
def ar1_provider(ar1_data) -> AR1Provider:
    return AR1Provider(ar1_data, current={"rho": 0.3})
