"""Tests for marginal data density estimators."""

from __future__ import annotations

import numpy as np
import pytest

from estimkit.estimation import (
    EstimationProblem,
    MarginalDataDensityResult,
    estimate_mdd_harmonic_mean,
    estimate_mdd_laplace,
    estimate_mdd_modified_harmonic_mean,
    estimate_posterior_mode,
    sample_posterior,
)
from estimkit.estimation.marginal_data_density import (
    _harmonic_mean_log_mdd,
    _modified_harmonic_mean_log_mdd,
)
from estimkit.exceptions import StatInsufficiencyError
from estimkit.model import Distribution


@pytest.fixture
def conjugate_estimate(gaussian_provider):
    problem = EstimationProblem(
        {"mu": (None, None, None, Distribution.normal(0.0, 1.0))}, gaussian_provider
    )
    return estimate_posterior_mode(problem)


@pytest.fixture
def conjugate_chain(conjugate_estimate):
    return sample_posterior(conjugate_estimate, 20000, burn_in_fraction=0.2, random_seed=31)


class TestHarmonicMeanMath:
    def test_closed_form_two_point_case(self):
        # Likelihood values: [1, 2] -> harmonic mean = 4/3
        ll = np.log(np.array([1.0, 2.0], dtype=np.float64))
        got = _harmonic_mean_log_mdd(ll)
        expected = np.log(4.0 / 3.0)
        assert got == pytest.approx(expected, abs=1e-12)

    def test_no_finite_draws(self):
        with pytest.raises(StatInsufficiencyError, match="No finite"):
            _harmonic_mean_log_mdd(np.array([np.nan, -np.inf]))


class TestModifiedHarmonicMeanMath:
    def test_exact_for_normalized_gaussian_posterior(self):
        # Posterior kernel equal to the N(0, 1) density integrates to one.
        rng = np.random.default_rng(5)
        draws = rng.standard_normal((40000, 1))
        logpost = -0.5 * np.log(2.0 * np.pi) - 0.5 * draws[:, 0] ** 2
        log_mdd, notes = _modified_harmonic_mean_log_mdd(draws, logpost, (0.1, 0.5, 0.9))
        assert log_mdd == pytest.approx(0.0, abs=0.03)
        assert notes == []

    def test_needs_more_draws_than_parameters(self):
        with pytest.raises(StatInsufficiencyError, match="more than"):
            _modified_harmonic_mean_log_mdd(np.zeros((3, 2)), np.zeros(3), (0.5,))

    def test_singular_chain(self):
        draws = np.ones((50, 2))
        with pytest.raises(StatInsufficiencyError, match="singular"):
            _modified_harmonic_mean_log_mdd(draws, np.zeros(50), (0.5,))


class TestMarginalDataDensity:
    def test_laplace_is_exact_for_gaussian_posterior(self, conjugate_estimate, gaussian_provider):
        result = estimate_mdd_laplace(conjugate_estimate)
        assert isinstance(result, MarginalDataDensityResult)
        assert result.method == "laplace"
        assert result.n_params == 1
        assert np.isfinite(result.hessian_logdet)
        assert result.log_mdd == pytest.approx(gaussian_provider.exact_log_mdd(), abs=1e-3)
        assert "laplace" in result.summary().lower()

    def test_modified_harmonic_mean_close_to_exact(self, conjugate_chain, gaussian_provider):
        result = estimate_mdd_modified_harmonic_mean(conjugate_chain)
        assert result.method == "modified_harmonic_mean"
        assert result.n_samples == conjugate_chain.samples.shape[0]
        assert result.log_mdd == pytest.approx(gaussian_provider.exact_log_mdd(), abs=0.15)

    def test_harmonic_mean_is_finite(self, conjugate_chain):
        result = estimate_mdd_harmonic_mean(conjugate_chain)
        assert result.method == "harmonic_mean"
        assert np.isfinite(result.log_mdd)
        assert any("unstable" in note for note in result.notes)

    def test_laplace_unavailable_without_hessian(self, gaussian_provider):
        problem = EstimationProblem({"mu": 0.0}, gaussian_provider)
        est = estimate_posterior_mode(problem, compute_covariance=False)
        with pytest.raises(StatInsufficiencyError, match="not available"):
            estimate_mdd_laplace(est)
