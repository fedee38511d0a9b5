"""Tests for the adaptive random-walk Metropolis sampler."""

from __future__ import annotations

import numpy as np
import pytest

from estimkit.config import SamplerConfig
from estimkit.estimation import (
    AdaptiveMetropolisSampler,
    EstimationProblem,
    MCMCDiagnostics,
    SamplerResult,
    arwm,
    effective_sample_size,
    estimate_posterior_mode,
    sample_posterior,
    split_rhat,
)
from estimkit.exceptions import EstimationError
from estimkit.model import Distribution


@pytest.fixture
def normal_2d_estimate(constant_provider):
    problem = EstimationProblem(
        {
            "a": (None, None, None, Distribution.normal(1.0, 0.5)),
            "b": (None, None, None, Distribution.normal(-2.0, 2.0)),
        },
        constant_provider,
    )
    return estimate_posterior_mode(problem)


@pytest.fixture
def bounded_estimate(constant_provider):
    problem = EstimationProblem(
        {"x": (None, 0.0, 1.0, Distribution.normal(0.9, 0.3))}, constant_provider
    )
    return estimate_posterior_mode(problem)


class TestChainShapes:
    def test_zero_draws_gives_empty_chain(self, normal_2d_estimate):
        result = sample_posterior(normal_2d_estimate, 0, random_seed=1)
        assert result.chain.shape == (0, 2)
        assert result.samples.shape == (0, 2)
        assert result.burn_in == 0

    def test_burn_in_is_trimmed(self, normal_2d_estimate):
        result = sample_posterior(normal_2d_estimate, 100, burn_in_fraction=0.2, random_seed=1)
        assert result.chain.shape == (100, 2)
        assert result.burn_in == 20
        assert result.samples.shape == (80, 2)
        assert result.log_posterior_samples.shape == (80,)
        np.testing.assert_array_equal(result.samples, result.chain[20:])

    def test_chain_starts_from_the_mode_neighbourhood(self, normal_2d_estimate):
        result = sample_posterior(normal_2d_estimate, 1, random_seed=3)
        assert result.accepted.shape == (1,)
        if not result.accepted[0]:
            np.testing.assert_array_equal(result.chain[0], normal_2d_estimate.mode)

    def test_invalid_draw_count(self, normal_2d_estimate):
        with pytest.raises(EstimationError, match="non-negative integer"):
            sample_posterior(normal_2d_estimate, -5)


class TestReproducibility:
    def test_same_seed_same_chain(self, normal_2d_estimate):
        r1 = sample_posterior(normal_2d_estimate, 500, random_seed=123)
        r2 = sample_posterior(normal_2d_estimate, 500, random_seed=123)
        np.testing.assert_array_equal(r1.chain, r2.chain)
        np.testing.assert_array_equal(r1.log_posterior_chain, r2.log_posterior_chain)
        assert r1.final_scale == r2.final_scale

    def test_sampler_instance_resets_between_runs(self, normal_2d_estimate):
        sampler = AdaptiveMetropolisSampler(normal_2d_estimate, SamplerConfig(random_seed=9))
        r1 = sampler.sample(300)
        r2 = sampler.sample(300)
        np.testing.assert_array_equal(r1.chain, r2.chain)

    def test_different_seed_different_chain(self, normal_2d_estimate):
        r1 = sample_posterior(normal_2d_estimate, 200, random_seed=1)
        r2 = sample_posterior(normal_2d_estimate, 200, random_seed=2)
        assert not np.array_equal(r1.chain, r2.chain)


class TestAdaptation:
    def test_acceptance_ratio_reaches_target(self, normal_2d_estimate):
        result = sample_posterior(
            normal_2d_estimate,
            10000,
            target_acceptance_ratio=0.234,
            burn_in_fraction=0.5,
            random_seed=2024,
        )
        assert result.post_burn_acceptance_rate == pytest.approx(0.234, abs=0.05)

    def test_posterior_moments(self, normal_2d_estimate):
        result = sample_posterior(normal_2d_estimate, 20000, burn_in_fraction=0.25, random_seed=7)
        means = result.posterior_mean()
        stds = result.posterior_std()
        assert means["a"] == pytest.approx(1.0, abs=0.05)
        assert means["b"] == pytest.approx(-2.0, abs=0.2)
        assert stds["a"] == pytest.approx(0.5, rel=0.1)
        assert stds["b"] == pytest.approx(2.0, rel=0.1)

    def test_no_adaptation_keeps_scale(self, normal_2d_estimate):
        result = sample_posterior(
            normal_2d_estimate,
            200,
            adaptive_scale_factor=0.0,
            adapt_proposal_covariance=False,
            random_seed=5,
        )
        assert result.final_scale == pytest.approx(1.0 / 3.0)
        np.testing.assert_allclose(result.proposal_covariance, normal_2d_estimate.covariance)


class TestBounds:
    def test_draws_respect_bounds(self, bounded_estimate):
        result = sample_posterior(bounded_estimate, 3000, random_seed=11)
        assert np.all(result.chain >= 0.0)
        assert np.all(result.chain <= 1.0)

    def test_out_of_bounds_candidates_are_not_evaluated(self, constant_provider):
        problem = EstimationProblem(
            {"x": (None, 0.0, 1.0, Distribution.normal(0.9, 0.3))}, constant_provider, cache=False
        )
        est = estimate_posterior_mode(problem)
        calls_before = constant_provider.calls
        result = sample_posterior(est, 2000, random_seed=11)
        evaluated = constant_provider.calls - calls_before
        assert evaluated < result.n_recorded + 1


class TestFailures:
    def test_failed_evaluations_are_rejected(self, failing_provider):
        problem = EstimationProblem({"x": (0.5, 0.0, 1.0)}, failing_provider)
        est = estimate_posterior_mode(problem)
        result = sample_posterior(est, 3000, random_seed=17)
        assert result.n_recorded == 3000
        assert np.all(result.chain <= 0.6)
        assert np.all(np.isfinite(result.log_posterior_chain))
        assert np.all(np.isfinite(result.log_likelihood_chain))
        assert not result.accepted.all()

    def test_provider_runtime_errors_are_rejected(self):
        def provider(theta):
            if float(theta[0]) > 0.6:
                raise RuntimeError("model does not solve")
            return 0.0

        problem = EstimationProblem(
            {"x": (0.5, 0.0, 1.0, Distribution.normal(0.5, 0.1))}, provider
        )
        est = estimate_posterior_mode(problem)
        result = sample_posterior(est, 2000, random_seed=5)
        assert np.all(result.chain <= 0.6)
        assert np.all(np.isfinite(result.log_posterior_chain))


class TestCancellation:
    def test_progress_false_stops_run(self, normal_2d_estimate):
        def progress(i, n):
            return i < 50

        result = sample_posterior(normal_2d_estimate, 200, progress=progress, random_seed=1)
        assert result.cancelled
        assert result.n_recorded == 50
        assert result.n_draws == 200
        assert result.burn_in == 40

    def test_progress_none_runs_to_completion(self, normal_2d_estimate):
        calls = []
        result = sample_posterior(
            normal_2d_estimate, 30, progress=lambda i, n: calls.append(i), random_seed=1
        )
        assert not result.cancelled
        assert calls == list(range(1, 31))


class TestProposalCovariance:
    def test_nan_covariance_requires_override(self, normal_2d_estimate):
        normal_2d_estimate.covariance = np.full((2, 2), np.nan)
        with pytest.raises(EstimationError, match="not finite"):
            sample_posterior(normal_2d_estimate, 10)
        result = sample_posterior(
            normal_2d_estimate, 10, proposal_covariance=np.eye(2), random_seed=0
        )
        assert result.n_recorded == 10

    def test_indefinite_covariance_is_repaired(self, normal_2d_estimate):
        sampler = AdaptiveMetropolisSampler(
            normal_2d_estimate, proposal_covariance=np.array([[1.0, 2.0], [2.0, 1.0]])
        )
        assert np.all(np.linalg.eigvalsh(sampler.initial_covariance) > 0.0)


class TestResult:
    def test_dict_round_trip(self, normal_2d_estimate):
        result = arwm(normal_2d_estimate, 120, random_seed=4)
        restored = SamplerResult.from_dict(result.to_dict())
        np.testing.assert_array_equal(restored.chain, result.chain)
        np.testing.assert_array_equal(restored.accepted, result.accepted)
        assert restored.burn_in == result.burn_in
        assert restored.seed == 4

    def test_frame_and_traces(self, normal_2d_estimate):
        result = sample_posterior(normal_2d_estimate, 100, random_seed=4)
        df = result.to_frame()
        assert list(df.columns) == ["a", "b", "log_posterior"]
        assert len(df) == 80
        traces = result.trace_dict(post_burn=False)
        assert traces["a"].shape == (100,)

    def test_diagnostics(self, normal_2d_estimate):
        result = sample_posterior(normal_2d_estimate, 2000, random_seed=4)
        diag = result.diagnostics()
        assert isinstance(diag, MCMCDiagnostics)
        assert set(diag.ess) == {"a", "b"}
        assert all(v > 0.0 for v in diag.ess.values())
        assert result.diagnostics() is diag
        assert "Adaptive Random-Walk Metropolis" in result.summary()


class TestDiagnosticsMath:
    def test_ess_of_independent_draws_is_close_to_n(self):
        rng = np.random.default_rng(0)
        ess = effective_sample_size(rng.standard_normal(4000))
        assert ess == pytest.approx(4000, rel=0.15)

    def test_split_rhat_near_one_for_stationary_chain(self):
        rng = np.random.default_rng(1)
        rhat, note = split_rhat(rng.standard_normal((2000, 2)))
        assert note is None or isinstance(note, str)
        np.testing.assert_allclose(rhat, 1.0, atol=0.02)
