"""Tests for moment-parameterized prior distributions."""

from __future__ import annotations

import math

import pytest
from scipy import integrate, stats

from estimkit.exceptions import ConfigurationError, InvalidMomentsError
from estimkit.model.priors import Distribution, normalize_family, parse_distribution


def _moments(dist: Distribution, lower: float, upper: float) -> tuple[float, float, float]:
    mass = integrate.quad(dist.density, lower, upper, limit=200)[0]
    mean = integrate.quad(lambda x: x * dist.density(x), lower, upper, limit=200)[0]
    second = integrate.quad(lambda x: x * x * dist.density(x), lower, upper, limit=200)[0]
    return mass, mean, math.sqrt(second - mean * mean)


class TestMomentMatching:
    @pytest.mark.parametrize(
        "family, mean, std, lower, upper",
        [
            ("normal", 0.9, 0.05, 0.4, 1.4),
            ("beta", 0.3, 0.1, 0.0, 1.0),
            ("gamma", 2.0, 0.5, 0.0, 20.0),
            ("inv_gamma", 0.5, 0.2, 0.0, 60.0),
            ("uniform", 1.0, 0.5, 1.0 - 0.5 * math.sqrt(3.0), 1.0 + 0.5 * math.sqrt(3.0)),
        ],
    )
    def test_density_reproduces_requested_moments(self, family, mean, std, lower, upper):
        dist = Distribution(family, mean, std)
        mass, got_mean, got_std = _moments(dist, lower, upper)
        assert mass == pytest.approx(1.0, abs=1e-5)
        assert got_mean == pytest.approx(mean, rel=1e-4)
        assert got_std == pytest.approx(std, rel=2e-3)

    def test_beta_shapes_match_scipy(self):
        dist = Distribution.beta(0.7, 0.1)
        a, b = dist.shape
        assert dist.log_density(0.6) == pytest.approx(stats.beta(a, b).logpdf(0.6))

    def test_gamma_shape_scale(self):
        dist = Distribution.gamma(2.0, 0.5)
        assert dist.shape == pytest.approx((16.0, 0.125))
        assert dist.log_density(1.7) == pytest.approx(
            stats.gamma(16.0, scale=0.125).logpdf(1.7)
        )

    def test_inv_gamma_matches_scipy(self):
        dist = Distribution.inv_gamma(0.5, 0.2)
        a, b = dist.shape
        assert a == pytest.approx(2.0 + 0.25 / 0.04)
        assert dist.log_density(0.4) == pytest.approx(stats.invgamma(a, scale=b).logpdf(0.4))

    def test_uniform_bounds(self):
        dist = Distribution.uniform(0.0, 1.0)
        lo, hi = dist.shape
        assert lo == pytest.approx(-math.sqrt(3.0))
        assert hi == pytest.approx(math.sqrt(3.0))
        assert dist.log_density(0.0) == pytest.approx(-math.log(2.0 * math.sqrt(3.0)))


class TestSupport:
    @pytest.mark.parametrize(
        "dist, outside",
        [
            (Distribution.beta(0.5, 0.1), 0.0),
            (Distribution.beta(0.5, 0.1), 1.2),
            (Distribution.gamma(1.0, 0.5), -0.1),
            (Distribution.inv_gamma(1.0, 0.5), 0.0),
            (Distribution.uniform(0.0, 1.0), 2.0),
        ],
    )
    def test_log_density_is_minus_inf_outside_support(self, dist, outside):
        assert dist.log_density(outside) == -math.inf
        assert dist.density(outside) == 0.0

    def test_nan_is_outside_support(self):
        assert Distribution.normal(0.0, 1.0).log_density(math.nan) == -math.inf


class TestImproperPriors:
    def test_inv_gamma_with_infinite_std_is_flat_on_positive_axis(self):
        dist = Distribution.inv_gamma(0.1, math.inf)
        assert not dist.is_proper
        assert dist.shape == ()
        assert dist.log_density(0.01) == 0.0
        assert dist.log_density(50.0) == 0.0
        assert dist.log_density(-1.0) == -math.inf

    def test_normal_improper_is_flat_everywhere(self):
        dist = Distribution.normal(0.0, math.inf)
        assert dist.log_density(-1e6) == 0.0
        assert dist.log_density_d2(3.0) == 0.0

    @pytest.mark.parametrize("family", ["beta", "uniform"])
    def test_infinite_std_rejected_for_bounded_families(self, family):
        with pytest.raises(InvalidMomentsError, match="Infinite std"):
            Distribution(family, 0.5, math.inf)


class TestInvalidMoments:
    def test_beta_std_too_large(self):
        with pytest.raises(InvalidMomentsError, match="too large"):
            Distribution.beta(0.5, 0.6)

    def test_beta_mean_outside_unit_interval(self):
        with pytest.raises(InvalidMomentsError, match=r"\(0, 1\)"):
            Distribution.beta(1.5, 0.1)

    @pytest.mark.parametrize("family", ["gamma", "inv_gamma"])
    def test_positive_families_need_positive_mean(self, family):
        with pytest.raises(InvalidMomentsError, match="> 0"):
            Distribution(family, -1.0, 0.5)

    def test_non_positive_std(self):
        with pytest.raises(InvalidMomentsError, match="std must be > 0"):
            Distribution.normal(0.0, 0.0)

    def test_invalid_moments_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            Distribution.gamma(0.0, 1.0)


class TestCurvature:
    @pytest.mark.parametrize(
        "dist, x",
        [
            (Distribution.normal(0.3, 0.2), 0.1),
            (Distribution.beta(0.4, 0.15), 0.35),
            (Distribution.gamma(1.5, 0.4), 1.2),
            (Distribution.inv_gamma(0.8, 0.3), 0.6),
        ],
    )
    def test_analytic_second_derivative_matches_finite_differences(self, dist, x):
        h = 1e-4
        fd = (dist.log_density(x + h) - 2.0 * dist.log_density(x) + dist.log_density(x - h)) / (
            h * h
        )
        assert dist.log_density_d2(x) == pytest.approx(fd, rel=1e-4)

    def test_second_derivative_nan_outside_support(self):
        assert math.isnan(Distribution.beta(0.5, 0.1).log_density_d2(1.5))


class TestParsing:
    def test_aliases(self):
        assert normalize_family("Gamma_PDF") == "gamma"
        assert normalize_family("inverse_gamma") == "inv_gamma"

    def test_unknown_family(self):
        with pytest.raises(ConfigurationError, match="Unknown prior distribution"):
            normalize_family("weibull")

    def test_dict_round_trip(self):
        dist = Distribution.beta(0.6, 0.2)
        assert Distribution.from_dict(dist.to_dict()) == dist

    def test_string_form_requires_moments(self):
        assert parse_distribution("normal", mean=0.9, std=0.05) == Distribution.normal(0.9, 0.05)
        with pytest.raises(ConfigurationError, match="requires both mean and std"):
            parse_distribution("normal", mean=0.9)

    def test_moments_without_family(self):
        assert parse_distribution(None) is None
        with pytest.raises(ConfigurationError, match="without a prior"):
            parse_distribution(None, mean=0.1, std=0.1)
