"""Prior distributions parameterized by their first two moments."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from scipy import special

from estimkit.exceptions import ConfigurationError, InvalidMomentsError

_FAMILY_ALIASES: dict[str, str] = {
    "normal": "normal",
    "normal_pdf": "normal",
    "gaussian": "normal",
    "gaussian_pdf": "normal",
    "beta": "beta",
    "beta_pdf": "beta",
    "gamma": "gamma",
    "gamma_pdf": "gamma",
    "inv_gamma": "inv_gamma",
    "inv_gamma_pdf": "inv_gamma",
    "invgamma": "inv_gamma",
    "invgamma_pdf": "inv_gamma",
    "inverse_gamma": "inv_gamma",
    "inverse_gamma_pdf": "inv_gamma",
    "uniform": "uniform",
    "uniform_pdf": "uniform",
}

_SUPPORTED_FAMILIES = frozenset({"normal", "beta", "gamma", "inv_gamma", "uniform"})

# Families whose support is unbounded on at least one side accept std=inf as
# the improper (flat) prior sentinel.
_IMPROPER_FAMILIES = frozenset({"normal", "gamma", "inv_gamma"})

_LOG_SQRT_2PI = 0.5 * math.log(2.0 * math.pi)
_SQRT3 = math.sqrt(3.0)


def normalize_family(name: str) -> str:
    """Map family aliases to canonical names."""
    normalized = str(name).strip().lower()
    if normalized not in _FAMILY_ALIASES:
        supported = ", ".join(sorted(_SUPPORTED_FAMILIES))
        raise ConfigurationError(
            f"Unknown prior distribution '{name}'. Supported: {supported}"
        )
    return _FAMILY_ALIASES[normalized]


def _beta_shapes(mean: float, std: float) -> tuple[float, float]:
    if not (0.0 < mean < 1.0):
        raise InvalidMomentsError(f"Beta prior mean must be in (0, 1), got {mean}")
    kappa = mean * (1.0 - mean) / (std * std) - 1.0
    if kappa <= 0.0:
        raise InvalidMomentsError(
            "Beta prior std is too large for the given mean "
            f"(mean={mean}, std={std}): require std^2 < mean*(1-mean)"
        )
    return mean * kappa, (1.0 - mean) * kappa


def _gamma_shape_scale(mean: float, std: float) -> tuple[float, float]:
    if mean <= 0.0:
        raise InvalidMomentsError(f"Gamma prior mean must be > 0, got {mean}")
    return (mean / std) ** 2, (std * std) / mean


def _inv_gamma_shape_scale(mean: float, std: float) -> tuple[float, float]:
    if mean <= 0.0:
        raise InvalidMomentsError(f"Inverse-gamma prior mean must be > 0, got {mean}")
    shape = 2.0 + (mean * mean) / (std * std)
    return shape, mean * (shape - 1.0)


def _uniform_bounds(mean: float, std: float) -> tuple[float, float]:
    half_width = _SQRT3 * std
    return mean - half_width, mean + half_width


@dataclass(frozen=True, slots=True)
class Distribution:
    """Univariate prior distribution.

    Instances are built from a mean and a standard deviation; the
    family-specific shape parameters are solved by moment matching and kept
    in ``shape``. ``std = inf`` marks an improper flat prior over the
    family's support (normal, gamma and inverse-gamma only).

    Attributes:
        family: Canonical family name.
        mean: Requested mean.
        std: Requested standard deviation (``inf`` for improper).
        shape: Derived parameters: ``(mean, std)`` for normal,
            ``(alpha, beta)`` for beta, ``(shape, scale)`` for gamma and
            inverse-gamma, ``(lower, upper)`` for uniform. Empty when
            improper.
    """

    family: str
    mean: float
    std: float
    shape: tuple[float, ...] = field(init=False, default=())

    def __post_init__(self) -> None:
        family = normalize_family(self.family)
        mean = float(self.mean)
        std = float(self.std)

        if not math.isfinite(mean):
            raise InvalidMomentsError(f"Prior mean must be finite, got {mean}")
        if math.isnan(std) or std <= 0.0:
            raise InvalidMomentsError(f"Prior std must be > 0, got {std}")

        if math.isinf(std):
            if family not in _IMPROPER_FAMILIES:
                raise InvalidMomentsError(
                    f"Infinite std is only allowed for improper "
                    f"{', '.join(sorted(_IMPROPER_FAMILIES))} priors, got '{family}'"
                )
            if family in {"gamma", "inv_gamma"} and mean <= 0.0:
                raise InvalidMomentsError(f"{family} prior mean must be > 0, got {mean}")
            shape: tuple[float, ...] = ()
        elif family == "normal":
            shape = (mean, std)
        elif family == "beta":
            shape = _beta_shapes(mean, std)
        elif family == "gamma":
            shape = _gamma_shape_scale(mean, std)
        elif family == "inv_gamma":
            shape = _inv_gamma_shape_scale(mean, std)
        else:
            shape = _uniform_bounds(mean, std)

        object.__setattr__(self, "family", family)
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "std", std)
        object.__setattr__(self, "shape", tuple(float(v) for v in shape))

    # -- factories ---------------------------------------------------------

    @classmethod
    def from_mean_std(cls, family: str, mean: float, std: float) -> Distribution:
        return cls(family, mean, std)

    @classmethod
    def normal(cls, mean: float, std: float) -> Distribution:
        return cls("normal", mean, std)

    @classmethod
    def beta(cls, mean: float, std: float) -> Distribution:
        return cls("beta", mean, std)

    @classmethod
    def gamma(cls, mean: float, std: float) -> Distribution:
        return cls("gamma", mean, std)

    @classmethod
    def inv_gamma(cls, mean: float, std: float) -> Distribution:
        return cls("inv_gamma", mean, std)

    @classmethod
    def uniform(cls, mean: float, std: float) -> Distribution:
        return cls("uniform", mean, std)

    # -- properties --------------------------------------------------------

    @property
    def is_proper(self) -> bool:
        return math.isfinite(self.std)

    @property
    def variance(self) -> float:
        return self.std * self.std

    @property
    def support(self) -> tuple[float, float]:
        """Support as ``(lower, upper)``; open at infinite or density-zero ends."""
        if self.family == "normal":
            return (-math.inf, math.inf)
        if self.family == "beta":
            return (0.0, 1.0)
        if self.family in {"gamma", "inv_gamma"}:
            return (0.0, math.inf)
        return self.shape[0], self.shape[1]

    def in_support(self, x: float) -> bool:
        if math.isnan(x):
            return False
        if self.family == "normal":
            return math.isfinite(x)
        if self.family == "beta":
            return 0.0 < x < 1.0
        if self.family in {"gamma", "inv_gamma"}:
            return 0.0 < x < math.inf
        lower, upper = self.shape
        return lower <= x <= upper

    # -- densities ---------------------------------------------------------

    def log_density(self, x: float) -> float:
        """Log density at *x*; ``-inf`` outside the support."""
        x = float(x)
        if not self.in_support(x):
            return -math.inf
        if not self.is_proper:
            return 0.0

        fam = self.family
        if fam == "normal":
            mu, sigma = self.shape
            z = (x - mu) / sigma
            return -_LOG_SQRT_2PI - math.log(sigma) - 0.5 * z * z
        if fam == "beta":
            a, b = self.shape
            return (
                (a - 1.0) * math.log(x)
                + (b - 1.0) * math.log1p(-x)
                - float(special.betaln(a, b))
            )
        if fam == "gamma":
            k, theta = self.shape
            return (
                (k - 1.0) * math.log(x)
                - x / theta
                - k * math.log(theta)
                - float(special.gammaln(k))
            )
        if fam == "inv_gamma":
            a, b = self.shape
            return (
                a * math.log(b)
                - float(special.gammaln(a))
                - (a + 1.0) * math.log(x)
                - b / x
            )
        lower, upper = self.shape
        return -math.log(upper - lower)

    def density(self, x: float) -> float:
        lp = self.log_density(x)
        return 0.0 if lp == -math.inf else math.exp(lp)

    def log_density_d2(self, x: float) -> float:
        """Second derivative of the log density at *x* (``nan`` outside support)."""
        x = float(x)
        if not self.in_support(x):
            return math.nan
        if not self.is_proper:
            return 0.0

        fam = self.family
        if fam == "normal":
            return -1.0 / self.variance
        if fam == "beta":
            a, b = self.shape
            return -(a - 1.0) / (x * x) - (b - 1.0) / ((1.0 - x) ** 2)
        if fam == "gamma":
            k, _ = self.shape
            return -(k - 1.0) / (x * x)
        if fam == "inv_gamma":
            a, b = self.shape
            return (a + 1.0) / (x * x) - 2.0 * b / (x ** 3)
        return 0.0

    # -- serialization -----------------------------------------------------

    def to_dict(self) -> dict[str, float | str]:
        return {"distribution": self.family, "mean": self.mean, "std": self.std}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Distribution:
        family = data.get(
            "distribution",
            data.get("dist", data.get("family", data.get("shape"))),
        )
        if family is None:
            raise ConfigurationError("Prior dict must include 'distribution'")
        if "mean" not in data or "std" not in data:
            raise ConfigurationError("Prior dict must include 'mean' and 'std'")
        return cls(str(family), float(data["mean"]), float(data["std"]))


def parse_distribution(
    prior: Distribution | dict[str, Any] | str | None,
    *,
    mean: float | None = None,
    std: float | None = None,
) -> Distribution | None:
    """Parse prior input given as an object, a dict, or a family name."""
    if prior is None:
        if mean is None and std is None:
            return None
        raise ConfigurationError("Prior mean/std provided without a prior distribution")

    if isinstance(prior, Distribution):
        return prior

    if isinstance(prior, dict):
        return Distribution.from_dict(prior)

    if isinstance(prior, str):
        if mean is None or std is None:
            raise ConfigurationError(
                "Prior distribution string requires both mean and std "
                "(e.g. prior='normal', mean=0.9, std=0.05)"
            )
        return Distribution(prior, float(mean), float(std))

    raise ConfigurationError(f"Unsupported prior specification type: {type(prior)!r}")
