"""Typed configuration records for the estimation components."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field, fields
from typing import Any

import numpy as np

from estimkit.exceptions import ConfigurationError

SUPPORTED_STATS = (
    "chain",
    "mean",
    "median",
    "std",
    "hpdi",
    "ess",
    "rhat",
    "mdd",
    "mdd_laplace",
    "mdd_harmonic",
)

DEFAULT_STATS = ("chain", "mean", "std", "hpdi", "mdd")


def _known_kwargs(cls: type, data: Mapping[str, Any], section: str) -> dict[str, Any]:
    names = {f.name for f in fields(cls) if f.init}
    unknown = sorted(set(data) - names)
    if unknown:
        raise ConfigurationError(
            f"Unknown {section} option(s) {unknown}. Supported: {sorted(names)}"
        )
    return dict(data)


@dataclass(frozen=True)
class OptimizerConfig:
    """Posterior-mode optimizer settings.

    Attributes:
        method: ``scipy.optimize.minimize`` method applied in free space.
        max_iterations: Iteration budget.
        max_function_evaluations: Objective-evaluation budget (passed to
            methods that accept one).
        tolerance: Optional ``tol`` forwarded to scipy.
        hessian_step: Finite-difference step for the Hessian at the mode.
        compute_covariance: Compute the Hessian-based covariance.
    """

    method: str = "L-BFGS-B"
    max_iterations: int = 1000
    max_function_evaluations: int = 10000
    tolerance: float | None = None
    hessian_step: float = 1e-4
    compute_covariance: bool = True

    def __post_init__(self) -> None:
        if int(self.max_iterations) < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if int(self.max_function_evaluations) < 1:
            raise ConfigurationError(
                f"max_function_evaluations must be >= 1, got {self.max_function_evaluations}"
            )
        if self.tolerance is not None and not (self.tolerance > 0.0):
            raise ConfigurationError(f"tolerance must be > 0, got {self.tolerance}")
        if not (math.isfinite(self.hessian_step) and self.hessian_step > 0.0):
            raise ConfigurationError(f"hessian_step must be finite and > 0, got {self.hessian_step}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OptimizerConfig:
        return cls(**_known_kwargs(cls, data, "optimizer"))


@dataclass(frozen=True)
class SamplerConfig:
    """Adaptive random-walk Metropolis settings.

    Attributes:
        target_acceptance_ratio: Acceptance ratio the step size is driven to.
        adaptive_scale_factor: Gain of the step-size adaptation (0 disables it).
        adaptation_decay: Exponent of the diminishing adaptation gain
            ``t**-decay``; must lie in (0.5, 1].
        adapt_proposal_covariance: Re-estimate the proposal shape from the
            covariance of accepted draws.
        burn_in_fraction: Fraction of draws trimmed from the returned samples.
        adaptation_fraction: Fraction of draws during which adaptation runs
            (defaults to ``burn_in_fraction``).
        initial_scale: Scale applied to the mode covariance for the first
            proposal.
        random_seed: Seed for ``numpy.random.default_rng``.
        progress: Log progress every 10 % of the run.
    """

    target_acceptance_ratio: float = 0.234
    adaptive_scale_factor: float = 1.0
    adaptation_decay: float = 0.8
    adapt_proposal_covariance: bool = True
    burn_in_fraction: float = 0.20
    adaptation_fraction: float | None = None
    initial_scale: float = 1.0 / 3.0
    random_seed: int | None = None
    progress: bool = False

    def __post_init__(self) -> None:
        if not (0.0 < self.target_acceptance_ratio < 1.0):
            raise ConfigurationError(
                f"target_acceptance_ratio must be in (0, 1), got {self.target_acceptance_ratio}"
            )
        if not (math.isfinite(self.adaptive_scale_factor) and self.adaptive_scale_factor >= 0.0):
            raise ConfigurationError(
                f"adaptive_scale_factor must be finite and >= 0, got {self.adaptive_scale_factor}"
            )
        if not (0.5 < self.adaptation_decay <= 1.0):
            raise ConfigurationError(
                f"adaptation_decay must be in (0.5, 1], got {self.adaptation_decay}"
            )
        if not (0.0 <= self.burn_in_fraction < 1.0):
            raise ConfigurationError(
                f"burn_in_fraction must be in [0, 1), got {self.burn_in_fraction}"
            )
        if self.adaptation_fraction is not None and not (0.0 <= self.adaptation_fraction <= 1.0):
            raise ConfigurationError(
                f"adaptation_fraction must be in [0, 1], got {self.adaptation_fraction}"
            )
        if not (math.isfinite(self.initial_scale) and self.initial_scale > 0.0):
            raise ConfigurationError(
                f"initial_scale must be finite and > 0, got {self.initial_scale}"
            )

    @property
    def effective_adaptation_fraction(self) -> float:
        if self.adaptation_fraction is None:
            return self.burn_in_fraction
        return self.adaptation_fraction

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SamplerConfig:
        return cls(**_known_kwargs(cls, data, "sampler"))


def _default_multipliers() -> tuple[float, ...]:
    # 0.95 .. 1.05 in steps of 0.005, with 1.0 represented exactly
    return tuple(1.0 + 0.005 * i for i in range(-10, 11))


@dataclass(frozen=True)
class NeighbourhoodConfig:
    """Relative grid of multipliers applied to each mode coordinate."""

    multipliers: tuple[float, ...] = field(default_factory=_default_multipliers)

    def __post_init__(self) -> None:
        grid = tuple(float(m) for m in self.multipliers)
        if not grid:
            raise ConfigurationError("multipliers cannot be empty")
        if not all(math.isfinite(m) for m in grid):
            raise ConfigurationError("multipliers must be finite")
        object.__setattr__(self, "multipliers", grid)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NeighbourhoodConfig:
        kwargs = _known_kwargs(cls, data, "neighbourhood")
        if "multipliers" in kwargs:
            kwargs["multipliers"] = tuple(kwargs["multipliers"])
        return cls(**kwargs)


@dataclass(frozen=True)
class StatsConfig:
    """Chain statistics settings.

    Attributes:
        requested_stats: Statistics to compute (see ``SUPPORTED_STATS``).
        hpd_coverage: Probability mass of the HPD interval.
        min_draws: Minimum number of retained draws for any statistic
            other than ``chain``.
        mdd_coverages: Truncation probabilities averaged by the modified
            harmonic mean estimator.
    """

    requested_stats: tuple[str, ...] = DEFAULT_STATS
    hpd_coverage: float = 0.90
    min_draws: int = 10
    mdd_coverages: tuple[float, ...] = (0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9)

    def __post_init__(self) -> None:
        requested = tuple(str(s).strip().lower() for s in self.requested_stats)
        unknown = [s for s in requested if s not in SUPPORTED_STATS]
        if unknown:
            raise ConfigurationError(
                f"Unknown statistics {unknown}. Supported: {list(SUPPORTED_STATS)}"
            )
        if not (0.0 < self.hpd_coverage < 1.0):
            raise ConfigurationError(f"hpd_coverage must be in (0, 1), got {self.hpd_coverage}")
        if int(self.min_draws) < 2:
            raise ConfigurationError(f"min_draws must be >= 2, got {self.min_draws}")
        coverages = tuple(float(p) for p in self.mdd_coverages)
        if not coverages or not all(0.0 < p < 1.0 for p in coverages):
            raise ConfigurationError("mdd_coverages must be non-empty and within (0, 1)")
        object.__setattr__(self, "requested_stats", requested)
        object.__setattr__(self, "mdd_coverages", coverages)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StatsConfig:
        kwargs = _known_kwargs(cls, data, "stats")
        for key in ("requested_stats", "mdd_coverages"):
            if key in kwargs:
                value = kwargs[key]
                kwargs[key] = (value,) if isinstance(value, str) else tuple(value)
        return cls(**kwargs)


@dataclass(frozen=True)
class EstimationConfig:
    """Configuration for a complete run, one record per component."""

    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    neighbourhood: NeighbourhoodConfig = field(default_factory=NeighbourhoodConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> EstimationConfig:
        data = dict(data or {})
        sections = {
            "optimizer": OptimizerConfig,
            "sampler": SamplerConfig,
            "neighbourhood": NeighbourhoodConfig,
            "stats": StatsConfig,
        }
        kwargs: dict[str, Any] = {}
        for key, section_cls in sections.items():
            section = data.get(key)
            if section is None:
                continue
            if not isinstance(section, Mapping):
                raise ConfigurationError(f"Config section '{key}' must be a mapping")
            kwargs[key] = section_cls.from_dict(section)
        return cls(**kwargs)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        out = asdict(self)
        for section in out.values():
            for key, value in section.items():
                if isinstance(value, tuple):
                    section[key] = list(value)
        return out


def as_sequence(values: Sequence[float] | np.ndarray | None) -> tuple[float, ...] | None:
    if values is None:
        return None
    return tuple(float(v) for v in np.asarray(values, dtype=np.float64).reshape(-1))
