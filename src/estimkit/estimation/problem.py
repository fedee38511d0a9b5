"""Bayesian estimation problem: priors bound to an external likelihood.

The structural model enters only through an *objective provider* exposing
``raw_neg_log_lik(theta) -> float``. The problem adds the log-prior, the
bound-preserving reparameterization, closed-form concentration of a common
variance factor, and the penalty convention for points where the provider
cannot evaluate.
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from estimkit.estimation.numerics import numerical_gradient, numerical_hessian
from estimkit.estimation.transforms import (
    BoundTransform,
    jacobian_terms,
    natural_hessian_from_free,
    to_free_vector,
    to_natural_vector,
)
from estimkit.exceptions import (
    BoundViolation,
    ConfigurationError,
    EstimationError,
    EstimkitError,
    EvaluationFailure,
)
from estimkit.model.parameters import ParameterSpec, parse_specs

logger = logging.getLogger(__name__)

_LOG_2PI = math.log(2.0 * math.pi)


@runtime_checkable
class ObjectiveProvider(Protocol):
    """Capability interface of the model + data likelihood.

    Implementations raise :class:`EvaluationFailure` when the model cannot
    be evaluated at *theta* (e.g. it does not solve).
    """

    def raw_neg_log_lik(self, theta: NDArray[np.float64]) -> float: ...


@dataclass(frozen=True, slots=True)
class ConcentratedTerms:
    """Likelihood pieces returned by providers that support concentration.

    The Gaussian negative log-likelihood with prediction-error decomposition
    is ``0.5 * (n_obs*log(2*pi) + log_det + weighted_rss)``. Parameters
    concentrated out in closed form by the provider are reported in
    ``out_of_lik``.
    """

    n_obs: int
    log_det: float
    weighted_rss: float
    out_of_lik: dict[str, float] = field(default_factory=dict)


class FunctionProvider:
    """Adapt plain callables to the provider interface."""

    def __init__(
        self,
        func: Callable[[NDArray[np.float64]], float],
        *,
        concentrated: Callable[[NDArray[np.float64]], ConcentratedTerms] | None = None,
        current_values: Mapping[str, float] | None = None,
    ) -> None:
        self._func = func
        self._concentrated = concentrated
        self.current_values = dict(current_values or {})

    def raw_neg_log_lik(self, theta: NDArray[np.float64]) -> float:
        return float(self._func(theta))

    def concentrated_terms(self, theta: NDArray[np.float64]) -> ConcentratedTerms:
        if self._concentrated is None:
            raise EstimationError("This provider does not supply concentrated terms")
        return self._concentrated(theta)

    @property
    def supports_concentration(self) -> bool:
        return self._concentrated is not None


@dataclass(frozen=True, slots=True)
class Evaluation:
    """Objective pieces at one natural-space parameter vector."""

    neg_log_likelihood: float
    log_prior: float
    variance_factor: float = 1.0
    out_of_lik: dict[str, float] = field(default_factory=dict)

    @property
    def neg_log_posterior(self) -> float:
        return self.neg_log_likelihood - self.log_prior

    @property
    def log_posterior(self) -> float:
        return self.log_prior - self.neg_log_likelihood


def _supports_concentration(provider: Any) -> bool:
    flag = getattr(provider, "supports_concentration", None)
    if flag is not None:
        return bool(flag)
    return callable(getattr(provider, "concentrated_terms", None))


class EstimationProblem:
    """Priors, bounds and a likelihood provider for one estimation run.

    Parameter vectors are ordered as ``specs`` at construction. Two
    coordinate systems are used: *natural* values (what the model sees) and
    *free* values (unbounded optimizer coordinates).

    Args:
        specs: Mapping name -> spec (any form accepted by
            :meth:`ParameterSpec.parse`) or an iterable of specs.
        provider: Objective provider or a plain callable
            ``theta -> negative log-likelihood``.
        current_values: Values used for specs whose start is NaN.
        out_of_lik: Names of parameters concentrated out of the likelihood
            by the provider (reported, not estimated here).
        variance_factor: Concentrate a common variance factor out of the
            likelihood.
        shock_std_names: Parameters rescaled by the square root of the
            variance factor. Defaults to names starting with ``std_``.
        penalty: Finite objective value used where evaluation fails.
        cache: Memoize provider evaluations.
        cache_max_size: Maximum number of cached points (LRU eviction).
        failure_exceptions: Provider exception types treated as evaluation
            failures and converted to the penalty. Errors raised by this
            package itself (other than :class:`EvaluationFailure`) always
            propagate.
    """

    def __init__(
        self,
        specs: Mapping[str, Any] | Iterable[ParameterSpec],
        provider: ObjectiveProvider | Callable[[NDArray[np.float64]], float],
        *,
        current_values: Mapping[str, float] | None = None,
        out_of_lik: Iterable[str] = (),
        variance_factor: bool = False,
        shock_std_names: Iterable[str] | None = None,
        penalty: float = 1e10,
        cache: bool = True,
        cache_max_size: int = 2048,
        failure_exceptions: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        self.specs: dict[str, ParameterSpec] = parse_specs(specs)
        self.names: list[str] = list(self.specs)

        if not isinstance(provider, ObjectiveProvider):
            if not callable(provider):
                raise ConfigurationError(
                    "provider must implement raw_neg_log_lik(theta) or be callable"
                )
            provider = FunctionProvider(provider)
        self.provider = provider

        self.out_of_lik: tuple[str, ...] = tuple(out_of_lik)
        self.variance_factor = bool(variance_factor)
        if (self.variance_factor or self.out_of_lik) and not _supports_concentration(provider):
            raise ConfigurationError(
                "variance_factor/out_of_lik require a provider implementing "
                "concentrated_terms(theta)"
            )

        if shock_std_names is None:
            self.shock_std_names = [n for n in self.names if n.startswith("std_")]
        else:
            self.shock_std_names = list(shock_std_names)
            unknown = [n for n in self.shock_std_names if n not in self.specs]
            if unknown:
                raise ConfigurationError(f"Unknown shock std parameters: {unknown}")

        if not math.isfinite(penalty) or penalty <= 0.0:
            raise ConfigurationError(f"penalty must be finite and > 0, got {penalty}")
        self.penalty = float(penalty)

        failure_exceptions = tuple(failure_exceptions)
        if not all(
            isinstance(t, type) and issubclass(t, BaseException) for t in failure_exceptions
        ):
            raise ConfigurationError(
                f"failure_exceptions must be exception types, got {failure_exceptions!r}"
            )
        self.failure_exceptions: tuple[type[BaseException], ...] = (
            ArithmeticError,
            ValueError,
            np.linalg.LinAlgError,
            *failure_exceptions,
        )

        self.current_values = dict(current_values or {})
        self.transforms = [BoundTransform(s.lower, s.upper) for s in self.specs.values()]
        self.lower = np.array([s.lower for s in self.specs.values()], dtype=np.float64)
        self.upper = np.array([s.upper for s in self.specs.values()], dtype=np.float64)
        self.priors = [s.prior for s in self.specs.values()]

        self._cache: OrderedDict[bytes, tuple[float, float, dict[str, float]] | str] | None
        if cache:
            if cache_max_size < 1:
                raise ConfigurationError("cache_max_size must be >= 1 when cache=True")
            self._cache = OrderedDict()
        else:
            self._cache = None
        self._cache_max_size = cache_max_size
        self._cache_hits = 0
        self._cache_misses = 0

    # ------------------------------------------------------------------
    # Vector handling
    # ------------------------------------------------------------------

    @property
    def n_params(self) -> int:
        return len(self.names)

    def _check_vector(self, theta: NDArray[np.float64]) -> NDArray[np.float64]:
        arr = np.asarray(theta, dtype=np.float64).reshape(-1)
        if arr.shape[0] != self.n_params:
            raise EstimationError(
                f"Expected theta with length {self.n_params}, got {arr.shape[0]}"
            )
        return arr

    def in_bounds(self, theta: NDArray[np.float64]) -> bool:
        arr = self._check_vector(theta)
        return bool(np.all(arr >= self.lower) and np.all(arr <= self.upper))

    def expand(self, free: NDArray[np.float64]) -> NDArray[np.float64]:
        """Map a free (optimizer) vector to natural parameter values."""
        return to_natural_vector(self.transforms, self._check_vector(free))

    def to_free(self, theta: NDArray[np.float64]) -> NDArray[np.float64]:
        """Inverse of :meth:`expand`."""
        return to_free_vector(self.transforms, self._check_vector(theta))

    def _resolve_current(self, name: str) -> float | None:
        if name in self.current_values:
            return float(self.current_values[name])
        provided = getattr(self.provider, "current_values", None)
        if callable(provided):
            provided = provided()
        if isinstance(provided, Mapping) and name in provided:
            return float(provided[name])
        return None

    def initial_vector(self) -> NDArray[np.float64]:
        """Starting point in natural space with NaN starts resolved."""
        x0 = np.zeros(self.n_params, dtype=np.float64)
        for i, spec in enumerate(self.specs.values()):
            lb, ub = spec.lower, spec.upper
            v = spec.start
            if math.isnan(v):
                current = self._resolve_current(spec.name)
                v = math.nan if current is None else current
            if not math.isfinite(v):
                if math.isfinite(lb) and math.isfinite(ub):
                    v = 0.5 * (lb + ub)
                elif math.isfinite(lb):
                    v = lb + max(1e-6, 1e-4 * max(1.0, abs(lb)))
                elif math.isfinite(ub):
                    v = ub - max(1e-6, 1e-4 * max(1.0, abs(ub)))
                else:
                    v = 0.0
            v = min(max(v, lb), ub)

            # free coordinates are infinite on a finite bound
            if math.isfinite(lb) and math.isfinite(ub):
                nudge = 1e-8 * (ub - lb)
            else:
                nudge = 1e-8 * max(1.0, abs(v))
            if math.isfinite(lb) and v <= lb:
                v = lb + nudge
            if math.isfinite(ub) and v >= ub:
                v = ub - nudge
            x0[i] = v
        return x0

    def initial_free(self) -> NDArray[np.float64]:
        return self.to_free(self.initial_vector())

    # ------------------------------------------------------------------
    # Objective pieces
    # ------------------------------------------------------------------

    def log_prior(self, theta: NDArray[np.float64]) -> float:
        """Sum of prior log densities; parameters without a prior contribute 0."""
        arr = self._check_vector(theta)
        if not np.all(np.isfinite(arr)):
            return float("-inf")
        total = 0.0
        for value, prior in zip(arr, self.priors, strict=True):
            if prior is None:
                continue
            lp = prior.log_density(float(value))
            if not math.isfinite(lp):
                return float("-inf")
            total += lp
        return float(total)

    def _concentrated_nll(self, terms: ConcentratedTerms) -> tuple[float, float]:
        n = int(terms.n_obs)
        rss = float(terms.weighted_rss)
        log_det = float(terms.log_det)
        if n < 1:
            raise EvaluationFailure(f"Provider reported n_obs={n}")
        if not self.variance_factor:
            return 0.5 * (n * _LOG_2PI + log_det + rss), 1.0
        if not math.isfinite(rss) or rss <= 0.0:
            raise EvaluationFailure(
                f"Weighted residual sum of squares must be > 0 to concentrate "
                f"the variance factor, got {rss}"
            )
        v = rss / n
        return 0.5 * (n * _LOG_2PI + log_det + n * math.log(v) + n), v

    def _compute_likelihood(
        self, theta: NDArray[np.float64]
    ) -> tuple[float, float, dict[str, float]]:
        try:
            if self.variance_factor or self.out_of_lik:
                terms = self.provider.concentrated_terms(theta)
                nll, v = self._concentrated_nll(terms)
                missing = [n for n in self.out_of_lik if n not in terms.out_of_lik]
                if missing:
                    raise EstimationError(
                        f"Provider did not report out-of-likelihood parameters {missing}"
                    )
                out_of_lik = {n: float(terms.out_of_lik[n]) for n in self.out_of_lik}
            else:
                nll = float(self.provider.raw_neg_log_lik(theta))
                v = 1.0
                out_of_lik = {}
        except EstimkitError:
            raise
        except self.failure_exceptions as exc:
            raise EvaluationFailure(f"Provider failed at theta={theta.tolist()}: {exc}") from exc

        if not math.isfinite(nll):
            raise EvaluationFailure(f"Provider returned non-finite value {nll}")
        return nll, v, out_of_lik

    def _likelihood(self, theta: NDArray[np.float64]) -> tuple[float, float, dict[str, float]]:
        if self._cache is None:
            return self._compute_likelihood(theta)

        key = theta.tobytes()
        cached = self._cache.pop(key, None)
        if cached is not None:
            self._cache[key] = cached
            self._cache_hits += 1
            if isinstance(cached, str):
                raise EvaluationFailure(cached)
            return cached

        self._cache_misses += 1
        try:
            out: tuple[float, float, dict[str, float]] | str = self._compute_likelihood(theta)
        except EvaluationFailure as exc:
            out = str(exc)
        self._cache[key] = out
        if len(self._cache) > self._cache_max_size:
            self._cache.popitem(last=False)
        if isinstance(out, str):
            raise EvaluationFailure(out)
        return out

    def evaluate(self, theta: NDArray[np.float64]) -> Evaluation:
        """Evaluate likelihood and prior at a natural-space vector.

        Raises:
            BoundViolation: If *theta* lies outside the bounds.
            EvaluationFailure: If the provider cannot evaluate at *theta*.
        """
        arr = self._check_vector(theta)
        if not np.all(np.isfinite(arr)):
            raise EvaluationFailure(f"Non-finite parameter vector {arr.tolist()}")
        if not self.in_bounds(arr):
            raise BoundViolation(f"Parameter vector {arr.tolist()} violates bounds")
        nll, v, out_of_lik = self._likelihood(arr)
        return Evaluation(
            neg_log_likelihood=nll,
            log_prior=self.log_prior(arr),
            variance_factor=v,
            out_of_lik=out_of_lik,
        )

    def _penalized(self, value: float) -> float:
        if not math.isfinite(value) or value >= self.penalty:
            return self.penalty
        return float(value)

    def natural_neg_log_likelihood(self, theta: NDArray[np.float64]) -> float:
        arr = self._check_vector(theta)
        try:
            return self._penalized(self.evaluate(arr).neg_log_likelihood)
        except (EvaluationFailure, BoundViolation) as exc:
            logger.debug("Likelihood evaluation failed: %s", exc)
            return self.penalty

    def natural_neg_log_posterior(self, theta: NDArray[np.float64]) -> float:
        """Negative log posterior at natural values; ``penalty`` on failure."""
        arr = self._check_vector(theta)
        try:
            return self._penalized(self.evaluate(arr).neg_log_posterior)
        except (EvaluationFailure, BoundViolation) as exc:
            logger.debug("Posterior evaluation failed: %s", exc)
            return self.penalty

    def neg_log_posterior(self, free: NDArray[np.float64]) -> float:
        """Negative log posterior at a free-space vector (optimizer objective)."""
        return self.natural_neg_log_posterior(self.expand(free))

    # ------------------------------------------------------------------
    # Derivatives
    # ------------------------------------------------------------------

    def gradient(self, free: NDArray[np.float64], *, eps: float = 1e-5) -> NDArray[np.float64]:
        return numerical_gradient(self.neg_log_posterior, self._check_vector(free), eps=eps)

    def hessian(self, free: NDArray[np.float64], *, eps: float = 1e-4) -> NDArray[np.float64]:
        return numerical_hessian(self.neg_log_posterior, self._check_vector(free), eps=eps)

    def natural_hessian_at_free(
        self, free: NDArray[np.float64], *, eps: float = 1e-4
    ) -> NDArray[np.float64]:
        """Hessian of the negative log posterior w.r.t. natural values at ``expand(free)``."""
        z = self._check_vector(free)
        h_free = self.hessian(z, eps=eps)
        g_free = self.gradient(z, eps=eps)
        d1, d2 = jacobian_terms(self.transforms, z)
        if np.any(d1 == 0.0):
            raise EstimationError(
                "Reparameterization Jacobian is singular (parameter saturated at a bound)"
            )
        return natural_hessian_from_free(h_free, g_free, d1, d2)

    def natural_hessian(
        self, theta: NDArray[np.float64], *, eps: float = 1e-4
    ) -> NDArray[np.float64]:
        z = self.to_free(theta)
        if not np.all(np.isfinite(z)):
            raise EstimationError("Cannot differentiate at a point sitting on a bound")
        return self.natural_hessian_at_free(z, eps=eps)

    def prior_hessian(self, theta: NDArray[np.float64]) -> NDArray[np.float64]:
        """Diagonal Hessian of the negative log prior (independent priors)."""
        arr = self._check_vector(theta)
        diag = np.zeros(self.n_params, dtype=np.float64)
        for i, (value, prior) in enumerate(zip(arr, self.priors, strict=True)):
            if prior is not None:
                diag[i] = -prior.log_density_d2(float(value))
        return np.diag(diag)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def cache_info(self) -> dict[str, int]:
        return {
            "enabled": int(self._cache is not None),
            "hits": self._cache_hits,
            "misses": self._cache_misses,
            "size": len(self._cache) if self._cache is not None else 0,
            "max_size": self._cache_max_size if self._cache is not None else 0,
        }

    def cache_clear(self) -> None:
        if self._cache is not None:
            self._cache.clear()
        self._cache_hits = 0
        self._cache_misses = 0

    def __repr__(self) -> str:
        return (
            f"EstimationProblem(params={self.names!r}, "
            f"variance_factor={self.variance_factor}, out_of_lik={list(self.out_of_lik)!r})"
        )
