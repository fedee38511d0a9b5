"""Bound-preserving reparameterization between natural and free space.

Each parameter with box constraints is mapped to an unbounded coordinate:

* both bounds finite: ``x = lower + (upper - lower) * expit(z)``
* lower bound only:   ``x = lower + exp(z)``
* upper bound only:   ``x = upper - exp(z)``
* unbounded:          ``x = z``
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy import special

from estimkit.exceptions import BoundViolation


@dataclass(frozen=True, slots=True)
class BoundTransform:
    """Transform for a single parameter with bounds ``[lower, upper]``."""

    lower: float = -math.inf
    upper: float = math.inf

    @property
    def kind(self) -> str:
        lo = math.isfinite(self.lower)
        hi = math.isfinite(self.upper)
        if lo and hi:
            return "logistic"
        if lo:
            return "lower"
        if hi:
            return "upper"
        return "identity"

    def contains(self, x: float) -> bool:
        return self.lower <= x <= self.upper

    def to_free(self, x: float) -> float:
        """Map a natural value to free space (``±inf`` exactly at a finite bound)."""
        x = float(x)
        if not self.contains(x):
            raise BoundViolation(
                f"Value {x} outside bounds [{self.lower}, {self.upper}]"
            )
        kind = self.kind
        if kind == "logistic":
            return float(special.logit((x - self.lower) / (self.upper - self.lower)))
        if kind == "lower":
            d = x - self.lower
            return math.log(d) if d > 0.0 else -math.inf
        if kind == "upper":
            d = self.upper - x
            return math.log(d) if d > 0.0 else -math.inf
        return x

    def to_natural(self, z: float) -> float:
        z = float(z)
        kind = self.kind
        if kind == "logistic":
            x = self.lower + (self.upper - self.lower) * float(special.expit(z))
        elif kind == "lower":
            x = self.lower + math.exp(min(z, 700.0))
        elif kind == "upper":
            x = self.upper - math.exp(min(z, 700.0))
        else:
            return z
        # guard against rounding past a bound
        return min(max(x, self.lower), self.upper)

    def derivatives(self, z: float) -> tuple[float, float]:
        """Return ``(dx/dz, d2x/dz2)`` at free coordinate *z*."""
        kind = self.kind
        if kind == "logistic":
            s = float(special.expit(z))
            width = self.upper - self.lower
            d1 = width * s * (1.0 - s)
            return d1, d1 * (1.0 - 2.0 * s)
        if kind == "lower":
            e = math.exp(min(float(z), 700.0))
            return e, e
        if kind == "upper":
            e = math.exp(min(float(z), 700.0))
            return -e, -e
        return 1.0, 0.0


def to_free_vector(
    transforms: list[BoundTransform], theta: NDArray[np.float64]
) -> NDArray[np.float64]:
    return np.array(
        [t.to_free(v) for t, v in zip(transforms, theta, strict=True)],
        dtype=np.float64,
    )


def to_natural_vector(
    transforms: list[BoundTransform], z: NDArray[np.float64]
) -> NDArray[np.float64]:
    return np.array(
        [t.to_natural(v) for t, v in zip(transforms, z, strict=True)],
        dtype=np.float64,
    )


def jacobian_terms(
    transforms: list[BoundTransform], z: NDArray[np.float64]
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """First and second derivatives of the natural map, element-wise."""
    pairs = [t.derivatives(v) for t, v in zip(transforms, z, strict=True)]
    d1 = np.array([p[0] for p in pairs], dtype=np.float64)
    d2 = np.array([p[1] for p in pairs], dtype=np.float64)
    return d1, d2


def natural_hessian_from_free(
    hessian_free: NDArray[np.float64],
    gradient_free: NDArray[np.float64],
    d1: NDArray[np.float64],
    d2: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Convert a free-space Hessian to natural space.

    With ``f(z) = g(x(z))`` and an element-wise map,
    ``f'' = D g'' D + diag(g' * x'')`` where ``D = diag(x')`` and
    ``g' = f' / x'``; this solves for ``g''``.
    """
    grad_natural = gradient_free / d1
    core = np.asarray(hessian_free, dtype=np.float64) - np.diag(grad_natural * d2)
    inv_d = 1.0 / d1
    out = core * np.outer(inv_d, inv_d)
    return 0.5 * (out + out.T)
