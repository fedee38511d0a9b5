"""Finite-difference derivatives and covariance helpers."""

from __future__ import annotations

from collections.abc import Callable

import numpy as np
from numpy.typing import NDArray

from estimkit.exceptions import EstimationError


def _cached(objective: Callable[[NDArray[np.float64]], float]):
    eval_cache: dict[bytes, float] = {}

    def eval_point(x: NDArray[np.float64]) -> float:
        arr = np.asarray(x, dtype=np.float64).reshape(-1)
        key = arr.tobytes()
        if key not in eval_cache:
            eval_cache[key] = float(objective(arr))
        return eval_cache[key]

    return eval_point


def numerical_gradient(
    objective: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    *,
    eps: float = 1e-5,
) -> NDArray[np.float64]:
    """Central-difference gradient."""
    if eps <= 0.0 or not np.isfinite(eps):
        raise EstimationError(f"gradient eps must be finite and > 0, got {eps}")
    theta = np.asarray(x, dtype=np.float64).reshape(-1)
    k = int(theta.shape[0])
    grad = np.zeros(k, dtype=np.float64)
    for i in range(k):
        ei = np.zeros(k, dtype=np.float64)
        ei[i] = eps
        grad[i] = (float(objective(theta + ei)) - float(objective(theta - ei))) / (2.0 * eps)
    return grad


def numerical_hessian(
    objective: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    *,
    eps: float = 1e-4,
) -> NDArray[np.float64]:
    """Finite-difference Hessian with cached objective evaluations."""
    if eps <= 0.0 or not np.isfinite(eps):
        raise EstimationError(f"hessian eps must be finite and > 0, got {eps}")

    theta = np.asarray(x, dtype=np.float64).reshape(-1)
    k = int(theta.shape[0])
    hess = np.zeros((k, k), dtype=np.float64)
    eval_point = _cached(objective)

    f0 = eval_point(theta)

    for i in range(k):
        for j in range(i, k):
            ei = np.zeros(k, dtype=np.float64)
            ej = np.zeros(k, dtype=np.float64)
            ei[i] = eps
            ej[j] = eps

            if i == j:
                fpp = eval_point(theta + ei + ei)
                fmm = eval_point(theta - ei - ei)
                hess[i, i] = (fpp - 2.0 * f0 + fmm) / (4.0 * eps * eps)
                continue

            fpp = eval_point(theta + ei + ej)
            fpm = eval_point(theta + ei - ej)
            fmp = eval_point(theta - ei + ej)
            fmm = eval_point(theta - ei - ej)
            hess[i, j] = (fpp - fpm - fmp + fmm) / (4.0 * eps * eps)
            hess[j, i] = hess[i, j]

    return hess


def is_positive_definite(matrix: NDArray[np.float64]) -> bool:
    try:
        np.linalg.cholesky(matrix)
    except np.linalg.LinAlgError:
        return False
    return True


def nearest_positive_definite(
    matrix: NDArray[np.float64],
    *,
    floor: float = 1e-10,
) -> NDArray[np.float64]:
    """Symmetrize and clip eigenvalues from below."""
    mat = np.asarray(matrix, dtype=np.float64)
    sym = 0.5 * (mat + mat.T)
    if not np.all(np.isfinite(sym)):
        raise EstimationError("Cannot repair a matrix with non-finite entries")
    values, vectors = np.linalg.eigh(sym)
    scale = max(float(np.max(np.abs(values))), 1.0)
    values = np.maximum(values, floor * scale)
    out = (vectors * values) @ vectors.T
    return 0.5 * (out + out.T)


def covariance_from_hessian(
    hessian: NDArray[np.float64],
) -> tuple[NDArray[np.float64], bool]:
    """Invert a Hessian into a covariance matrix.

    Returns ``(covariance, repaired)`` where *repaired* is True when the
    Hessian was not positive definite and had to be clipped first.
    """
    hess = np.asarray(hessian, dtype=np.float64)
    hess = 0.5 * (hess + hess.T)
    repaired = False
    if not np.all(np.isfinite(hess)):
        raise EstimationError("Hessian contains non-finite entries")
    if not is_positive_definite(hess):
        hess = nearest_positive_definite(hess)
        repaired = True
    cov = np.linalg.inv(hess)
    return 0.5 * (cov + cov.T), repaired
