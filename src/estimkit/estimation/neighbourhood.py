"""Local neighbourhood of the posterior mode, one parameter at a time."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from estimkit.config import NeighbourhoodConfig, as_sequence
from estimkit.exceptions import BoundViolation, EvaluationFailure

if TYPE_CHECKING:
    import pandas as pd

    from estimkit.estimation.mode import PosteriorEstimate

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], "bool | None"]


@dataclass(frozen=True, slots=True)
class NeighbourhoodPoint:
    """Objective values with one coordinate scaled by ``multiplier``."""

    multiplier: float
    value: float
    objective: float
    likelihood: float


@dataclass
class NeighbourhoodGrid:
    """Neighbourhood sweep results keyed by parameter name.

    ``objective`` is the negative log posterior and ``likelihood`` the
    negative log-likelihood; both are NaN where evaluation failed.
    """

    multipliers: tuple[float, ...]
    points: dict[str, list[NeighbourhoodPoint]] = field(default_factory=dict)
    cancelled: bool = False

    def __getitem__(self, name: str) -> list[NeighbourhoodPoint]:
        return self.points[name]

    def __iter__(self):
        return iter(self.points)

    def __len__(self) -> int:
        return len(self.points)

    def to_frame(self) -> pd.DataFrame:
        import pandas as pd

        rows = [
            {
                "parameter": name,
                "multiplier": p.multiplier,
                "value": p.value,
                "objective": p.objective,
                "likelihood": p.likelihood,
            }
            for name, pts in self.points.items()
            for p in pts
        ]
        return pd.DataFrame(
            rows, columns=["parameter", "multiplier", "value", "objective", "likelihood"]
        )


def neighbourhood(
    estimate: PosteriorEstimate,
    multipliers: Sequence[float] | None = None,
    *,
    config: NeighbourhoodConfig | None = None,
    progress: ProgressCallback | None = None,
) -> NeighbourhoodGrid:
    """Evaluate the objective around the mode, one coordinate at a time.

    For each parameter and each multiplier ``m`` the mode is copied, the
    parameter's coordinate is multiplied by ``m``, and the negative log
    posterior and negative log-likelihood are recorded. Failed or
    out-of-bounds points are recorded as NaN; the sweep never aborts on them.

    Args:
        estimate: Posterior mode estimate (not modified).
        multipliers: Relative grid; overrides ``config.multipliers``.
        config: Neighbourhood configuration.
        progress: Called as ``progress(done, total)`` after each point;
            returning ``False`` stops the sweep.

    Returns:
        NeighbourhoodGrid mapping parameter name to its grid points.
    """
    grid = as_sequence(multipliers)
    if grid is None:
        grid = (config or NeighbourhoodConfig()).multipliers
    else:
        grid = NeighbourhoodConfig(multipliers=grid).multipliers

    problem = estimate.problem
    mode = np.array(estimate.mode, dtype=np.float64)
    total = problem.n_params * len(grid)
    result = NeighbourhoodGrid(multipliers=grid)
    done = 0
    failures = 0

    for i, name in enumerate(problem.names):
        pts: list[NeighbourhoodPoint] = []
        result.points[name] = pts
        for m in grid:
            theta = mode.copy()
            theta[i] = mode[i] * m
            try:
                ev = problem.evaluate(theta)
                objective = ev.neg_log_posterior
                likelihood = ev.neg_log_likelihood
                if not math.isfinite(objective):
                    objective = math.nan
            except (EvaluationFailure, BoundViolation) as exc:
                logger.debug("Neighbourhood point %s*%g failed: %s", name, m, exc)
                objective = likelihood = math.nan
                failures += 1
            pts.append(
                NeighbourhoodPoint(
                    multiplier=m,
                    value=float(theta[i]),
                    objective=float(objective),
                    likelihood=float(likelihood),
                )
            )
            done += 1
            if progress is not None and progress(done, total) is False:
                logger.info("Neighbourhood sweep cancelled after %d of %d points", done, total)
                result.cancelled = True
                return result

    if failures:
        logger.warning("Neighbourhood sweep: %d of %d points failed", failures, total)
    return result
