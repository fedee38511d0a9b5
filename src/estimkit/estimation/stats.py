"""Summary statistics of posterior simulator chains."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from estimkit.config import StatsConfig
from estimkit.estimation.marginal_data_density import (
    estimate_mdd_harmonic_mean,
    estimate_mdd_laplace,
    estimate_mdd_modified_harmonic_mean,
)
from estimkit.estimation.mcmc import effective_sample_size, split_rhat
from estimkit.exceptions import EstimationError, StatInsufficiencyError

if TYPE_CHECKING:
    import pandas as pd

    from estimkit.estimation.mcmc import SamplerResult
    from estimkit.estimation.mode import PosteriorEstimate

logger = logging.getLogger(__name__)


def hpd_interval(values: NDArray[np.float64], coverage: float) -> tuple[float, float]:
    """Shortest interval containing ``coverage`` of the draws."""
    x = np.sort(np.asarray(values, dtype=np.float64).reshape(-1))
    n = x.shape[0]
    # tolerance keeps e.g. 0.9 * 100 from rounding up to 91
    width = int(math.ceil(coverage * n - 1e-9))
    if n < 2 or width < 2 or width > n:
        raise StatInsufficiencyError(
            f"HPD interval at {coverage:.0%} needs more draws (got {n})"
        )
    spans = x[width - 1 :] - x[: n - width + 1]
    i = int(np.argmin(spans))
    return float(x[i]), float(x[i + width - 1])


@dataclass
class ChainStats:
    """Requested chain statistics.

    ``values`` maps a statistic name to its result (a per-parameter dict
    for chain summaries, a float for marginal data densities). Statistics
    that could not be computed are absent from ``values`` and listed in
    ``unavailable`` with the reason.
    """

    param_names: list[str]
    values: dict[str, Any] = field(default_factory=dict)
    unavailable: dict[str, str] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        if name in self.unavailable:
            raise KeyError(f"Statistic '{name}' unavailable: {self.unavailable[name]}")
        return self.values[name]

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def to_frame(self) -> pd.DataFrame:
        """Per-parameter statistics as a DataFrame (scalar stats excluded)."""
        import pandas as pd

        data: dict[str, list[float]] = {}
        for stat in ("mean", "median", "std", "ess", "rhat"):
            if stat in self.values:
                data[stat] = [self.values[stat][n] for n in self.param_names]
        if "hpdi" in self.values:
            data["hpdi_lower"] = [self.values["hpdi"][n][0] for n in self.param_names]
            data["hpdi_upper"] = [self.values["hpdi"][n][1] for n in self.param_names]
        return pd.DataFrame(data, index=pd.Index(self.param_names, name="parameter"))

    def summary(self) -> str:
        lines = ["Chain Statistics", "=" * 50]
        for key in ("mdd", "mdd_laplace", "mdd_harmonic"):
            if key in self.values:
                lines.append(f"  {key:<15} {self.values[key]:.6f}")
        if any(k in self.values for k in ("mean", "median", "std", "hpdi")):
            lines.append("")
            lines.append(self.to_frame().to_string())
        if self.unavailable:
            lines.append("")
            for key, reason in self.unavailable.items():
                lines.append(f"  Unavailable {key}: {reason}")
        return "\n".join(lines)


def _require_draws(samples: NDArray[np.float64], minimum: int) -> None:
    n = int(samples.shape[0])
    if n < minimum:
        raise StatInsufficiencyError(f"need at least {minimum} retained draws, got {n}")


def chain_stats(
    estimate: PosteriorEstimate,
    result: SamplerResult,
    requested: Iterable[str] | None = None,
    *,
    config: StatsConfig | None = None,
) -> ChainStats:
    """Compute requested statistics of the retained (post burn-in) draws.

    Each statistic is computed independently; one that cannot be computed
    reliably is reported in ``ChainStats.unavailable`` instead of aborting
    the others.

    Args:
        estimate: Posterior mode estimate (used by ``mdd_laplace``).
        result: Sampler output.
        requested: Statistic names; overrides ``config.requested_stats``.
        config: Statistics configuration.

    Returns:
        ChainStats with values and unavailable reasons.
    """
    cfg = config or StatsConfig()
    if requested is not None:
        cfg = StatsConfig(
            requested_stats=tuple(requested),
            hpd_coverage=cfg.hpd_coverage,
            min_draws=cfg.min_draws,
            mdd_coverages=cfg.mdd_coverages,
        )
    if list(result.param_names) != list(estimate.names):
        raise EstimationError(
            "Sampler parameter order does not match the posterior estimate"
        )

    names = list(result.param_names)
    samples = np.asarray(result.samples, dtype=np.float64)

    def per_param(fn: Callable[[NDArray[np.float64]], Any]) -> dict[str, Any]:
        _require_draws(samples, cfg.min_draws)
        return {name: fn(samples[:, i]) for i, name in enumerate(names)}

    def rhat() -> dict[str, float]:
        _require_draws(samples, cfg.min_draws)
        values, note = split_rhat(samples)
        if note and not np.any(np.isfinite(values)):
            raise StatInsufficiencyError(note)
        return {name: float(values[i]) for i, name in enumerate(names)}

    def mdd() -> float:
        _require_draws(samples, cfg.min_draws)
        return estimate_mdd_modified_harmonic_mean(result, cfg.mdd_coverages).log_mdd

    def mdd_harmonic() -> float:
        _require_draws(samples, cfg.min_draws)
        return estimate_mdd_harmonic_mean(result).log_mdd

    computers: dict[str, Callable[[], Any]] = {
        "chain": lambda: result.trace_dict(post_burn=True),
        "mean": lambda: per_param(lambda x: float(np.mean(x))),
        "median": lambda: per_param(lambda x: float(np.median(x))),
        "std": lambda: per_param(lambda x: float(np.std(x, ddof=1))),
        "hpdi": lambda: per_param(lambda x: hpd_interval(x, cfg.hpd_coverage)),
        "ess": lambda: per_param(effective_sample_size),
        "rhat": rhat,
        "mdd": mdd,
        "mdd_laplace": lambda: estimate_mdd_laplace(estimate).log_mdd,
        "mdd_harmonic": mdd_harmonic,
    }

    out = ChainStats(param_names=names)
    for stat in cfg.requested_stats:
        try:
            out.values[stat] = computers[stat]()
        except StatInsufficiencyError as exc:
            logger.warning("Statistic '%s' unavailable: %s", stat, exc)
            out.unavailable[stat] = str(exc)
        except (np.linalg.LinAlgError, FloatingPointError) as exc:
            logger.warning("Statistic '%s' failed numerically: %s", stat, exc)
            out.unavailable[stat] = f"numerical failure: {exc}"
    return out
