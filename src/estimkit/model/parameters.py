"""Estimated-parameter specifications."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from estimkit.exceptions import ConfigurationError
from estimkit.model.priors import Distribution, parse_distribution

if TYPE_CHECKING:
    import pandas as pd


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """One estimated parameter.

    Attributes:
        name: Parameter name, unique within a problem.
        start: Starting value for the optimizer. ``nan`` means "use the
            currently assigned value" (resolved by the estimation problem).
        lower: Lower bound (``-inf`` when unbounded).
        upper: Upper bound (``inf`` when unbounded).
        prior: Prior distribution, or None for a flat improper prior.
    """

    name: str
    start: float = math.nan
    lower: float = -math.inf
    upper: float = math.inf
    prior: Distribution | None = None

    def __post_init__(self) -> None:
        name = str(self.name).strip()
        start = float(self.start)
        lower = float(self.lower)
        upper = float(self.upper)

        if not name:
            raise ConfigurationError("Estimated parameter name cannot be empty")
        if math.isnan(lower) or math.isnan(upper):
            raise ConfigurationError(f"Bounds for '{name}' cannot be NaN")
        if lower >= upper:
            raise ConfigurationError(
                f"Invalid bounds for '{name}': lower={lower} >= upper={upper}"
            )
        if math.isfinite(start) and not (lower <= start <= upper):
            raise ConfigurationError(
                f"Initial value for '{name}' is outside bounds: "
                f"start={start}, [{lower}, {upper}]"
            )
        if math.isinf(start):
            raise ConfigurationError(f"Initial value for '{name}' cannot be infinite")
        if self.prior is not None and not isinstance(self.prior, Distribution):
            raise ConfigurationError(
                f"Prior for '{name}' must be a Distribution, got {type(self.prior)!r}"
            )

        object.__setattr__(self, "name", name)
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "lower", lower)
        object.__setattr__(self, "upper", upper)

    @property
    def uses_current(self) -> bool:
        """True when the start value is taken from the current assignment."""
        return math.isnan(self.start)

    @property
    def bounds(self) -> tuple[float, float]:
        return self.lower, self.upper

    @classmethod
    def from_cell(cls, name: str, cell: Iterable[Any]) -> ParameterSpec:
        """Build from the positional ``(start, lower, upper, prior)`` convention.

        Trailing entries may be omitted; ``None`` in a bound slot means
        unbounded.
        """
        items = list(cell)
        if not 1 <= len(items) <= 4:
            raise ConfigurationError(
                f"Specification for '{name}' must have 1 to 4 entries "
                f"(start, lower, upper, prior), got {len(items)}"
            )
        items += [None] * (4 - len(items))
        start, lower, upper, prior = items
        return cls(
            name=name,
            start=math.nan if start is None else float(start),
            lower=-math.inf if lower is None else float(lower),
            upper=math.inf if upper is None else float(upper),
            prior=parse_distribution(prior),
        )

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> ParameterSpec:
        """Build from a dict with ``init``/``start``, ``lower``, ``upper``, ``prior``."""
        prior_raw = data.get("prior")
        prior = parse_distribution(
            prior_raw,
            mean=data.get("prior_mean", data.get("mean")),
            std=data.get("prior_std", data.get("std")),
        )
        start = data.get("init", data.get("start", data.get("init_value")))
        lower = data.get("lower", data.get("lower_bound"))
        upper = data.get("upper", data.get("upper_bound"))
        return cls(
            name=str(data.get("name", name)),
            start=math.nan if start is None else float(start),
            lower=-math.inf if lower is None else float(lower),
            upper=math.inf if upper is None else float(upper),
            prior=prior,
        )

    @classmethod
    def parse(cls, name: str, value: Any) -> ParameterSpec:
        """Build from any supported form: spec, dict, cell, or bare start value."""
        if isinstance(value, ParameterSpec):
            if value.name != name:
                raise ConfigurationError(
                    f"Specification key '{name}' does not match spec name '{value.name}'"
                )
            return value
        if value is None:
            return cls(name=name)
        if isinstance(value, Mapping):
            return cls.from_dict(name, value)
        if isinstance(value, (list, tuple)):
            return cls.from_cell(name, value)
        if isinstance(value, (int, float)):
            return cls(name=name, start=float(value))
        raise ConfigurationError(
            f"Unsupported specification for '{name}': {type(value)!r}"
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "init": self.start,
            "lower": self.lower,
            "upper": self.upper,
        }
        if self.prior is not None:
            d["prior"] = self.prior.to_dict()
        return d


def parse_specs(
    specs: Mapping[str, Any] | Iterable[ParameterSpec],
) -> dict[str, ParameterSpec]:
    """Normalize user specifications into an ordered ``name -> ParameterSpec`` dict."""
    parsed: dict[str, ParameterSpec] = {}
    if isinstance(specs, Mapping):
        items = [ParameterSpec.parse(str(name), value) for name, value in specs.items()]
    else:
        items = []
        for spec in specs:
            if not isinstance(spec, ParameterSpec):
                raise ConfigurationError(
                    f"Expected ParameterSpec entries, got {type(spec)!r}"
                )
            items.append(spec)

    for spec in items:
        if spec.name in parsed:
            raise ConfigurationError(f"Duplicate estimated parameter name '{spec.name}'")
        parsed[spec.name] = spec

    if not parsed:
        raise ConfigurationError("At least one estimated parameter is required")
    return parsed


def specs_frame(specs: Mapping[str, ParameterSpec]) -> pd.DataFrame:
    """Tabulate specifications (start, bounds, prior moments) as a DataFrame."""
    import pandas as pd

    rows = []
    for spec in specs.values():
        prior = spec.prior
        rows.append(
            {
                "parameter": spec.name,
                "start": spec.start,
                "lower": spec.lower,
                "upper": spec.upper,
                "prior": prior.family if prior is not None else "flat",
                "prior_mean": prior.mean if prior is not None else math.nan,
                "prior_std": prior.std if prior is not None else math.nan,
            }
        )
    return pd.DataFrame(rows).set_index("parameter")
