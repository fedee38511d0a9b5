"""Loading parameter specifications and run configuration.

Both loaders accept either a YAML file path or an already-parsed dict, so
configuration can live next to the data or be built in code.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from estimkit.config import EstimationConfig
from estimkit.exceptions import ConfigurationError
from estimkit.model.parameters import ParameterSpec, parse_specs

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = (".yaml", ".yml")


def _read_source(source: str | Path | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(source, Mapping):
        return dict(source)

    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    if path.suffix.lower() not in _YAML_SUFFIXES:
        raise ConfigurationError(
            f"Cannot determine format from extension '{path.suffix}'. "
            "Supported: .yaml, .yml"
        )

    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    logger.info("Loaded configuration from %s", path)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    return dict(data)


def load_specs(source: str | Path | Mapping[str, Any]) -> dict[str, ParameterSpec]:
    """Load estimated-parameter specifications.

    The specifications are read from a ``parameters:`` section when present,
    otherwise the whole mapping is taken as ``name -> specification``. Each
    entry may be a ``[start, lower, upper, prior]`` list, a mapping with
    ``init``/``lower``/``upper``/``prior`` keys, or a bare start value.

    Args:
        source: YAML file path or dict.

    Returns:
        Ordered ``name -> ParameterSpec`` dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the content is not a valid specification.

    Examples:
        specs = load_specs({
            "parameters": {
                "rho": [0.5, 0.0, 1.0, {"distribution": "beta", "mean": 0.5, "std": 0.2}],
                "std_e": {"init": 0.1, "lower": 0.0, "prior": "inv_gamma", "mean": 0.1, "std": ".inf"},
            }
        })
    """
    data = _read_source(source)
    section = data.get("parameters", data)
    if not isinstance(section, Mapping):
        raise ConfigurationError("'parameters' must be a mapping of name -> specification")
    return parse_specs({str(k): _coerce_yaml_numbers(v) for k, v in section.items()})


def load_config(source: str | Path | Mapping[str, Any] | None) -> EstimationConfig:
    """Load an :class:`EstimationConfig` from YAML or a dict.

    Only the ``optimizer``, ``sampler``, ``neighbourhood`` and ``stats``
    sections are read; a ``parameters`` section is ignored so a single file
    can hold both.
    """
    if source is None:
        return EstimationConfig()
    data = _read_source(source)
    data.pop("parameters", None)
    return EstimationConfig.from_dict(data)


def _coerce_yaml_numbers(value: Any) -> Any:
    # YAML leaves ".inf"-style strings quoted in flow lists untouched
    if isinstance(value, str) and value.strip().lower() in (".inf", "inf", "+inf", "-inf", "-.inf"):
        return float(value.strip().lower().replace(".", ""))
    if isinstance(value, Mapping):
        return {k: _coerce_yaml_numbers(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_coerce_yaml_numbers(v) for v in value]
    return value
