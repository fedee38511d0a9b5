"""Estimated parameters and their prior distributions."""

from estimkit.model.parameters import ParameterSpec, parse_specs, specs_frame
from estimkit.model.priors import Distribution, normalize_family, parse_distribution

__all__ = [
    "Distribution",
    "ParameterSpec",
    "normalize_family",
    "parse_distribution",
    "parse_specs",
    "specs_frame",
]
