"""Tests for estimated-parameter specifications."""

from __future__ import annotations

import math

import pytest

from estimkit.exceptions import ConfigurationError
from estimkit.model import Distribution, ParameterSpec, parse_specs, specs_frame


class TestParameterSpec:
    def test_cell_form(self):
        spec = ParameterSpec.from_cell(
            "rho", (0.5, 0.0, 1.0, {"distribution": "beta", "mean": 0.5, "std": 0.2})
        )
        assert spec.start == 0.5
        assert spec.bounds == (0.0, 1.0)
        assert spec.prior == Distribution.beta(0.5, 0.2)

    def test_cell_with_omitted_entries_is_unbounded(self):
        spec = ParameterSpec.from_cell("alpha", [None])
        assert spec.uses_current
        assert spec.lower == -math.inf
        assert spec.upper == math.inf
        assert spec.prior is None

    def test_cell_too_long(self):
        with pytest.raises(ConfigurationError, match="1 to 4 entries"):
            ParameterSpec.from_cell("rho", (0.5, 0.0, 1.0, None, 3))

    def test_dict_form_with_string_prior(self):
        spec = ParameterSpec.from_dict(
            "std_e",
            {"init": 0.1, "lower": 0.0, "prior": "inv_gamma", "mean": 0.1, "std": math.inf},
        )
        assert spec.start == 0.1
        assert spec.lower == 0.0
        assert spec.upper == math.inf
        assert not spec.prior.is_proper

    def test_start_outside_bounds(self):
        with pytest.raises(ConfigurationError, match="outside bounds"):
            ParameterSpec("rho", start=1.5, lower=0.0, upper=1.0)

    def test_inverted_bounds(self):
        with pytest.raises(ConfigurationError, match="Invalid bounds"):
            ParameterSpec("rho", lower=1.0, upper=0.0)

    def test_to_dict_round_trip(self):
        spec = ParameterSpec("beta", 0.99, 0.9, 0.999, Distribution.normal(0.99, 0.002))
        assert ParameterSpec.from_dict("beta", spec.to_dict()) == spec

    def test_bare_number_and_none(self):
        assert ParameterSpec.parse("a", 2).start == 2.0
        assert ParameterSpec.parse("a", None).uses_current


class TestParseSpecs:
    def test_preserves_order(self):
        specs = parse_specs({"b": 1.0, "a": (0.5, 0.0, 1.0), "c": {"init": 3.0}})
        assert list(specs) == ["b", "a", "c"]

    def test_duplicate_names_rejected(self):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            parse_specs([ParameterSpec("a"), ParameterSpec("a")])

    def test_empty_rejected(self):
        with pytest.raises(ConfigurationError, match="At least one"):
            parse_specs({})

    def test_mismatched_key(self):
        with pytest.raises(ConfigurationError, match="does not match"):
            parse_specs({"a": ParameterSpec("b")})

    def test_frame(self):
        specs = parse_specs({"rho": (0.5, 0.0, 1.0, Distribution.beta(0.5, 0.2)), "c": 1.0})
        df = specs_frame(specs)
        assert list(df.index) == ["rho", "c"]
        assert df.loc["rho", "prior"] == "beta"
        assert df.loc["c", "prior"] == "flat"
        assert math.isnan(df.loc["c", "prior_mean"])
