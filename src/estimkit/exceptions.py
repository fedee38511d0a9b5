"""Exception hierarchy for estimkit."""

from __future__ import annotations


class EstimkitError(Exception):
    """Base class for all estimkit errors."""


class ConfigurationError(EstimkitError, ValueError):
    """Malformed parameter specification or component configuration."""


class InvalidMomentsError(ConfigurationError):
    """Requested mean/std pair is infeasible for a distribution family."""


class EstimationError(EstimkitError):
    """Unrecoverable failure inside an estimation routine."""


class EvaluationFailure(EstimkitError):
    """The objective provider could not evaluate at a parameter vector.

    Providers raise this (or a subclass) when, e.g., the model does not
    solve at the given parameters.
    """


class BoundViolation(EstimkitError):
    """A parameter vector lies outside the configured bounds."""


class StatInsufficiencyError(EstimkitError):
    """A chain statistic cannot be computed reliably from the draws."""


class ConvergenceWarning(UserWarning):
    """The mode optimizer stopped before meeting its tolerance."""
