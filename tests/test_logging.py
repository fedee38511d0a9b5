"""Tests for logging configuration module."""

from __future__ import annotations

import logging
from io import StringIO

import pytest

from estimkit.logging_config import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def test_setup_logging_default():
    """Test setting up logging with default parameters."""
    stream = StringIO()
    setup_logging(level="INFO", stream=stream)

    logger = logging.getLogger("estimkit.test")
    logger.info("Test message")

    output = stream.getvalue()
    assert "Test message" in output
    assert "INFO" in output


def test_setup_logging_custom_level():
    stream = StringIO()
    setup_logging(level="DEBUG", stream=stream)

    logging.getLogger("estimkit.test").debug("Debug message")

    assert "Debug message" in stream.getvalue()


def test_setup_logging_custom_format():
    stream = StringIO()
    setup_logging(level="INFO", format_string="%(levelname)s - %(message)s", stream=stream)

    logging.getLogger("estimkit.test").info("Test message")

    assert "INFO - Test message" in stream.getvalue()


def test_setup_logging_unknown_level():
    with pytest.raises(ValueError, match="Unknown logging level"):
        setup_logging(level="LOUD")


def test_library_modules_log_through_the_package_namespace(constant_provider):
    from estimkit.estimation import EstimationProblem, estimate_posterior_mode

    stream = StringIO()
    setup_logging(level="INFO", format_string="%(name)s|%(message)s", stream=stream)
    estimate_posterior_mode(EstimationProblem({"x": 0.0}, constant_provider))

    assert "estimkit.estimation.mode|Maximizing posterior" in stream.getvalue()


def test_get_logger():
    logger = get_logger("test.module")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "estimkit.test.module"
    assert get_logger("estimkit.mcmc").name == "estimkit.mcmc"


def test_logger_hierarchy():
    parent_logger = get_logger("parent")
    child_logger = get_logger("parent.child")
    assert child_logger.parent is parent_logger
