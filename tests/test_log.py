"""Tests for the centralized logging module."""

from __future__ import annotations

import logging

import pytest

from steprunner._log import get_logger, setup_logging


@pytest.fixture()
def _caplog_steprunner(caplog):
    """Attach caplog handler to the ``steprunner`` logger so records are captured
    even though ``propagate=False``."""
    root = logging.getLogger("steprunner")
    root.addHandler(caplog.handler)
    yield
    root.removeHandler(caplog.handler)


class TestGetLogger:
    def test_returns_logger(self):
        log = get_logger("test.tag")
        assert isinstance(log, logging.Logger)
        assert log.name == "steprunner.test.tag"

    def test_child_of_steprunner(self):
        log = get_logger("child")
        assert log.parent is not None
        assert log.parent.name == "steprunner"


class TestSetupLogging:
    def test_idempotent(self):
        root = logging.getLogger("steprunner")
        setup_logging()
        count_before = len(root.handlers)
        setup_logging()
        assert len(root.handlers) == count_before

    def test_propagate_false(self):
        setup_logging()
        root = logging.getLogger("steprunner")
        assert root.propagate is False

    def test_verbose_after_default_lowers_level(self):
        root = logging.getLogger("steprunner")
        previous = root.level
        setup_logging()
        try:
            setup_logging(verbose=True)
            assert root.level == logging.DEBUG
        finally:
            root.setLevel(previous)


class TestLogOutput:
    @pytest.mark.usefixtures("_caplog_steprunner")
    def test_warning_captured(self, caplog):
        log = get_logger("testtag")
        with caplog.at_level("WARNING", logger="steprunner.testtag"):
            log.warning("hello world")
        assert "[testtag] hello world" in caplog.text

    @pytest.mark.usefixtures("_caplog_steprunner")
    def test_debug_suppressed_at_default_level(self, caplog):
        log = get_logger("testtag2")
        with caplog.at_level("WARNING", logger="steprunner.testtag2"):
            log.debug("should not appear")
        assert "should not appear" not in caplog.text

    @pytest.mark.usefixtures("_caplog_steprunner")
    def test_tag_strips_prefix(self, caplog):
        log = get_logger("registry")
        with caplog.at_level("WARNING", logger="steprunner.registry"):
            log.warning("test message")
        assert "[registry] test message" in caplog.text
        assert "[steprunner.registry]" not in caplog.text
