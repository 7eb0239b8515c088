"""Tests for the centralized config module."""

from pathlib import Path

import pytest

from steprunner.config import (
    DEFAULT_STEP_TIMEOUT_MS,
    get_events_log_path,
    get_home_dir,
    get_registry_db_path,
)


@pytest.fixture(autouse=True)
def _clear_cache(monkeypatch):
    """Clear lru_cache before and after each test."""
    get_home_dir.cache_clear()
    monkeypatch.delenv("STEPRUNNER_HOME", raising=False)
    monkeypatch.delenv("XDG_DATA_HOME", raising=False)
    yield
    get_home_dir.cache_clear()


class TestGetHomeDir:
    def test_default_fallback(self):
        assert get_home_dir() == Path.home() / ".steprunner"

    def test_steprunner_home_override(self, monkeypatch):
        monkeypatch.setenv("STEPRUNNER_HOME", "/tmp/custom-sr")
        get_home_dir.cache_clear()
        assert get_home_dir() == Path("/tmp/custom-sr")

    def test_xdg_data_home_fallback(self, monkeypatch):
        monkeypatch.setenv("XDG_DATA_HOME", "/tmp/xdg-data")
        get_home_dir.cache_clear()
        assert get_home_dir() == Path("/tmp/xdg-data/steprunner")

    def test_steprunner_home_takes_precedence_over_xdg(self, monkeypatch):
        monkeypatch.setenv("STEPRUNNER_HOME", "/tmp/custom-sr")
        monkeypatch.setenv("XDG_DATA_HOME", "/tmp/xdg-data")
        get_home_dir.cache_clear()
        assert get_home_dir() == Path("/tmp/custom-sr")

    def test_cache_returns_same_object(self):
        assert get_home_dir() is get_home_dir()


class TestDerivedPaths:
    def test_registry_db_path(self, monkeypatch):
        monkeypatch.setenv("STEPRUNNER_HOME", "/tmp/sr")
        get_home_dir.cache_clear()
        assert get_registry_db_path() == Path("/tmp/sr/registry.db")

    def test_events_log_path(self, monkeypatch):
        monkeypatch.setenv("STEPRUNNER_HOME", "/tmp/sr")
        get_home_dir.cache_clear()
        assert get_events_log_path() == Path("/tmp/sr/events.jsonl")


def test_default_step_timeout():
    assert DEFAULT_STEP_TIMEOUT_MS == 30_000
