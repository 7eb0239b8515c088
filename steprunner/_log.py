"""Centralized logging for steprunner."""

from __future__ import annotations

import logging
import sys
import threading

_ROOT = "steprunner"

_lock = threading.Lock()
_setup_done = False


class _Formatter(logging.Formatter):
    """Render records as ``[tag] message`` with the ``steprunner.`` prefix dropped."""

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        if name.startswith(_ROOT + "."):
            name = name[len(_ROOT) + 1 :]
        record.msg = f"[{name}] {record.msg}"
        return super().format(record)


def setup_logging(verbose: bool = False) -> None:
    """Configure the ``steprunner`` logger once.

    A single stderr handler is attached at WARNING (DEBUG when *verbose*).
    Records do not propagate to the root logger. A later call with
    ``verbose=True`` still lowers the level so ``--verbose`` works after
    a library import has already triggered the default setup.
    """
    global _setup_done
    with _lock:
        logger = logging.getLogger(_ROOT)
        if _setup_done:
            if verbose:
                logger.setLevel(logging.DEBUG)
            return
        logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_Formatter())
        logger.addHandler(handler)
        logger.propagate = False
        _setup_done = True


def get_logger(name: str) -> logging.Logger:
    """Return the ``steprunner.<name>`` logger, setting up output on first use."""
    setup_logging()
    return logging.getLogger(f"{_ROOT}.{name}")
