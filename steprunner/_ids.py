"""Identifier helpers for pipeline runs, steps and sessions."""

from __future__ import annotations

import uuid


def new_uuid() -> str:
    """Return a canonical UUID4 string, used for pipeline and step ids."""
    return str(uuid.uuid4())


def short_id(length: int = 12) -> str:
    """Return a random hex string of *length* characters."""
    return uuid.uuid4().hex[:length]
