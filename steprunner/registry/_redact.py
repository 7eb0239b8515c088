"""Secret scrubbing for persisted step results and errors."""

from __future__ import annotations

import re

_PATTERNS = [
    r"gh[pousr]_[A-Za-z0-9_]{36,}",  # GitHub tokens
    r"github_pat_[A-Za-z0-9_]{22,}",  # GitHub fine-grained PATs
    r"xox[bpars]-[A-Za-z0-9-]{10,}",  # Slack tokens
    r"AKIA[0-9A-Z]{16}",  # AWS access key IDs
    r"sk-ant-[A-Za-z0-9_-]{20,}",  # Anthropic keys
    r"sk-[A-Za-z0-9_-]{20,}",  # OpenAI-style keys
    r"[rsp]k_(?:live|test)_[A-Za-z0-9]{20,}",  # Stripe keys
    r"Bearer\s+[A-Za-z0-9_\-.]{20,}",  # Bearer tokens
]

_COMBINED_RE = re.compile("|".join(_PATTERNS))


def scrub_secrets(text: str) -> str:
    """Replace recognised credentials in *text* with ``[REDACTED]``."""
    if not text:
        return text
    return _COMBINED_RE.sub("[REDACTED]", text)
