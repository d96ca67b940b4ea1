"""Text helpers used when talking to embedding providers."""

from __future__ import annotations

import re

_NEWLINES = re.compile(r"\r\n|\r|\n")


def collapse_newlines(text: str) -> str:
    """Replace every line break with a single space.

    Embedding providers give more stable results on single-line input.
    """
    return _NEWLINES.sub(" ", text)


def excerpt(text: str, *, limit: int = 40) -> str:
    """Return a short single-line prefix of ``text`` for diagnostics."""
    flat = collapse_newlines(text)
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."
