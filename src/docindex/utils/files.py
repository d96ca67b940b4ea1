"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Iterator

MARKDOWN_SUFFIXES = (".md", ".mdx")


def iter_markdown_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield Markdown/MDX paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_markdown_paths(
                sorted(
                    child
                    for child in item.rglob("*")
                    if child.is_file() and child.suffix.lower() in MARKDOWN_SUFFIXES
                )
            )
        elif item.is_file() and item.suffix.lower() in MARKDOWN_SUFFIXES:
            yield item


def compute_checksum(content: str | bytes) -> str:
    """Compute the SHA256 digest of raw document content as hex."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()
