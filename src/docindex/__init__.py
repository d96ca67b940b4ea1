"""Incremental embedding index for MDX documentation."""

__version__ = "0.1.0"
