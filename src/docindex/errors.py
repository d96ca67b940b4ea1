"""Exception types raised by the indexing pipeline."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional


class DocIndexError(Exception):
    """Base class for all docindex errors."""


class ParseError(DocIndexError):
    """Document markup could not be parsed."""


class StoreError(DocIndexError):
    """A read or write against the backing store failed."""


class EmbeddingProviderError(DocIndexError):
    """The embedding provider failed or returned an unusable response.

    ``path`` and ``excerpt`` identify the offending section once the indexer
    has attached them.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        excerpt: Optional[str] = None,
        retriable: bool = False,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.excerpt = excerpt
        self.retriable = retriable

    def with_context(self, path: str, excerpt: str) -> "EmbeddingProviderError":
        return EmbeddingProviderError(
            str(self), path=path, excerpt=excerpt, retriable=self.retriable
        )


class ConfigurationError(DocIndexError):
    """Required configuration values are missing or malformed.

    ``invalid`` maps a setting name to the reason its value was rejected.
    """

    def __init__(
        self,
        missing: Iterable[str] = (),
        *,
        invalid: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.missing = list(missing)
        self.invalid = dict(invalid or {})
        problems = []
        if self.missing:
            problems.append("Missing required configuration: " + ", ".join(self.missing))
        problems.extend(f"Invalid {name}: {reason}" for name, reason in self.invalid.items())
        super().__init__("; ".join(problems))
