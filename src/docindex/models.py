"""Core docindex data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass(slots=True)
class Document:
    """A source document as supplied by a document source."""

    path: str
    content: str
    parent_path: str = ""


@dataclass(slots=True)
class SectionDraft:
    """Heading-delimited chunk of a document, before embedding."""

    slug: str
    heading: Optional[str]
    content: str


@dataclass(slots=True)
class ParsedDocument:
    checksum: str
    meta: Optional[Dict[str, Any]]
    sections: List[SectionDraft] = field(default_factory=list)


@dataclass(slots=True)
class Page:
    """Persisted record for one source document.

    ``checksum`` is ``None`` while the page's sections are being (re)written.
    """

    id: int
    path: str
    checksum: Optional[str]
    type: str
    meta: Optional[Dict[str, Any]]
    parent_page_id: Optional[int] = None
    parent_path: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.checksum is not None


@dataclass(slots=True)
class Section:
    id: int
    page_id: int
    slug: str
    heading: Optional[str]
    content: str
    token_count: int
    embedding: np.ndarray


@dataclass(slots=True)
class DocumentResult:
    """Outcome of indexing a single document."""

    path: str
    status: str
    sections: int = 0
    stage: Optional[str] = None
    error: Optional[str] = None
    excerpt: Optional[str] = None
