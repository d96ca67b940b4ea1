"""Document sources.

The indexer accepts any iterable of ``Document``; these helpers cover the
common ways of enumerating a documentation corpus.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence

from docindex.models import Document
from docindex.utils.files import iter_markdown_paths

LOGGER = logging.getLogger(__name__)


class StaticDocumentSource:
    """A fixed, ordered list of documents."""

    def __init__(self, documents: Iterable[Document]) -> None:
        self.documents: List[Document] = list(documents)

    def __iter__(self) -> Iterator[Document]:
        return iter(self.documents)

    def __len__(self) -> int:
        return len(self.documents)


class FileSystemDocumentSource:
    """Markdown and MDX files under a root directory, in sorted order.

    Document paths are POSIX paths relative to ``root``.
    """

    def __init__(self, root: Path, *, parent_path: str = "") -> None:
        self.root = Path(root)
        self.parent_path = parent_path

    def __iter__(self) -> Iterator[Document]:
        for file_path in iter_markdown_paths([self.root]):
            relative = file_path.relative_to(self.root) if self.root.is_dir() else Path(file_path.name)
            yield Document(
                path=relative.as_posix(),
                content=file_path.read_text(encoding="utf-8"),
                parent_path=self.parent_path,
            )


class ManifestDocumentSource:
    """Documents listed in a JSON manifest.

    The manifest is a list of ``{"path": ..., "parent": ...}`` objects; file
    paths are resolved relative to the manifest's directory.
    """

    def __init__(self, manifest_path: Path) -> None:
        self.manifest_path = Path(manifest_path)

    def _entries(self) -> Sequence[dict]:
        entries = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        if not isinstance(entries, list):
            raise ValueError(f"Manifest {self.manifest_path} must contain a JSON list")
        return entries

    def __iter__(self) -> Iterator[Document]:
        base = self.manifest_path.parent
        for entry in self._entries():
            path = entry["path"]
            LOGGER.debug("Reading %s from manifest", path)
            yield Document(
                path=path,
                content=(base / path).read_text(encoding="utf-8"),
                parent_path=entry.get("parent") or "",
            )
