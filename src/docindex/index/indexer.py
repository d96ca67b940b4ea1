"""Document indexing pipeline."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from docindex.embedding.encoder import EmbeddingModel
from docindex.errors import EmbeddingProviderError, ParseError, StoreError
from docindex.index.storage import SQLitePageStore
from docindex.ingestion.sections import process_document
from docindex.models import Document, DocumentResult, Page
from docindex.utils.text import excerpt

LOGGER = logging.getLogger(__name__)

SKIPPED = "skipped"
REINDEXED = "reindexed"
FAILED = "failed"

DEFAULT_PAGE_TYPE = "guide"


@dataclass(slots=True)
class IndexStats:
    reindexed: int = 0
    skipped: int = 0
    failed: int = 0
    results: List[DocumentResult] = field(default_factory=list)

    def record(self, result: DocumentResult) -> None:
        if result.status == REINDEXED:
            self.reindexed += 1
        elif result.status == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
        self.results.append(result)

    @property
    def ok(self) -> bool:
        return self.failed == 0


def is_unchanged(
    existing: Optional[Page], checksum: str, parent_page_id: Optional[int]
) -> bool:
    """Whether a stored page can be skipped for the given digest and parent.

    ``parent_page_id`` is the currently resolved parent, ``None`` when the
    document has no parent or its parent page does not exist. A page with a
    ``None`` checksum never counts as unchanged: its previous indexing run did
    not finish.
    """
    if existing is None or existing.checksum is None:
        return False
    return existing.checksum == checksum and existing.parent_page_id == parent_page_id


def schedule_waves(documents: Sequence[Document]) -> List[List[Document]]:
    """Order documents so that parents in the batch are indexed before children.

    Documents within a wave are independent of each other.
    """
    batch_paths = {document.path for document in documents}
    pending = list(documents)
    done: set[str] = set()
    waves: List[List[Document]] = []
    while pending:
        wave = [
            document
            for document in pending
            if not document.parent_path
            or document.parent_path not in batch_paths
            or document.parent_path in done
        ]
        if not wave:
            LOGGER.warning(
                "Circular parent references among %d documents", len(pending)
            )
            wave = pending
        waves.append(wave)
        done.update(document.path for document in wave)
        scheduled = {id(document) for document in wave}
        pending = [document for document in pending if id(document) not in scheduled]
    return waves


class Indexer:
    """Reconciles documents with the page store."""

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLitePageStore,
        *,
        page_type: str = DEFAULT_PAGE_TYPE,
        workers: int = 1,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.page_type = page_type
        self.workers = max(workers, 1)

    def index(self, documents: Iterable[Document]) -> IndexStats:
        """Index every document, continuing past per-document failures."""
        batch = list(documents)
        stats = IndexStats()
        if not batch:
            LOGGER.warning("No documents to index")
            return stats

        waves = schedule_waves(batch)
        if self.workers == 1:
            for wave in waves:
                for document in wave:
                    stats.record(self.index_document(document))
            return stats

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            for wave in waves:
                for result in pool.map(self.index_document, wave):
                    stats.record(result)
        return stats

    def index_document(self, document: Document) -> DocumentResult:
        """Skip, reindex or fail a single document."""
        path = document.path
        stage = "parse"
        current = document.content
        try:
            parsed = process_document(document.content)

            stage = "fetch"
            existing = self.store.get_page(path)
            parent = self.store.get_page(document.parent_path) if document.parent_path else None
            if document.parent_path and parent is None:
                LOGGER.warning("[%s] Parent page '%s' not found", path, document.parent_path)
            parent_page_id = parent.id if parent else None

            if is_unchanged(existing, parsed.checksum, parent_page_id):
                LOGGER.info("[%s] Unchanged, skipping", path)
                return DocumentResult(path=path, status=SKIPPED)

            if existing is not None:
                if existing.checksum is None:
                    LOGGER.warning("[%s] Previous indexing did not complete, reindexing", path)
                elif existing.checksum == parsed.checksum:
                    LOGGER.info(
                        "[%s] Parent page has changed. Updating to '%s'...",
                        path,
                        document.parent_path,
                    )
                else:
                    LOGGER.info("[%s] Content has changed, reindexing", path)

            # Cleared until every section is written
            stage = "upsert"
            page = self.store.upsert_page(
                path,
                checksum=None,
                page_type=self.page_type,
                meta=parsed.meta,
                parent_page_id=parent_page_id,
            )

            stage = "delete"
            self.store.delete_sections(page.id)

            LOGGER.info(
                "[%s] Adding %d page sections (with embeddings)", path, len(parsed.sections)
            )
            for section in parsed.sections:
                current = section.content
                stage = "embed"
                try:
                    embedding = self.embedder.embed(section.content)
                except EmbeddingProviderError as exc:
                    raise exc.with_context(path, excerpt(section.content)) from exc

                stage = "insert"
                self.store.insert_section(
                    page.id,
                    section,
                    token_count=embedding.token_count,
                    embedding=embedding.vector,
                )

            stage = "finalize"
            self.store.set_checksum(page.id, parsed.checksum)
        except (ParseError, StoreError, EmbeddingProviderError) as exc:
            snippet = excerpt(current)
            LOGGER.error(
                "[%s] Failed during %s for content starting with '%s': %s",
                path,
                stage,
                snippet,
                exc,
            )
            return DocumentResult(
                path=path, status=FAILED, stage=stage, error=str(exc), excerpt=snippet
            )

        return DocumentResult(path=path, status=REINDEXED, sections=len(parsed.sections))
