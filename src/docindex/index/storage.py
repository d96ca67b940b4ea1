"""SQLite store for pages and their embedded sections."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from docindex.errors import StoreError
from docindex.models import Page, Section, SectionDraft

_PAGE_COLUMNS = """
    p.id AS id,
    p.path AS path,
    p.checksum AS checksum,
    p.type AS type,
    p.meta AS meta,
    p.parent_page_id AS parent_page_id,
    parent.path AS parent_path
"""


class SQLitePageStore:
    """Persistence layer for pages and page sections.

    Every public operation commits on its own, so a page upserted with a
    ``NULL`` checksum stays observable as incomplete if a later step fails.
    """

    def __init__(self, db_path: Path, *, dimension: Optional[int] = None) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA foreign_keys=ON;")
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open database {self.db_path}: {exc}") from exc
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(str(exc)) from exc
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pages (
                    id INTEGER PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    checksum TEXT,
                    type TEXT,
                    meta TEXT,
                    parent_page_id INTEGER REFERENCES pages(id) ON DELETE SET NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS pages_updated
                AFTER UPDATE ON pages
                BEGIN
                    UPDATE pages SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
                END;
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS page_sections (
                    id INTEGER PRIMARY KEY,
                    page_id INTEGER NOT NULL,
                    slug TEXT NOT NULL,
                    heading TEXT,
                    content TEXT NOT NULL,
                    token_count INTEGER NOT NULL,
                    embedding BLOB NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(page_id) REFERENCES pages(id) ON DELETE CASCADE,
                    UNIQUE(page_id, slug)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_page_sections_page_id
                    ON page_sections(page_id)
                """
            )

    @staticmethod
    def _row_to_page(row: sqlite3.Row) -> Page:
        return Page(
            id=row["id"],
            path=row["path"],
            checksum=row["checksum"],
            type=row["type"],
            meta=json.loads(row["meta"]) if row["meta"] is not None else None,
            parent_page_id=row["parent_page_id"],
            parent_path=row["parent_path"],
        )

    def get_page(self, path: str) -> Optional[Page]:
        """Look up a page by path, joined with its parent page's path."""
        with self.transaction() as conn:
            row = conn.execute(
                f"""
                SELECT {_PAGE_COLUMNS}
                FROM pages p
                LEFT JOIN pages parent ON parent.id = p.parent_page_id
                WHERE p.path = ?
                """,
                (path,),
            ).fetchone()
        return self._row_to_page(row) if row else None

    def upsert_page(
        self,
        path: str,
        *,
        checksum: Optional[str],
        page_type: str,
        meta: Optional[Dict[str, Any]],
        parent_page_id: Optional[int],
    ) -> Page:
        """Insert or update the page keyed by ``path``."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO pages(path, checksum, type, meta, parent_page_id)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    checksum = excluded.checksum,
                    type = excluded.type,
                    meta = excluded.meta,
                    parent_page_id = excluded.parent_page_id
                """,
                (
                    path,
                    checksum,
                    page_type,
                    json.dumps(meta, ensure_ascii=True) if meta is not None else None,
                    parent_page_id,
                ),
            )
        page = self.get_page(path)
        if page is None:
            raise StoreError(f"Page '{path}' missing after upsert")
        return page

    def delete_sections(self, page_id: int) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM page_sections WHERE page_id = ?", (page_id,))
        return cursor.rowcount

    def insert_section(
        self,
        page_id: int,
        section: SectionDraft,
        *,
        token_count: int,
        embedding: np.ndarray,
    ) -> int:
        vector = np.asarray(embedding, dtype="float32")
        if self.dimension is not None and vector.shape != (self.dimension,):
            raise StoreError(
                f"Embedding dimension mismatch: expected {self.dimension}, got {vector.shape}"
            )
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO page_sections(page_id, slug, heading, content, token_count, embedding)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    page_id,
                    section.slug,
                    section.heading,
                    section.content,
                    token_count,
                    sqlite3.Binary(vector.tobytes()),
                ),
            )
        return int(cursor.lastrowid)

    def set_checksum(self, page_id: int, checksum: Optional[str]) -> None:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE pages SET checksum = ? WHERE id = ?", (checksum, page_id)
            )
            if cursor.rowcount != 1:
                raise StoreError(f"Page {page_id} not found")

    def list_sections(self, page_id: int) -> List[Section]:
        with self.transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, page_id, slug, heading, content, token_count, embedding
                FROM page_sections
                WHERE page_id = ?
                ORDER BY id
                """,
                (page_id,),
            ).fetchall()
        return [
            Section(
                id=row["id"],
                page_id=row["page_id"],
                slug=row["slug"],
                heading=row["heading"],
                content=row["content"],
                token_count=row["token_count"],
                embedding=np.frombuffer(row["embedding"], dtype="float32"),
            )
            for row in rows
        ]

    def list_pages(self) -> List[Tuple[Page, int]]:
        """All pages with their section counts, ordered by path."""
        with self.transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {_PAGE_COLUMNS},
                    (SELECT COUNT(*) FROM page_sections s WHERE s.page_id = p.id) AS section_count
                FROM pages p
                LEFT JOIN pages parent ON parent.id = p.parent_page_id
                ORDER BY p.path
                """
            ).fetchall()
        return [(self._row_to_page(row), row["section_count"]) for row in rows]
