"""Tests for SQLitePageStore."""

from __future__ import annotations

import sqlite3

import numpy as np
import pytest

from docindex.errors import StoreError
from docindex.index.storage import SQLitePageStore
from docindex.models import SectionDraft

from conftest import DIMENSION


def _vector(value: float = 0.5) -> np.ndarray:
    return np.full(DIMENSION, value, dtype="float32")


def _add_page(store: SQLitePageStore, path: str = "guides/a.mdx", **kwargs):
    values = {"checksum": None, "page_type": "guide", "meta": None, "parent_page_id": None}
    values.update(kwargs)
    return store.upsert_page(path, **values)


class TestSQLitePageStore:
    """Test SQLitePageStore initialization and schema."""

    def test_init_creates_database(self, tmp_path) -> None:
        db_path = tmp_path / "new.db"
        assert not db_path.exists()

        store = SQLitePageStore(db_path, dimension=DIMENSION)

        assert db_path.exists()
        assert store.db_path == db_path
        assert store.dimension == DIMENSION
        store.close()

    def test_schema_creation(self, temp_db) -> None:
        conn = temp_db.connection
        tables = {
            row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        indexes = {
            row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")
        }

        assert {"pages", "page_sections"} <= tables
        assert "idx_page_sections_page_id" in indexes

    def test_pragma_settings(self, temp_db) -> None:
        conn = temp_db.connection

        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_close(self, tmp_path) -> None:
        store = SQLitePageStore(tmp_path / "close.db")
        conn = store.connection

        store.close()

        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")


class TestTransaction:
    """Test transaction context manager."""

    def test_rollback_on_exception(self, temp_db) -> None:
        with pytest.raises(ValueError):
            with temp_db.transaction() as conn:
                conn.execute("INSERT INTO pages(path) VALUES ('a.mdx')")
                raise ValueError("Test error")

        assert temp_db.get_page("a.mdx") is None

    def test_sqlite_errors_become_store_errors(self, temp_db) -> None:
        with pytest.raises(StoreError):
            with temp_db.transaction() as conn:
                conn.execute("INSERT INTO missing_table VALUES (1)")


class TestPages:
    """Test page lookups and upserts."""

    def test_get_missing_page(self, temp_db) -> None:
        assert temp_db.get_page("nope.mdx") is None

    def test_insert_page(self, temp_db) -> None:
        page = _add_page(temp_db, meta={"title": "A", "order": 1})

        assert page.id > 0
        assert page.path == "guides/a.mdx"
        assert page.checksum is None
        assert page.type == "guide"
        assert page.meta == {"title": "A", "order": 1}
        assert page.parent_path is None

    def test_upsert_keeps_id(self, temp_db) -> None:
        first = _add_page(temp_db, checksum="abc")
        second = _add_page(temp_db, checksum=None, page_type="reference")

        assert second.id == first.id
        assert second.checksum is None
        assert second.type == "reference"

    def test_parent_join(self, temp_db) -> None:
        parent = _add_page(temp_db, "guides/index.mdx")
        child = _add_page(temp_db, "guides/a.mdx", parent_page_id=parent.id)

        assert child.parent_page_id == parent.id
        assert child.parent_path == "guides/index.mdx"
        assert temp_db.get_page("guides/a.mdx").parent_path == "guides/index.mdx"

    def test_set_checksum(self, temp_db) -> None:
        page = _add_page(temp_db)

        temp_db.set_checksum(page.id, "digest")

        assert temp_db.get_page(page.path).checksum == "digest"

    def test_set_checksum_unknown_page(self, temp_db) -> None:
        with pytest.raises(StoreError):
            temp_db.set_checksum(999, "digest")

    def test_list_pages(self, temp_db) -> None:
        page = _add_page(temp_db, "b.mdx")
        _add_page(temp_db, "a.mdx", checksum="x")
        temp_db.insert_section(
            page.id, SectionDraft("s", "S", "body"), token_count=1, embedding=_vector()
        )

        rows = temp_db.list_pages()

        assert [(p.path, p.is_complete, count) for p, count in rows] == [
            ("a.mdx", True, 0),
            ("b.mdx", False, 1),
        ]


class TestSections:
    """Test section writes."""

    def test_insert_and_list(self, temp_db) -> None:
        page = _add_page(temp_db)
        draft = SectionDraft(slug="intro", heading="Intro", content="# Intro\n\ntext\n")

        section_id = temp_db.insert_section(page.id, draft, token_count=3, embedding=_vector(0.25))

        sections = temp_db.list_sections(page.id)
        assert len(sections) == 1
        assert sections[0].id == section_id
        assert sections[0].slug == "intro"
        assert sections[0].heading == "Intro"
        assert sections[0].token_count == 3
        np.testing.assert_array_equal(sections[0].embedding, _vector(0.25))

    def test_heading_may_be_null(self, temp_db) -> None:
        page = _add_page(temp_db)
        temp_db.insert_section(
            page.id, SectionDraft("section", None, "text"), token_count=1, embedding=_vector()
        )

        assert temp_db.list_sections(page.id)[0].heading is None

    def test_duplicate_slug_rejected(self, temp_db) -> None:
        page = _add_page(temp_db)
        draft = SectionDraft("intro", "Intro", "a")
        temp_db.insert_section(page.id, draft, token_count=1, embedding=_vector())

        with pytest.raises(StoreError):
            temp_db.insert_section(page.id, draft, token_count=1, embedding=_vector())

    def test_dimension_mismatch(self, temp_db) -> None:
        page = _add_page(temp_db)

        with pytest.raises(StoreError, match="dimension"):
            temp_db.insert_section(
                page.id,
                SectionDraft("intro", "Intro", "a"),
                token_count=1,
                embedding=np.zeros(3, dtype="float32"),
            )

    def test_delete_sections(self, temp_db) -> None:
        page = _add_page(temp_db)
        other = _add_page(temp_db, "other.mdx")
        for slug in ("a", "b"):
            temp_db.insert_section(
                page.id, SectionDraft(slug, slug, slug), token_count=1, embedding=_vector()
            )
        temp_db.insert_section(
            other.id, SectionDraft("a", "a", "a"), token_count=1, embedding=_vector()
        )

        removed = temp_db.delete_sections(page.id)

        assert removed == 2
        assert temp_db.list_sections(page.id) == []
        assert len(temp_db.list_sections(other.id)) == 1
