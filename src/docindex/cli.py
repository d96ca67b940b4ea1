"""Command line interface for docindex."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from docindex.config import AppConfig
from docindex.embedding.encoder import build_embedder
from docindex.errors import ConfigurationError, StoreError
from docindex.index.indexer import FAILED, REINDEXED, IndexStats, Indexer
from docindex.index.storage import SQLitePageStore
from docindex.ingestion.sources import FileSystemDocumentSource, ManifestDocumentSource
from docindex.models import Document


console = Console()
app = typer.Typer(help="docindex - incremental embedding index for MDX documentation")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _collect_documents(
    inputs: List[Path], manifest: Optional[Path], parent: str
) -> List[Document]:
    documents: List[Document] = []
    if manifest is not None:
        documents.extend(ManifestDocumentSource(manifest))
    for item in inputs:
        documents.extend(FileSystemDocumentSource(item, parent_path=parent))
    return documents


def _print_results(stats: IndexStats) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Document")
    table.add_column("Status")
    table.add_column("Sections")
    table.add_column("Details")

    for result in stats.results:
        if result.status == FAILED:
            status = "[red]failed[/red]"
            details = escape(f"{result.stage}: {result.error} ('{result.excerpt}')")
        elif result.status == REINDEXED:
            status = "[green]reindexed[/green]"
            details = ""
        else:
            status = "[dim]skipped[/dim]"
            details = "unchanged"
        sections = str(result.sections) if result.status == REINDEXED else ""
        table.add_row(escape(result.path), status, sections, details)

    console.print(table)


@app.command()
def index(
    inputs: Optional[List[Path]] = typer.Argument(
        None, help="Files or directories with Markdown/MDX to index.", resolve_path=True
    ),
    manifest: Optional[Path] = typer.Option(
        None, "--manifest", help="JSON manifest listing documents and their parents"
    ),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
    provider: Optional[str] = typer.Option(None, help="Embedding provider: openai or local"),
    model: Optional[str] = typer.Option(None, help="Embedding model name"),
    page_type: Optional[str] = typer.Option(None, "--page-type", help="Type tag stored on pages"),
    parent: str = typer.Option("", "--parent", help="Parent page path for INPUTS documents"),
    workers: Optional[int] = typer.Option(None, help="Documents processed concurrently"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index Markdown/MDX documents, skipping the ones that have not changed."""
    _setup_logging(verbose)
    try:
        config = AppConfig.from_env(
            db_path=db,
            provider=provider,
            model_name=model,
            page_type=page_type,
            workers=workers,
        )
        config.validate()
    except (ConfigurationError, ValueError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2)

    try:
        documents = _collect_documents(inputs or [], manifest, parent)
    except (OSError, ValueError, KeyError) as exc:
        console.print(f"[red]Cannot read documents: {escape(str(exc))}[/red]")
        raise typer.Exit(code=2)

    if not documents:
        console.print("[yellow]No documents found.[/yellow]")
        return

    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    embedder = build_embedder(config.embedding_config())
    try:
        store = SQLitePageStore(resolved_db, dimension=embedder.dimension)
    except StoreError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2)
    try:
        indexer = Indexer(embedder, store, page_type=config.page_type, workers=config.workers)
        console.print(f"Indexing {len(documents)} documents into [bold]{resolved_db}[/bold]...")
        stats = indexer.index(documents)
    finally:
        store.close()

    _print_results(stats)
    console.print(
        f"Reindexed: {stats.reindexed}, skipped: {stats.skipped}, failed: {stats.failed}"
    )
    if not stats.ok:
        raise typer.Exit(code=1)


@app.command()
def pages(
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
    as_json: bool = typer.Option(False, "--json", help="Print pages as JSON"),
) -> None:
    """List indexed pages and whether their last indexing run completed."""
    try:
        config = AppConfig.from_env(db_path=db)
        resolved_db = config.resolve_db_path(Path.cwd())
    except ConfigurationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2)

    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing indexed yet.[/yellow]")
        return

    try:
        store = SQLitePageStore(resolved_db)
    except StoreError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2)
    try:
        rows = store.list_pages()
    except StoreError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    finally:
        store.close()

    if as_json:
        payload = [
            {
                "path": page.path,
                "parent": page.parent_path,
                "type": page.type,
                "complete": page.is_complete,
                "sections": count,
                "meta": page.meta,
            }
            for page, count in rows
        ]
        console.print_json(json.dumps(payload))
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Page")
    table.add_column("Parent")
    table.add_column("State")
    table.add_column("Sections")
    for page, count in rows:
        state = "complete" if page.is_complete else "[red]incomplete[/red]"
        table.add_row(escape(page.path), escape(page.parent_path or ""), state, str(count))
    console.print(table)
