"""Heading-based section splitting for parsed documents."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode
from mdformat.renderer import MDRenderer
from slugify import slugify

from docindex.ingestion.mdx import extract_metadata, parse, strip_non_prose
from docindex.models import ParsedDocument, SectionDraft
from docindex.utils.files import compute_checksum

LOGGER = logging.getLogger(__name__)

DEFAULT_SLUG = "section"

_RENDER_OPTIONS = {
    "mdformat": {"wrap": "keep", "number": False, "end_of_line": "lf"},
    "parser_extension": [],
    "codeformatters": {},
}


class Slugger:
    """Generates unique slugs for the headings of one document.

    Repeated slugs get a ``-1``, ``-2``, ... suffix in the order they are seen.
    Use a fresh instance per document.
    """

    def __init__(self) -> None:
        self.occurrences: Dict[str, int] = {}

    def slug(self, value: Optional[str]) -> str:
        base = slugify(value or "") or DEFAULT_SLUG
        result = base
        while result in self.occurrences:
            self.occurrences[base] += 1
            result = f"{base}-{self.occurrences[base]}"
        self.occurrences[result] = 0
        return result

    def reset(self) -> None:
        self.occurrences.clear()


def heading_text(node: SyntaxTreeNode) -> str:
    """Plain text of a heading node, without markup."""
    return "".join(
        child.content for child in node.walk() if child.type in ("text", "code_inline")
    ).strip()


def render_markdown(nodes: Sequence[SyntaxTreeNode]) -> str:
    """Serialize block nodes back to Markdown."""
    tokens = [token for node in nodes for token in node.to_tokens()]
    if not tokens:
        return ""
    return MDRenderer().render(tokens, _RENDER_OPTIONS, {})


def split_tree(tree: SyntaxTreeNode) -> List[List[SyntaxTreeNode]]:
    """Group top-level nodes so that every heading starts a new group."""
    groups: List[List[SyntaxTreeNode]] = []
    for node in tree.children:
        if not groups or node.type == "heading":
            groups.append([node])
        else:
            groups[-1].append(node)
    return groups


def split_sections(tree: SyntaxTreeNode, slugger: Slugger) -> List[SectionDraft]:
    sections: List[SectionDraft] = []
    for nodes in split_tree(tree):
        first = nodes[0]
        heading = heading_text(first) if first.type == "heading" else None
        sections.append(
            SectionDraft(
                slug=slugger.slug(heading),
                heading=heading,
                content=render_markdown(nodes),
            )
        )
    return sections


def process_document(content: str, parser: Optional[MarkdownIt] = None) -> ParsedDocument:
    """Checksum, parse and split a raw MDX document.

    The checksum is taken from the raw text before parsing, so parser
    changes never mask a content change.
    """
    checksum = compute_checksum(content)
    tree = parse(content, parser)
    meta = extract_metadata(tree)
    prose = strip_non_prose(tree)
    sections = split_sections(prose, Slugger())
    LOGGER.debug("Split document into %d sections", len(sections))
    return ParsedDocument(checksum=checksum, meta=meta, sections=sections)
