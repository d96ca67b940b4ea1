"""MDX parsing: syntax tree, ``meta`` export extraction and prose filtering.

Documents are CommonMark with the MDX additions used by documentation sites:
ESM ``import``/``export`` blocks, JSX components (flow and inline) and
``{expression}`` spans. Parsing is done with markdown-it-py; the MDX
constructs are turned into dedicated token types so that the resulting
``SyntaxTreeNode`` nests a component's children under the component.
"""

from __future__ import annotations

import ast
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from markdown_it import MarkdownIt
from markdown_it.rules_block import StateBlock
from markdown_it.rules_inline import StateInline
from markdown_it.token import Token
from markdown_it.tree import SyntaxTreeNode

from docindex.errors import ParseError

LOGGER = logging.getLogger(__name__)

META_EXPORT_NAME = "meta"

# Node types that carry executable or component content rather than prose.
NON_PROSE_TYPES = frozenset(
    {
        "mdx_esm",
        "mdx_jsx_flow",
        "mdx_jsx_text",
        "mdx_text_expression",
    }
)

_ESM_START = re.compile(r"(?:import|export)\b")
# Tag name must be followed by attributes, "/" or ">"; "<https://..." is not a tag.
_TAG_START = re.compile(
    r"<(?P<close>/)?(?:(?P<name>[A-Za-z][\w.-]*(?::[A-Za-z][\w.-]*)?)(?=[\s/>{])|(?=>))"
)
_COMMENT = re.compile(r"<!--.*?-->", re.S)
# Raw text elements stay with the html_block rule.
_RAW_TEXT_TAGS = frozenset({"pre", "script", "style", "textarea"})
_META_EXPORT = re.compile(
    r"(?:^|[\n;])\s*export\s+(?:const|let|var)\s+(?P<name>[A-Za-z_$][\w$]*)\s*=\s*"
)
_IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")
_STRING = re.compile(r"\"(?:[^\"\\\n]|\\.)*\"|'(?:[^'\\\n]|\\.)*'")
_NUMBER = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_KEYWORDS = {"true": True, "false": False, "null": None}


# -- markdown-it rules -------------------------------------------------------


def _esm_block(state: StateBlock, startLine: int, endLine: int, silent: bool) -> bool:
    """Top-level ``import``/``export`` statements up to the next blank line."""
    if state.parentType != "root" or state.sCount[startLine] != 0:
        return False
    start = state.bMarks[startLine] + state.tShift[startLine]
    if not _ESM_START.match(state.src, start, state.eMarks[startLine]):
        return False
    if silent:
        return True

    nextLine = startLine + 1
    while nextLine < endLine and not state.isEmpty(nextLine):
        nextLine += 1

    token = state.push("mdx_esm", "", 0)
    token.map = [startLine, nextLine]
    token.content = state.getLines(startLine, nextLine, 0, True)
    state.line = nextLine
    return True


def _find_closing_brace(src: str, start: int) -> int:
    depth = 0
    quote = ""
    pos = start
    while pos < len(src):
        char = src[pos]
        if quote:
            if char == "\\":
                pos += 1
            elif char == quote:
                quote = ""
        elif char in "\"'`":
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return pos
        pos += 1
    return -1


def _text_expression(state: StateInline, silent: bool) -> bool:
    """Inline ``{expression}`` spans."""
    if state.src[state.pos] != "{":
        return False
    end = _find_closing_brace(state.src, state.pos)
    if end == -1 or end >= state.posMax:
        if silent:
            return False
        raise ParseError(
            f"Unexpected end of input in expression starting with "
            f"{state.src[state.pos:state.pos + 20]!r}"
        )
    if not silent:
        token = state.push("mdx_text_expression", "", 0)
        token.content = state.src[state.pos + 1 : end]
    state.pos = end + 1
    return True


def _match_tag(src: str, pos: int, limit: int) -> Optional[Tuple[int, str, bool, bool]]:
    """Scan the JSX tag starting at ``pos``.

    Attribute values may be quoted strings or ``{expression}`` props, which
    can contain ``>`` and span lines. Returns ``(end, name, closing,
    self_closing)`` or ``None`` if no complete tag starts at ``pos``.
    """
    match = _TAG_START.match(src, pos, limit)
    if not match:
        return None
    pos = match.end()
    while pos < limit:
        char = src[pos]
        if char == "{":
            end = _find_closing_brace(src, pos)
            if end == -1 or end >= limit:
                return None
            pos = end + 1
        elif char in "\"'":
            end = src.find(char, pos + 1, limit)
            if end == -1:
                return None
            pos = end + 1
        elif char == "<":
            return None
        elif char == ">":
            closing = bool(match.group("close"))
            self_closing = not closing and src[pos - 1] == "/"
            return pos + 1, match.group("name") or "", closing, self_closing
        else:
            pos += 1
    return None


def _jsx_flow_block(state: StateBlock, startLine: int, endLine: int, silent: bool) -> bool:
    """A block starting with a line that holds only JSX tags.

    The tags may spread over several lines. The token is emitted as
    ``html_block`` and grouped with the other raw tag blocks afterwards.
    """
    if state.sCount[startLine] - state.blkIndent >= 4:
        return False
    start = state.bMarks[startLine] + state.tShift[startLine]
    if not state.src.startswith("<", start):
        return False

    limit = state.eMarks[endLine - 1]
    pos = start
    found = False
    while True:
        tag = _match_tag(state.src, pos, limit)
        if tag is None:
            break
        if not found and tag[1].lower() in _RAW_TEXT_TAGS:
            return False
        found = True
        pos = tag[0]
        while pos < limit and state.src[pos] in " \t":
            pos += 1
    if not found:
        return False

    lastLine = startLine
    while lastLine < endLine and state.eMarks[lastLine] < pos:
        lastLine += 1
    if lastLine >= endLine or pos != state.eMarks[lastLine]:
        return False
    if silent:
        return True

    # Like an HTML block, the block runs on to the next blank line
    while lastLine + 1 < endLine and not state.isEmpty(lastLine + 1):
        lastLine += 1

    token = state.push("html_block", "", 0)
    token.map = [startLine, lastLine + 1]
    token.content = state.getLines(startLine, lastLine + 1, state.blkIndent, True)
    state.line = lastLine + 1
    return True


def _jsx_inline(state: StateInline, silent: bool) -> bool:
    """Inline JSX tags, emitted as ``html_inline``."""
    if state.src[state.pos] != "<":
        return False
    tag = _match_tag(state.src, state.pos, state.posMax)
    if tag is None:
        return False
    if not silent:
        token = state.push("html_inline", "", 0)
        token.content = state.src[state.pos : tag[0]]
    state.pos = tag[0]
    return True


def mdx_plugin(md: MarkdownIt) -> None:
    """Register the MDX syntax rules on a ``MarkdownIt`` instance."""
    md.block.ruler.before("paragraph", "mdx_esm", _esm_block)
    md.block.ruler.before("html_block", "mdx_jsx_block", _jsx_flow_block)
    md.inline.ruler.before("text", "mdx_text_expression", _text_expression)
    md.inline.ruler.before("html_inline", "mdx_jsx_inline", _jsx_inline)


def create_parser() -> MarkdownIt:
    return MarkdownIt("commonmark").use(mdx_plugin)


# -- JSX grouping ------------------------------------------------------------


def _iter_tags(content: str) -> Iterator[Tuple[str, bool, bool]]:
    source = _COMMENT.sub("", content)
    pos = source.find("<")
    while pos != -1:
        tag = _match_tag(source, pos, len(source))
        if tag is None:
            pos = source.find("<", pos + 1)
            continue
        end, name, closing, self_closing = tag
        yield name, closing, self_closing
        pos = source.find("<", end)


def _scan_tags(content: str) -> Tuple[List[str], List[str]]:
    """Return (outer tags closed, tags left open) for a chunk of JSX source."""
    closed: List[str] = []
    opened: List[str] = []
    for name, closing, self_closing in _iter_tags(content):
        if self_closing:
            continue
        if closing:
            if opened:
                expected = opened.pop()
                if expected != name:
                    raise ParseError(
                        f"Unexpected closing tag </{name}>, expected </{expected}>"
                    )
            else:
                closed.append(name)
        else:
            opened.append(name)
    return closed, opened


class _JsxGrouper:
    """Rewrites HTML/JSX tokens into nested ``mdx_jsx_*`` token pairs."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.stack: List[Tuple[str, Optional[Token], int]] = []

    def rewrite(self, tokens: Sequence[Token], html_type: str) -> List[Token]:
        result: List[Token] = []
        containers: List[Token] = []
        for token in tokens:
            if token.type != html_type:
                if token.nesting == 1:
                    containers.append(token)
                elif token.nesting == -1 and containers:
                    containers.pop()
                result.append(token)
                continue

            closed, opened = _scan_tags(token.content)
            scope = (containers[-1] if containers else None, len(containers))
            for name in closed:
                if not self.stack:
                    raise ParseError(f"Unexpected closing tag </{name}>")
                expected, container, depth = self.stack.pop()
                if expected != name:
                    raise ParseError(
                        f"Unexpected closing tag </{name}>, expected </{expected}>"
                    )
                if (container, depth) != scope:
                    raise ParseError(f"Closing tag </{name}> crosses a block boundary")
                result.append(self._token("_close", -1, token))
            result.append(
                self._token("", 0, token, content=token.content)
            )
            for name in opened:
                self.stack.append((name, scope[0], scope[1]))
                result.append(self._token("_open", 1, token))
        return result

    def finish(self) -> None:
        if self.stack:
            name = self.stack[-1][0]
            raise ParseError(f"Expected a closing tag for <{name}>")

    def _token(self, suffix: str, nesting: int, source: Token, content: str = "") -> Token:
        token = Token(self.prefix + suffix, "", nesting, map=source.map, level=source.level)
        token.content = content
        token.block = source.block
        return token


def _group_jsx(tokens: List[Token]) -> List[Token]:
    grouper = _JsxGrouper("mdx_jsx_flow")
    tokens = grouper.rewrite(tokens, "html_block")
    grouper.finish()

    for token in tokens:
        if token.type == "inline" and token.children:
            inline = _JsxGrouper("mdx_jsx_text")
            token.children = inline.rewrite(token.children, "html_inline")
            inline.finish()
    return tokens


# -- public API --------------------------------------------------------------


def parse(text: str, parser: Optional[MarkdownIt] = None) -> SyntaxTreeNode:
    """Parse MDX text into a syntax tree.

    Raises ``ParseError`` for unbalanced JSX or unterminated expressions.
    """
    md = parser or create_parser()
    try:
        tokens = md.parse(text)
    except ParseError:
        raise
    except Exception as exc:  # markdown-it internals
        raise ParseError(f"Failed to parse document: {exc}") from exc
    tokens = _group_jsx(tokens)
    try:
        return SyntaxTreeNode(tokens)
    except ValueError as exc:
        raise ParseError(str(exc)) from exc


class _NotLiteral(Exception):
    pass


class _ObjectLiteralReader:
    """Reads a flat object literal with literal-only values."""

    def __init__(self, src: str, pos: int) -> None:
        self.src = src
        self.pos = pos

    def _skip_space(self) -> None:
        while self.pos < len(self.src) and self.src[self.pos].isspace():
            self.pos += 1

    def _expect(self, char: str) -> None:
        self._skip_space()
        if not self.src.startswith(char, self.pos):
            raise _NotLiteral(f"expected {char!r} at {self.pos}")
        self.pos += 1

    def _key(self) -> str:
        match = _STRING.match(self.src, self.pos) or _IDENTIFIER.match(self.src, self.pos)
        if not match:
            raise _NotLiteral(f"expected key at {self.pos}")
        self.pos = match.end()
        raw = match.group(0)
        return ast.literal_eval(raw) if raw[0] in "\"'" else raw

    def _value(self) -> Any:
        match = _STRING.match(self.src, self.pos)
        if match:
            self.pos = match.end()
            return ast.literal_eval(match.group(0))
        match = _IDENTIFIER.match(self.src, self.pos)
        if match and match.group(0) in _KEYWORDS:
            self.pos = match.end()
            return _KEYWORDS[match.group(0)]
        match = _NUMBER.match(self.src, self.pos)
        if match:
            self.pos = match.end()
            raw = match.group(0)
            if any(char in raw for char in ".eE"):
                return float(raw)
            return int(raw)
        raise _NotLiteral(f"non-literal value at {self.pos}")

    def read(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        self._expect("{")
        while True:
            self._skip_space()
            if self.src.startswith("}", self.pos):
                self.pos += 1
                return result
            key = self._key()
            self._expect(":")
            self._skip_space()
            result[key] = self._value()
            self._skip_space()
            if self.src.startswith(",", self.pos):
                self.pos += 1
            elif not self.src.startswith("}", self.pos):
                raise _NotLiteral(f"expected ',' or '}}' at {self.pos}")


def _meta_from_esm(source: str) -> Optional[Dict[str, Any]]:
    for match in _META_EXPORT.finditer(source):
        if match.group("name") != META_EXPORT_NAME:
            continue
        reader = _ObjectLiteralReader(source, match.end())
        try:
            meta = reader.read()
        except (_NotLiteral, ValueError, SyntaxError) as exc:
            LOGGER.debug("Ignoring non-literal meta export: %s", exc)
            return None
        rest = source[reader.pos :].lstrip(" \t")
        if rest and not rest.startswith((";", "\n")):
            LOGGER.debug("Ignoring meta export followed by %r", rest[:20])
            return None
        return meta
    return None


def extract_metadata(tree: SyntaxTreeNode) -> Optional[Dict[str, Any]]:
    """Return the literal values of ``export const meta = {...}``, if present.

    Only top-level ESM blocks are considered. Anything that is not a flat
    object of string/number/boolean/null literals yields ``None``.
    """
    for node in tree.children:
        if node.type != "mdx_esm":
            continue
        meta = _meta_from_esm(node.content)
        if meta is not None:
            return meta
    return None


def _base_type(token: Token) -> str:
    if token.nesting == 1 and token.type.endswith("_open"):
        return token.type[: -len("_open")]
    return token.type


def _filter_tokens(tokens: Sequence[Token]) -> List[Token]:
    kept: List[Token] = []
    skip_depth = 0
    for token in tokens:
        if skip_depth:
            skip_depth += token.nesting
            continue
        if _base_type(token) in NON_PROSE_TYPES:
            if token.nesting == 1:
                skip_depth = 1
            continue
        if token.children:
            token = token.copy(children=_filter_tokens(token.children))
        kept.append(token)
    return kept


def _has_prose(inline: Token) -> bool:
    for child in inline.children or ():
        if child.type in ("softbreak", "hardbreak"):
            continue
        if child.type == "text" and not child.content.strip():
            continue
        return True
    return False


def _drop_empty_paragraphs(tokens: List[Token]) -> List[Token]:
    result: List[Token] = []
    index = 0
    while index < len(tokens):
        window = tokens[index : index + 3]
        if (
            len(window) == 3
            and window[0].type == "paragraph_open"
            and window[1].type == "inline"
            and window[2].type == "paragraph_close"
            and not _has_prose(window[1])
        ):
            index += 3
            continue
        result.append(tokens[index])
        index += 1
    return result


def strip_non_prose(tree: SyntaxTreeNode) -> SyntaxTreeNode:
    """Return a copy of ``tree`` without ESM, JSX and expression nodes."""
    tokens = _drop_empty_paragraphs(_filter_tokens(tree.to_tokens()))
    return SyntaxTreeNode(tokens)
