"""Grammar-aware chunker backed by tree-sitter.

Walks the concrete syntax tree and emits one chunk per declaration listed
in the language's LanguageSpec. The chunk's byte range starts at the
outermost wrapper (``export``, decorators) and is extended backwards over
directly preceding comment siblings, so attached documentation travels with
the code it describes.

Descent rules:
  - container declarations (classes, impls, modules) are emitted and then
    searched for nested declarations, which become methods;
  - other declarations (functions) are emitted and not descended into;
  - every other node is descended into, so declarations inside an IIFE or
    a namespace object are still found.

A tree with syntax errors degrades to a single whole-file chunk.
"""

from __future__ import annotations

import logging
import threading

from tree_sitter import Node, Parser
from tree_sitter_language_pack import get_parser

from idx.chunking.base import FUNCTION, IMPL, METHOD, BaseChunker
from idx.chunking.languages import LanguageSpec
from idx.db.models import Chunk
from idx.errors import ChunkError

logger = logging.getLogger(__name__)

_parsers = threading.local()
_unavailable: set[str] = set()
_unavailable_lock = threading.Lock()


def _parser_for(grammar: str) -> Parser:
    """Return this thread's parser for *grammar* (parsers are not thread-safe).

    Raises:
        ChunkError: kind ``unsupported`` if the grammar cannot be loaded.
    """
    cache: dict[str, Parser] | None = getattr(_parsers, "cache", None)
    if cache is None:
        cache = _parsers.cache = {}
    parser = cache.get(grammar)
    if parser is not None:
        return parser
    if grammar in _unavailable:
        raise ChunkError(f"grammar '{grammar}' unavailable", "unsupported")
    try:
        parser = get_parser(grammar)
    except Exception as exc:
        # LookupError for unknown grammars, DownloadError when the pack
        # fetches grammars on demand and cannot reach the network.
        with _unavailable_lock:
            first = grammar not in _unavailable
            _unavailable.add(grammar)
        if first:
            logger.warning(
                "grammar %s unavailable (%s); its files are recorded as unsupported",
                grammar,
                exc,
            )
        raise ChunkError(f"grammar '{grammar}' unavailable: {exc}", "unsupported") from exc
    cache[grammar] = parser
    return parser


class TreeSitterChunker(BaseChunker):
    """Extract declaration-level chunks for one tree-sitter language."""

    def __init__(self, spec: LanguageSpec) -> None:
        self.spec = spec
        self.language = spec.grammar

    def chunk(self, data: bytes, path: str) -> list[Chunk]:
        if not data.strip():
            return []
        tree = _parser_for(self.spec.grammar).parse(data)
        root = tree.root_node
        if root.has_error:
            logger.debug("syntax errors in %s; using whole-file chunk", path)
            return self._whole_file(data, path)

        chunks: list[Chunk] = []
        self._visit(root, data, chunks, in_container=False)
        if not chunks:
            return self._whole_file(data, path)
        chunks.sort(key=lambda c: (c.start_byte, c.end_byte))
        return chunks

    # ------------------------------------------------------------------
    # Tree walk
    # ------------------------------------------------------------------

    def _visit(self, node: Node, data: bytes, out: list[Chunk], in_container: bool) -> None:
        for child in node.named_children:
            kind = self.spec.declarations.get(child.type)
            if kind is not None:
                if kind == FUNCTION and in_container:
                    kind = METHOD
                out.append(self._emit(child, data, kind, self._symbol(child, data)))
                if child.type in self.spec.containers:
                    self._visit(child, data, out, in_container=True)
                continue
            if child.type in self.spec.bindings:
                symbol = self._function_binding(child, data)
                if symbol is not None:
                    out.append(self._emit(child, data, FUNCTION, symbol))
                    continue
            self._visit(child, data, out, in_container)

    def _emit(self, node: Node, data: bytes, kind: str, symbol: str) -> Chunk:
        anchor = node
        while anchor.parent is not None and anchor.parent.type in self.spec.wrappers:
            anchor = anchor.parent
        start = anchor.start_byte
        prev = anchor.prev_sibling
        line = anchor.start_point[0]
        while prev is not None and prev.type in self.spec.comments and prev.end_point[0] >= line - 1:
            start = prev.start_byte
            line = prev.start_point[0]
            prev = prev.prev_sibling
        return self._make_chunk(data, start, anchor.end_byte, kind, symbol)

    # ------------------------------------------------------------------
    # Symbol names
    # ------------------------------------------------------------------

    def _symbol(self, node: Node, data: bytes) -> str:
        if node.type == "impl_item":
            return self._impl_symbol(node, data)
        if node.type == "type_declaration":
            for spec in node.named_children:
                name = spec.child_by_field_name("name")
                if name is not None:
                    return _text(name, data)
        name = node.child_by_field_name("name")
        if name is not None:
            return _text(name, data)
        for child in node.named_children:
            if child.type in self.spec.name_types:
                return _text(child, data)
        return f"{node.type}@{node.start_point[0] + 1}"

    @staticmethod
    def _impl_symbol(node: Node, data: bytes) -> str:
        type_node = node.child_by_field_name("type")
        trait_node = node.child_by_field_name("trait")
        target = _text(type_node, data) if type_node is not None else IMPL
        if trait_node is not None:
            return f"{_text(trait_node, data)} for {target}"
        return target

    def _function_binding(self, node: Node, data: bytes) -> str | None:
        """Name of ``const name = () => ...`` style bindings, else None."""
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            value = declarator.child_by_field_name("value")
            name = declarator.child_by_field_name("name")
            if value is not None and name is not None and value.type in self.spec.function_values:
                return _text(name, data)
        return None


def _text(node: Node, data: bytes) -> str:
    return data[node.start_byte : node.end_byte].decode("utf-8", errors="replace")
