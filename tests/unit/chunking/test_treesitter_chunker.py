"""Tests for grammar-aware chunking via tree-sitter."""

from __future__ import annotations

import threading

from idx.chunking import chunk_file, chunker_for, language_for
from idx.chunking.base import text_hash

LODASH = b"""var CLONE_DEEP_FLAG = 1;

/**
 * Creates a deep clone of `value`.
 */
function cloneDeep(value) {
  return baseClone(value, CLONE_DEEP_FLAG);
}

module.exports = cloneDeep;
"""


def test_js_function_with_jsdoc():
    language, chunks = chunk_file("cloneDeep.js", LODASH)
    assert language == "javascript"
    assert len(chunks) == 1
    chunk = chunks[0]
    assert (chunk.kind, chunk.symbol) == ("function", "cloneDeep")
    assert chunk.text.startswith("/**\n * Creates a deep clone")
    assert chunk.text.endswith("}")
    assert (chunk.start_line, chunk.end_line) == (3, 8)
    assert LODASH[chunk.start_byte : chunk.end_byte].decode() == chunk.text
    assert chunk.content_hash == text_hash(chunk.text)


def test_js_class_methods_and_exported_arrow():
    source = b"""export class Cache {
  get(key) {
    return this.map.get(key);
  }
}

export const add = (a, b) => a + b;
"""
    _, chunks = chunk_file("cache.mjs", source)
    assert [(c.kind, c.symbol) for c in chunks] == [
        ("class", "Cache"),
        ("method", "get"),
        ("function", "add"),
    ]
    assert chunks[0].text.startswith("export class Cache")
    assert chunks[2].text.startswith("export const add")


def test_python_decorated_function_and_methods():
    source = b'''import functools


@functools.cache
def load(path):
    return path


class Store:
    """A store."""

    def get(self, key):
        return key
'''
    language, chunks = chunk_file("store.py", source)
    assert language == "python"
    assert [(c.kind, c.symbol) for c in chunks] == [
        ("function", "load"),
        ("class", "Store"),
        ("method", "get"),
    ]
    assert chunks[0].text.startswith("@functools.cache")


def test_rust_struct_impl_and_doc_comment():
    source = b"""/// A point on the plane.
#[derive(Debug)]
pub struct Point {
    x: i32,
}

impl Point {
    pub fn new(x: i32) -> Self {
        Point { x }
    }
}
"""
    _, chunks = chunk_file("src/point.rs", source)
    assert [(c.kind, c.symbol) for c in chunks] == [
        ("type", "Point"),
        ("impl", "Point"),
        ("method", "new"),
    ]
    assert chunks[0].text.startswith("/// A point on the plane.")


def test_go_type_and_method():
    source = b"""package server

// Server handles requests.
type Server struct{}

func (s *Server) Start() error {
\treturn nil
}
"""
    _, chunks = chunk_file("server.go", source)
    assert [(c.kind, c.symbol) for c in chunks] == [("type", "Server"), ("method", "Start")]
    assert chunks[0].text.startswith("// Server handles requests.")


def test_syntax_error_falls_back_to_whole_file():
    source = b"function broken( {\n  return 1;\n"
    _, chunks = chunk_file("lib/broken.js", source)
    assert len(chunks) == 1
    assert (chunks[0].kind, chunks[0].symbol) == ("file", "broken.js")
    assert chunks[0].text == source.decode()
    assert (chunks[0].start_line, chunks[0].end_line) == (1, 2)


def test_file_without_declarations_is_one_chunk():
    _, chunks = chunk_file("main.js", b"console.log('hi');\n")
    assert [c.kind for c in chunks] == ["file"]


def test_blank_file_has_no_chunks():
    assert chunk_file("empty.py", b"  \n\n") == ("python", [])


def test_unsupported_extension():
    assert chunk_file("LICENSE", b"MIT") == (None, [])
    assert language_for("notes.TXT") is None
    assert language_for("Component.TSX") == "tsx"


class _GrammarDownloadError(Exception):
    pass


def test_grammar_that_fails_to_load_is_unsupported(monkeypatch):
    calls = []

    def failing_get_parser(grammar):
        calls.append(grammar)
        raise _GrammarDownloadError(f"cannot download {grammar}")

    monkeypatch.setattr("idx.chunking.treesitter._parsers", threading.local())
    monkeypatch.setattr("idx.chunking.treesitter._unavailable", set())
    monkeypatch.setattr("idx.chunking.treesitter.get_parser", failing_get_parser)

    assert chunk_file("src/lib.rs", b"fn main() {}\n") == (None, [])
    assert chunk_file("src/other.rs", b"fn other() {}\n") == (None, [])
    # the failed load is remembered, not retried per file
    assert calls == ["rust"]
    # files without a grammar problem are unaffected
    assert chunk_file("README.md", b"# Title\n\nText.\n")[0] == "markdown"


def test_chunking_is_deterministic():
    first = chunk_file("cloneDeep.js", LODASH)[1]
    second = chunk_file("cloneDeep.js", LODASH)[1]
    assert [(c.start_byte, c.end_byte, c.content_hash) for c in first] == [
        (c.start_byte, c.end_byte, c.content_hash) for c in second
    ]


def test_editing_one_function_keeps_other_hashes():
    before = b"function a() { return 1; }\n\nfunction b() { return 2; }\n"
    after = b"function a() { return 1; }\n\nfunction b() { return 3; }\n"
    chunker = chunker_for("x.js")
    old = {c.symbol: c.content_hash for c in chunker.chunk(before, "x.js")}
    new = {c.symbol: c.content_hash for c in chunker.chunk(after, "x.js")}
    assert old["a"] == new["a"]
    assert old["b"] != new["b"]
