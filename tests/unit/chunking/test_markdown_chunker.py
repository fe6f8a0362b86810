"""Tests for heading-aware Markdown chunking."""

from __future__ import annotations

from idx.chunking import MarkdownChunker, chunk_file

README = b"""Intro text.

# Title

Body.

## Usage

```sh
# not a heading
npm install lodash
```

### Deep
#### Not split

"""


def test_splits_on_h1_to_h3():
    language, chunks = chunk_file("README.md", README)
    assert language == "markdown"
    assert [c.symbol for c in chunks] == ["README.md", "Title", "Usage", "Deep"]
    assert all(c.kind == "doc" for c in chunks)


def test_section_text_and_lines():
    chunks = MarkdownChunker().chunk(README, "README.md")
    title = chunks[1]
    assert title.text == "# Title\n\nBody."
    assert (title.start_line, title.end_line) == (3, 5)
    assert "# not a heading" in chunks[2].text
    assert chunks[3].text == "### Deep\n#### Not split"


def test_document_without_headings_is_whole_file():
    chunks = MarkdownChunker().chunk(b"Just some notes.\n", "docs/notes.md")
    assert [(c.kind, c.symbol) for c in chunks] == [("file", "notes.md")]


def test_blank_document():
    assert MarkdownChunker().chunk(b"\n\n", "README.md") == []
