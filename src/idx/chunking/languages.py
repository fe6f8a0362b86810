"""Per-language tree-sitter node tables.

Each LanguageSpec tells the tree-sitter chunker which node types are
declarations worth a chunk, which of those hold further declarations, which
parent nodes wrap a declaration (and so own its byte range), and which
sibling nodes count as attached documentation.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field

from idx.chunking.base import CLASS, FUNCTION, IMPL, INTERFACE, METHOD, MODULE, TYPE


@dataclass(frozen=True)
class LanguageSpec:
    grammar: str
    declarations: dict[str, str]
    containers: frozenset[str] = frozenset()
    wrappers: frozenset[str] = frozenset()
    comments: frozenset[str] = frozenset({"comment"})
    # lexical/variable declarations that count only when they bind a function
    bindings: frozenset[str] = frozenset()
    function_values: frozenset[str] = frozenset()
    name_types: tuple[str, ...] = field(
        default=("identifier", "type_identifier", "property_identifier", "simple_identifier")
    )


_JS_DECLARATIONS = {
    "function_declaration": FUNCTION,
    "generator_function_declaration": FUNCTION,
    "method_definition": METHOD,
    "class_declaration": CLASS,
}

_TS_DECLARATIONS = {
    **_JS_DECLARATIONS,
    "abstract_class_declaration": CLASS,
    "interface_declaration": INTERFACE,
    "type_alias_declaration": TYPE,
    "enum_declaration": TYPE,
    "internal_module": MODULE,
    "module": MODULE,
}

_JS_COMMON = dict(
    containers=frozenset(
        {"class_declaration", "abstract_class_declaration", "internal_module", "module"}
    ),
    wrappers=frozenset({"export_statement"}),
    bindings=frozenset({"lexical_declaration", "variable_declaration"}),
    function_values=frozenset(
        {"arrow_function", "function_expression", "function", "generator_function"}
    ),
)

JAVASCRIPT = LanguageSpec(grammar="javascript", declarations=_JS_DECLARATIONS, **_JS_COMMON)
TYPESCRIPT = LanguageSpec(grammar="typescript", declarations=_TS_DECLARATIONS, **_JS_COMMON)
TSX = LanguageSpec(grammar="tsx", declarations=_TS_DECLARATIONS, **_JS_COMMON)

PYTHON = LanguageSpec(
    grammar="python",
    declarations={"function_definition": FUNCTION, "class_definition": CLASS},
    containers=frozenset({"class_definition"}),
    wrappers=frozenset({"decorated_definition"}),
)

RUST = LanguageSpec(
    grammar="rust",
    declarations={
        "function_item": FUNCTION,
        "struct_item": TYPE,
        "enum_item": TYPE,
        "union_item": TYPE,
        "type_item": TYPE,
        "trait_item": INTERFACE,
        "impl_item": IMPL,
        "mod_item": MODULE,
        "macro_definition": FUNCTION,
    },
    containers=frozenset({"trait_item", "impl_item", "mod_item"}),
    comments=frozenset({"line_comment", "block_comment", "attribute_item"}),
)

GO = LanguageSpec(
    grammar="go",
    declarations={
        "function_declaration": FUNCTION,
        "method_declaration": METHOD,
        "type_declaration": TYPE,
    },
)

JAVA = LanguageSpec(
    grammar="java",
    declarations={
        "class_declaration": CLASS,
        "record_declaration": CLASS,
        "interface_declaration": INTERFACE,
        "annotation_type_declaration": INTERFACE,
        "enum_declaration": TYPE,
        "method_declaration": METHOD,
        "constructor_declaration": METHOD,
    },
    containers=frozenset(
        {"class_declaration", "record_declaration", "interface_declaration", "enum_declaration"}
    ),
    comments=frozenset({"line_comment", "block_comment"}),
)

KOTLIN = LanguageSpec(
    grammar="kotlin",
    declarations={
        "class_declaration": CLASS,
        "object_declaration": CLASS,
        "function_declaration": FUNCTION,
    },
    containers=frozenset({"class_declaration", "object_declaration"}),
    comments=frozenset({"line_comment", "multiline_comment"}),
)

# Markdown is split on headings, not parsed with tree-sitter.
MARKDOWN = "markdown"

SPECS: dict[str, LanguageSpec] = {
    "javascript": JAVASCRIPT,
    "typescript": TYPESCRIPT,
    "tsx": TSX,
    "python": PYTHON,
    "rust": RUST,
    "go": GO,
    "java": JAVA,
    "kotlin": KOTLIN,
}

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".pyi": "python",
    ".rs": "rust",
    ".go": "go",
    ".java": "java",
    ".kt": "kotlin",
    ".md": MARKDOWN,
    ".markdown": MARKDOWN,
}


def language_for(path: str) -> str | None:
    """Return the language name for *path* by extension, or None if unsupported."""
    _, ext = posixpath.splitext(path.lower())
    return EXTENSION_TO_LANGUAGE.get(ext)
