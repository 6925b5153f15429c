"""Tests for content-aware chunking."""

from pathlib import Path

import pytest

from context_mcp.config import ChunkingConfig
from context_mcp.indexer.chunking import (
    CODE_ESTIMATOR,
    PROSE_ESTIMATOR,
    ChunkerRegistry,
    split_lines,
)
from context_mcp.indexer.chunking.jvm import JvmChunker
from context_mcp.indexer.chunking.markdown import MarkdownChunker
from context_mcp.indexer.chunking.plaintext import PlainTextChunker
from context_mcp.indexer.chunking.python import PythonChunker
from context_mcp.indexer.chunking.sql import SqlChunker, statement_label
from context_mcp.indexer.chunking.structured import JsonChunker, YamlChunker
from context_mcp.indexer.chunking.typescript import TypeScriptChunker
from context_mcp.indexer.errors import ChunkingError
from context_mcp.indexer.models import ChunkDraft, ChunkKind


def assert_line_map(content: str, drafts: list[ChunkDraft], contiguous: bool = True):
    """Every chunk matches its line range and together they cover the file."""
    lines = split_lines(content)
    covered: set[int] = set()
    for draft in drafts:
        assert 1 <= draft.start_line <= draft.end_line <= len(lines)
        assert draft.content == "\n".join(lines[draft.start_line - 1 : draft.end_line])
        covered.update(range(draft.start_line, draft.end_line + 1))
    assert covered == set(range(1, len(lines) + 1))
    if contiguous:
        for previous, following in zip(drafts, drafts[1:]):
            assert following.start_line == previous.end_line + 1


def assert_within_budget(drafts: list[ChunkDraft], max_tokens: int):
    for draft in drafts:
        assert draft.token_count <= max_tokens or draft.start_line == draft.end_line


class TestTokenEstimator:
    def test_ratios(self):
        assert PROSE_ESTIMATOR.estimate("") == 0
        assert PROSE_ESTIMATOR.estimate("abcd") == 1
        assert PROSE_ESTIMATOR.estimate("abcde") == 2
        assert CODE_ESTIMATOR.estimate("x" * 7) == 2

    def test_span_matches_joined_text(self):
        lines = ["alpha", "", "beta gamma"]
        assert PROSE_ESTIMATOR.estimate_span(lines, 0, 3) == PROSE_ESTIMATOR.estimate(
            "\n".join(lines)
        )


class TestMarkdownChunker:
    def test_single_heading_with_blank_lines(self):
        drafts = MarkdownChunker(400).chunk("# Title\n\n\n")
        assert len(drafts) == 1
        assert drafts[0].kind == ChunkKind.MARKDOWN_SECTION
        assert (drafts[0].start_line, drafts[0].end_line) == (1, 3)
        assert drafts[0].summary == "Title"

    def test_sections_and_code_blocks(self):
        content = (
            "# Intro\n\nSome text.\n\n```python\nprint('hi')\n```\n\n## Usage\n\nRun it.\n"
        )
        drafts = MarkdownChunker(400).chunk(content)
        assert [d.kind for d in drafts] == [
            ChunkKind.MARKDOWN_SECTION,
            ChunkKind.CODE_BLOCK,
            ChunkKind.MARKDOWN_SECTION,
        ]
        assert [d.summary for d in drafts] == ["Intro", "python", "Usage"]
        assert_line_map(content, drafts)

    def test_front_matter_is_header(self):
        content = "---\ntitle: x\n---\n# A\n\nBody\n"
        drafts = MarkdownChunker(400).chunk(content)
        assert drafts[0].kind == ChunkKind.HEADER
        assert drafts[0].summary == "front matter"
        assert drafts[1].summary == "A"

    def test_heading_inside_fence_is_not_a_section(self):
        content = "# Real\n\n```\n# not a heading\n```\n"
        drafts = MarkdownChunker(400).chunk(content)
        assert [d.summary for d in drafts if d.kind == ChunkKind.MARKDOWN_SECTION] == ["Real"]

    def test_large_section_is_split_by_paragraphs(self):
        paragraphs = [f"Paragraph {i} has a handful of words in it." for i in range(10)]
        content = "# Big\n\n" + "\n\n".join(paragraphs) + "\n"
        drafts = MarkdownChunker(30).chunk(content)
        assert len(drafts) > 1
        assert drafts[0].summary.startswith("Big (part 1/")
        assert_within_budget(drafts, 30)
        assert_line_map(content, drafts)

    def test_empty_content(self):
        assert MarkdownChunker(400).chunk("  \n\n") == []


class TestPythonChunker:
    SOURCE = '''"""Module doc."""

import os
from pathlib import Path


def helper(x):
    return x + 1


class Service:
    def __init__(self):
        self.value = 1

    def run(self):
        return self.value
'''

    def test_top_level_units(self):
        drafts = PythonChunker(600).chunk(self.SOURCE)
        assert [d.kind for d in drafts] == [
            ChunkKind.DOCSTRING,
            ChunkKind.HEADER,
            ChunkKind.FUNCTION,
            ChunkKind.CLASS,
        ]
        assert [d.summary for d in drafts] == ["module docstring", "imports", "helper", "Service"]
        assert_line_map(self.SOURCE, drafts)

    def test_large_class_split_into_members(self):
        source = (
            "class Service:\n"
            "    def __init__(self):\n"
            "        self.value = 1\n"
            "\n"
            "    def run(self):\n"
            "        return self.value\n"
        )
        drafts = PythonChunker(20).chunk(source)
        assert [d.kind for d in drafts] == [
            ChunkKind.CLASS,
            ChunkKind.CONSTRUCTOR,
            ChunkKind.METHOD,
        ]
        assert [d.summary for d in drafts] == ["Service", "Service.__init__", "Service.run"]
        assert_line_map(source, drafts)

    def test_decorators_attach_to_function(self):
        source = "import functools\n\n\n@functools.cache\ndef cached():\n    return 1\n"
        drafts = PythonChunker(600).chunk(source)
        function = next(d for d in drafts if d.kind == ChunkKind.FUNCTION)
        assert function.content.startswith("@functools.cache")

    def test_long_functions_respect_budget(self):
        source = "\n".join(
            f"def f{i}():\n" + "\n".join(f"    value_{j} = {j} * {i}" for j in range(12))
            for i in range(5)
        ) + "\n"
        drafts = PythonChunker(40, overlap_percent=15).chunk(source)
        assert len(drafts) > 5
        assert_within_budget(drafts, 40)
        assert_line_map(source, drafts, contiguous=False)

    def test_single_overlong_line_is_kept_whole(self):
        source = "x = '" + "a" * 500 + "'\n"
        drafts = PythonChunker(20).chunk(source)
        assert len(drafts) == 1
        assert drafts[0].token_count > 20
        assert drafts[0].start_line == drafts[0].end_line == 1


class TestTypeScriptChunker:
    def test_declarations(self):
        source = (
            'import { x } from "./x";\n'
            "\n"
            "/** Adds numbers. */\n"
            "export function add(a: number, b: number): number {\n"
            "  return a + b;\n"
            "}\n"
            "\n"
            "export interface Shape {\n"
            "  area(): number;\n"
            "}\n"
            "\n"
            "export const double = (n: number) => n * 2;\n"
        )
        drafts = TypeScriptChunker(600).chunk(source)
        assert [d.kind for d in drafts] == [
            ChunkKind.HEADER,
            ChunkKind.FUNCTION,
            ChunkKind.INTERFACE,
            ChunkKind.FUNCTION,
        ]
        assert [d.summary for d in drafts] == ["imports", "add", "Shape", "double"]
        assert drafts[1].content.startswith("/** Adds numbers. */")
        assert_line_map(source, drafts)


class TestJvmChunker:
    SOURCE = (
        "package com.example;\n"
        "\n"
        "import java.util.List;\n"
        "\n"
        "public class Greeter {\n"
        "    private final String name;\n"
        "\n"
        "    public Greeter(String name) {\n"
        "        this.name = name;\n"
        "    }\n"
        "\n"
        "    public String greet() {\n"
        '        return "Hello " + name;\n'
        "    }\n"
        "}\n"
    )

    def test_type_fits_in_one_chunk(self):
        drafts = JvmChunker(600).chunk(self.SOURCE)
        assert [d.kind for d in drafts] == [ChunkKind.HEADER, ChunkKind.CLASS]
        assert [d.summary for d in drafts] == ["imports", "Greeter"]

    def test_large_type_split_into_members(self):
        drafts = JvmChunker(24).chunk(self.SOURCE)
        assert [d.kind for d in drafts] == [
            ChunkKind.HEADER,
            ChunkKind.CLASS,
            ChunkKind.CONSTRUCTOR,
            ChunkKind.METHOD,
        ]
        assert [d.summary for d in drafts] == [
            "imports",
            "Greeter",
            "Greeter.Greeter",
            "Greeter.greet",
        ]
        assert_line_map(self.SOURCE, drafts)

    def test_kotlin_enum_and_function(self):
        source = "enum class Color { RED, GREEN }\n\nfun paint(color: Color) = color.name\n"
        drafts = JvmChunker(600).chunk(source)
        assert [(d.kind, d.summary) for d in drafts] == [
            (ChunkKind.ENUM, "Color"),
            (ChunkKind.FUNCTION, "paint"),
        ]


class TestStructuredChunkers:
    def test_json_members(self):
        content = '{\n  "name": "demo",\n  "scripts": {\n    "build": "tsc"\n  }\n}\n'
        drafts = JsonChunker(500).chunk(content)
        assert [d.summary for d in drafts] == ["name", "scripts"]
        assert all(d.kind == ChunkKind.JSON_BLOCK for d in drafts)
        assert_line_map(content, drafts)

    def test_malformed_json_is_one_root_chunk(self):
        drafts = JsonChunker(500).chunk("{ not json\n")
        assert len(drafts) == 1
        assert drafts[0].summary == "root"

    def test_yaml_keys_and_header(self):
        content = "# Service config\nname: demo\nserver:\n  host: localhost\n  port: 8080\n"
        drafts = YamlChunker(500).chunk(content)
        assert [d.kind for d in drafts] == [
            ChunkKind.HEADER,
            ChunkKind.YAML_BLOCK,
            ChunkKind.YAML_BLOCK,
        ]
        assert [d.summary for d in drafts] == ["header", "name", "server"]
        assert_line_map(content, drafts)

    def test_large_yaml_value_recurses(self):
        content = "server:\n  host: localhost\n  port: 8080\n"
        drafts = YamlChunker(8).chunk(content)
        assert [d.summary for d in drafts] == ["server", "server.host", "server.port"]
        assert_line_map(content, drafts)

    def test_malformed_yaml_is_one_root_chunk(self):
        drafts = YamlChunker(500).chunk("key: [unclosed\n")
        assert [d.summary for d in drafts] == ["root"]


class TestSqlChunker:
    def test_statements(self):
        content = (
            "-- users table\n"
            "CREATE TABLE users (\n"
            "  id INTEGER PRIMARY KEY\n"
            ");\n"
            "\n"
            "INSERT INTO users (id) VALUES (1);\n"
        )
        drafts = SqlChunker(500).chunk(content)
        assert [d.summary for d in drafts] == ["CREATE TABLE users", "INSERT INTO users"]
        assert all(d.kind == ChunkKind.SQL_BLOCK for d in drafts)
        assert drafts[0].content.startswith("-- users table")
        assert_line_map(content, drafts)

    @pytest.mark.parametrize(
        ("statement", "expected"),
        [
            ("create or replace view v_active as select 1", "CREATE VIEW v_active"),
            ("DROP TABLE IF EXISTS \"orders\"", "DROP TABLE orders"),
            ("delete from sessions where 1", "DELETE FROM sessions"),
            ("select * from users", "SELECT"),
        ],
    )
    def test_statement_label(self, statement, expected):
        assert statement_label(statement) == expected


class TestPlainTextChunker:
    def test_packs_paragraphs(self):
        content = (
            "The first paragraph is here\n\n"
            "The second paragraph is here\n\n"
            "The third paragraph is here\n"
        )
        drafts = PlainTextChunker(10).chunk(content)
        assert len(drafts) == 3
        assert all(d.kind == ChunkKind.PARAGRAPH for d in drafts)
        assert drafts[1].summary == "The second paragraph is here"
        assert_line_map(content, drafts)

    def test_small_text_is_one_chunk(self):
        drafts = PlainTextChunker(400).chunk("one\n\ntwo\n")
        assert len(drafts) == 1


class TestChunkerRegistry:
    @pytest.fixture
    def registry(self):
        return ChunkerRegistry(ChunkingConfig())

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("README.md", MarkdownChunker),
            ("app.py", PythonChunker),
            ("view.tsx", TypeScriptChunker),
            ("Main.kt", JvmChunker),
            ("Program.cs", JvmChunker),
            ("package.json", JsonChunker),
            ("deploy.yml", YamlChunker),
            ("schema.sql", SqlChunker),
            ("notes.txt", PlainTextChunker),
            ("Makefile", PlainTextChunker),
        ],
    )
    def test_selects_by_extension(self, registry, filename, expected):
        assert isinstance(registry.for_path(Path(filename)), expected)

    def test_language_wins_over_extension(self, registry):
        assert isinstance(registry.for_path(Path("script.txt"), "python"), PythonChunker)

    def test_ordinals_are_sequential(self, registry):
        content = "# A\n\ntext\n\n# B\n\nmore\n"
        drafts = registry.chunk(content, Path("doc.md"), "markdown")
        assert [d.ordinal for d in drafts] == [0, 1]

    def test_budgets_come_from_config(self):
        registry = ChunkerRegistry(ChunkingConfig(code_max_tokens=123))
        assert registry.for_path(Path("a.py")).max_tokens == 123

    def test_invalid_budget(self):
        with pytest.raises(ValueError, match="max_tokens must be >= 1"):
            PythonChunker(0)

    def test_chunker_failure_is_wrapped(self, registry, monkeypatch):
        def explode(content):
            raise ValueError("unbalanced")

        monkeypatch.setattr(registry.chunkers["python"], "chunk", explode)
        with pytest.raises(ChunkingError, match="Cannot chunk app.py: unbalanced"):
            registry.chunk("x = (", Path("app.py"))
