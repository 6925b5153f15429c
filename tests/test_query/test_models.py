"""Tests for query value types."""

import pytest

from context_mcp.indexer.models import Chunk, ChunkKind, ChunkRecord
from context_mcp.query.models import ContextScope, ContextSnippet, TokenBudget


class TestContextScope:
    def test_unbounded(self):
        assert ContextScope().is_unbounded
        assert not ContextScope(languages=["python"]).is_unbounded

    @pytest.mark.parametrize("field_name", ["paths", "languages", "exclude_patterns"])
    def test_blank_entries_rejected(self, field_name):
        with pytest.raises(ValueError, match=f"{field_name} must not contain blank entries"):
            ContextScope(**{field_name: ["ok", "  "]})

    def test_kind_values(self):
        scope = ContextScope(kinds=[ChunkKind.FUNCTION, ChunkKind.CLASS])
        assert scope.kind_values == ["function", "class"]

    @pytest.mark.parametrize(
        ("pattern", "path", "expected"),
        [
            ("tests", "tests/test_a.py", True),
            ("tests/", "tests/test_a.py", True),
            ("*.md", "docs/guide.md", True),
            ("docs/*", "docs/guide.md", True),
            ("vendor", "src/vendor/lib.py", True),
            ("*.md", "src/app.py", False),
            ("test", "tests/test_a.py", False),
        ],
    )
    def test_excludes(self, pattern, path, expected):
        assert ContextScope(exclude_patterns=[pattern]).excludes(path) is expected


class TestTokenBudget:
    def test_available(self):
        assert TokenBudget(1000, reserve_for_prompt=200).available == 800

    @pytest.mark.parametrize(
        ("max_tokens", "reserve", "message"),
        [
            (0, 0, "max_tokens must be positive"),
            (100, -1, "reserve_for_prompt must be non-negative"),
            (100, 101, "reserve_for_prompt cannot exceed max_tokens"),
        ],
    )
    def test_invalid(self, max_tokens, reserve, message):
        with pytest.raises(ValueError, match=message):
            TokenBudget(max_tokens, reserve_for_prompt=reserve)


def make_record(**chunk_fields) -> ChunkRecord:
    chunk = Chunk(
        id=7,
        file_id=3,
        ordinal=2,
        kind=ChunkKind.METHOD,
        start_line=10,
        end_line=20,
        token_count=42,
        content="def run(self): ...",
        summary="Service.run",
    )
    for name, value in chunk_fields.items():
        setattr(chunk, name, value)
    return ChunkRecord(chunk=chunk, rel_path="src/service.py", language="python")


class TestContextSnippet:
    def test_score_must_be_in_range(self):
        with pytest.raises(ValueError, match="score must be in"):
            ContextSnippet(
                chunk_id=1, score=1.5, path="a.py", kind=ChunkKind.BLOCK, text="x", token_count=1
            )

    def test_from_record(self):
        snippet = ContextSnippet.from_record(make_record(), 0.8, "symbol", exact=True)
        assert snippet.key == (7, "src/service.py")
        assert snippet.label == "Service.run"
        assert (snippet.start_line, snippet.end_line) == (10, 20)
        assert (snippet.file_id, snippet.ordinal) == (3, 2)
        assert snippet.metadata == {"provider": "symbol", "sources": ["symbol"], "exact": True}

    def test_from_record_clamps_score(self):
        assert ContextSnippet.from_record(make_record(), 1.0000001, "semantic").score == 1.0
        assert ContextSnippet.from_record(make_record(), -0.2, "semantic").score == 0.0

    def test_from_record_minimum_token_count(self):
        snippet = ContextSnippet.from_record(make_record(token_count=0), 0.5, "full_text")
        assert snippet.token_count == 1

    def test_to_dict(self):
        snippet = ContextSnippet.from_record(
            make_record(), 0.123456, "semantic", vector=[1.0, 0.0]
        )
        data = snippet.to_dict()
        assert data["score"] == 0.1235
        assert data["kind"] == "method"
        assert data["path"] == "src/service.py"
        assert "vector" not in data
