"""TypeScript and JavaScript chunking by top-level declarations."""

import re

from context_mcp.indexer.chunking.base import (
    Chunker,
    Unit,
    brace_depths,
    brace_statements,
    declaration_units,
    is_c_comment,
)
from context_mcp.indexer.models import ChunkKind

DECLARATION_PATTERN = re.compile(
    r"^(?:export\s+)?(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(function\*?|class|interface|type|enum|const|let|var|namespace|module)\b"
    r"\s*\*?\s*([A-Za-z_$][\w$]*)?"
)
IMPORT_PATTERN = re.compile(
    r"^(?:import\b|export\s+(?:type\s+)?(?:\*|\{[^}]*\})\s+from\b|['\"]use \w+['\"])"
)

KIND_BY_KEYWORD = {
    "function": ChunkKind.FUNCTION,
    "function*": ChunkKind.FUNCTION,
    "class": ChunkKind.CLASS,
    "interface": ChunkKind.INTERFACE,
    "type": ChunkKind.INTERFACE,
    "enum": ChunkKind.ENUM,
    "namespace": ChunkKind.BLOCK,
    "module": ChunkKind.BLOCK,
}


class TypeScriptChunker(Chunker):
    """Emits imports as a header plus one chunk per top-level declaration.

    JSDoc blocks, comments and decorators directly above a declaration are
    attached to it. Arrow functions bound to const/let/var are functions.
    """

    kinds = frozenset(
        {
            ChunkKind.HEADER,
            ChunkKind.FUNCTION,
            ChunkKind.CLASS,
            ChunkKind.INTERFACE,
            ChunkKind.ENUM,
            ChunkKind.BLOCK,
        }
    )

    def units(self, lines: list[str]) -> list[Unit]:
        depths, in_comments = brace_depths(lines)
        starts = brace_statements(lines, depths, 0, 0, len(lines))

        def attachable(index: int) -> bool:
            return is_c_comment(lines[index], in_comments[index]) or lines[
                index
            ].lstrip().startswith("@")

        def classify(index: int) -> tuple[ChunkKind, str | None] | None:
            line = lines[index].strip()
            if IMPORT_PATTERN.match(line):
                return ChunkKind.HEADER, "imports"
            match = DECLARATION_PATTERN.match(line)
            if match is None:
                if line.startswith("export default"):
                    return ChunkKind.BLOCK, "default"
                return None
            keyword, name = match.group(1), match.group(2) or "default"
            if keyword in ("const", "let", "var"):
                rest = line[match.end() :]
                if "=>" in rest or re.search(r"=\s*(?:async\s+)?function\b", rest):
                    return ChunkKind.FUNCTION, name
                return ChunkKind.BLOCK, name
            return KIND_BY_KEYWORD[keyword], name

        return declaration_units(lines, starts, len(lines), classify, attachable)
