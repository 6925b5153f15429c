"""Kotlin, Java and C# chunking by type declarations."""

import re

from context_mcp.indexer.chunking.base import (
    Chunker,
    Unit,
    assemble,
    brace_depths,
    brace_statements,
    declaration_units,
    is_c_comment,
)
from context_mcp.indexer.models import ChunkDraft, ChunkKind

MODIFIERS = (
    "public|private|protected|internal|static|final|abstract|sealed|open|data|inner|"
    "partial|readonly|override|suspend|inline|value|annotation|companion|enum|unsafe|"
    "new|virtual|async|extern|const|lateinit|tailrec|operator|infix|external|expect|"
    "actual|non-sealed|strictfp|default|file|synchronized|transient|volatile|native"
)
DECLARATION_PATTERN = re.compile(
    rf"^((?:(?:{MODIFIERS})\s+)*)"
    r"(class|interface|enum|record|struct|object|fun|val|var|typealias|@interface)\b"
    r"\s*(?:<[^>]*>\s*)?(?:[\w.]+\.)?([A-Za-z_]\w*)?"
)
HEADER_PATTERN = re.compile(r"^(?:package|import|using)\s+[\w.*=\s]+;?\s*$")
NAMESPACE_PATTERN = re.compile(r"^namespace\s+([\w.]+)\s*(;)?")
METHOD_PATTERN = re.compile(
    rf"^(?:(?:{MODIFIERS})\s+)*(?:<[^>]*>\s*)?(?:[\w<>\[\],.?]+\s+)?([A-Za-z_]\w*)\s*\("
)
KOTLIN_FUN_PATTERN = re.compile(rf"^(?:(?:{MODIFIERS})\s+)*fun\s+(?:<[^>]*>\s*)?(?:[\w.]+\.)?(\w+)")
KOTLIN_CONSTRUCTOR_PATTERN = re.compile(rf"^(?:(?:{MODIFIERS})\s+)*(?:constructor\s*\(|init\s*\{{)")
CONTROL_WORDS = {"if", "for", "while", "switch", "return", "new", "catch", "when", "throw", "else"}


class JvmChunker(Chunker):
    """Chunker for Kotlin, Java and C# sources.

    ``package``/``import``/``using`` lines form the header. Declarations are
    taken at the declaration depth, which is one level deeper inside a C#
    block namespace. Types over budget are split into members.
    """

    kinds = frozenset(
        {
            ChunkKind.HEADER,
            ChunkKind.CLASS,
            ChunkKind.INTERFACE,
            ChunkKind.ENUM,
            ChunkKind.FUNCTION,
            ChunkKind.METHOD,
            ChunkKind.CONSTRUCTOR,
            ChunkKind.BLOCK,
        }
    )

    def _attachable(self, lines: list[str], in_comments: list[bool]):
        def check(index: int) -> bool:
            if is_c_comment(lines[index], in_comments[index]):
                return True
            text = lines[index].lstrip()
            if text.startswith("@"):
                return not text.startswith("@interface")
            # C# attributes
            return text.startswith("[")

        return check

    def _classify_declaration(self, line: str) -> tuple[ChunkKind, str | None] | None:
        match = DECLARATION_PATTERN.match(line)
        if match is None:
            return None
        modifiers = match.group(1).split()
        keyword, name = match.group(2), match.group(3) or match.group(2)
        if keyword == "enum" or "enum" in modifiers:
            return ChunkKind.ENUM, name
        if keyword in ("interface", "@interface"):
            return ChunkKind.INTERFACE, name
        if keyword == "fun":
            return ChunkKind.FUNCTION, name
        if keyword in ("val", "var", "typealias"):
            return ChunkKind.BLOCK, name
        return ChunkKind.CLASS, name

    def units(self, lines: list[str]) -> list[Unit]:
        depths, in_comments = brace_depths(lines)
        starts = brace_statements(lines, depths, 0, 0, len(lines))

        # C# block namespaces push declarations one level deeper
        for index in list(starts):
            match = NAMESPACE_PATTERN.match(lines[index].strip())
            if match and not match.group(2):
                following = [s for s in starts if s > index]
                end = following[0] if following else len(lines)
                starts.extend(brace_statements(lines, depths, 1, index + 1, end))
        starts.sort()

        def classify(index: int) -> tuple[ChunkKind, str | None] | None:
            line = lines[index].strip()
            if HEADER_PATTERN.match(line):
                return ChunkKind.HEADER, "imports"
            match = NAMESPACE_PATTERN.match(line)
            if match:
                return ChunkKind.HEADER, f"namespace {match.group(1)}"
            return self._classify_declaration(line)

        return declaration_units(
            lines, starts, len(lines), classify, self._attachable(lines, in_comments)
        )

    def split(self, lines: list[str], unit: Unit) -> list[ChunkDraft]:
        if unit.kind not in (ChunkKind.CLASS, ChunkKind.INTERFACE, ChunkKind.ENUM):
            return super().split(lines, unit)

        depths, in_comments = brace_depths(lines)
        attachable = self._attachable(lines, in_comments)
        type_line = next(
            (
                i
                for i in range(unit.start, unit.end)
                if not attachable(i) and self._classify_declaration(lines[i].strip())
            ),
            None,
        )
        if type_line is None:
            return super().split(lines, unit)
        member_depth = depths[type_line] + 1
        owner = unit.label or "type"
        simple_name = owner.rsplit(".", 1)[-1]
        starts = brace_statements(lines, depths, member_depth, type_line + 1, unit.end)

        def classify(index: int) -> tuple[ChunkKind, str | None] | None:
            line = lines[index].strip()
            if KOTLIN_CONSTRUCTOR_PATTERN.match(line):
                return ChunkKind.CONSTRUCTOR, f"{owner}.constructor"
            match = KOTLIN_FUN_PATTERN.match(line)
            if match:
                return ChunkKind.METHOD, f"{owner}.{match.group(1)}"
            declared = self._classify_declaration(line)
            if declared is not None and declared[0] != ChunkKind.BLOCK:
                return declared[0], f"{owner}.{declared[1]}"
            match = METHOD_PATTERN.match(line)
            if match and match.group(1) not in CONTROL_WORDS:
                name = match.group(1)
                if name == simple_name:
                    return ChunkKind.CONSTRUCTOR, f"{owner}.{name}"
                return ChunkKind.METHOD, f"{owner}.{name}"
            return None

        members = declaration_units(lines, starts, unit.end, classify, attachable)
        if not members:
            return super().split(lines, unit)

        header = Unit(unit.kind, unit.start, members[0].start, owner)
        drafts: list[ChunkDraft] = []
        for part in assemble(lines, [header, *members], unit.start, unit.end):
            drafts.extend(self.emit(lines, part))
        return drafts
