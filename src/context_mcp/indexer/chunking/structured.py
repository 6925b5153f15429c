"""JSON and YAML chunking by key paths."""

import bisect
import json
import logging
import re

import yaml

from context_mcp.indexer.chunking.base import (
    STRUCTURED_ESTIMATOR,
    Chunker,
    Unit,
    assemble,
    indent_of,
    is_blank,
    split_lines,
)
from context_mcp.indexer.models import ChunkDraft, ChunkKind

logger = logging.getLogger(__name__)

YAML_KEY_PATTERN = re.compile(
    r"^\s*(\"(?:[^\"\\]|\\.)*\"|'[^']*'|[^\s#'\"{\[\-?][^#]*?|-[^\s#][^#]*?)\s*:(?:\s|$)"
)
YAML_ITEM_PATTERN = re.compile(r"^\s*-(?:\s|$)")
YAML_MARKER_PATTERN = re.compile(r"^(?:---|\.\.\.|%\w+)(?:\s|$)")


def _is_json_filler(line: str) -> bool:
    return not line.strip().strip("{}[],").strip()


def _child_label(parent: str | None, name: str, is_index: bool) -> str:
    if is_index:
        return f"{parent or ''}[{name}]"
    return f"{parent}.{name}" if parent else name


def _string_end(text: str, i: int) -> int:
    j = i + 1
    while text[j] != '"':
        j += 2 if text[j] == "\\" else 1
    return j


def json_members(text: str, open_index: int) -> list[tuple[str, bool, int, int, int]]:
    """Members of the JSON container opening at ``open_index``.

    Returns ``(name, is_index, start, end, value_start)`` character offsets,
    with ``end`` inclusive.
    """
    is_object = text[open_index] == "{"
    members: list[tuple[str, bool, int, int, int]] = []
    depth = 0
    start: int | None = None
    last = 0
    key: str | None = None
    value_start: int | None = None
    i = open_index + 1

    while i < len(text):
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch == '"':
            end = _string_end(text, i)
            if start is None:
                start = i
                if not is_object:
                    value_start = i
            if is_object and depth == 0 and key is None:
                key = json.loads(text[i : end + 1])
            last = end
            i = end + 1
            continue
        if depth == 0 and ch in ",}]":
            if start is not None:
                name = key if is_object and key is not None else str(len(members))
                members.append((name, not is_object, start, last, value_start or start))
            if ch != ",":
                break
            start = key = value_start = None
            i += 1
            continue
        if depth == 0 and ch == ":" and is_object:
            j = i + 1
            while text[j].isspace():
                j += 1
            value_start = j
            i += 1
            continue
        if start is None:
            start = i
            if not is_object:
                value_start = i
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
        last = i
        i += 1
    return members


class JsonChunker(Chunker):
    """Splits valid JSON per top-level member, recursing into large values.

    Malformed JSON becomes a single ``root`` chunk, split by lines when it is
    over budget.
    """

    estimator = STRUCTURED_ESTIMATOR
    kinds = frozenset({ChunkKind.JSON_BLOCK})

    def chunk(self, content: str) -> list[ChunkDraft]:
        if not content.strip():
            return []
        lines = split_lines(content)
        root = Unit(ChunkKind.JSON_BLOCK, 0, len(lines), "root")
        try:
            json.loads(content)
        except ValueError as e:
            logger.debug("Malformed JSON, emitting a root chunk: %s", e)
            return self.emit(lines, root)

        newlines = [i for i, ch in enumerate(content) if ch == "\n"]
        open_index = len(content) - len(content.lstrip())
        if content[open_index] not in "{[":
            return self.emit(lines, root)
        units = self._member_units(content, newlines, open_index, None)
        drafts: list[ChunkDraft] = []
        for unit in assemble(
            lines, units, 0, len(lines), filler=_is_json_filler,
            gap_kind=ChunkKind.JSON_BLOCK, gap_label="root",
        ):
            drafts.extend(self.emit(lines, unit))
        return drafts

    def _member_units(
        self, text: str, newlines: list[int], open_index: int, parent: str | None
    ) -> list[Unit]:
        units = []
        for name, is_index, start, end, value_start in json_members(text, open_index):
            units.append(
                Unit(
                    ChunkKind.JSON_BLOCK,
                    bisect.bisect_left(newlines, start),
                    bisect.bisect_left(newlines, end) + 1,
                    _child_label(parent, name, is_index),
                    data=(text, newlines, value_start),
                )
            )
        return units

    def split(self, lines: list[str], unit: Unit) -> list[ChunkDraft]:
        if unit.data is None or unit.end - unit.start < 2:
            return super().split(lines, unit)
        text, newlines, value_start = unit.data
        if text[value_start] not in "{[":
            return super().split(lines, unit)
        children = self._member_units(text, newlines, value_start, unit.label)
        if not children:
            return super().split(lines, unit)
        drafts: list[ChunkDraft] = []
        for part in assemble(
            lines, children, unit.start, unit.end, filler=_is_json_filler,
            gap_kind=ChunkKind.JSON_BLOCK, gap_label=unit.label,
        ):
            drafts.extend(self.emit(lines, part))
        return drafts


class YamlChunker(Chunker):
    """Splits YAML per top-level key or sequence item.

    Large values recurse into nested keys (``a.b``) and items (``a[0]``).
    Leading comments and document markers form a header chunk. Malformed
    YAML becomes a single ``root`` chunk.
    """

    estimator = STRUCTURED_ESTIMATOR
    kinds = frozenset({ChunkKind.YAML_BLOCK, ChunkKind.HEADER})

    def chunk(self, content: str) -> list[ChunkDraft]:
        if not content.strip():
            return []
        lines = split_lines(content)
        try:
            list(yaml.safe_load_all(content))
        except yaml.YAMLError as e:
            logger.debug("Malformed YAML, emitting a root chunk: %s", e)
            return self.emit(lines, Unit(ChunkKind.YAML_BLOCK, 0, len(lines), "root"))

        units = self._key_units(lines, 0, len(lines), None)
        drafts: list[ChunkDraft] = []
        for unit in assemble(
            lines, units, 0, len(lines), gap_kind=ChunkKind.YAML_BLOCK, gap_label="root"
        ):
            drafts.extend(self.emit(lines, unit))
        return drafts

    def _key_units(self, lines: list[str], lo: int, hi: int, parent: str | None) -> list[Unit]:
        content_lines = [
            i
            for i in range(lo, hi)
            if not is_blank(lines[i])
            and not lines[i].lstrip().startswith("#")
            and not YAML_MARKER_PATTERN.match(lines[i])
        ]
        if not content_lines:
            return []
        first = content_lines[0]
        indent = indent_of(lines[first])
        is_sequence = YAML_ITEM_PATTERN.match(lines[first]) is not None
        pattern = YAML_ITEM_PATTERN if is_sequence else YAML_KEY_PATTERN

        units: list[Unit] = []
        if parent is None and any(not is_blank(line) for line in lines[lo:first]):
            units.append(Unit(ChunkKind.HEADER, lo, first, "header"))

        starts = [
            i
            for i in range(first, hi)
            if not is_blank(lines[i])
            and indent_of(lines[i]) == indent
            and (
                pattern.match(lines[i])
                or lines[i].lstrip().startswith("#")
                or YAML_MARKER_PATTERN.match(lines[i])
            )
        ]
        keys = [i for i in starts if pattern.match(lines[i])]
        key_set = set(keys)
        attachable = set(starts) - key_set
        for n, index in enumerate(keys):
            start = index
            for attached in reversed([s for s in starts if s < index]):
                if attached in key_set or (units and attached < units[-1].end):
                    break
                start = attached
            end = keys[n + 1] if n + 1 < len(keys) else hi
            while end - 1 > index and (
                is_blank(lines[end - 1])
                or end - 1 in attachable
            ):
                end -= 1
            if is_sequence:
                label = _child_label(parent, str(n), True)
            else:
                key = YAML_KEY_PATTERN.match(lines[index]).group(1).strip()
                if key[:1] in "\"'" and key[-1:] == key[:1]:
                    key = key[1:-1]
                label = _child_label(parent, key, False)
            units.append(Unit(ChunkKind.YAML_BLOCK, start, end, label, data=index))
        return units

    def split(self, lines: list[str], unit: Unit) -> list[ChunkDraft]:
        if unit.data is None:
            return super().split(lines, unit)
        key_line = unit.data
        children = self._key_units(lines, key_line + 1, unit.end, unit.label)
        if not children:
            return super().split(lines, unit)
        head = Unit(ChunkKind.YAML_BLOCK, unit.start, children[0].start, unit.label)
        drafts: list[ChunkDraft] = []
        for part in assemble(
            lines, [head, *children], unit.start, unit.end,
            gap_kind=ChunkKind.YAML_BLOCK, gap_label=unit.label,
        ):
            drafts.extend(self.emit(lines, part))
        return drafts
