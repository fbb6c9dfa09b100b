"""Anchor table and resolver for idempotent text insertion.

An anchor is a named insertion point in a generated file: a marker regex plus
a template for the inserted block and an ordered list of fallback categories
to try when the marker itself is absent. Insertion is resolved in three
tiers (own marker, fallback categories, last import statement) and is a no-op
when the block is already present.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator

from pydantic import BaseModel, ConfigDict, Field

from serverkit.utils import print_debug, read_text, write_text

# TS/JS ``import ... from "x";`` (possibly spanning lines) and bare ``import "x";``.
_TS_IMPORT_RE = re.compile(r"""^[ \t]*import\s[^;"'=]*?["'][^"'\n]+["'][ \t]*;?""", re.MULTILINE)
# Python ``import x`` / ``from x import y``.
_PY_IMPORT_RE = re.compile(r"^[ \t]*(?:from[ \t]+[\w.]+[ \t]+)?import[ \t]+[^\n]+$", re.MULTILINE)


class Position(str, Enum):
    """Where a block goes relative to the matched marker line."""
    BEFORE = "before"
    AFTER = "after"


class InsertOutcome(str, Enum):
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"
    ANCHOR_MISSING = "anchor_missing"


class Anchor(BaseModel):
    """One named insertion point."""

    model_config = ConfigDict(frozen=True)

    category: str = Field(..., description="Unique key, e.g. 'tool:import'")
    path: str = Field(..., description="File path relative to the project root")
    marker: str = Field(..., description="Multiline regex locating the insertion point")
    start_marker: str | None = Field(default=None, description="Opening marker regex that must precede `marker`")
    template: str = Field(default="{content}", description="Block template; '{content}' is substituted")
    position: Position = Field(default=Position.AFTER)
    fallbacks: tuple[str, ...] = Field(default=(), description="Categories tried, in order, when the marker is absent")
    header: str | None = Field(default=None, description="Comment line written above fallback insertions")
    indent: str | None = Field(default=None, description="Indent for import-section insertions, where no line is matched")
    import_fallback: bool = Field(default=False, description="Fall back to the last import statement")
    nested: bool = Field(default=False, description="Marker opens a block; content inserted after it goes one level deeper")
    description: str = ""

    def pattern(self) -> re.Pattern[str]:
        return re.compile(self.marker, re.MULTILINE)

    def present_in(self, text: str) -> bool:
        """Whether the marker, and the opening marker before it when one is set, occur in *text*."""
        end = _last_match(self.pattern(), text)
        if end is None:
            return False
        if self.start_marker is None:
            return True
        return re.search(self.start_marker, text[: end.start()], re.MULTILINE) is not None

    def render(self, content: str) -> str:
        return self.template.replace("{content}", content)


class AnchorTable:
    """Category-keyed collection of anchors."""

    def __init__(self, anchors: Iterable[Anchor] = ()) -> None:
        self._anchors: dict[str, Anchor] = {}
        for anchor in anchors:
            self.register(anchor)

    def register(self, anchor: Anchor) -> None:
        if anchor.category in self._anchors:
            raise ValueError(f"Duplicate anchor category: {anchor.category}")
        self._anchors[anchor.category] = anchor

    def get(self, category: str) -> Anchor:
        try:
            return self._anchors[category]
        except KeyError:
            raise KeyError(f"Unknown anchor category: {category}") from None

    def categories(self) -> list[str]:
        return list(self._anchors)

    @classmethod
    def merge(cls, *tables: "AnchorTable") -> "AnchorTable":
        merged = cls()
        for table in tables:
            for anchor in table:
                merged.register(anchor)
        return merged

    def __contains__(self, category: object) -> bool:
        return category in self._anchors

    def __iter__(self) -> Iterator[Anchor]:
        return iter(self._anchors.values())

    def __len__(self) -> int:
        return len(self._anchors)


class AnchorResolver:
    """Finds anchors in files and inserts blocks at them.

    Fallback categories named by an anchor are looked up in *table*; names
    the table does not know are skipped.
    """

    def __init__(self, table: AnchorTable | None = None) -> None:
        self.table = table if table is not None else AnchorTable()

    # -- Queries -----------------------------------------------------------

    def has_anchor(self, file_path: str | Path, anchor: Anchor) -> bool:
        path = Path(file_path)
        if not path.is_file():
            return False
        return anchor.present_in(read_text(path))

    def missing_anchors(self, file_path: str | Path, anchors: Iterable[Anchor]) -> list[str]:
        """Return the categories of *anchors* that :meth:`has_anchor` would reject."""
        path = Path(file_path)
        text = read_text(path) if path.is_file() else None
        missing: list[str] = []
        for anchor in anchors:
            if text is None or not anchor.present_in(text):
                missing.append(anchor.category)
        return missing

    # -- Mutation ----------------------------------------------------------

    def insert_at(
        self,
        project_root: str | Path,
        anchor: Anchor,
        content: str,
        identity: str | None = None,
    ) -> InsertOutcome:
        """Resolve ``anchor.path`` against *project_root* and :meth:`insert`."""
        return self.insert(Path(project_root) / anchor.path, anchor, content, identity=identity)

    def insert(
        self,
        file_path: str | Path,
        anchor: Anchor,
        content: str,
        identity: str | None = None,
    ) -> InsertOutcome:
        """Insert the rendered block for *content* at *anchor*.

        Args:
            file_path: File to edit.
            anchor: Insertion point description.
            content: Value substituted into ``anchor.template``.
            identity: Optional unique substring (for example the generated
                identifier). Its presence in the file means the block is
                already there.

        Returns:
            The :class:`InsertOutcome`. The file is only written on
            ``INSERTED``.
        """
        path = Path(file_path)
        if not path.is_file():
            print_debug(f"{anchor.category}: {path} does not exist")
            return InsertOutcome.ANCHOR_MISSING

        original = read_text(path)
        newline = "\r\n" if "\r\n" in original else "\n"
        text = original.replace("\r\n", "\n")
        block = anchor.render(content).replace("\r\n", "\n").strip("\n")

        if identity and identity in text:
            return InsertOutcome.ALREADY_PRESENT
        squashed = _squash(block)
        if squashed and squashed in _squash(text):
            return InsertOutcome.ALREADY_PRESENT

        updated = self._place(text, anchor, block)
        if updated is None:
            print_debug(f"{anchor.category}: no marker, fallback or import section in {path}")
            return InsertOutcome.ANCHOR_MISSING

        write_text(path, updated.replace("\n", newline) if newline != "\n" else updated)
        return InsertOutcome.INSERTED

    # -- Internals ---------------------------------------------------------

    def _place(self, text: str, anchor: Anchor, block: str) -> str | None:
        # Tier 1: the anchor's own marker.
        match = _last_match(anchor.pattern(), text)
        if match is not None:
            print_debug(f"{anchor.category}: own marker")
            indent = _line_indent(text, match.start())
            if anchor.nested and anchor.position is Position.AFTER:
                indent += _block_step(text, match.end(), indent)
            if anchor.position is Position.BEFORE:
                start = _line_start(text, match.start())
                return text[:start] + _indent(block, indent) + "\n" + text[start:]
            return _insert_after_line(text, match.end(), _indent(block, indent))

        # Tier 2: fallback categories in priority order.
        for category in anchor.fallbacks:
            if category not in self.table:
                continue
            fallback = self.table.get(category)
            match = _last_match(fallback.pattern(), text)
            if match is None:
                continue
            print_debug(f"{anchor.category}: fallback {category}")
            indent = _line_indent(text, match.start())
            if fallback.nested:
                indent += _block_step(text, match.end(), indent)
            return _insert_after_line(text, match.end(), _with_header(block, anchor.header, indent))

        # Tier 3: after the last import statement.
        if anchor.import_fallback:
            end = _last_import_end(text)
            if end is not None:
                print_debug(f"{anchor.category}: import section")
                indent = anchor.indent or ""
                return _insert_after_line(text, end, _with_header(block, anchor.header, indent))

        return None


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def _last_match(pattern: re.Pattern[str], text: str) -> re.Match[str] | None:
    last = None
    for last in pattern.finditer(text):
        pass
    return last


def _line_start(text: str, offset: int) -> int:
    return text.rfind("\n", 0, offset) + 1


def _line_indent(text: str, offset: int) -> str:
    start = _line_start(text, offset)
    line = text[start:]
    return line[: len(line) - len(line.lstrip(" \t"))]


def _block_step(text: str, offset: int, base: str) -> str:
    """One indentation level inside the block opened on the line at *offset*.

    Taken from the block's first non-blank line when it is indented deeper
    than *base*, otherwise from the file's indent unit.
    """
    end = text.find("\n", offset)
    if end != -1:
        for line in text[end + 1 :].split("\n"):
            if not line.strip():
                continue
            indent = line[: len(line) - len(line.lstrip(" \t"))]
            if len(indent) > len(base) and indent.startswith(base):
                return indent[len(base) :]
            break
    return _indent_unit(text)


def _indent_unit(text: str) -> str:
    widths = []
    for line in text.split("\n"):
        if line.startswith("\t"):
            return "\t"
        stripped = line.lstrip(" ")
        if stripped and not stripped.startswith("*") and len(stripped) < len(line):
            widths.append(len(line) - len(stripped))
    return " " * min(widths) if widths else "\t"


def _indent(block: str, indent: str) -> str:
    if not indent:
        return block
    return "\n".join(indent + line if line.strip() else line for line in block.split("\n"))


def _with_header(block: str, header: str | None, indent: str) -> str:
    body = _indent(block, indent)
    if header:
        body = f"{indent}{header}\n{body}"
    return "\n" + body


def _insert_after_line(text: str, offset: int, block: str) -> str:
    """Insert *block* on a new line after the line containing *offset*."""
    if offset > 0 and text[offset - 1] == "\n":
        offset -= 1
    end = text.find("\n", offset)
    if end == -1:
        return text + "\n" + block
    return text[:end] + "\n" + block + text[end:]


def _last_import_end(text: str) -> int | None:
    ends = [m.end() for m in _TS_IMPORT_RE.finditer(text)]
    ends.extend(m.end() for m in _PY_IMPORT_RE.finditer(text))
    return max(ends) if ends else None


def _squash(text: str) -> str:
    """Collapse indentation so presence checks ignore whitespace layout."""
    return "\n".join(line.strip() for line in text.split("\n") if line.strip())
