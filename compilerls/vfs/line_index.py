"""
Conversion between string offsets and LSP positions.

LSP positions count `character` in UTF-16 code units, while Python strings
index by code point. LineIndex keeps the start offset of every line and
translates in both directions.
"""

from __future__ import annotations

from bisect import bisect_right

from lsprotocol.types import Position, Range


class PositionError(ValueError):
    """A position does not denote a location inside the text."""


def _utf16_length(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


class LineIndex:
    """Line start table for one immutable text."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.line_starts = [0]
        for offset, char in enumerate(text):
            if char == "\n":
                self.line_starts.append(offset + 1)

    @property
    def line_count(self) -> int:
        return len(self.line_starts)

    def line_text(self, line: int) -> str:
        """Text of `line` without its line terminator."""
        start = self.line_starts[line]
        if line + 1 < len(self.line_starts):
            end = self.line_starts[line + 1] - 1
        else:
            end = len(self.text)
        text = self.text[start:end]
        if text.endswith("\r"):
            text = text[:-1]
        return text

    def offset_at(self, position: Position) -> int:
        """
        String offset of `position`.

        Raises:
            PositionError: the line does not exist or the character lies
                beyond the end of the line.
        """
        if position.line < 0 or position.line >= self.line_count:
            raise PositionError(
                f"Line {position.line} out of range (document has {self.line_count} lines)"
            )
        if position.character < 0:
            raise PositionError(f"Negative character offset {position.character}")

        line_text = self.line_text(position.line)
        units = 0
        for index, char in enumerate(line_text):
            if units >= position.character:
                if units > position.character:
                    raise PositionError(
                        f"Character {position.character} splits a surrogate pair "
                        f"on line {position.line}"
                    )
                return self.line_starts[position.line] + index
            units += 2 if ord(char) > 0xFFFF else 1

        if units == position.character:
            return self.line_starts[position.line] + len(line_text)
        raise PositionError(
            f"Character {position.character} out of range on line {position.line} "
            f"(line has {units} characters)"
        )

    def position_at(self, offset: int) -> Position:
        """LSP position of a string offset; offsets past the end are clamped."""
        offset = max(0, min(offset, len(self.text)))
        line = bisect_right(self.line_starts, offset) - 1
        start = self.line_starts[line]
        return Position(line=line, character=_utf16_length(self.text[start:offset]))

    def range_offsets(self, range: Range) -> tuple[int, int]:
        start = self.offset_at(range.start)
        end = self.offset_at(range.end)
        if end < start:
            raise PositionError(
                f"Range end {range.end.line}:{range.end.character} precedes "
                f"start {range.start.line}:{range.start.character}"
            )
        return start, end

    def range_of(self, start: int, end: int) -> Range:
        return Range(start=self.position_at(start), end=self.position_at(end))
