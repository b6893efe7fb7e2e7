"""Offset <-> line/character mapping and token lookup under the cursor.

Offsets are indices into the Python string. LSP positions count characters in
UTF-16 code units, so anything outside the BMP occupies two columns.
"""

from __future__ import annotations

from lsprotocol.types import Position

TOKEN_DELIMITERS = frozenset("(){}<>,!")


def _utf16_len(segment: str) -> int:
    return len(segment.encode("utf-16-le")) // 2


def _is_delimiter(char: str) -> bool:
    return char.isspace() or char in TOKEN_DELIMITERS


def line_starts(text: str) -> list[int]:
    starts = [0]
    index = text.find("\n")
    while index != -1:
        starts.append(index + 1)
        index = text.find("\n", index + 1)
    return starts


def offset_to_position(text: str, offset: int) -> Position:
    offset = min(max(offset, 0), len(text))
    line = text.count("\n", 0, offset)
    line_start = text.rfind("\n", 0, offset) + 1
    return Position(line=line, character=_utf16_len(text[line_start:offset]))


def position_to_offset(text: str, position: Position) -> int:
    starts = line_starts(text)
    if position.line < 0:
        return 0
    if position.line >= len(starts):
        return len(text)
    start = starts[position.line]
    if position.line + 1 < len(starts):
        end = starts[position.line + 1] - 1
    else:
        end = len(text)
    units = 0
    offset = start
    while offset < end and units < position.character:
        units += 2 if ord(text[offset]) > 0xFFFF else 1
        offset += 1
    return offset


def token_range_at(text: str, offset: int) -> tuple[int, int] | None:
    """Return the ``[start, end)`` span of the token touching ``offset``.

    The scan runs left from ``offset - 1`` and right from ``offset`` over
    non-delimiter characters, so a cursor placed just after the last letter of
    a name still finds it.
    """
    offset = min(max(offset, 0), len(text))
    left = offset
    while left > 0 and not _is_delimiter(text[left - 1]):
        left -= 1
    right = offset
    while right < len(text) and not _is_delimiter(text[right]):
        right += 1
    if left == right:
        return None
    return left, right


def find_token_at(text: str, offset: int) -> str | None:
    span = token_range_at(text, offset)
    if span is None:
        return None
    return text[span[0] : span[1]]
