from __future__ import annotations

import pytest
from lsprotocol.types import Position

from kindls.positions import (
    find_token_at,
    line_starts,
    offset_to_position,
    position_to_offset,
    token_range_at,
)


def test_line_starts_marks_each_newline() -> None:
    assert line_starts("ab\ncd\n\nx") == [0, 3, 6, 7]
    assert line_starts("") == [0]


@pytest.mark.parametrize(
    ("offset", "line", "character"),
    [
        (0, 0, 0),
        (2, 0, 2),
        (3, 1, 0),
        (5, 1, 2),
        (6, 2, 0),
        (7, 3, 0),
    ],
)
def test_offset_to_position(offset: int, line: int, character: int) -> None:
    assert offset_to_position("ab\ncd\n\nx", offset) == Position(line=line, character=character)


def test_offset_to_position_clamps_out_of_range() -> None:
    text = "ab\ncd"
    assert offset_to_position(text, -4) == Position(line=0, character=0)
    assert offset_to_position(text, 99) == Position(line=1, character=2)


def test_positions_count_utf16_units() -> None:
    text = "a\U0001f600b\nc"
    assert offset_to_position(text, 2) == Position(line=0, character=3)
    assert position_to_offset(text, Position(line=0, character=3)) == 2
    assert position_to_offset(text, Position(line=1, character=1)) == 5


def test_position_to_offset_clamps_to_line_end() -> None:
    text = "ab\ncd"
    assert position_to_offset(text, Position(line=0, character=40)) == 2
    assert position_to_offset(text, Position(line=7, character=0)) == len(text)


def test_token_range_scans_both_directions() -> None:
    text = "Bool.and(a: Bool, b: Bool): Bool"
    assert token_range_at(text, 2) == (0, 8)
    assert find_token_at(text, 14) == "Bool"
    # A cursor right after the last character still hits the token.
    assert find_token_at(text, 16) == "Bool"


def test_token_range_stops_at_delimiters() -> None:
    assert find_token_at("f(x)", 2) == "x"
    assert find_token_at("<List!>", 3) == "List"
    assert find_token_at("a:b", 1) == "a:b"


def test_no_token_between_delimiters() -> None:
    assert token_range_at("( )", 1) is None
    assert token_range_at("", 0) is None


def test_ascii_position_round_trip() -> None:
    text = "type Bool {\n  true,\n\n  false }\n"
    for line, content in enumerate(text.split("\n")):
        for character in range(len(content) + 1):
            position = Position(line=line, character=character)
            assert offset_to_position(text, position_to_offset(text, position)) == position
