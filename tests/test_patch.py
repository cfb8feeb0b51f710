from __future__ import annotations

import pytest

from rails5_xhr_update.errors import OverlappingPatch, RewriteError
from rails5_xhr_update.patch import TextPatch, apply_patches


def test_single_replacement() -> None:
    assert apply_patches("hello world", [TextPatch(6, 11, "there")]) == "hello there"


def test_patches_are_applied_in_source_order() -> None:
    patches = [TextPatch(6, 11, "B"), TextPatch(0, 5, "A")]
    assert apply_patches("hello world", patches) == "A B"


def test_no_patches_returns_source_unchanged() -> None:
    source = "# comment\nget :index  \n"
    assert apply_patches(source, []) == source


def test_adjacent_patches_are_allowed() -> None:
    assert apply_patches("abcdef", [TextPatch(0, 3, "x"), TextPatch(3, 6, "y")]) == "xy"


def test_insertion_with_empty_span() -> None:
    assert apply_patches("ab", [TextPatch(1, 1, "-")]) == "a-b"


def test_overlapping_patches_are_rejected() -> None:
    with pytest.raises(OverlappingPatch) as exc_info:
        apply_patches("hello world", [TextPatch(0, 5, "x"), TextPatch(3, 8, "y")])

    assert isinstance(exc_info.value, RewriteError)
    assert "overlaps" in str(exc_info.value)


def test_invalid_span() -> None:
    with pytest.raises(ValueError):
        TextPatch(5, 2, "")


def test_span_past_end_of_buffer() -> None:
    with pytest.raises(ValueError):
        apply_patches("abc", [TextPatch(1, 10, "x")])
