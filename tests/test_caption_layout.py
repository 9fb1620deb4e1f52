"""Unit tests for caption wrapping and placement."""

from __future__ import annotations

from dataclasses import replace

import pytest

from domain.caption_batch import (
    DEFAULT_STYLES,
    FALLBACK_DIMENSIONS,
    CaptionRequest,
    FrameDimensions,
    HorizontalAnchor,
    OverlayRole,
    RenderValidationError,
    StyleProfile,
)
from service.caption_layout import (
    INVALID_WIDTH_ESTIMATE_CODE,
    WidthEstimate,
    compute_max_line_width,
    compute_padding,
    estimate_text_width,
    layout_caption,
    parse_width_estimate,
    position_caption,
    round_half_up,
    wrap_caption,
)


def build_style(anchor: HorizontalAnchor, font_size: int = 48) -> StyleProfile:
    """Build a caption style with the requested anchor and size."""
    return replace(
        DEFAULT_STYLES[OverlayRole.PART1], anchor=anchor, font_size=font_size
    )


def test_round_half_up_rounds_halves_up() -> None:
    """Round .5 values upward like the rendered outputs expect."""
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4999) == 2
    assert round_half_up(-0.5) == 0


def test_padding_and_max_width_for_full_hd() -> None:
    """Derive padding and usable width from the frame width."""
    assert compute_padding(1920) == 96
    assert compute_max_line_width(1920) == 1728
    assert compute_padding(1080) == 54


def test_wrap_empty_text_yields_single_empty_line() -> None:
    """Return one empty line for text without words."""
    assert wrap_caption("", 48, 1000) == ("",)
    assert wrap_caption("   \t ", 48, 1000) == ("",)


def test_wrap_greedily_fills_lines() -> None:
    """Close a line only when the next word would overflow."""
    # 10px font => 6px per character, 60px => 10 characters per line.
    assert wrap_caption("one two three four", 10, 60) == ("one two", "three four")


def test_wrap_keeps_text_on_one_line_when_it_fits() -> None:
    """Keep short captions on a single line."""
    assert wrap_caption("Hello  world", 48, 1728) == ("Hello world",)


def test_wrap_never_splits_overlong_word() -> None:
    """Put an over-wide word on its own line without splitting it."""
    lines = wrap_caption("a supercalifragilistic b", 10, 60)

    assert lines == ("a", "supercalifragilistic", "b")
    assert estimate_text_width(lines[1], 10) > 60


def test_wrap_first_word_overflow_does_not_emit_empty_line() -> None:
    """Start with an over-wide word without an empty leading line."""
    assert wrap_caption("extraordinarily long", 10, 30) == (
        "extraordinarily",
        "long",
    )


@pytest.mark.parametrize(
    "text_value,font_size,max_width",
    [
        ("the quick brown fox jumps over the lazy dog", 48, 300),
        ("a b c d e f g", 100, 10),
        ("word", 1, 1),
        ("Vertical  spacing\nand\ttabs are whitespace", 20, 200),
    ],
)
def test_wrap_lines_always_contain_words(
    text_value: str, font_size: int, max_width: int
) -> None:
    """Never produce a line without words for non-empty text."""
    lines = wrap_caption(text_value, font_size, max_width)

    assert lines
    assert all(line.split() for line in lines)
    assert " ".join(lines).split() == text_value.split()


def test_center_anchor_single_word() -> None:
    """Center a five-letter word on a 1920px frame."""
    x_position, y_position = position_caption(
        ("Hello",),
        build_style(HorizontalAnchor.CENTER),
        FrameDimensions(1920, 1080),
    )

    assert x_position == 888
    assert y_position == 432


@pytest.mark.parametrize("text_value", ["Hi", "a much longer caption line"])
def test_left_anchor_ignores_text_length(text_value: str) -> None:
    """Place left-anchored text at the padding regardless of length."""
    frame = FrameDimensions(1280, 720)
    x_position, _ = position_caption(
        (text_value,), build_style(HorizontalAnchor.LEFT), frame
    )

    assert x_position == round_half_up(1280 * 0.05)


@pytest.mark.parametrize("frame_width", [1920, 1281, 720])
def test_right_anchor_leaves_padding_on_the_right(frame_width: int) -> None:
    """Place right-anchored text so it ends at the right padding."""
    style = build_style(HorizontalAnchor.RIGHT, font_size=37)
    lines = ("Right side",)
    x_position, _ = position_caption(lines, style, FrameDimensions(frame_width, 720))

    text_width = estimate_text_width(lines[0], 37)
    padding = compute_padding(frame_width)
    assert abs(x_position + text_width + padding - frame_width) <= 0.5


def test_joined_width_counts_line_breaks() -> None:
    """Estimate multi-line width from the joined text by default."""
    style = build_style(HorizontalAnchor.CENTER, font_size=10)
    frame = FrameDimensions(200, 100)

    joined_x, _ = position_caption(("aaaa", "bbbb"), style, frame)
    longest_x, _ = position_caption(
        ("aaaa", "bbbb"), style, frame, WidthEstimate.LONGEST_LINE
    )

    assert joined_x == 73
    assert longest_x == 88


def test_y_position_uses_top_anchor_for_multiple_lines() -> None:
    """Keep y fixed regardless of line count."""
    style = build_style(HorizontalAnchor.CENTER)
    frame = FrameDimensions(1920, 1080)

    _, single_y = position_caption(("one",), style, frame)
    _, multi_y = position_caption(("one", "two", "three"), style, frame)

    assert single_y == multi_y == 432


def test_layout_with_fallback_dimensions_is_on_screen() -> None:
    """Lay out every default role on the fallback frame."""
    for role, style in DEFAULT_STYLES.items():
        result = layout_caption(
            CaptionRequest(f"{role.value} caption", style, FALLBACK_DIMENSIONS)
        )
        assert result.x >= 0
        assert result.y >= 0


def test_layout_wraps_to_frame_width() -> None:
    """Wrap captions that exceed the usable width."""
    style = build_style(HorizontalAnchor.LEFT, font_size=48)
    frame = FrameDimensions(720, 1280)
    result = layout_caption(
        CaptionRequest("this caption is far too long for a vertical frame", style, frame)
    )

    max_width = compute_max_line_width(720)
    assert len(result.lines) > 1
    assert all(estimate_text_width(line, 48) <= max_width for line in result.lines)
    assert result.text == "\n".join(result.lines)
    assert result.x == 36
    assert result.y == 512


def test_layout_empty_text() -> None:
    """Lay out empty text as a single empty line."""
    result = layout_caption(
        CaptionRequest("", build_style(HorizontalAnchor.CENTER), FALLBACK_DIMENSIONS)
    )

    assert result.lines == ("",)
    assert result.text == ""
    assert result.x == 960


def test_parse_width_estimate() -> None:
    """Parse width estimate names and reject unknown ones."""
    assert parse_width_estimate(" Longest_Line ") == WidthEstimate.LONGEST_LINE
    assert parse_width_estimate("joined") == WidthEstimate.JOINED

    with pytest.raises(RenderValidationError) as exc_info:
        parse_width_estimate("glyphs")
    assert exc_info.value.code == INVALID_WIDTH_ESTIMATE_CODE
