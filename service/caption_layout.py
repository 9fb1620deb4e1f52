"""Caption wrapping and placement for render_caption_batch.

Widths are estimated from character counts instead of glyph metrics so the
layout stays deterministic without loading fonts.
"""

from __future__ import annotations

from enum import Enum
import math
from typing import Sequence, Tuple

from domain.caption_batch import (
    CaptionRequest,
    FrameDimensions,
    HorizontalAnchor,
    LayoutResult,
    RenderValidationError,
    StyleProfile,
)

PADDING_RATIO = 0.05
GLYPH_WIDTH_RATIO = 0.6
INVALID_WIDTH_ESTIMATE_CODE = "render_caption_batch.input.invalid_width_estimate"


class WidthEstimate(str, Enum):
    """How the width of a multi-line caption block is estimated."""

    JOINED = "joined"
    LONGEST_LINE = "longest_line"


def parse_width_estimate(value: str) -> WidthEstimate:
    """Parse a width estimate mode name."""
    normalized = value.strip().lower()
    try:
        return WidthEstimate(normalized)
    except ValueError as exc:
        raise RenderValidationError(
            INVALID_WIDTH_ESTIMATE_CODE, f"invalid width estimate: {value!r}"
        ) from exc


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up."""
    return int(math.floor(value + 0.5))


def compute_padding(frame_width: int) -> int:
    """Horizontal padding kept on each side of the frame."""
    return round_half_up(frame_width * PADDING_RATIO)


def compute_max_line_width(frame_width: int) -> int:
    """Usable line width between the left and right padding."""
    return frame_width - 2 * compute_padding(frame_width)


def estimate_text_width(text_value: str, font_size: int) -> float:
    """Estimate rendered width from the character count."""
    return len(text_value) * font_size * GLYPH_WIDTH_RATIO


def wrap_caption(text_value: str, font_size: int, max_width: float) -> Tuple[str, ...]:
    """Greedily wrap words into lines no wider than max_width.

    A word that is wider than max_width on its own is kept whole on its own
    line. Text without words yields a single empty line.
    """
    words = text_value.split()
    if not words:
        return ("",)

    lines: list[str] = []
    current_line = ""
    for word in words:
        candidate = f"{current_line} {word}" if current_line else word
        if current_line and estimate_text_width(candidate, font_size) > max_width:
            lines.append(current_line)
            current_line = word
        else:
            current_line = candidate

    if current_line:
        lines.append(current_line)
    return tuple(lines)


def estimate_block_width(
    lines: Sequence[str], font_size: int, width_mode: WidthEstimate
) -> float:
    """Estimate the width of a wrapped caption block."""
    if width_mode == WidthEstimate.LONGEST_LINE:
        return max(
            (estimate_text_width(line, font_size) for line in lines), default=0.0
        )
    # Line breaks count as characters.
    return estimate_text_width("\n".join(lines), font_size)


def compute_x_position(
    frame_width: int, anchor: HorizontalAnchor, block_width: float
) -> int:
    """Compute the left edge of a block for a horizontal anchor."""
    padding = compute_padding(frame_width)
    if anchor == HorizontalAnchor.LEFT:
        return padding
    if anchor == HorizontalAnchor.RIGHT:
        return round_half_up(frame_width - block_width - padding)
    return round_half_up((frame_width - block_width) / 2)


def compute_y_position(frame_height: int, y_fraction: float) -> int:
    """Compute the top edge of a block from a fraction of frame height."""
    return round_half_up(frame_height * y_fraction)


def position_caption(
    lines: Sequence[str],
    style: StyleProfile,
    frame: FrameDimensions,
    width_mode: WidthEstimate = WidthEstimate.JOINED,
) -> Tuple[int, int]:
    """Return the (x, y) pixel position of a wrapped caption block."""
    block_width = estimate_block_width(lines, style.font_size, width_mode)
    x_position = compute_x_position(frame.width, style.anchor, block_width)
    y_position = compute_y_position(frame.height, style.y_fraction)
    return x_position, y_position


def layout_caption(
    request: CaptionRequest, width_mode: WidthEstimate = WidthEstimate.JOINED
) -> LayoutResult:
    """Wrap and place caption text on a frame."""
    lines = wrap_caption(
        request.text,
        request.style.font_size,
        compute_max_line_width(request.frame.width),
    )
    x_position, y_position = position_caption(
        lines, request.style, request.frame, width_mode
    )
    return LayoutResult(lines=lines, x=x_position, y=y_position)
