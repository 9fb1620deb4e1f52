"""ffmpeg instruction building for render_caption_batch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from domain.caption_batch import (
    CaptionRequest,
    CaptionRow,
    FrameDimensions,
    INVALID_TIME_CODE,
    LayoutResult,
    OverlayRole,
    RenderValidationError,
    StyleProfile,
    StyleRegistry,
)
from service.caption_layout import WidthEstimate, layout_caption

INJECTION_WINDOW_SECONDS = 5.0
# Option values are parsed twice: once by the filtergraph parser, then by the
# filter's option parser. Escapes are applied innermost first.
OPTION_ESCAPES = (
    ("\\", "\\\\"),
    ("'", "\\'"),
    (":", "\\:"),
)
FILTERGRAPH_ESCAPES = (
    ("\\", "\\\\"),
    ("'", "\\'"),
    ("[", "\\["),
    ("]", "\\]"),
    (",", "\\,"),
    (";", "\\;"),
)


def format_seconds(value: float) -> str:
    """Format seconds as compact decimal text for ffmpeg arguments."""
    text_value = f"{value:.6f}".rstrip("0").rstrip(".")
    return text_value or "0"


def apply_escapes(text_value: str, escapes: Tuple[Tuple[str, str], ...]) -> str:
    """Apply ordered character escapes to a value."""
    escaped = text_value
    for source, target in escapes:
        escaped = escaped.replace(source, target)
    return escaped


def escape_filter_option(text_value: str) -> str:
    """Escape a filter option value for both ffmpeg parsing passes."""
    return apply_escapes(apply_escapes(text_value, OPTION_ESCAPES), FILTERGRAPH_ESCAPES)


@dataclass(frozen=True)
class InjectionWindow:
    """Time range during which an overlay is visible."""

    start_seconds: float

    def __post_init__(self) -> None:
        if self.start_seconds < 0:
            raise RenderValidationError(
                INVALID_TIME_CODE, "injection start must be non-negative"
            )

    @property
    def end_seconds(self) -> float:
        """Last second, inclusive, at which the overlay is visible."""
        return self.start_seconds + INJECTION_WINDOW_SECONDS

    def is_visible(self, time_seconds: float) -> bool:
        """Return True when the overlay shows at the given output time."""
        return self.start_seconds <= time_seconds <= self.end_seconds

    def enable_expression(self) -> str:
        """Build the ffmpeg timeline expression for this window."""
        return (
            f"between(t,{format_seconds(self.start_seconds)},"
            f"{format_seconds(self.end_seconds)})"
        )


@dataclass(frozen=True)
class DrawTextInstruction:
    """One text overlay: laid-out caption plus its drawing style."""

    role: OverlayRole
    layout: LayoutResult
    style: StyleProfile
    window: InjectionWindow | None = None

    def to_filter(self) -> str:
        """Render this overlay as a drawtext filter."""
        options = [
            ("fontfile", escape_filter_option(self.style.font_file)),
            ("text", escape_filter_option(self.layout.text)),
            ("fontsize", str(self.style.font_size)),
            ("fontcolor", escape_filter_option(self.style.font_color)),
            ("x", str(self.layout.x)),
            ("y", str(self.layout.y)),
            ("shadowcolor", escape_filter_option(self.style.shadow_color)),
            ("shadowx", str(self.style.shadow_x)),
            ("shadowy", str(self.style.shadow_y)),
            ("borderw", str(self.style.stroke_width)),
            ("bordercolor", escape_filter_option(self.style.stroke_color)),
            ("box", "1" if self.style.box else "0"),
            ("boxcolor", escape_filter_option(self.style.box_color)),
            ("expansion", "none"),
        ]
        if self.window is not None:
            options.append(
                ("enable", escape_filter_option(self.window.enable_expression()))
            )
        return "drawtext=" + ":".join(f"{name}={value}" for name, value in options)


@dataclass(frozen=True)
class RenderJob:
    """Everything ffmpeg needs to render one clip."""

    video_path: str
    audio_path: str
    output_path: str
    start_seconds: float
    end_seconds: float
    overlays: Tuple[DrawTextInstruction, ...]

    def __post_init__(self) -> None:
        if self.end_seconds <= self.start_seconds:
            raise RenderValidationError(
                INVALID_TIME_CODE, "end time must be after start time"
            )

    def filter_graph(self) -> str:
        """Join overlay filters into a single video filter chain."""
        return ",".join(overlay.to_filter() for overlay in self.overlays)

    def build_ffmpeg_command(self) -> Tuple[str, ...]:
        """Build the ffmpeg argv for trimming, overlaying and muxing."""
        ffmpeg_cmd = [
            "ffmpeg",
            "-y",
            "-i",
            self.video_path,
            "-i",
            self.audio_path,
            "-ss",
            format_seconds(self.start_seconds),
            "-to",
            format_seconds(self.end_seconds),
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-shortest",
        ]
        if self.overlays:
            ffmpeg_cmd.extend(["-vf", self.filter_graph()])
        ffmpeg_cmd.append(self.output_path)
        return tuple(ffmpeg_cmd)


def build_overlay(
    role: OverlayRole,
    text_value: str,
    registry: StyleRegistry,
    frame: FrameDimensions,
    width_mode: WidthEstimate,
    window: InjectionWindow | None = None,
) -> DrawTextInstruction:
    """Lay out one caption and pair it with its role style."""
    style = registry.style_for(role)
    layout = layout_caption(CaptionRequest(text_value, style, frame), width_mode)
    return DrawTextInstruction(role=role, layout=layout, style=style, window=window)


def build_overlays(
    row: CaptionRow,
    registry: StyleRegistry,
    frame: FrameDimensions,
    width_mode: WidthEstimate = WidthEstimate.JOINED,
) -> Tuple[DrawTextInstruction, ...]:
    """Build the title and both caption overlays for a row."""
    return (
        build_overlay(OverlayRole.TITLE, row.title, registry, frame, width_mode),
        build_overlay(OverlayRole.PART1, row.part1, registry, frame, width_mode),
        build_overlay(
            OverlayRole.PART2,
            row.part2,
            registry,
            frame,
            width_mode,
            window=InjectionWindow(row.inject_seconds),
        ),
    )
