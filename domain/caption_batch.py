"""Domain types and parsing for render_caption_batch."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
import math
import re
from types import MappingProxyType
from typing import Any, Mapping, Tuple

INVALID_STYLE_CODE = "render_caption_batch.input.invalid_style"
INVALID_CSV_CODE = "render_caption_batch.input.invalid_csv"
INVALID_ROW_CODE = "render_caption_batch.input.invalid_row"
INVALID_TIME_CODE = "render_caption_batch.input.invalid_time"
INVALID_DIMENSIONS_CODE = "render_caption_batch.input.invalid_dimensions"
INPUT_FILE_CODE = "render_caption_batch.input.file_error"

DEFAULT_FONT_FILE = "KaiseiHarunoUmi-Regular.ttf"
DEFAULT_AUDIO_FILE = "lds.mp3"
DEFAULT_VIDEO_FILE = "waterfall1.mp4"
DEFAULT_START_SECONDS = 0.0
DEFAULT_END_SECONDS = 15.0
DEFAULT_INJECT_SECONDS = 6.0

REQUIRED_COLUMNS = ("Title", "Part_1", "Part_2")
WHITESPACE_PATTERN = re.compile(r"\s+")


class RenderValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class HorizontalAnchor(str, Enum):
    """Horizontal alignment of a caption block."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class OverlayRole(str, Enum):
    """Overlay slots rendered onto every clip."""

    TITLE = "title"
    PART1 = "part1"
    PART2 = "part2"


def parse_anchor(value: str) -> HorizontalAnchor:
    """Parse an anchor name; unknown names fall back to center."""
    try:
        return HorizontalAnchor(value.strip().lower())
    except ValueError:
        return HorizontalAnchor.CENTER


@dataclass(frozen=True)
class StyleProfile:
    """Drawing style and placement for one overlay role."""

    font_file: str
    font_size: int
    font_color: str
    shadow_color: str
    shadow_x: int
    shadow_y: int
    stroke_width: int
    stroke_color: str
    box: bool
    box_color: str
    y_fraction: float
    anchor: HorizontalAnchor

    def __post_init__(self) -> None:
        if not self.font_file.strip():
            raise RenderValidationError(INVALID_STYLE_CODE, "font_file must be non-empty")
        if self.font_size <= 0:
            raise RenderValidationError(INVALID_STYLE_CODE, "font_size must be positive")
        if self.stroke_width < 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "stroke_width must be non-negative"
            )
        if not 0.0 <= self.y_fraction <= 1.0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "y_fraction must be between 0 and 1"
            )
        if not isinstance(self.anchor, HorizontalAnchor):
            raise RenderValidationError(INVALID_STYLE_CODE, "anchor is invalid")


DEFAULT_STYLES: Mapping[OverlayRole, StyleProfile] = MappingProxyType(
    {
        OverlayRole.TITLE: StyleProfile(
            font_file=DEFAULT_FONT_FILE,
            font_size=56,
            font_color="white",
            shadow_color="black",
            shadow_x=2,
            shadow_y=2,
            stroke_width=1,
            stroke_color="black",
            box=True,
            box_color="black@0.5",
            y_fraction=0.1,
            anchor=HorizontalAnchor.CENTER,
        ),
        OverlayRole.PART1: StyleProfile(
            font_file=DEFAULT_FONT_FILE,
            font_size=48,
            font_color="white",
            shadow_color="black",
            shadow_x=1,
            shadow_y=1,
            stroke_width=1,
            stroke_color="black",
            box=True,
            box_color="black@0.7",
            y_fraction=0.4,
            anchor=HorizontalAnchor.CENTER,
        ),
        OverlayRole.PART2: StyleProfile(
            font_file=DEFAULT_FONT_FILE,
            font_size=48,
            font_color="white",
            shadow_color="black",
            shadow_x=2,
            shadow_y=2,
            stroke_width=1,
            stroke_color="black",
            box=True,
            box_color="black@0.7",
            y_fraction=0.5,
            anchor=HorizontalAnchor.LEFT,
        ),
    }
)


@dataclass(frozen=True)
class StyleRegistry:
    """Immutable role to style mapping shared by every row."""

    styles: Mapping[OverlayRole, StyleProfile] = field(
        default_factory=lambda: DEFAULT_STYLES
    )

    def __post_init__(self) -> None:
        missing = [role.value for role in OverlayRole if role not in self.styles]
        if missing:
            raise RenderValidationError(
                INVALID_STYLE_CODE, f"missing styles for roles: {', '.join(missing)}"
            )
        object.__setattr__(self, "styles", MappingProxyType(dict(self.styles)))

    def style_for(self, role: OverlayRole) -> StyleProfile:
        """Return the style profile for an overlay role."""
        return self.styles[role]

    def font_files(self) -> Tuple[str, ...]:
        """Return the distinct font files referenced by the registry."""
        return tuple(sorted({style.font_file for style in self.styles.values()}))


STYLE_FIELD_NAMES = frozenset(style_field.name for style_field in fields(StyleProfile))


def coerce_style_overrides(role: OverlayRole, payload: Any) -> dict[str, Any]:
    """Validate one role's override object from a styles file."""
    if not isinstance(payload, dict):
        raise RenderValidationError(
            INVALID_STYLE_CODE, f"style for {role.value} must be an object"
        )
    unknown = sorted(set(payload) - STYLE_FIELD_NAMES)
    if unknown:
        raise RenderValidationError(
            INVALID_STYLE_CODE,
            f"unknown style fields for {role.value}: {', '.join(unknown)}",
        )
    overrides = dict(payload)
    if "anchor" in overrides:
        anchor_value = overrides["anchor"]
        if not isinstance(anchor_value, str):
            raise RenderValidationError(
                INVALID_STYLE_CODE, f"anchor for {role.value} must be a string"
            )
        overrides["anchor"] = parse_anchor(anchor_value)
    if "box" in overrides:
        overrides["box"] = bool(overrides["box"])
    for name in ("font_size", "shadow_x", "shadow_y", "stroke_width"):
        if name in overrides and (
            isinstance(overrides[name], bool) or not isinstance(overrides[name], int)
        ):
            raise RenderValidationError(
                INVALID_STYLE_CODE, f"{name} for {role.value} must be an integer"
            )
    if "y_fraction" in overrides:
        y_fraction = overrides["y_fraction"]
        if isinstance(y_fraction, bool) or not isinstance(y_fraction, (int, float)):
            raise RenderValidationError(
                INVALID_STYLE_CODE, f"y_fraction for {role.value} must be a number"
            )
        overrides["y_fraction"] = float(y_fraction)
    for name in (
        "font_file",
        "font_color",
        "shadow_color",
        "stroke_color",
        "box_color",
    ):
        if name in overrides and not isinstance(overrides[name], str):
            raise RenderValidationError(
                INVALID_STYLE_CODE, f"{name} for {role.value} must be a string"
            )
    return overrides


def build_style_registry(
    payload: Mapping[str, Any] | None = None, font_file: str | None = None
) -> StyleRegistry:
    """Build the registry from defaults plus optional per-role overrides."""
    payload = payload or {}
    unknown_roles = sorted(
        set(payload) - {role.value for role in OverlayRole}
    )
    if unknown_roles:
        raise RenderValidationError(
            INVALID_STYLE_CODE, f"unknown overlay roles: {', '.join(unknown_roles)}"
        )

    styles: dict[OverlayRole, StyleProfile] = {}
    for role in OverlayRole:
        style = DEFAULT_STYLES[role]
        if role.value in payload:
            try:
                style = replace(style, **coerce_style_overrides(role, payload[role.value]))
            except TypeError as exc:
                raise RenderValidationError(INVALID_STYLE_CODE, str(exc)) from exc
        if font_file is not None:
            style = replace(style, font_file=font_file)
        styles[role] = style
    return StyleRegistry(styles=styles)


@dataclass(frozen=True)
class FrameDimensions:
    """Pixel canvas of one video."""

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise RenderValidationError(
                INVALID_DIMENSIONS_CODE, "width and height must be positive"
            )


FALLBACK_DIMENSIONS = FrameDimensions(width=1920, height=1080)


@dataclass(frozen=True)
class CaptionRequest:
    """Caption text to lay out on a frame with a style."""

    text: str
    style: StyleProfile
    frame: FrameDimensions


@dataclass(frozen=True)
class LayoutResult:
    """Wrapped caption text and its top-left pixel position."""

    lines: Tuple[str, ...]
    x: int
    y: int

    @property
    def text(self) -> str:
        """Wrapped lines joined with line breaks."""
        return "\n".join(self.lines)


@dataclass(frozen=True)
class CaptionRow:
    """One validated input row."""

    title: str
    part1: str
    part2: str
    audio_file: str
    video_file: str
    start_seconds: float
    end_seconds: float
    inject_seconds: float

    def __post_init__(self) -> None:
        if not self.title.strip():
            raise RenderValidationError(INVALID_ROW_CODE, "Title must be non-empty")
        for name in ("start_seconds", "end_seconds", "inject_seconds"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise RenderValidationError(
                    INVALID_TIME_CODE, f"{name} must be a non-negative number"
                )
        if self.end_seconds <= self.start_seconds:
            raise RenderValidationError(
                INVALID_TIME_CODE, "End_Time must be after Start_Time"
            )


def read_cell(record: Mapping[str, str | None], column: str) -> str | None:
    """Return a stripped cell value, or None when absent or blank."""
    value = record.get(column)
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def parse_seconds(value: str | None, column: str, default: float) -> float:
    """Parse a seconds column, substituting the default when blank."""
    if value is None:
        return default
    try:
        seconds = float(value)
    except ValueError as exc:
        raise RenderValidationError(
            INVALID_TIME_CODE, f"{column} is not a number: {value!r}"
        ) from exc
    if not math.isfinite(seconds):
        raise RenderValidationError(
            INVALID_TIME_CODE, f"{column} is not finite: {value!r}"
        )
    return seconds


def parse_caption_row(record: Mapping[str, str | None]) -> CaptionRow:
    """Convert a CSV record into a CaptionRow with defaults applied."""
    title = read_cell(record, "Title")
    if title is None:
        raise RenderValidationError(INVALID_ROW_CODE, "Title is missing")

    return CaptionRow(
        title=title,
        part1=read_cell(record, "Part_1") or "",
        part2=read_cell(record, "Part_2") or "",
        audio_file=read_cell(record, "Audio") or DEFAULT_AUDIO_FILE,
        video_file=read_cell(record, "Video") or DEFAULT_VIDEO_FILE,
        start_seconds=parse_seconds(
            read_cell(record, "Start_Time"), "Start_Time", DEFAULT_START_SECONDS
        ),
        end_seconds=parse_seconds(
            read_cell(record, "End_Time"), "End_Time", DEFAULT_END_SECONDS
        ),
        inject_seconds=parse_seconds(
            read_cell(record, "Inject_Time"), "Inject_Time", DEFAULT_INJECT_SECONDS
        ),
    )


def validate_csv_header(columns: Tuple[str, ...] | None) -> None:
    """Ensure the CSV header carries the required caption columns."""
    if not columns:
        raise RenderValidationError(INVALID_CSV_CODE, "CSV input has no header")
    missing = [column for column in REQUIRED_COLUMNS if column not in columns]
    if missing:
        raise RenderValidationError(
            INVALID_CSV_CODE, f"CSV input missing columns: {', '.join(missing)}"
        )


def output_file_name(title: str) -> str:
    """Build the output file name for a clip title."""
    return f"{WHITESPACE_PATTERN.sub('_', title)}.mp4"
