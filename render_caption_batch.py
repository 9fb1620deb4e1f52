#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10"
# ]
# ///
"""Render captioned clips for every row of a CSV file using ffmpeg."""

from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import shutil
import subprocess
import sys
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Sequence, Tuple

from PIL import ImageFont

from domain.caption_batch import (
    FALLBACK_DIMENSIONS,
    INPUT_FILE_CODE,
    INVALID_STYLE_CODE,
    CaptionRow,
    FrameDimensions,
    RenderValidationError,
    StyleRegistry,
    build_style_registry,
    output_file_name,
    parse_caption_row,
    validate_csv_header,
)
from service.caption_layout import WidthEstimate, parse_width_estimate
from service.render_instructions import RenderJob, build_overlays

LOGGER = logging.getLogger("render_caption_batch")

FFMPEG_NOT_FOUND_CODE = "render_caption_batch.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "render_caption_batch.ffmpeg.exec_error"
FFMPEG_PROCESS_CODE = "render_caption_batch.ffmpeg.process_failed"
FFPROBE_FALLBACK_CODE = "render_caption_batch.ffprobe.fallback"
FONT_LOAD_CODE = "render_caption_batch.input.font_unloadable"
FONT_CHECK_SIZE = 24

ProbeFunction = Callable[[str], FrameDimensions]
CommandRunner = Callable[[Sequence[str]], None]


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class RowParseResult:
    """Parsed CSV row, or the reason it could not be parsed."""

    line_number: int
    row: CaptionRow | None
    error: RenderValidationError | None


@dataclass(frozen=True)
class BatchRequest:
    """Parsed CLI request and runtime options."""

    input_csv: str
    video_dir: str
    audio_dir: str
    output_dir: str
    registry: StyleRegistry
    width_mode: WidthEstimate


@dataclass(frozen=True)
class BatchContext:
    """Collaborators shared by every row of a batch."""

    video_dir: str
    audio_dir: str
    output_dir: str
    registry: StyleRegistry
    width_mode: WidthEstimate
    executor: ThreadPoolExecutor
    probe: ProbeFunction
    runner: CommandRunner


@dataclass(frozen=True)
class RowSubmission:
    """Completion handle for one submitted clip."""

    output_path: str
    future: Future[None]


@dataclass(frozen=True)
class BatchSummary:
    """Per-batch outcome counts."""

    processed: int
    failed: int
    skipped: int


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def ensure_ffmpeg_available() -> None:
    """Ensure ffmpeg is installed and executable."""
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not on PATH")
    try:
        subprocess.run(
            [ffmpeg_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except Exception as exc:
        raise RenderPipelineError(
            FFMPEG_EXEC_CODE, "ffmpeg exists but could not be executed"
        ) from exc


def parse_probe_output(output_text: str) -> FrameDimensions:
    """Parse ffprobe `width,height` output."""
    first_line = output_text.strip().splitlines()[0] if output_text.strip() else ""
    parts = [part.strip() for part in first_line.split(",") if part.strip()]
    if len(parts) != 2:
        raise ValueError(f"unexpected ffprobe output: {output_text.strip()!r}")
    return FrameDimensions(width=int(parts[0]), height=int(parts[1]))


def probe_video_dimensions(video_path: str) -> FrameDimensions:
    """Return the frame size of a video, or the fallback size on any failure."""
    ffprobe_path = shutil.which("ffprobe")
    if not ffprobe_path:
        LOGGER.warning("%s: ffprobe not on PATH", FFPROBE_FALLBACK_CODE)
        return FALLBACK_DIMENSIONS
    try:
        result = subprocess.run(
            [
                ffprobe_path,
                "-v",
                "error",
                "-select_streams",
                "v:0",
                "-show_entries",
                "stream=width,height",
                "-of",
                "csv=p=0",
                video_path,
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            check=False,
        )
    except (OSError, ValueError) as exc:
        LOGGER.warning("%s: %s", FFPROBE_FALLBACK_CODE, str(exc).strip())
        return FALLBACK_DIMENSIONS
    if result.returncode != 0:
        LOGGER.warning(
            "%s: ffprobe failed for %s: %s",
            FFPROBE_FALLBACK_CODE,
            video_path,
            result.stderr.strip(),
        )
        return FALLBACK_DIMENSIONS
    try:
        return parse_probe_output(result.stdout)
    except ValueError as exc:
        LOGGER.warning("%s: %s", FFPROBE_FALLBACK_CODE, str(exc).strip())
        return FALLBACK_DIMENSIONS


def run_ffmpeg_command(ffmpeg_cmd: Sequence[str]) -> None:
    """Run ffmpeg to completion, raising on a non-zero exit."""
    try:
        result = subprocess.run(
            list(ffmpeg_cmd),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            check=False,
        )
    except FileNotFoundError as exc:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not found") from exc
    if result.returncode != 0:
        stderr_lines = result.stderr.strip().splitlines()
        stderr_tail = stderr_lines[-1] if stderr_lines else ""
        raise RenderPipelineError(
            FFMPEG_PROCESS_CODE,
            f"ffmpeg failed with exit code {result.returncode}. {stderr_tail}".strip(),
        )


def check_font_files(registry: StyleRegistry) -> list[str]:
    """Warn about registry fonts that cannot be loaded; return the loadable ones."""
    loadable_fonts: list[str] = []
    for font_file_path in registry.font_files():
        try:
            ImageFont.truetype(font_file_path, size=FONT_CHECK_SIZE)
        except Exception as exc:
            LOGGER.warning(
                "%s: font %s (%s)",
                FONT_LOAD_CODE,
                font_file_path,
                str(exc).strip(),
            )
            continue
        loadable_fonts.append(font_file_path)
    return loadable_fonts


def load_styles_file(file_path: str) -> dict[str, Any]:
    """Read per-role style overrides from a JSON file."""
    try:
        with open(file_path, "r", encoding="utf-8") as file_handle:
            payload = json.load(file_handle)
    except FileNotFoundError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"styles file not found: {file_path}"
        ) from exc
    except json.JSONDecodeError as exc:
        raise RenderValidationError(
            INVALID_STYLE_CODE, f"styles file is not valid JSON: {exc.msg}"
        ) from exc
    if not isinstance(payload, dict):
        raise RenderValidationError(
            INVALID_STYLE_CODE, "styles file must contain a JSON object"
        )
    return payload


def read_caption_rows(csv_path: str) -> Tuple[RowParseResult, ...]:
    """Read CSV records, keeping per-row parse errors instead of raising."""
    try:
        with open(csv_path, "r", encoding="utf-8-sig", newline="") as file_handle:
            reader = csv.DictReader(file_handle)
            if reader.fieldnames is not None:
                reader.fieldnames = [name.strip() for name in reader.fieldnames]
            validate_csv_header(
                tuple(reader.fieldnames) if reader.fieldnames else None
            )
            records: list[RowParseResult] = []
            for record in reader:
                try:
                    records.append(
                        RowParseResult(reader.line_num, parse_caption_row(record), None)
                    )
                except RenderValidationError as exc:
                    records.append(RowParseResult(reader.line_num, None, exc))
    except FileNotFoundError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"input CSV not found: {csv_path}"
        ) from exc
    except UnicodeDecodeError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE,
            f"input CSV is not valid UTF-8 at byte offset {exc.start}",
        ) from exc
    return tuple(records)


def build_output_path(output_dir: str, title: str) -> str:
    """Return the output clip path for a title."""
    return os.path.join(output_dir, output_file_name(title))


def execute_render_job(job: RenderJob, runner: CommandRunner) -> None:
    """Run one render job and log its outcome."""
    try:
        runner(job.build_ffmpeg_command())
    except Exception as exc:
        LOGGER.error("Error processing %s: %s", job.output_path, str(exc).strip())
        raise
    LOGGER.info("Processed: %s", job.output_path)


def process_row(row: CaptionRow, context: BatchContext) -> RowSubmission | None:
    """Validate inputs for a row and submit its render job.

    Returns None when a source file is missing; the transcoder is not invoked
    for that row.
    """
    video_path = os.path.join(context.video_dir, row.video_file)
    audio_path = os.path.join(context.audio_dir, row.audio_file)
    output_path = build_output_path(context.output_dir, row.title)

    if not os.path.isfile(video_path):
        LOGGER.warning("Video file not found: %s", video_path)
        return None
    if not os.path.isfile(audio_path):
        LOGGER.warning("Audio file not found: %s", audio_path)
        return None

    frame = context.probe(video_path)
    job = RenderJob(
        video_path=video_path,
        audio_path=audio_path,
        output_path=output_path,
        start_seconds=row.start_seconds,
        end_seconds=row.end_seconds,
        overlays=build_overlays(row, context.registry, frame, context.width_mode),
    )
    future = context.executor.submit(execute_render_job, job, context.runner)
    return RowSubmission(output_path=output_path, future=future)


def submit_rows(
    records: Sequence[RowParseResult], context: BatchContext
) -> Tuple[list[RowSubmission], int]:
    """Submit every valid row; return the submissions and the skipped count."""
    submissions: list[RowSubmission] = []
    skipped = 0
    for record in records:
        if record.row is None:
            error = record.error
            LOGGER.error(
                "%s: skipped CSV line %d: %s",
                error.code if error else "render_caption_batch.input.invalid_row",
                record.line_number,
                str(error).strip() if error else "unparseable row",
            )
            skipped += 1
            continue
        submission = process_row(record.row, context)
        if submission is None:
            skipped += 1
            continue
        submissions.append(submission)
    return submissions, skipped


def summarize_submissions(
    submissions: Sequence[RowSubmission], skipped: int
) -> BatchSummary:
    """Wait for every submission and count outcomes."""
    wait([submission.future for submission in submissions])
    failed = sum(
        1 for submission in submissions if submission.future.exception() is not None
    )
    return BatchSummary(
        processed=len(submissions) - failed, failed=failed, skipped=skipped
    )


def run_batch(
    request: BatchRequest,
    probe: ProbeFunction = probe_video_dimensions,
    runner: CommandRunner = run_ffmpeg_command,
) -> BatchSummary:
    """Render every CSV row and wait for all clips to finish."""
    os.makedirs(request.output_dir, exist_ok=True)
    records = read_caption_rows(request.input_csv)
    executor = ThreadPoolExecutor(max_workers=max(1, len(records)))
    context = BatchContext(
        video_dir=request.video_dir,
        audio_dir=request.audio_dir,
        output_dir=request.output_dir,
        registry=request.registry,
        width_mode=request.width_mode,
        executor=executor,
        probe=probe,
        runner=runner,
    )
    try:
        submissions, skipped = submit_rows(records, context)
        summary = summarize_submissions(submissions, skipped)
    finally:
        executor.shutdown(wait=True)

    LOGGER.info(
        "render_caption_batch.summary: processed=%d failed=%d skipped=%d",
        summary.processed,
        summary.failed,
        summary.skipped,
    )
    return summary


def parse_args(argv: Sequence[str]) -> BatchRequest:
    """Parse CLI arguments into a BatchRequest."""
    parser = argparse.ArgumentParser(prog="render_caption_batch.py", add_help=True)
    parser.add_argument("--input-csv", default="data.csv")
    parser.add_argument("--base-dir", default=".")
    parser.add_argument("--video-dir", default=None)
    parser.add_argument("--audio-dir", default=None)
    parser.add_argument("--output-dir", default=None)
    parser.add_argument("--styles-file", default=None)
    parser.add_argument("--font-file", default=None)
    parser.add_argument("--width-estimate", default=WidthEstimate.JOINED.value)
    parsed = parser.parse_args(argv)

    width_mode = parse_width_estimate(parsed.width_estimate)
    if parsed.font_file is not None and not parsed.font_file.strip():
        raise RenderValidationError(INVALID_STYLE_CODE, "font-file must be non-empty")
    style_overrides = load_styles_file(parsed.styles_file) if parsed.styles_file else None
    registry = build_style_registry(style_overrides, parsed.font_file)

    base_dir = parsed.base_dir
    return BatchRequest(
        input_csv=parsed.input_csv,
        video_dir=parsed.video_dir or os.path.join(base_dir, "video"),
        audio_dir=parsed.audio_dir or os.path.join(base_dir, "audio"),
        output_dir=parsed.output_dir or os.path.join(base_dir, "output"),
        registry=registry,
        width_mode=width_mode,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        request = parse_args(sys.argv[1:] if argv is None else argv)
        ensure_ffmpeg_available()
        check_font_files(request.registry)
        run_batch(request)
        return 0
    except RenderValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_caption_batch.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
