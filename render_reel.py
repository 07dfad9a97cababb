#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10"
# ]
# ///
"""Plan a four-slide vertical reel: caption timing, subtitles and ffmpeg graph."""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence, Tuple

from PIL import Image

from domain.reel_video import (
    AUDIO_FILE_CODE,
    IMAGE_FILE_CODE,
    INPUT_FILE_CODE,
    INVALID_CONFIG_CODE,
    InputValidationError,
    ReelRequest,
    parse_reel_request,
    round_half_up,
)
from service.render_plan import RenderPlan, plan_reel, render_plan_to_payload
from service.subtitle_cues import build_subtitle_document

LOGGER = logging.getLogger("render_reel")

LOG_LEVEL_ENV = "RENDER_REEL_LOG_LEVEL"
FFPROBE_PATH_ENV = "RENDER_REEL_FFPROBE_PATH"

FFPROBE_NOT_FOUND_CODE = "render_reel.ffprobe.not_found"
FFPROBE_EXEC_CODE = "render_reel.ffprobe.exec_error"
OUTPUT_FILE_CODE = "render_reel.output.file_error"

H264_CODEC = "libx264"
H264_PIXEL_FORMAT = "yuv420p"
H264_PROFILE = "high"
H264_LEVEL = "4.1"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
XFADE_TRANSITION = "fade"
FILTER_OPTION_SPECIALS = "\\:'"
FILTER_GRAPH_SPECIALS = "\\'[],;"


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class CompositorInputs:
    """Local media files consumed by the compositor."""

    slides: Tuple[str, ...]
    end_card: str
    audio_track: str
    secondary_audio: str | None


@dataclass(frozen=True)
class CliRequest:
    """Parsed CLI request and runtime options."""

    request: ReelRequest
    request_dir: Path
    audio_duration_ms: float | None
    audio_track: str | None
    secondary_audio_usable: bool
    secondary_audio: str | None
    subtitle_file: str
    output_video_file: str
    emit_plan: bool
    emit_compositor_args: bool


def configure_logging() -> None:
    """Configure logging for CLI output."""
    level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO), format="%(message)s"
    )


def load_request_file(file_path: str) -> Any:
    """Read and decode a JSON request file."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise InputValidationError(
            INPUT_FILE_CODE, f"request file not found: {file_path}"
        ) from exc

    try:
        return json.loads(file_bytes.decode("utf-8", errors="strict"))
    except UnicodeDecodeError as exc:
        raise InputValidationError(
            INPUT_FILE_CODE,
            f"request file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc
    except json.JSONDecodeError as exc:
        raise InputValidationError(
            INPUT_FILE_CODE, f"request file is not valid JSON: {exc.msg}"
        ) from exc


def resolve_cli_path(path_value: str | None) -> str | None:
    """Resolve a command-line path against the current directory."""
    if not path_value:
        return path_value
    return str(Path(path_value).resolve())


def resolve_asset_path(request_dir: Path, asset: str) -> str:
    """Resolve a request asset path relative to the request file."""
    asset_path = Path(asset)
    if asset_path.is_absolute():
        return str(asset_path)
    return str(request_dir / asset_path)


def verify_image_file(image_path: str) -> Tuple[int, int]:
    """Check that an image decodes and return its size."""
    try:
        with Image.open(image_path) as image:
            size = image.size
            image.verify()
    except FileNotFoundError as exc:
        raise InputValidationError(
            IMAGE_FILE_CODE, f"image not found: {image_path}"
        ) from exc
    except Exception as exc:
        raise InputValidationError(
            IMAGE_FILE_CODE, f"failed to read image: {image_path}"
        ) from exc
    return size


def resolve_ffprobe_path() -> str:
    """Locate an executable ffprobe."""
    configured = os.environ.get(FFPROBE_PATH_ENV, "").strip()
    ffprobe_path = shutil.which(configured or "ffprobe")
    if not ffprobe_path:
        raise RenderPipelineError(FFPROBE_NOT_FOUND_CODE, "ffprobe not on PATH")
    try:
        subprocess.run(
            [ffprobe_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except Exception as exc:
        raise RenderPipelineError(
            FFPROBE_EXEC_CODE, "ffprobe exists but could not be executed"
        ) from exc
    return ffprobe_path


def get_audio_duration_ms(audio_path: str) -> int | None:
    """Return the audio duration in milliseconds, or None when it is unknown."""
    if not os.path.isfile(audio_path):
        raise InputValidationError(
            AUDIO_FILE_CODE, f"audio track not found: {audio_path}"
        )
    result = subprocess.run(
        [
            resolve_ffprobe_path(),
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            audio_path,
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        LOGGER.warning(
            "render_reel.ffprobe.failed: %s; duration unknown", result.stderr.strip()
        )
        return None
    try:
        duration_seconds = float(result.stdout.strip())
    except ValueError:
        LOGGER.warning("render_reel.ffprobe.unparsable: %r", result.stdout.strip())
        return None
    if not math.isfinite(duration_seconds) or duration_seconds <= 0:
        return None
    return round_half_up(duration_seconds * 1000)


def format_seconds(milliseconds: int) -> str:
    """Format milliseconds as ffmpeg seconds with millisecond precision."""
    return f"{milliseconds / 1000:.3f}"


def escape_filter_path(path_value: str) -> str:
    """Escape a file path for use as a filter option inside a filter graph.

    Characters special to the option parser are escaped first, then the
    result is escaped again for the graph parser, which unescapes it once.
    """
    option_level = "".join(
        "\\" + char if char in FILTER_OPTION_SPECIALS else char for char in path_value
    )
    return "".join(
        "\\" + char if char in FILTER_GRAPH_SPECIALS else char for char in option_level
    )


def build_cover_crop(plan: RenderPlan) -> str:
    """Scale and crop a still image to fill the output frame."""
    frame = plan.frame
    return (
        f"scale={frame.width}:{frame.height}:force_original_aspect_ratio=increase,"
        f"crop={frame.width}:{frame.height},setsar=1,fps={frame.fps},format=yuv420p"
    )


def build_filter_graph(plan: RenderPlan, subtitle_path: str) -> str:
    """Translate a render plan into an ffmpeg filter_complex graph."""
    cover_crop = build_cover_crop(plan)
    slide_count = len(plan.segments)
    end_card_input = slide_count
    audio_input = slide_count + 1
    crossfade = f"{plan.crossfade_ms / 1000:.2f}"

    parts = [f"[{index}:v]{cover_crop}[v{index}]" for index in range(slide_count + 1)]
    parts.extend(
        f"[v{segment.index}]trim=duration={format_seconds(segment.duration_ms)},"
        f"setpts=PTS-STARTPTS[s{segment.index}]"
        for segment in plan.segments
    )

    previous = "s0"
    for transition, offset in enumerate(plan.crossfade_offsets_seconds, start=1):
        label = "slideshow" if transition == slide_count - 1 else f"x{transition}"
        parts.append(
            f"[{previous}][s{transition}]xfade=transition={XFADE_TRANSITION}:"
            f"duration={crossfade}:offset={offset:.3f}[{label}]"
        )
        previous = label

    parts.extend(
        [
            f"[slideshow]ass={escape_filter_path(subtitle_path)}[subbed]",
            f"[v{end_card_input}]trim=duration="
            f"{format_seconds(plan.end_card_duration_ms)},setpts=PTS-STARTPTS[endcard]",
            "[subbed][endcard]concat=n=2:v=1:a=0[vout]",
        ]
    )

    mix = plan.audio_mix
    total = format_seconds(mix.output_trim_ms)
    parts.append(
        f"[{audio_input}:a]asetpts=PTS-STARTPTS,"
        f"atrim=0:{format_seconds(mix.slideshow_trim_ms)},"
        f"apad=pad_dur={format_seconds(mix.pad_ms)},"
        f"atrim=0:{total}[amain]"
    )
    if mix.secondary is None:
        parts.append(f"[amain]atrim=0:{total}[aout]")
    else:
        secondary = mix.secondary
        normalize = 1 if mix.mix_normalize else 0
        parts.extend(
            [
                f"[{audio_input + 1}:a]asetpts=PTS-STARTPTS,"
                f"afade=t=in:st=0:d={secondary.fade_in_ms / 1000:g},"
                f"volume={secondary.gain:g},"
                f"adelay={secondary.delay_ms}|{secondary.delay_ms}[asecondary]",
                f"[amain][asecondary]amix=inputs=2:duration={mix.mix_duration}:"
                f"normalize={normalize}[amixed]",
                f"[amixed]atrim=0:{total}[aout]",
            ]
        )
    return ";".join(parts)


def build_compositor_args(
    plan: RenderPlan,
    inputs: CompositorInputs,
    subtitle_path: str,
    output_path: str,
) -> Tuple[str, ...]:
    """Build the ffmpeg argument vector for a render plan."""
    if len(inputs.slides) != len(plan.segments):
        raise InputValidationError(
            INVALID_CONFIG_CODE, "slide inputs do not match plan segments"
        )
    if plan.audio_mix.secondary is not None and not inputs.secondary_audio:
        raise InputValidationError(
            INVALID_CONFIG_CODE, "plan mixes secondary audio but none was supplied"
        )

    args = ["ffmpeg", "-y", "-hide_banner", "-loglevel", "error", "-nostdin"]
    for slide, segment in zip(inputs.slides, plan.segments):
        args.extend(
            ["-loop", "1", "-t", format_seconds(segment.duration_ms), "-i", slide]
        )
    args.extend(
        [
            "-loop",
            "1",
            "-t",
            format_seconds(plan.end_card_duration_ms),
            "-i",
            inputs.end_card,
            "-i",
            inputs.audio_track,
        ]
    )
    if plan.audio_mix.secondary is not None:
        args.extend(["-i", inputs.secondary_audio])

    args.extend(
        [
            "-filter_complex",
            build_filter_graph(plan, subtitle_path),
            "-map",
            "[vout]",
            "-map",
            "[aout]",
            "-r",
            str(plan.frame.fps),
            "-c:v",
            H264_CODEC,
            "-pix_fmt",
            H264_PIXEL_FORMAT,
            "-profile:v",
            H264_PROFILE,
            "-level",
            H264_LEVEL,
            "-c:a",
            AUDIO_CODEC,
            "-b:a",
            AUDIO_BITRATE,
            output_path,
        ]
    )
    return tuple(args)


def write_subtitle_file(file_path: str, document: str) -> None:
    """Write the ASS document to disk."""
    try:
        with open(file_path, "w", encoding="utf-8") as file_handle:
            file_handle.write(document)
    except OSError as exc:
        raise RenderPipelineError(
            OUTPUT_FILE_CODE, f"failed to write subtitle file: {file_path}"
        ) from exc


def parse_args(argv: Sequence[str]) -> CliRequest:
    """Parse CLI arguments into a CliRequest."""
    parser = argparse.ArgumentParser(prog="render_reel.py", add_help=True)
    parser.add_argument(
        "--request-file",
        required=True,
        help="request JSON; images and end card resolve relative to it",
    )
    parser.add_argument("--subtitle-file", default="subs.ass")
    parser.add_argument("--output-video-file", default="out.mp4")
    duration_group = parser.add_mutually_exclusive_group()
    duration_group.add_argument("--audio-duration-ms", type=float, default=None)
    duration_group.add_argument(
        "--audio-track",
        default=None,
        help="primary audio file, relative to the current directory",
    )
    parser.add_argument("--secondary-audio-usable", action="store_true")
    parser.add_argument(
        "--end-card-audio",
        default=None,
        help="end card audio file, relative to the current directory",
    )
    parser.add_argument("--emit-plan", action="store_true")
    parser.add_argument("--emit-compositor-args", action="store_true")

    parsed = parser.parse_args(argv)
    request_dir = Path(parsed.request_file).resolve().parent
    request = parse_reel_request(load_request_file(parsed.request_file))

    if parsed.secondary_audio_usable and parsed.emit_compositor_args:
        if not parsed.end_card_audio:
            raise InputValidationError(
                INVALID_CONFIG_CODE,
                "emit-compositor-args with secondary-audio-usable requires end-card-audio",
            )
    if parsed.emit_compositor_args and not parsed.audio_track:
        raise InputValidationError(
            INVALID_CONFIG_CODE, "emit-compositor-args requires audio-track"
        )

    return CliRequest(
        request=request,
        request_dir=request_dir,
        audio_duration_ms=parsed.audio_duration_ms,
        audio_track=resolve_cli_path(parsed.audio_track),
        secondary_audio_usable=parsed.secondary_audio_usable,
        secondary_audio=resolve_cli_path(parsed.end_card_audio),
        subtitle_file=parsed.subtitle_file,
        output_video_file=parsed.output_video_file,
        emit_plan=parsed.emit_plan,
        emit_compositor_args=parsed.emit_compositor_args,
    )


def main() -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        cli_request = parse_args(sys.argv[1:])
        request = cli_request.request
        slides = tuple(
            resolve_asset_path(cli_request.request_dir, image) for image in request.images
        )
        end_card = resolve_asset_path(cli_request.request_dir, request.end_card)
        for image_path in (*slides, end_card):
            width, height = verify_image_file(image_path)
            LOGGER.debug("render_reel.input.image: %s %dx%d", image_path, width, height)

        audio_duration_ms = cli_request.audio_duration_ms
        if cli_request.audio_track:
            audio_duration_ms = get_audio_duration_ms(cli_request.audio_track)
        if audio_duration_ms is None:
            LOGGER.info("render_reel.input.audio_duration: unknown; using caption timing")

        plan = plan_reel(
            request, audio_duration_ms, cli_request.secondary_audio_usable
        )
        write_subtitle_file(
            cli_request.subtitle_file,
            build_subtitle_document(plan.subtitle_cues, plan.frame),
        )
        LOGGER.info(
            "render_reel.plan: %d cue(s), slideshow %dms, total %dms",
            len(plan.subtitle_cues),
            plan.slideshow_duration_ms,
            plan.total_duration_ms,
        )

        payload: dict[str, Any] = {}
        if cli_request.emit_plan:
            payload["plan"] = render_plan_to_payload(plan)
        if cli_request.emit_compositor_args:
            inputs = CompositorInputs(
                slides=slides,
                end_card=end_card,
                audio_track=cli_request.audio_track or "",
                secondary_audio=cli_request.secondary_audio,
            )
            payload["compositor_args"] = list(
                build_compositor_args(
                    plan,
                    inputs,
                    cli_request.subtitle_file,
                    cli_request.output_video_file,
                )
            )
        if payload:
            sys.stdout.write(json.dumps(payload, ensure_ascii=True))
        return 0
    except InputValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_reel.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
