"""Subtitle cue layout and ASS document rendering for render_reel."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Sequence, Tuple

from domain.reel_video import CueStyle, FrameSpec, ScaledCaption, round_half_up

ASS_LINE_BREAK = "\\N"
WHITESPACE_PATTERN = re.compile(r"\s+")

TITLE_MAX_CHARS_PER_LINE = 12
TITLE_MAX_LINES = 6
CAPTION_MAX_CHARS_PER_LINE = 18
CAPTION_MAX_LINES = 5

SAFE_BOTTOM_RATIO = 0.32
SLIDE_OFFSET_RATIO = 0.035
SLIDE_OFFSET_MIN = 20
SLIDE_IN_MS = 220
FADE_IN_MS = 120
FADE_OUT_MS = 120

FONT_NAME = "DejaVu Sans"
FONT_SIZE = 100
OUTLINE_WIDTH = 3
ALIGNMENT_BOTTOM_CENTER = 5
MARGIN_LR_RATIO = 0.10
MARGIN_V = 0
PRIMARY_COLOUR = "&H00FFFFFF"
OUTLINE_COLOUR = "&H00000000"
STYLE_FORMAT = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, "
    "OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, "
    "ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, "
    "MarginR, MarginV, Encoding"
)
EVENT_FORMAT = (
    "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"
)

WRAP_LIMITS = {
    CueStyle.TITLE: (TITLE_MAX_CHARS_PER_LINE, TITLE_MAX_LINES),
    CueStyle.CAPTION: (CAPTION_MAX_CHARS_PER_LINE, CAPTION_MAX_LINES),
}


@dataclass(frozen=True)
class CueAnimation:
    """Slide-up and fade applied relative to a cue's own start."""

    x: int
    y_from: int
    y_to: int
    slide_ms: int
    fade_in_ms: int
    fade_out_ms: int

    def override_tag(self) -> str:
        """Render the inline override block prefixed to the cue text."""
        return (
            f"{{\\move({self.x},{self.y_from},{self.x},{self.y_to},0,{self.slide_ms})"
            f"\\fad({self.fade_in_ms},{self.fade_out_ms})}}"
        )


@dataclass(frozen=True)
class SubtitleCue:
    """Styled, timed and wrapped subtitle text."""

    style: CueStyle
    start_ms: int
    end_ms: int
    wrapped_text: str
    anim: CueAnimation

    @property
    def start_timestamp(self) -> str:
        return format_ass_timestamp(self.start_ms)

    @property
    def end_timestamp(self) -> str:
        return format_ass_timestamp(self.end_ms)


def escape_ass_text(text_value: str) -> str:
    """Collapse whitespace and escape ASS override characters."""
    collapsed = WHITESPACE_PATTERN.sub(" ", text_value).strip()
    return collapsed.replace("\\", "\\\\").replace("{", "\\{").replace("}", "\\}")


def wrap_by_chars(text_value: str, max_chars_per_line: int, max_lines: int) -> str:
    """Greedy word wrap; the last allowed line takes every remaining word."""
    collapsed = WHITESPACE_PATTERN.sub(" ", text_value).strip()
    if not collapsed:
        return ""

    lines: list[str] = []
    current = ""
    for word in collapsed.split(" "):
        if not current:
            current = word
            continue
        candidate = f"{current} {word}"
        if len(candidate) <= max_chars_per_line or len(lines) >= max_lines - 1:
            current = candidate
            continue
        lines.append(current)
        current = word
    lines.append(current)
    return ASS_LINE_BREAK.join(lines)


def format_ass_timestamp(milliseconds: int) -> str:
    """Format milliseconds as H:MM:SS.CC, truncating to centiseconds."""
    centiseconds = max(0, int(milliseconds)) // 10
    hours, remainder = divmod(centiseconds, 360000)
    minutes, remainder = divmod(remainder, 6000)
    seconds, centis = divmod(remainder, 100)
    return f"{hours}:{minutes:02d}:{seconds:02d}.{centis:02d}"


def build_cue_animation(frame: FrameSpec) -> CueAnimation:
    """Anchor cues above the platform UI safe area and slide them up into place."""
    safe_bottom = round_half_up(frame.height * SAFE_BOTTOM_RATIO)
    anchor_y = frame.height - safe_bottom
    slide_offset = max(SLIDE_OFFSET_MIN, round_half_up(frame.height * SLIDE_OFFSET_RATIO))
    return CueAnimation(
        x=round_half_up(frame.width / 2),
        y_from=anchor_y + slide_offset,
        y_to=anchor_y,
        slide_ms=SLIDE_IN_MS,
        fade_in_ms=FADE_IN_MS,
        fade_out_ms=FADE_OUT_MS,
    )


def build_subtitle_cues(
    captions: Sequence[ScaledCaption], frame: FrameSpec
) -> Tuple[SubtitleCue, ...]:
    """Build one cue per caption; the first cue uses the Title style."""
    animation = build_cue_animation(frame)
    cues: list[SubtitleCue] = []
    for index, caption in enumerate(captions):
        style = CueStyle.TITLE if index == 0 else CueStyle.CAPTION
        max_chars, max_lines = WRAP_LIMITS[style]
        cues.append(
            SubtitleCue(
                style=style,
                start_ms=caption.start_ms,
                end_ms=caption.end_ms,
                wrapped_text=wrap_by_chars(
                    escape_ass_text(caption.text), max_chars, max_lines
                ),
                anim=animation,
            )
        )
    return tuple(cues)


def build_style_line(style: CueStyle, margin_lr: int) -> str:
    """Render a V4+ style line."""
    return (
        f"Style: {style.value},{FONT_NAME},{FONT_SIZE},"
        f"{PRIMARY_COLOUR},{PRIMARY_COLOUR},{OUTLINE_COLOUR},{OUTLINE_COLOUR},"
        "-1,0,0,0,100,100,0,0,"
        f"1,{OUTLINE_WIDTH},0,{ALIGNMENT_BOTTOM_CENTER},"
        f"{margin_lr},{margin_lr},{MARGIN_V},1"
    )


def build_dialogue_line(cue: SubtitleCue) -> str:
    """Render a single Dialogue event."""
    return (
        f"Dialogue: 0,{cue.start_timestamp},{cue.end_timestamp},{cue.style.value},"
        f",0,0,0,,{cue.anim.override_tag()}{cue.wrapped_text}"
    )


def build_subtitle_document(cues: Sequence[SubtitleCue], frame: FrameSpec) -> str:
    """Render the complete ASS document for a set of cues."""
    margin_lr = round_half_up(frame.width * MARGIN_LR_RATIO)
    lines = [
        "[Script Info]",
        "ScriptType: v4.00+",
        f"PlayResX: {frame.width}",
        f"PlayResY: {frame.height}",
        "WrapStyle: 2",
        "ScaledBorderAndShadow: yes",
        "",
        "[V4+ Styles]",
        STYLE_FORMAT,
        build_style_line(CueStyle.TITLE, margin_lr),
        build_style_line(CueStyle.CAPTION, margin_lr),
        "",
        "[Events]",
        EVENT_FORMAT,
    ]
    lines.extend(build_dialogue_line(cue) for cue in cues)
    return "\n".join(lines) + "\n"
