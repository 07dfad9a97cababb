"""Render plan construction for render_reel."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence, Tuple

from domain.reel_video import (
    INVALID_CONFIG_CODE,
    SLIDE_COUNT,
    FrameSpec,
    InputValidationError,
    ReelRequest,
    Segment,
    clamp_end_card_duration,
)
from service.caption_timeline import (
    normalize_captions,
    plan_segments,
    resolve_fallback_duration_ms,
)
from service.subtitle_cues import SubtitleCue, build_subtitle_cues

CROSSFADE_MS = 300
MIN_OFFSET_SECONDS = 0.001
AUDIO_PAD_MARGIN_MS = 2000
SECONDARY_LEAD_IN_MS = 200
SECONDARY_FADE_IN_MS = 120
SECONDARY_GAIN = 1.35
MIX_DURATION = "longest"


@dataclass(frozen=True)
class SecondaryAudio:
    """End card audio placed under the closing image."""

    delay_ms: int
    fade_in_ms: int
    gain: float


@dataclass(frozen=True)
class AudioMix:
    """Trim, pad and mix instructions for the audio tracks."""

    slideshow_trim_ms: int
    pad_ms: int
    output_trim_ms: int
    secondary: SecondaryAudio | None
    mix_duration: str = MIX_DURATION
    mix_normalize: bool = False


@dataclass(frozen=True)
class RenderPlan:
    """Timing, layout and mix handed to the compositor."""

    frame: FrameSpec
    segments: Tuple[Segment, ...]
    crossfade_ms: int
    crossfade_offsets_seconds: Tuple[float, ...]
    end_card_duration_ms: int
    slideshow_duration_ms: int
    total_duration_ms: int
    subtitle_cues: Tuple[SubtitleCue, ...]
    audio_mix: AudioMix
    # Caption timeline length; informational, the compositor works from segments.
    timeline_duration_ms: int

    def __post_init__(self) -> None:
        if len(self.segments) != SLIDE_COUNT:
            raise InputValidationError(
                INVALID_CONFIG_CODE, f"render plan needs {SLIDE_COUNT} segments"
            )
        if len(self.crossfade_offsets_seconds) != SLIDE_COUNT - 1:
            raise InputValidationError(
                INVALID_CONFIG_CODE, "render plan needs one offset per transition"
            )
        if self.end_card_duration_ms < 0:
            raise InputValidationError(
                INVALID_CONFIG_CODE, "end card duration must be non-negative"
            )
        if self.total_duration_ms != self.slideshow_duration_ms + self.end_card_duration_ms:
            raise InputValidationError(
                INVALID_CONFIG_CODE, "total duration must cover slideshow and end card"
            )


def guard_segments(segments: Sequence[Segment], crossfade_ms: int) -> Tuple[Segment, ...]:
    """Lengthen slides that fade forward so no transition starts before zero."""
    if len(segments) != SLIDE_COUNT:
        raise InputValidationError(
            INVALID_CONFIG_CODE, f"expected {SLIDE_COUNT} segments, got {len(segments)}"
        )
    last_index = len(segments) - 1
    return tuple(
        Segment(
            index=index,
            duration_ms=(
                max(segment.duration_ms, 1)
                if index == last_index
                else max(segment.duration_ms, crossfade_ms + 1)
            ),
        )
        for index, segment in enumerate(segments)
    )


def compute_crossfade_offsets(
    segments: Sequence[Segment], crossfade_ms: int
) -> Tuple[float, ...]:
    """Compute xfade offsets in seconds, net of overlap used by earlier fades."""
    offsets: list[float] = []
    elapsed_ms = 0
    for transition, segment in enumerate(segments[:-1], start=1):
        elapsed_ms += segment.duration_ms
        offsets.append(
            max(MIN_OFFSET_SECONDS, (elapsed_ms - transition * crossfade_ms) / 1000.0)
        )
    return tuple(offsets)


def build_audio_mix(
    slideshow_ms: int, end_card_ms: int, secondary_audio_usable: bool
) -> AudioMix:
    """Describe how the primary track and optional end card audio combine."""
    secondary = None
    if secondary_audio_usable:
        secondary = SecondaryAudio(
            delay_ms=slideshow_ms + SECONDARY_LEAD_IN_MS,
            fade_in_ms=SECONDARY_FADE_IN_MS,
            gain=SECONDARY_GAIN,
        )
    return AudioMix(
        slideshow_trim_ms=slideshow_ms,
        pad_ms=end_card_ms + AUDIO_PAD_MARGIN_MS,
        output_trim_ms=slideshow_ms + end_card_ms,
        secondary=secondary,
    )


def build_render_plan(
    segments: Sequence[Segment],
    end_card_duration_ms: Any,
    secondary_audio_usable: bool,
    frame: FrameSpec,
    subtitle_cues: Sequence[SubtitleCue] = (),
    timeline_duration_ms: int | None = None,
) -> RenderPlan:
    """Combine slide segments, crossfades and audio mix into a render plan."""
    guarded = guard_segments(segments, CROSSFADE_MS)
    end_card_ms = clamp_end_card_duration(end_card_duration_ms)
    slideshow_ms = sum(segment.duration_ms for segment in guarded)
    return RenderPlan(
        frame=frame,
        segments=guarded,
        crossfade_ms=CROSSFADE_MS,
        crossfade_offsets_seconds=compute_crossfade_offsets(guarded, CROSSFADE_MS),
        end_card_duration_ms=end_card_ms,
        slideshow_duration_ms=slideshow_ms,
        total_duration_ms=slideshow_ms + end_card_ms,
        subtitle_cues=tuple(subtitle_cues),
        audio_mix=build_audio_mix(slideshow_ms, end_card_ms, secondary_audio_usable),
        timeline_duration_ms=(
            slideshow_ms if timeline_duration_ms is None else timeline_duration_ms
        ),
    )


def plan_reel(
    request: ReelRequest,
    audio_duration_ms: float | None,
    secondary_audio_usable: bool,
) -> RenderPlan:
    """Run caption scaling, segment planning and cue layout for a request."""
    captions = normalize_captions(request.captions, audio_duration_ms)
    segment_plan = plan_segments(
        captions, resolve_fallback_duration_ms(audio_duration_ms, captions)
    )
    return build_render_plan(
        segments=segment_plan.segments,
        end_card_duration_ms=request.end_card_duration_ms,
        secondary_audio_usable=secondary_audio_usable,
        frame=request.frame,
        subtitle_cues=build_subtitle_cues(captions, request.frame),
        timeline_duration_ms=segment_plan.timeline_duration_ms,
    )


def render_plan_to_payload(plan: RenderPlan) -> dict[str, Any]:
    """Convert a render plan into a JSON-serializable payload."""
    secondary = plan.audio_mix.secondary
    return {
        "frame": {
            "width": plan.frame.width,
            "height": plan.frame.height,
            "fps": plan.frame.fps,
        },
        "segments": [
            {"index": segment.index, "duration_ms": segment.duration_ms}
            for segment in plan.segments
        ],
        "crossfade_ms": plan.crossfade_ms,
        "crossfade_offsets_seconds": list(plan.crossfade_offsets_seconds),
        "end_card_duration_ms": plan.end_card_duration_ms,
        "slideshow_duration_ms": plan.slideshow_duration_ms,
        "total_duration_ms": plan.total_duration_ms,
        "timeline_duration_ms": plan.timeline_duration_ms,
        "subtitle_cues": [
            {
                "style": cue.style.value,
                "start_ms": cue.start_ms,
                "end_ms": cue.end_ms,
                "start": cue.start_timestamp,
                "end": cue.end_timestamp,
                "text": cue.wrapped_text,
                "override": cue.anim.override_tag(),
            }
            for cue in plan.subtitle_cues
        ],
        "audio_mix": {
            "slideshow_trim_ms": plan.audio_mix.slideshow_trim_ms,
            "pad_ms": plan.audio_mix.pad_ms,
            "output_trim_ms": plan.audio_mix.output_trim_ms,
            "mix_duration": plan.audio_mix.mix_duration,
            "mix_normalize": plan.audio_mix.mix_normalize,
            "secondary": (
                None
                if secondary is None
                else {
                    "delay_ms": secondary.delay_ms,
                    "fade_in_ms": secondary.fade_in_ms,
                    "gain": secondary.gain,
                }
            ),
        },
    }
