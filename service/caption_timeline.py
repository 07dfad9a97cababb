"""Caption rescaling and slide segment planning for render_reel."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Sequence, Tuple

from domain.reel_video import (
    SLIDE_COUNT,
    RawCaption,
    ScaledCaption,
    Segment,
    round_half_up,
)

LOGGER = logging.getLogger("render_reel")

DEFAULT_MIN_CAPTION_MS = 600
LOWEST_MIN_CAPTION_MS = 80
DEFAULT_TIMELINE_MS = 15000
NARRATIVE_BEAT_COUNT = 7
# 1-indexed caption positions whose end times close each slide.
SLIDE_BOUNDARY_BEATS = (1, 3, 5, 7)


@dataclass(frozen=True)
class SegmentPlan:
    """Four slide segments and the timeline duration they were derived from."""

    segments: Tuple[Segment, ...]
    timeline_duration_ms: int

    @property
    def slideshow_duration_ms(self) -> int:
        return sum(segment.duration_ms for segment in self.segments)


def resolve_target_ms(target_ms: float | None) -> int | None:
    """Return the target duration in whole milliseconds, or None when unknown."""
    if target_ms is None:
        return None
    if not math.isfinite(target_ms) or target_ms <= 0:
        return None
    target = round_half_up(target_ms)
    return target if target > 0 else None


def filter_captions(captions: Sequence[RawCaption]) -> list[tuple[float, str]]:
    """Drop captions with unusable timing or blank text."""
    usable: list[tuple[float, str]] = []
    for caption in captions:
        text = caption.text.strip()
        duration = caption.end_ms - caption.start_ms
        if (
            not math.isfinite(caption.start_ms)
            or not math.isfinite(caption.end_ms)
            or not math.isfinite(duration)
            or duration <= 0
            or not text
        ):
            continue
        usable.append((duration, text))
    dropped = len(captions) - len(usable)
    if dropped:
        LOGGER.debug("render_reel.captions.filtered: dropped %d caption(s)", dropped)
    return usable


def compute_min_caption_ms(target_ms: int, caption_count: int) -> int:
    """Compute the soft per-caption floor for a timeline."""
    min_caption_ms = DEFAULT_MIN_CAPTION_MS
    max_possible_min = target_ms // caption_count
    if max_possible_min <= 0:
        return LOWEST_MIN_CAPTION_MS
    if min_caption_ms > max_possible_min:
        min_caption_ms = max(LOWEST_MIN_CAPTION_MS, max_possible_min)
    return min_caption_ms


def reduce_overflow(
    durations: Sequence[int], overflow: int, min_caption_ms: int
) -> Tuple[Tuple[int, ...], int]:
    """Shave an overflow off the durations, longest captions first.

    Returns the reduced durations and any overflow left over once every
    caption is down to a single millisecond.
    """
    reduced = list(durations)
    longest_first = sorted(
        range(len(reduced)), key=lambda index: (-reduced[index], index)
    )
    for index in longest_first:
        if overflow <= 0:
            break
        reduce_by = min(max(0, reduced[index] - min_caption_ms), overflow)
        reduced[index] -= reduce_by
        overflow -= reduce_by

    for index in range(len(reduced) - 1, -1, -1):
        if overflow <= 0:
            break
        reduce_by = min(max(0, reduced[index] - 1), overflow)
        reduced[index] -= reduce_by
        overflow -= reduce_by

    return tuple(reduced), overflow


def lay_out_captions(
    durations: Sequence[int], texts: Sequence[str], target_ms: int | None
) -> Tuple[ScaledCaption, ...]:
    """Place durations back-to-back from zero, pinning the last end to the target."""
    scaled: list[ScaledCaption] = []
    cursor = 0
    last_index = len(durations) - 1
    for index, (duration, text) in enumerate(zip(durations, texts)):
        end_ms = cursor + duration
        if index == last_index and target_ms is not None:
            end_ms = max(target_ms, cursor + 1)
        scaled.append(ScaledCaption(start_ms=cursor, end_ms=end_ms, text=text))
        cursor = end_ms
    return tuple(scaled)


def normalize_captions(
    captions: Sequence[RawCaption], target_ms: float | None
) -> Tuple[ScaledCaption, ...]:
    """Rescale captions so they exactly fill the target duration.

    With no usable target the captions are laid back-to-back at their
    original lengths. Invalid entries are dropped silently and an empty
    tuple is returned when nothing usable remains.
    """
    usable = filter_captions(captions)
    if not usable:
        return ()

    texts = [text for _, text in usable]
    base_durations = [max(1, round_half_up(duration)) for duration, _ in usable]
    target = resolve_target_ms(target_ms)
    if target is None:
        return lay_out_captions(base_durations, texts, None)

    total = sum(base_durations)
    if total <= 0:
        return ()

    factor = target / total
    min_caption_ms = compute_min_caption_ms(target, len(base_durations))
    durations: Tuple[int, ...] = tuple(
        max(min_caption_ms, round_half_up(duration * factor))
        for duration in base_durations
    )

    scaled_total = sum(durations)
    if scaled_total > target:
        durations, residual = reduce_overflow(
            durations, scaled_total - target, min_caption_ms
        )
        if residual > 0:
            LOGGER.warning(
                "render_reel.captions.overrun: %d caption(s) cannot fit %dms; "
                "timeline overruns by %dms",
                len(durations),
                target,
                residual,
            )
    elif scaled_total < target:
        durations = durations[:-1] + (durations[-1] + target - scaled_total,)

    return lay_out_captions(durations, texts, target)


def resolve_fallback_duration_ms(
    target_ms: float | None, captions: Sequence[ScaledCaption]
) -> int:
    """Pick the timeline length used when captions cannot drive the slides."""
    target = resolve_target_ms(target_ms)
    if target is not None:
        return target
    if captions and captions[-1].end_ms > 0:
        return captions[-1].end_ms
    return DEFAULT_TIMELINE_MS


def plan_segments(
    captions: Sequence[ScaledCaption], fallback_duration_ms: int
) -> SegmentPlan:
    """Derive the four slide durations from the normalized captions."""
    if len(captions) >= NARRATIVE_BEAT_COUNT:
        boundaries = [captions[beat - 1].end_ms for beat in SLIDE_BOUNDARY_BEATS]
        durations = [boundaries[0]] + [
            boundaries[index] - boundaries[index - 1]
            for index in range(1, SLIDE_COUNT)
        ]
        return SegmentPlan(
            segments=tuple(
                Segment(index=index, duration_ms=max(1, duration))
                for index, duration in enumerate(durations)
            ),
            timeline_duration_ms=max(fallback_duration_ms, boundaries[-1]),
        )

    part = fallback_duration_ms // SLIDE_COUNT
    leading = [max(1, part) for _ in range(SLIDE_COUNT - 1)]
    last = max(1, fallback_duration_ms - sum(leading))
    return SegmentPlan(
        segments=tuple(
            Segment(index=index, duration_ms=duration)
            for index, duration in enumerate(leading + [last])
        ),
        timeline_duration_ms=fallback_duration_ms,
    )
