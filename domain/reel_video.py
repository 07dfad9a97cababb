"""Domain types and parsing for render_reel."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
from typing import Any, Mapping, Tuple

INVALID_REQUEST_CODE = "render_reel.input.invalid_request"
INVALID_CONFIG_CODE = "render_reel.input.invalid_config"
INVALID_IMAGES_CODE = "render_reel.input.invalid_images"
INVALID_CAPTIONS_CODE = "render_reel.input.invalid_captions"
INVALID_FRAME_CODE = "render_reel.input.invalid_frame"
INPUT_FILE_CODE = "render_reel.input.file_error"
IMAGE_FILE_CODE = "render_reel.input.image_file"
AUDIO_FILE_CODE = "render_reel.input.audio_track"

SLIDE_COUNT = 4
DEFAULT_WIDTH = 1080
DEFAULT_HEIGHT = 1920
DEFAULT_FPS = 30
DEFAULT_END_CARD_DURATION_MS = 4000


class InputValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class CueStyle(str, Enum):
    """Named subtitle styles declared in the subtitle header."""

    TITLE = "Title"
    CAPTION = "Caption"


@dataclass(frozen=True)
class FrameSpec:
    """Output frame geometry and rate."""

    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    fps: int = DEFAULT_FPS

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise InputValidationError(
                INVALID_FRAME_CODE, "width and height must be positive"
            )
        if self.fps <= 0:
            raise InputValidationError(INVALID_FRAME_CODE, "fps must be positive")


@dataclass(frozen=True)
class RawCaption:
    """Caption as supplied by the caller; times may be NaN or inverted."""

    start_ms: float
    end_ms: float
    text: str


@dataclass(frozen=True)
class ScaledCaption:
    """Caption placed on the output timeline in integer milliseconds."""

    start_ms: int
    end_ms: int
    text: str

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


@dataclass(frozen=True)
class Segment:
    """On-screen duration for one of the four slide images."""

    index: int
    duration_ms: int

    def __post_init__(self) -> None:
        if self.index < 0 or self.index >= SLIDE_COUNT:
            raise InputValidationError(
                INVALID_CONFIG_CODE, "segment index out of range"
            )
        if self.duration_ms < 1:
            raise InputValidationError(
                INVALID_CONFIG_CODE, "segment duration must be at least 1ms"
            )


@dataclass(frozen=True)
class ReelRequest:
    """Validated render request."""

    images: Tuple[str, ...]
    end_card: str
    captions: Tuple[RawCaption, ...]
    end_card_duration_ms: int
    frame: FrameSpec

    def __post_init__(self) -> None:
        if len(self.images) != SLIDE_COUNT:
            raise InputValidationError(
                INVALID_IMAGES_CODE, f"images must have exactly {SLIDE_COUNT} entries"
            )
        if not self.end_card.strip():
            raise InputValidationError(INVALID_REQUEST_CODE, "end_card is required")


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return int(math.floor(value + 0.5))


def coerce_milliseconds(value: Any) -> float:
    """Coerce a caption time to float, mapping anything unusable to NaN."""
    if isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def clamp_end_card_duration(value: Any) -> int:
    """Clamp an end card duration to a non-negative integer millisecond count."""
    duration = coerce_milliseconds(value)
    if not math.isfinite(duration):
        return 0
    return max(0, round_half_up(duration))


def parse_raw_captions(value: Any) -> Tuple[RawCaption, ...]:
    """Parse the captions array; individual entries are never rejected."""
    if not isinstance(value, list):
        raise InputValidationError(INVALID_CAPTIONS_CODE, "captions must be an array")

    captions: list[RawCaption] = []
    for entry in value:
        if not isinstance(entry, Mapping):
            captions.append(RawCaption(math.nan, math.nan, ""))
            continue
        text_value = entry.get("text")
        captions.append(
            RawCaption(
                start_ms=coerce_milliseconds(entry.get("start_ms")),
                end_ms=coerce_milliseconds(entry.get("end_ms")),
                text="" if text_value is None else str(text_value),
            )
        )
    return tuple(captions)


def parse_positive_int(value: Any, field_name: str, default: int) -> int:
    """Parse an optional positive integer field."""
    if value is None:
        return default
    if isinstance(value, bool) or (
        isinstance(value, float) and not value.is_integer()
    ):
        raise InputValidationError(
            INVALID_FRAME_CODE, f"{field_name} must be a positive integer"
        )
    try:
        parsed = int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InputValidationError(
            INVALID_FRAME_CODE, f"{field_name} must be a positive integer"
        ) from exc
    if parsed <= 0:
        raise InputValidationError(
            INVALID_FRAME_CODE, f"{field_name} must be a positive integer"
        )
    return parsed


def parse_frame_spec(value: Any) -> FrameSpec:
    """Parse the optional video block into a FrameSpec."""
    if value is None:
        return FrameSpec()
    if not isinstance(value, Mapping):
        raise InputValidationError(INVALID_FRAME_CODE, "video must be an object")
    return FrameSpec(
        width=parse_positive_int(value.get("width"), "width", DEFAULT_WIDTH),
        height=parse_positive_int(value.get("height"), "height", DEFAULT_HEIGHT),
        fps=parse_positive_int(value.get("fps"), "fps", DEFAULT_FPS),
    )


def parse_reel_request(payload: Any) -> ReelRequest:
    """Parse a decoded JSON request into a ReelRequest."""
    if not isinstance(payload, Mapping):
        raise InputValidationError(INVALID_REQUEST_CODE, "request must be an object")

    images = payload.get("images")
    if not isinstance(images, list):
        raise InputValidationError(INVALID_IMAGES_CODE, "images must be an array")
    if len(images) != SLIDE_COUNT:
        raise InputValidationError(
            INVALID_IMAGES_CODE, f"images must have exactly {SLIDE_COUNT} entries"
        )
    for image in images:
        if not isinstance(image, str) or not image.strip():
            raise InputValidationError(
                INVALID_IMAGES_CODE, "images entries must be non-empty strings"
            )

    end_card = payload.get("end_card")
    if not isinstance(end_card, str) or not end_card.strip():
        raise InputValidationError(INVALID_REQUEST_CODE, "end_card is required")

    return ReelRequest(
        images=tuple(images),
        end_card=end_card,
        captions=parse_raw_captions(payload.get("captions")),
        end_card_duration_ms=clamp_end_card_duration(
            payload.get("end_card_duration_ms", DEFAULT_END_CARD_DURATION_MS)
        ),
        frame=parse_frame_spec(payload.get("video")),
    )
