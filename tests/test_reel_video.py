"""Unit tests for render request parsing."""

from __future__ import annotations

import pytest

from domain.reel_video import (
    INVALID_CAPTIONS_CODE,
    INVALID_FRAME_CODE,
    INVALID_IMAGES_CODE,
    INVALID_REQUEST_CODE,
    FrameSpec,
    InputValidationError,
    parse_reel_request,
    round_half_up,
)


def base_payload() -> dict:
    return {
        "images": ["1.png", "2.png", "3.png", "4.png"],
        "end_card": "end.png",
        "captions": [],
    }


def assert_rejected(payload: object, code: str) -> None:
    with pytest.raises(InputValidationError) as exc_info:
        parse_reel_request(payload)
    assert exc_info.value.code == code


def test_defaults_are_applied() -> None:
    """Video geometry and end card duration fall back to defaults."""
    request = parse_reel_request(base_payload())

    assert request.frame == FrameSpec(1080, 1920, 30)
    assert request.end_card_duration_ms == 4000
    assert request.captions == ()


def test_video_block_is_parsed() -> None:
    """Explicit frame settings override the defaults."""
    payload = base_payload()
    payload["video"] = {"width": 720, "height": "1280", "fps": 24.0}
    payload["end_card_duration_ms"] = -20

    request = parse_reel_request(payload)

    assert request.frame == FrameSpec(720, 1280, 24)
    assert request.end_card_duration_ms == 0


def test_image_count_must_be_four() -> None:
    """Exactly four slide images are required."""
    payload = base_payload()
    payload["images"] = payload["images"][:3]
    assert_rejected(payload, INVALID_IMAGES_CODE)

    payload["images"] = ["1.png", "2.png", "", "4.png"]
    assert_rejected(payload, INVALID_IMAGES_CODE)


def test_structural_errors_have_codes() -> None:
    """Malformed requests surface stable error codes."""
    assert_rejected([], INVALID_REQUEST_CODE)

    missing_end_card = base_payload()
    del missing_end_card["end_card"]
    assert_rejected(missing_end_card, INVALID_REQUEST_CODE)

    bad_captions = base_payload()
    bad_captions["captions"] = {"text": "nope"}
    assert_rejected(bad_captions, INVALID_CAPTIONS_CODE)

    for video in ({"width": 0}, {"fps": 29.97}, {"height": "tall"}, "1080p"):
        bad_video = base_payload()
        bad_video["video"] = video
        assert_rejected(bad_video, INVALID_FRAME_CODE)


def test_round_half_up() -> None:
    """Halves round toward positive infinity."""
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
    assert round_half_up(-0.5) == 0
