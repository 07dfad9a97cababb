"""Unit tests for subtitle cue layout and the ASS document."""

from __future__ import annotations

from domain.reel_video import CueStyle, FrameSpec, ScaledCaption
from service.subtitle_cues import (
    build_cue_animation,
    build_subtitle_cues,
    build_subtitle_document,
    escape_ass_text,
    format_ass_timestamp,
    wrap_by_chars,
)


def test_escape_collapses_whitespace_and_override_characters() -> None:
    """Backslashes and braces are escaped after whitespace is collapsed."""
    assert escape_ass_text("  a\\b {x}\n\n y\t") == "a\\\\b \\{x\\} y"
    assert escape_ass_text("\r\n") == ""


def test_wrap_breaks_on_character_budget() -> None:
    """Words accumulate until the next one would exceed the budget."""
    assert wrap_by_chars("the quick brown fox jumps", 18, 5) == (
        "the quick brown\\Nfox jumps"
    )


def test_wrap_last_line_absorbs_remaining_words() -> None:
    """Once the line cap is reached the last line keeps every word."""
    assert wrap_by_chars("aaaa bbbb cccc dddd eeee", 12, 2) == (
        "aaaa bbbb\\Ncccc dddd eeee"
    )
    assert wrap_by_chars("aaaa bbbb cccc", 4, 1) == "aaaa bbbb cccc"


def test_wrap_keeps_oversized_word_whole() -> None:
    """A single word longer than the budget is not split."""
    assert wrap_by_chars("supercalifragilistic", 12, 6) == "supercalifragilistic"
    assert wrap_by_chars("   ", 12, 6) == ""


def test_wrapped_lines_respect_budget() -> None:
    """All lines but the last fit the budget for repeated tokens."""
    text_value = " ".join(["abcd"] * 40)
    for max_lines in (2, 5, 100):
        lines = wrap_by_chars(text_value, 18, max_lines).split("\\N")

        assert len(lines) <= max_lines
        assert all(len(line) <= 18 for line in lines[:-1])
        assert " ".join(lines).split(" ") == ["abcd"] * 40


def test_timestamps_truncate_to_centiseconds() -> None:
    """Timestamps use H:MM:SS.CC and never round up."""
    assert format_ass_timestamp(0) == "0:00:00.00"
    assert format_ass_timestamp(1999) == "0:00:01.99"
    assert format_ass_timestamp(3723456) == "1:02:03.45"
    assert format_ass_timestamp(-5) == "0:00:00.00"


def test_animation_anchors_above_safe_area() -> None:
    """Cues sit above the bottom third and slide up into place."""
    animation = build_cue_animation(FrameSpec(1080, 1920, 30))

    assert (animation.x, animation.y_from, animation.y_to) == (540, 1373, 1306)
    assert animation.override_tag() == (
        "{\\move(540,1373,540,1306,0,220)\\fad(120,120)}"
    )

    small = build_cue_animation(FrameSpec(100, 200, 24))

    assert (small.x, small.y_from, small.y_to) == (50, 156, 136)


def test_first_cue_is_title_and_wraps_tighter() -> None:
    """The opening caption uses the Title style and budget."""
    captions = (
        ScaledCaption(0, 2000, "Hello wonderful world"),
        ScaledCaption(2000, 4000, "Hello wonderful world"),
        ScaledCaption(4000, 5000, "{bold}"),
    )

    cues = build_subtitle_cues(captions, FrameSpec())

    assert [cue.style for cue in cues] == [
        CueStyle.TITLE,
        CueStyle.CAPTION,
        CueStyle.CAPTION,
    ]
    assert cues[0].wrapped_text == "Hello\\Nwonderful\\Nworld"
    assert cues[1].wrapped_text == "Hello wonderful\\Nworld"
    assert cues[2].wrapped_text == "\\{bold\\}"
    assert (cues[1].start_timestamp, cues[1].end_timestamp) == (
        "0:00:02.00",
        "0:00:04.00",
    )


def test_no_captions_no_cues() -> None:
    """An empty caption list yields no cues."""
    assert build_subtitle_cues((), FrameSpec()) == ()


def test_subtitle_document_layout() -> None:
    """The document declares both styles and one dialogue per cue."""
    frame = FrameSpec(1080, 1920, 30)
    cues = build_subtitle_cues(
        (ScaledCaption(0, 2000, "Hello"), ScaledCaption(2000, 3500, "World")),
        frame,
    )

    document = build_subtitle_document(cues, frame)
    lines = document.splitlines()

    assert lines[0] == "[Script Info]"
    assert "PlayResX: 1080" in lines
    assert "PlayResY: 1920" in lines
    assert (
        "Style: Title,DejaVu Sans,100,&H00FFFFFF,&H00FFFFFF,&H00000000,&H00000000,"
        "-1,0,0,0,100,100,0,0,1,3,0,5,108,108,0,1"
    ) in lines
    assert any(line.startswith("Style: Caption,DejaVu Sans,100,") for line in lines)
    dialogues = [line for line in lines if line.startswith("Dialogue:")]
    assert dialogues == [
        "Dialogue: 0,0:00:00.00,0:00:02.00,Title,,0,0,0,,"
        "{\\move(540,1373,540,1306,0,220)\\fad(120,120)}Hello",
        "Dialogue: 0,0:00:02.00,0:00:03.50,Caption,,0,0,0,,"
        "{\\move(540,1373,540,1306,0,220)\\fad(120,120)}World",
    ]
    assert document.endswith("\n")
