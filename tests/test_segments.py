"""Tests for the segment model and role inference (radio/segments.py)."""

import pytest
from pydantic import ValidationError

from radio.schemas import CreateJobRequest, SegmentIn
from radio.segments import (
    GenerationKey,
    Role,
    Segment,
    SegmentKind,
    find_background_url,
    infer_roles,
)


def single(url="https://cdn.test/a.mp3", role=None):
    return Segment(SegmentKind.SINGLE, source_url=url, role=role)


class TestGenerationKey:
    def test_lock_key(self):
        key = GenerationKey("en", "spookyland", "lm42", "parent")
        assert key.lock_key == "en:spookyland:lm42:parent"

    def test_storage_prefix_orders_owner_before_world(self):
        key = GenerationKey("pl", "spookyland", "lm42", "kids")
        assert key.storage_prefix == "/pl/lm42/spookyland"


class TestInferRoles:
    def test_typical_program(self):
        segments = [
            single(),
            Segment(SegmentKind.QUESTION_INTRO),
            single(),
            Segment(SegmentKind.COMBINE_WITH_BACKGROUND, answer_urls=("r1",)),
            Segment(SegmentKind.QUESTION_TRANSITION),
            single(),
            Segment(SegmentKind.RECORDING, source_url="r2"),
            single(),
        ]
        assert infer_roles(segments) == [
            Role.OPENING_JINGLE,
            Role.SILENCE,
            Role.PROMPT,
            Role.RECORDING,
            Role.SILENCE,
            Role.PROMPT,
            Role.RECORDING,
            Role.CLOSING,
        ]

    def test_lone_single_is_opening(self):
        assert infer_roles([single()]) == [Role.OPENING_JINGLE]

    def test_explicit_role_wins(self):
        segments = [single(), single(role=Role.BOUNDARY_JINGLE), single()]
        assert infer_roles(segments)[1] == Role.BOUNDARY_JINGLE

    def test_empty(self):
        assert infer_roles([]) == []


class TestFindBackgroundUrl:
    def test_explicit(self):
        assert find_background_url([], "https://cdn.test/bg.mp3") == "https://cdn.test/bg.mp3"

    def test_first_answer_group(self):
        segments = [
            single(),
            Segment(SegmentKind.COMBINE_WITH_BACKGROUND, answer_urls=("r1",)),
            Segment(SegmentKind.COMBINE_WITH_BACKGROUND, answer_urls=("r2",), background_url="b1"),
            Segment(SegmentKind.COMBINE_WITH_BACKGROUND, answer_urls=("r3",), background_url="b2"),
        ]
        assert find_background_url(segments) == "b1"

    def test_none(self):
        assert find_background_url([single()]) is None


class TestSegmentDict:
    def test_from_stored_form(self):
        segment = Segment.from_dict(
            {
                "kind": "combine_with_background",
                "answer_urls": ["r1", "r2"],
                "background_url": "bg",
                "question_id": "Q1",
                "role": "recording",
            }
        )
        assert segment.kind == SegmentKind.COMBINE_WITH_BACKGROUND
        assert segment.answer_urls == ("r1", "r2")
        assert segment.role == Role.RECORDING
        assert segment.source_urls == ("r1", "r2")

    def test_to_dict_omits_unset(self):
        assert Segment(SegmentKind.PAUSE).to_dict() == {"kind": "pause"}

    def test_silence_has_no_sources(self):
        assert Segment(SegmentKind.SILENCE, duration_seconds=3).source_urls == ()


class TestSegmentIn:
    def test_to_segment(self):
        url = "https://cdn.test/en/lm42/w/r1.webm"
        segment = SegmentIn(kind="recording", source_url=url, role="recording").to_segment()
        assert segment == Segment(SegmentKind.RECORDING, source_url=url, role=Role.RECORDING)

    def test_rejects_extra_fields(self):
        with pytest.raises(ValidationError):
            SegmentIn(kind="pause", url="x")

    @pytest.mark.parametrize(
        "url",
        ["", "not a url", "file:///etc/passwd", "ftp://cdn.test/a.mp3", "https://"],
    )
    def test_rejects_non_http_sources(self, url):
        with pytest.raises(ValidationError):
            SegmentIn(kind="recording", source_url=url)
        with pytest.raises(ValidationError):
            SegmentIn(kind="combine_with_background", answer_urls=["https://cdn.test/a.webm", url])
        with pytest.raises(ValidationError):
            SegmentIn(kind="pause", background_url=url)

    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValidationError):
            SegmentIn(kind="pause", duration_seconds=0)

    def test_request_requires_segments(self):
        with pytest.raises(ValidationError):
            CreateJobRequest(
                language="en", world="w", owner_id="o", variant="kids", segments=[]
            )
