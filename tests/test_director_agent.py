"""
Unit tests for storyboard hydration and the DirectorAgent retry policy.

Tests cover:
1. Hydration: cue matching, gap closing, minimum duration, index sanitization
2. Storyboard retry ceiling on rate limiting (5 attempts) and backoff schedule
3. Reference analysis fallback and prompt refinement
"""
import asyncio
import sys
import os
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from agents.director_agent import DirectorAgent, hydrate_segments
from agents.subtitle_utils import parse_srt
from schemas import (
    CameraMovement,
    ReferenceAsset,
    SegmentDraft,
    SegmentStatus,
    StyleDescriptor,
    TimedCue,
    ViralTactic,
)
from utils.errors import StoryboardError
from fakes import FakeGenaiClient, RateLimitError, SleepRecorder, text_response


STYLE = StyleDescriptor(
    id="analog_photo",
    name="Analog Photography",
    prompt_modifier="shot on Kodak Portra 400",
    description="Warm nostalgic film photography.",
)


def cue(cue_id, start, end, text=""):
    return TimedCue(id=cue_id, start_seconds=start, end_seconds=end, text=text)


def draft(ids, ref=None, prompt="scene"):
    return SegmentDraft(subtitle_ids=ids, visual_prompt=prompt, reference_image_index=ref)


def assert_gapless(segments, cues):
    for current, following in zip(segments, segments[1:]):
        assert current.end_seconds == pytest.approx(following.start_seconds)
    assert segments[-1].end_seconds >= max(c.end_seconds for c in cues) - 1e-9


class TestHydrateSegments:

    def test_two_cue_scenario(self):
        """[0-4 "A"], [4-9 "B"] with one draft per cue -> durations [4.0, 5.0]."""
        cues = [cue("1", 0, 4, "A"), cue("2", 4, 9, "B")]
        segments = hydrate_segments([draft(["1"]), draft(["2"])], cues, 0)

        assert [s.duration_seconds for s in segments] == [4.0, 5.0]
        assert [s.text for s in segments] == ["A", "B"]
        assert all(s.status == SegmentStatus.IDLE for s in segments)
        assert_gapless(segments, cues)

    def test_gap_between_segments_is_closed(self):
        cues = [cue("1", 0, 2), cue("2", 5, 7)]
        segments = hydrate_segments([draft(["1"]), draft(["2"])], cues, 0)
        # first segment stretched to the next start
        assert [s.duration_seconds for s in segments] == [5.0, 2.0]
        assert_gapless(segments, cues)

    def test_last_segment_extends_to_script_end(self):
        cues = [cue("1", 0, 2), cue("2", 2, 4), cue("3", 4, 10)]
        # the director forgot cue 3
        segments = hydrate_segments([draft(["1"]), draft(["2"])], cues, 0)
        assert segments[-1].end_seconds == pytest.approx(10.0)
        assert sum(s.duration_seconds for s in segments) == pytest.approx(10.0)

    def test_multi_cue_segment_joins_text_in_time_order(self):
        cues = [cue("1", 0, 1, "one"), cue("2", 1, 2, "two"), cue("3", 2, 3, "three")]
        segments = hydrate_segments([draft(["2", "1"]), draft(["3"])], cues, 0)
        assert segments[0].text == "one two"
        assert segments[0].duration_seconds == pytest.approx(2.0)

    def test_unmatched_drafts_dropped(self):
        cues = [cue("1", 0, 3)]
        segments = hydrate_segments([draft(["99"]), draft(["1"])], cues, 0)
        assert len(segments) == 1

    def test_drafts_sorted_by_start(self):
        cues = [cue("1", 0, 2, "first"), cue("2", 2, 4, "second")]
        segments = hydrate_segments([draft(["2"]), draft(["1"])], cues, 0)
        assert [s.text for s in segments] == ["first", "second"]

    def test_minimum_duration(self):
        """Overlapping drafts still produce durations >= 0.1."""
        cues = [cue("1", 0, 5), cue("2", 1, 2)]
        segments = hydrate_segments([draft(["1"]), draft(["2"])], cues, 0)
        assert all(s.duration_seconds >= 0.1 for s in segments)

    @pytest.mark.parametrize("raw_index, expected", [
        (0, 0),
        (1, 1),
        (2, None),
        (-1, None),
        (None, None),
    ])
    def test_reference_index_sanitized(self, raw_index, expected):
        cues = [cue("1", 0, 3)]
        segments = hydrate_segments([draft(["1"], ref=raw_index)], cues, 2)
        assert segments[0].reference_asset_index == expected

    def test_reference_index_without_assets(self):
        cues = [cue("1", 0, 3)]
        segments = hydrate_segments([draft(["1"], ref=0)], cues, 0)
        assert segments[0].reference_asset_index is None

    def test_unique_ids(self):
        cues = [cue(str(i), i, i + 1) for i in range(5)]
        segments = hydrate_segments([draft([str(i)]) for i in range(5)], cues, 0)
        assert len({s.id for s in segments}) == 5

    def test_large_stretch_is_logged(self, caplog):
        cues = [cue("1", 0, 1), cue("2", 10, 11)]
        with caplog.at_level("WARNING", logger="viralcut.director"):
            hydrate_segments([draft(["1"]), draft(["2"])], cues, 0, gap_warning_sec=3.0)
        assert any("stretched" in r.getMessage() for r in caplog.records)


class TestSegmentDraft:

    def test_lenient_conversion(self):
        d = SegmentDraft.from_raw({
            "subtitle_ids": [1, "2 "],
            "visual_prompt": "x",
            "reference_image_index": 1.0,
            "camera_movement": "zoom_in",
            "tactic": "Visual Hook (0-3s)",
        })
        assert d.subtitle_ids == ["1", "2"]
        assert d.reference_image_index == 1
        assert d.camera_movement == CameraMovement.ZOOM_IN
        assert d.tactic == ViralTactic.HOOK

    def test_unknown_values_fall_back(self):
        d = SegmentDraft.from_raw({"subtitle_ids": "3", "camera_movement": "Dolly", "tactic": "???"})
        assert d.subtitle_ids == ["3"]
        assert d.camera_movement == CameraMovement.STATIC
        assert d.tactic == ViralTactic.B_ROLL
        assert d.reference_image_index is None


STORYBOARD_JSON = [
    {
        "subtitle_ids": ["1"],
        "visual_prompt": "A hand opening a book",
        "reference_image_index": -1,
        "camera_movement": "Zoom In",
        "viral_reasoning": "hook",
        "tactic": "Visual Hook (0-3s)",
    },
    {
        "subtitle_ids": ["2"],
        "visual_prompt": "Pages turning",
        "reference_image_index": 0,
        "camera_movement": "Pan Left",
        "viral_reasoning": "b-roll",
        "tactic": "Contextual B-Roll",
    },
]

SRT = """1
00:00:00,000 --> 00:00:04,000
A

2
00:00:04,000 --> 00:00:09,000
B
"""


class TestGenerateStoryboard:

    def test_success(self):
        client = FakeGenaiClient(lambda n: text_response(STORYBOARD_JSON))
        director = DirectorAgent(client=client, sleep=SleepRecorder())
        segments = asyncio.run(director.generate_storyboard(parse_srt(SRT), STYLE, ["A book"]))

        assert [s.duration_seconds for s in segments] == [4.0, 5.0]
        assert segments[0].camera_movement == CameraMovement.ZOOM_IN
        assert segments[0].reference_asset_index is None
        assert segments[1].reference_asset_index == 0
        assert len(client.calls) == 1

    def test_fenced_json_response(self):
        import json
        fenced = "```json\n" + json.dumps(STORYBOARD_JSON) + "\n```"
        client = FakeGenaiClient(lambda n: text_response(fenced))
        director = DirectorAgent(client=client, sleep=SleepRecorder())
        segments = asyncio.run(director.generate_storyboard(parse_srt(SRT), STYLE))
        assert len(segments) == 2

    def test_retry_ceiling_is_five(self):
        """A collaborator that is always rate limited gets exactly 5 attempts."""
        client = FakeGenaiClient(lambda n: RateLimitError())
        sleep = SleepRecorder()
        director = DirectorAgent(client=client, sleep=sleep)

        with pytest.raises(RateLimitError):
            asyncio.run(director.generate_storyboard(parse_srt(SRT), STYLE))

        assert len(client.calls) == 5
        # wait = 2 * 2**attempt + 1, no wait after the final attempt
        assert sleep.delays == [3.0, 5.0, 9.0, 17.0]

    def test_recovers_after_rate_limit(self):
        client = FakeGenaiClient(
            lambda n: RateLimitError() if n < 3 else text_response(STORYBOARD_JSON)
        )
        director = DirectorAgent(client=client, sleep=SleepRecorder())
        segments = asyncio.run(director.generate_storyboard(parse_srt(SRT), STYLE))
        assert len(segments) == 2
        assert len(client.calls) == 3

    def test_other_errors_are_not_retried(self):
        client = FakeGenaiClient(lambda n: ValueError("bad request"))
        director = DirectorAgent(client=client, sleep=SleepRecorder())
        with pytest.raises(ValueError):
            asyncio.run(director.generate_storyboard(parse_srt(SRT), STYLE))
        assert len(client.calls) == 1

    def test_no_matching_segments(self):
        client = FakeGenaiClient(lambda n: text_response([{"subtitle_ids": ["42"], "visual_prompt": "x"}]))
        director = DirectorAgent(client=client, sleep=SleepRecorder())
        with pytest.raises(StoryboardError):
            asyncio.run(director.generate_storyboard(parse_srt(SRT), STYLE))

    def test_non_array_response(self):
        client = FakeGenaiClient(lambda n: text_response({"segments": []}))
        director = DirectorAgent(client=client, sleep=SleepRecorder())
        with pytest.raises(StoryboardError):
            asyncio.run(director.generate_storyboard(parse_srt(SRT), STYLE))

    def test_system_instruction_lists_references(self):
        director = DirectorAgent(client=FakeGenaiClient(lambda n: None))
        instruction = director.build_system_instruction(STYLE, ["Red sneaker", "Blue mug"])
        assert "Index 0: Red sneaker" in instruction
        assert "Index 1: Blue mug" in instruction
        assert "Analog Photography" in instruction


class TestReferenceAnalysis:

    ASSETS = [ReferenceAsset(data=b"img0"), ReferenceAsset(data=b"img1")]

    def test_descriptions(self):
        client = FakeGenaiClient(lambda n: text_response(["A red sneaker", "A blue mug"]))
        director = DirectorAgent(client=client)
        assert asyncio.run(director.analyze_reference_images(self.ASSETS)) == ["A red sneaker", "A blue mug"]

    def test_failure_falls_back_to_generic_names(self):
        client = FakeGenaiClient(lambda n: RuntimeError("boom"))
        director = DirectorAgent(client=client)
        assert asyncio.run(director.analyze_reference_images(self.ASSETS)) == [
            "Reference Image 0",
            "Reference Image 1",
        ]

    def test_short_answer_is_padded(self):
        client = FakeGenaiClient(lambda n: text_response(["only one"]))
        director = DirectorAgent(client=client)
        assert asyncio.run(director.analyze_reference_images(self.ASSETS)) == ["only one", "Reference Image 1"]

    def test_no_assets_makes_no_call(self):
        client = FakeGenaiClient(lambda n: text_response([]))
        director = DirectorAgent(client=client)
        assert asyncio.run(director.analyze_reference_images([])) == []
        assert client.calls == []


class TestRefinePrompt:

    def test_refined_text(self):
        client = FakeGenaiClient(lambda n: text_response("  a calmer prompt  "))
        director = DirectorAgent(client=client)
        assert asyncio.run(director.refine_prompt("old", STYLE)) == "a calmer prompt"

    def test_empty_answer_keeps_original(self):
        client = FakeGenaiClient(lambda n: text_response(""))
        director = DirectorAgent(client=client)
        assert asyncio.run(director.refine_prompt("old", STYLE)) == "old"

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        director = DirectorAgent()
        with pytest.raises(ValueError):
            director.client
