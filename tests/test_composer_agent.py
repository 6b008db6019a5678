"""
Unit tests for ComposerAgent.

Tests cover:
1. Frame count (durations + trailing buffer at 30 fps)
2. Progress reporting (capped at 99 while rendering, 100 at the end)
3. Only Completed segments are used
4. Empty output and missing segments raise ExportError
"""
import base64
import io
import sys
import os
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from PIL import Image

from agents.composer_agent import ComposerAgent, FrameClock, WallClock
from schemas import AspectRatio, SegmentStatus, StoryboardSegment
from utils.errors import (
    ExportError,
    EXPORT_EMPTY_OUTPUT_CODE,
    EXPORT_NO_SEGMENTS_CODE,
)
from fakes import MemorySink


def data_uri(color=(10, 120, 200)):
    buf = io.BytesIO()
    Image.new("RGB", (32, 32), color).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


def completed(seg_id, duration, text="caption"):
    return StoryboardSegment(
        id=seg_id,
        text=text,
        duration_seconds=duration,
        status=SegmentStatus.COMPLETED,
        image_uri=data_uri(),
    )


class TestFrameClock:

    def test_elapsed_follows_frames(self):
        clock = FrameClock(fps=30)
        clock.start()
        for _ in range(45):
            clock.tick()
        assert clock.elapsed() == pytest.approx(1.5)


class TestWallClock:

    def test_paced_ticks(self):
        now = [100.0]
        slept = []

        def sleep(seconds):
            slept.append(seconds)
            now[0] += seconds

        clock = WallClock(fps=10, now=lambda: now[0], sleep=sleep)
        clock.start()
        clock.tick()
        assert slept == [pytest.approx(0.1)]
        assert clock.elapsed() == pytest.approx(0.1)


class TestExportVideo:

    def test_frame_count_includes_trailing_buffer(self):
        sink = MemorySink()
        composer = ComposerAgent()
        segments = [completed("a", 1.0), completed("b", 2.0)]

        composer.export_video(segments, AspectRatio.VERTICAL, sink=sink, burn_captions=False)

        assert len(sink.frames) == ComposerAgent.expected_frame_count([1.0, 2.0]) == 105
        assert sink.started_with == (720, 1280, 30)
        assert all(size == 720 * 1280 * 3 for size in sink.frames)
        assert sink.stopped and not sink.aborted

    def test_progress_reporting(self):
        progress = []
        composer = ComposerAgent(fps=10)
        composer.export_video(
            [completed("a", 1.0)],
            AspectRatio.HORIZONTAL,
            on_progress=progress.append,
            sink=MemorySink(),
        )

        assert progress[-1] == 100.0
        assert max(progress[:-1]) == 99.0
        assert progress[:-1] == sorted(progress[:-1])

    def test_incomplete_segments_are_skipped(self):
        sink = MemorySink()
        segments = [
            completed("a", 1.0),
            StoryboardSegment(id="b", duration_seconds=5.0, status=SegmentStatus.FAILED, error_message="x"),
            StoryboardSegment(id="c", duration_seconds=5.0),
        ]
        ComposerAgent(fps=10).export_video(segments, AspectRatio.VERTICAL, sink=sink, burn_captions=False)
        assert len(sink.frames) == 15

    def test_no_completed_segments(self):
        segments = [StoryboardSegment(id="a", duration_seconds=1.0)]
        with pytest.raises(ExportError) as exc:
            ComposerAgent().export_video(segments, AspectRatio.VERTICAL, sink=MemorySink())
        assert exc.value.code == EXPORT_NO_SEGMENTS_CODE

    def test_empty_recording_is_an_error(self):
        sink = MemorySink(output_size=0)
        progress = []
        with pytest.raises(ExportError) as exc:
            ComposerAgent(fps=10).export_video(
                [completed("a", 0.5)], AspectRatio.VERTICAL,
                on_progress=progress.append, sink=sink, burn_captions=False,
            )
        assert exc.value.code == EXPORT_EMPTY_OUTPUT_CODE
        assert "empty" in str(exc.value)
        assert 100.0 not in progress

    def test_sink_aborted_on_render_failure(self):
        class FailingSink(MemorySink):
            def write_frame(self, frame):
                raise ExportError("export.encoder_failed", "pipe closed")

        sink = FailingSink()
        with pytest.raises(ExportError):
            ComposerAgent(fps=10).export_video([completed("a", 1.0)], AspectRatio.VERTICAL, sink=sink)
        assert sink.aborted

    def test_expected_frame_count(self):
        assert ComposerAgent.expected_frame_count([4.0, 5.0]) == 285
        assert ComposerAgent.expected_frame_count([1.0], fps=10, trailing_buffer_sec=0.0) == 10
