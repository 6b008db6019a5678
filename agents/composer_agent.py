"""
Composer Agent: Renders the storyboard into a Ken Burns video.
"""

import math
import time
from typing import Callable, List, Optional

from schemas import SegmentStatus, StoryboardSegment
from utils.errors import (
    ExportError,
    EXPORT_EMPTY_OUTPUT_CODE,
    EXPORT_NO_SEGMENTS_CODE,
)
from utils.ffmpeg_utils import DEFAULT_ENCODER_PREFERENCE, FFmpegRecorder, MediaBlob
from utils.frame_renderer import (
    canvas_size,
    draw_frame,
    load_caption_font,
    load_segment_image,
    select_frame,
)
from utils.logger import get_logger

logger = get_logger("composer")


class FrameClock:
    """Virtual clock: frame n is rendered at elapsed = n / fps."""

    def __init__(self, fps: int = 30):
        self.fps = fps
        self._frame = 0

    def start(self) -> None:
        self._frame = 0

    def elapsed(self) -> float:
        return self._frame / self.fps

    def tick(self) -> None:
        self._frame += 1


class WallClock:
    """Real-time clock paced to the target frame rate."""

    def __init__(self, fps: int = 30, now: Callable[[], float] = time.monotonic, sleep=time.sleep):
        self.fps = fps
        self._now = now
        self._sleep = sleep
        self._start = 0.0
        self._frame = 0

    def start(self) -> None:
        self._start = self._now()
        self._frame = 0

    def elapsed(self) -> float:
        return self._now() - self._start

    def tick(self) -> None:
        self._frame += 1
        delay = self._start + self._frame / self.fps - self._now()
        if delay > 0:
            self._sleep(delay)


class ComposerAgent:
    """
    Composes the completed segments into one video.

    Frames are drawn with Pillow and piped into a media sink (FFmpeg by
    default). A sink needs start(width, height, fps), write_frame(bytes),
    stop() -> MediaBlob and abort().
    """

    def __init__(
        self,
        fps: int = 30,
        trailing_buffer_sec: float = 0.5,
        bitrate: int = 8000000,
        encoder_preference: Optional[List[str]] = None,
    ):
        """
        Initialize Composer Agent.

        Args:
            fps: Frames per second (default: 30)
            trailing_buffer_sec: hold on the last frame to avoid truncation
            bitrate: video bitrate (bps)
            encoder_preference: mime types in order of preference
        """
        self.fps = fps
        self.trailing_buffer_sec = trailing_buffer_sec
        self.bitrate = bitrate
        self.encoder_preference = encoder_preference or list(DEFAULT_ENCODER_PREFERENCE)

    def export_video(
        self,
        segments: List[StoryboardSegment],
        aspect_ratio,
        on_progress: Optional[Callable[[float], None]] = None,
        burn_captions: bool = True,
        sink=None,
        clock=None,
        output_path: Optional[str] = None,
    ) -> MediaBlob:
        """
        Render segments to video.

        Args:
            segments: 스토리보드 (Completed + 이미지가 있는 세그먼트만 사용)
            aspect_ratio: 9:16 / 16:9
            on_progress: 진행률 콜백 (0..99 렌더 중, 100 완료)
            burn_captions: 자막 burn-in 여부
            sink: media sink (기본: FFmpegRecorder)
            clock: FrameClock (기본) 또는 WallClock
            output_path: FFmpegRecorder 출력 경로 (없으면 임시 파일)

        Returns:
            MediaBlob

        Raises:
            ExportError: 세그먼트가 없거나, 이미지가 없거나, 결과물이 비어 있는 경우
        """
        usable = [s for s in segments if s.status == SegmentStatus.COMPLETED and s.image_uri]
        if not usable:
            raise ExportError(EXPORT_NO_SEGMENTS_CODE, "No completed segments to export")

        width, height = canvas_size(aspect_ratio)
        logger.info(f"Exporting {len(usable)} segment(s) at {width}x{height}, captions={'on' if burn_captions else 'off'}")

        # preload every image before recording starts
        images = [load_segment_image(s.image_uri) for s in usable]
        durations = [s.duration_seconds for s in usable]
        total_duration = sum(durations)
        duration_with_buffer = total_duration + self.trailing_buffer_sec
        font = load_caption_font(width) if burn_captions else None

        sink = sink or FFmpegRecorder(
            output_path=output_path,
            bitrate=self.bitrate,
            encoder_preference=self.encoder_preference,
        )
        clock = clock or FrameClock(self.fps)

        sink.start(width, height, self.fps)
        frames = 0
        try:
            clock.start()
            while True:
                elapsed = clock.elapsed()
                if elapsed >= duration_with_buffer:
                    break

                index, progress = select_frame(durations, elapsed)
                segment = usable[index]
                frame = draw_frame(
                    images[index],
                    segment.text,
                    segment.camera_movement,
                    progress,
                    (width, height),
                    burn_captions,
                    font=font,
                )
                sink.write_frame(frame.tobytes())
                frames += 1

                if on_progress:
                    on_progress(min(99.0, (elapsed / total_duration) * 100))
                clock.tick()

            blob = sink.stop()
        except BaseException:
            sink.abort()
            raise

        if blob.size == 0:
            raise ExportError(
                EXPORT_EMPTY_OUTPUT_CODE,
                "Recording failed: output file is empty",
            )

        if on_progress:
            on_progress(100.0)
        logger.info(
            f"Export finished: {frames} frames, {duration_with_buffer:.1f}s, "
            f"{blob.size / (1024 * 1024):.1f} MB ({blob.mime_type})"
        )
        return blob

    @staticmethod
    def expected_frame_count(durations: List[float], fps: int = 30, trailing_buffer_sec: float = 0.5) -> int:
        """FrameClock 기준 렌더링될 프레임 수."""
        return math.ceil((sum(durations) + trailing_buffer_sec) * fps - 1e-9)
