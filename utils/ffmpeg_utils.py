"""
FFmpeg Utilities for Video Export

- Encoder negotiation: 선호 순서 목록 중 로컬 ffmpeg 가 지원하는 첫 인코더 선택
- FFmpegRecorder: raw RGB 프레임을 stdin 으로 받아 고정 fps 로 인코딩하는 media sink
"""

import os
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from utils.errors import (
    ExportError,
    EXPORT_ENCODER_FAILED_CODE,
    EXPORT_ENCODER_UNAVAILABLE_CODE,
)
from utils.logger import get_logger

logger = get_logger("ffmpeg")


@dataclass(frozen=True)
class EncoderProfile:
    """mime type ↔ ffmpeg 인코더 매핑"""
    mime_type: str
    codec: str
    container: str
    extension: str


ENCODER_PROFILES: Dict[str, EncoderProfile] = {
    "video/webm;codecs=vp9": EncoderProfile("video/webm;codecs=vp9", "libvpx-vp9", "webm", "webm"),
    "video/mp4": EncoderProfile("video/mp4", "libx264", "mp4", "mp4"),
    "video/webm": EncoderProfile("video/webm", "libvpx", "webm", "webm"),
}

DEFAULT_ENCODER_PREFERENCE = ["video/webm;codecs=vp9", "video/mp4", "video/webm"]


@dataclass
class MediaBlob:
    """인코딩 결과물 (파일 경로 + mime type + 바이트 수)"""
    path: Optional[str]
    mime_type: str
    size: int

    @property
    def extension(self) -> str:
        profile = ENCODER_PROFILES.get(self.mime_type)
        if profile:
            return profile.extension
        return self.mime_type.split("/")[-1].split(";")[0] or "bin"

    def read_bytes(self) -> bytes:
        if not self.path:
            return b""
        with open(self.path, "rb") as f:
            return f.read()


def list_encoders(ffmpeg_bin: str = "ffmpeg") -> List[str]:
    """`ffmpeg -encoders` 출력에서 인코더 이름 목록 추출."""
    cmd = [ffmpeg_bin, "-hide_banner", "-encoders"]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, encoding='utf-8', errors='replace', timeout=30)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ExportError(EXPORT_ENCODER_UNAVAILABLE_CODE, f"ffmpeg is not available: {e}") from e

    if result.returncode != 0:
        raise ExportError(EXPORT_ENCODER_UNAVAILABLE_CODE, f"ffmpeg -encoders failed: {result.stderr}")

    encoders = []
    for line in result.stdout.splitlines():
        # " V....D libx264   H.264 / AVC ..."
        parts = line.split()
        if len(parts) >= 2 and len(parts[0]) == 6 and parts[0][0] in "VAS" and parts[1] != "=":
            encoders.append(parts[1])
    return encoders


def negotiate_encoder(
    preference: Sequence[str],
    available: Sequence[str],
) -> EncoderProfile:
    """
    선호 순서대로 사용 가능한 첫 번째 프로파일 반환.

    Raises:
        ExportError: 지원되는 인코더가 하나도 없는 경우
    """
    for mime_type in preference:
        profile = ENCODER_PROFILES.get(mime_type)
        if profile is None:
            logger.warning(f"Unknown encoder preference ignored: {mime_type}")
            continue
        if profile.codec in available:
            return profile
    raise ExportError(
        EXPORT_ENCODER_UNAVAILABLE_CODE,
        f"None of the preferred encodings are supported: {', '.join(preference)}",
    )


class FFmpegRecorder:
    """
    FFmpeg 기반 media sink.

    start() → write_frame() * N → stop() -> MediaBlob
    Frames are raw RGB24 bytes of exactly width*height*3.
    """

    def __init__(
        self,
        output_path: Optional[str] = None,
        bitrate: int = 8000000,
        encoder_preference: Optional[Sequence[str]] = None,
        ffmpeg_bin: str = "ffmpeg",
    ):
        self.output_path = output_path
        self.bitrate = bitrate
        self.encoder_preference = list(encoder_preference or DEFAULT_ENCODER_PREFERENCE)
        self.ffmpeg_bin = ffmpeg_bin
        self.profile: Optional[EncoderProfile] = None
        self._process: Optional[subprocess.Popen] = None
        self._path: Optional[str] = None
        self._frame_size = 0

    def _build_command(self, width: int, height: int, fps: int) -> List[str]:
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-loglevel", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{width}x{height}",
            "-r", str(fps),
            "-i", "-",
            "-c:v", self.profile.codec,
            "-b:v", str(self.bitrate),
            "-pix_fmt", "yuv420p",
        ]
        if self.profile.codec == "libx264":
            cmd += ["-preset", "veryfast", "-movflags", "+faststart"]
        cmd += ["-f", self.profile.container, self._path]
        return cmd

    def start(self, width: int, height: int, fps: int) -> None:
        self.profile = negotiate_encoder(self.encoder_preference, list_encoders(self.ffmpeg_bin))

        if self.output_path:
            out_dir = os.path.dirname(self.output_path)
            if out_dir:
                os.makedirs(out_dir, exist_ok=True)
            self._path = self.output_path
        else:
            fd, self._path = tempfile.mkstemp(suffix=f".{self.profile.extension}")
            os.close(fd)

        self._frame_size = width * height * 3
        cmd = self._build_command(width, height, fps)
        logger.info(f"Recording {width}x{height}@{fps} as {self.profile.mime_type} -> {self._path}")
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise ExportError(EXPORT_ENCODER_UNAVAILABLE_CODE, f"Could not start ffmpeg: {e}") from e

    def write_frame(self, frame: bytes) -> None:
        if self._process is None:
            raise ExportError(EXPORT_ENCODER_FAILED_CODE, "Recorder has not been started")
        if len(frame) != self._frame_size:
            raise ValueError(f"frame has {len(frame)} bytes, expected {self._frame_size}")
        try:
            self._process.stdin.write(frame)
        except (BrokenPipeError, ValueError) as e:
            stderr = self._collect_stderr()
            raise ExportError(EXPORT_ENCODER_FAILED_CODE, f"ffmpeg stopped accepting frames: {stderr or e}") from e

    def _collect_stderr(self) -> str:
        if self._process is None or self._process.stderr is None:
            return ""
        try:
            return self._process.stderr.read().decode("utf-8", errors="replace").strip()
        except (OSError, ValueError):
            return ""

    def stop(self) -> MediaBlob:
        if self._process is None:
            raise ExportError(EXPORT_ENCODER_FAILED_CODE, "Recorder has not been started")

        process = self._process
        self._process = None
        try:
            process.stdin.close()
        except BrokenPipeError:
            pass
        stderr = process.stderr.read().decode("utf-8", errors="replace").strip() if process.stderr else ""
        returncode = process.wait(timeout=300)
        if returncode != 0:
            raise ExportError(EXPORT_ENCODER_FAILED_CODE, f"ffmpeg encoding failed: {stderr}")

        size = os.path.getsize(self._path) if os.path.exists(self._path) else 0
        return MediaBlob(path=self._path, mime_type=self.profile.mime_type, size=size)

    def abort(self) -> None:
        """인코딩 중단 + 임시 출력 삭제."""
        if self._process is not None:
            self._process.kill()
            self._process.wait()
            self._process = None
        if self._path and not self.output_path and os.path.exists(self._path):
            os.remove(self._path)
