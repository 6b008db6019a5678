"""
VIRALCUT Agents Package

에이전트 기반 아키텍처:
- subtitle_utils: SRT 파싱 / 검증
- DirectorAgent: 자막 → 스토리보드 (Gemini JSON)
- ImageAgent: 세그먼트 이미지 생성 (Gemini Pro Image)
- BatchScheduler: 동시성 제한 일괄 생성 + 취소 + quota
- ComposerAgent: Ken Burns 영상 합성
"""

from .director_agent import DirectorAgent, hydrate_segments
from .image_agent import GeneratedImage, ImageAgent
from .batch_scheduler import BatchReport, BatchScheduler, CancellationToken
from .composer_agent import ComposerAgent, FrameClock, WallClock
from .subtitle_utils import parse_srt, validate_script

__all__ = [
    "DirectorAgent",
    "hydrate_segments",
    "ImageAgent",
    "GeneratedImage",
    "BatchScheduler",
    "BatchReport",
    "CancellationToken",
    "ComposerAgent",
    "FrameClock",
    "WallClock",
    "parse_srt",
    "validate_script",
]
