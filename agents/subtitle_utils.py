"""
Subtitle Parser: SRT 텍스트 → TimedCue 목록.

Block format:
    1
    00:00:01,000 --> 00:00:04,000
    first line
    optional second line

Malformed blocks are skipped, never fatal. Parsing is pure and deterministic.
"""

import re
from typing import List, Optional

from schemas import TimedCue
from utils.errors import (
    ScriptValidationError,
    SCRIPT_NO_TIMECODES_CODE,
    SCRIPT_NO_CUES_CODE,
    SCRIPT_TOO_LONG_CODE,
)

TIMECODE_ARROW = " --> "
TIMECODE_PATTERN = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2})(?:[,.](\d{1,3}))?$")
BLOCK_SEPARATOR = re.compile(r"\n[ \t]*\n")


def parse_timecode(value: str) -> Optional[float]:
    """`HH:MM:SS,mmm` → seconds. None when the value doesn't parse."""
    match = TIMECODE_PATTERN.match((value or "").strip())
    if not match:
        return None
    hours, minutes, seconds, millis = match.groups()
    return (
        int(hours) * 3600
        + int(minutes) * 60
        + int(seconds)
        + int(millis or 0) / 1000
    )


def _parse_block(block: str) -> Optional[TimedCue]:
    lines = block.strip().split("\n")
    if len(lines) < 3:
        return None

    cue_id = lines[0].strip()
    if not cue_id:
        return None

    parts = lines[1].split(TIMECODE_ARROW)
    if len(parts) != 2:
        return None
    start_raw, end_raw = parts[0].strip(), parts[1].strip()

    start = parse_timecode(start_raw)
    end = parse_timecode(end_raw)
    if start is None or end is None or end < start:
        return None

    text = " ".join(line.strip() for line in lines[2:] if line.strip())
    return TimedCue(
        id=cue_id,
        start_seconds=start,
        end_seconds=end,
        text=text,
        start_timecode=start_raw,
        end_timecode=end_raw,
    )


def parse_srt(srt_content: str) -> List[TimedCue]:
    """
    SRT 원문을 파싱하여 시작 시간 순서의 TimedCue 목록 반환.

    Args:
        srt_content: 자막 파일 원문

    Returns:
        start_seconds 기준으로 stable sort 된 큐 목록
    """
    normalized = (srt_content or "").replace("\r\n", "\n").replace("\r", "\n")
    cues = []
    for block in BLOCK_SEPARATOR.split(normalized):
        cue = _parse_block(block)
        if cue is not None:
            cues.append(cue)
    # stable: 정렬된 입력은 원래 순서 유지
    cues.sort(key=lambda c: c.start_seconds)
    return cues


def script_duration(cues: List[TimedCue]) -> float:
    """스크립트 전체 길이 (최대 end time)."""
    return max((cue.end_seconds for cue in cues), default=0.0)


def validate_script(srt_content: str, max_duration_sec: float) -> List[TimedCue]:
    """
    업로드된 자막을 검증하고 파싱 결과를 반환.

    Raises:
        ScriptValidationError: 타임코드가 없거나, 큐가 0개이거나, 최대 길이를 초과한 경우
    """
    if "-->" not in (srt_content or ""):
        raise ScriptValidationError(
            SCRIPT_NO_TIMECODES_CODE,
            "Invalid subtitle file: no timecode arrows (-->) found",
        )

    cues = parse_srt(srt_content)
    if not cues:
        raise ScriptValidationError(
            SCRIPT_NO_CUES_CODE,
            "Invalid subtitle file: no subtitle blocks could be parsed",
        )

    duration = script_duration(cues)
    if duration > max_duration_sec:
        raise ScriptValidationError(
            SCRIPT_TOO_LONG_CODE,
            f"Script is too long: {duration:.0f}s exceeds the {max_duration_sec:.0f}s limit",
        )
    return cues
