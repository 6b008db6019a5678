"""
VIRALCUT Data Models

공통 데이터 모델 정의 (Pydantic 기반)
- TimedCue: 자막 큐 (parsed subtitle line)
- StyleDescriptor: 비주얼 스타일 프리셋
- ReferenceAsset: 사용자 참조 이미지
- SegmentDraft: Director 원본 출력 (hydration 전)
- StoryboardSegment: 장면 데이터 + 생성 상태
- QuotaState / ProjectManifest: 영속 상태
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field


class AspectRatio(str, Enum):
    """출력 화면 비율"""
    VERTICAL = "9:16"
    HORIZONTAL = "16:9"


class CameraMovement(str, Enum):
    """카메라 워크 (Ken Burns 효과)"""
    ZOOM_IN = "Zoom In"
    ZOOM_OUT = "Zoom Out"
    PAN_RIGHT = "Pan Right"
    PAN_LEFT = "Pan Left"
    STATIC = "Static"

    @classmethod
    def normalize(cls, value) -> "CameraMovement":
        """Accept "Zoom In", "zoom_in", "ZoomIn"...; anything unknown becomes STATIC."""
        if isinstance(value, cls):
            return value
        key = str(value or "").lower().replace("_", "").replace("-", "").replace(" ", "")
        for member in cls:
            if member.value.lower().replace(" ", "") == key:
                return member
        return cls.STATIC


class ViralTactic(str, Enum):
    """Director 가 선택하는 바이럴 전술"""
    HOOK = "Visual Hook (0-3s)"
    PACING = "Fast Paced Cut"
    B_ROLL = "Contextual B-Roll"
    CLIMAX = "Visual Climax"
    TEXT_EMPHASIS = "Text Focus"
    ATMOSPHERE = "Healing Atmosphere"

    @classmethod
    def normalize(cls, value) -> "ViralTactic":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text or member.name.lower() == text:
                return member
        return cls.B_ROLL


class SegmentStatus(str, Enum):
    """씬 이미지 생성 상태"""
    IDLE = "IDLE"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TimedCue(BaseModel):
    """SRT 한 블록 (timestamped subtitle line)"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="SRT 블록 인덱스 라인")
    start_seconds: float = Field(..., ge=0, description="시작 시간 (초)")
    end_seconds: float = Field(..., ge=0, description="종료 시간 (초)")
    text: str = Field(default="", description="자막 텍스트 (여러 줄은 공백으로 결합)")
    start_timecode: str = Field(default="", description="원본 시작 타임코드 (HH:MM:SS,mmm)")
    end_timecode: str = Field(default="", description="원본 종료 타임코드")


class StyleDescriptor(BaseModel):
    """비주얼 스타일 프리셋 (immutable)"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    prompt_modifier: str = Field(..., description="이미지 프롬프트 뒤에 붙는 스타일 토큰")
    description: str = Field(default="", description="Director 에게 전달되는 스타일 설명")
    negative_prompt: Optional[str] = Field(default=None, description="피해야 할 요소")


class ReferenceAsset(BaseModel):
    """사용자가 업로드한 참조 이미지 + AI 가 추출한 엔티티 설명"""
    model_config = ConfigDict(ser_json_bytes="base64")

    data: bytes = Field(..., repr=False, description="원본 이미지 바이트")
    mime_type: str = Field(default="image/png")
    description: Optional[str] = Field(default=None, description="이미지가 묘사하는 엔티티")


class SegmentDraft(BaseModel):
    """Director 가 반환한 원본 세그먼트 (hydration 전)"""
    subtitle_ids: List[str] = Field(default_factory=list)
    visual_prompt: str = ""
    reference_image_index: Optional[int] = None
    camera_movement: CameraMovement = CameraMovement.STATIC
    viral_reasoning: str = ""
    tactic: ViralTactic = ViralTactic.B_ROLL

    @classmethod
    def from_raw(cls, raw: dict) -> "SegmentDraft":
        """Lenient conversion of one model-returned JSON object."""
        ids = raw.get("subtitle_ids") or []
        if not isinstance(ids, list):
            ids = [ids]
        ref_index = raw.get("reference_image_index")
        if isinstance(ref_index, bool) or not isinstance(ref_index, (int, float)):
            ref_index = None
        elif isinstance(ref_index, float):
            ref_index = int(ref_index) if ref_index.is_integer() else None
        return cls(
            subtitle_ids=[str(i).strip() for i in ids],
            visual_prompt=str(raw.get("visual_prompt") or ""),
            reference_image_index=ref_index,
            camera_movement=CameraMovement.normalize(raw.get("camera_movement")),
            viral_reasoning=str(raw.get("viral_reasoning") or ""),
            tactic=ViralTactic.normalize(raw.get("tactic")),
        )


class StoryboardSegment(BaseModel):
    """
    장면 데이터

    Director 가 IDLE 상태로 생성하고, 상태 전이는 SegmentStore 를 통해서만 일어난다.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="고유 세그먼트 ID")
    text: str = Field(default="", description="자막 텍스트 (캡션 burn-in 용)")
    duration_seconds: float = Field(..., gt=0, description="지속 시간 (초)")
    visual_prompt: str = Field(default="", description="이미지 생성 프롬프트")
    camera_movement: CameraMovement = Field(default=CameraMovement.STATIC)
    viral_reasoning: str = Field(default="")
    tactic: ViralTactic = Field(default=ViralTactic.B_ROLL)
    status: SegmentStatus = Field(default=SegmentStatus.IDLE)
    image_uri: Optional[str] = Field(default=None, description="생성된 이미지 (COMPLETED 에서만)")
    error_message: Optional[str] = Field(default=None, description="에러 메시지 (FAILED 에서만)")
    reference_asset_index: Optional[int] = Field(default=None, description="참조 이미지 인덱스")

    # Timeline bookkeeping (hydration 결과)
    start_seconds: float = Field(default=0.0, description="타임라인 시작")
    end_seconds: float = Field(default=0.0, description="타임라인 종료")


class QuotaState(BaseModel):
    """일일 생성 쿼터 ({date, count})"""
    date: str
    count: int = 0


class ProjectManifest(BaseModel):
    """프로젝트 저장용 메타데이터"""
    project_id: str
    created_at: datetime = Field(default_factory=datetime.now)
    style_id: str
    aspect_ratio: AspectRatio
    seed: int
    cues: List[TimedCue] = Field(default_factory=list)
    reference_descriptions: List[str] = Field(default_factory=list)
    segments: List[StoryboardSegment] = Field(default_factory=list)
    video_path: Optional[str] = None
