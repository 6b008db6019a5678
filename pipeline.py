"""
VIRALCUT 통합 파이프라인

자막 파일 한 개 → 스토리보드 → 세그먼트 이미지 → Ken Burns 영상.
outputs/<project_id>/ 구조로 모든 산출물 관리.

실행 플로우:
1. load_subtitles       - SRT 검증 / 파싱 (새 프로젝트 시드)
2. add_reference_image  - (optional) 참조 이미지 등록
3. create_storyboard    - 참조 이미지 분석 + DirectorAgent
4. generate_all         - BatchScheduler (동시 3개, 취소 가능, quota)
5. export_video         - ComposerAgent (Completed 세그먼트만)
"""

import asyncio
import base64
import io
import os
import json
import random
import shutil
import uuid
from dotenv import load_dotenv

# .env 파일 로드
load_dotenv()

from typing import Dict, Any, Optional, List, Callable

from PIL import Image

from schemas import (
    AspectRatio,
    ProjectManifest,
    ReferenceAsset,
    SegmentStatus,
    StoryboardSegment,
    StyleDescriptor,
    TimedCue,
)
from agents import (
    BatchReport,
    BatchScheduler,
    CancellationToken,
    ComposerAgent,
    DirectorAgent,
    ImageAgent,
    validate_script,
)
from config import get_style, get_video_styles, load_settings
from utils.error_manager import ErrorManager
from utils.errors import (
    ErrorKind,
    GenerationInProgressError,
    QuotaExceededError,
    ScriptValidationError,
    SCRIPT_NO_CUES_CODE,
    classify_error,
)
from utils.ffmpeg_utils import MediaBlob
from utils.logger import get_logger
from utils.quota import QuotaCounter
from utils.segment_store import SegmentStore

logger = get_logger("pipeline")

MAX_SEED = 1000000


def new_project_seed() -> int:
    return random.randint(0, MAX_SEED - 1)


class ViralCutPipeline:
    """
    VIRALCUT 통합 파이프라인

    프로젝트 상태(큐, 스타일, 비율, 참조 이미지, 시드, 세그먼트)를 소유하고
    모든 에이전트를 조율합니다.
    """

    def __init__(
        self,
        output_base_dir: str = "outputs",
        project_id: str = None,
        api_key: str = None,
        aspect_ratio: AspectRatio = AspectRatio.VERTICAL,
        style_id: str = None,
        config_path: str = None,
        director: DirectorAgent = None,
        image_agent: ImageAgent = None,
        composer: ComposerAgent = None,
        quota: QuotaCounter = None,
    ):
        """
        Initialize pipeline.

        Args:
            output_base_dir: 출력 기본 디렉토리
            project_id: 프로젝트 ID (기본: 랜덤 8자리)
            api_key: Google API key override (기본: GOOGLE_API_KEY)
            aspect_ratio: 9:16 / 16:9
            style_id: 스타일 ID (기본: 첫 번째 프리셋)
            config_path: settings.yaml 경로
            director / image_agent / composer / quota: 주입용 (테스트)
        """
        settings = load_settings(config_path)
        generation = settings["generation"]
        models = settings["models"]
        video = settings["video"]
        quota_cfg = settings["quota"]

        self.output_base_dir = output_base_dir
        self.project_id = project_id or uuid.uuid4().hex[:8]
        self.aspect_ratio = AspectRatio(aspect_ratio)
        self.max_script_duration_sec = quota_cfg["max_script_duration_sec"]

        self.styles: List[StyleDescriptor] = get_video_styles(config_path)
        self.style: StyleDescriptor = (
            get_style(style_id, config_path) if style_id else self.styles[0]
        )

        self.director = director or DirectorAgent(
            api_key=api_key,
            model=models["text"],
            max_attempts=generation["storyboard_max_attempts"],
            backoff_base_sec=generation["storyboard_backoff_base_sec"],
            backoff_offset_sec=generation["storyboard_backoff_offset_sec"],
            gap_warning_sec=settings["director"]["gap_warning_sec"],
        )
        self.image_agent = image_agent or ImageAgent(
            api_key=api_key,
            model=models["image"],
            max_attempts=generation["image_max_attempts"],
            backoff_base_sec=generation["image_backoff_base_sec"],
            backoff_jitter_sec=generation["image_backoff_jitter_sec"],
            fixed_backoff_sec=generation["fixed_backoff_sec"],
        )
        self.composer = composer or ComposerAgent(
            fps=video["fps"],
            trailing_buffer_sec=video["trailing_buffer_sec"],
            bitrate=video["bitrate"],
            encoder_preference=video["encoder_preference"],
        )
        self.quota = quota or QuotaCounter(
            store_path=quota_cfg["store_path"],
            limit=quota_cfg["max_daily_images"],
        )

        self.store = SegmentStore()
        self.scheduler = BatchScheduler(
            self.store,
            self._generate_segment_image,
            self.quota,
            concurrency=generation["concurrency"],
        )

        self.cues: List[TimedCue] = []
        self.reference_assets: List[ReferenceAsset] = []
        self.seed = new_project_seed()
        self.video_path: Optional[str] = None
        self.project_dir = self._create_project_structure(self.project_id)

    # =========================================================================
    # Project setup
    # =========================================================================

    def _create_project_structure(self, project_id: str) -> str:
        """
        프로젝트 디렉토리 구조 생성.

        outputs/<project_id>/
        ├── manifest.json
        ├── stills/          (save_segment_images)
        └── media/
            ├── images/
            └── video/
        """
        project_dir = f"{self.output_base_dir}/{project_id}"

        dirs = [
            project_dir,
            f"{project_dir}/media/images",
            f"{project_dir}/media/video",
        ]

        for d in dirs:
            os.makedirs(d, exist_ok=True)

        return project_dir

    def _ensure_idle(self) -> None:
        if self.scheduler.is_running:
            raise GenerationInProgressError()

    @property
    def reference_descriptions(self) -> List[str]:
        return [asset.description or f"Reference Image {i}" for i, asset in enumerate(self.reference_assets)]

    def load_subtitles(self, srt_text: str) -> List[TimedCue]:
        """
        Step 1: 자막 검증 및 파싱.

        새 자막 파일은 새 프로젝트 시드를 받고, 기존 스토리보드는 비워진다.

        Raises:
            ScriptValidationError: 타임코드 없음 / 큐 0개 / 최대 길이 초과
        """
        self._ensure_idle()
        cues = validate_script(srt_text, self.max_script_duration_sec)
        self.cues = cues
        self.seed = new_project_seed()
        self.store.replace_all([])
        self.video_path = None
        logger.info(f"[{self.project_id}] Loaded {len(cues)} cues (seed={self.seed})")
        return cues

    def set_aspect_ratio(self, aspect_ratio) -> AspectRatio:
        self.aspect_ratio = AspectRatio(aspect_ratio)
        return self.aspect_ratio

    def add_reference_image(self, data: bytes, mime_type: str = None) -> int:
        """
        참조 이미지 등록. mime type 이 없으면 Pillow 로 판별.

        Returns:
            참조 이미지 인덱스
        """
        with Image.open(io.BytesIO(data)) as img:
            detected = Image.MIME.get(img.format or "", "image/png")
        asset = ReferenceAsset(data=data, mime_type=mime_type or detected)
        self.reference_assets.append(asset)
        logger.info(f"[{self.project_id}] Reference image #{len(self.reference_assets) - 1} added ({asset.mime_type})")
        return len(self.reference_assets) - 1

    # =========================================================================
    # Storyboard
    # =========================================================================

    async def _analyze_references(self) -> None:
        pending = [a for a in self.reference_assets if not a.description]
        if not pending:
            return
        descriptions = await self.director.analyze_reference_images(self.reference_assets)
        self.reference_assets = [
            asset.model_copy(update={"description": description})
            for asset, description in zip(self.reference_assets, descriptions)
        ]

    def _apply_style_modifier(self, segments: List[StoryboardSegment], style: StyleDescriptor) -> List[StoryboardSegment]:
        return [
            s.model_copy(update={"visual_prompt": f"{s.visual_prompt}. {style.prompt_modifier}"})
            for s in segments
        ]

    async def _direct(self, style: StyleDescriptor) -> List[StoryboardSegment]:
        if not self.cues:
            raise ScriptValidationError(SCRIPT_NO_CUES_CODE, "Load a subtitle file first")
        try:
            segments = await self.director.generate_storyboard(self.cues, style, self.reference_descriptions)
        except Exception as e:
            ErrorManager.log_error(
                "DirectorAgent",
                f"Storyboard generation failed: {e}",
                details={"project_id": self.project_id, "style": style.id},
                code=getattr(e, "code", None),
            )
            raise
        styled = self._apply_style_modifier(segments, style)
        self.store.replace_all(styled)
        self.video_path = None
        return styled

    async def create_storyboard(self) -> List[StoryboardSegment]:
        """Step 2: 참조 이미지 분석 → 스토리보드 생성."""
        self._ensure_idle()
        print(f"\n[STEP 2] Creating storyboard ({len(self.cues)} cues, style={self.style.name})")
        await self._analyze_references()
        return await self._direct(self.style)

    async def change_style(self, style_id: str) -> List[StoryboardSegment]:
        """
        스타일 변경 = 스토리보드 전체 재생성.

        참조 이미지 설명과 프로젝트 시드는 그대로 재사용한다.
        """
        self._ensure_idle()
        style = next((s for s in self.styles if s.id == style_id), None)
        if style is None:
            raise KeyError(f"Unknown style: {style_id}")
        self.style = style
        if not self.cues or not len(self.store):
            return self.store.snapshot()
        logger.info(f"[{self.project_id}] Style changed to {style.name}; regenerating storyboard")
        return await self._direct(style)

    def update_prompt(self, segment_id: str, visual_prompt: str) -> StoryboardSegment:
        return self.store.update_prompt(segment_id, visual_prompt)

    async def refine_prompt(self, segment_id: str) -> StoryboardSegment:
        """AI 프롬프트 다듬기. 실패하면 기존 프롬프트를 유지."""
        segment = self.store.get(segment_id)
        try:
            refined = await self.director.refine_prompt(segment.visual_prompt, self.style)
        except Exception as e:
            logger.error(f"Failed to refine prompt for {segment_id}: {e}")
            ErrorManager.log_error(
                "DirectorAgent",
                f"Prompt refinement failed: {e}",
                details={"segment_id": segment_id},
                severity="warning",
            )
            return segment
        return self.store.update_prompt(segment_id, refined)

    # =========================================================================
    # Image generation
    # =========================================================================

    async def _generate_segment_image(self, segment: StoryboardSegment, token: CancellationToken) -> str:
        """BatchScheduler 가 호출하는 세그먼트 1개 생성 함수 → 이미지 파일 경로."""
        try:
            image = await self.image_agent.generate_image_for_segment(
                segment,
                self.aspect_ratio,
                self.reference_assets,
                cancel_token=token,
                seed=self.seed,
                negative_prompt=self.style.negative_prompt,
            )
        except Exception as e:
            if classify_error(e) != ErrorKind.CANCELLED:
                ErrorManager.log_error(
                    "ImageAgent",
                    str(e),
                    details={"project_id": self.project_id, "segment_id": segment.id},
                    code=getattr(e, "code", None),
                )
            raise

        # cancelled while the call was in flight: nothing is written
        token.raise_if_cancelled()
        image_path = f"{self.project_dir}/media/images/{segment.id}.{image.extension}"
        with open(image_path, "wb") as f:
            f.write(image.data)
        return image_path

    async def generate_all(self) -> BatchReport:
        """
        Step 3: Idle / Failed 세그먼트 일괄 생성.

        Raises:
            QuotaExceededError: 남은 일일 quota 가 없을 때 (아무 작업도 하지 않음)
        """
        print(f"\n[STEP 3] Generating images for {len(self.store)} segments...")
        try:
            report = await self.scheduler.generate_all()
        except QuotaExceededError as e:
            ErrorManager.log_error("BatchScheduler", str(e), severity="warning", code=e.code)
            raise
        if report.quota_exceeded:
            ErrorManager.log_error(
                "BatchScheduler",
                "Daily quota reached during batch",
                details=report.to_dict(),
                severity="warning",
            )
        return report

    def stop_generation(self) -> None:
        self.scheduler.cancel()

    async def regenerate_segment(self, segment_id: str) -> StoryboardSegment:
        return await self.scheduler.regenerate(segment_id)

    # =========================================================================
    # Export
    # =========================================================================

    async def export_video(
        self,
        on_progress: Optional[Callable[[float], None]] = None,
        burn_captions: bool = True,
        output_path: str = None,
        sink=None,
        clock=None,
    ) -> MediaBlob:
        """
        Step 4: Completed 세그먼트만으로 영상 합성.

        미완성 세그먼트가 있으면 경고만 남기고 계속 진행한다.
        """
        segments = self.store.snapshot()
        completed = [s for s in segments if s.status == SegmentStatus.COMPLETED and s.image_uri]
        if segments and len(completed) < len(segments):
            logger.warning(
                f"[{self.project_id}] Exporting {len(completed)}/{len(segments)} segments; "
                f"incomplete segments are skipped"
            )

        print(f"\n[STEP 4] Exporting video ({self.aspect_ratio.value})...")
        blob = await asyncio.to_thread(
            self.composer.export_video,
            completed,
            self.aspect_ratio,
            on_progress,
            burn_captions,
            sink,
            clock,
            output_path,
        )

        if blob.path and output_path is None:
            final_path = f"{self.project_dir}/media/video/viralcut_{self.project_id}.{blob.extension}"
            shutil.move(blob.path, final_path)
            blob.path = final_path
        self.video_path = blob.path
        return blob

    def save_segment_images(self, dest_dir: str = None) -> List[str]:
        """Completed 세그먼트 이미지를 scene-<n>.<ext> 로 저장 (n = 스토리보드 순서)."""
        dest_dir = dest_dir or f"{self.project_dir}/stills"
        os.makedirs(dest_dir, exist_ok=True)

        saved = []
        for index, segment in enumerate(self.store.snapshot()):
            if segment.status != SegmentStatus.COMPLETED or not segment.image_uri:
                continue
            if segment.image_uri.startswith("data:"):
                header, _, payload = segment.image_uri.partition(",")
                mime_type = header[5:].split(";")[0]
                ext = mime_type.split("/")[-1].replace("jpeg", "jpg") or "png"
                path = os.path.join(dest_dir, f"scene-{index + 1}.{ext}")
                with open(path, "wb") as f:
                    f.write(base64.b64decode(payload))
            else:
                ext = os.path.splitext(segment.image_uri)[1] or ".png"
                path = os.path.join(dest_dir, f"scene-{index + 1}{ext}")
                shutil.copyfile(segment.image_uri, path)
            saved.append(path)
        return saved

    # =========================================================================
    # Manifest / status
    # =========================================================================

    def build_manifest(self) -> ProjectManifest:
        return ProjectManifest(
            project_id=self.project_id,
            style_id=self.style.id,
            aspect_ratio=self.aspect_ratio,
            seed=self.seed,
            cues=self.cues,
            reference_descriptions=self.reference_descriptions,
            segments=self.store.snapshot(),
            video_path=self.video_path,
        )

    def save_project(self) -> str:
        """
        Manifest를 JSON으로 저장.

        Returns:
            저장된 파일 경로
        """
        manifest_path = f"{self.project_dir}/manifest.json"
        manifest_dict = self.build_manifest().model_dump(mode="json")
        with open(manifest_path, "w", encoding="utf-8") as f:
            json.dump(manifest_dict, f, ensure_ascii=False, indent=2, default=str)
        return manifest_path

    def status(self) -> Dict[str, Any]:
        counts = self.store.count_by_status()
        return {
            "project_id": self.project_id,
            "style_id": self.style.id,
            "aspect_ratio": self.aspect_ratio.value,
            "seed": self.seed,
            "cue_count": len(self.cues),
            "reference_count": len(self.reference_assets),
            "is_generating": self.scheduler.is_running,
            "quota": {"used": self.quota.get(), "limit": self.scheduler.daily_limit},
            "counts": {status.value: n for status, n in counts.items()},
            "segments": [s.model_dump(mode="json") for s in self.store.snapshot()],
            "video_path": self.video_path,
        }


async def run_pipeline(
    srt_text: str,
    style_id: str = None,
    aspect_ratio: str = "9:16",
    reference_images: List[bytes] = None,
    burn_captions: bool = True,
    storyboard_only: bool = False,
    output_base_dir: str = "outputs",
    on_progress: Optional[Callable[[float], None]] = None,
) -> ViralCutPipeline:
    """
    파이프라인 간편 실행 함수.

    Returns:
        실행이 끝난 ViralCutPipeline (status()/video_path 로 결과 확인)
    """
    pipeline = ViralCutPipeline(
        output_base_dir=output_base_dir,
        aspect_ratio=AspectRatio(aspect_ratio),
        style_id=style_id,
    )
    pipeline.load_subtitles(srt_text)
    for data in reference_images or []:
        pipeline.add_reference_image(data)

    await pipeline.create_storyboard()
    if not storyboard_only:
        await pipeline.generate_all()
        if pipeline.store.completed():
            await pipeline.export_video(on_progress=on_progress, burn_captions=burn_captions)
        else:
            logger.error(f"[{pipeline.project_id}] No segment completed; skipping export")
    pipeline.save_project()
    return pipeline
