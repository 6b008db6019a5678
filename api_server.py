"""
VIRALCUT FastAPI Server

자막 업로드 → 스토리보드 → 이미지 일괄 생성 → 영상 export 를 HTTP 로 노출.
프로젝트 상태는 프로세스 메모리에 보관한다 (in-memory registry).
"""

import base64
import binascii
import os
import sys
from dotenv import load_dotenv

# .env 파일 로드
load_dotenv()

from typing import Optional, Dict, Callable
from pathlib import Path

from fastapi import FastAPI, HTTPException, BackgroundTasks, Request
from fastapi.responses import FileResponse, JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

# VIRALCUT 모듈 import
sys.path.append(str(Path(__file__).parent))
from schemas import AspectRatio, SegmentStatus
from config import get_video_styles
from pipeline import ViralCutPipeline
from utils.errors import (
    ViralCutError,
    QuotaExceededError,
    EXPORT_ENCODER_FAILED_CODE,
    EXPORT_ENCODER_UNAVAILABLE_CODE,
    EXPORT_EMPTY_OUTPUT_CODE,
    GENERATION_IN_PROGRESS_CODE,
    QUOTA_EXCEEDED_CODE,
    SEGMENT_NOT_FOUND_CODE,
    SEGMENT_INVALID_TRANSITION_CODE,
    STORYBOARD_EMPTY_CODE,
    STORYBOARD_FAILED_CODE,
)
from utils.logger import get_logger

logger = get_logger("api")

# FastAPI 앱 생성
app = FastAPI(title="VIRALCUT API", version="1.0")

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 프로젝트 레지스트리 (project_id -> pipeline)
projects: Dict[str, ViralCutPipeline] = {}

# 테스트에서 fake agent 가 주입된 pipeline 으로 교체
pipeline_factory: Callable[..., ViralCutPipeline] = ViralCutPipeline

_STATUS_BY_CODE = {
    QUOTA_EXCEEDED_CODE: 429,
    GENERATION_IN_PROGRESS_CODE: 409,
    SEGMENT_INVALID_TRANSITION_CODE: 409,
    SEGMENT_NOT_FOUND_CODE: 404,
    EXPORT_EMPTY_OUTPUT_CODE: 500,
    EXPORT_ENCODER_FAILED_CODE: 500,
    EXPORT_ENCODER_UNAVAILABLE_CODE: 503,
    STORYBOARD_EMPTY_CODE: 502,
    STORYBOARD_FAILED_CODE: 502,
}


@app.exception_handler(ViralCutError)
async def viralcut_error_handler(request: Request, exc: ViralCutError):
    status_code = _STATUS_BY_CODE.get(exc.code, 400)
    return JSONResponse(status_code=status_code, content={"code": exc.code, "detail": str(exc)})


# ============================================================================
# Request models
# ============================================================================

class CreateProjectRequest(BaseModel):
    """프로젝트 생성 요청 (자막 원문 업로드)"""
    srt_text: str = Field(..., description="SRT 자막 원문")
    style_id: Optional[str] = None
    aspect_ratio: AspectRatio = AspectRatio.VERTICAL


class ReferenceImageRequest(BaseModel):
    data_base64: str = Field(..., description="base64 인코딩된 이미지")
    mime_type: Optional[str] = None


class StyleChangeRequest(BaseModel):
    style_id: str


class PromptUpdateRequest(BaseModel):
    visual_prompt: str


class ExportRequest(BaseModel):
    burn_captions: bool = True


def get_project(project_id: str) -> ViralCutPipeline:
    pipeline = projects.get(project_id)
    if pipeline is None:
        raise HTTPException(status_code=404, detail="프로젝트를 찾을 수 없습니다.")
    return pipeline


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/api/styles")
async def list_styles():
    """스타일 프리셋 목록"""
    return [style.model_dump() for style in get_video_styles()]


@app.post("/api/projects", status_code=201)
async def create_project(req: CreateProjectRequest):
    """자막 업로드 + 검증 → 프로젝트 생성"""
    try:
        pipeline = pipeline_factory(aspect_ratio=req.aspect_ratio, style_id=req.style_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown style: {req.style_id}")

    cues = pipeline.load_subtitles(req.srt_text)
    projects[pipeline.project_id] = pipeline
    logger.info(f"Project {pipeline.project_id} created with {len(cues)} cues")
    return {
        "project_id": pipeline.project_id,
        "cue_count": len(cues),
        "seed": pipeline.seed,
    }


@app.get("/api/projects/{project_id}")
async def get_project_status(project_id: str):
    """프로젝트 상태 (세그먼트 / quota / 진행 여부)"""
    return get_project(project_id).status()


@app.post("/api/projects/{project_id}/references", status_code=201)
async def add_reference(project_id: str, req: ReferenceImageRequest):
    """참조 이미지 등록"""
    pipeline = get_project(project_id)
    try:
        data = base64.b64decode(req.data_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="data_base64 is not valid base64")
    try:
        index = pipeline.add_reference_image(data, req.mime_type)
    except OSError:
        raise HTTPException(status_code=400, detail="Unsupported image data")
    return {"index": index}


@app.post("/api/projects/{project_id}/storyboard")
async def create_storyboard(project_id: str):
    """참조 이미지 분석 + 스토리보드 생성"""
    pipeline = get_project(project_id)
    segments = await pipeline.create_storyboard()
    return {"segments": [s.model_dump(mode="json") for s in segments]}


@app.put("/api/projects/{project_id}/style")
async def change_style(project_id: str, req: StyleChangeRequest):
    """스타일 변경 (스토리보드 전체 재생성)"""
    pipeline = get_project(project_id)
    try:
        segments = await pipeline.change_style(req.style_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown style: {req.style_id}")
    return {"style_id": pipeline.style.id, "segments": [s.model_dump(mode="json") for s in segments]}


@app.put("/api/projects/{project_id}/segments/{segment_id}/prompt")
async def update_prompt(project_id: str, segment_id: str, req: PromptUpdateRequest):
    segment = get_project(project_id).update_prompt(segment_id, req.visual_prompt)
    return segment.model_dump(mode="json")


@app.post("/api/projects/{project_id}/segments/{segment_id}/refine")
async def refine_prompt(project_id: str, segment_id: str):
    """AI 프롬프트 다듬기 (실패 시 기존 프롬프트 유지)"""
    segment = await get_project(project_id).refine_prompt(segment_id)
    return segment.model_dump(mode="json")


async def _run_generation(pipeline: ViralCutPipeline):
    try:
        await pipeline.generate_all()
    except ViralCutError as e:
        logger.error(f"[{pipeline.project_id}] Batch generation failed: {e}")


@app.post("/api/projects/{project_id}/generate", status_code=202)
async def generate_all(project_id: str, background_tasks: BackgroundTasks):
    """Idle / Failed 세그먼트 일괄 생성 (백그라운드)"""
    pipeline = get_project(project_id)
    if pipeline.quota.remaining() <= 0:
        raise QuotaExceededError()

    background_tasks.add_task(_run_generation, pipeline)
    return {"project_id": project_id, "status": "started"}


@app.post("/api/projects/{project_id}/stop")
async def stop_generation(project_id: str):
    pipeline = get_project(project_id)
    pipeline.stop_generation()
    return {"project_id": project_id, "status": "stopping"}


@app.post("/api/projects/{project_id}/segments/{segment_id}/regenerate")
async def regenerate_segment(project_id: str, segment_id: str):
    """세그먼트 1개 재생성"""
    segment = await get_project(project_id).regenerate_segment(segment_id)
    return segment.model_dump(mode="json")


@app.post("/api/projects/{project_id}/export")
async def export_video(project_id: str, req: ExportRequest):
    """Completed 세그먼트로 영상 합성"""
    pipeline = get_project(project_id)
    status = pipeline.status()
    blob = await pipeline.export_video(burn_captions=req.burn_captions)
    counts = status["counts"]
    return {
        "project_id": project_id,
        "mime_type": blob.mime_type,
        "size": blob.size,
        "video_url": f"/api/projects/{project_id}/video",
        "partial": counts[SegmentStatus.COMPLETED.value] < len(status["segments"]),
    }


@app.get("/api/projects/{project_id}/video")
async def download_video(project_id: str):
    """생성된 영상 다운로드"""
    pipeline = get_project(project_id)
    video_path = pipeline.video_path

    if not video_path or not os.path.exists(video_path):
        raise HTTPException(status_code=404, detail="영상을 찾을 수 없습니다.")

    extension = os.path.splitext(video_path)[1]
    return FileResponse(
        video_path,
        media_type="video/mp4" if extension == ".mp4" else "video/webm",
        filename=f"viralcut_{project_id}{extension}",
    )


@app.get("/api/projects/{project_id}/segments/{segment_id}/image")
async def download_segment_image(project_id: str, segment_id: str):
    """세그먼트 이미지 다운로드 (scene-<n>.<ext>)"""
    pipeline = get_project(project_id)
    segments = pipeline.store.snapshot()
    for index, segment in enumerate(segments):
        if segment.id != segment_id:
            continue
        if segment.status != SegmentStatus.COMPLETED or not segment.image_uri or not os.path.exists(segment.image_uri):
            raise HTTPException(status_code=404, detail="이미지가 아직 없습니다.")
        extension = os.path.splitext(segment.image_uri)[1] or ".png"
        return FileResponse(segment.image_uri, filename=f"scene-{index + 1}{extension}")
    raise HTTPException(status_code=404, detail="세그먼트를 찾을 수 없습니다.")


@app.get("/health")
async def health_check():
    """헬스 체크"""
    return {
        "status": "ok",
        "version": "1.0",
        "projects": len(projects),
    }


if __name__ == "__main__":
    import uvicorn

    print("""
============================================================
              VIRALCUT API Server v1.0
============================================================
  Server: http://localhost:8000
  API Docs: http://localhost:8000/docs
============================================================
    """)

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "api_server:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        log_level="info"
    )
