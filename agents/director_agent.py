"""
Director Agent: SRT 큐 → 스토리보드 세그먼트 (Gemini).

The model picks which cues belong together and how each scene should look;
the timeline itself is always rebuilt from the original cue times
(`hydrate_segments`) so the storyboard covers the whole script without gaps.
"""

import asyncio
import json
import os
import uuid
from typing import Any, Awaitable, Callable, List, Optional

from google import genai
from google.genai import types

from schemas import (
    CameraMovement,
    ReferenceAsset,
    SegmentDraft,
    StoryboardSegment,
    StyleDescriptor,
    TimedCue,
    ViralTactic,
)
from agents.subtitle_utils import script_duration
from utils.constants import MIN_SEGMENT_DURATION_SEC, MODEL_GEMINI_FLASH, NO_REFERENCE_INDEX
from utils.errors import (
    ErrorKind,
    StoryboardError,
    STORYBOARD_EMPTY_CODE,
    STORYBOARD_FAILED_CODE,
    classify_error,
)
from utils.llm_utils import parse_llm_json
from utils.logger import get_logger

logger = get_logger("director")

HEALING_STYLE_ID = "oil_painting"

REFERENCE_ANALYSIS_PROMPT = """
Analyze these images and identify the specific MAIN ENTITY in each one.
Return a JSON array of strings, where each string describes the entity at that index.

Example Output: ["The book 'Principles' by Ray Dalio", "A bottle of Chanel No.5 perfume"]

Be specific. If it is a book, mention the title and author on the cover. If it is a product, mention the brand.
"""


def hydrate_segments(
    drafts: List[SegmentDraft],
    cues: List[TimedCue],
    num_reference_assets: int,
    gap_warning_sec: float = 3.0,
) -> List[StoryboardSegment]:
    """
    Director 초안을 원본 큐 타임라인에 맞춰 세그먼트로 변환.

    1. subtitle_ids 를 큐에 매칭 (매칭 0개인 초안은 버림)
    2. start = min(cue start), end = max(cue end), text = 시작 순 결합
    3. reference_image_index 가 [0, n) 밖이면 None
    4. 시작 시간 순 정렬 후 gap closing:
       - 다음 세그먼트 시작이 더 늦으면 현재 end 를 거기까지 연장
       - 마지막 세그먼트는 최대 cue end 까지 연장
    5. duration = max(0.1, end - cursor), cursor 는 end 로 전진

    Args:
        drafts: 모델이 반환한 초안
        cues: 원본 TimedCue 목록
        num_reference_assets: 업로드된 참조 이미지 수
        gap_warning_sec: 이 값보다 크게 연장된 세그먼트는 경고 로그

    Returns:
        IDLE 상태의 StoryboardSegment 목록 (끊김 없는 타임라인)
    """
    max_cue_end = script_duration(cues)

    hydrated = []
    for draft in drafts:
        wanted = set(draft.subtitle_ids)
        matched = [cue for cue in cues if cue.id in wanted]
        if not matched:
            logger.debug(f"Dropping draft with unmatched subtitle ids: {draft.subtitle_ids}")
            continue
        matched.sort(key=lambda c: c.start_seconds)

        ref_index = draft.reference_image_index
        if ref_index is None or ref_index < 0 or ref_index >= num_reference_assets:
            ref_index = None

        hydrated.append({
            "draft": draft,
            "start": min(c.start_seconds for c in matched),
            "end": max(c.end_seconds for c in matched),
            "text": " ".join(c.text for c in matched),
            "ref_index": ref_index,
        })

    hydrated.sort(key=lambda item: item["start"])

    segments = []
    cursor = 0.0
    timeline = 0.0
    batch_tag = uuid.uuid4().hex[:8]
    for index, item in enumerate(hydrated):
        segment_end = item["end"]
        if index < len(hydrated) - 1:
            next_start = hydrated[index + 1]["start"]
            if next_start > segment_end:
                segment_end = next_start
        elif segment_end < max_cue_end:
            segment_end = max_cue_end

        extension = segment_end - item["end"]
        if extension > gap_warning_sec:
            logger.warning(
                f"Segment {index} stretched by {extension:.2f}s "
                f"({item['end']:.2f}s -> {segment_end:.2f}s) to keep the timeline gapless"
            )

        duration = max(MIN_SEGMENT_DURATION_SEC, segment_end - cursor)
        draft = item["draft"]
        segments.append(StoryboardSegment(
            id=f"seg-{index}-{batch_tag}",
            text=item["text"],
            duration_seconds=duration,
            visual_prompt=draft.visual_prompt,
            camera_movement=draft.camera_movement,
            viral_reasoning=draft.viral_reasoning,
            tactic=draft.tactic,
            reference_asset_index=item["ref_index"],
            start_seconds=timeline,
            end_seconds=timeline + duration,
        ))
        cursor = segment_end
        timeline += duration

    return segments


class DirectorAgent:
    """
    Short-video creative director backed by Gemini.

    Wraps three text/JSON requests against the generative backend:
    reference image analysis, storyboard generation and prompt refinement.
    """

    def __init__(
        self,
        api_key: str = None,
        client: Any = None,
        model: str = MODEL_GEMINI_FLASH,
        max_attempts: int = 5,
        backoff_base_sec: float = 2.0,
        backoff_offset_sec: float = 1.0,
        gap_warning_sec: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize Director Agent.

        Args:
            api_key: Google API key (default: GOOGLE_API_KEY)
            client: pre-built genai.Client (tests inject a fake)
            model: Gemini text model
            max_attempts: storyboard attempts on rate limiting
            backoff_base_sec / backoff_offset_sec: wait = base * 2**attempt + offset
            gap_warning_sec: threshold for flagging timeline stretches
            sleep: awaitable delay function
        """
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self._client = client
        self.model = model
        self.max_attempts = max_attempts
        self.backoff_base_sec = backoff_base_sec
        self.backoff_offset_sec = backoff_offset_sec
        self.gap_warning_sec = gap_warning_sec
        self._sleep = sleep

    @property
    def client(self):
        """Lazy initialization of the Gemini client."""
        if self._client is None:
            if not self.api_key:
                raise ValueError("API key is required. Set GOOGLE_API_KEY environment variable.")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    # =========================================================================
    # Reference image analysis
    # =========================================================================

    async def analyze_reference_images(self, assets: List[ReferenceAsset]) -> List[str]:
        """
        참조 이미지별 엔티티 설명 생성.

        Never raises: on any failure the descriptions fall back to
        "Reference Image {i}" so the storyboard can still use the indices.
        """
        if not assets:
            return []

        fallback = [f"Reference Image {i}" for i in range(len(assets))]
        parts = [types.Part.from_text(text=REFERENCE_ANALYSIS_PROMPT)]
        parts.extend(
            types.Part.from_bytes(data=asset.data, mime_type=asset.mime_type)
            for asset in assets
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[types.Content(role="user", parts=parts)],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=types.Schema(
                        type=types.Type.ARRAY,
                        items=types.Schema(type=types.Type.STRING),
                    ),
                ),
            )
            descriptions = parse_llm_json(response.text or "[]")
        except Exception as e:
            logger.warning(f"Failed to analyze reference images, falling back to generic indexing: {e}")
            return fallback

        if not isinstance(descriptions, list):
            logger.warning("Reference analysis did not return a JSON array; using generic indexing")
            return fallback

        descriptions = [str(d) for d in descriptions][:len(assets)]
        descriptions.extend(fallback[len(descriptions):])
        logger.info(f"Reference image analysis: {descriptions}")
        return descriptions

    # =========================================================================
    # Storyboard
    # =========================================================================

    def build_system_instruction(
        self,
        style: StyleDescriptor,
        reference_descriptions: List[str],
    ) -> str:
        """Director 시스템 지시문 (visual consistency + era + reference assets)."""
        if style.id == HEALING_STYLE_ID:
            strategy = "### STRATEGY: Healing/Therapeutic. Slow pacing, back views, nature focus."
        else:
            strategy = "### STRATEGY: Viral/TikTok. Fast pacing, hook at start."

        ref_context = "\n    ".join(
            f"Index {i}: {desc}" for i, desc in enumerate(reference_descriptions)
        ) or "(none)"
        max_index = max(0, len(reference_descriptions) - 1)

        return f"""
    You are a world-class Short Video Creative Director.
    Your goal is to transform a subtitle script into a visual storyboard matching the style: "{style.name}" ({style.description}).

    ### 1. UNIFIED VISUAL CONSISTENCY (HIGHEST PRIORITY):
    *   **Consistent Environment**: Establish a SINGLE, cohesive setting. Do not jump between wildly different locations unless the script explicitly demands it.
    *   **Consistent Lighting**: Maintain the same time of day and lighting conditions across ALL segments.
    *   **Consistent Palette**: Use the prompt to enforce a specific color palette defined by the style "{style.name}".
    *   **Recurring Characters**: If a character appears, describe them EXACTLY the same way in every visual_prompt.

    ### 2. TEMPORAL & SOCIAL CONTEXT:
    *   **DETECT ERA**: Analyze the script for time cues.
        *   Keywords like "AI", "Crypto", "Current Market", "Mobile App" -> **MODERN DAY (2020s)**.
        *   Keywords like "Ancient", "Dynasty" -> **HISTORICAL**.
        *   **DEFAULT**: **MODERN DAY (Present)**.
    *   **OUTPUT RULE**: In `visual_prompt`, explicitly state the era AND the consistent lighting/setting in EVERY segment.

    ### 3. REFERENCE ASSETS:
    You have access to the following specific uploaded assets:
    {ref_context}

    **INTELLIGENT ENTITY MATCHING RULES:**
    *   **Strict Semantic Matching**: Only assign a `reference_image_index` if the subtitle text refers to the *specific physical entity* described in the asset.
    *   **Avoid Ambiguity**: If the scene is abstract, set `reference_image_index` to {NO_REFERENCE_INDEX}.

    ### 4. VISUAL STYLE:
    *   Match the style description: {style.description}

    {strategy}

    ### JSON OUTPUT INSTRUCTIONS:
    Generate a `visual_prompt` like a Midjourney prompt.
    Field `reference_image_index`: Integer. The index of the uploaded image to use (0 to {max_index}). Set to {NO_REFERENCE_INDEX} if no reference needed.
    """

    def build_storyboard_prompt(self, cues: List[TimedCue], num_reference_assets: int) -> str:
        simple_subs = [
            {"id": cue.id, "time": f"{cue.start_timecode} --> {cue.end_timecode}", "text": cue.text}
            for cue in cues
        ]
        return f"""
    SRT content:
    {json.dumps(simple_subs, ensure_ascii=False)}

    Reference Images Available: {num_reference_assets}

    Generate JSON storyboard for the ENTIRE script. Every subtitle id must belong to a segment.
    Ensure VISUAL CONSISTENCY across all frames.
    """

    @staticmethod
    def storyboard_response_schema() -> types.Schema:
        return types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "subtitle_ids": types.Schema(
                        type=types.Type.ARRAY,
                        items=types.Schema(type=types.Type.STRING),
                    ),
                    "visual_prompt": types.Schema(
                        type=types.Type.STRING,
                        description="Detailed visual prompt. MUST repeat the core setting/lighting keywords for consistency.",
                    ),
                    "reference_image_index": types.Schema(
                        type=types.Type.INTEGER,
                        description="Index of reference image to use (0-N), or -1 if none.",
                    ),
                    "camera_movement": types.Schema(
                        type=types.Type.STRING,
                        enum=[m.value for m in CameraMovement],
                    ),
                    "viral_reasoning": types.Schema(type=types.Type.STRING),
                    "tactic": types.Schema(
                        type=types.Type.STRING,
                        enum=[t.value for t in ViralTactic],
                    ),
                },
                required=[
                    "subtitle_ids",
                    "visual_prompt",
                    "reference_image_index",
                    "camera_movement",
                    "viral_reasoning",
                    "tactic",
                ],
            ),
        )

    async def generate_storyboard(
        self,
        cues: List[TimedCue],
        style: StyleDescriptor,
        reference_descriptions: Optional[List[str]] = None,
    ) -> List[StoryboardSegment]:
        """
        큐 목록 → 스토리보드 세그먼트.

        Rate-limit errors are retried with exponential backoff up to
        `max_attempts`; any other error propagates immediately.
        """
        reference_descriptions = reference_descriptions or []
        logger.info(
            f"Generating storyboard: {len(cues)} cues / style={style.id} / refs={len(reference_descriptions)}"
        )

        config = types.GenerateContentConfig(
            system_instruction=self.build_system_instruction(style, reference_descriptions),
            response_mime_type="application/json",
            response_schema=self.storyboard_response_schema(),
        )
        prompt = self.build_storyboard_prompt(cues, len(reference_descriptions))

        last_error: Optional[BaseException] = None
        for attempt in range(self.max_attempts):
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.model,
                    contents=prompt,
                    config=config,
                )
                return self._segments_from_response(response, cues, len(reference_descriptions))
            except Exception as e:
                last_error = e
                if classify_error(e) != ErrorKind.TRANSIENT:
                    raise
                if attempt == self.max_attempts - 1:
                    break
                wait = self.backoff_base_sec * (2 ** attempt) + self.backoff_offset_sec
                logger.warning(
                    f"Storyboard generation rate limited (attempt {attempt + 1}/{self.max_attempts}). "
                    f"Retrying in {wait:.1f}s..."
                )
                await self._sleep(wait)

        logger.error(f"Storyboard generation gave up after {self.max_attempts} attempts: {last_error}")
        raise last_error

    def _segments_from_response(
        self,
        response: Any,
        cues: List[TimedCue],
        num_reference_assets: int,
    ) -> List[StoryboardSegment]:
        raw_segments = parse_llm_json(response.text or "[]")
        if not isinstance(raw_segments, list):
            raise StoryboardError(STORYBOARD_FAILED_CODE, "Storyboard response is not a JSON array")

        drafts = [SegmentDraft.from_raw(item) for item in raw_segments if isinstance(item, dict)]
        segments = hydrate_segments(drafts, cues, num_reference_assets, self.gap_warning_sec)
        if not segments:
            raise StoryboardError(
                STORYBOARD_EMPTY_CODE,
                "The director returned no segments matching the subtitle ids",
            )
        logger.info(f"Storyboard ready: {len(segments)} segments")
        return segments

    # =========================================================================
    # Prompt refinement
    # =========================================================================

    async def refine_prompt(self, current_prompt: str, style: StyleDescriptor) -> str:
        """
        프롬프트를 스타일에 맞게 재작성. 실패 처리는 호출자 책임 (no retry).
        """
        prompt = (
            f'Refine this prompt for style "{style.name}". '
            f"Ensure it matches the consistent atmosphere of: {style.description}. "
            f'Prompt: "{current_prompt}". Remove AI feel. Return only prompt.'
        )
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
        )
        refined = (response.text or "").strip()
        return refined or current_prompt
