"""
Image Agent: Generates still images for storyboard segments.

Each image is later animated with a Ken Burns move by the ComposerAgent.
The reference image chosen by the director (if any) is attached as an extra
input part so the same product / person shows up across scenes.
"""

import asyncio
import base64
import os
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from google import genai
from google.genai import types

from schemas import AspectRatio, ReferenceAsset, StoryboardSegment
from utils.constants import (
    IMAGE_NEGATIVE_DESCRIPTORS,
    IMAGE_POSITIVE_DESCRIPTORS,
    IMAGE_SIZE,
    MODEL_GEMINI_PRO_IMAGE,
    REFERENCE_INTEGRATION_INSTRUCTION,
)
from utils.errors import (
    ErrorKind,
    GenerationCancelled,
    ImageGenerationError,
    IMAGE_FAILED_CODE,
    IMAGE_NO_DATA_CODE,
    classify_error,
)
from utils.logger import get_logger

logger = get_logger("image_agent")

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


@dataclass(frozen=True)
class GeneratedImage:
    """Raw image bytes returned by the backend."""
    data: bytes
    mime_type: str = "image/png"

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self.mime_type, "png")

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def resolve_reference(
    segment: StoryboardSegment,
    reference_assets: List[ReferenceAsset],
) -> Optional[ReferenceAsset]:
    """세그먼트가 가리키는 참조 이미지 (범위 밖이면 None)."""
    index = segment.reference_asset_index
    if index is None or index < 0 or index >= len(reference_assets):
        return None
    return reference_assets[index]


class ImageAgent:
    """
    이미지 생성 에이전트 (Gemini Pro Image)

    Retry policy per segment:
    - rate limit: exponential backoff with jitter
    - not found (404): fatal, no retry
    - anything else: fixed backoff then retry
    - cancellation: checked before every attempt
    """

    SAFETY_CATEGORIES = (
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )

    def __init__(
        self,
        api_key: str = None,
        client: Any = None,
        model: str = MODEL_GEMINI_PRO_IMAGE,
        max_attempts: int = 8,
        backoff_base_sec: float = 2.0,
        backoff_jitter_sec: float = 1.0,
        fixed_backoff_sec: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize Image Agent.

        Args:
            api_key: Google API key (default: GOOGLE_API_KEY)
            client: pre-built genai.Client (tests inject a fake)
            model: Gemini image model
            max_attempts: attempts per segment
            backoff_base_sec / backoff_jitter_sec: rate-limit wait = base * 2**attempt + U(0, jitter)
            fixed_backoff_sec: wait after any other retryable error
            sleep: awaitable delay function
        """
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self._client = client
        self.model = model
        self.max_attempts = max_attempts
        self.backoff_base_sec = backoff_base_sec
        self.backoff_jitter_sec = backoff_jitter_sec
        self.fixed_backoff_sec = fixed_backoff_sec
        self._sleep = sleep

    @property
    def client(self):
        """Lazy initialization of the Gemini client."""
        if self._client is None:
            if not self.api_key:
                raise ValueError("API key is required. Set GOOGLE_API_KEY environment variable.")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @staticmethod
    def build_prompt(
        segment: StoryboardSegment,
        aspect_ratio: AspectRatio,
        has_reference: bool = False,
        extra_negative: Optional[str] = None,
    ) -> str:
        """
        최종 프롬프트 = visual prompt + 품질 토큰 + 비율 + 제외 토큰.
        """
        ratio = aspect_ratio.value if isinstance(aspect_ratio, AspectRatio) else str(aspect_ratio)
        negative = IMAGE_NEGATIVE_DESCRIPTORS
        if extra_negative:
            negative = f"{negative}, {extra_negative}"

        prompt = (
            f"{segment.visual_prompt}. {IMAGE_POSITIVE_DESCRIPTORS}. "
            f"Aspect ratio {ratio}. Exclude: {negative}."
        )
        if has_reference:
            prompt = f"{REFERENCE_INTEGRATION_INSTRUCTION} {prompt}"
        return prompt

    def _build_config(self, aspect_ratio: AspectRatio, seed: Optional[int]) -> types.GenerateContentConfig:
        ratio = aspect_ratio.value if isinstance(aspect_ratio, AspectRatio) else str(aspect_ratio)
        return types.GenerateContentConfig(
            image_config=types.ImageConfig(aspect_ratio=ratio, image_size=IMAGE_SIZE),
            seed=seed,
            safety_settings=[
                types.SafetySetting(
                    category=category,
                    threshold=types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
                )
                for category in self.SAFETY_CATEGORIES
            ],
        )

    @staticmethod
    def extract_image(response: Any) -> Optional[GeneratedImage]:
        """응답 part 중 inline image data 를 찾아 반환."""
        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline is not None and getattr(inline, "data", None):
                    data = inline.data
                    if isinstance(data, str):
                        data = base64.b64decode(data)
                    return GeneratedImage(data=data, mime_type=inline.mime_type or "image/png")
        return None

    async def generate_image_for_segment(
        self,
        segment: StoryboardSegment,
        aspect_ratio: AspectRatio,
        reference_assets: Optional[List[ReferenceAsset]] = None,
        cancel_token: Any = None,
        seed: Optional[int] = None,
        negative_prompt: Optional[str] = None,
    ) -> GeneratedImage:
        """
        세그먼트 하나의 이미지 생성.

        Args:
            segment: 대상 세그먼트
            aspect_ratio: 9:16 / 16:9
            reference_assets: 프로젝트 전체 참조 이미지 목록
            cancel_token: CancellationToken (cooperative)
            seed: 프로젝트 공통 시드
            negative_prompt: 스타일별 추가 제외 토큰

        Raises:
            GenerationCancelled: 토큰이 취소된 경우
            Exception: 404 류 fatal 에러 또는 재시도 소진 시 마지막 에러
        """
        def _check_cancelled():
            if cancel_token is not None and cancel_token.cancelled:
                raise GenerationCancelled()

        _check_cancelled()

        reference = resolve_reference(segment, reference_assets or [])
        logger.info(
            f"Starting image generation for segment {segment.id}. "
            f"Ref Index: {segment.reference_asset_index if reference else None}"
        )

        parts = []
        if reference is not None:
            parts.append(types.Part.from_bytes(data=reference.data, mime_type=reference.mime_type))
        parts.append(types.Part.from_text(
            text=self.build_prompt(segment, aspect_ratio, reference is not None, negative_prompt)
        ))
        contents = [types.Content(role="user", parts=parts)]
        config = self._build_config(aspect_ratio, seed)

        last_error: Optional[BaseException] = None
        for attempt in range(self.max_attempts):
            _check_cancelled()
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=config,
                )
                image = self.extract_image(response)
                if image is None:
                    raise ImageGenerationError(IMAGE_NO_DATA_CODE, "No image data found")
                logger.info(f"Segment {segment.id}: image received ({len(image.data)} bytes)")
                return image
            except Exception as e:
                _check_cancelled()
                last_error = e
                kind = classify_error(e)
                if kind == ErrorKind.FATAL:
                    logger.error(f"Segment {segment.id}: fatal error, not retrying: {e}")
                    raise
                if attempt == self.max_attempts - 1:
                    break
                if kind == ErrorKind.TRANSIENT:
                    wait = self.backoff_base_sec * (2 ** attempt) + random.uniform(0, self.backoff_jitter_sec)
                    logger.warning(
                        f"Segment {segment.id}: rate limited (attempt {attempt + 1}/{self.max_attempts}), "
                        f"retrying in {wait:.1f}s"
                    )
                else:
                    wait = self.fixed_backoff_sec
                    logger.warning(
                        f"Segment {segment.id}: attempt {attempt + 1}/{self.max_attempts} failed ({e}), "
                        f"retrying in {wait:.1f}s"
                    )
                await self._sleep(wait)

        if last_error is None:
            last_error = ImageGenerationError(IMAGE_FAILED_CODE, "Image generation failed")
        raise last_error
