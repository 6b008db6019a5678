"""
Unit tests for ImageAgent prompt building and retry policy.

Tests cover:
1. Prompt composition (descriptors, aspect ratio, reference instruction, style negatives)
2. Retry ceiling (8 attempts) on rate limiting, fixed backoff for other errors
3. 404 is fatal, missing image data is retryable
4. Cooperative cancellation
"""
import asyncio
import base64
import sys
import os
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from agents.batch_scheduler import CancellationToken
from agents.image_agent import GeneratedImage, ImageAgent, resolve_reference
from schemas import AspectRatio, ReferenceAsset, StoryboardSegment
from utils.constants import REFERENCE_INTEGRATION_INSTRUCTION
from utils.errors import GenerationCancelled, ImageGenerationError
from fakes import (
    FakeGenaiClient,
    NotFoundError,
    RateLimitError,
    SleepRecorder,
    empty_image_response,
    image_response,
)


def segment(ref=None, prompt="A lighthouse at dusk"):
    return StoryboardSegment(id="seg-1", duration_seconds=3.0, visual_prompt=prompt, reference_asset_index=ref)


REFS = [ReferenceAsset(data=b"ref-bytes", mime_type="image/jpeg")]


class TestBuildPrompt:

    def test_without_reference(self):
        prompt = ImageAgent.build_prompt(segment(), AspectRatio.VERTICAL)
        assert prompt.startswith("A lighthouse at dusk. ")
        assert "Aspect ratio 9:16" in prompt
        assert "Exclude: blurry" in prompt
        assert REFERENCE_INTEGRATION_INSTRUCTION not in prompt

    def test_with_reference(self):
        prompt = ImageAgent.build_prompt(segment(ref=0), AspectRatio.HORIZONTAL, has_reference=True)
        assert prompt.startswith(REFERENCE_INTEGRATION_INSTRUCTION)
        assert "Aspect ratio 16:9" in prompt

    def test_style_negative_appended(self):
        prompt = ImageAgent.build_prompt(segment(), AspectRatio.VERTICAL, extra_negative="photorealism")
        assert prompt.rstrip(".").endswith("photorealism")


class TestResolveReference:

    def test_in_range(self):
        assert resolve_reference(segment(ref=0), REFS) is REFS[0]

    def test_out_of_range_or_missing(self):
        assert resolve_reference(segment(ref=3), REFS) is None
        assert resolve_reference(segment(), REFS) is None


class TestGeneratedImage:

    def test_data_uri(self):
        image = GeneratedImage(data=b"abc", mime_type="image/jpeg")
        assert image.to_data_uri() == "data:image/jpeg;base64," + base64.b64encode(b"abc").decode()
        assert image.extension == "jpg"


class TestGenerateImage:

    def test_success_with_reference_part(self):
        client = FakeGenaiClient(lambda n: image_response(b"PNGDATA"))
        agent = ImageAgent(client=client, sleep=SleepRecorder())
        image = asyncio.run(agent.generate_image_for_segment(segment(ref=0), AspectRatio.VERTICAL, REFS, seed=42))

        assert image.data == b"PNGDATA"
        call = client.calls[0]
        parts = call["contents"][0].parts
        assert len(parts) == 2
        assert parts[0].inline_data.data == b"ref-bytes"
        assert parts[1].text.startswith(REFERENCE_INTEGRATION_INSTRUCTION)
        assert call["config"].seed == 42
        assert call["config"].image_config.aspect_ratio == "9:16"
        assert call["config"].image_config.image_size == "1K"

    def test_out_of_range_reference_not_attached(self):
        client = FakeGenaiClient(lambda n: image_response())
        agent = ImageAgent(client=client, sleep=SleepRecorder())
        asyncio.run(agent.generate_image_for_segment(segment(ref=5), AspectRatio.VERTICAL, REFS))
        assert len(client.calls[0]["contents"][0].parts) == 1

    def test_retry_ceiling_is_eight(self):
        """Always rate limited -> exactly 8 attempts then the error surfaces."""
        client = FakeGenaiClient(lambda n: RateLimitError())
        sleep = SleepRecorder()
        agent = ImageAgent(client=client, sleep=sleep)

        with pytest.raises(RateLimitError):
            asyncio.run(agent.generate_image_for_segment(segment(), AspectRatio.VERTICAL, []))

        assert len(client.calls) == 8
        assert len(sleep.delays) == 7
        for attempt, delay in enumerate(sleep.delays):
            base = 2.0 * (2 ** attempt)
            assert base <= delay <= base + 1.0

    def test_not_found_is_fatal(self):
        client = FakeGenaiClient(lambda n: NotFoundError())
        sleep = SleepRecorder()
        agent = ImageAgent(client=client, sleep=sleep)

        with pytest.raises(NotFoundError):
            asyncio.run(agent.generate_image_for_segment(segment(), AspectRatio.VERTICAL, []))
        assert len(client.calls) == 1
        assert sleep.delays == []

    def test_other_errors_use_fixed_backoff(self):
        client = FakeGenaiClient(lambda n: RuntimeError("socket hang up") if n < 3 else image_response())
        sleep = SleepRecorder()
        agent = ImageAgent(client=client, sleep=sleep)

        asyncio.run(agent.generate_image_for_segment(segment(), AspectRatio.VERTICAL, []))
        assert sleep.delays == [2.0, 2.0]

    def test_missing_image_data_is_retried(self):
        client = FakeGenaiClient(lambda n: empty_image_response() if n == 1 else image_response(b"ok"))
        agent = ImageAgent(client=client, sleep=SleepRecorder())
        image = asyncio.run(agent.generate_image_for_segment(segment(), AspectRatio.VERTICAL, []))
        assert image.data == b"ok"
        assert len(client.calls) == 2

    def test_missing_image_data_everywhere(self):
        client = FakeGenaiClient(lambda n: empty_image_response())
        agent = ImageAgent(client=client, sleep=SleepRecorder(), max_attempts=3)
        with pytest.raises(ImageGenerationError, match="No image data found"):
            asyncio.run(agent.generate_image_for_segment(segment(), AspectRatio.VERTICAL, []))
        assert len(client.calls) == 3

    def test_cancelled_before_start(self):
        client = FakeGenaiClient(lambda n: image_response())
        token = CancellationToken()
        token.cancel()
        agent = ImageAgent(client=client, sleep=SleepRecorder())

        with pytest.raises(GenerationCancelled):
            asyncio.run(agent.generate_image_for_segment(segment(), AspectRatio.VERTICAL, [], cancel_token=token))
        assert client.calls == []

    def test_cancelled_during_backoff(self):
        token = CancellationToken()

        def responder(n):
            token.cancel()
            return RateLimitError()

        client = FakeGenaiClient(responder)
        agent = ImageAgent(client=client, sleep=SleepRecorder())
        with pytest.raises(GenerationCancelled):
            asyncio.run(agent.generate_image_for_segment(segment(), AspectRatio.VERTICAL, [], cancel_token=token))
        assert len(client.calls) == 1
