"""
Batch Scheduler: 세그먼트 이미지 일괄 생성 (bounded concurrency).

Segment lifecycle:
    Idle -> Generating -> Completed | Failed
    Generating -> Idle            (cancelled, can resume later)
    Failed / Idle                 (eligible for generate_all)
    Completed                     (eligible for regenerate only)

One shared CancellationToken per batch. Starting a new batch cancels the
previous one first.
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

from schemas import SegmentStatus, StoryboardSegment
from utils.errors import (
    ErrorKind,
    GenerationCancelled,
    QuotaExceededError,
    classify_error,
)
from utils.logger import get_logger
from utils.quota import QuotaCounter
from utils.segment_store import SegmentStore

logger = get_logger("batch_scheduler")

BATCH_ELIGIBLE = (SegmentStatus.IDLE, SegmentStatus.FAILED)


class CancellationToken:
    """Cooperative cancellation flag shared by every task of one batch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled()


@dataclass
class BatchReport:
    """Outcome counts of one generate_all run."""
    attempted: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    quota_exceeded: bool = False

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "quota_exceeded": self.quota_exceeded,
        }


# generate_fn(segment, token) -> image reference (file path or data URI)
GenerateFn = Callable[[StoryboardSegment, CancellationToken], Awaitable[str]]


class BatchScheduler:
    """
    세그먼트 이미지 생성 스케줄러.

    Args:
        store: SegmentStore (모든 상태 변경은 store.transition 을 통해서만)
        generate_fn: 세그먼트 1개 이미지 생성 코루틴 (aspect ratio / refs / seed 는 호출자가 바인딩)
        quota: 일일 생성량 카운터
        daily_limit: 일일 최대치 (기본: quota.limit)
        concurrency: 동시 생성 수
    """

    def __init__(
        self,
        store: SegmentStore,
        generate_fn: GenerateFn,
        quota: QuotaCounter,
        daily_limit: Optional[int] = None,
        concurrency: int = 3,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.store = store
        self.generate_fn = generate_fn
        self.quota = quota
        self.daily_limit = daily_limit if daily_limit is not None else quota.limit
        self.concurrency = concurrency

        self._batch_token: Optional[CancellationToken] = None
        self._active_tokens: Set[CancellationToken] = set()
        self._shadow_count = 0
        # launched but not yet finished, across batch and regenerate
        self._reserved = 0

    @property
    def is_running(self) -> bool:
        return bool(self._active_tokens)

    def cancel(self) -> None:
        """진행 중인 모든 생성 작업에 취소 신호."""
        if self._active_tokens:
            logger.info(f"Cancelling {len(self._active_tokens)} active generation run(s)")
        for token in list(self._active_tokens):
            token.cancel()

    def _check_quota(self) -> int:
        used = self.quota.get()
        if used + self._reserved >= self.daily_limit:
            logger.warning(
                f"Daily quota reached ({used}/{self.daily_limit}, {self._reserved} in flight)"
            )
            raise QuotaExceededError()
        return used

    def _release(self, _task=None) -> None:
        self._reserved -= 1

    def _record_success(self) -> None:
        self._shadow_count += 1
        try:
            self.quota.increment()
        except OSError as e:
            # the in-memory shadow still gates the rest of the batch
            logger.error(f"Failed to persist quota counter: {e}")

    async def _run_segment(
        self,
        segment_id: str,
        token: CancellationToken,
        report: Optional[BatchReport] = None,
    ) -> StoryboardSegment:
        """
        세그먼트 1개 생성. 어떤 경로로 끝나든 Generating 상태로 남지 않는다.
        """
        if report is not None:
            current = self.store.get(segment_id)
            if current.status not in BATCH_ELIGIBLE:
                # taken over by regenerate after the batch launched it
                logger.info(f"Segment {segment_id}: already {current.status.value}, skipped")
                report.skipped += 1
                return current
        segment = self.store.transition(segment_id, SegmentStatus.GENERATING)
        if report is not None:
            report.attempted += 1

        try:
            image_uri = await self.generate_fn(segment, token)
            # in-flight result arriving after cancellation is discarded
            token.raise_if_cancelled()
        except asyncio.CancelledError:
            self.store.transition(segment_id, SegmentStatus.IDLE)
            if report is not None:
                report.cancelled += 1
            raise
        except Exception as e:
            if token.cancelled or classify_error(e) == ErrorKind.CANCELLED:
                logger.info(f"Segment {segment_id}: cancelled, reverted to Idle")
                if report is not None:
                    report.cancelled += 1
                return self.store.transition(segment_id, SegmentStatus.IDLE)

            message = str(e) or e.__class__.__name__
            logger.error(f"Segment {segment_id}: generation failed: {message}")
            if report is not None:
                report.failed += 1
            return self.store.transition(segment_id, SegmentStatus.FAILED, error_message=message)

        updated = self.store.transition(segment_id, SegmentStatus.COMPLETED, image_uri=image_uri)
        self._record_success()
        if report is not None:
            report.completed += 1
        logger.info(f"Segment {segment_id}: completed")
        return updated

    async def generate_all(self) -> BatchReport:
        """
        Idle / Failed 세그먼트 전체를 최대 `concurrency` 개씩 생성.

        Raises:
            QuotaExceededError: 시작 시점에 남은 quota 가 없는 경우 (아무 작업도 하지 않음)
        """
        if self._batch_token is not None:
            self._batch_token.cancel()

        eligible = [
            s.id for s in self.store.snapshot()
            if s.status in BATCH_ELIGIBLE
        ]
        self._shadow_count = self._check_quota()

        token = CancellationToken()
        self._batch_token = token
        self._active_tokens.add(token)
        report = BatchReport()

        logger.info(
            f"Batch started: {len(eligible)} segment(s), concurrency={self.concurrency}, "
            f"quota {self._shadow_count}/{self.daily_limit}"
        )

        pending = list(eligible)
        in_flight: Set[asyncio.Task] = set()
        try:
            while pending:
                if token.cancelled:
                    break
                if self._shadow_count + self._reserved >= self.daily_limit:
                    # a regenerate in flight may hold the last slot
                    if not in_flight:
                        report.quota_exceeded = True
                        logger.warning("Daily quota reached during batch; stopping")
                        break
                    done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                    self._collect(done)
                    continue
                if len(in_flight) >= self.concurrency:
                    done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                    self._collect(done)
                    continue

                segment_id = pending.pop(0)
                if self.store.get(segment_id).status not in BATCH_ELIGIBLE:
                    logger.info(f"Segment {segment_id}: no longer eligible, skipped")
                    report.skipped += 1
                    continue
                task = asyncio.create_task(self._run_segment(segment_id, token, report))
                self._reserved += 1
                task.add_done_callback(self._release)
                in_flight.add(task)

            if in_flight:
                done, in_flight = await asyncio.wait(in_flight)
                self._collect(done)
        finally:
            if in_flight:
                for task in in_flight:
                    task.cancel()
                await asyncio.gather(*in_flight, return_exceptions=True)
            self._active_tokens.discard(token)
            if self._batch_token is token:
                self._batch_token = None

        report.skipped += len(pending)
        logger.info(f"Batch finished: {report.to_dict()}")
        return report

    @staticmethod
    def _collect(done: Set[asyncio.Task]) -> None:
        # re-raises anything _run_segment did not turn into a status
        for task in done:
            task.result()

    async def regenerate(self, segment_id: str) -> StoryboardSegment:
        """
        세그먼트 1개 재생성 (Completed 포함).

        Raises:
            QuotaExceededError: 남은 quota 가 없는 경우
            SegmentNotFoundError: 존재하지 않는 id
        """
        self.store.get(segment_id)
        # a running batch keeps its own shadow count
        self._check_quota()

        token = CancellationToken()
        self._active_tokens.add(token)
        self._reserved += 1
        try:
            return await self._run_segment(segment_id, token)
        finally:
            self._release()
            self._active_tokens.discard(token)
