"""
Segment state container.

All status changes go through `apply_transition`, a pure function, and
`SegmentStore.transition` applies it atomically per segment id so concurrent
generation tasks never clobber each other's updates.
"""

import threading
from collections import Counter
from typing import Dict, Iterable, List, Optional

from schemas import SegmentStatus, StoryboardSegment
from utils.errors import InvalidTransitionError, SegmentNotFoundError


ALLOWED_TRANSITIONS = {
    SegmentStatus.IDLE: {SegmentStatus.GENERATING},
    SegmentStatus.FAILED: {SegmentStatus.GENERATING},
    # explicit single-segment regenerate
    SegmentStatus.COMPLETED: {SegmentStatus.GENERATING},
    SegmentStatus.GENERATING: {
        SegmentStatus.COMPLETED,
        SegmentStatus.FAILED,
        SegmentStatus.IDLE,
    },
}


def apply_transition(
    segment: StoryboardSegment,
    status: SegmentStatus,
    image_uri: Optional[str] = None,
    error_message: Optional[str] = None,
) -> StoryboardSegment:
    """
    Return a copy of `segment` moved to `status`.

    image_uri is kept only for COMPLETED, error_message only for FAILED.
    """
    if status not in ALLOWED_TRANSITIONS.get(segment.status, set()):
        raise InvalidTransitionError(
            f"segment {segment.id}: {segment.status.value} -> {status.value} is not allowed"
        )
    if status == SegmentStatus.COMPLETED and not image_uri:
        raise InvalidTransitionError(f"segment {segment.id}: COMPLETED requires an image")

    return segment.model_copy(update={
        "status": status,
        "image_uri": image_uri if status == SegmentStatus.COMPLETED else None,
        "error_message": (error_message or "Generation failed") if status == SegmentStatus.FAILED else None,
    })


class SegmentStore:
    """Ordered, id-keyed storyboard state."""

    def __init__(self, segments: Optional[Iterable[StoryboardSegment]] = None):
        self._lock = threading.Lock()
        self._order: List[str] = []
        self._segments: Dict[str, StoryboardSegment] = {}
        if segments:
            self.replace_all(segments)

    def __len__(self) -> int:
        return len(self._order)

    def replace_all(self, segments: Iterable[StoryboardSegment]) -> None:
        """Swap in a freshly directed storyboard (style change = full regeneration)."""
        segments = list(segments)
        ids = [s.id for s in segments]
        if len(set(ids)) != len(ids):
            raise ValueError("segment ids must be unique")
        with self._lock:
            self._order = ids
            self._segments = {s.id: s for s in segments}

    def snapshot(self) -> List[StoryboardSegment]:
        with self._lock:
            return [self._segments[i] for i in self._order]

    def get(self, segment_id: str) -> StoryboardSegment:
        with self._lock:
            try:
                return self._segments[segment_id]
            except KeyError:
                raise SegmentNotFoundError(segment_id) from None

    def transition(
        self,
        segment_id: str,
        status: SegmentStatus,
        image_uri: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> StoryboardSegment:
        with self._lock:
            current = self._segments.get(segment_id)
            if current is None:
                raise SegmentNotFoundError(segment_id)
            updated = apply_transition(current, status, image_uri, error_message)
            self._segments[segment_id] = updated
            return updated

    def update_prompt(self, segment_id: str, visual_prompt: str) -> StoryboardSegment:
        with self._lock:
            current = self._segments.get(segment_id)
            if current is None:
                raise SegmentNotFoundError(segment_id)
            updated = current.model_copy(update={"visual_prompt": visual_prompt})
            self._segments[segment_id] = updated
            return updated

    def completed(self) -> List[StoryboardSegment]:
        return [s for s in self.snapshot() if s.status == SegmentStatus.COMPLETED and s.image_uri]

    def count_by_status(self) -> Dict[SegmentStatus, int]:
        counts = Counter(s.status for s in self.snapshot())
        return {status: counts.get(status, 0) for status in SegmentStatus}
