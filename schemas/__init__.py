"""
VIRALCUT Data Models (Pydantic Schemas)
"""

from .models import (
    AspectRatio,
    CameraMovement,
    ViralTactic,
    SegmentStatus,
    TimedCue,
    StyleDescriptor,
    ReferenceAsset,
    SegmentDraft,
    StoryboardSegment,
    QuotaState,
    ProjectManifest,
)

__all__ = [
    "AspectRatio",
    "CameraMovement",
    "ViralTactic",
    "SegmentStatus",
    "TimedCue",
    "StyleDescriptor",
    "ReferenceAsset",
    "SegmentDraft",
    "StoryboardSegment",
    "QuotaState",
    "ProjectManifest",
]
