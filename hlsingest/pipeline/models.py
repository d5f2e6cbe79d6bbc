from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional


class JobState(str, enum.Enum):
    received = "received"
    probed = "probed"
    segmented = "segmented"
    uploaded = "uploaded"
    assembled = "assembled"
    committed = "committed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.committed, JobState.failed)


_STATE_ORDER = (
    JobState.received,
    JobState.probed,
    JobState.segmented,
    JobState.uploaded,
    JobState.assembled,
    JobState.committed,
)


def format_duration(seconds: float) -> str:
    """Render whole seconds as ``HH:MM:SS``; fractional seconds are truncated."""
    if seconds < 0:
        raise ValueError("duration must be non-negative")
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass(frozen=True, slots=True)
class MediaMetadata:
    duration_s: float
    format_name: str = "unknown"
    stream_count: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None

    def __post_init__(self) -> None:
        if self.duration_s < 0:
            raise ValueError("duration_s must be non-negative")

    @property
    def duration_string(self) -> str:
        return format_duration(self.duration_s)


@dataclass(frozen=True, slots=True)
class SegmentFile:
    index: int
    path: Path
    duration_s: float


@dataclass(frozen=True, slots=True)
class SegmentSet:
    """Segments produced by one transcode run plus the manifest listing them in order."""

    manifest_path: Path
    segments: tuple[SegmentFile, ...]
    target_duration_s: int

    def __post_init__(self) -> None:
        for expected, segment in enumerate(self.segments):
            if segment.index != expected:
                raise ValueError(f"segment numbering gap at index {expected}")

    @property
    def total_duration_s(self) -> float:
        return sum(segment.duration_s for segment in self.segments)


@dataclass(frozen=True, slots=True)
class Rendition:
    """One output tier. ``height=None`` keeps the source resolution."""

    height: Optional[int] = None
    label: Optional[str] = None

    def resolve_label(self, metadata: MediaMetadata, fallback: str) -> str:
        if self.label:
            return self.label
        if self.height:
            return f"{self.height}p"
        if metadata.height:
            return f"{metadata.height}p"
        return fallback


@dataclass(frozen=True, slots=True)
class QualityVariant:
    resolution_label: str
    manifest_url: str


@dataclass(frozen=True, slots=True)
class UploadResult:
    manifest_url: str
    segment_urls: tuple[str, ...]
    thumbnail_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class VideoAsset:
    title: str
    description: str
    thumbnail_url: str
    manifest_url: str
    duration_string: str
    quality_variants: tuple[QualityVariant, ...]
    owner_id: str
    created_at: datetime
    asset_id: Optional[str] = None
    tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.quality_variants:
            raise ValueError("a video asset needs at least one quality variant")
        labels = [variant.resolution_label for variant in self.quality_variants]
        if len(set(labels)) != len(labels):
            raise ValueError(f"duplicate resolution labels: {labels}")


@dataclass(frozen=True, slots=True)
class IngestRequest:
    source_path: Path
    thumbnail_path: Path
    title: str
    description: str
    owner_id: str
    tags: tuple[str, ...] = ()


@dataclass(slots=True)
class IngestJob:
    id: str
    source_path: Path
    thumbnail_path: Path
    work_dir: Path
    state: JobState = JobState.received
    error: Optional[BaseException] = field(default=None, repr=False)

    def advance(self, target: JobState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"job {self.id} already terminal ({self.state.value})")
        if target is JobState.failed:
            self.state = target
            return
        current = _STATE_ORDER.index(self.state)
        if _STATE_ORDER.index(target) != current + 1:
            raise RuntimeError(f"illegal transition {self.state.value} -> {target.value}")
        self.state = target


__all__ = [
    "JobState",
    "format_duration",
    "MediaMetadata",
    "SegmentFile",
    "SegmentSet",
    "Rendition",
    "QualityVariant",
    "UploadResult",
    "VideoAsset",
    "IngestRequest",
    "IngestJob",
]
