"""Media ingestion and HLS packaging pipeline."""

from .assembler import assemble
from .coordinator import IngestCoordinator, PersistenceSink, validate_request
from .models import (
    IngestJob,
    IngestRequest,
    JobState,
    MediaMetadata,
    QualityVariant,
    Rendition,
    SegmentFile,
    SegmentSet,
    UploadResult,
    VideoAsset,
    format_duration,
)
from .prober import MediaProber, parse_probe_output
from .segmenter import Segmenter
from .uploader import ArtifactUploader

__all__ = [
    "ArtifactUploader",
    "IngestCoordinator",
    "IngestJob",
    "IngestRequest",
    "JobState",
    "MediaMetadata",
    "MediaProber",
    "PersistenceSink",
    "QualityVariant",
    "Rendition",
    "SegmentFile",
    "SegmentSet",
    "Segmenter",
    "UploadResult",
    "VideoAsset",
    "assemble",
    "format_duration",
    "parse_probe_output",
    "validate_request",
]
