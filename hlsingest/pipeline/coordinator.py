from __future__ import annotations

import shutil
import tempfile
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol, Sequence
from uuid import uuid4

from hlsingest.core.config import Settings
from hlsingest.core.errors import ConfigurationError, IngestError, PersistenceError, ValidationError
from hlsingest.core.logging import get_logger
from hlsingest.core.storage import Storage

from .assembler import DEFAULT_RESOLUTION_LABEL, assemble
from .models import (
    IngestJob,
    IngestRequest,
    JobState,
    QualityVariant,
    Rendition,
    SegmentSet,
    UploadResult,
    VideoAsset,
)
from .prober import MediaProber
from .segmenter import Segmenter
from .uploader import ArtifactUploader


class PersistenceSink(Protocol):
    async def commit(self, asset: VideoAsset) -> str: ...


def validate_request(request: IngestRequest) -> None:
    """Reject requests the caller got wrong before any job state exists."""
    missing = [name for name in ("title", "description", "owner_id") if not (getattr(request, name) or "").strip()]
    if missing:
        raise ValidationError(f"missing required fields: {', '.join(missing)}", detail={"fields": missing})
    if not request.source_path.is_file():
        raise ValidationError("videofile is required", detail={"fields": ["videofile"]})
    if not request.thumbnail_path.is_file():
        raise ValidationError("thumbnail is required", detail={"fields": ["thumbnail"]})


class IngestCoordinator:
    """Drive one upload through probe, segment, upload, assemble and commit.

    The coordinator owns the job state machine and the job's local files. It never
    retries a stage and never translates a stage's typed error; it only guarantees
    cleanup and re-raises.
    """

    def __init__(
        self,
        *,
        sink: PersistenceSink,
        prober: MediaProber,
        segmenter: Segmenter,
        uploader: ArtifactUploader,
        work_root: Path,
        renditions: Sequence[Rendition] = (Rendition(),),
        default_label: str = DEFAULT_RESOLUTION_LABEL,
    ):
        if not renditions:
            raise ValueError("at least one rendition is required")
        fixed = [rendition.label or f"{rendition.height}p" for rendition in renditions if rendition.label or rendition.height]
        if len(set(fixed)) != len(fixed):
            raise ValueError(f"renditions declare duplicate labels: {fixed}")
        self.sink = sink
        self.prober = prober
        self.segmenter = segmenter
        self.uploader = uploader
        self.work_root = Path(work_root)
        self.renditions = tuple(renditions)
        self.default_label = default_label
        self.logger = get_logger(component="ingest_coordinator")

    @classmethod
    def from_settings(cls, settings: Settings, storage: Storage, sink: PersistenceSink) -> "IngestCoordinator":
        renditions = tuple(Rendition(height=height) for height in settings.rendition_heights) or (Rendition(),)
        return cls(
            sink=sink,
            prober=MediaProber(settings.ffprobe_binary, timeout_s=settings.probe_timeout_s),
            segmenter=Segmenter(
                settings.ffmpeg_binary,
                timeout_s=settings.transcode_timeout_s,
                segment_seconds=settings.segment_duration_s,
            ),
            uploader=ArtifactUploader(storage, concurrency=settings.upload_concurrency),
            work_root=settings.jobs_root,
            renditions=renditions,
            default_label=settings.default_resolution_label,
        )

    async def run(self, request: IngestRequest) -> VideoAsset:
        validate_request(request)
        job = self.create_job(request)
        return await self.execute(job, request)

    def create_job(self, request: IngestRequest) -> IngestJob:
        self.work_root.mkdir(parents=True, exist_ok=True)
        job_id = uuid4().hex
        work_dir = Path(tempfile.mkdtemp(prefix=f"{job_id}-", dir=self.work_root))
        return IngestJob(
            id=job_id,
            source_path=request.source_path,
            thumbnail_path=request.thumbnail_path,
            work_dir=work_dir,
        )

    async def execute(self, job: IngestJob, request: IngestRequest) -> VideoAsset:
        async with self.job_scope(job):
            return await self._pipeline(job, request)

    @asynccontextmanager
    async def job_scope(self, job: IngestJob) -> AsyncIterator[IngestJob]:
        logger = self.logger.bind(job_id=job.id)
        logger.info("job_received", work_dir=str(job.work_dir))
        try:
            yield job
        except BaseException as exc:
            if not job.state.is_terminal:
                job.error = exc
                failed_in = job.state
                job.advance(JobState.failed)
                logger.warning(
                    "job_failed",
                    failed_after=failed_in.value,
                    kind=exc.kind if isinstance(exc, IngestError) else type(exc).__name__,
                    error=str(exc),
                )
            raise
        finally:
            self.cleanup(job)
        logger.info("job_committed")

    def cleanup(self, job: IngestJob) -> None:
        """Delete the job's local files. Safe to call any number of times."""
        logger = self.logger.bind(job_id=job.id)
        for path in (job.source_path, job.thumbnail_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("cleanup_failed", path=str(path), error=str(exc))
        if job.work_dir.exists():
            try:
                shutil.rmtree(job.work_dir)
            except OSError as exc:
                logger.warning("cleanup_failed", path=str(job.work_dir), error=str(exc))

    async def _pipeline(self, job: IngestJob, request: IngestRequest) -> VideoAsset:
        logger = self.logger.bind(job_id=job.id)

        metadata = await self.prober.probe(job.source_path)
        job.advance(JobState.probed)

        labels = [rendition.resolve_label(metadata, self.default_label) for rendition in self.renditions]
        if len(set(labels)) != len(labels):
            raise ConfigurationError(
                f"renditions resolve to duplicate labels: {labels}",
                detail={"labels": labels},
            )

        packaged: list[tuple[str, SegmentSet]] = []
        for label, rendition in zip(labels, self.renditions):
            segment_set = await self.segmenter.segment(
                job.source_path,
                job.work_dir / label,
                rendition=rendition,
                expected_duration_s=metadata.duration_s,
                on_progress=lambda fraction, label=label: logger.debug(
                    "segment_progress", rendition=label, progress=round(fraction, 3)
                ),
            )
            packaged.append((label, segment_set))
        job.advance(JobState.segmented)

        results = await self._upload(job, packaged)
        job.advance(JobState.uploaded)

        variants = [QualityVariant(resolution_label=label, manifest_url=result.manifest_url) for (label, _), result in zip(packaged, results)]
        thumbnail_url = results[0].thumbnail_url or ""
        asset = assemble(
            request.title,
            request.description,
            request.owner_id,
            metadata,
            thumbnail_url,
            variants[0].manifest_url,
            variants=variants,
            default_label=self.default_label,
            tags=request.tags,
        )
        job.advance(JobState.assembled)

        try:
            asset_id = await self.sink.commit(asset)
        except PersistenceError:
            logger.error("commit_rejected_artifacts_orphaned", manifest_url=asset.manifest_url)
            raise
        except Exception as exc:
            logger.error("commit_rejected_artifacts_orphaned", manifest_url=asset.manifest_url)
            raise PersistenceError(f"persistence sink rejected the asset: {exc}") from exc
        job.advance(JobState.committed)
        logger.info("asset_committed", asset_id=asset_id, variants=len(variants), duration=asset.duration_string)
        return replace(asset, asset_id=asset_id)

    async def _upload(self, job: IngestJob, packaged: list[tuple[str, SegmentSet]]) -> list[UploadResult]:
        results: list[UploadResult] = []
        try:
            for index, (label, segment_set) in enumerate(packaged):
                result = await self.uploader.upload_all(
                    job.work_dir / label,
                    segment_set,
                    namespace=f"videos/{job.id}/{label}",
                    thumbnail_path=job.thumbnail_path if index == 0 else None,
                    thumbnail_namespace=f"videos/{job.id}",
                )
                results.append(result)
        except BaseException:
            # earlier renditions already landed; the job is all-or-nothing even when cancelled
            await self.uploader.compensate([url for result in results for url in _urls_of(result)])
            raise
        return results


def _urls_of(result: UploadResult) -> list[str]:
    urls = [result.manifest_url, *result.segment_urls]
    if result.thumbnail_url:
        urls.append(result.thumbnail_url)
    return urls


__all__ = ["IngestCoordinator", "PersistenceSink", "validate_request"]
