from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hlsingest.core.errors import UploadError
from hlsingest.core.logging import get_logger
from hlsingest.core.storage import Storage

from .models import SegmentSet, UploadResult
from .playlist import rewrite_uris

DEFAULT_CONCURRENCY = 6
REMOTE_MANIFEST_NAME = "playlist.remote.m3u8"

_CONTENT_TYPES = {
    ".ts": "video/mp2t",
    ".m3u8": "application/vnd.apple.mpegurl",
}


@dataclass(frozen=True, slots=True)
class _Artifact:
    path: Path
    key: str

    @property
    def content_type(self) -> str:
        suffix = self.path.suffix.lower()
        if suffix in _CONTENT_TYPES:
            return _CONTENT_TYPES[suffix]
        return mimetypes.guess_type(self.path.name)[0] or "application/octet-stream"


class ArtifactUploader:
    """Push a job's packaged artifacts to durable storage as one all-or-nothing group.

    Transfers run on a bounded worker pool owned by a single call, so one job's
    failure and compensation never touch another job's uploads.
    """

    def __init__(self, storage: Storage, *, concurrency: int = DEFAULT_CONCURRENCY):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.storage = storage
        self.concurrency = concurrency
        self.logger = get_logger(component="artifact_uploader")

    async def upload_all(
        self,
        work_dir: Path,
        segment_set: SegmentSet,
        *,
        namespace: str,
        thumbnail_path: Optional[Path] = None,
        thumbnail_namespace: Optional[str] = None,
    ) -> UploadResult:
        namespace = namespace.strip("/")
        artifacts = [_Artifact(segment.path, f"{namespace}/{segment.path.name}") for segment in segment_set.segments]
        thumbnail: Optional[_Artifact] = None
        if thumbnail_path is not None:
            thumb_prefix = (thumbnail_namespace or namespace).strip("/")
            thumbnail = _Artifact(thumbnail_path, f"{thumb_prefix}/thumbnail{thumbnail_path.suffix.lower()}")
            artifacts.append(thumbnail)

        uploaded: dict[str, str] = {}
        await self._transfer_group(artifacts, uploaded)

        manifest_key = f"{namespace}/{segment_set.manifest_path.name}"
        try:
            # segment URIs in the uploaded manifest must be the final URLs, not local names
            mapping = {segment.path.name: uploaded[f"{namespace}/{segment.path.name}"] for segment in segment_set.segments}
            try:
                manifest_text = segment_set.manifest_path.read_text(encoding="utf-8")
                remote_manifest = work_dir / REMOTE_MANIFEST_NAME
                remote_manifest.write_text(rewrite_uris(manifest_text, mapping), encoding="utf-8")
            except OSError as exc:
                raise UploadError(
                    f"remote manifest could not be written: {exc}",
                    failed_keys=(manifest_key,),
                    detail={"compensated": True},
                ) from exc
            await self._transfer_group([_Artifact(remote_manifest, manifest_key)], uploaded)
        except BaseException:
            # _transfer_group empties ``uploaded`` after its own compensation
            await self.compensate(list(uploaded.values()))
            uploaded.clear()
            raise

        self.logger.info("upload_completed", namespace=namespace, objects=len(uploaded))
        return UploadResult(
            manifest_url=uploaded[manifest_key],
            segment_urls=tuple(mapping[segment.path.name] for segment in segment_set.segments),
            thumbnail_url=uploaded[thumbnail.key] if thumbnail else None,
        )

    async def _transfer_group(self, artifacts: list[_Artifact], uploaded: dict[str, str]) -> None:
        """Upload ``artifacts`` into ``uploaded``; on failure delete everything in ``uploaded``."""
        queue: asyncio.Queue[_Artifact] = asyncio.Queue()
        for artifact in artifacts:
            queue.put_nowait(artifact)

        in_flight: dict[asyncio.Future, _Artifact] = {}
        failed: list[str] = []

        async def worker() -> None:
            while True:
                try:
                    artifact = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                transfer = asyncio.ensure_future(
                    asyncio.to_thread(self.storage.put, artifact.path, artifact.key, content_type=artifact.content_type)
                )
                in_flight[transfer] = artifact
                # shielded: a blocking transfer cannot be interrupted, and its outcome
                # must stay observable for compensation if this worker is cancelled
                try:
                    url = await asyncio.shield(transfer)
                except Exception:
                    del in_flight[transfer]
                    failed.append(artifact.key)
                    raise
                del in_flight[transfer]
                uploaded[artifact.key] = url

        workers = [asyncio.create_task(worker()) for _ in range(min(self.concurrency, len(artifacts)))]
        if not workers:
            return
        try:
            done, pending = await asyncio.wait(workers, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await self._abort(workers, in_flight, uploaded)
            raise

        failure = next((task.exception() for task in done if not task.cancelled() and task.exception()), None)
        if failure is None:
            return

        await self._abort(workers, in_flight, uploaded)
        failed_keys = tuple(failed)
        self.logger.warning("upload_failed", error=str(failure), failed_keys=list(failed_keys))
        raise UploadError(
            f"artifact upload failed: {failure}",
            failed_keys=failed_keys,
            detail={"compensated": True},
        ) from failure

    async def _abort(
        self,
        workers: list[asyncio.Task],
        in_flight: dict[asyncio.Future, _Artifact],
        uploaded: dict[str, str],
    ) -> None:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        # transfers that were mid-flight may still land; wait so they can be deleted
        for transfer, artifact in list(in_flight.items()):
            try:
                uploaded[artifact.key] = await transfer
            except Exception as exc:
                self.logger.debug("sibling_upload_failed", key=artifact.key, error=str(exc))
        await self.compensate(list(uploaded.values()))
        uploaded.clear()

    async def compensate(self, urls: list[str]) -> None:
        """Best-effort delete of already stored objects; failures are logged, never raised."""
        for url in urls:
            try:
                await asyncio.to_thread(self.storage.delete, url)
            except Exception as exc:
                self.logger.warning("compensating_delete_failed", url=url, error=str(exc))
        if urls:
            self.logger.info("compensating_delete_completed", objects=len(urls))


__all__ = ["ArtifactUploader", "DEFAULT_CONCURRENCY"]
