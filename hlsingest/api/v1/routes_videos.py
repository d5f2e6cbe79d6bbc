from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from hlsingest.api import deps
from hlsingest.core.config import Settings
from hlsingest.core.errors import ValidationError
from hlsingest.core.logging import get_logger
from hlsingest.pipeline import IngestRequest

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])
logger = get_logger(component="videos_api")

CHUNK_SIZE = 1024 * 1024


async def _stage_upload(upload: UploadFile, target_dir: Path, stem: str, max_bytes: int) -> Path:
    """Copy an incoming upload to a local file the pipeline can own."""
    suffix = Path(upload.filename or "").suffix.lower() or ".bin"
    target = target_dir / f"{stem}{suffix}"
    written = 0
    with target.open("wb") as handle:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="upload_too_large")
            handle.write(chunk)
    await upload.close()
    return target


_PIPELINE_ERRORS = {
    code: {"model": schemas.ErrorResponse}
    for code in (status.HTTP_400_BAD_REQUEST, status.HTTP_500_INTERNAL_SERVER_ERROR)
}


@router.post("", response_model=schemas.VideoResponse, status_code=status.HTTP_201_CREATED, responses=_PIPELINE_ERRORS)
async def upload_video(
    context: deps.AuthDependency,
    coordinator: deps.CoordinatorDependency,
    service: deps.VideoServiceDependency,
    settings: Settings = Depends(deps.get_app_settings),
    title: str = Form(default=""),
    description: str = Form(default=""),
    tags: str = Form(default="", description="Comma-separated tags."),
    videofile: Optional[UploadFile] = File(default=None),
    thumbnail: Optional[UploadFile] = File(default=None),
) -> schemas.VideoResponse:
    staging_root = settings.staging_root
    staging_root.mkdir(parents=True, exist_ok=True)
    staging_dir = Path(tempfile.mkdtemp(prefix="upload-", dir=staging_root))
    try:
        if thumbnail is None or not thumbnail.filename:
            raise ValidationError("thumbnail is required", detail={"fields": ["thumbnail"]})
        if videofile is None or not videofile.filename:
            raise ValidationError("videofile is required", detail={"fields": ["videofile"]})

        source_path = await _stage_upload(videofile, staging_dir, "source", settings.max_upload_size_bytes)
        thumbnail_path = await _stage_upload(thumbnail, staging_dir, "thumbnail", settings.max_upload_size_bytes)

        asset = await coordinator.run(
            IngestRequest(
                source_path=source_path,
                thumbnail_path=thumbnail_path,
                title=title,
                description=description,
                owner_id=context.user_id,
                tags=tuple(tags.split(",")),
            )
        )
    finally:
        try:
            shutil.rmtree(staging_dir)
        except FileNotFoundError:
            pass
        except OSError as cleanup_error:
            logger.warning("staging_cleanup_failed", path=str(staging_dir), error=str(cleanup_error))

    video = await service.get_video(asset.asset_id or "")
    if video is None:  # pragma: no cover - committed in the same session
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="video_not_persisted")
    return schemas.VideoResponse.model_validate(video)


@router.get("", response_model=schemas.VideoListResponse)
async def list_videos(
    service: deps.VideoServiceDependency,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    owner_id: Optional[str] = Query(default=None),
) -> schemas.VideoListResponse:
    result = await service.list_videos(page=page, limit=limit, owner_id=owner_id)
    return schemas.VideoListResponse(
        items=[schemas.VideoResponse.model_validate(video) for video in result["items"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
    )


@router.get("/{video_id}", response_model=schemas.VideoResponse)
async def get_video(video_id: str, service: deps.VideoServiceDependency) -> schemas.VideoResponse:
    video = await service.get_video(video_id)
    if video is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="video_not_found")
    return schemas.VideoResponse.model_validate(video)


__all__ = ["router"]
