from __future__ import annotations

from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hlsingest.core.errors import PersistenceError
from hlsingest.core.logging import get_logger
from hlsingest.db.models import Video
from hlsingest.pipeline.models import VideoAsset


class VideoService:
    """Persistence sink for committed assets and read access for the API."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.logger = get_logger(component="video_service")

    async def commit(self, asset: VideoAsset) -> str:
        video = Video(
            video_id=uuid4().hex,
            owner_id=asset.owner_id,
            title=asset.title,
            description=asset.description,
            thumbnail_url=asset.thumbnail_url,
            manifest_url=asset.manifest_url,
            duration=asset.duration_string,
            quality=[
                {"resolution": variant.resolution_label, "url": variant.manifest_url}
                for variant in asset.quality_variants
            ],
            tags=list(asset.tags),
            is_published=True,
            created_at=asset.created_at,
        )
        try:
            self.session.add(video)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError("failed to store video record", detail={"error": str(exc)}) from exc
        self.logger.info("video_committed", video_id=video.video_id, owner_id=video.owner_id)
        return video.video_id

    async def get_video(self, video_id: str) -> Video | None:
        return await self.session.get(Video, video_id)

    async def list_videos(self, *, page: int = 1, limit: int = 10, owner_id: str | None = None) -> dict[str, Any]:
        stmt = select(Video).where(Video.is_published.is_(True))
        count_stmt = select(func.count()).select_from(Video).where(Video.is_published.is_(True))
        if owner_id:
            stmt = stmt.where(Video.owner_id == owner_id)
            count_stmt = count_stmt.where(Video.owner_id == owner_id)
        stmt = stmt.order_by(Video.created_at.desc()).offset((page - 1) * limit).limit(limit)

        total = (await self.session.execute(count_stmt)).scalar_one()
        videos = (await self.session.execute(stmt)).scalars().all()
        return {"items": list(videos), "total": total, "page": page, "limit": limit}


__all__ = ["VideoService"]
