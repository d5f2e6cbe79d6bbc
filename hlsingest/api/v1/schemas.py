from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: Optional[str] = None
    storage_backend: Optional[str] = None


class EnvCheckResponse(BaseModel):
    ffmpeg: bool
    ffprobe: bool


class QualityVariantModel(BaseModel):
    resolution: str = Field(..., json_schema_extra={"example": "720p"})
    url: str = Field(..., description="Manifest URL of this rendition.")


class VideoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    video_id: str
    owner_id: str
    title: str
    description: str
    thumbnail_url: str
    manifest_url: str
    duration: str = Field(..., json_schema_extra={"example": "00:00:35"})
    quality: List[QualityVariantModel] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_published: bool = True
    views: int = 0
    created_at: Optional[datetime] = None


class VideoListResponse(BaseModel):
    items: List[VideoResponse]
    total: int
    page: int
    limit: int


class ErrorDetail(BaseModel):
    kind: str
    message: str
    detail: Optional[dict] = None


class ErrorResponse(BaseModel):
    detail: ErrorDetail
