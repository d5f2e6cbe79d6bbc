from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from hlsingest.api.deps import AdminDependency
from hlsingest.core.auth import issue_token
from hlsingest.core.config import Settings, get_settings
from hlsingest.core.toolchain import binary_available

from .schemas import EnvCheckResponse


router = APIRouter(prefix="/admin", tags=["admin"])


class DevTokenRequest(BaseModel):
    user_id: str = Field(..., examples=["user-123"])
    scopes: list[str] = Field(default_factory=list)


class DevTokenResponse(BaseModel):
    token: str


@router.get("/env-check", response_model=EnvCheckResponse, summary="Validate ffmpeg toolchain")
async def env_check(_: AdminDependency, settings: Settings = Depends(get_settings)) -> EnvCheckResponse:
    ffmpeg_ok, ffprobe_ok = await asyncio.gather(
        asyncio.to_thread(binary_available, settings.ffmpeg_binary),
        asyncio.to_thread(binary_available, settings.ffprobe_binary),
    )
    return EnvCheckResponse(ffmpeg=ffmpeg_ok, ffprobe=ffprobe_ok)


@router.post("/dev-token", response_model=DevTokenResponse, summary="Mint development JWT")
async def mint_dev_token(payload: DevTokenRequest, settings: Settings = Depends(get_settings)) -> DevTokenResponse:
    if settings.environment_lower not in {"development", "dev", "test"}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="dev_token_disabled")
    return DevTokenResponse(token=issue_token(settings, user_id=payload.user_id, scopes=payload.scopes))


__all__ = ["router"]
