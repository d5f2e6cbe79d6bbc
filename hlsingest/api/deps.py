from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hlsingest.core.auth import AuthContext, get_auth_context, require_scope
from hlsingest.core.config import Settings, get_settings
from hlsingest.core.storage import Storage
from hlsingest.pipeline import IngestCoordinator
from hlsingest.services.video_service import VideoService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_storage(request: Request) -> Storage:
    storage: Storage = request.app.state.storage
    return storage


def get_app_settings() -> Settings:
    return get_settings()


async def get_video_service(session: AsyncSession = Depends(get_session)) -> AsyncIterator[VideoService]:
    yield VideoService(session)


def get_coordinator(
    service: VideoService = Depends(get_video_service),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
) -> IngestCoordinator:
    return IngestCoordinator.from_settings(settings, storage, service)


VideoServiceDependency = Annotated[VideoService, Depends(get_video_service)]
CoordinatorDependency = Annotated[IngestCoordinator, Depends(get_coordinator)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]
AdminDependency = Annotated[AuthContext, Depends(require_scope("admin"))]


__all__ = [
    "get_session",
    "get_storage",
    "get_app_settings",
    "get_video_service",
    "get_coordinator",
    "VideoServiceDependency",
    "CoordinatorDependency",
    "AuthDependency",
    "AdminDependency",
]
