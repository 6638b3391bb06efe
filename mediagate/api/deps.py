from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from mediagate.core.auth import AuthContext, get_auth_context
from mediagate.media.runner import ToolRunner
from mediagate.services.media_service import MediaService


def get_media_service(request: Request) -> MediaService:
    service = getattr(request.app.state, "media_service", None)
    if not isinstance(service, MediaService):  # pragma: no cover - lifespan always sets it
        raise RuntimeError("media_service_not_configured")
    return service


def get_tool_runner(request: Request) -> ToolRunner:
    return request.app.state.runner


MediaServiceDependency = Annotated[MediaService, Depends(get_media_service)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]


__all__ = [
    "get_media_service",
    "get_tool_runner",
    "MediaServiceDependency",
    "AuthDependency",
]
