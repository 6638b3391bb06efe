from __future__ import annotations

from fastapi import APIRouter, Request

from .schemas import HealthResponse


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health(request: Request) -> HealthResponse:
    gate = request.app.state.gate
    return HealthResponse(
        version=request.app.version,
        active_conversions=gate.active,
        queued_conversions=gate.waiting,
        max_conversions=gate.max_concurrency,
    )


__all__ = ["router"]
