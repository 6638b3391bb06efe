from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from mediagate.api.deps import AuthDependency, get_tool_runner
from mediagate.core.config import Settings, get_settings
from mediagate.media.adapters import check_tools
from mediagate.media.runner import ToolRunner

from .schemas import RequirementsResponse, ToolRequirement


router = APIRouter(prefix="/admin", tags=["admin"])


class DevTokenRequest(BaseModel):
    user_id: str = Field(..., examples=["42"])
    root_access: bool = False
    scopes: list[str] = Field(default_factory=list)


class DevTokenResponse(BaseModel):
    token: str


@router.get("/requirements", response_model=RequirementsResponse, summary="Report external tool availability")
async def requirements(
    context: AuthDependency,
    runner: ToolRunner = Depends(get_tool_runner),
) -> RequirementsResponse:
    if not context.is_privileged:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="privileged_access_required")

    statuses = await check_tools(runner)
    tools = [
        ToolRequirement(
            name=item.spec.name,
            command=item.spec.command,
            description=item.spec.description,
            installed=item.installed,
            version=item.version,
            install_command=item.spec.install_command,
            download_url=item.spec.download_url,
        )
        for item in statuses
    ]
    return RequirementsResponse(all_installed=all(tool.installed for tool in tools), tools=tools)


@router.post("/dev-token", response_model=DevTokenResponse, summary="Mint development JWT")
async def mint_dev_token(payload: DevTokenRequest, settings: Settings = Depends(get_settings)) -> DevTokenResponse:
    if settings.environment_lower not in {"development", "dev"}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="dev_token_disabled")

    issued_at = datetime.now(timezone.utc)
    expires_at = issued_at + timedelta(hours=1)
    claims: dict[str, object] = {
        "sub": payload.user_id,
        "scopes": payload.scopes,
        "root_access": payload.root_access,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if settings.jwt_issuer:
        claims["iss"] = settings.jwt_issuer
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience

    token = jwt.encode(claims, settings.secrets.jwt_secret, algorithm=settings.jwt_algorithm)
    return DevTokenResponse(token=token)


__all__ = ["router"]
