from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: Optional[str] = None
    active_conversions: int = Field(default=0, ge=0)
    queued_conversions: int = Field(default=0, ge=0)
    max_conversions: int = Field(default=0, ge=0)


class ToolRequirement(BaseModel):
    name: str
    command: str
    description: str
    installed: bool
    version: Optional[str] = None
    install_command: str
    download_url: Optional[str] = None


class RequirementsResponse(BaseModel):
    all_installed: bool
    tools: List[ToolRequirement]


class ThumbnailGenerateRequest(BaseModel):
    id: str = Field(..., json_schema_extra={"example": "holiday.heic"})
    path: str = Field(default="", json_schema_extra={"example": "photos/2024"})


class ThumbnailGenerateResponse(BaseModel):
    status: str = Field(description="exists | started")


class SheetPayload(BaseModel):
    name: str
    data: List[List[Any]]


class SheetsResponse(BaseModel):
    sheets: List[SheetPayload]


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[Any] = None
    remediation: Optional[str] = None


__all__ = [
    "HealthResponse",
    "ToolRequirement",
    "RequirementsResponse",
    "ThumbnailGenerateRequest",
    "ThumbnailGenerateResponse",
    "SheetPayload",
    "SheetsResponse",
    "ErrorResponse",
]
