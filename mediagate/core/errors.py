"""Error taxonomy shared by the media pipeline and the HTTP boundary."""

from __future__ import annotations

from typing import Any, Optional


class MediaError(Exception):
    """Base class for every error the media pipeline surfaces to callers."""

    status_code: int = 500
    code: str = "media_error"

    def __init__(self, message: str, *, remediation: Optional[str] = None, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self.detail = detail

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.remediation:
            payload["remediation"] = self.remediation
        if self.detail is not None:
            payload["context"] = self.detail
        return payload


class InvalidPath(MediaError):
    status_code = 400
    code = "invalid_path"


class AccessDenied(MediaError):
    status_code = 403
    code = "access_denied"


class NotFound(MediaError):
    status_code = 404
    code = "file_not_found"


class ThumbnailUnavailable(NotFound):
    """Raised when a thumbnail cannot be produced; the UI falls back to an icon."""

    code = "thumbnail_unavailable"


class UnsupportedFormat(MediaError):
    status_code = 400
    code = "unsupported_format"


class RangeNotSatisfiable(MediaError):
    status_code = 416
    code = "range_not_satisfiable"

    def __init__(self, size: int):
        super().__init__(f"Requested range not satisfiable for {size} bytes")
        self.size = size


class ToolError(MediaError):
    """Failure of a single external tool invocation."""

    def __init__(self, tool: str, message: str, *, remediation: Optional[str] = None, detail: Any = None):
        super().__init__(message, remediation=remediation, detail=detail)
        self.tool = tool


class ToolMissing(ToolError):
    status_code = 503
    code = "tool_missing"


class ToolTimeout(ToolError):
    status_code = 504
    code = "tool_timeout"

    def __init__(self, tool: str, timeout_s: float):
        super().__init__(tool, f"{tool} timed out after {timeout_s:g} seconds")
        self.timeout_s = timeout_s


class ToolFailed(ToolError):
    status_code = 502
    code = "tool_failed"

    def __init__(
        self,
        tool: str,
        message: str,
        *,
        returncode: Optional[int] = None,
        stderr: str = "",
        remediation: Optional[str] = None,
    ):
        super().__init__(tool, message, remediation=remediation, detail={"stderr": stderr} if stderr else None)
        self.returncode = returncode
        self.stderr = stderr


class ConversionFailed(MediaError):
    """Every strategy of a fallback chain failed."""

    status_code = 502
    code = "conversion_failed"


class CacheWriteFailure(MediaError):
    status_code = 500
    code = "cache_write_failed"


__all__ = [
    "MediaError",
    "InvalidPath",
    "AccessDenied",
    "NotFound",
    "ThumbnailUnavailable",
    "UnsupportedFormat",
    "RangeNotSatisfiable",
    "ToolError",
    "ToolMissing",
    "ToolTimeout",
    "ToolFailed",
    "ConversionFailed",
    "CacheWriteFailure",
]
