from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Optional, Protocol, Sequence

from mediagate.core.errors import ToolFailed, ToolMissing, ToolTimeout
from mediagate.core.logging import get_logger

logger = get_logger(component="tool_runner")

DEFAULT_STDERR_LIMIT = 4096


@dataclass(slots=True)
class ConversionJob:
    """One generation attempt. Lives in memory for the duration of the run only."""

    tool: str
    argv: list[str]
    timeout_s: float
    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class ToolResult:
    tool: str
    returncode: int
    stdout: bytes
    stderr: str
    duration_s: float


@dataclass(frozen=True, slots=True)
class StderrSignature:
    """Known failure text in a tool's stderr and the message to show instead."""

    pattern: str
    message: str

    def matches(self, stderr: str) -> bool:
        return re.search(self.pattern, stderr, flags=re.IGNORECASE) is not None


class ToolRunner(Protocol):
    def __call__(
        self,
        argv: Sequence[str],
        *,
        tool: str,
        timeout_s: float,
        stderr_limit: int = DEFAULT_STDERR_LIMIT,
        signatures: Sequence[StderrSignature] = (),
        install_hint: Optional[str] = None,
        job: Optional[ConversionJob] = None,
    ) -> Awaitable[ToolResult]: ...


def _tail(raw: bytes, limit: int) -> str:
    """Last `limit` bytes of a stderr capture."""
    if len(raw) <= limit:
        return raw.decode("utf-8", errors="replace").strip()
    return "…" + raw[-limit:].decode("utf-8", errors="replace").strip()


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=5)
    except asyncio.TimeoutError:
        logger.warning("tool_reap_timeout", pid=proc.pid)


async def run_tool(
    argv: Sequence[str],
    *,
    tool: str,
    timeout_s: float,
    stderr_limit: int = DEFAULT_STDERR_LIMIT,
    signatures: Sequence[StderrSignature] = (),
    install_hint: Optional[str] = None,
    job: Optional[ConversionJob] = None,
) -> ToolResult:
    """Run one external binary with a hard deadline.

    Raises:
        ToolMissing: The binary could not be spawned.
        ToolTimeout: The deadline expired; the child has been killed.
        ToolFailed: The child exited non-zero.
    """
    job = job or ConversionJob(tool=tool, argv=list(argv), timeout_s=timeout_s)
    started = time.monotonic()
    logger.debug("tool_started", tool=tool, argv=list(argv), timeout_s=timeout_s)

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as exc:
        logger.warning("tool_missing", tool=tool, error=str(exc))
        raise ToolMissing(
            tool,
            f"{tool} is not installed or not executable",
            remediation=install_hint,
        ) from exc

    try:
        stdout, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        await _terminate(proc)
        logger.error(
            "tool_timeout",
            tool=tool,
            timeout_s=timeout_s,
            input=str(job.input_path) if job.input_path else None,
        )
        raise ToolTimeout(tool, timeout_s) from None
    except asyncio.CancelledError:
        await _terminate(proc)
        raise

    duration = time.monotonic() - started
    stderr_raw = stderr_raw or b""
    stderr = _tail(stderr_raw, stderr_limit)
    returncode = proc.returncode if proc.returncode is not None else -1

    if returncode != 0:
        full_stderr = stderr_raw.decode("utf-8", errors="replace")
        remediation = next((sig.message for sig in signatures if sig.matches(full_stderr)), None)
        logger.error(
            "tool_failed",
            tool=tool,
            returncode=returncode,
            duration_s=round(duration, 3),
            stderr=stderr,
        )
        raise ToolFailed(
            tool,
            f"{tool} exited with code {returncode}",
            returncode=returncode,
            stderr=stderr,
            remediation=remediation,
        )

    logger.debug(
        "tool_finished",
        tool=tool,
        started_at=job.started_at.isoformat(),
        duration_s=round(duration, 3),
        output=str(job.output_path) if job.output_path else None,
    )
    return ToolResult(tool=tool, returncode=returncode, stdout=stdout or b"", stderr=stderr, duration_s=duration)


__all__ = [
    "ConversionJob",
    "StderrSignature",
    "ToolResult",
    "ToolRunner",
    "run_tool",
]
