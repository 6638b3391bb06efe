"""One adapter per external binary. Each call is a single deadline-bounded child process."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from mediagate.core.errors import ToolError
from mediagate.core.logging import get_logger

from .runner import DEFAULT_STDERR_LIMIT, ConversionJob, StderrSignature, ToolResult, ToolRunner, run_tool

logger = get_logger(component="tool_adapters")


@dataclass(frozen=True, slots=True)
class ToolSpec:
    name: str
    command: str
    description: str
    install_command: str
    download_url: Optional[str] = None

    @property
    def install_hint(self) -> str:
        hint = f"Install {self.name}: {self.install_command}"
        if self.download_url:
            hint += f" (or download from {self.download_url})"
        return hint


FFMPEG = ToolSpec(
    name="FFmpeg",
    command="ffmpeg",
    description="Video processing and thumbnail generation",
    install_command="sudo apt-get install -y ffmpeg",
    download_url="https://ffmpeg.org/download.html",
)
FFPROBE = ToolSpec(
    name="FFprobe",
    command="ffprobe",
    description="Container inspection for streaming",
    install_command="sudo apt-get install -y ffmpeg",
    download_url="https://ffmpeg.org/download.html",
)
HEIF_CONVERT = ToolSpec(
    name="libheif",
    command="heif-convert",
    description="HEIC/HEIF image decoding",
    install_command="sudo apt-get install -y libheif-examples",
)
MAGICK = ToolSpec(
    name="ImageMagick 7",
    command="magick",
    description="PDF rasterisation for thumbnails",
    install_command="sudo apt-get install -y imagemagick",
    download_url="https://imagemagick.org/script/download.php",
)
CONVERT = ToolSpec(
    name="ImageMagick",
    command="convert",
    description="Fallback HEIC/HEIF conversion",
    install_command="sudo apt-get install -y imagemagick",
)
GHOSTSCRIPT = ToolSpec(
    name="Ghostscript",
    command="gs",
    description="PDF rendering backend for ImageMagick",
    install_command="sudo apt-get install -y ghostscript",
    download_url="https://ghostscript.com/releases/gsdnld.html",
)
ASSIMP = ToolSpec(
    name="Assimp",
    command="assimp",
    description="3D model conversion to glTF",
    install_command="sudo apt-get install -y assimp-utils",
)

TOOL_CATALOG: tuple[ToolSpec, ...] = (FFMPEG, FFPROBE, HEIF_CONVERT, MAGICK, CONVERT, GHOSTSCRIPT, ASSIMP)


class ToolAdapter:
    spec: ToolSpec
    signatures: Sequence[StderrSignature] = ()

    def __init__(
        self,
        *,
        runner: Optional[ToolRunner] = None,
        stderr_limit: int = DEFAULT_STDERR_LIMIT,
        binary: Optional[str] = None,
    ):
        self._runner = runner or run_tool
        self.stderr_limit = stderr_limit
        self.binary = binary or self.spec.command

    @property
    def tool(self) -> str:
        return self.binary

    async def _run(
        self,
        args: Sequence[str],
        *,
        timeout_s: float,
        input_path: Optional[Path] = None,
        output_path: Optional[Path] = None,
    ) -> ToolResult:
        argv = [self.binary, *args]
        job = ConversionJob(
            tool=self.tool,
            argv=argv,
            timeout_s=timeout_s,
            input_path=input_path,
            output_path=output_path,
        )
        return await self._runner(
            argv,
            tool=self.tool,
            timeout_s=timeout_s,
            stderr_limit=self.stderr_limit,
            signatures=self.signatures,
            install_hint=self.spec.install_hint,
            job=job,
        )


class FFmpegAdapter(ToolAdapter):
    spec = FFMPEG
    signatures = (
        StderrSignature(r"Unknown encoder", "This FFmpeg build lacks the required encoder; install a full FFmpeg build."),
        StderrSignature(r"moov atom not found", "The MP4 file is truncated or still being written."),
        StderrSignature(r"Invalid data found when processing input", "FFmpeg could not decode this file."),
    )

    async def extract_frame(
        self,
        source: Path,
        target: Path,
        *,
        box: int,
        timeout_s: float,
        offset_s: Optional[float] = None,
        quality: int = 15,
    ) -> ToolResult:
        """Grab one frame scaled into a ``box``x``box`` square, aspect preserved."""
        args = ["-y", "-nostdin", "-v", "error"]
        if offset_s is not None:
            args += ["-ss", f"{max(offset_s, 0.0):.3f}"]
        args += [
            "-i",
            str(source),
            "-frames:v",
            "1",
            "-vf",
            f"scale={box}:{box}:force_original_aspect_ratio=decrease",
            "-q:v",
            str(quality),
            str(target),
        ]
        return await self._run(args, timeout_s=timeout_s, input_path=source, output_path=target)

    async def remux_faststart(self, source: Path, target: Path, *, timeout_s: float) -> ToolResult:
        args = [
            "-nostdin",
            "-v",
            "error",
            "-i",
            str(source),
            "-c:v",
            "copy",
            "-c:a",
            "copy",
            "-movflags",
            "faststart",
            "-y",
            str(target),
        ]
        return await self._run(args, timeout_s=timeout_s, input_path=source, output_path=target)


class FFprobeAdapter(ToolAdapter):
    spec = FFPROBE

    async def probe_streamable(self, source: Path, *, timeout_s: float) -> bool:
        """Heuristic: ffprobe answers promptly only when the metadata atom leads the file."""
        args = [
            "-v",
            "error",
            "-show_entries",
            "format=start_time",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(source),
        ]
        try:
            await self._run(args, timeout_s=timeout_s, input_path=source)
        except ToolError as exc:
            logger.info("stream_probe_not_safe", path=str(source), reason=exc.code)
            return False
        return True


class HeifConvertAdapter(ToolAdapter):
    spec = HEIF_CONVERT
    signatures = (
        StderrSignature(r"Unsupported (feature|codec)", "This HEIF file uses a codec libheif was built without."),
    )

    async def to_jpeg(self, source: Path, target: Path, *, timeout_s: float, quality: int = 90) -> ToolResult:
        args = ["-q", str(quality), str(source), str(target)]
        return await self._run(args, timeout_s=timeout_s, input_path=source, output_path=target)


class ImageMagickAdapter(ToolAdapter):
    """Wraps either ``magick`` (IMv7) or ``convert`` (IMv6) depending on ``binary``."""

    spec = MAGICK
    signatures = (
        StderrSignature(
            r"gswin|ghostscript|gs: not found",
            f"Ghostscript is required for PDF thumbnails. {GHOSTSCRIPT.install_hint}",
        ),
        StderrSignature(r"no decode delegate", "ImageMagick lacks a decoder for this format; install libheif support."),
    )

    def __init__(self, *, binary: str = "magick", **kwargs):
        super().__init__(binary=binary, **kwargs)
        if binary == CONVERT.command:
            self.spec = CONVERT

    async def flatten_to_jpeg(self, source: Path, target: Path, *, timeout_s: float, quality: int = 85) -> ToolResult:
        args = [
            f"{source}[0]",
            "-quality",
            str(quality),
            "-background",
            "white",
            "-alpha",
            "remove",
            "-alpha",
            "off",
            str(target),
        ]
        return await self._run(args, timeout_s=timeout_s, input_path=source, output_path=target)

    async def rasterize_first_page(
        self,
        source: Path,
        target: Path,
        *,
        box: int,
        timeout_s: float,
        density: int = 680,
        quality: int = 65,
    ) -> ToolResult:
        # -density must precede the input to affect rasterisation.
        args = [
            "-density",
            str(density),
            f"{source}[0]",
            "-quality",
            str(quality),
            "-resize",
            f"{box}x{box}",
            str(target),
        ]
        return await self._run(args, timeout_s=timeout_s, input_path=source, output_path=target)


class AssimpAdapter(ToolAdapter):
    spec = ASSIMP
    signatures = (
        StderrSignature(r"sketchup|\.skp", "Make sure Assimp is installed with SketchUp support."),
        StderrSignature(r"no suitable reader", "Assimp has no importer for this model format."),
    )

    async def export(self, source: Path, target: Path, *, export_format: str, timeout_s: float) -> ToolResult:
        args = ["export", str(source), str(target), f"-f{export_format}"]
        return await self._run(args, timeout_s=timeout_s, input_path=source, output_path=target)


@dataclass(slots=True)
class ToolStatus:
    spec: ToolSpec
    installed: bool
    version: Optional[str] = None


async def _version_line(command: str, runner: ToolRunner) -> Optional[str]:
    flag = "-version" if command in ("ffmpeg", "ffprobe") else "--version"
    try:
        result = await runner([command, flag], tool=command, timeout_s=2.0)
    except ToolError:
        return None
    text = result.stdout.decode("utf-8", errors="replace") or result.stderr
    lines = text.strip().splitlines()
    return lines[0].strip() if lines else None


async def check_tools(runner: Optional[ToolRunner] = None) -> list[ToolStatus]:
    """Report which catalogued binaries are on PATH and their version banner."""
    runner = runner or run_tool

    async def _check(spec: ToolSpec) -> ToolStatus:
        if shutil.which(spec.command) is None:
            return ToolStatus(spec=spec, installed=False)
        return ToolStatus(spec=spec, installed=True, version=await _version_line(spec.command, runner))

    return list(await asyncio.gather(*(_check(spec) for spec in TOOL_CATALOG)))


__all__ = [
    "ToolSpec",
    "TOOL_CATALOG",
    "ToolAdapter",
    "FFmpegAdapter",
    "FFprobeAdapter",
    "HeifConvertAdapter",
    "ImageMagickAdapter",
    "AssimpAdapter",
    "ToolStatus",
    "check_tools",
]
