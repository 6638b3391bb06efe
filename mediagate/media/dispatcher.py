"""Ordered fallback chains built from the tool adapters."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from PIL import Image

from mediagate.core.config import Settings
from mediagate.core.errors import ConversionFailed, MediaError, ToolError, ToolFailed, ToolMissing, UnsupportedFormat
from mediagate.core.logging import get_logger

from . import images, sheets
from .adapters import AssimpAdapter, FFmpegAdapter, FFprobeAdapter, HeifConvertAdapter, ImageMagickAdapter
from .runner import ToolRunner
from .thumbnails import image_dimensions

StrategyFn = Callable[[Path, Path], Awaitable[Path]]

logger = get_logger(component="conversion_dispatcher")

_ABSOLUTE_URI_PREFIXES = ("http:", "https:", "data:")


@dataclass(slots=True)
class Strategy:
    name: str
    run: StrategyFn


@dataclass(slots=True)
class Attempt:
    strategy: str
    error: MediaError

    def describe(self) -> dict[str, str]:
        return {"strategy": self.strategy, "error": self.error.code, "message": self.error.message}


@dataclass(slots=True)
class ChainResult:
    strategy: str
    output: Path
    attempts: List[Attempt] = field(default_factory=list)


def _discard_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("partial_output_cleanup_failed", path=str(path), error=str(exc))


def rewrite_gltf_buffers(document: bytes, companion_url: str) -> bytes:
    """Point relative ``buffers[].uri`` entries of a glTF JSON at ``companion_url``.

    Absolute ``http(s):`` and inline ``data:`` URIs are left alone.
    """
    gltf = json.loads(document.decode("utf-8"))
    for buffer in gltf.get("buffers") or []:
        uri = buffer.get("uri")
        if not uri or uri.startswith(_ABSOLUTE_URI_PREFIXES):
            continue
        buffer["uri"] = companion_url
    return json.dumps(gltf).encode("utf-8")


def _unique(values: Sequence[Optional[str]]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


class FallbackChain:
    """Try each strategy in order; the first one that yields output wins."""

    def __init__(self, label: str, strategies: Sequence[Strategy]):
        if not strategies:
            raise ValueError("a fallback chain needs at least one strategy")
        self.label = label
        self.strategies = tuple(strategies)
        self.logger = get_logger(component="fallback_chain", chain=label)

    async def run(self, source: Path, target: Path) -> ChainResult:
        attempts: list[Attempt] = []
        for strategy in self.strategies:
            try:
                output = await strategy.run(source, target)
                if not output.exists() or output.stat().st_size == 0:
                    raise ToolFailed(strategy.name, f"{strategy.name} produced no output")
            except ToolError as exc:
                _discard_partial(target)
                attempts.append(Attempt(strategy=strategy.name, error=exc))
                self.logger.warning(
                    "strategy_failed",
                    strategy=strategy.name,
                    error=exc.code,
                    message=exc.message,
                    remaining=len(self.strategies) - len(attempts),
                )
                continue
            self.logger.info("strategy_succeeded", strategy=strategy.name, attempts=len(attempts) + 1)
            return ChainResult(strategy=strategy.name, output=output, attempts=attempts)
        raise self._exhausted(attempts)

    def _exhausted(self, attempts: list[Attempt]) -> MediaError:
        details = [attempt.describe() for attempt in attempts]
        remediation = " ".join(_unique([attempt.error.remediation for attempt in attempts])) or None
        if all(isinstance(attempt.error, ToolMissing) for attempt in attempts):
            tools = ", ".join(_unique([getattr(attempt.error, "tool", attempt.strategy) for attempt in attempts]))
            return ToolMissing(
                tools,
                f"No tool available for {self.label}: {tools} not installed",
                remediation=remediation,
                detail={"attempts": details},
            )
        return ConversionFailed(
            f"{self.label} failed after {len(attempts)} attempt(s)",
            remediation=remediation,
            detail={"attempts": details},
        )


class ConversionDispatcher:
    """Routes each asset kind to its chain of strategies."""

    def __init__(self, settings: Settings, *, runner: Optional[ToolRunner] = None):
        self.settings = settings
        limit = settings.stderr_limit_bytes
        self.ffmpeg = FFmpegAdapter(runner=runner, stderr_limit=limit)
        self.ffprobe = FFprobeAdapter(runner=runner, stderr_limit=limit)
        self.heif = HeifConvertAdapter(runner=runner, stderr_limit=limit)
        self.magick = ImageMagickAdapter(binary="magick", runner=runner, stderr_limit=limit)
        self.convert = ImageMagickAdapter(binary="convert", runner=runner, stderr_limit=limit)
        self.assimp = AssimpAdapter(runner=runner, stderr_limit=limit)
        self.logger = logger

        self.heic_chain = FallbackChain(
            "heic_to_jpeg",
            [Strategy("heif-convert", self._heif_convert), Strategy("imagemagick", self._imagemagick_flatten)],
        )
        self.model_chain = FallbackChain(
            "model_to_gltf",
            [Strategy("assimp-glb2", self._assimp_glb), Strategy("assimp-gltf2", self._assimp_gltf)],
        )
        self.remux_chain = FallbackChain("mp4_faststart", [Strategy("ffmpeg-faststart", self._ffmpeg_remux)])
        self.thumbnail_chains = {
            "image": FallbackChain(
                "image_thumbnail",
                [Strategy("pillow", self._pillow_thumbnail), Strategy("ffmpeg", self._ffmpeg_image_thumbnail)],
            ),
            "video": FallbackChain("video_thumbnail", self._video_thumbnail_strategies()),
            "pdf": FallbackChain("pdf_thumbnail", [Strategy("imagemagick", self._magick_pdf_thumbnail)]),
        }

    async def heic_to_jpeg(self, source: Path, target: Path) -> ChainResult:
        return await self.heic_chain.run(source, target)

    async def model_to_gltf(self, source: Path, workdir: Path) -> ChainResult:
        return await self.model_chain.run(source, workdir / "output.glb")

    async def thumbnail(self, kind: str, source: Path, target: Path) -> ChainResult:
        chain = self.thumbnail_chains.get(kind)
        if chain is None:
            raise UnsupportedFormat("Thumbnail generation not supported for this file type")
        return await chain.run(source, target)

    async def probe_streamable(self, source: Path) -> bool:
        return await self.ffprobe.probe_streamable(source, timeout_s=self.settings.probe_timeout_s)

    async def remux_for_streaming(self, source: Path, target: Path) -> ChainResult:
        return await self.remux_chain.run(source, target)

    async def optimize_image(
        self,
        source: Path,
        *,
        quality: int,
        max_width: int,
        max_height: int,
    ) -> Tuple[bytes, Tuple[int, int]]:
        try:
            return await asyncio.to_thread(
                images.optimize_to_webp,
                source,
                quality=quality,
                max_width=max_width,
                max_height=max_height,
            )
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise ToolFailed("pillow", f"Pillow could not optimize {source.name}: {exc}") from exc

    async def parse_sheets(self, source: Path) -> list[sheets.Sheet]:
        return await asyncio.to_thread(sheets.parse_workbook, source)

    async def _heif_convert(self, source: Path, target: Path) -> Path:
        await self.heif.to_jpeg(source, target, timeout_s=self.settings.heic_timeout_s)
        return target

    async def _imagemagick_flatten(self, source: Path, target: Path) -> Path:
        await self.convert.flatten_to_jpeg(source, target, timeout_s=self.settings.heic_timeout_s)
        return target

    async def _assimp_glb(self, source: Path, target: Path) -> Path:
        await self.assimp.export(source, target, export_format="glb2", timeout_s=self.settings.model_timeout_s)
        return target

    async def _assimp_gltf(self, source: Path, target: Path) -> Path:
        # Writes output.gltf plus an output.bin companion beside it.
        gltf_target = target.with_suffix(".gltf")
        await self.assimp.export(source, gltf_target, export_format="gltf2", timeout_s=self.settings.model_timeout_s)
        return gltf_target

    async def _ffmpeg_remux(self, source: Path, target: Path) -> Path:
        await self.ffmpeg.remux_faststart(source, target, timeout_s=self.settings.remux_timeout_s)
        return target

    async def _pillow_thumbnail(self, source: Path, target: Path) -> Path:
        try:
            await asyncio.to_thread(
                images.render_jpeg_thumbnail,
                source,
                target,
                box=self.settings.thumbnail_size,
            )
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise ToolFailed("pillow", f"Pillow could not render {source.suffix} thumbnail: {exc}") from exc
        return target

    async def _ffmpeg_image_thumbnail(self, source: Path, target: Path) -> Path:
        await self.ffmpeg.extract_frame(
            source,
            target,
            box=self.settings.thumbnail_size,
            timeout_s=self.settings.thumbnail_timeout_s,
        )
        return self._checked_image("ffmpeg", target)

    def _video_thumbnail_strategies(self) -> list[Strategy]:
        strategies = [Strategy("ffmpeg", self._ffmpeg_video_thumbnail)]
        if self.settings.video_thumbnail_offset_s:
            # Clips shorter than the offset yield no frame.
            strategies.append(Strategy("ffmpeg-first-frame", self._ffmpeg_first_frame))
        return strategies

    async def _ffmpeg_video_thumbnail(self, source: Path, target: Path) -> Path:
        await self.ffmpeg.extract_frame(
            source,
            target,
            box=self.settings.thumbnail_size,
            timeout_s=self.settings.video_thumbnail_timeout_s,
            offset_s=self.settings.video_thumbnail_offset_s,
        )
        return self._checked_image("ffmpeg", target)

    async def _ffmpeg_first_frame(self, source: Path, target: Path) -> Path:
        await self.ffmpeg.extract_frame(
            source,
            target,
            box=self.settings.thumbnail_size,
            timeout_s=self.settings.video_thumbnail_timeout_s,
        )
        return self._checked_image("ffmpeg", target)

    async def _magick_pdf_thumbnail(self, source: Path, target: Path) -> Path:
        await self.magick.rasterize_first_page(
            source,
            target,
            box=self.settings.thumbnail_size,
            timeout_s=self.settings.pdf_timeout_s,
        )
        return self._checked_image("magick", target)

    def _checked_image(self, tool: str, target: Path) -> Path:
        try:
            width, height = image_dimensions(target)
        except RuntimeError as exc:
            raise ToolFailed(tool, f"{tool} produced an unreadable thumbnail") from exc
        self.logger.debug("thumbnail_measured", tool=tool, width_px=width, height_px=height)
        return target


__all__ = [
    "Attempt",
    "ChainResult",
    "ConversionDispatcher",
    "FallbackChain",
    "Strategy",
    "rewrite_gltf_buffers",
]
