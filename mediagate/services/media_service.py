from __future__ import annotations

import asyncio
import mimetypes
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Coroutine, Optional, TypeVar
from zipfile import BadZipFile

from openpyxl.utils.exceptions import InvalidFileException

from mediagate.core.auth import AuthContext
from mediagate.core.config import Settings
from mediagate.core.errors import ConversionFailed, MediaError, NotFound, ThumbnailUnavailable, ToolError, UnsupportedFormat
from mediagate.core.gate import ConcurrencyGate
from mediagate.core.logging import get_logger
from mediagate.core.paths import ResolvedPath, resolve_path
from mediagate.core.storage import SourceAsset, StorageTree
from mediagate.media.cache_key import derive_cache_key, source_identity
from mediagate.media.cache_store import AssetClass, CacheEntry, CacheStore
from mediagate.media.dispatcher import ConversionDispatcher, rewrite_gltf_buffers
from mediagate.media.images import clamp_quality
from mediagate.media.sheets import Sheet
from mediagate.media.thumbnails import HEIC_EXTENSIONS, IMAGE_EXTENSIONS, thumbnail_kind

T = TypeVar("T")

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
LONG_CACHE_CONTROL = "public, max-age=31536000"
MEDIA_CACHE_CONTROL = "public, max-age=604800"

GLB_MEDIA_TYPE = "model/gltf-binary"
GLTF_MEDIA_TYPE = "model/gltf+json"


@dataclass(slots=True)
class ServedFile:
    path: Path
    media_type: str
    cache_control: Optional[str] = None


@dataclass(slots=True)
class ServedBytes:
    payload: bytes
    media_type: str
    cache_control: Optional[str] = None


def _media_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


class MediaService:
    """Turns stored files into browser-ready representations.

    Every heavy conversion runs under the shared gate in a task owned by the
    service, so a caller that goes away does not abort a half-done conversion.
    """

    def __init__(
        self,
        settings: Settings,
        storage: StorageTree,
        cache: CacheStore,
        gate: ConcurrencyGate,
        dispatcher: ConversionDispatcher,
    ):
        self.settings = settings
        self.storage = storage
        self.cache = cache
        self.gate = gate
        self.dispatcher = dispatcher
        self.logger = get_logger(component="media_service")
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def get_thumbnail(self, context: AuthContext, file_id: str, path: str) -> ServedFile:
        _, source = self._locate(context, file_id, path)
        kind = thumbnail_kind(source.extension)
        if kind is None:
            raise ThumbnailUnavailable("Thumbnail generation not supported for this file type")

        key = self._thumbnail_key(source)
        entry = self.cache.resolve(key, AssetClass.thumbnails, source_mtime=source.modified_time)
        if entry is None:
            try:
                entry = await self._run_detached(self._produce_thumbnail(source, kind, key), name=f"thumbnail:{key}")
            except MediaError as exc:
                self.logger.warning("thumbnail_unavailable", path=str(source.absolute_path), error=exc.code)
                raise ThumbnailUnavailable(
                    "Thumbnail not available",
                    remediation=exc.remediation,
                    detail={"cause": exc.code},
                ) from exc
        return ServedFile(path=entry.stored_path, media_type="image/jpeg", cache_control=IMMUTABLE_CACHE_CONTROL)

    async def generate_thumbnail(self, context: AuthContext, file_id: str, path: str) -> str:
        _, source = self._locate(context, file_id, path)
        kind = thumbnail_kind(source.extension)
        if kind is None:
            raise UnsupportedFormat("Thumbnail generation not supported for this file type")

        key = self._thumbnail_key(source)
        if self.cache.resolve(key, AssetClass.thumbnails, source_mtime=source.modified_time) is not None:
            return "exists"
        self._spawn(self._produce_thumbnail(source, kind, key), name=f"thumbnail:{key}")
        self.logger.info("thumbnail_generation_started", path=str(source.absolute_path), kind=kind)
        return "started"

    async def get_streaming_bytes(self, context: AuthContext, file_id: str, path: str) -> ServedFile:
        _, source = self._locate(context, file_id, path)
        original = ServedFile(
            path=source.absolute_path,
            media_type=_media_type(source.absolute_path),
            cache_control=MEDIA_CACHE_CONTROL,
        )
        if source.extension != ".mp4" or not self.settings.stream_remux_enabled:
            return original

        key = self._stream_key(source)
        entry = self.cache.resolve(key, AssetClass.stream_remux, source_mtime=source.modified_time)
        if entry is None:
            try:
                entry = await self._run_detached(self._produce_stream_variant(source, key), name=f"remux:{key}")
            except MediaError as exc:
                self.logger.warning(
                    "stream_remux_failed",
                    path=str(source.absolute_path),
                    error=exc.code,
                    remediation=exc.remediation,
                )
                return original
        if entry is None:
            return original
        return ServedFile(path=entry.stored_path, media_type="video/mp4", cache_control=MEDIA_CACHE_CONTROL)

    async def convert_3d_model(
        self,
        context: AuthContext,
        file_id: str,
        path: str,
        *,
        companion_url: str,
        binary: bool = False,
    ) -> ServedFile | ServedBytes:
        resolved, source = self._locate(context, file_id, path)
        if source.extension == ".glb":
            return ServedFile(path=source.absolute_path, media_type=GLB_MEDIA_TYPE, cache_control=LONG_CACHE_CONTROL)
        if source.extension == ".gltf":
            return ServedFile(path=source.absolute_path, media_type=GLTF_MEDIA_TYPE, cache_control=LONG_CACHE_CONTROL)

        identity, params = source_identity(source, with_version=True)
        key = derive_cache_key(identity, params)

        if binary:
            companion = self.cache.resolve(key, AssetClass.model_glb, suffix=".bin")
            if companion is None:
                raise NotFound("Converted model buffer not found", detail={"path": resolved.relative})
            return ServedFile(
                path=companion.stored_path,
                media_type="application/octet-stream",
                cache_control=LONG_CACHE_CONTROL,
            )

        entry = self._cached_model(key)
        if entry is None:
            entry = await self._run_detached(self._produce_model(resolved, source, key), name=f"model:{key}")

        if entry.stored_path.suffix == ".gltf":
            document = await asyncio.to_thread(entry.stored_path.read_bytes)
            return ServedBytes(
                payload=rewrite_gltf_buffers(document, companion_url),
                media_type=GLTF_MEDIA_TYPE,
                cache_control=LONG_CACHE_CONTROL,
            )
        return ServedFile(path=entry.stored_path, media_type=GLB_MEDIA_TYPE, cache_control=LONG_CACHE_CONTROL)

    async def convert_heic(self, context: AuthContext, file_id: str, path: str) -> ServedFile:
        _, source = self._locate(context, file_id, path)
        if source.extension not in HEIC_EXTENSIONS:
            raise UnsupportedFormat("Only HEIC/HEIF files can be converted")
        entry = await self._heic_jpeg(source)
        return ServedFile(path=entry.stored_path, media_type="image/jpeg", cache_control=IMMUTABLE_CACHE_CONTROL)

    async def convert_office_sheet(self, context: AuthContext, file_id: str, path: str) -> list[Sheet]:
        _, source = self._locate(context, file_id, path)
        async with self.gate.slot():
            try:
                return await self.dispatcher.parse_sheets(source.absolute_path)
            except (InvalidFileException, BadZipFile, KeyError, OSError, ValueError) as exc:
                self.logger.warning("sheet_parse_failed", path=str(source.absolute_path), error=str(exc))
                raise ConversionFailed("Failed to parse spreadsheet", detail={"error": str(exc)}) from exc

    async def optimize_image(
        self,
        context: AuthContext,
        file_id: str,
        path: str,
        quality: Optional[int] = None,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
    ) -> ServedBytes:
        resolved, source = self._locate(context, file_id, path)
        settings = self.settings
        quality = clamp_quality(
            quality,
            default=settings.optimize_default_quality,
            minimum=settings.optimize_min_quality,
            maximum=settings.optimize_max_quality,
        )
        max_width = max_width or settings.optimize_default_max_dimension
        max_height = max_height or settings.optimize_default_max_dimension

        if source.extension == ".svg":
            payload = await asyncio.to_thread(self.storage.read_bytes, resolved.relative)
            return ServedBytes(payload=payload, media_type="image/svg+xml", cache_control=LONG_CACHE_CONTROL)

        if source.extension in HEIC_EXTENSIONS:
            entry = await self._heic_jpeg(source)
            input_path, input_size, input_type = entry.stored_path, entry.size, "image/jpeg"
        elif source.extension in IMAGE_EXTENSIONS:
            input_path, input_size, input_type = source.absolute_path, source.size, _media_type(source.absolute_path)
        else:
            raise UnsupportedFormat("Only image files can be optimized")

        if input_size < settings.optimize_passthrough_below_bytes:
            payload = await asyncio.to_thread(input_path.read_bytes)
            return ServedBytes(payload=payload, media_type=input_type, cache_control=LONG_CACHE_CONTROL)

        async with self.gate.slot():
            try:
                payload, size = await self.dispatcher.optimize_image(
                    input_path,
                    quality=quality,
                    max_width=max_width,
                    max_height=max_height,
                )
            except ToolError as exc:
                self.logger.warning("optimize_failed_serving_original", path=str(input_path), error=exc.message)
                payload = await asyncio.to_thread(input_path.read_bytes)
                return ServedBytes(payload=payload, media_type=input_type, cache_control=LONG_CACHE_CONTROL)

        self.logger.info(
            "image_optimized",
            path=str(source.absolute_path),
            quality=quality,
            width_px=size[0],
            height_px=size[1],
            original_bytes=input_size,
            optimized_bytes=len(payload),
        )
        return ServedBytes(payload=payload, media_type="image/webp", cache_control=LONG_CACHE_CONTROL)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight conversions, typically at shutdown."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        self.logger.info("draining_tasks", count=len(pending))
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            self.logger.warning("drain_incomplete", remaining=len(still_pending))

    def _locate(self, context: AuthContext, file_id: str, path: str) -> tuple[ResolvedPath, SourceAsset]:
        resolved = resolve_path(context.user_id, context.is_privileged, path, filename=file_id)
        return resolved, self.storage.source(resolved.relative)

    def _thumbnail_key(self, source: SourceAsset) -> str:
        return derive_cache_key(str(source.absolute_path), {"box": self.settings.thumbnail_size})

    def _stream_key(self, source: SourceAsset) -> str:
        return derive_cache_key(str(source.absolute_path))

    def _cached_model(self, key: str) -> Optional[CacheEntry]:
        return self.cache.resolve(key, AssetClass.model_glb) or self.cache.resolve(
            key, AssetClass.model_glb, suffix=".gltf"
        )

    def _spawn(self, coro: Coroutine[Any, Any, T], *, name: str) -> asyncio.Task[T]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.warning("conversion_task_failed", task=task.get_name(), error=str(exc))

    async def _run_detached(self, coro: Coroutine[Any, Any, T], *, name: str) -> T:
        return await asyncio.shield(self._spawn(coro, name=name))

    async def _store(
        self,
        key: str,
        asset_class: AssetClass,
        produced: Path,
        source: SourceAsset,
        *,
        suffix: Optional[str] = None,
    ) -> CacheEntry:
        return await asyncio.to_thread(
            self.cache.put_file,
            key,
            asset_class,
            produced,
            source_mtime=source.modified_time,
            suffix=suffix,
        )

    async def _heic_jpeg(self, source: SourceAsset) -> CacheEntry:
        key = derive_cache_key(str(source.absolute_path))
        entry = self.cache.resolve(key, AssetClass.heic_jpeg, source_mtime=source.modified_time)
        if entry is not None:
            return entry
        return await self._run_detached(self._produce_heic_jpeg(source, key), name=f"heic:{key}")

    async def _produce_heic_jpeg(self, source: SourceAsset, key: str) -> CacheEntry:
        async with self.gate.slot():
            return await self._convert_heic(source, key)

    async def _convert_heic(self, source: SourceAsset, key: str) -> CacheEntry:
        target = self.cache.temp_path(key, AssetClass.heic_jpeg)
        try:
            result = await self.dispatcher.heic_to_jpeg(source.absolute_path, target)
            entry = await self._store(key, AssetClass.heic_jpeg, result.output, source)
        finally:
            self.cache.discard_path(target)
        self.logger.info("heic_converted", path=str(source.absolute_path), strategy=result.strategy)
        return entry

    async def _produce_thumbnail(self, source: SourceAsset, kind: str, key: str) -> CacheEntry:
        async with self.gate.slot():
            input_path = source.absolute_path
            if kind == "heic":
                # The slot is already held here, so convert without re-entering the gate.
                heic_key = derive_cache_key(str(source.absolute_path))
                jpeg = self.cache.resolve(heic_key, AssetClass.heic_jpeg, source_mtime=source.modified_time)
                if jpeg is None:
                    jpeg = await self._convert_heic(source, heic_key)
                input_path, kind = jpeg.stored_path, "image"
            elif kind == "video" and source.extension == ".mp4":
                remuxed = self.cache.resolve(
                    self._stream_key(source),
                    AssetClass.stream_remux,
                    source_mtime=source.modified_time,
                )
                if remuxed is not None:
                    input_path = remuxed.stored_path

            target = self.cache.temp_path(key, AssetClass.thumbnails)
            try:
                result = await self.dispatcher.thumbnail(kind, input_path, target)
                entry = await self._store(key, AssetClass.thumbnails, result.output, source)
            finally:
                self.cache.discard_path(target)
        self.logger.info("thumbnail_generated", path=str(source.absolute_path), kind=kind, strategy=result.strategy)
        return entry

    async def _produce_stream_variant(self, source: SourceAsset, key: str) -> Optional[CacheEntry]:
        if await self.dispatcher.probe_streamable(source.absolute_path):
            return None
        async with self.gate.slot():
            target = self.cache.temp_path(key, AssetClass.stream_remux)
            try:
                result = await self.dispatcher.remux_for_streaming(source.absolute_path, target)
                entry = await self._store(key, AssetClass.stream_remux, result.output, source)
            finally:
                self.cache.discard_path(target)
        self.logger.info("stream_remuxed", path=str(source.absolute_path), size=entry.size)
        return entry

    async def _produce_model(self, resolved: ResolvedPath, source: SourceAsset, key: str) -> CacheEntry:
        async with self.gate.slot():
            workdir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="mediagate-model-"))
            try:
                staged = await asyncio.to_thread(
                    self.storage.copy,
                    resolved.relative,
                    workdir / f"input{source.extension}",
                )
                result = await self.dispatcher.model_to_gltf(staged, workdir)
                if result.output.suffix == ".gltf":
                    companion = result.output.with_suffix(".bin")
                    if companion.exists():
                        await self._store(key, AssetClass.model_glb, companion, source, suffix=".bin")
                    entry = await self._store(key, AssetClass.model_glb, result.output, source, suffix=".gltf")
                else:
                    entry = await self._store(key, AssetClass.model_glb, result.output, source)
            finally:
                await asyncio.to_thread(self._remove_workdir, workdir)
        self.logger.info("model_converted", path=str(source.absolute_path), strategy=result.strategy)
        return entry

    def _remove_workdir(self, workdir: Path) -> None:
        try:
            shutil.rmtree(workdir)
        except OSError as exc:
            self.logger.warning("workdir_cleanup_failed", path=str(workdir), error=str(exc))


__all__ = ["MediaService", "ServedBytes", "ServedFile"]
