"""Per-asset-class on-disk cache with atomic writes and mtime freshness."""

from __future__ import annotations

import enum
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from mediagate.core.config import Settings
from mediagate.core.errors import CacheWriteFailure
from mediagate.core.logging import get_logger


class AssetClass(str, enum.Enum):
    thumbnails = "thumbnails"
    heic_jpeg = "heic_jpeg"
    stream_remux = "stream_remux"
    model_glb = "model_glb"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def legacy_extensions(self) -> tuple[str, ...]:
        return _LEGACY_EXTENSIONS.get(self, ())

    @property
    def tracks_mtime(self) -> bool:
        # Model keys embed size and mtime, so presence is enough.
        return self is not AssetClass.model_glb


_EXTENSIONS = {
    AssetClass.thumbnails: ".jpg",
    AssetClass.heic_jpeg: ".jpg",
    AssetClass.stream_remux: ".mp4",
    AssetClass.model_glb: ".glb",
}

_LEGACY_EXTENSIONS = {
    AssetClass.thumbnails: (".png",),
    AssetClass.heic_jpeg: (".webp",),
}


@dataclass(slots=True)
class CacheEntry:
    key: str
    asset_class: AssetClass
    stored_path: Path
    modified_time: float
    size: int


def cache_roots(settings: Settings) -> dict[AssetClass, Path]:
    return {
        AssetClass.thumbnails: settings.thumbnail_path,
        AssetClass.heic_jpeg: settings.heic_cache_path,
        AssetClass.stream_remux: settings.stream_cache_path,
        AssetClass.model_glb: settings.model_cache_path,
    }


class CacheStore:
    def __init__(self, roots: Mapping[AssetClass, Path]):
        missing = [cls.value for cls in AssetClass if cls not in roots]
        if missing:
            raise ValueError(f"cache roots missing for: {', '.join(missing)}")
        self.roots = {cls: Path(path) for cls, path in roots.items()}
        self.logger = get_logger(component="cache_store")

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheStore":
        return cls(cache_roots(settings))

    def directory(self, asset_class: AssetClass) -> Path:
        return self.roots[asset_class]

    def path_for(self, key: str, asset_class: AssetClass, suffix: Optional[str] = None) -> Path:
        return self.roots[asset_class] / f"{key}{suffix or asset_class.extension}"

    def resolve(
        self,
        key: str,
        asset_class: AssetClass,
        *,
        source_mtime: Optional[float] = None,
        suffix: Optional[str] = None,
    ) -> CacheEntry | None:
        path = self.path_for(key, asset_class, suffix)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None

        if asset_class.tracks_mtime and source_mtime is not None and stat.st_mtime < source_mtime:
            self.logger.debug("cache_stale", key=key, asset_class=asset_class.value, path=str(path))
            return None
        return CacheEntry(
            key=key,
            asset_class=asset_class,
            stored_path=path,
            modified_time=stat.st_mtime,
            size=stat.st_size,
        )

    def temp_path(self, key: str, asset_class: AssetClass, suffix: Optional[str] = None) -> Path:
        """Reserve a unique path next to the final entry for a tool to write into."""
        directory = self._ensure_directory(asset_class)
        fd, name = tempfile.mkstemp(dir=directory, prefix=f".{key}.", suffix=f".tmp{suffix or asset_class.extension}")
        os.close(fd)
        return Path(name)

    def put_bytes(
        self,
        key: str,
        asset_class: AssetClass,
        payload: bytes,
        *,
        source_mtime: Optional[float] = None,
        suffix: Optional[str] = None,
    ) -> CacheEntry:
        self.evict_legacy_variants(key, asset_class)
        target = self.path_for(key, asset_class, suffix)
        tmp_path: Path | None = None
        try:
            directory = self._ensure_directory(asset_class)
            fd, name = tempfile.mkstemp(dir=directory, prefix=f".{key}.", suffix=".tmp")
            tmp_path = Path(name)
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_path, target)
            tmp_path = None
        except OSError as exc:
            raise CacheWriteFailure(f"Failed to write cache entry {target.name}", detail={"error": str(exc)}) from exc
        finally:
            if tmp_path is not None:
                self.discard_path(tmp_path)
        return self._finalise(key, asset_class, target, source_mtime)

    def put_file(
        self,
        key: str,
        asset_class: AssetClass,
        produced: Path,
        *,
        source_mtime: Optional[float] = None,
        suffix: Optional[str] = None,
    ) -> CacheEntry:
        """Move ``produced`` into place atomically.

        Files already inside the class directory are renamed directly; anything
        else is first copied to a sibling temp file so the final rename never
        crosses filesystems.
        """
        self.evict_legacy_variants(key, asset_class)
        target = self.path_for(key, asset_class, suffix)
        staged: Path | None = None
        try:
            directory = self._ensure_directory(asset_class)
            if produced.parent.resolve() == directory.resolve():
                staged = produced
            else:
                fd, name = tempfile.mkstemp(dir=directory, prefix=f".{key}.", suffix=".tmp")
                os.close(fd)
                staged = Path(name)
                shutil.copyfile(produced, staged)
            os.replace(staged, target)
            staged = None
        except OSError as exc:
            raise CacheWriteFailure(f"Failed to write cache entry {target.name}", detail={"error": str(exc)}) from exc
        finally:
            if staged is not None and staged != produced:
                self.discard_path(staged)
        return self._finalise(key, asset_class, target, source_mtime)

    def evict_legacy_variants(self, key: str, asset_class: AssetClass) -> list[Path]:
        removed: list[Path] = []
        for extension in asset_class.legacy_extensions:
            legacy = self.path_for(key, asset_class, extension)
            try:
                legacy.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                self.logger.warning("cache_legacy_evict_failed", path=str(legacy), error=str(exc))
                continue
            self.logger.info("cache_legacy_evicted", path=str(legacy))
            removed.append(legacy)
        return removed

    def _finalise(
        self,
        key: str,
        asset_class: AssetClass,
        target: Path,
        source_mtime: Optional[float],
    ) -> CacheEntry:
        try:
            stat = target.stat()
            if source_mtime is not None and stat.st_mtime < source_mtime:
                # Source clocks ahead of ours would otherwise leave the entry stale forever.
                os.utime(target, (source_mtime, source_mtime))
                stat = target.stat()
        except OSError as exc:
            raise CacheWriteFailure(f"Failed to finalise cache entry {target.name}", detail={"error": str(exc)}) from exc

        self.logger.debug("cache_stored", key=key, asset_class=asset_class.value, size=stat.st_size)
        return CacheEntry(
            key=key,
            asset_class=asset_class,
            stored_path=target,
            modified_time=stat.st_mtime,
            size=stat.st_size,
        )

    def _ensure_directory(self, asset_class: AssetClass) -> Path:
        directory = self.roots[asset_class]
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def discard_path(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            self.logger.warning("cache_temp_cleanup_failed", path=str(path), error=str(exc))


__all__ = ["AssetClass", "CacheEntry", "CacheStore", "cache_roots"]
