from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from .config import Settings
from .errors import InvalidPath, NotFound


@dataclass(slots=True)
class StorageStat:
    size_bytes: int
    modified_time: float
    is_dir: bool = False


@dataclass(slots=True)
class SourceAsset:
    """A file in the user tree. Read-only to the media pipeline."""

    absolute_path: Path
    extension: str
    size: int
    modified_time: float

    @property
    def name(self) -> str:
        return self.absolute_path.name


class StorageTree(ABC):
    @abstractmethod
    def locate(self, relative: str) -> Path: ...

    @abstractmethod
    def exists(self, relative: str) -> bool: ...

    @abstractmethod
    def stat(self, relative: str) -> StorageStat: ...

    @abstractmethod
    def read_bytes(self, relative: str) -> bytes: ...

    @abstractmethod
    def copy(self, relative: str, destination: Path) -> Path: ...

    def source(self, relative: str) -> SourceAsset:
        stat = self.stat(relative)
        if stat.is_dir:
            raise NotFound("File not found", detail={"path": relative})
        path = self.locate(relative)
        return SourceAsset(
            absolute_path=path,
            extension=path.suffix.lower(),
            size=stat.size_bytes,
            modified_time=stat.modified_time,
        )


class LocalStorageTree(StorageTree):
    """Filesystem-backed user tree rooted at a single directory."""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path).resolve()

    def locate(self, relative: str) -> Path:
        candidate = (self.base_path / relative).resolve()
        if candidate != self.base_path and self.base_path not in candidate.parents:
            raise InvalidPath("Invalid path")
        return candidate

    def exists(self, relative: str) -> bool:
        return self.locate(relative).exists()

    def stat(self, relative: str) -> StorageStat:
        path = self.locate(relative)
        try:
            result = path.stat()
        except FileNotFoundError as exc:
            raise NotFound("File not found", detail={"path": relative}) from exc
        return StorageStat(
            size_bytes=result.st_size,
            modified_time=result.st_mtime,
            is_dir=path.is_dir(),
        )

    def read_bytes(self, relative: str) -> bytes:
        try:
            return self.locate(relative).read_bytes()
        except FileNotFoundError as exc:
            raise NotFound("File not found", detail={"path": relative}) from exc

    def copy(self, relative: str, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(self.locate(relative), destination)
        except FileNotFoundError as exc:
            raise NotFound("File not found", detail={"path": relative}) from exc
        return destination


def get_storage(settings: Settings) -> StorageTree:
    return LocalStorageTree(base_path=Path(os.path.expanduser(str(settings.storage_root))))


__all__ = [
    "StorageTree",
    "LocalStorageTree",
    "StorageStat",
    "SourceAsset",
    "get_storage",
]
