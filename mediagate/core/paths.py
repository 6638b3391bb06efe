from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from .errors import AccessDenied, InvalidPath

PERSONAL_PREFIX = "user_"


class Operation(str, enum.Enum):
    read = "read"
    write = "write"


@dataclass(frozen=True, slots=True)
class ResolvedPath:
    """A sandboxed, root-relative location inside the storage tree."""

    directory: str
    filename: Optional[str] = None
    redirected: bool = False

    @property
    def relative(self) -> str:
        if not self.filename:
            return self.directory
        if not self.directory:
            return self.filename
        return f"{self.directory}/{self.filename}"


def personal_root(user_id: str) -> str:
    return f"{PERSONAL_PREFIX}{user_id}"


def _split_segments(raw: str) -> list[str]:
    if "\x00" in raw:
        raise InvalidPath("Invalid path")
    segments: list[str] = []
    for segment in raw.replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise InvalidPath("Invalid path")
        segments.append(segment)
    return segments


def _check_filename(filename: Optional[str]) -> Optional[str]:
    if filename is None:
        return None
    if not filename or filename in (".", "..") or "\x00" in filename or "/" in filename or "\\" in filename:
        raise InvalidPath("Invalid path")
    return filename


def resolve_path(
    user_id: str,
    is_privileged: bool,
    path: str,
    *,
    filename: Optional[str] = None,
    operation: Operation = Operation.read,
) -> ResolvedPath:
    """Normalise ``path`` and confine it to the caller's sandbox.

    Traversal is rejected before any access decision, and no filesystem call is
    made: the result is derived from the strings alone.

    Args:
        user_id: Identity supplied by the auth layer.
        is_privileged: Whether the identity may address the whole tree.
        path: Root-relative directory requested by the client.
        filename: Optional file name inside ``path``.
        operation: Access kind. Reads and writes share the same sandbox rules.

    Returns:
        The resolved location.

    Raises:
        InvalidPath: The path or file name is malformed or climbs out of its parent.
        AccessDenied: A non-privileged identity addressed another user's tree.
    """
    segments = _split_segments(path or "")
    name = _check_filename(filename)

    if is_privileged:
        return ResolvedPath(directory="/".join(segments), filename=name)

    own_root = personal_root(user_id)
    if not segments:
        return ResolvedPath(directory=own_root, filename=name, redirected=True)
    if segments[0] == own_root:
        return ResolvedPath(directory="/".join(segments), filename=name)
    if segments[0].startswith(PERSONAL_PREFIX):
        raise AccessDenied("Access denied", detail={"operation": operation.value})
    return ResolvedPath(directory="/".join([own_root, *segments]), filename=name)


__all__ = ["Operation", "ResolvedPath", "personal_root", "resolve_path"]
