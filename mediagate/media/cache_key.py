from __future__ import annotations

from hashlib import md5
from typing import Any, Mapping, Optional

from mediagate.core.storage import SourceAsset

__all__ = [
    "derive_cache_key",
    "source_identity",
]


def _format_param(value: Any) -> str:
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def derive_cache_key(identity: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Return a deterministic, filesystem-safe key for a cached artefact.

    MD5 is used for collision avoidance only; the input is never secret.

    Args:
        identity: String identifying the source, usually its path.
        params: Transform parameters that change the output. Order does not matter.

    Returns:
        A 32 character lowercase hex digest.
    """
    payload = identity
    if params:
        rendered = "&".join(f"{name}={_format_param(params[name])}" for name in sorted(params))
        payload = f"{identity}|{rendered}"
    return md5(payload.encode("utf-8"), usedforsecurity=False).hexdigest()


def source_identity(asset: SourceAsset, *, with_version: bool = False) -> tuple[str, dict[str, Any]]:
    """Identity string and version parameters for ``asset``.

    With ``with_version`` the size and nanosecond mtime are folded into the
    parameters, so the key alone proves freshness.
    """
    params: dict[str, Any] = {}
    if with_version:
        params = {"size": asset.size, "mtime_ns": int(asset.modified_time * 1_000_000_000)}
    return str(asset.absolute_path), params
