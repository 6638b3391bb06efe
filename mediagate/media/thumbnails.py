from __future__ import annotations

from pathlib import Path
from typing import Tuple

import cv2  # type: ignore

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".ico", ".tif", ".tiff"})
HEIC_EXTENSIONS = frozenset({".heic", ".heif"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".avi", ".mov", ".mkv", ".flv", ".wmv", ".webm", ".m4v", ".mpg", ".mpeg"})
PDF_EXTENSIONS = frozenset({".pdf"})


def thumbnail_kind(extension: str) -> str | None:
    extension = extension.lower()
    if extension in IMAGE_EXTENSIONS:
        return "image"
    if extension in HEIC_EXTENSIONS:
        return "heic"
    if extension in VIDEO_EXTENSIONS:
        return "video"
    if extension in PDF_EXTENSIONS:
        return "pdf"
    return None


def image_dimensions(image_path: Path) -> Tuple[int, int]:
    image = cv2.imread(str(image_path))
    if image is None:
        raise RuntimeError(f"Failed to read generated thumbnail at {image_path}")
    height, width = image.shape[:2]
    return width, height


__all__ = [
    "IMAGE_EXTENSIONS",
    "HEIC_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "PDF_EXTENSIONS",
    "thumbnail_kind",
    "image_dimensions",
]
