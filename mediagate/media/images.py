from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Tuple

from PIL import Image

EXIF_ORIENTATION_TAG = 0x0112

# EXIF orientation value -> transpose that restores the upright image.
ORIENTATION_TRANSPOSES: dict[int, Image.Transpose] = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_270,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_90,
}


def clamp_quality(quality: int | None, *, default: int = 80, minimum: int = 30, maximum: int = 100) -> int:
    if quality is None:
        return default
    return min(max(int(quality), minimum), maximum)


def apply_orientation(image: Image.Image) -> Image.Image:
    orientation = image.getexif().get(EXIF_ORIENTATION_TAG, 1)
    transpose = ORIENTATION_TRANSPOSES.get(orientation)
    if transpose is None:
        return image
    return image.transpose(transpose)


def fit_within(image: Image.Image, max_width: int, max_height: int) -> Image.Image:
    """Shrink to fit the box, keeping aspect ratio. Never enlarges."""
    if image.width <= max_width and image.height <= max_height:
        return image
    resized = image.copy()
    resized.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)
    return resized


def _flatten(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def _prepare_webp(image: Image.Image) -> Image.Image:
    if image.mode in ("RGB", "RGBA"):
        return image
    if image.mode in ("LA", "P", "PA"):
        return image.convert("RGBA")
    return image.convert("RGB")


def optimize_to_webp(source: Path, *, quality: int, max_width: int, max_height: int) -> Tuple[bytes, Tuple[int, int]]:
    """Orientation-correct, bound and re-encode ``source`` as WebP.

    Returns the encoded bytes and the output dimensions.
    """
    with Image.open(source) as opened:
        opened.load()
        image = apply_orientation(opened)
        image = fit_within(image, max_width, max_height)
        image = _prepare_webp(image)
        buffer = BytesIO()
        image.save(buffer, format="WEBP", quality=quality, method=4)
        return buffer.getvalue(), image.size


def render_jpeg_thumbnail(source: Path, target: Path, *, box: int, quality: int = 80) -> Tuple[int, int]:
    with Image.open(source) as opened:
        opened.seek(0)
        opened.load()
        image = apply_orientation(opened)
        image = fit_within(image, box, box)
        image = _flatten(image)
        image.save(target, format="JPEG", quality=quality)
        return image.size


__all__ = [
    "EXIF_ORIENTATION_TAG",
    "ORIENTATION_TRANSPOSES",
    "apply_orientation",
    "clamp_quality",
    "fit_within",
    "optimize_to_webp",
    "render_jpeg_thumbnail",
]
