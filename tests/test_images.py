from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from mediagate.media.images import (
    EXIF_ORIENTATION_TAG,
    apply_orientation,
    clamp_quality,
    fit_within,
    optimize_to_webp,
    render_jpeg_thumbnail,
)


def _oriented_jpeg(path, orientation: int, size=(60, 40)):
    exif = Image.Exif()
    exif[EXIF_ORIENTATION_TAG] = orientation
    Image.new("RGB", size, (90, 90, 90)).save(path, format="JPEG", exif=exif.tobytes())
    return path


@pytest.mark.parametrize(
    "value,expected",
    [(None, 80), (10, 30), (30, 30), (75, 75), (100, 100), (250, 100)],
)
def test_clamp_quality(value, expected):
    assert clamp_quality(value) == expected


def test_fit_within_never_enlarges():
    image = Image.new("RGB", (100, 50))
    assert fit_within(image, 2000, 2000).size == (100, 50)


def test_fit_within_preserves_aspect_ratio():
    image = Image.new("RGB", (4000, 2000))
    assert fit_within(image, 2000, 2000).size == (2000, 1000)


@pytest.mark.parametrize("orientation", [5, 6, 7, 8])
def test_quarter_turn_orientations_swap_dimensions(tmp_path, orientation):
    path = _oriented_jpeg(tmp_path / "o.jpg", orientation)
    with Image.open(path) as image:
        assert apply_orientation(image).size == (40, 60)


@pytest.mark.parametrize("orientation", [1, 2, 3, 4])
def test_other_orientations_keep_dimensions(tmp_path, orientation):
    path = _oriented_jpeg(tmp_path / "o.jpg", orientation)
    with Image.open(path) as image:
        assert apply_orientation(image).size == (60, 40)


def test_optimize_to_webp_corrects_orientation_and_bounds(tmp_path):
    path = _oriented_jpeg(tmp_path / "rotated.jpg", 6, size=(600, 300))

    payload, size = optimize_to_webp(path, quality=80, max_width=100, max_height=100)

    assert size == (50, 100)
    with Image.open(BytesIO(payload)) as image:
        assert image.format == "WEBP"
        assert image.size == (50, 100)


def test_optimize_keeps_alpha(tmp_path):
    path = tmp_path / "alpha.png"
    Image.new("RGBA", (20, 20), (255, 0, 0, 128)).save(path)

    payload, _ = optimize_to_webp(path, quality=80, max_width=100, max_height=100)

    with Image.open(BytesIO(payload)) as image:
        assert image.mode == "RGBA"


def test_jpeg_thumbnail_flattens_transparency(tmp_path):
    source = tmp_path / "alpha.png"
    Image.new("RGBA", (300, 150), (0, 0, 0, 0)).save(source)
    target = tmp_path / "thumb.jpg"

    size = render_jpeg_thumbnail(source, target, box=150)

    assert size == (150, 75)
    with Image.open(target) as image:
        assert image.mode == "RGB"
        assert image.getpixel((10, 10)) == (255, 255, 255)
