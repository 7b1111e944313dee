import asyncio
from io import BytesIO

import pytest
from PIL import Image, ImageFile

from photoclub import media
from photoclub.errors import ValidationError
from photoclub.media import MediaLimits
from photoclub.storage import LocalStorage

from tests._helpers import make_image_bytes


def _open(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


def test_process_png_produces_jpeg_original_and_thumbnail(load_test_image):
    out = media.process_image(load_test_image("wide_1600x400.png"), "image/png", MediaLimits())

    original = _open(out.original)
    thumb = _open(out.thumbnail)
    assert original.format == "JPEG"
    assert original.size == (1600, 400)
    assert original.info.get("progressive") or original.info.get("progression")
    assert thumb.format == "JPEG"
    assert thumb.size == (400, 100)
    assert (out.width, out.height) == (1600, 400)


def test_thumbnail_never_enlarges(load_test_image):
    out = media.process_image(load_test_image("rgb.png"), "image/png", MediaLimits())
    assert _open(out.thumbnail).size == (64, 64)


def test_thumbnail_size_is_configurable():
    data = make_image_bytes((500, 250))
    out = media.process_image(data, "image/png", MediaLimits(thumbnail_size=100))
    assert _open(out.thumbnail).size == (100, 50)


def test_transparent_pixels_flattened_on_white(load_test_image):
    out = media.process_image(load_test_image("rgba.png"), "image/png", MediaLimits())
    thumb = _open(out.thumbnail).convert("RGB")
    r, g, b = thumb.getpixel((20, 20))
    assert min(r, g, b) > 235


def test_paletted_gif_accepted(load_test_image):
    out = media.process_image(load_test_image("rgb.gif"), "image/gif", MediaLimits())
    assert _open(out.original).mode == "RGB"


def test_dimension_limit(load_test_image):
    with pytest.raises(ValidationError) as exc:
        media.process_image(load_test_image("oversized_2100x100.png"), "image/png", MediaLimits())
    assert "2100px" in exc.value.message
    assert "2048px" in exc.value.message


def test_dimension_checked_before_pixels_are_decoded(monkeypatch):
    decoded = []
    real_load = ImageFile.ImageFile.load

    def tracking_load(self):
        decoded.append(self.size)
        return real_load(self)

    monkeypatch.setattr(ImageFile.ImageFile, "load", tracking_load)

    with pytest.raises(ValidationError) as exc:
        media.validate_upload(make_image_bytes((2100, 10)), "image/png", MediaLimits())
    assert "Maximum dimension is 2048px" in exc.value.message
    assert decoded == []

    img = media.validate_upload(make_image_bytes((40, 30)), "image/png", MediaLimits())
    assert decoded == [(40, 30)]
    assert img.getpixel((0, 0)) == (128, 128, 128)


def test_dimension_limit_inclusive():
    data = make_image_bytes((2048, 10))
    media.validate_upload(data, "image/png", MediaLimits())


def test_dpi_limit(load_test_image):
    media.validate_upload(load_test_image("rgb_72dpi.jpg"), "image/jpeg", MediaLimits())
    with pytest.raises(ValidationError) as exc:
        media.validate_upload(load_test_image("rgb_300dpi.jpg"), "image/jpeg", MediaLimits())
    assert "Current: 300 DPI" in exc.value.message


def test_png_dpi_is_rounded():
    img = _open(make_image_bytes(dpi=72))
    assert media.image_dpi(img) == 72
    assert media.image_dpi(_open(make_image_bytes())) is None


@pytest.mark.parametrize("content_type", [None, "", "application/pdf", "text/plain"])
def test_content_type_must_be_image(load_test_image, content_type):
    with pytest.raises(ValidationError):
        media.validate_upload(load_test_image("rgb.png"), content_type, MediaLimits())


def test_size_limit(load_test_image):
    data = load_test_image("rgb.png")
    with pytest.raises(ValidationError):
        media.validate_upload(data, "image/png", MediaLimits(max_upload_bytes=len(data) - 1))
    media.validate_upload(data, "image/png", MediaLimits(max_upload_bytes=len(data)))


@pytest.mark.parametrize("data", [b"", b"not an image at all"])
def test_undecodable_upload(data):
    with pytest.raises(ValidationError):
        media.validate_upload(data, "image/png", MediaLimits())


def test_limits_from_settings(app_settings):
    limits = MediaLimits.from_settings(app_settings)
    assert limits.max_image_dimension == app_settings.max_image_dimension
    assert limits.thumbnail_size == app_settings.thumbnail_size


def test_async_process_and_store(tmp_path):
    storage = LocalStorage(str(tmp_path))
    names = asyncio.run(media.async_process_and_store(storage, "xyz", make_image_bytes(), "image/png", MediaLimits()))
    assert names == ("xyz.jpg", "thumb_xyz.jpg")
    assert _open((tmp_path / "xyz.jpg").read_bytes()).format == "JPEG"
