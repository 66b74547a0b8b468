"""Tests for image validation and optimisation."""

import io

import pytest
from PIL import Image

from timestitch.errors import ValidationError
from timestitch.images import guess_content_type, optimize_image, validate_image


def _image_bytes(size, mode="RGB", fmt="PNG"):
    out = io.BytesIO()
    Image.new(mode, size).save(out, format=fmt)
    return out.getvalue()


class TestValidateImage:
    """Tests for validate_image."""

    def test_accepts_jpeg(self):
        assert validate_image("photo.JPG", b"x") == "image/jpeg"

    def test_accepts_heic(self):
        assert guess_content_type("IMG_0001.heic") in ("image/heic", "image/heif")

    def test_rejects_type(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_image("doc.pdf", b"x")
        assert "unsupported file type" in exc_info.value.errors[0]

    def test_rejects_size(self):
        with pytest.raises(ValidationError):
            validate_image("photo.png", b"x" * 11, max_bytes=10)


class TestOptimizeImage:
    """Tests for optimize_image."""

    def test_downscales_wide_images(self):
        data = optimize_image(_image_bytes((4000, 1000)), max_width=1920)

        with Image.open(io.BytesIO(data)) as img:
            assert img.format == "JPEG"
            assert img.size == (1920, 480)

    def test_keeps_small_images(self):
        data = optimize_image(_image_bytes((800, 600)))

        with Image.open(io.BytesIO(data)) as img:
            assert img.size == (800, 600)

    def test_converts_transparency(self):
        data = optimize_image(_image_bytes((100, 100), mode="RGBA"))

        with Image.open(io.BytesIO(data)) as img:
            assert img.mode == "RGB"

    def test_rejects_garbage(self):
        with pytest.raises(ValidationError):
            optimize_image(b"definitely not an image")
