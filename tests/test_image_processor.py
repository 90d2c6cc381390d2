"""Tests for image normalization

Run with pytest from project root:
    pytest tests/test_image_processor.py -v
"""

from io import BytesIO

import pytest
from PIL import Image

import image_processor
from models.failure import Failure, FailureKind
from models.images import BinaryImage
from models.requests import OutputFormat


def _open(data):
    img = Image.open(BytesIO(data))
    img.load()
    return img


class TestNormalize:
    """Tests for image_processor.normalize"""

    def test_keeps_size_without_targets(self, make_png):
        """Without target dimensions the decoded size is kept"""
        result = image_processor.normalize(make_png(120, 80), OutputFormat.PNG)
        assert isinstance(result, BinaryImage)
        assert (result.width, result.height) == (120, 80)
        assert result.mime == "image/png"

    def test_resizes_to_exact_target(self, make_png):
        """Both targets given: output has exactly those dimensions"""
        result = image_processor.normalize(make_png(100, 100), "webp", 160, 90)
        assert (result.width, result.height) == (160, 90)
        assert result.mime == "image/webp"
        assert _open(result.data).size == (160, 90)

    def test_jpeg_flattens_alpha_onto_background(self, make_png):
        """Transparent pixels become the background color in JPEG output"""
        transparent = make_png(10, 10, color=(0, 0, 0, 0), mode="RGBA")
        result = image_processor.normalize(transparent, OutputFormat.JPEG, background="#ffffff")
        img = _open(result.data)
        assert result.mime == "image/jpeg"
        assert img.mode == "RGB"
        r, g, b = img.getpixel((5, 5))
        assert min(r, g, b) > 245

    def test_png_keeps_alpha(self, make_png):
        result = image_processor.normalize(make_png(10, 10, mode="RGBA"), OutputFormat.PNG)
        assert _open(result.data).mode == "RGBA"

    def test_input_bytes_untouched(self, make_png):
        source = make_png(30, 30)
        copy = bytes(source)
        image_processor.normalize(source, OutputFormat.JPEG, 10, 10)
        assert source == copy

    def test_strips_metadata(self):
        """EXIF is not carried into the output"""
        img = Image.new("RGB", (20, 20), (10, 20, 30))
        exif = Image.Exif()
        exif[0x010F] = "SecretCam"
        output = BytesIO()
        img.save(output, format="JPEG", exif=exif.tobytes())

        result = image_processor.normalize(output.getvalue(), OutputFormat.JPEG)
        assert b"SecretCam" not in result.data

    def test_unknown_format_falls_back_to_png(self, make_png):
        result = image_processor.normalize(make_png(), "tiff")
        assert result.mime == "image/png"

    def test_empty_input(self):
        result = image_processor.normalize(b"", OutputFormat.PNG)
        assert result == Failure(FailureKind.INVALID_INPUT, "Empty image data")

    def test_undecodable_input(self):
        result = image_processor.normalize(b"definitely not an image", OutputFormat.PNG)
        assert isinstance(result, Failure)
        assert result.kind is FailureKind.INVALID_INPUT

    def test_pixel_limit(self, make_png, monkeypatch):
        monkeypatch.setattr(image_processor, "MAX_PIXELS", 100)
        result = image_processor.normalize(make_png(20, 20), OutputFormat.PNG)
        assert isinstance(result, Failure)
        assert result.message == "Image exceeds pixel limit"


class TestMetadata:
    """Tests for metadata and reference loading"""

    def test_get_image_metadata(self, make_png):
        assert image_processor.get_image_metadata(make_png(33, 21)) == {"width": 33, "height": 21, "mime": "image/png"}

    def test_get_image_metadata_rejects_garbage(self):
        with pytest.raises(ValueError):
            image_processor.get_image_metadata(b"garbage")

    def test_load_reference(self, make_png):
        reference = image_processor.load_reference(make_png(40, 30, fmt="WEBP"), "ref.webp")
        assert reference.mime == "image/webp"
        assert (reference.width, reference.height) == (40, 30)
        assert reference.filename == "ref.webp"

    def test_load_reference_rejects_gif(self, make_png):
        with pytest.raises(ValueError, match="Unsupported"):
            image_processor.load_reference(make_png(fmt="GIF", mode="P", color=1))

    def test_create_preview(self, make_png):
        preview = image_processor.create_preview(make_png(800, 400), max_dim=200)
        img = _open(preview)
        assert img.format == "WEBP"
        assert img.size == (200, 100)
