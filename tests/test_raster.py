"""Tests for decoding, resizing and canonicalization."""

import io

import numpy as np
import pytest
from PIL import Image

from conftest import encode_image
from fieldmark.errors import AnnotationRenderError
from fieldmark.models import RenderMode, RenderOptions
from fieldmark.render.raster import (
    canonicalize_image,
    compute_target_size,
    decode_upright,
    flatten_on_white,
    get_full_res_clean_buffer,
    open_image,
    render_clean_image,
    render_thumbnail,
)


class TestOrientation:
    """Tests for EXIF orientation handling."""

    def test_decode_upright(self, rotated_jpeg):
        """Test that orientation 6 produces an upright, writable array."""
        array, info = decode_upright(rotated_jpeg)

        assert array.shape == (60, 40, 3)
        assert array.flags.writeable
        assert info["orientation"] == 6
        assert (info["raw_width"], info["raw_height"]) == (60, 40)
        assert (info["width"], info["height"]) == (40, 60)
        assert info["format"] == "JPEG"

    def test_rotation_moves_content(self, rotated_jpeg):
        """Test that the red left band ends up along the top after a 90 degree turn."""
        array, _ = decode_upright(rotated_jpeg)

        assert array[2, 20, 0] > 200
        assert array[2, 20, 1] < 80


class TestDecoding:
    """Tests for image decoding."""

    def test_empty_buffer(self):
        with pytest.raises(AnnotationRenderError):
            open_image(b"")

    def test_garbage_buffer(self):
        with pytest.raises(AnnotationRenderError):
            decode_upright(b"definitely not an image")

    def test_flatten_on_white(self):
        image = Image.new("RGBA", (4, 4), (0, 0, 0, 0))

        flat = flatten_on_white(image)

        assert flat.mode == "RGB"
        assert flat.getpixel((0, 0)) == (255, 255, 255)

    def test_grayscale_becomes_rgb(self):
        buffer = encode_image(np.full((10, 10), 128, dtype=np.uint8), fmt="PNG")

        array, _ = decode_upright(buffer)

        assert array.shape == (10, 10, 3)


class TestTargetSize:
    """Tests for compute_target_size."""

    def test_landscape(self):
        assert compute_target_size(2000, 1000, 1800) == (1800, 900)

    def test_portrait(self):
        assert compute_target_size(1000, 2000, 800) == (400, 800)

    def test_never_enlarges(self):
        assert compute_target_size(100, 50, 1800) == (100, 50)

    def test_no_cap(self):
        assert compute_target_size(4032, 3024, None) == (4032, 3024)

    def test_rounds_half_up(self):
        assert compute_target_size(1001, 500, 400) == (400, 200)
        assert compute_target_size(4, 1, 2) == (2, 1)

    def test_square_uses_height_branch(self):
        assert compute_target_size(500, 500, 100) == (100, 100)


class TestCleanRender:
    """Tests for clean (unannotated) renders."""

    def test_pdf_default(self, white_jpeg):
        result = render_clean_image(white_jpeg, RenderOptions(max_edge=300))

        assert not result.has_annotations
        assert (result.width, result.height) == (300, 150)

    def test_thumbnail(self, white_jpeg):
        thumb = render_thumbnail(white_jpeg)

        assert Image.open(io.BytesIO(thumb)).size == (400, 200)

    def test_full_res(self, rotated_jpeg):
        full = get_full_res_clean_buffer(rotated_jpeg)
        image = Image.open(io.BytesIO(full))

        assert image.size == (40, 60)
        assert image.getexif().get(0x0112) is None

    def test_deterministic(self, photo_jpeg):
        options = RenderOptions(mode=RenderMode.PDF, max_edge=60)

        assert render_clean_image(photo_jpeg, options).buffer == render_clean_image(photo_jpeg, options).buffer


class TestCanonicalize:
    """Tests for canonicalize_image."""

    def test_photo_becomes_jpeg(self, photo_jpeg):
        result = canonicalize_image(photo_jpeg)

        assert result.format == "jpeg"
        assert result.extension == "jpg"
        assert result.content_type == "image/jpeg"
        assert result.original_format == "jpeg"

    def test_transparent_png_stays_png(self, transparent_png):
        result = canonicalize_image(transparent_png)

        assert result.format == "png"
        assert result.content_type == "image/png"
        assert Image.open(io.BytesIO(result.buffer)).mode == "RGBA"

    def test_flat_graphic_becomes_png(self):
        """Test that an image without photographic variation is kept lossless."""
        img = np.full((30, 30, 3), 150, dtype=np.uint8)
        img[10:20, 10:20] = (0, 0, 0)

        result = canonicalize_image(encode_image(img, quality=95))

        assert result.format == "png"

    def test_orientation_baked_in(self, rotated_jpeg):
        result = canonicalize_image(rotated_jpeg)
        image = Image.open(io.BytesIO(result.buffer))

        assert result.original_orientation == 6
        assert (result.width, result.height) == (40, 60)
        assert image.size == (40, 60)
        assert image.getexif().get(0x0112, 1) == 1

    def test_garbage_raises(self):
        with pytest.raises(AnnotationRenderError):
            canonicalize_image(b"\x00\x01\x02")
