"""Pytest fixtures for fieldmark tests."""

import base64
import io
import os
import tempfile

import numpy as np
import pytest
from PIL import Image, ImageFont

from fieldmark.layout.text_measure import FontFace, TextMeasurer


class FixedWidthMeasurer(TextMeasurer):
    """Deterministic measurer: every glyph is 0.6 em wide, lines are 1 em tall."""

    def measure(self, text, font_size, font_style="normal", font_family=None):
        if not text:
            return 0.0, 0.0
        lines = text.split("\n")
        return max(len(line) for line in lines) * font_size * 0.6, float(font_size) * len(lines)

    def get_font(self, font_size, font_style="normal", font_family=None):
        return FontFace(font=ImageFont.load_default(size=font_size), size=font_size)


def encode_image(array, fmt="JPEG", orientation=None, **save_kwargs):
    """Encode an RGB(A) array, optionally tagging an EXIF orientation."""
    image = Image.fromarray(array)
    if orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = orientation
        save_kwargs["exif"] = exif
    buf = io.BytesIO()
    image.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def data_url(image_bytes, content_type="image/jpeg"):
    return f"data:{content_type};base64," + base64.b64encode(image_bytes).decode("ascii")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def measurer():
    return FixedWidthMeasurer()


@pytest.fixture
def white_jpeg():
    """Plain white 1000x500 photo."""
    img = np.full((500, 1000, 3), 255, dtype=np.uint8)
    return encode_image(img, quality=95)


@pytest.fixture
def photo_jpeg():
    """Noisy 120x80 photo that reads as photographic content."""
    rng = np.random.default_rng(0)
    img = rng.integers(0, 256, size=(80, 120, 3), dtype=np.uint8)
    return encode_image(img, quality=90)


@pytest.fixture
def rotated_jpeg():
    """60x40 raw pixels tagged with EXIF orientation 6 (upright 40x60)."""
    img = np.full((40, 60, 3), 200, dtype=np.uint8)
    img[:, :10] = (255, 0, 0)
    return encode_image(img, orientation=6, quality=95)


@pytest.fixture
def transparent_png():
    """RGBA image whose left half is fully transparent."""
    img = np.zeros((50, 50, 4), dtype=np.uint8)
    img[:, 25:] = (0, 128, 255, 255)
    return encode_image(img, fmt="PNG")


@pytest.fixture
def sample_annotations():
    """Normalized (version 2) payload in the editor's camelCase shape."""
    return {
        "rects": [{"id": "r1", "x": 0.1, "y": 0.1, "width": 0.5, "height": 0.5, "color": "#ff0000",
                   "strokeWidth": 4}],
        "lines": [{"id": "l1", "points": [0.1, 0.9, 0.9, 0.9], "color": "#00ff00"}],
        "arrows": [{"id": "a1", "points": [0.7, 0.2, 0.9, 0.4], "color": "#0000ff"}],
        "texts": [{"id": "t1", "x": 0.6, "y": 0.6, "text": "Crack here", "fontSize": 20}],
        "dimensions": [{"id": "d1", "points": [0.2, 0.75, 0.8, 0.75], "value": "12", "unit": "in",
                        "comment": "approx"}],
        "imageNaturalWidth": 1000,
        "imageNaturalHeight": 500,
        "stageWidth": 800,
        "stageHeight": 600,
        "imageRenderTransform": {"imageScale": 0.4, "imageX": 0, "imageY": 100},
        "normalizedVersion": 2,
    }


@pytest.fixture
def rect_only_annotations():
    return {
        "rects": [{"id": "r1", "x": 0.1, "y": 0.1, "width": 0.5, "height": 0.5, "color": "#ff0000"}],
        "imageNaturalWidth": 1000,
        "imageNaturalHeight": 500,
        "imageRenderTransform": {"imageScale": 0.4, "imageX": 0, "imageY": 0},
        "normalizedVersion": 2,
    }


@pytest.fixture
def export_config(temp_dir):
    """Default config with temp and output directories inside temp_dir."""
    from fieldmark.config import FieldmarkConfig

    config = FieldmarkConfig()
    config.export.temp_base = os.path.join(temp_dir, "work")
    config.export.output_dir = os.path.join(temp_dir, "out")
    return config
