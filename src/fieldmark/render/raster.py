"""
Raster helpers shared by every render path.

Images are decoded with Pillow, rotated upright according to their EXIF
orientation, flattened onto white and handed around as RGB numpy arrays.
Resizing uses OpenCV area interpolation; encoding goes back through Pillow
with fixed settings so identical inputs produce identical bytes.
"""

import io
import math
from dataclasses import dataclass

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from fieldmark.config import get_default_config
from fieldmark.errors import AnnotationRenderError
from fieldmark.models import ExportBuffer, RenderMode, RenderOptions
from fieldmark.tracer import get_tracer, trace


EXIF_ORIENTATION_TAG = 0x0112

TRANSPARENCY_RATIO = 0.01
GRAPHIC_MIN_RANGE = 200
GRAPHIC_MIN_STDEV = 40
CANONICAL_JPEG_QUALITY = 88


def open_image(image_bytes):
    """Open encoded bytes with Pillow, raising AnnotationRenderError if unreadable."""
    if not image_bytes:
        raise AnnotationRenderError("Empty image buffer")
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise AnnotationRenderError(f"Cannot decode image: {e}") from e
    return image


def read_orientation(image):
    """EXIF orientation tag (1-8); 1 when absent or invalid."""
    try:
        orientation = int(image.getexif().get(EXIF_ORIENTATION_TAG, 1))
    except (TypeError, ValueError):
        return 1
    return orientation if 1 <= orientation <= 8 else 1


def flatten_on_white(image):
    """Convert any mode to RGB, compositing transparent pixels onto white."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(background, rgba).convert("RGB")
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def decode_upright(image_bytes):
    """
    Decode bytes into an upright RGB array.

    Returns (array, info) where info holds the source orientation, the raw
    and post-rotation sizes, and the source format.
    """
    image = open_image(image_bytes)
    orientation = read_orientation(image)
    raw_width, raw_height = image.size
    source_format = image.format

    try:
        upright = ImageOps.exif_transpose(image)
        array = np.array(flatten_on_white(upright), dtype=np.uint8)
    except (OSError, ValueError, MemoryError) as e:
        raise AnnotationRenderError(f"Cannot decode image: {e}") from e

    height, width = array.shape[:2]
    info = {
        "orientation": orientation,
        "raw_width": raw_width,
        "raw_height": raw_height,
        "width": width,
        "height": height,
        "format": source_format,
    }
    return array, info


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def compute_target_size(width, height, max_edge):
    """
    Fit (width, height) inside max_edge on the long side. Never enlarges.

    max_edge None keeps the original size.
    """
    if max_edge is None:
        return width, height
    if width > height:
        target_width = min(width, max_edge)
        target_height = _round_half_up(target_width * (height / width))
    else:
        target_height = min(height, max_edge)
        target_width = _round_half_up(target_height * (width / height))
    return max(1, target_width), max(1, target_height)


def resize_to(array, width, height):
    """Resize an RGB array with area interpolation; no-op when already sized."""
    if array.shape[1] == width and array.shape[0] == height:
        return array
    return cv2.resize(array, (width, height), interpolation=cv2.INTER_AREA)


def encode_jpeg(array, quality):
    """Encode an RGB array as baseline JPEG without metadata."""
    buf = io.BytesIO()
    Image.fromarray(array).save(buf, format="JPEG", quality=int(quality))
    return buf.getvalue()


def encode_png(array, compress_level=6):
    buf = io.BytesIO()
    Image.fromarray(array).save(buf, format="PNG", compress_level=compress_level)
    return buf.getvalue()


@trace(label="render_clean_image")
def render_clean_image(image_bytes, options=None, render_config=None):
    """
    Rotate upright, resize per the render mode and encode as JPEG.

    Returns an ExportBuffer with has_annotations=False.
    """
    render_config = render_config or get_default_config().render
    options = options or RenderOptions()
    max_edge, quality = options.resolve(render_config)

    array, info = decode_upright(image_bytes)
    width, height = compute_target_size(info["width"], info["height"], max_edge)
    try:
        buffer = encode_jpeg(resize_to(array, width, height), quality)
    except (cv2.error, MemoryError, ValueError) as e:
        raise AnnotationRenderError(f"Cannot resize or encode image: {e}") from e

    return ExportBuffer(
        buffer=buffer,
        has_annotations=False,
        width=width,
        height=height,
    )


def render_thumbnail(image_bytes, max_edge=None, render_config=None):
    """Small JPEG preview of an upright image."""
    options = RenderOptions(mode=RenderMode.THUMBNAIL, max_edge=max_edge)
    return render_clean_image(image_bytes, options, render_config).buffer


def get_full_res_clean_buffer(image_bytes, quality=None, render_config=None):
    """Upright image at its original resolution, for clean full-size downloads."""
    options = RenderOptions(mode=RenderMode.FULL, quality=quality)
    result = render_clean_image(image_bytes, options, render_config)
    get_tracer().event(f"Full-res clean export {result.width}x{result.height}", level="DEBUG")
    return result.buffer


@dataclass
class CanonicalImage:
    """A source photo converted to a standard format with orientation baked in."""
    buffer: bytes
    format: str
    width: int
    height: int
    original_format: str
    original_orientation: int

    @property
    def content_type(self):
        return "image/png" if self.format == "png" else "image/jpeg"

    @property
    def extension(self):
        return "png" if self.format == "png" else "jpg"


def is_transparent_or_graphic(image):
    """
    Decide whether an image should stay lossless.

    True when more than 1% of pixels are not fully opaque, or when no channel
    shows photographic variation (range over 200 and stdev over 40).
    """
    bands = image.getbands()
    if "A" in bands or (image.mode == "P" and "transparency" in image.info):
        alpha = np.asarray(image.convert("RGBA"), dtype=np.uint8)[:, :, 3]
        if alpha.size and np.count_nonzero(alpha < 255) / alpha.size > TRANSPARENCY_RATIO:
            return True

    pixels = np.asarray(image.convert("RGBA" if "A" in bands else "RGB"), dtype=np.float64)
    if pixels.size == 0:
        return False
    channels = pixels.reshape(-1, pixels.shape[-1])
    ranges = channels.max(axis=0) - channels.min(axis=0)
    stdevs = channels.std(axis=0)
    photographic = np.any((ranges > GRAPHIC_MIN_RANGE) & (stdevs > GRAPHIC_MIN_STDEV))
    return not bool(photographic)


@trace(label="canonicalize_image")
def canonicalize_image(image_bytes):
    """
    Convert a source photo to JPEG or PNG with EXIF orientation applied.

    Graphics and transparent images become PNG; photos become JPEG
    (quality 88) flattened onto white.
    """
    image = open_image(image_bytes)
    original_format = (image.format or "unknown").lower()
    orientation = read_orientation(image)

    upright = ImageOps.exif_transpose(image)
    keep_lossless = is_transparent_or_graphic(upright)

    buf = io.BytesIO()
    if keep_lossless:
        mode = "RGBA" if "A" in upright.getbands() or "transparency" in upright.info else "RGB"
        upright.convert(mode).save(buf, format="PNG", compress_level=6)
        output_format = "png"
    else:
        flatten_on_white(upright).save(buf, format="JPEG", quality=CANONICAL_JPEG_QUALITY)
        output_format = "jpeg"

    get_tracer().event(
        f"Canonicalized {original_format} -> {output_format}, orientation {orientation} -> 1",
        level="DEBUG",
    )

    return CanonicalImage(
        buffer=buf.getvalue(),
        format=output_format,
        width=upright.width,
        height=upright.height,
        original_format=original_format,
        original_orientation=orientation,
    )
