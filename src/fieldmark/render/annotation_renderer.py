"""
Server-side annotation renderer.

Draws the five annotation kinds onto an upright raster so the result matches
what the user saw in the editor. Geometry is stored normalized (0-1 of the
image); stroke widths and font sizes are in authoring display pixels and are
scaled by the ratio of the output canvas to that display size.

Geometry is drawn with OpenCV (anti-aliased, sub-pixel shift). Text is
rendered into a Pillow patch, rotated and alpha-composited onto the buffer.
"""

import math

import cv2
import numpy as np
from PIL import Image, ImageColor, ImageDraw

from fieldmark.config import get_default_config
from fieldmark.errors import AnnotationRenderError
from fieldmark.geometry.normalize import migrate_legacy_annotations
from fieldmark.layout.dimension_layout import clamp, compute_dimension_layout
from fieldmark.layout.text_measure import BOLD, NORMAL, get_default_measurer
from fieldmark.models import ExportBuffer, RenderMode, RenderOptions, ShapeKind
from fieldmark.render.parse import has_drawable_annotations, parse_annotation_data
from fieldmark.render.raster import (
    compute_target_size,
    decode_upright,
    encode_jpeg,
    render_clean_image,
    resize_to,
)
from fieldmark.tracer import get_tracer, trace


SHIFT = 4
SUBPIXEL = 1 << SHIFT

ARROW_POINTER_SIZE = 10
DEFAULT_COLORS = {
    ShapeKind.RECT: "#ff0000",
    ShapeKind.LINE: "#ff0000",
    ShapeKind.ARROW: "#ff0000",
    ShapeKind.TEXT: "#ff0000",
    ShapeKind.DIMENSION: "#ef4444",
}


class DrawContext:
    """
    Per-render scaling from stored units to canvas pixels.

    size_scale is the mean of the two axis ratios between the canvas and the
    size the image was displayed at while authoring.
    """

    def __init__(self, canvas_width, canvas_height, size_scale, measurer, render_config, layout_config):
        self.canvas_width = canvas_width
        self.canvas_height = canvas_height
        self.size_scale = size_scale
        self.measurer = measurer
        self.render_config = render_config
        self.layout_config = layout_config

    def sx(self, n):
        return _finite(n * self.canvas_width)

    def sy(self, n):
        return _finite(n * self.canvas_height)

    def point(self, nx, ny):
        return self.sx(nx), self.sy(ny)

    def sw(self, width=None):
        if width is None:
            width = self.render_config.default_stroke_width
        return max(1.0, width * self.size_scale)

    def fs(self, size=None):
        if size is None:
            size = self.render_config.default_font_size
        return max(10.0, size * self.size_scale)


def _finite(value):
    if not math.isfinite(value):
        raise AnnotationRenderError(f"Non-finite coordinate: {value}")
    return value


def _positive(value):
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


def authoring_display_size(data, natural_width, natural_height):
    """
    Size the image was shown at in the editor.

    Prefers natural size times the persisted image scale, then the stage
    size, then the natural size itself.
    """
    transform = data.image_render_transform if data is not None else None
    if transform is not None and _positive(transform.image_scale):
        return natural_width * transform.image_scale, natural_height * transform.image_scale
    if data is not None and _positive(data.stage_width) and _positive(data.stage_height):
        return data.stage_width, data.stage_height
    return natural_width, natural_height


def create_draw_context(canvas_width, canvas_height, data, natural_width, natural_height,
                        measurer=None, config=None):
    config = config or get_default_config()
    source_width, source_height = authoring_display_size(data, natural_width, natural_height)
    size_scale = (canvas_width / source_width + canvas_height / source_height) / 2
    return DrawContext(
        canvas_width,
        canvas_height,
        size_scale,
        measurer or get_default_measurer(),
        config.render,
        config.layout,
    )


class Canvas:
    """Drawing surface over an RGB uint8 array, modified in place."""

    def __init__(self, pixels):
        self.pixels = pixels
        self.height, self.width = pixels.shape[:2]

    @staticmethod
    def _fixed(points):
        return np.array([[round(x * SUBPIXEL), round(y * SUBPIXEL)] for x, y in points], dtype=np.int32)

    @staticmethod
    def _thickness(width):
        return max(1, int(round(width)))

    def stroke_polyline(self, points, color, width, closed=False):
        if len(points) < 2:
            return
        cv2.polylines(
            self.pixels, [self._fixed(points)], closed, color,
            thickness=self._thickness(width), lineType=cv2.LINE_AA, shift=SHIFT,
        )

    def stroke_rect(self, x, y, width, height, color, stroke_width):
        corners = [(x, y), (x + width, y), (x + width, y + height), (x, y + height)]
        self.stroke_polyline(corners, color, stroke_width, closed=True)

    def fill_polygon(self, points, color):
        cv2.fillPoly(self.pixels, [self._fixed(points)], color, lineType=cv2.LINE_AA, shift=SHIFT)

    def fill_circle(self, cx, cy, radius, color):
        center = (round(cx * SUBPIXEL), round(cy * SUBPIXEL))
        cv2.circle(
            self.pixels, center, max(1, round(radius * SUBPIXEL)), color,
            thickness=-1, lineType=cv2.LINE_AA, shift=SHIFT,
        )

    def fill_text(self, x, y, text, face, color, anchor="la", angle=0.0):
        """
        Draw text with its anchor at (x, y), rotated by angle radians
        (clockwise on screen, as a canvas rotate would).
        """
        if not text:
            return

        scratch = ImageDraw.Draw(Image.new("L", (1, 1)))
        left, top, right, bottom = scratch.textbbox(
            (0, 0), text, font=face.font, anchor=anchor, spacing=0, stroke_width=face.synthetic_bold,
        )
        reach = max(math.hypot(cx, cy) for cx in (left, right) for cy in (top, bottom))
        radius = int(math.ceil(reach)) + 2

        # Patch is centred on the anchor so rotation needs no re-positioning.
        frac_x = x - math.floor(x)
        frac_y = y - math.floor(y)
        patch = Image.new("L", (2 * radius + 1, 2 * radius + 1), 0)
        ImageDraw.Draw(patch).text(
            (radius + frac_x, radius + frac_y), text, fill=255, font=face.font, anchor=anchor,
            spacing=0, stroke_width=face.synthetic_bold, stroke_fill=255,
        )
        if angle:
            patch = patch.rotate(
                -math.degrees(angle), resample=Image.BICUBIC,
                center=(radius + frac_x, radius + frac_y),
            )

        self._blend(np.asarray(patch, dtype=np.float32) / 255.0,
                    int(math.floor(x)) - radius, int(math.floor(y)) - radius, color)

    def _blend(self, alpha, ox, oy, color):
        h, w = alpha.shape
        x0, y0 = max(0, ox), max(0, oy)
        x1, y1 = min(self.width, ox + w), min(self.height, oy + h)
        if x0 >= x1 or y0 >= y1:
            return
        a = alpha[y0 - oy:y1 - oy, x0 - ox:x1 - ox, None]
        region = self.pixels[y0:y1, x0:x1].astype(np.float32)
        blended = region * (1.0 - a) + np.array(color, dtype=np.float32) * a
        self.pixels[y0:y1, x0:x1] = np.clip(np.rint(blended), 0, 255).astype(np.uint8)


def resolve_color(color, kind):
    """CSS color string to an RGB tuple; falls back to the kind's default."""
    try:
        return ImageColor.getrgb(color)[:3]
    except (ValueError, TypeError, AttributeError):
        get_tracer().event(f"Invalid {kind.value} color {color!r}, using default", level="WARN")
        return ImageColor.getrgb(DEFAULT_COLORS[kind])[:3]


def _pairs(dc, points):
    return [dc.point(points[i], points[i + 1]) for i in range(0, len(points) - 1, 2)]


def _arrowhead(tip_x, tip_y, angle, length, half_width, direction=-1):
    """Triangle with its tip at the endpoint and its base `length` back along the shaft."""
    base_x = tip_x + direction * length * math.cos(angle)
    base_y = tip_y + direction * length * math.sin(angle)
    left = (base_x + half_width * math.cos(angle - math.pi / 2),
            base_y + half_width * math.sin(angle - math.pi / 2))
    right = (base_x + half_width * math.cos(angle + math.pi / 2),
             base_y + half_width * math.sin(angle + math.pi / 2))
    return [(tip_x, tip_y), left, right]


def draw_rect(dc, canvas, rect):
    x, y = dc.point(rect.x, rect.y)
    width, height = dc.sx(rect.width), dc.sy(rect.height)
    canvas.stroke_rect(x, y, width, height, resolve_color(rect.color, ShapeKind.RECT), dc.sw(rect.stroke_width))


def draw_line(dc, canvas, line):
    points = _pairs(dc, line.points)
    if len(points) < 2:
        return
    canvas.stroke_polyline(points, resolve_color(line.color, ShapeKind.LINE), dc.sw(line.stroke_width))


def draw_arrow(dc, canvas, arrow):
    """Shaft trimmed by the pointer length, filled head at the true endpoint."""
    points = _pairs(dc, arrow.points)
    if len(points) < 2:
        return

    color = resolve_color(arrow.color, ShapeKind.ARROW)
    (from_x, from_y), (to_x, to_y) = points[-2], points[-1]
    angle = math.atan2(to_y - from_y, to_x - from_x)

    pointer_length = ARROW_POINTER_SIZE * dc.size_scale
    pointer_width = ARROW_POINTER_SIZE * dc.size_scale

    trim = (to_x - pointer_length * math.cos(angle), to_y - pointer_length * math.sin(angle))
    canvas.stroke_polyline(points[:-1] + [trim], color, dc.sw(arrow.stroke_width))
    canvas.fill_polygon(_arrowhead(to_x, to_y, angle, pointer_length, pointer_width), color)


def draw_text(dc, canvas, text):
    x, y = dc.point(text.x, text.y)
    face = dc.measurer.get_font(dc.fs(text.font_size), NORMAL)
    canvas.fill_text(x, y, text.text, face, resolve_color(text.color, ShapeKind.TEXT), anchor="la")


def upright_angle(angle):
    """Rotate text a half turn when the segment points leftwards."""
    if angle > math.pi / 2 or angle < -math.pi / 2:
        return angle + math.pi
    return angle


def draw_dimension(dc, canvas, dim):
    """
    Measurement line with arrowheads and end caps, plus its label.

    The label position comes from the dimension layout engine, run in canvas
    pixels against the canvas bounds.
    """
    points = _pairs(dc, dim.points)
    if len(points) < 2:
        return

    color = resolve_color(dim.color, ShapeKind.DIMENSION)
    (x1, y1), (x2, y2) = points[0], points[1]
    line_width = dc.sw(dim.stroke_width)
    angle = math.atan2(y2 - y1, x2 - x1)

    pointer_length = clamp(line_width * 3, 10 * dc.size_scale, 28 * dc.size_scale)
    pointer_width = clamp(line_width * 2, 6 * dc.size_scale, 20 * dc.size_scale)

    cos_a, sin_a = math.cos(angle), math.sin(angle)
    trim1 = (x1 + pointer_length * cos_a, y1 + pointer_length * sin_a)
    trim2 = (x2 - pointer_length * cos_a, y2 - pointer_length * sin_a)
    canvas.stroke_polyline([trim1, trim2], color, line_width)

    canvas.fill_polygon(_arrowhead(x1, y1, angle, pointer_length, pointer_width, direction=1), color)
    canvas.fill_polygon(_arrowhead(x2, y2, angle, pointer_length, pointer_width), color)

    cap_radius = max(3.0, line_width * 0.6)
    canvas.fill_circle(x1, y1, cap_radius, color)
    canvas.fill_circle(x2, y2, cap_radius, color)

    label = dim.label_text.replace("\n", " ")
    if not label:
        return

    font_px = dc.fs(dim.font_size)
    comment = (dim.comment or "").replace("\n", " ").strip()
    layout = compute_dimension_layout(
        (x1, y1), (x2, y2),
        stroke_width=line_width,
        font_size=font_px,
        label_text=label,
        comment_text=comment,
        stage_bounds=(dc.canvas_width, dc.canvas_height),
        preferred_side_sign=1,
        font_style=BOLD,
        measurer=dc.measurer,
        config=dc.layout_config,
    )

    text_angle = upright_angle(angle)
    label_x, label_y = layout.label_center
    canvas.fill_text(label_x, label_y, label, dc.measurer.get_font(font_px, BOLD), color,
                     anchor="mm", angle=text_angle)

    if comment:
        comment_x, comment_y = layout.comment_center
        canvas.fill_text(comment_x, comment_y, comment, dc.measurer.get_font(font_px - 2, NORMAL), color,
                         anchor="mm", angle=text_angle)


SHAPE_DRAWERS = {
    ShapeKind.RECT: draw_rect,
    ShapeKind.LINE: draw_line,
    ShapeKind.ARROW: draw_arrow,
    ShapeKind.DIMENSION: draw_dimension,
    ShapeKind.TEXT: draw_text,
}

_undrawable = set(ShapeKind) - set(SHAPE_DRAWERS)
if _undrawable:
    raise RuntimeError(f"No drawer registered for: {sorted(k.value for k in _undrawable)}")


def draw_annotations(dc, canvas, data):
    """Composite every shape in render order."""
    for kind, shape in data.shapes():
        try:
            SHAPE_DRAWERS[kind](dc, canvas, shape)
        except AnnotationRenderError:
            raise
        except (cv2.error, ValueError, TypeError, OverflowError) as e:
            raise AnnotationRenderError(f"Failed to draw {kind.value} {shape.id or ''}: {e}".strip()) from e


def _render(image_bytes, data, options, measurer, config):
    max_edge, quality = options.resolve(config.render)

    try:
        array, info = decode_upright(image_bytes)
        natural_width = data.image_natural_width or info["width"]
        natural_height = data.image_natural_height or info["height"]

        width, height = compute_target_size(info["width"], info["height"], max_edge)
        canvas = Canvas(resize_to(array, width, height))
        del array

        dc = create_draw_context(width, height, data, natural_width, natural_height, measurer, config)
        draw_annotations(dc, canvas, data)
        buffer = encode_jpeg(canvas.pixels, quality)
    except AnnotationRenderError:
        raise
    except Exception as e:
        # Font, allocation and codec failures stay scoped to this photo
        raise AnnotationRenderError(f"Annotation rendering failed: {type(e).__name__}: {e}") from e

    return ExportBuffer(buffer=buffer, has_annotations=True, width=width, height=height)


@trace(label="render_annotated_image")
def render_annotated_image(image_bytes, data, options=None, measurer=None, config=None):
    """
    Render parsed annotations onto an image and return JPEG bytes.

    Images without drawable shapes go through the clean path.
    """
    config = config or get_default_config()
    options = options or RenderOptions()
    if not has_drawable_annotations(data):
        return render_clean_image(image_bytes, options, config.render).buffer
    return _render(image_bytes, data, options, measurer, config).buffer


def prepare_annotations(raw, config=None):
    """
    Parse a stored payload and migrate legacy geometry.

    Raises AnnotationRenderError for a payload that still holds stage pixels
    after migration.
    """
    config = config or get_default_config()
    data = parse_annotation_data(raw, max_passes=config.export.max_decode_passes)
    if not has_drawable_annotations(data):
        return data
    if data.is_legacy:
        data = migrate_legacy_annotations(data)
        if data.is_legacy:
            raise AnnotationRenderError("Legacy annotations are missing dimensions and cannot be migrated")
    return data


@trace(label="get_annotated_export_buffer")
def get_annotated_export_buffer(image_bytes, raw, options=None, measurer=None, config=None):
    """
    Single entry point for annotated photo exports.

    Returns an ExportBuffer. Any failure to parse, decode or draw raises
    AnnotationRenderError; there is no silent clean fallback here.
    """
    config = config or get_default_config()
    options = options or RenderOptions()

    data = prepare_annotations(raw, config)
    if not has_drawable_annotations(data):
        return render_clean_image(image_bytes, options, config.render)

    try:
        return _render(image_bytes, data, options, measurer, config)
    except AnnotationRenderError as e:
        get_tracer().event(f"Annotation render failed: {e}", level="ERROR")
        raise


def report_options(compact=False, config=None):
    """Render options for images embedded in the PDF report."""
    render_config = (config or get_default_config()).render
    if compact:
        return RenderOptions(mode=RenderMode.PDF, max_edge=render_config.compact_max_edge,
                             quality=render_config.compact_quality)
    return RenderOptions(mode=RenderMode.PDF, max_edge=render_config.report_max_edge,
                         quality=render_config.report_quality)


def render_clean_image_for_pdf(image_bytes, compact=False, config=None):
    """Clean JPEG at the report size."""
    config = config or get_default_config()
    return render_clean_image(image_bytes, report_options(compact, config), config.render).buffer


def render_annotated_image_for_pdf(image_bytes, raw, compact=False, measurer=None, config=None):
    """Annotated JPEG at the report size; clean when there is nothing to draw."""
    config = config or get_default_config()
    return get_annotated_export_buffer(
        image_bytes, raw, report_options(compact, config), measurer, config,
    ).buffer
