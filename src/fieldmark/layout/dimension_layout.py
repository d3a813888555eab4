"""
Dimension label placement.

Places a measurement label beside the midpoint of a segment, pushed out along
the segment normal until its padded box clears the segment and stays inside
the stage. The preferred side is tried first; the opposite side is used when
it succeeds or gets closer to a legal placement.
"""

import math

from shapely.geometry import LineString, Point, box

from fieldmark.config import get_default_config
from fieldmark.layout.text_measure import BOLD, NORMAL, get_default_measurer
from fieldmark.models import DimensionLayoutResult
from fieldmark.tracer import get_tracer, trace


DEFAULT_STROKE_WIDTH = 4
DEFAULT_FONT_SIZE = 20


def clamp(value, low, high):
    return max(low, min(high, value))


def arrow_metrics(stroke_width):
    """Return (arrow_length, arrow_width, cap_radius) for a stroke width."""
    return (
        clamp(stroke_width * 3, 10, 28),
        clamp(stroke_width * 2, 6, 20),
        clamp(stroke_width * 1.5, 6, 18),
    )


def segment_intersects_rect(x1, y1, x2, y2, rx, ry, rw, rh):
    """
    Check whether segment (x1,y1)-(x2,y2) touches the axis-aligned rectangle.

    Endpoints inside the rectangle count as intersecting; so does contact with
    any edge.
    """
    rect = box(rx, ry, rx + rw, ry + rh)
    if (x1, y1) == (x2, y2):
        return rect.intersects(Point(x1, y1))
    return rect.intersects(LineString([(x1, y1), (x2, y2)]))


def is_rect_out_of_bounds(rx, ry, rw, rh, bounds_width, bounds_height, tolerance):
    return (
        rx < -tolerance
        or ry < -tolerance
        or rx + rw > bounds_width + tolerance
        or ry + rh > bounds_height + tolerance
    )


class _Placement:
    """Outcome of trying one side of the segment."""

    def __init__(self, success, offset, label_x, label_y, comment_x, comment_y):
        self.success = success
        self.offset = offset
        self.label_x = label_x
        self.label_y = label_y
        self.comment_x = comment_x
        self.comment_y = comment_y


@trace(label="compute_dimension_layout")
def compute_dimension_layout(p1, p2, stroke_width=DEFAULT_STROKE_WIDTH, font_size=DEFAULT_FONT_SIZE,
                             label_text="", comment_text="", stage_bounds=(0, 0),
                             preferred_side_sign=None, font_family=None, font_style=BOLD,
                             measurer=None, config=None):
    """
    Compute label, comment and arrowhead geometry for one dimension.

    p1, p2 are (x, y) in the same pixel space as stage_bounds (width, height).
    Never fails: when neither side is legal the attempt that needed the
    smaller offset is returned.
    """
    config = config or get_default_config().layout
    measurer = measurer or get_default_measurer()
    if preferred_side_sign is None:
        preferred_side_sign = config.default_side_sign
    bounds_width, bounds_height = stage_bounds
    padding = config.bbox_padding

    (x1, y1), (x2, y2) = p1, p2
    dx = x2 - x1
    dy = y2 - y1
    length = max(1e-6, math.hypot(dx, dy))
    ux = dx / length
    uy = dy / length
    mx = (x1 + x2) / 2
    my = (y1 + y2) / 2

    label_width, label_height = measurer.measure(label_text, font_size, font_style, font_family)

    comment_size = font_size - 2
    if comment_text:
        comment_width, comment_height = measurer.measure(comment_text, comment_size, NORMAL, font_family)
    else:
        comment_width, comment_height = 0.0, 0.0

    arrow_length, arrow_width, cap_radius = arrow_metrics(stroke_width)

    comment_gap = max(6, font_size * 0.35)
    block_height = label_height + (comment_gap + comment_height if comment_text else 0)

    base_offset = max(8, stroke_width * 2 + font_size * 0.4) + block_height / 2 + stroke_width / 2 + 4
    push_increment = max(6, stroke_width)

    def check(cx, cy):
        # The padded box is anchored on the label line, not the whole block.
        rx = cx - label_width / 2 - padding
        ry = cy - label_height / 2 - padding
        rw = label_width + padding * 2
        rh = block_height + padding * 2
        intersects = segment_intersects_rect(x1, y1, x2, y2, rx, ry, rw, rh)
        out_of_bounds = is_rect_out_of_bounds(
            rx, ry, rw, rh, bounds_width, bounds_height, config.bounds_tolerance
        )
        return intersects, out_of_bounds

    def placed(success, cx, cy, offset):
        label_x = cx - label_width / 2
        label_y = cy - block_height / 2
        return _Placement(
            success,
            offset,
            label_x=label_x,
            label_y=label_y,
            comment_x=cx - comment_width / 2,
            comment_y=label_y + label_height + comment_gap,
        )

    def try_placement(side_sign):
        nx = -uy * side_sign
        ny = ux * side_sign
        offset = base_offset

        for i in range(config.max_push_iterations):
            cx = mx + nx * offset
            cy = my + ny * offset
            intersects, out_of_bounds = check(cx, cy)

            if not intersects and not out_of_bounds:
                return placed(True, cx, cy, offset)

            if out_of_bounds and i == 0:
                return placed(False, cx, cy, offset)

            offset += push_increment

        cx = mx + nx * offset
        cy = my + ny * offset
        intersects, out_of_bounds = check(cx, cy)
        return placed(not intersects and not out_of_bounds, cx, cy, offset)

    result = try_placement(preferred_side_sign)
    used_side_sign = preferred_side_sign

    if not result.success:
        flipped_sign = -1 if preferred_side_sign == 1 else 1
        flipped = try_placement(flipped_sign)
        if flipped.success or flipped.offset < result.offset:
            result = flipped
            used_side_sign = flipped_sign
        if not result.success:
            get_tracer().event(
                "Dimension label has no legal placement, using best effort",
                level="DEBUG",
                side=used_side_sign,
                offset=result.offset,
            )

    return DimensionLayoutResult(
        label_x=result.label_x,
        label_y=result.label_y,
        label_width=label_width,
        label_height=label_height,
        comment_x=result.comment_x,
        comment_y=result.comment_y,
        comment_width=comment_width,
        comment_height=comment_height,
        arrow_length=arrow_length,
        arrow_width=arrow_width,
        cap_radius=cap_radius,
        used_side_sign=used_side_sign,
    )
