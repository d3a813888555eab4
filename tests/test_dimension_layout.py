"""Tests for dimension label placement."""

import pytest

from fieldmark.config import LayoutConfig
from fieldmark.layout.dimension_layout import (
    arrow_metrics,
    compute_dimension_layout,
    is_rect_out_of_bounds,
    segment_intersects_rect,
)


def _layout(measurer, p1, p2, bounds=(400, 400), **kwargs):
    kwargs.setdefault("label_text", "12 in")
    return compute_dimension_layout(p1, p2, stage_bounds=bounds, measurer=measurer, **kwargs)


class TestGeometryHelpers:
    """Tests for intersection and bounds helpers."""

    def test_segment_through_rect(self):
        assert segment_intersects_rect(0, 50, 100, 50, 40, 40, 20, 20)

    def test_segment_beside_rect(self):
        assert not segment_intersects_rect(0, 0, 100, 0, 40, 40, 20, 20)

    def test_endpoint_inside_rect(self):
        """Test that a segment starting inside the rect counts as intersecting."""
        assert segment_intersects_rect(50, 50, 500, 500, 40, 40, 20, 20)

    def test_degenerate_segment(self):
        assert segment_intersects_rect(45, 45, 45, 45, 40, 40, 20, 20)
        assert not segment_intersects_rect(0, 0, 0, 0, 40, 40, 20, 20)

    def test_touching_edge(self):
        assert segment_intersects_rect(0, 40, 100, 40, 40, 40, 20, 20)

    def test_out_of_bounds_tolerance(self):
        assert not is_rect_out_of_bounds(-5, 0, 10, 10, 100, 100, 10)
        assert is_rect_out_of_bounds(-11, 0, 10, 10, 100, 100, 10)
        assert is_rect_out_of_bounds(0, 95, 10, 20, 100, 100, 10)

    def test_arrow_metrics_clamped(self):
        assert arrow_metrics(4) == (12, 8, 6)
        assert arrow_metrics(1) == (10, 6, 6)
        assert arrow_metrics(20) == (28, 20, 18)


class TestDimensionLayout:
    """Tests for compute_dimension_layout."""

    def test_label_clears_horizontal_segment(self, measurer):
        """Test that the label box never overlaps the measured segment."""
        result = _layout(measurer, (100, 100), (300, 100), stroke_width=4, font_size=20)

        assert result.used_side_sign == 1
        assert result.label_width == pytest.approx(60)
        assert result.label_height == pytest.approx(20)
        assert not segment_intersects_rect(
            100, 100, 300, 100, result.label_x, result.label_y, result.label_width, result.label_height,
        )
        assert result.label_center == pytest.approx((200, 132))

    def test_label_centered_on_midpoint(self, measurer):
        result = _layout(measurer, (50, 200), (350, 200))

        cx, _ = result.label_center
        assert cx == pytest.approx(200)

    def test_flips_near_bottom_edge(self, measurer):
        """Test that the opposite side is used when the preferred side leaves the stage."""
        result = _layout(measurer, (100, 390), (300, 390), preferred_side_sign=1)

        assert result.used_side_sign == -1
        assert result.label_y + result.label_height < 390

    def test_flips_near_top_edge(self, measurer):
        result = _layout(measurer, (100, 5), (300, 5), preferred_side_sign=-1)

        assert result.used_side_sign == 1
        assert result.label_y > 5

    def test_comment_below_label(self, measurer):
        result = _layout(measurer, (100, 100), (300, 100), font_size=20, comment_text="approx")

        assert result.comment_width == pytest.approx(6 * 18 * 0.6)
        assert result.comment_height == pytest.approx(18)
        assert result.comment_y == pytest.approx(result.label_y + result.label_height + 7)
        assert result.comment_center[0] == pytest.approx(result.label_center[0])

    def test_no_comment_has_zero_size(self, measurer):
        result = _layout(measurer, (100, 100), (300, 100))

        assert result.comment_width == 0
        assert result.comment_height == 0

    def test_vertical_segment(self, measurer):
        """Test that the normal of a downward segment points left for side +1."""
        result = _layout(measurer, (200, 100), (200, 300))

        assert result.used_side_sign == 1
        assert result.label_x + result.label_width < 200

    def test_no_legal_side_still_returns(self, measurer):
        """Test that an impossible layout returns a best effort instead of raising."""
        result = _layout(measurer, (10, 25), (40, 25), bounds=(50, 50), label_text="a very long label")

        assert result.used_side_sign == 1
        assert result.arrow_length == 12
        assert result.label_center == pytest.approx((25, 57))
        assert not segment_intersects_rect(
            10, 25, 40, 25, result.label_x, result.label_y, result.label_width, result.label_height,
        )

    def test_config_default_side(self, measurer):
        result = _layout(measurer, (100, 200), (300, 200), config=LayoutConfig(default_side_sign=-1))

        assert result.used_side_sign == -1
        assert result.label_center[1] < 200

    def test_deterministic(self, measurer):
        first = _layout(measurer, (12.5, 80), (233.25, 171), comment_text="note")
        second = _layout(measurer, (12.5, 80), (233.25, 171), comment_text="note")

        assert first == second
