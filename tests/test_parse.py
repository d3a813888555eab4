"""Tests for stored annotation payload parsing."""

import json

import pytest

from fieldmark.errors import AnnotationParseError, AnnotationRenderError
from fieldmark.models import AnnotationData
from fieldmark.render.parse import get_annotation_counts, has_drawable_annotations, parse_annotation_data


class TestParseAnnotationData:
    """Tests for parse_annotation_data."""

    def test_object_payload(self, sample_annotations):
        data = parse_annotation_data(sample_annotations)

        assert isinstance(data, AnnotationData)
        assert data.shape_count == 5
        assert data.dimensions[0].label_text == "12 in"

    def test_json_string(self, sample_annotations):
        data = parse_annotation_data(json.dumps(sample_annotations))

        assert data.rects[0].stroke_width == 4

    def test_double_encoded(self, sample_annotations):
        """Test that a payload JSON-encoded twice upstream still parses."""
        raw = json.dumps(json.dumps(sample_annotations))

        assert parse_annotation_data(raw).shape_count == 5

    def test_triple_encoded(self, sample_annotations):
        raw = json.dumps(json.dumps(json.dumps(sample_annotations)))

        assert parse_annotation_data(raw).shape_count == 5

    def test_too_many_layers_rejected(self, sample_annotations):
        raw = json.dumps(json.dumps(json.dumps(json.dumps(sample_annotations))))

        with pytest.raises(AnnotationParseError):
            parse_annotation_data(raw)

    def test_bytes_payload(self, sample_annotations):
        assert parse_annotation_data(json.dumps(sample_annotations).encode("utf-8")).shape_count == 5

    def test_parsed_payload_passthrough(self, sample_annotations):
        data = AnnotationData.model_validate(sample_annotations)

        assert parse_annotation_data(data) is data

    @pytest.mark.parametrize("raw", [None, "", "   ", {}, "{}", "null"])
    def test_empty_payloads(self, raw):
        assert parse_annotation_data(raw) is None

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", "42", '"just text"'])
    def test_malformed_payloads(self, raw):
        with pytest.raises(AnnotationParseError):
            parse_annotation_data(raw)

    def test_invalid_shape_rejected(self):
        with pytest.raises(AnnotationParseError):
            parse_annotation_data({"rects": [{"x": "left", "y": 0, "width": 1, "height": 1}]})

    def test_parse_error_is_render_error(self):
        """Test that parse failures are handled like other per-photo render failures."""
        with pytest.raises(AnnotationRenderError):
            parse_annotation_data("{bad")

    def test_null_shape_lists(self):
        data = parse_annotation_data({"rects": None, "texts": [{"x": 0.1, "y": 0.1, "text": "a"}]})

        assert data.rects == []
        assert data.shape_count == 1

    def test_unknown_keys_ignored(self):
        data = parse_annotation_data({"rects": [], "selectedId": "x", "zoom": 2})

        assert data.shape_count == 0


class TestCounts:
    """Tests for drawability and counts."""

    def test_has_drawable(self, sample_annotations):
        assert has_drawable_annotations(parse_annotation_data(sample_annotations))
        assert not has_drawable_annotations(parse_annotation_data({"rects": []}))
        assert not has_drawable_annotations(None)

    def test_counts_with_total(self, sample_annotations):
        counts = get_annotation_counts(json.dumps(sample_annotations))

        assert counts == {"rects": 1, "arrows": 1, "lines": 1, "texts": 1, "dimensions": 1, "total": 5}

    def test_counts_for_missing_payload(self):
        assert get_annotation_counts(None)["total"] == 0

    def test_wire_round_trip_keeps_camel_case(self, sample_annotations):
        wire = parse_annotation_data(sample_annotations).to_wire()

        assert wire["normalizedVersion"] == 2
        assert wire["imageRenderTransform"]["imageScale"] == 0.4
        assert wire["rects"][0]["strokeWidth"] == 4
