"""Tests for annotation summaries used in reports."""

import pytest

from fieldmark.errors import AnnotationParseError
from fieldmark.render.extract import callout_id, extract_annotation_summary, parse_numeric_value


class TestCalloutId:
    """Tests for callout id letters."""

    @pytest.mark.parametrize("index,expected", [(0, "A"), (1, "B"), (25, "Z"), (26, "AA"), (27, "AB"),
                                                (51, "AZ"), (52, "BA"), (701, "ZZ"), (702, "AAA")])
    def test_letters(self, index, expected):
        assert callout_id(index) == expected


class TestNumericValue:
    """Tests for parse_numeric_value."""

    @pytest.mark.parametrize("value,expected", [("12", 12.0), ("12.5 in", 12.5), ("-3 ft", -3.0),
                                                ("about 40", 40.0), (".5", 0.5)])
    def test_parses(self, value, expected):
        assert parse_numeric_value(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", None, "n/a", "abc"])
    def test_non_numeric(self, value):
        assert parse_numeric_value(value) is None


class TestExtractSummary:
    """Tests for extract_annotation_summary."""

    def test_callouts_in_id_order(self):
        payload = {
            "dimensions": [
                {"id": "d2", "points": [0, 0, 1, 1], "value": "30", "unit": "in"},
                {"id": "d1", "points": [0, 0, 1, 1], "value": "12", "unit": "ft", "comment": "wall"},
            ],
            "texts": [
                {"id": "t9", "x": 0, "y": 0, "text": "second"},
                {"id": "t1", "x": 0, "y": 0, "text": "first"},
            ],
            "normalizedVersion": 2,
        }
        summary = extract_annotation_summary(payload)

        assert [d.callout_id for d in summary.dimensions] == ["A", "B"]
        assert summary.dimensions[0].value == "12"
        assert summary.dimensions[0].comment == "wall"
        assert summary.dimensions[0].numeric_value == 12.0
        assert summary.dimensions_summary == "A: 12 ft; B: 30 in"
        assert [n.text for n in summary.notes] == ["first", "second"]
        assert summary.notes_summary == "Note 1: first; Note 2: second"
        assert summary.dimension_count == 2
        assert summary.note_count == 2

    def test_missing_value_shown_as_na(self):
        summary = extract_annotation_summary({"dimensions": [{"points": [0, 0, 1, 1]}]})

        assert summary.dimensions[0].display_value == "N/A"

    def test_value_without_unit(self):
        summary = extract_annotation_summary({"dimensions": [{"points": [0, 0, 1, 1], "value": "7"}]})

        assert summary.dimensions[0].display_value == "7"

    def test_long_note_truncated(self):
        summary = extract_annotation_summary({"texts": [{"x": 0, "y": 0, "text": "x" * 80}]})

        assert summary.notes_summary == "Note 1: " + "x" * 47 + "..."
        assert summary.notes[0].text == "x" * 80

    def test_summary_capped(self):
        dims = [{"id": f"d{i:02d}", "points": [0, 0, 1, 1], "value": "100", "unit": "mm"} for i in range(40)]

        summary = extract_annotation_summary({"dimensions": dims})

        assert len(summary.dimensions_summary) == 200
        assert summary.dimensions_summary.endswith("...")
        assert summary.dimension_count == 40

    def test_counts(self, sample_annotations):
        summary = extract_annotation_summary(sample_annotations)

        assert summary.counts == {"rects": 1, "arrows": 1, "lines": 1, "texts": 1, "dimensions": 1}

    def test_empty_payload(self):
        summary = extract_annotation_summary(None)

        assert summary.dimensions == []
        assert summary.notes_summary == ""
        assert sum(summary.counts.values()) == 0

    def test_malformed_payload_raises(self):
        with pytest.raises(AnnotationParseError):
            extract_annotation_summary("{nope")
