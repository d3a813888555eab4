"""
Annotation summaries for reports.

Dimensions and text notes get stable callout ids (A, B, ... Z, AA, AB, ...)
assigned in shape-id order, so a report refers to the same callout across
re-exports.
"""

import re
import string
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from fieldmark.render.parse import parse_annotation_data


MAX_SUMMARY_LENGTH = 200
MAX_NOTE_LENGTH = 50

_NUMBER_RE = re.compile(r"-?(\d+\.?\d*|\.\d+)")


class ExtractedDimension(BaseModel):
    callout_id: str
    value: str
    numeric_value: Optional[float] = None
    unit: str = ""
    comment: str = ""

    @property
    def display_value(self):
        if not self.value:
            return "N/A"
        return f"{self.value} {self.unit}" if self.unit else self.value


class ExtractedNote(BaseModel):
    callout_id: str
    text: str


class AnnotationSummary(BaseModel):
    dimensions: List[ExtractedDimension] = Field(default_factory=list)
    notes: List[ExtractedNote] = Field(default_factory=list)
    dimensions_summary: str = ""
    notes_summary: str = ""
    counts: Dict[str, int] = Field(default_factory=dict)

    @property
    def dimension_count(self):
        return len(self.dimensions)

    @property
    def note_count(self):
        return len(self.notes)


def callout_id(index):
    """0 -> 'A', 25 -> 'Z', 26 -> 'AA', 27 -> 'AB', ..."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = string.ascii_uppercase[remainder] + letters
    return letters


def parse_numeric_value(value):
    """Leading number of a value once non-numeric characters are stripped."""
    cleaned = re.sub(r"[^\d.\-]", "", value or "")
    match = _NUMBER_RE.match(cleaned)
    return float(match.group(0)) if match else None


def _cap(summary):
    if len(summary) > MAX_SUMMARY_LENGTH:
        return summary[:MAX_SUMMARY_LENGTH - 3] + "..."
    return summary


def _sort_key(shape):
    return "" if shape.id is None else str(shape.id)


def extract_annotation_summary(raw):
    """
    Build an AnnotationSummary from a raw or parsed payload.

    Unparseable payloads propagate AnnotationParseError; missing payloads give
    an empty summary.
    """
    data = parse_annotation_data(raw)
    if data is None:
        return AnnotationSummary(counts={"rects": 0, "arrows": 0, "lines": 0, "texts": 0, "dimensions": 0})

    dimensions = [
        ExtractedDimension(
            callout_id=callout_id(i),
            value=dim.value,
            numeric_value=parse_numeric_value(dim.value),
            unit=dim.unit,
            comment=dim.comment or "",
        )
        for i, dim in enumerate(sorted(data.dimensions, key=_sort_key))
    ]
    notes = [
        ExtractedNote(callout_id=callout_id(i), text=text.text)
        for i, text in enumerate(sorted(data.texts, key=_sort_key))
    ]

    dimensions_summary = "; ".join(f"{d.callout_id}: {d.display_value}" for d in dimensions)

    note_parts = []
    for i, note in enumerate(notes):
        text = note.text
        if len(text) > MAX_NOTE_LENGTH:
            text = text[:MAX_NOTE_LENGTH - 3] + "..."
        note_parts.append(f"Note {i + 1}: {text}")

    return AnnotationSummary(
        dimensions=dimensions,
        notes=notes,
        dimensions_summary=_cap(dimensions_summary),
        notes_summary=_cap("; ".join(note_parts)),
        counts=data.counts(),
    )
