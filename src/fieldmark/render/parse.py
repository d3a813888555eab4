"""
Ingestion of stored annotation payloads.

Rows may hold the payload as an object, a JSON string, or a JSON string that
was encoded more than once upstream. Decoding unwraps a bounded number of
string layers; anything else is malformed.
"""

import json

from pydantic import ValidationError

from fieldmark.errors import AnnotationParseError
from fieldmark.models import AnnotationData
from fieldmark.tracer import get_tracer


MAX_DECODE_PASSES = 3


def parse_annotation_data(raw, max_passes=MAX_DECODE_PASSES):
    """
    Parse a stored payload into AnnotationData.

    Returns None for a missing or empty payload. Raises AnnotationParseError
    when the payload cannot be decoded to an object or fails validation.
    """
    if raw is None:
        return None
    if isinstance(raw, AnnotationData):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")

    value = raw
    if isinstance(value, str):
        if not value.strip():
            return None
        passes = 0
        while isinstance(value, str) and passes < max_passes:
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise AnnotationParseError(f"Malformed annotation JSON: {e.msg}") from e
            passes += 1
        if passes > 1:
            get_tracer().event(f"Annotation payload was encoded {passes} times", level="DEBUG")

    if value is None:
        return None
    if not isinstance(value, dict):
        raise AnnotationParseError(
            f"Annotation payload decoded to {type(value).__name__}, expected an object"
        )
    if not value:
        return None

    try:
        return AnnotationData.model_validate(value)
    except ValidationError as e:
        raise AnnotationParseError(f"Invalid annotation payload: {e.error_count()} error(s)") from e


def has_drawable_annotations(data):
    """True when a parsed payload has at least one shape."""
    return data is not None and data.shape_count > 0


def get_annotation_counts(raw):
    """Per-kind shape counts plus a total, for a raw or parsed payload."""
    data = parse_annotation_data(raw)
    if data is None:
        counts = {"rects": 0, "arrows": 0, "lines": 0, "texts": 0, "dimensions": 0}
    else:
        counts = data.counts()
    counts["total"] = sum(counts.values())
    return counts
