"""
Export file naming.

Exported photos are named from a location-type prefix, a per-location
sequence number and the project/area names, e.g. INT_001_Acme_Depot_Lobby.jpg.
"""

import os
import re


LOCATION_PREFIXES = {
    "interior": "INT",
    "exterior": "EXT",
    "vehicle": "VEH",
}
DEFAULT_PREFIX = "LOC"


def sanitize_filename(text, max_length=100):
    """Keep letters, digits, '_', '-', '.' and whitespace; whitespace runs become '_'."""
    cleaned = re.sub(r"[^a-zA-Z0-9_\-.\s]", "", text or "")
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = re.sub(r"_+", "_", cleaned)
    return cleaned[:max_length]


def location_prefix(location_type):
    return LOCATION_PREFIXES.get((location_type or "").strip().lower(), DEFAULT_PREFIX)


def compute_seq_map_per_loc(photos):
    """
    Map photo id -> 1-based sequence number within its location type.

    Photos without a location type share one counter.
    """
    seq_map = {}
    counters = {}
    for photo in photos:
        loc = (photo.location_type or "unknown").lower()
        counters[loc] = counters.get(loc, 0) + 1
        seq_map[photo.id] = counters[loc]
    return seq_map


def build_photo_export_name(location_type, seq, client_name, site_name, area_name, extension="jpg"):
    parts = [location_prefix(location_type), f"{seq:03d}"]
    for name in (client_name, site_name, area_name):
        cleaned = sanitize_filename(name, max_length=40).strip("_")
        if cleaned:
            parts.append(cleaned)
    return "_".join(parts) + f".{extension}"


def ensure_unique_filename(filename, existing_names):
    """
    Return filename, or filename with a _02, _03, ... suffix before the
    extension if it is already taken. The chosen name is added to existing_names.
    """
    if filename not in existing_names:
        existing_names.add(filename)
        return filename

    base, ext = os.path.splitext(filename)
    counter = 2
    candidate = f"{base}_{counter:02d}{ext}"
    while candidate in existing_names:
        counter += 1
        candidate = f"{base}_{counter:02d}{ext}"

    existing_names.add(candidate)
    return candidate
