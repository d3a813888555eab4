"""
Manifest and failure sidecar files written into export archives.
"""

import csv
import json


MANIFEST_HEADER = [
    "Original Filename",
    "Exported Filename",
    "Area",
    "Project",
    "Timestamp",
    "GPS Lat",
    "GPS Lng",
    "Location Type",
    "Illuminated",
    "Sided",
    "Surface Type",
    "Custom Tags",
]


def format_sided(value):
    """Empty or 'NA' sided values are shown as 'N/A'."""
    if not value or value == "NA":
        return "N/A"
    return value


def _coord(value):
    return "" if value is None else repr(float(value))


def manifest_row(photo, exported_filename, project):
    return [
        photo.filename,
        exported_filename,
        photo.area_name,
        project.display_name,
        photo.timestamp.isoformat() if photo.timestamp else "",
        _coord(photo.geo_lat),
        _coord(photo.geo_lng),
        photo.location_type or "",
        photo.illuminated or "",
        format_sided(photo.sided),
        "; ".join(photo.wall_type_tags),
        "; ".join(photo.custom_tags),
    ]


def write_manifest(rows, path):
    """Write header plus rows as CSV with '\\n' line endings."""
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(MANIFEST_HEADER)
        writer.writerows(rows)


def write_render_failures(failures, path):
    data = [failure.model_dump(by_alias=True) for failure in failures]
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
