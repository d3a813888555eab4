"""
PDF photo report.

One US Letter page per photo, plus a cover page. Each page is laid out as an
SVG with svgwrite, converted to a one-page PDF with cairosvg inside the job's
temp directory, and the pages are concatenated with PyMuPDF. Photos are
processed sequentially like the ZIP export.
"""

import base64
import io
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

import fitz  # PyMuPDF
import svgwrite
from PIL import Image

from fieldmark.config import get_default_config
from fieldmark.errors import AnnotationParseError, AnnotationRenderError, ExportError, FieldmarkError
from fieldmark.export.manifest import format_sided
from fieldmark.export.naming import build_photo_export_name, compute_seq_map_per_loc
from fieldmark.export.zip_export import archive_filename, job_temp_dir, remove_local_artifact
from fieldmark.models import ExportRecord, ExportStatus, RenderFailure
from fieldmark.render.annotation_renderer import render_annotated_image_for_pdf, render_clean_image_for_pdf
from fieldmark.render.extract import extract_annotation_summary
from fieldmark.tracer import get_tracer, trace


POINTS_PER_INCH = 72
FONT_FAMILY = "Inter, Arial, sans-serif"
TEXT_COLOR = "#1F2937"
MUTED_COLOR = "#6B7280"
ACCENT_COLOR = "#14B8A6"
MAX_DIMENSION_ROWS = 8
MAX_NOTE_ROWS = 5
MAX_NOTES_LENGTH = 120


@dataclass
class PdfResult:
    pdf_path: str
    photo_count: int
    page_count: int
    failures: List[RenderFailure] = field(default_factory=list)


class PageGeometry:
    """Page and margin sizes in points."""

    def __init__(self, pdf_config):
        self.width = pdf_config.page_width_inches * POINTS_PER_INCH
        self.height = pdf_config.page_height_inches * POINTS_PER_INCH
        self.margin = pdf_config.margin_inches * POINTS_PER_INCH
        self.content_width = self.width - 2 * self.margin


def _truncate(text, limit):
    text = text or ""
    return text if len(text) <= limit else text[:limit - 3] + "..."


def _new_page(geometry):
    dwg = svgwrite.Drawing(size=(f"{geometry.width}pt", f"{geometry.height}pt"))
    dwg.viewbox(0, 0, geometry.width, geometry.height)
    dwg.add(dwg.rect(insert=(0, 0), size=(geometry.width, geometry.height), fill="white"))
    return dwg


def _text(dwg, content, x, y, size=9, bold=False, color=TEXT_COLOR, anchor="start"):
    dwg.add(dwg.text(
        content,
        insert=(x, y),
        font_size=size,
        font_family=FONT_FAMILY,
        font_weight="bold" if bold else "normal",
        fill=color,
        text_anchor=anchor,
    ))


def _footer(dwg, geometry, project, page_number, page_count):
    y = geometry.height - geometry.margin / 2
    _text(dwg, project.display_name, geometry.margin, y, size=7, color=MUTED_COLOR)
    _text(dwg, f"Page {page_number} of {page_count}", geometry.width - geometry.margin, y,
          size=7, color=MUTED_COLOR, anchor="end")


def build_cover_page(project, photo_count, annotated_count, geometry, page_count):
    dwg = _new_page(geometry)
    x = geometry.margin
    y = geometry.margin + 60
    _text(dwg, "Photo Report", x, y, size=24, bold=True)
    _text(dwg, project.display_name, x, y + 30, size=14, color=ACCENT_COLOR)
    _text(dwg, f"Photos: {photo_count}", x, y + 60, size=11)
    _text(dwg, f"Annotated: {annotated_count}", x, y + 76, size=11)
    _text(dwg, f"Generated: {datetime.now():%Y-%m-%d %H:%M}", x, y + 92, size=11, color=MUTED_COLOR)
    _footer(dwg, geometry, project, 1, page_count)
    return dwg


def _fit(width, height, box_width, box_height):
    scale = min(box_width / width, box_height / height)
    return width * scale, height * scale


def build_photo_page(photo, export_name, image_buffer, summary, project, geometry, page_number, page_count):
    """
    Lay out one photo page: header, image, properties, counts and callouts.

    image_buffer may be None when the photo could not be decoded at all.
    """
    dwg = _new_page(geometry)
    x = geometry.margin
    y = geometry.margin + 10

    _text(dwg, f"Area: {photo.area_name or 'Unassigned'}", x, y, size=9, color=MUTED_COLOR)
    _text(dwg, export_name, x, y + 16, size=11, bold=True)
    y += 30

    box_width = geometry.content_width * 0.58
    box_height = 260
    if image_buffer is not None:
        with Image.open(io.BytesIO(image_buffer)) as image:
            width, height = image.size
        draw_width, draw_height = _fit(width, height, box_width, box_height)
        href = "data:image/jpeg;base64," + base64.b64encode(image_buffer).decode("ascii")
        dwg.add(dwg.image(
            href,
            insert=(x + (box_width - draw_width) / 2, y),
            size=(draw_width, draw_height),
        ))
    else:
        _text(dwg, "Image unavailable", x + box_width / 2, y + 100, color="#DC2626", anchor="middle")

    props_x = x + box_width + 12
    props_width = geometry.content_width - box_width - 12
    dwg.add(dwg.rect(insert=(props_x, y), size=(props_width, box_height), fill="#F9FAFB", stroke="#E5E7EB"))

    row_y = y + 16
    _text(dwg, "Photo Properties", props_x + 8, row_y, bold=True, color=ACCENT_COLOR)
    gps = "-"
    if photo.geo_lat is not None and photo.geo_lng is not None:
        gps = f"{photo.geo_lat:.4f}, {photo.geo_lng:.4f}"
    properties = [
        ("Location:", photo.location_type or "-"),
        ("Illumination:", photo.illuminated or "-"),
        ("Sided:", format_sided(photo.sided)),
        ("GPS:", gps),
        ("Captured:", photo.timestamp.strftime("%Y-%m-%d") if photo.timestamp else "-"),
    ]
    for label, value in properties:
        row_y += 13
        _text(dwg, label, props_x + 8, row_y, size=8, color=MUTED_COLOR)
        _text(dwg, _truncate(value, 28), props_x + 80, row_y, size=8)

    row_y += 22
    _text(dwg, "Annotation Counts", props_x + 8, row_y, bold=True, color=ACCENT_COLOR)
    counts = summary.counts
    count_rows = [
        ("Rectangles:", counts.get("rects", 0)),
        ("Arrows:", counts.get("arrows", 0)),
        ("Lines:", counts.get("lines", 0)),
        ("Text Notes:", counts.get("texts", 0)),
        ("Dimensions:", counts.get("dimensions", 0)),
        ("Total:", sum(counts.values())),
    ]
    for label, value in count_rows:
        row_y += 12
        bold = label == "Total:"
        _text(dwg, label, props_x + 14, row_y, size=8, bold=bold)
        _text(dwg, str(value), props_x + 84, row_y, size=8, bold=bold)

    y += box_height + 24
    _text(dwg, "Photo Notes", x, y, size=9, bold=True, color=ACCENT_COLOR)
    y += 14
    if photo.notes:
        _text(dwg, _truncate(photo.notes.replace("\n", " "), MAX_NOTES_LENGTH), x, y, size=8)
    else:
        _text(dwg, "None captured", x, y, size=8, color="#9CA3AF")

    y += 24
    column_width = (geometry.content_width - 16) / 2
    _text(dwg, "Key Dimensions", x, y, size=9, bold=True, color=ACCENT_COLOR)
    _text(dwg, "Key Notes", x + column_width + 16, y, size=9, bold=True, color=ACCENT_COLOR)

    dim_y = y
    for dim in summary.dimensions[:MAX_DIMENSION_ROWS]:
        dim_y += 13
        line = f"{dim.callout_id}: {dim.display_value}"
        if dim.comment:
            line += f" ({dim.comment})"
        _text(dwg, _truncate(line, 48), x, dim_y, size=8)
    if not summary.dimensions:
        _text(dwg, "None", x, dim_y + 13, size=8, color="#9CA3AF")

    note_y = y
    for note in summary.notes[:MAX_NOTE_ROWS]:
        note_y += 13
        _text(dwg, _truncate(f"{note.callout_id}: {note.text}", 48), x + column_width + 16, note_y, size=8)
    if not summary.notes:
        _text(dwg, "None", x + column_width + 16, note_y + 13, size=8, color="#9CA3AF")

    _footer(dwg, geometry, project, page_number, page_count)
    return dwg


def svg_to_pdf(dwg, svg_path, pdf_path):
    """Write the page SVG to disk and convert it to a one-page PDF."""
    try:
        import cairosvg
    except (ImportError, OSError) as e:
        raise ExportError(f"cairosvg not available: {e}") from e

    dwg.saveas(svg_path)
    try:
        cairosvg.svg2pdf(url=svg_path, write_to=pdf_path)
    except (OSError, ValueError) as e:
        raise ExportError(f"PDF page conversion failed: {e}") from e


def merge_pdfs(page_paths, out_path):
    """Concatenate single-page PDFs into one document."""
    merged = fitz.open()
    try:
        for path in page_paths:
            with fitz.open(path) as page_doc:
                merged.insert_pdf(page_doc)
        merged.save(out_path, garbage=3, deflate=True)
    except (RuntimeError, ValueError) as e:
        raise ExportError(f"PDF assembly failed: {e}") from e
    finally:
        merged.close()


def _render_for_report(photo, payload, include_annotations, compact, measurer, config):
    """Returns (image_buffer or None, summary, failure or None)."""
    failure = None
    try:
        summary = extract_annotation_summary(payload.annotation_data)
    except AnnotationParseError:
        summary = extract_annotation_summary(None)

    if include_annotations:
        try:
            buffer = render_annotated_image_for_pdf(
                payload.image_bytes, payload.annotation_data, compact, measurer, config,
            )
            return buffer, summary, None
        except AnnotationRenderError as e:
            get_tracer().event(f"Annotation render failed for photo {photo.id}: {e}", level="ERROR")
            failure = RenderFailure(photo_id=photo.id, filename=photo.filename, error=str(e))

    try:
        buffer = render_clean_image_for_pdf(payload.image_bytes, compact, config)
    except AnnotationRenderError as e:
        if failure is None:
            failure = RenderFailure(photo_id=photo.id, filename=photo.filename, error=str(e))
        buffer = None
    return buffer, summary, failure


@trace(label="generate_pdf_report")
def generate_pdf_report(job_id, temp_dir, photos, project, options, provider, config=None, measurer=None,
                        on_progress=None):
    """Build temp_dir/report.pdf from the photos, one page each after a cover."""
    config = config or get_default_config()
    tracer = get_tracer()
    geometry = PageGeometry(config.pdf)

    pages_dir = os.path.join(temp_dir, "pages")
    os.makedirs(pages_dir, exist_ok=True)

    total = len(photos)
    page_count = total + 1
    compact = total > config.pdf.compact_threshold
    seq_map = compute_seq_map_per_loc(photos)
    failures = []
    page_paths = []
    annotated = 0

    for i, photo in enumerate(photos):
        seq = seq_map.get(photo.id) or (i + 1)
        export_name = build_photo_export_name(
            photo.location_type, seq, project.client_name, project.site_name, photo.area_name,
        )

        with tracer.span("report_page", module="pdf_report", photo_id=photo.id):
            payload = provider.load(photo)
            buffer, summary, failure = _render_for_report(
                photo, payload, options.include_annotations, compact, measurer, config,
            )
            del payload
            if failure is not None:
                failures.append(failure)
            if sum(summary.counts.values()):
                annotated += 1

            dwg = build_photo_page(photo, export_name, buffer, summary, project, geometry, i + 2, page_count)
            del buffer
            svg_path = os.path.join(pages_dir, f"page_{i + 2:04d}.svg")
            pdf_path = os.path.join(pages_dir, f"page_{i + 2:04d}.pdf")
            svg_to_pdf(dwg, svg_path, pdf_path)
            os.remove(svg_path)
            page_paths.append(pdf_path)

        if on_progress:
            on_progress(i + 1, total)

    cover = build_cover_page(project, total, annotated, geometry, page_count)
    cover_path = os.path.join(pages_dir, "page_0001.pdf")
    svg_to_pdf(cover, os.path.join(pages_dir, "page_0001.svg"), cover_path)

    report_path = os.path.join(temp_dir, "report.pdf")
    merge_pdfs([cover_path] + page_paths, report_path)
    tracer.event(f"Report complete: {page_count} pages, {len(failures)} render failures")

    return PdfResult(pdf_path=report_path, photo_count=total, page_count=page_count, failures=failures)


@trace(label="run_pdf_export")
def run_pdf_export(job_id, photos, project, options, provider, store, config=None,
                   measurer=None, record=None, on_progress=None):
    """Run one PDF report job; same status and cleanup contract as the ZIP export."""
    config = config or get_default_config()
    tracer = get_tracer()
    record = record or ExportRecord(job_id=str(job_id), kind="pdf")
    record.status = ExportStatus.GENERATING

    try:
        with tracer.job(job_id), job_temp_dir(job_id, config) as temp_dir:
            result = generate_pdf_report(
                job_id, temp_dir, photos, project, options, provider,
                config=config, measurer=measurer, on_progress=on_progress,
            )
            filename = archive_filename(project, options.include_annotations, extension="pdf")
            record.file_url = store.upload(job_id, result.pdf_path, filename, "application/pdf")
            remove_local_artifact(result.pdf_path)

            record.photo_count = result.photo_count
            record.failures = result.failures
            record.status = ExportStatus.READY
    except (FieldmarkError, OSError) as e:
        tracer.event(f"PDF export {job_id} failed: {e}", level="ERROR")
        record.status = ExportStatus.ERROR
        record.error_message = str(e) or type(e).__name__
    except Exception as e:
        # Anything else still ends the job in error
        tracer.event(f"PDF export {job_id} crashed: {type(e).__name__}: {e}", level="ERROR")
        record.status = ExportStatus.ERROR
        record.error_message = f"Unexpected error: {type(e).__name__}: {e}"

    record.completed_at = datetime.now().isoformat()
    return record
