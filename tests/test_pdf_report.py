"""Tests for the PDF photo report."""

import os

import fitz
import pytest

from conftest import data_url
from fieldmark.export.pdf_report import PageGeometry, build_cover_page, build_photo_page, run_pdf_export
from fieldmark.export.sources import LocalArtifactStore, PhotoProvider, SourceUrlPhotoProvider
from fieldmark.models import ExportOptions, ExportStatus, PhotoRecord, ProjectInfo
from fieldmark.render.extract import extract_annotation_summary

try:
    import cairosvg  # noqa: F401
    HAS_CAIRO = True
except (ImportError, OSError):
    HAS_CAIRO = False

requires_cairo = pytest.mark.skipif(not HAS_CAIRO, reason="cairosvg / libcairo not available")

PROJECT = ProjectInfo(client_name="Acme Corp", site_name="Main Depot")


def _photo(photo_id, image_bytes, annotations=None, **fields):
    fields.setdefault("filename", f"IMG_{photo_id}.jpg")
    return PhotoRecord(id=photo_id, source_url=data_url(image_bytes), annotation_data=annotations, **fields)


class TestPageLayout:
    """Tests for page SVG construction."""

    def test_photo_page_content(self, photo_jpeg, sample_annotations, export_config):
        photo = _photo(1, photo_jpeg, sample_annotations, area_name="Lobby", notes="Check the seal",
                       geo_lat=40.7128, geo_lng=-74.006)
        summary = extract_annotation_summary(sample_annotations)
        geometry = PageGeometry(export_config.pdf)

        svg = build_photo_page(photo, "INT_001.jpg", photo_jpeg, summary, PROJECT, geometry, 2, 3).tostring()

        assert "INT_001.jpg" in svg
        assert "Area: Lobby" in svg
        assert "data:image/jpeg;base64," in svg
        assert "40.7128, -74.0060" in svg
        assert "Check the seal" in svg
        assert "A: 12 in (approx)" in svg
        assert "Page 2 of 3" in svg

    def test_missing_image_placeholder(self, export_config):
        photo = PhotoRecord(id=1, filename="x.jpg")
        summary = extract_annotation_summary(None)

        svg = build_photo_page(photo, "x.jpg", None, summary, PROJECT, PageGeometry(export_config.pdf), 2, 2)

        svg_text = svg.tostring()
        assert "Image unavailable" in svg_text
        assert "None captured" in svg_text

    def test_cover_page(self, export_config):
        svg = build_cover_page(PROJECT, 4, 2, PageGeometry(export_config.pdf), 5).tostring()

        assert "Photo Report" in svg
        assert "Photos: 4" in svg
        assert "Annotated: 2" in svg
        assert "Acme Corp - Main Depot" in svg

    def test_letter_geometry(self, export_config):
        geometry = PageGeometry(export_config.pdf)

        assert (geometry.width, geometry.height) == (612, 792)
        assert geometry.content_width == 540


@requires_cairo
class TestRunPdfExport:
    """End-to-end PDF export tests."""

    def _run(self, photos, config, measurer, options=None):
        return run_pdf_export(
            "pdfjob", photos, PROJECT, options or ExportOptions(), SourceUrlPhotoProvider(),
            LocalArtifactStore(config.export.output_dir), config=config, measurer=measurer,
        )

    def test_cover_plus_one_page_per_photo(self, photo_jpeg, sample_annotations, export_config, measurer):
        record = self._run([_photo(1, photo_jpeg, sample_annotations), _photo(2, photo_jpeg)],
                           export_config, measurer)

        assert record.status == ExportStatus.READY
        assert record.kind == "pdf"
        assert record.file_url.endswith(".pdf")
        with fitz.open(record.file_url) as doc:
            assert doc.page_count == 3
        assert os.listdir(export_config.export.temp_base) == []

    def test_render_failure_keeps_page(self, photo_jpeg, sample_annotations, export_config, measurer):
        """Test that an undecodable photo still gets a page and a recorded failure."""
        record = self._run([_photo(1, b"garbage", sample_annotations)], export_config, measurer)

        assert record.status == ExportStatus.READY
        assert len(record.failures) == 1
        with fitz.open(record.file_url) as doc:
            assert doc.page_count == 2

    def test_fetch_failure_is_fatal(self, export_config, measurer):
        record = self._run([PhotoRecord(id=1, filename="x.jpg")], export_config, measurer)

        assert record.status == ExportStatus.ERROR
        assert os.listdir(export_config.export.temp_base) == []

    def test_unexpected_error_marks_job_failed(self, export_config, measurer):
        class BrokenProvider(PhotoProvider):
            def load(self, photo):
                raise KeyError("bucket")

        record = run_pdf_export(
            "pdfjob", [PhotoRecord(id=1, filename="x.jpg")], PROJECT, ExportOptions(), BrokenProvider(),
            LocalArtifactStore(export_config.export.output_dir), config=export_config, measurer=measurer,
        )

        assert record.status == ExportStatus.ERROR
        assert record.error_message.startswith("Unexpected error: KeyError")
        assert record.completed_at is not None
        assert os.listdir(export_config.export.temp_base) == []
