"""
ZIP export of a photo collection.

Photos are processed one at a time: fetch, render, write to the job's temp
directory, drop the buffer. The archive is assembled from the files on disk
once every photo has been written, so peak memory stays at roughly one
decoded image whatever the collection size.
"""

import os
import shutil
import time
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from fieldmark.config import get_default_config
from fieldmark.errors import AnnotationRenderError, ExportError, FieldmarkError
from fieldmark.export.manifest import manifest_row, write_manifest, write_render_failures
from fieldmark.export.naming import (
    build_photo_export_name,
    compute_seq_map_per_loc,
    ensure_unique_filename,
    sanitize_filename,
)
from fieldmark.models import ExportRecord, ExportStatus, RenderFailure
from fieldmark.render.annotation_renderer import get_annotated_export_buffer, prepare_annotations
from fieldmark.render.parse import has_drawable_annotations
from fieldmark.tracer import get_tracer, trace


@dataclass
class ZipResult:
    zip_path: str
    photo_count: int
    failures: List[RenderFailure] = field(default_factory=list)


@contextmanager
def job_temp_dir(job_id, config=None):
    """
    Create the per-job temp directory and remove it on every exit path.
    """
    config = config or get_default_config()
    tracer = get_tracer()
    path = os.path.join(config.export.temp_base, str(job_id))
    os.makedirs(path, exist_ok=True)
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
            tracer.event(f"Deleted temp dir {path}", level="DEBUG")
        except FileNotFoundError:
            pass
        except OSError as e:
            tracer.event(f"Failed to delete temp dir {path}: {e}", level="WARN")


def _write_file(path, data):
    try:
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise ExportError(f"Failed to write {os.path.basename(path)}: {e.strerror or e}") from e


def export_photo(photo, provider, options, measurer=None, config=None):
    """
    Produce the final bytes for one photo.

    Returns (buffer, failure). failure is a RenderFailure when annotations
    could not be rendered; buffer is then the untouched source bytes.
    PhotoFetchError propagates.
    """
    payload = provider.load(photo)
    if not options.include_annotations:
        return payload.image_bytes, None

    try:
        data = prepare_annotations(payload.annotation_data, config)
        if not has_drawable_annotations(data):
            return payload.image_bytes, None
        result = get_annotated_export_buffer(payload.image_bytes, data, options.render, measurer, config)
        return result.buffer, None
    except AnnotationRenderError as e:
        get_tracer().event(f"Annotation render failed for photo {photo.id}: {e}", level="ERROR")
        failure = RenderFailure(photo_id=photo.id, filename=photo.filename, error=str(e))
        return payload.image_bytes, failure


@trace(label="generate_streaming_zip")
def generate_streaming_zip(job_id, temp_dir, photos, project, options, provider, config=None,
                           measurer=None, on_progress=None):
    """
    Write every photo to temp_dir/images, then build temp_dir/export.zip.

    Archive layout: images/[<Area>/]<name>, manifest.csv and, only when some
    photo failed to render, render_failures.json.
    """
    config = config or get_default_config()
    tracer = get_tracer()

    images_dir = os.path.join(temp_dir, "images")
    os.makedirs(images_dir, exist_ok=True)

    seq_map = compute_seq_map_per_loc(photos)
    existing_names = set()
    rows = []
    files_to_zip = []
    failures = []
    total = len(photos)

    for i, photo in enumerate(photos):
        seq = seq_map.get(photo.id) or (i + 1)
        export_name = build_photo_export_name(
            photo.location_type, seq, project.client_name, project.site_name, photo.area_name,
        )
        export_name = ensure_unique_filename(export_name, existing_names)

        folder = sanitize_filename(photo.area_name) if options.organize_by_area else ""
        arcname = f"images/{folder}/{export_name}" if folder else f"images/{export_name}"
        disk_path = os.path.join(images_dir, export_name)

        with tracer.span("export_photo", module="zip_export", photo_id=photo.id):
            buffer, failure = export_photo(photo, provider, options, measurer, config)
            _write_file(disk_path, buffer)
            del buffer

        if failure is not None:
            failures.append(failure)
        files_to_zip.append((disk_path, arcname))
        rows.append(manifest_row(photo, export_name, project))

        if on_progress:
            on_progress(i + 1, total)

    try:
        if failures:
            failures_path = os.path.join(temp_dir, "render_failures.json")
            write_render_failures(failures, failures_path)
            files_to_zip.append((failures_path, "render_failures.json"))
            tracer.event(f"{len(failures)} photos had annotation render failures", level="WARN")

        manifest_path = os.path.join(temp_dir, "manifest.csv")
        write_manifest(rows, manifest_path)
        files_to_zip.append((manifest_path, "manifest.csv"))

        zip_path = os.path.join(temp_dir, "export.zip")
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED,
                             compresslevel=config.export.zip_compress_level) as archive:
            for disk_path, arcname in files_to_zip:
                archive.write(disk_path, arcname)
    except (OSError, zipfile.LargeZipFile) as e:
        raise ExportError(f"Archive assembly failed: {e}") from e

    tracer.event(f"Archive complete: {len(files_to_zip)} entries")
    return ZipResult(zip_path=zip_path, photo_count=total, failures=failures)


def archive_filename(project, include_annotations, extension="zip"):
    suffix = "annotated" if include_annotations else "clean"
    stamp = int(time.time() * 1000)
    return (f"{sanitize_filename(project.client_name)}_{sanitize_filename(project.site_name)}"
            f"_{suffix}_{stamp}.{extension}")


def remove_local_artifact(path):
    try:
        os.remove(path)
    except OSError as e:
        get_tracer().event(f"Failed to remove local artifact {path}: {e}", level="WARN")


@trace(label="run_photo_export")
def run_photo_export(job_id, photos, project, options, provider, store, config=None,
                     measurer=None, record=None, on_progress=None):
    """
    Run one ZIP export job to completion.

    Returns the ExportRecord, marked ready with the archive URL or error with
    a message. The job's temp directory is removed either way.
    """
    config = config or get_default_config()
    tracer = get_tracer()
    record = record or ExportRecord(job_id=str(job_id), kind="zip")
    record.status = ExportStatus.GENERATING

    try:
        with tracer.job(job_id), job_temp_dir(job_id, config) as temp_dir:
            result = generate_streaming_zip(
                job_id, temp_dir, photos, project, options, provider,
                config=config, measurer=measurer, on_progress=on_progress,
            )
            filename = archive_filename(project, options.include_annotations)
            record.file_url = store.upload(job_id, result.zip_path, filename, "application/zip")
            remove_local_artifact(result.zip_path)

            record.photo_count = result.photo_count
            record.failures = result.failures
            record.status = ExportStatus.READY
    except (FieldmarkError, OSError) as e:
        tracer.event(f"Export {job_id} failed: {e}", level="ERROR")
        record.status = ExportStatus.ERROR
        record.error_message = str(e) or type(e).__name__
    except Exception as e:
        # Anything else still ends the job in error
        tracer.event(f"Export {job_id} crashed: {type(e).__name__}: {e}", level="ERROR")
        record.status = ExportStatus.ERROR
        record.error_message = f"Unexpected error: {type(e).__name__}: {e}"

    record.completed_at = datetime.now().isoformat()
    return record


@trace(label="cleanup_old_export_dirs")
def cleanup_old_export_dirs(config=None, now=None):
    """
    Remove job directories under the temp base older than max_temp_age_hours.

    Returns the list of removed paths.
    """
    config = config or get_default_config()
    tracer = get_tracer()
    base = config.export.temp_base
    now = time.time() if now is None else now
    max_age = config.export.max_temp_age_hours * 3600

    if not os.path.isdir(base):
        return []

    removed = []
    with os.scandir(base) as entries:
        for entry in entries:
            if not entry.is_dir(follow_symlinks=False):
                continue
            try:
                if now - entry.stat().st_mtime > max_age:
                    shutil.rmtree(entry.path)
                    removed.append(entry.path)
                    tracer.event(f"Removed old export dir {entry.path}")
            except OSError as e:
                tracer.event(f"Failed to remove {entry.path}: {e}", level="WARN")

    return removed
