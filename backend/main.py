"""
fieldmark: FastAPI backend

HTTP surface over the render and export library.

Endpoints:
    POST /api/render                 Upload image + annotations → JPEG
    POST /api/canonicalize           Upload image → upright JPEG/PNG
    POST /api/dimension-layout       Dimension geometry → label placement
    POST /api/annotations/counts     Stored payload → per-kind counts
    POST /api/annotations/summary    Stored payload → report summary
    POST /api/exports                Start a ZIP or PDF export job
    GET  /api/exports/{job_id}       Poll export status
    GET  /api/exports/{job_id}/download
"""

import json
import os
import threading
import uuid
from typing import Any, List, Literal, Optional, Tuple

from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import Field

from fieldmark.config import load_config
from fieldmark.errors import AnnotationParseError, AnnotationRenderError
from fieldmark.export.pdf_report import run_pdf_export
from fieldmark.export.sources import LocalArtifactStore, SourceUrlPhotoProvider
from fieldmark.export.zip_export import cleanup_old_export_dirs, run_photo_export
from fieldmark.layout.dimension_layout import compute_dimension_layout
from fieldmark.layout.text_measure import PillowTextMeasurer
from fieldmark.models import (
    ExportOptions,
    ExportRecord,
    ExportStatus,
    PhotoRecord,
    ProjectInfo,
    RenderMode,
    RenderOptions,
    WireModel,
)
from fieldmark.render.annotation_renderer import get_annotated_export_buffer
from fieldmark.render.extract import extract_annotation_summary
from fieldmark.render.parse import get_annotation_counts
from fieldmark.render.raster import canonicalize_image
from fieldmark.tracer import configure_tracer, get_tracer

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

CONFIG = load_config(os.environ.get("FIELDMARK_CONFIG"))
configure_tracer(
    enabled=CONFIG.tracing.enabled,
    level=CONFIG.tracing.level,
    file_path=CONFIG.tracing.file_path,
    json_output=CONFIG.tracing.json_output,
)

# Shared by every request; read-only after startup
MEASURER = PillowTextMeasurer(CONFIG.fonts)

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="fieldmark", version="1.0.0")

# CORS: allow the editor dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_jobs = {}
_jobs_lock = threading.Lock()


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class DimensionLayoutRequest(WireModel):
    p1: Tuple[float, float]
    p2: Tuple[float, float]
    label_text: str
    comment_text: str = ""
    stroke_width: float = Field(default=4, gt=0)
    font_size: float = Field(default=20, gt=0)
    stage_bounds: Tuple[float, float]
    preferred_side_sign: Optional[Literal[1, -1]] = None


class ExportRequest(WireModel):
    kind: Literal["zip", "pdf"] = "zip"
    project: ProjectInfo = Field(default_factory=ProjectInfo)
    photos: List[PhotoRecord]
    options: ExportOptions = Field(default_factory=ExportOptions)


class PayloadRequest(WireModel):
    annotation_data: Any = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_job(job_id: str) -> ExportRecord:
    with _jobs_lock:
        record = _jobs.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Export not found: {job_id}")
    return record


def _run_export_job(job_id: str, request: ExportRequest):
    """Background task body; the record is updated in place."""
    record = _get_job(job_id)
    runner = run_pdf_export if request.kind == "pdf" else run_photo_export
    runner(
        job_id,
        request.photos,
        request.project,
        request.options,
        SourceUrlPhotoProvider(),
        LocalArtifactStore(CONFIG.export.output_dir),
        config=CONFIG,
        measurer=MEASURER,
        record=record,
    )


def _parse_json_form(text: Optional[str]):
    if text is None or text == "":
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # A plain string is passed through; the parser decides what it holds.
        return text


# ---------------------------------------------------------------------------
# Render endpoints
# ---------------------------------------------------------------------------

@app.post("/api/render")
def render(
    image: UploadFile = File(...),
    annotations: Optional[str] = Form(None),
    mode: RenderMode = Form(RenderMode.PDF),
    max_edge: Optional[int] = Form(None),
    quality: Optional[int] = Form(None),
):
    """
    Render stored annotations onto an uploaded photo.

    Returns image/jpeg. ``X-Has-Annotations`` tells whether anything was drawn.
    """
    content = image.file.read()
    try:
        options = RenderOptions(mode=mode, max_edge=max_edge, quality=quality)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    try:
        result = get_annotated_export_buffer(
            content, _parse_json_form(annotations), options, MEASURER, CONFIG,
        )
    except AnnotationParseError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except AnnotationRenderError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    return Response(
        content=result.buffer,
        media_type="image/jpeg",
        headers={
            "X-Has-Annotations": "true" if result.has_annotations else "false",
            "X-Image-Size": f"{result.width}x{result.height}",
        },
    )


@app.post("/api/canonicalize")
def canonicalize(image: UploadFile = File(...)):
    """Return the photo with EXIF orientation applied, as JPEG or PNG."""
    content = image.file.read()
    try:
        result = canonicalize_image(content)
    except AnnotationRenderError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    return Response(
        content=result.buffer,
        media_type=result.content_type,
        headers={"X-Original-Orientation": str(result.original_orientation)},
    )


@app.post("/api/dimension-layout")
async def dimension_layout(request: DimensionLayoutRequest):
    """Compute where a dimension's label and comment go."""
    result = compute_dimension_layout(
        request.p1,
        request.p2,
        stroke_width=request.stroke_width,
        font_size=request.font_size,
        label_text=request.label_text,
        comment_text=request.comment_text,
        stage_bounds=request.stage_bounds,
        preferred_side_sign=request.preferred_side_sign,
        measurer=MEASURER,
        config=CONFIG.layout,
    )
    return JSONResponse(result.model_dump())


@app.post("/api/annotations/counts")
async def annotation_counts(request: PayloadRequest):
    try:
        counts = get_annotation_counts(request.annotation_data)
    except AnnotationParseError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return JSONResponse(counts)


@app.post("/api/annotations/summary")
async def annotation_summary(request: PayloadRequest):
    try:
        summary = extract_annotation_summary(request.annotation_data)
    except AnnotationParseError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return JSONResponse(summary.model_dump())


# ---------------------------------------------------------------------------
# Export jobs
# ---------------------------------------------------------------------------

@app.post("/api/exports", status_code=202)
async def create_export(request: ExportRequest, background_tasks: BackgroundTasks):
    """
    Queue an export job and return its id.

    Poll ``GET /api/exports/{job_id}`` until status is ready or error.
    """
    if not request.photos:
        raise HTTPException(status_code=400, detail="No photos to export")

    job_id = uuid.uuid4().hex
    record = ExportRecord(job_id=job_id, kind=request.kind, photo_count=len(request.photos))
    with _jobs_lock:
        _jobs[job_id] = record

    get_tracer().event(f"Queued {request.kind} export {job_id}", photos=len(request.photos))
    background_tasks.add_task(_run_export_job, job_id, request)

    return JSONResponse({"job_id": job_id, "status": record.status.value}, status_code=202)


@app.get("/api/exports/{job_id}")
async def get_export(job_id: str):
    record = _get_job(job_id)
    return JSONResponse(record.model_dump(mode="json"))


@app.get("/api/exports/{job_id}/download")
async def download_export(job_id: str):
    """Serve the finished artifact of a ready job."""
    record = _get_job(job_id)
    if record.status != ExportStatus.READY or not record.file_url:
        raise HTTPException(status_code=409, detail=f"Export is {record.status.value}")
    if not os.path.exists(record.file_url):
        raise HTTPException(status_code=404, detail="Artifact no longer available")

    media_type = "application/pdf" if record.kind == "pdf" else "application/zip"
    return FileResponse(record.file_url, media_type=media_type, filename=os.path.basename(record.file_url))


@app.post("/api/exports/cleanup")
async def cleanup_exports():
    """Remove stale per-job temp directories."""
    removed = cleanup_old_export_dirs(CONFIG)
    return JSONResponse({"removed": len(removed)})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
