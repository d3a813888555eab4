"""
Command-line interface for fieldmark.

Provides commands for rendering annotated photos, inspecting dimension
layouts, migrating stored payloads and running exports from a job file.
"""

import argparse
import json
import os
import sys
import uuid
from typing import List

from pydantic import Field

from fieldmark.config import load_config, save_default_config
from fieldmark.errors import FieldmarkError
from fieldmark.geometry.normalize import migrate_legacy_annotations
from fieldmark.layout.dimension_layout import compute_dimension_layout
from fieldmark.layout.text_measure import PillowTextMeasurer
from fieldmark.models import ExportOptions, PhotoRecord, ProjectInfo, RenderMode, RenderOptions, WireModel
from fieldmark.tracer import configure_tracer, get_tracer


class ExportJobFile(WireModel):
    """Job description read by the export and pdf commands."""
    project: ProjectInfo = Field(default_factory=ProjectInfo)
    photos: List[PhotoRecord] = Field(default_factory=list)
    options: ExportOptions = Field(default_factory=ExportOptions)


def _add_common_args(parser):
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable runtime tracing",
    )
    parser.add_argument(
        "--trace-level",
        default=None,
        choices=["ERROR", "WARN", "INFO", "DEBUG"],
        help="Trace log level",
    )
    parser.add_argument(
        "--trace-file",
        default=None,
        help="Path to write trace logs",
    )
    parser.add_argument(
        "--trace-json",
        action="store_true",
        help="Enable JSON trace output",
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="fieldmark",
        description="fieldmark: render photo annotations exactly as the editor shows them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    render_parser = subparsers.add_parser("render", help="Render annotations onto a photo")
    render_parser.add_argument("--image", "-i", required=True, help="Source image file")
    render_parser.add_argument("--annotations", "-a", default=None, help="Annotation JSON file")
    render_parser.add_argument("--out", "-o", required=True, help="Output JPEG path")
    render_parser.add_argument(
        "--mode",
        default=RenderMode.PDF.value,
        choices=[m.value for m in RenderMode],
        help="Output policy",
    )
    render_parser.add_argument("--max-edge", type=int, default=None, help="Long edge cap in pixels")
    render_parser.add_argument("--quality", type=int, default=None, help="JPEG quality (1-100)")
    render_parser.add_argument("--compact", action="store_true", help="Use the compact PDF preset")
    _add_common_args(render_parser)

    layout_parser = subparsers.add_parser("layout", help="Compute a dimension label layout")
    layout_parser.add_argument("--p1", type=float, nargs=2, required=True, metavar=("X", "Y"))
    layout_parser.add_argument("--p2", type=float, nargs=2, required=True, metavar=("X", "Y"))
    layout_parser.add_argument("--label", required=True, help="Label text, e.g. '12 in'")
    layout_parser.add_argument("--comment", default="", help="Optional comment under the label")
    layout_parser.add_argument("--bounds", type=float, nargs=2, required=True, metavar=("W", "H"))
    layout_parser.add_argument("--stroke-width", type=float, default=4)
    layout_parser.add_argument("--font-size", type=float, default=20)
    layout_parser.add_argument("--side", type=int, default=1, choices=[1, -1])
    _add_common_args(layout_parser)

    migrate_parser = subparsers.add_parser("migrate", help="Migrate legacy annotations to normalized form")
    migrate_parser.add_argument("--in", dest="input", required=True, help="Annotation JSON file")
    migrate_parser.add_argument("--out", "-o", default=None, help="Output path (stdout when omitted)")
    _add_common_args(migrate_parser)

    canon_parser = subparsers.add_parser("canonicalize", help="Convert a photo to upright JPEG or PNG")
    canon_parser.add_argument("--image", "-i", required=True, help="Source image file")
    canon_parser.add_argument("--out", "-o", required=True, help="Output path without extension")
    _add_common_args(canon_parser)

    for name, help_text in (("export", "Export photos as a ZIP archive"), ("pdf", "Export photos as a PDF report")):
        job_parser = subparsers.add_parser(name, help=help_text)
        job_parser.add_argument("--job", "-j", required=True, help="Job JSON file (project, photos, options)")
        job_parser.add_argument("--out", "-o", default=None, help="Directory receiving the artifact")
        job_parser.add_argument("--job-id", default=None, help="Job identifier (random when omitted)")
        _add_common_args(job_parser)

    init_parser = subparsers.add_parser("init-config", help="Create default config file")
    init_parser.add_argument(
        "--out", "-o",
        default="fieldmark_config.yaml",
        help="Output path for config file",
    )

    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "init-config":
        return handle_init_config(args)

    config = load_config(args.config)
    configure_tracer(
        enabled=args.trace or config.tracing.enabled,
        level=args.trace_level or config.tracing.level,
        file_path=args.trace_file or config.tracing.file_path,
        json_output=args.trace_json or config.tracing.json_output,
    )

    handlers = {
        "render": handle_render,
        "layout": handle_layout,
        "migrate": handle_migrate,
        "canonicalize": handle_canonicalize,
        "export": handle_export,
        "pdf": handle_export,
    }

    tracer = get_tracer()
    try:
        with tracer.span(f"cli_{args.command}", module="cli"):
            return handlers[args.command](args, config)
    except (FieldmarkError, OSError, ValueError) as e:
        tracer.event(f"{args.command} failed: {str(e)}", level="ERROR")
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 1


def _read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _write_bytes(path, data):
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def handle_render(args, config):
    """Handle the render command."""
    from fieldmark.render.annotation_renderer import get_annotated_export_buffer

    with open(args.image, "rb") as f:
        image_bytes = f.read()
    raw = _read_json(args.annotations) if args.annotations else None

    options = RenderOptions(
        mode=RenderMode(args.mode),
        max_edge=args.max_edge,
        quality=args.quality,
        compact=args.compact,
    )
    measurer = PillowTextMeasurer(config.fonts)
    result = get_annotated_export_buffer(image_bytes, raw, options, measurer, config)
    _write_bytes(args.out, result.buffer)

    state = "annotated" if result.has_annotations else "clean"
    print(f"Rendered {state} image {result.width}x{result.height} to: {args.out}")
    return 0


def handle_layout(args, config):
    """Handle the layout command."""
    result = compute_dimension_layout(
        tuple(args.p1),
        tuple(args.p2),
        stroke_width=args.stroke_width,
        font_size=args.font_size,
        label_text=args.label,
        comment_text=args.comment,
        stage_bounds=tuple(args.bounds),
        preferred_side_sign=args.side,
        measurer=PillowTextMeasurer(config.fonts),
        config=config.layout,
    )
    print(json.dumps(result.model_dump(), indent=2))
    return 0


def handle_migrate(args, config):
    """Handle the migrate command."""
    from fieldmark.render.parse import parse_annotation_data

    data = parse_annotation_data(_read_json(args.input), max_passes=config.export.max_decode_passes)
    if data is None:
        print("No annotations to migrate", file=sys.stderr)
        return 1

    migrated = migrate_legacy_annotations(data)
    text = json.dumps(migrated.to_wire(), indent=2)

    if args.out:
        with open(args.out, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"Migrated annotations saved to: {args.out}")
    else:
        print(text)

    return 0 if not migrated.is_legacy else 1


def handle_canonicalize(args, config):
    """Handle the canonicalize command."""
    from fieldmark.render.raster import canonicalize_image

    with open(args.image, "rb") as f:
        result = canonicalize_image(f.read())

    out_path = f"{args.out}.{result.extension}"
    _write_bytes(out_path, result.buffer)
    print(f"{result.original_format} -> {result.format} ({result.width}x{result.height}), "
          f"orientation {result.original_orientation} -> 1")
    print(f"Saved to: {out_path}")
    return 0


def handle_export(args, config):
    """Handle the export and pdf commands."""
    from fieldmark.export.pdf_report import run_pdf_export
    from fieldmark.export.sources import LocalArtifactStore, SourceUrlPhotoProvider
    from fieldmark.export.zip_export import run_photo_export

    job = ExportJobFile.model_validate(_read_json(args.job))
    job_id = args.job_id or uuid.uuid4().hex[:12]
    provider = SourceUrlPhotoProvider(base_dir=os.path.dirname(os.path.abspath(args.job)))
    store = LocalArtifactStore(args.out or config.export.output_dir)
    measurer = PillowTextMeasurer(config.fonts)

    def on_progress(current, total):
        print(f"  [{current}/{total}]", end="\r", file=sys.stderr)

    runner = run_pdf_export if args.command == "pdf" else run_photo_export
    record = runner(
        job_id, job.photos, job.project, job.options, provider, store,
        config=config, measurer=measurer, on_progress=on_progress,
    )

    print(f"\nExport {record.job_id}: {record.status.value}")
    print(f"  Photos: {record.photo_count}")
    print(f"  Render failures: {len(record.failures)}")
    if record.file_url:
        print(f"  Artifact: {record.file_url}")
    if record.error_message:
        print(f"  Error: {record.error_message}", file=sys.stderr)
        return 1
    return 0


def handle_init_config(args):
    """Handle the init-config command."""
    save_default_config(args.out)
    print(f"Default configuration saved to: {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
