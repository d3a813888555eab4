"""
Coordinate normalization between editor stage pixels and image-relative units.

Normalized geometry is a fraction (0..1) of the image's natural width/height
after EXIF rotation, so it survives any resize of the render surface.
stroke_width and font_size are style properties and are never normalized.
"""

from fieldmark.models import (
    NORMALIZED_COORD_VERSION,
    ImageRenderTransform,
    NormalizationContext,
    PixelRatioCheck,
)
from fieldmark.tracer import get_tracer


PIXEL_RATIO_TOLERANCE = 0.01


def compute_contain_transform(image_width, image_height, stage_width, stage_height):
    """
    Fit an image inside a stage preserving aspect ratio, centered.

    Returns (scale, offset_x, offset_y). Must match the editor's placement.
    """
    scale = min(stage_width / image_width, stage_height / image_height)
    offset_x = (stage_width - image_width * scale) / 2
    offset_y = (stage_height - image_height * scale) / 2
    return scale, offset_x, offset_y


def get_image_render_transform(image_width, image_height, stage_width, stage_height, rotation=0.0):
    """Contain fit expressed as the transform the editor persists."""
    scale, x, y = compute_contain_transform(image_width, image_height, stage_width, stage_height)
    return ImageRenderTransform(image_scale=scale, image_x=x, image_y=y, image_rotation=rotation)


def build_normalization_context(image_natural_width, image_natural_height, stage_width, stage_height):
    """Build the per-render context from a contain fit."""
    scale, x, y = compute_contain_transform(
        image_natural_width, image_natural_height, stage_width, stage_height
    )
    return NormalizationContext(
        image_natural_width=image_natural_width,
        image_natural_height=image_natural_height,
        stage_width=stage_width,
        stage_height=stage_height,
        image_scale=scale,
        image_x=x,
        image_y=y,
    )


def stage_to_image_normalized(stage_x, stage_y, ctx):
    """Stage pixel -> normalized image coordinate."""
    image_x = (stage_x - ctx.image_x) / ctx.image_scale
    image_y = (stage_y - ctx.image_y) / ctx.image_scale
    return image_x / ctx.image_natural_width, image_y / ctx.image_natural_height


def image_normalized_to_stage(norm_x, norm_y, ctx):
    """Normalized image coordinate -> stage pixel. Inverse of stage_to_image_normalized."""
    image_x = norm_x * ctx.image_natural_width
    image_y = norm_y * ctx.image_natural_height
    return ctx.image_x + image_x * ctx.image_scale, ctx.image_y + image_y * ctx.image_scale


def normalize_size_to_image(width, height, ctx):
    """Sizes are translation-invariant: no offset term."""
    return (
        (width / ctx.image_scale) / ctx.image_natural_width,
        (height / ctx.image_scale) / ctx.image_natural_height,
    )


def denormalize_size_from_image(norm_width, norm_height, ctx):
    return (
        norm_width * ctx.image_natural_width * ctx.image_scale,
        norm_height * ctx.image_natural_height * ctx.image_scale,
    )


def normalize_points(points, ctx):
    """Normalize a flat [x0, y0, x1, y1, ...] list. A trailing odd value is dropped."""
    result = []
    for i in range(0, len(points) - 1, 2):
        result.extend(stage_to_image_normalized(points[i], points[i + 1], ctx))
    return result


def denormalize_points(points, ctx):
    result = []
    for i in range(0, len(points) - 1, 2):
        result.extend(image_normalized_to_stage(points[i], points[i + 1], ctx))
    return result


def normalize_annotations_for_storage(data, ctx):
    """
    Convert a stage-pixel annotation set to version-2 normalized storage.

    Returns a new AnnotationData; the input is not modified.
    """
    rects = []
    for rect in data.rects:
        x, y = stage_to_image_normalized(rect.x, rect.y, ctx)
        width, height = normalize_size_to_image(rect.width, rect.height, ctx)
        rects.append(rect.model_copy(update={"x": x, "y": y, "width": width, "height": height}))

    texts = []
    for text in data.texts:
        x, y = stage_to_image_normalized(text.x, text.y, ctx)
        texts.append(text.model_copy(update={"x": x, "y": y}))

    return data.model_copy(update={
        "lines": [line.model_copy(update={"points": normalize_points(line.points, ctx)}) for line in data.lines],
        "rects": rects,
        "arrows": [arrow.model_copy(update={"points": normalize_points(arrow.points, ctx)}) for arrow in data.arrows],
        "texts": texts,
        "dimensions": [dim.model_copy(update={"points": normalize_points(dim.points, ctx)}) for dim in data.dimensions],
        "image_natural_width": ctx.image_natural_width,
        "image_natural_height": ctx.image_natural_height,
        "normalized_version": NORMALIZED_COORD_VERSION,
    })


def denormalize_annotations_for_display(data, ctx):
    """Project normalized storage back onto a stage described by ctx."""
    rects = []
    for rect in data.rects:
        x, y = image_normalized_to_stage(rect.x, rect.y, ctx)
        width, height = denormalize_size_from_image(rect.width, rect.height, ctx)
        rects.append(rect.model_copy(update={"x": x, "y": y, "width": width, "height": height}))

    texts = []
    for text in data.texts:
        x, y = image_normalized_to_stage(text.x, text.y, ctx)
        texts.append(text.model_copy(update={"x": x, "y": y}))

    return data.model_copy(update={
        "lines": [line.model_copy(update={"points": denormalize_points(line.points, ctx)}) for line in data.lines],
        "rects": rects,
        "arrows": [arrow.model_copy(update={"points": denormalize_points(arrow.points, ctx)}) for arrow in data.arrows],
        "texts": texts,
        "dimensions": [dim.model_copy(update={"points": denormalize_points(dim.points, ctx)}) for dim in data.dimensions],
        "stage_width": ctx.stage_width,
        "stage_height": ctx.stage_height,
    })


def legacy_context(data):
    """
    Rebuild the authoring context for a legacy record from its own dimensions.

    Returns None when any of the four dimensions is missing or non-positive.
    """
    dims = (data.image_natural_width, data.image_natural_height, data.stage_width, data.stage_height)
    if any(not d or d <= 0 for d in dims):
        return None
    return build_normalization_context(*dims)


def migrate_legacy_annotations(data, ctx=None):
    """
    Migrate a legacy (stage-pixel) record to normalized version 2.

    Already-normalized records are returned as-is. Records that cannot be
    migrated are passed through unchanged and remain legacy.
    """
    if data is None:
        return None
    if not data.is_legacy:
        return data

    tracer = get_tracer()

    if ctx is None:
        ctx = legacy_context(data)
        if ctx is None:
            tracer.event("Legacy annotations missing dimensions, left unmigrated", level="WARN")
            return data

    migrated = normalize_annotations_for_storage(data, ctx)

    # Legacy records predate the persisted transform; keep the recomputed fit
    # so renderers can recover the authoring display size.
    if migrated.image_render_transform is None:
        migrated = migrated.model_copy(update={
            "image_render_transform": ImageRenderTransform(
                image_scale=ctx.image_scale,
                image_x=ctx.image_x,
                image_y=ctx.image_y,
            ),
        })

    tracer.event(f"Migrated legacy annotations ({migrated.shape_count} shapes)", level="DEBUG")
    return migrated


def check_pixel_ratio_consistency(image_natural_width, image_natural_height, stage_width, stage_height,
                                  tolerance=PIXEL_RATIO_TOLERANCE):
    """
    Compare natural/stage pixel ratios on both axes.

    An inconsistent record is only logged; callers use pixel_ratio, which is
    the smaller of the two ratios in that case.

    Library API for callers that rasterize the whole stage at one pixel ratio.
    The renderers in fieldmark.render draw at image resolution through the
    contain-fit transform and do not call this.
    """
    ratio_x = image_natural_width / stage_width
    ratio_y = image_natural_height / stage_height

    is_consistent = abs(ratio_x - ratio_y) < tolerance * max(ratio_x, ratio_y)
    pixel_ratio = ratio_x if is_consistent else min(ratio_x, ratio_y)

    if not is_consistent:
        get_tracer().event(
            "Pixel ratio inconsistency, using smaller ratio",
            level="WARN",
            ratio_x=ratio_x,
            ratio_y=ratio_y,
        )

    return PixelRatioCheck(
        ratio_x=ratio_x,
        ratio_y=ratio_y,
        pixel_ratio=pixel_ratio,
        is_consistent=is_consistent,
    )
