"""
Pydantic data models for fieldmark.

AnnotationData mirrors the JSON the interactive editor persists (camelCase
keys). Shapes form a closed set of five kinds; ShapeKind is the tag every
renderer and summary dispatches on.
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


NORMALIZED_COORD_VERSION = 2


class ShapeKind(str, Enum):
    """Annotation kinds, in the order they are composited."""
    RECT = "rect"
    LINE = "line"
    ARROW = "arrow"
    DIMENSION = "dimension"
    TEXT = "text"


class RenderMode(str, Enum):
    """Output policy for a rendered photo."""
    FULL = "full"
    PDF = "pdf"
    THUMBNAIL = "thumbnail"


class ExportStatus(str, Enum):
    """Lifecycle of an export job."""
    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"


class WireModel(BaseModel):
    """Base for models exchanged with the editor (camelCase JSON)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Shape(WireModel):
    """Fields shared by every annotation kind."""
    kind: ClassVar[ShapeKind]

    id: Optional[Union[str, int]] = None
    color: str = "#ff0000"


class RectAnnotation(Shape):
    kind: ClassVar[ShapeKind] = ShapeKind.RECT

    x: float
    y: float
    width: float
    height: float
    stroke_width: Optional[float] = None


class LineAnnotation(Shape):
    kind: ClassVar[ShapeKind] = ShapeKind.LINE

    points: List[float] = Field(default_factory=list)
    stroke_width: Optional[float] = None


class ArrowAnnotation(Shape):
    kind: ClassVar[ShapeKind] = ShapeKind.ARROW

    points: List[float] = Field(default_factory=list)
    stroke_width: Optional[float] = None


class TextAnnotation(Shape):
    kind: ClassVar[ShapeKind] = ShapeKind.TEXT

    x: float
    y: float
    text: str = ""
    font_size: Optional[float] = None


class DimensionAnnotation(Shape):
    kind: ClassVar[ShapeKind] = ShapeKind.DIMENSION

    color: str = "#ef4444"
    points: List[float] = Field(default_factory=list)
    value: str = ""
    unit: str = ""
    stroke_width: Optional[float] = None
    font_size: Optional[float] = None
    comment: Optional[str] = None

    @field_validator("value", "unit", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None:
            return ""
        return str(v)

    @property
    def label_text(self):
        """Label shown on the measurement line, e.g. '12 in'."""
        return f"{self.value} {self.unit}".strip()


Annotation = Union[RectAnnotation, LineAnnotation, ArrowAnnotation, TextAnnotation, DimensionAnnotation]


class ImageRenderTransform(WireModel):
    """How the image was fit inside the editor stage when authored."""
    image_scale: float
    image_x: float = 0.0
    image_y: float = 0.0
    image_rotation: float = 0.0


class AnnotationData(WireModel):
    """The persisted annotation set for one photo."""
    lines: List[LineAnnotation] = Field(default_factory=list)
    rects: List[RectAnnotation] = Field(default_factory=list)
    arrows: List[ArrowAnnotation] = Field(default_factory=list)
    texts: List[TextAnnotation] = Field(default_factory=list)
    dimensions: List[DimensionAnnotation] = Field(default_factory=list)
    image_natural_width: Optional[float] = None
    image_natural_height: Optional[float] = None
    stage_width: Optional[float] = None
    stage_height: Optional[float] = None
    image_render_transform: Optional[ImageRenderTransform] = None
    normalized_version: Optional[int] = None

    @field_validator("lines", "rects", "arrows", "texts", "dimensions", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return [] if v is None else v

    @property
    def is_legacy(self):
        """True when geometry is still stored in stage pixels."""
        return self.normalized_version != NORMALIZED_COORD_VERSION

    def shapes(self) -> Iterator[Tuple[ShapeKind, Annotation]]:
        """Yield every shape in composite order: kind order, then stored order."""
        by_kind = {
            ShapeKind.RECT: self.rects,
            ShapeKind.LINE: self.lines,
            ShapeKind.ARROW: self.arrows,
            ShapeKind.DIMENSION: self.dimensions,
            ShapeKind.TEXT: self.texts,
        }
        for kind in ShapeKind:
            for shape in by_kind[kind]:
                yield kind, shape

    def counts(self) -> Dict[str, int]:
        """Number of shapes per kind."""
        return {
            "rects": len(self.rects),
            "arrows": len(self.arrows),
            "lines": len(self.lines),
            "texts": len(self.texts),
            "dimensions": len(self.dimensions),
        }

    @property
    def shape_count(self):
        return sum(self.counts().values())

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with the editor's camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)


class NormalizationContext(BaseModel):
    """Contain-fit placement of the image inside a stage. Never persisted."""
    model_config = ConfigDict(frozen=True)

    image_natural_width: float
    image_natural_height: float
    stage_width: float
    stage_height: float
    image_scale: float
    image_x: float
    image_y: float


class PixelRatioCheck(BaseModel):
    """Result of comparing natural/stage ratios on both axes."""
    ratio_x: float
    ratio_y: float
    pixel_ratio: float
    is_consistent: bool


class DimensionLayoutResult(BaseModel):
    """Placement of a measurement label and its arrowheads."""
    label_x: float
    label_y: float
    label_width: float
    label_height: float
    comment_x: float
    comment_y: float
    comment_width: float
    comment_height: float
    arrow_length: float
    arrow_width: float
    cap_radius: float
    used_side_sign: int

    @property
    def label_center(self):
        return (self.label_x + self.label_width / 2, self.label_y + self.label_height / 2)

    @property
    def comment_center(self):
        return (self.comment_x + self.comment_width / 2, self.comment_y + self.comment_height / 2)


class RenderOptions(WireModel):
    """Caller-facing render parameters: {mode, maxEdge?, quality?}."""
    mode: RenderMode = RenderMode.PDF
    max_edge: Optional[int] = Field(default=None, gt=0)
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    compact: bool = False

    def resolve(self, render_config):
        """
        Return (max_edge, quality) for this mode.

        max_edge is None for full-resolution output.
        """
        if self.mode == RenderMode.FULL:
            return None, self.quality or render_config.full_quality
        if self.mode == RenderMode.THUMBNAIL:
            return (self.max_edge or render_config.thumbnail_max_edge,
                    self.quality or render_config.thumbnail_quality)
        if self.compact:
            return (self.max_edge or render_config.compact_max_edge,
                    self.quality or render_config.compact_quality)
        return (self.max_edge or render_config.default_max_edge,
                self.quality or render_config.pdf_quality)


class ExportBuffer(BaseModel):
    """Final encoded image for one photo."""
    buffer: bytes
    has_annotations: bool
    width: int
    height: int


class PhotoRecord(WireModel):
    """A photo as handed to the export pipeline by its owner."""
    id: Union[int, str]
    filename: str
    source_url: Optional[str] = None
    annotation_data: Any = None
    area_name: str = ""
    location_type: Optional[str] = None
    illuminated: Optional[str] = None
    sided: Optional[str] = None
    timestamp: Optional[datetime] = None
    geo_lat: Optional[float] = None
    geo_lng: Optional[float] = None
    wall_type_tags: List[str] = Field(default_factory=list)
    custom_tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class ProjectInfo(WireModel):
    client_name: str = ""
    site_name: str = ""

    @property
    def display_name(self):
        return f"{self.client_name} - {self.site_name}"


class ExportOptions(WireModel):
    include_annotations: bool = True
    organize_by_area: bool = False
    render: RenderOptions = Field(default_factory=RenderOptions)


class RenderFailure(WireModel):
    """One photo whose annotations could not be rendered."""
    photo_id: Union[int, str]
    filename: str
    error: str


class ExportRecord(BaseModel):
    """State of one export job."""
    job_id: str
    kind: str = "zip"
    status: ExportStatus = ExportStatus.PENDING
    file_url: Optional[str] = None
    photo_count: int = 0
    failures: List[RenderFailure] = Field(default_factory=list)
    error_message: Optional[str] = None
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    completed_at: Optional[str] = None
