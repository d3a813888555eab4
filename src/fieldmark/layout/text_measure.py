"""
Text measurement shared by the dimension layout engine and the renderer.

Layout and drawing must agree on label sizes, so both go through a
TextMeasurer. The default implementation resolves TrueType faces with Pillow
once per process; faces are cached and never mutated afterwards.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

from PIL import ImageFont

from fieldmark.config import get_default_config
from fieldmark.tracer import get_tracer


BOLD = "bold"
NORMAL = "normal"


@dataclass(frozen=True)
class FontFace:
    """A sized font ready for drawing."""
    font: object
    size: float
    synthetic_bold: int = 0


class TextMeasurer(ABC):
    """Measures and supplies fonts for annotation text."""

    @abstractmethod
    def measure(self, text, font_size, font_style=NORMAL, font_family=None):
        """Return (width, height) of text as the editor lays it out."""

    @abstractmethod
    def get_font(self, font_size, font_style=NORMAL, font_family=None):
        """Return a FontFace for drawing text at font_size."""


class PillowTextMeasurer(TextMeasurer):
    """
    Measure text with Pillow FreeType fonts.

    Width is the advance width of the longest line; height is
    font_size * line_count, matching the editor's line height of 1.0.
    """

    def __init__(self, font_config=None):
        self.font_config = font_config or get_default_config().fonts
        self._paths = {}
        self._faces = {}
        self._lock = threading.Lock()

    def _candidates(self, font_style, font_family):
        family = font_family or self.font_config.family
        if font_style == BOLD:
            explicit = self.font_config.bold_path
            named = [f"{family}-Bold.ttf", f"{family}Bold.ttf"]
            fallbacks = self.font_config.bold_fallbacks
        else:
            explicit = self.font_config.regular_path
            named = [f"{family}-Regular.ttf", f"{family}.ttf"]
            fallbacks = self.font_config.fallbacks
        candidates = [explicit] if explicit else []
        return candidates + named + list(fallbacks)

    def _resolve_path(self, font_style, font_family):
        """
        Find the first loadable font file for a family/style.

        Returns None when only Pillow's built-in face is available.
        """
        key = (font_family, font_style)
        if key in self._paths:
            return self._paths[key]

        path = None
        for candidate in self._candidates(font_style, font_family):
            try:
                ImageFont.truetype(candidate, 12)
            except OSError:
                continue
            path = candidate
            break

        if path is None:
            get_tracer().event(
                f"No TrueType face for {font_family or self.font_config.family} {font_style}, using built-in font",
                level="WARN",
            )
        self._paths[key] = path
        return path

    def get_font(self, font_size, font_style=NORMAL, font_family=None):
        size = round(float(font_size), 2)
        key = (font_family, font_style, size)
        with self._lock:
            face = self._faces.get(key)
            if face is not None:
                return face

            path = self._resolve_path(font_style, font_family)
            if path is not None:
                font = ImageFont.truetype(path, size)
                synthetic_bold = 0
            else:
                font = ImageFont.load_default(size=size)
                synthetic_bold = max(1, round(size / 24)) if font_style == BOLD else 0

            face = FontFace(font=font, size=size, synthetic_bold=synthetic_bold)
            self._faces[key] = face
            return face

    def measure(self, text, font_size, font_style=NORMAL, font_family=None):
        if not text:
            return 0.0, 0.0
        face = self.get_font(font_size, font_style, font_family)
        lines = text.split("\n")
        width = max(face.font.getlength(line) for line in lines) + 2 * face.synthetic_bold
        height = float(font_size) * len(lines)
        return float(width), height


_default_measurer = None
_default_lock = threading.Lock()


def get_default_measurer():
    """Process-wide measurer, created on first use."""
    global _default_measurer
    if _default_measurer is None:
        with _default_lock:
            if _default_measurer is None:
                _default_measurer = PillowTextMeasurer()
    return _default_measurer
