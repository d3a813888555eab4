"""
Configuration management for fieldmark.

Loads YAML configuration with defaults that match the interactive editor for
every render, layout and export setting.
"""

import os
import tempfile
from dataclasses import asdict, dataclass, field, fields
from typing import List, Optional

import yaml


@dataclass
class RenderConfig:
    """Output presets for the annotation renderer."""
    default_max_edge: int = 1800
    full_quality: int = 95
    pdf_quality: int = 88
    compact_max_edge: int = 800
    compact_quality: int = 55
    thumbnail_max_edge: int = 400
    thumbnail_quality: int = 80
    report_max_edge: int = 1400
    report_quality: int = 78
    # editor defaults when a shape omits its style
    default_stroke_width: float = 4.0
    default_font_size: float = 20.0


@dataclass
class LayoutConfig:
    """Configuration for dimension label placement."""
    bounds_tolerance: float = 10.0
    bbox_padding: float = 8.0
    max_push_iterations: int = 8
    default_side_sign: int = 1


@dataclass
class FontConfig:
    """Font resolution for text measurement and drawing."""
    family: str = "Inter"
    regular_path: Optional[str] = None
    bold_path: Optional[str] = None
    fallbacks: List[str] = field(default_factory=lambda: [
        "Arial.ttf",
        "arial.ttf",
        "DejaVuSans.ttf",
        "LiberationSans-Regular.ttf",
    ])
    bold_fallbacks: List[str] = field(default_factory=lambda: [
        "Arial Bold.ttf",
        "arialbd.ttf",
        "DejaVuSans-Bold.ttf",
        "LiberationSans-Bold.ttf",
    ])


@dataclass
class ExportConfig:
    """Configuration for export jobs."""
    temp_base: str = field(default_factory=lambda: os.path.join(tempfile.gettempdir(), "fieldmark", "exports"))
    output_dir: str = "exports"
    zip_compress_level: int = 5
    max_temp_age_hours: float = 24.0
    max_decode_passes: int = 3


@dataclass
class PDFConfig:
    """Configuration for the PDF photo report."""
    page_width_inches: float = 8.5
    page_height_inches: float = 11.0
    margin_inches: float = 0.5
    compact_threshold: int = 20


@dataclass
class TracingConfig:
    """Configuration for runtime tracing."""
    enabled: bool = False
    level: str = "INFO"
    file_path: Optional[str] = None
    json_output: bool = False


@dataclass
class FieldmarkConfig:
    """Complete configuration."""
    render: RenderConfig = field(default_factory=RenderConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    fonts: FontConfig = field(default_factory=FontConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    pdf: PDFConfig = field(default_factory=PDFConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)


SECTIONS = ("render", "layout", "fonts", "export", "pdf", "tracing")


def load_config(config_path=None):
    """
    Load configuration from YAML file.

    Falls back to defaults for any missing values.
    """
    config = FieldmarkConfig()

    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

        config = _merge_config(config, yaml_data)

    return config


def _merge_config(config, yaml_data):
    """Merge YAML data into config dataclass, ignoring unknown keys."""
    for section_name in SECTIONS:
        section_data = yaml_data.get(section_name)
        if not isinstance(section_data, dict):
            continue
        section = getattr(config, section_name)
        known = {f.name for f in fields(section)}
        for key, value in section_data.items():
            if key in known:
                setattr(section, key, value)

    return config


def save_default_config(path):
    """Save default configuration to YAML file for reference."""
    config = FieldmarkConfig()
    yaml_data = {name: asdict(getattr(config, name)) for name in SECTIONS}

    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(yaml_data, f, default_flow_style=False, sort_keys=False)


_default_config = None


def get_default_config():
    """Return the process-wide default configuration."""
    global _default_config
    if _default_config is None:
        _default_config = FieldmarkConfig()
    return _default_config
