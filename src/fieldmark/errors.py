"""
Exception types for fieldmark.

Photo-scoped failures derive from AnnotationRenderError so the export loop can
record them and continue. Job-scoped failures abort the whole export.
"""


class FieldmarkError(Exception):
    """Base class for all fieldmark errors."""


class AnnotationRenderError(FieldmarkError):
    """Rendering annotations onto one photo failed (recoverable per photo)."""


class AnnotationParseError(AnnotationRenderError):
    """Stored annotation payload could not be decoded into AnnotationData."""


class PhotoFetchError(FieldmarkError):
    """Source image bytes could not be obtained (fatal for the job)."""


class ExportError(FieldmarkError):
    """Archive or document assembly failed (fatal for the job)."""
