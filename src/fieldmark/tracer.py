"""
Hierarchical runtime tracing for fieldmark.

Nested, timed log lines for render calls and export jobs. Nesting depth and
the active export job are tracked per thread, so concurrent jobs running on
backend worker threads keep their own indentation and job tag.
"""

import functools
import hashlib
import json
import sys
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from enum import Enum

import numpy as np
from PIL import Image
from pydantic import BaseModel


LEVELS = {"ERROR": 0, "WARN": 1, "INFO": 2, "DEBUG": 3}

# Leading bytes of the encodings photos arrive in
_IMAGE_SIGNATURES = (
    (b"\xff\xd8\xff", "jpeg"),
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"RIFF", "webp"),
)


class TraceSettings:
    """Where and how much the tracer writes."""

    def __init__(self):
        self.enabled = False
        self.level = "INFO"
        self.file_path = None
        self.json_output = False
        self._handle = None

    def apply(self, enabled=False, level="INFO", file_path=None, json_output=False):
        self.close()
        self.enabled = enabled
        self.level = level.upper()
        self.file_path = file_path
        self.json_output = json_output
        if enabled and file_path:
            self._handle = open(file_path, "a", encoding="utf-8")

    def close(self):
        if self._handle:
            self._handle.close()
            self._handle = None

    def allows(self, level):
        return self.enabled and LEVELS.get(level, 2) <= LEVELS.get(self.level, 2)


class Tracer:
    """
    Structured logger for render and export work.

    Spans nest and report their duration; events attach to the innermost
    span of the calling thread. Output is a text line on stderr (and the
    trace file when set), optionally followed by the same record as JSON.
    """

    def __init__(self):
        self.settings = TraceSettings()
        self._local = threading.local()
        self._lock = threading.Lock()

    def _stack(self):
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack

    @property
    def current_job(self):
        return getattr(self._local, "job_id", None)

    @contextmanager
    def job(self, job_id):
        """Tag every line written by this thread with an export job id."""
        previous = self.current_job
        self._local.job_id = str(job_id)
        try:
            yield
        finally:
            self._local.job_id = previous

    def _emit(self, level, module, func, message, meta=None, elapsed_ms=None):
        if not self.settings.allows(level):
            return

        now = datetime.now()
        stamp = now.strftime("%H:%M:%S.") + f"{now.microsecond // 1000:03d}"
        depth = len(self._stack())
        where = f"{module}:{func}" if func else module
        job = self.current_job

        line = f"{stamp} {level:<5} {'  ' * depth}{where}  {message}"
        if job:
            line += f" job={job}"
        lines = [line]

        if self.settings.json_output:
            record = {
                "timestamp": stamp,
                "level": level,
                "depth": depth,
                "thread": threading.current_thread().name,
                "job": job,
                "module": module,
                "function": func,
                "message": message,
                "elapsed_ms": elapsed_ms,
                "meta": {k: summarize(v) for k, v in (meta or {}).items()},
            }
            lines.append(json.dumps(record))

        with self._lock:
            for text in lines:
                print(text, file=sys.stderr)
                if self.settings._handle:
                    self.settings._handle.write(text + "\n")
            if self.settings._handle:
                self.settings._handle.flush()

    @contextmanager
    def span(self, name, module="", **meta):
        """
        Trace a block: a start line, then an end line with its duration.

        An exception inside the block is logged at ERROR and re-raised.
        """
        if not self.settings.enabled:
            yield
            return

        details = " ".join(f"{k}={summarize(v)}" for k, v in meta.items())
        self._emit("INFO", module, name, f"start {details}".strip(), meta)
        stack = self._stack()
        stack.append((name, module))
        started = time.perf_counter()
        try:
            yield
        except Exception as e:
            stack.pop()
            elapsed = (time.perf_counter() - started) * 1000
            self._emit("ERROR", module, name,
                       f"failed dt={elapsed:.0f}ms error={type(e).__name__}: {str(e)[:100]}",
                       elapsed_ms=round(elapsed, 1))
            raise
        stack.pop()
        elapsed = (time.perf_counter() - started) * 1000
        self._emit("INFO", module, name, f"end ok dt={elapsed:.0f}ms", elapsed_ms=round(elapsed, 1))

    def event(self, message, level="INFO", **meta):
        """Log a single line inside the current span."""
        if not self.settings.allows(level):
            return
        stack = self._stack()
        func, module = stack[-1] if stack else ("", "")
        details = " ".join(f"{k}={summarize(v)}" for k, v in meta.items())
        self._emit(level, module, func, f"{message} {details}".strip(), meta)


def _short_hash(data):
    return hashlib.md5(data).hexdigest()[:8]


def _summarize_bytes(data):
    data = bytes(data)
    kind = next((name for magic, name in _IMAGE_SIGNATURES if data.startswith(magic)), "bytes")
    return f"{kind}(len={len(data)},h={_short_hash(data)})"


def _summarize_str(text):
    if text.startswith("data:"):
        header, _, body = text.partition(",")
        return f"data-url({header[5:].split(';')[0] or 'text/plain'},len={len(body)})"
    if len(text) > 50:
        return f"str(len={len(text)},h={_short_hash(text.encode())})"
    return repr(text)


def _summarize_model(model):
    name = type(model).__name__
    shape_count = getattr(model, "shape_count", None)
    if isinstance(shape_count, int):
        return f"{name}(shapes={shape_count})"
    status = getattr(model, "status", None)
    if isinstance(status, Enum):
        return f"{name}(status={status.value})"
    return f"{name}(fields={list(type(model).model_fields)[:3]}...)"


def _summarize_impl(obj):
    if obj is None:
        return "None"
    if isinstance(obj, np.ndarray):
        # Hash small arrays by content, large rasters by shape only
        digest = _short_hash(obj.tobytes() if 0 < obj.size < 1000 else str(obj.shape).encode())
        return f"ndarray({obj.dtype},{'x'.join(str(s) for s in obj.shape)},h={digest})"
    if isinstance(obj, Image.Image):
        return f"Image({obj.mode},{obj.width}x{obj.height})"
    if isinstance(obj, BaseModel):
        return _summarize_model(obj)
    if isinstance(obj, Enum):
        return str(obj.value)
    if isinstance(obj, str):
        return _summarize_str(obj)
    if isinstance(obj, (bytes, bytearray)):
        return _summarize_bytes(obj)
    if isinstance(obj, (list, tuple)):
        first = f",first={type(obj[0]).__name__}" if obj else ""
        return f"{type(obj).__name__}(len={len(obj)}{first})"
    if isinstance(obj, dict):
        return f"dict(len={len(obj)},keys=[{','.join(str(k) for k in list(obj)[:5])}])"
    if isinstance(obj, float):
        return f"{obj:.4g}"
    if isinstance(obj, int):
        return str(obj)
    return f"<{type(obj).__name__}>"


def summarize(obj, max_len=200):
    """
    Compact, bounded description of a value for log metadata.

    Image buffers and data URLs are reduced to kind, length and a short hash.
    """
    try:
        text = _summarize_impl(obj)
    except Exception:
        return f"<{type(obj).__name__}>"
    return text if len(text) <= max_len else text[:max_len - 3] + "..."


def trace(label=None, arg_names=None):
    """
    Run the decorated function inside a span named label (or its own name).

    Keyword arguments named in arg_names are summarized into the start line.
    """
    def decorator(func):
        module = (func.__module__ or "").rsplit(".", 1)[-1]
        name = label or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if not _tracer.settings.enabled:
                return func(*args, **kwargs)
            meta = {k: kwargs[k] for k in (arg_names or ()) if k in kwargs}
            with _tracer.span(name, module=module, **meta):
                return func(*args, **kwargs)

        return wrapper
    return decorator


_tracer = Tracer()


def get_tracer():
    return _tracer


def configure_tracer(enabled=False, level="INFO", file_path=None, json_output=False):
    """Configure the process-wide tracer."""
    _tracer.settings.apply(enabled=enabled, level=level, file_path=file_path, json_output=json_output)
