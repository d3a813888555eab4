"""
Collaborators at the edges of an export job.

A PhotoProvider supplies the source bytes and stored annotation payload for a
photo. An ArtifactStore receives the finished archive and returns a URL.
"""

import base64
import binascii
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

import requests

from fieldmark.errors import ExportError, PhotoFetchError
from fieldmark.tracer import get_tracer


@dataclass
class PhotoPayload:
    image_bytes: bytes
    annotation_data: Any = None


class PhotoProvider(ABC):
    """Gives the export pipeline the bytes of a source photo."""

    @abstractmethod
    def load(self, photo):
        """Return a PhotoPayload for photo, or raise PhotoFetchError."""


class SourceUrlPhotoProvider(PhotoProvider):
    """
    Load photos from PhotoRecord.source_url.

    Supports base64 data: URLs, http(s) URLs and local file paths (absolute,
    or relative to base_dir). The annotation payload comes from the record.
    """

    def __init__(self, base_dir=None, timeout=30, session=None):
        self.base_dir = base_dir
        self.timeout = timeout
        self.session = session or requests.Session()

    def load(self, photo):
        url = photo.source_url
        if not url:
            raise PhotoFetchError(f"Photo {photo.id} has no source")
        return PhotoPayload(image_bytes=self.fetch(url), annotation_data=photo.annotation_data)

    def fetch(self, url):
        if url.startswith("data:"):
            return self._fetch_data_url(url)
        if url.startswith(("http://", "https://")):
            return self._fetch_http(url)
        return self._fetch_file(url)

    def _fetch_data_url(self, url):
        _, _, payload = url.partition(",")
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise PhotoFetchError(f"Invalid data URL: {e}") from e

    def _fetch_http(self, url):
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise PhotoFetchError(f"Failed to fetch {url}: {e}") from e
        return response.content

    def _fetch_file(self, url):
        path = unquote(url[len("file://"):]) if url.startswith("file://") else url
        if self.base_dir and not os.path.isabs(path):
            path = os.path.join(self.base_dir, path)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise PhotoFetchError(f"Failed to read {path}: {e.strerror or e}") from e


class ArtifactStore(ABC):
    """Destination for finished export artifacts."""

    @abstractmethod
    def upload(self, job_id, path, filename, content_type):
        """Store the file at path and return its URL."""


class LocalArtifactStore(ArtifactStore):
    """Copies artifacts into output_dir/<job_id>/ and returns file paths."""

    def __init__(self, output_dir):
        self.output_dir = output_dir

    def upload(self, job_id, path, filename, content_type):
        dest_dir = os.path.join(self.output_dir, str(job_id))
        dest = os.path.join(dest_dir, filename)
        try:
            os.makedirs(dest_dir, exist_ok=True)
            shutil.copyfile(path, dest)
        except OSError as e:
            raise ExportError(f"Failed to store {filename}: {e}") from e

        get_tracer().event(f"Stored {content_type} artifact {dest}")
        return os.path.abspath(dest)
