"""Tests for photo providers and artifact stores."""

import os

import pytest
import requests

from conftest import data_url
from fieldmark.errors import ExportError, PhotoFetchError
from fieldmark.export.sources import LocalArtifactStore, SourceUrlPhotoProvider
from fieldmark.models import PhotoRecord


class _FakeResponse:
    def __init__(self, content, status=200):
        self.content = content
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class _FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


class TestSourceUrlPhotoProvider:
    """Tests for SourceUrlPhotoProvider."""

    def test_data_url(self, photo_jpeg):
        photo = PhotoRecord(id=1, filename="a.jpg", source_url=data_url(photo_jpeg), annotation_data={"rects": []})

        payload = SourceUrlPhotoProvider().load(photo)

        assert payload.image_bytes == photo_jpeg
        assert payload.annotation_data == {"rects": []}

    def test_relative_file(self, temp_dir, photo_jpeg):
        with open(os.path.join(temp_dir, "a.jpg"), "wb") as f:
            f.write(photo_jpeg)
        photo = PhotoRecord(id=1, filename="a.jpg", source_url="a.jpg")

        assert SourceUrlPhotoProvider(base_dir=temp_dir).load(photo).image_bytes == photo_jpeg

    def test_file_url(self, temp_dir, photo_jpeg):
        path = os.path.join(temp_dir, "b.jpg")
        with open(path, "wb") as f:
            f.write(photo_jpeg)

        assert SourceUrlPhotoProvider().fetch("file://" + path) == photo_jpeg

    def test_http(self):
        session = _FakeSession(_FakeResponse(b"jpeg-bytes"))
        provider = SourceUrlPhotoProvider(timeout=5, session=session)

        assert provider.fetch("https://cdn.example.com/a.jpg") == b"jpeg-bytes"
        assert session.calls == [("https://cdn.example.com/a.jpg", 5)]

    def test_http_status_error(self):
        provider = SourceUrlPhotoProvider(session=_FakeSession(_FakeResponse(b"", status=404)))

        with pytest.raises(PhotoFetchError):
            provider.fetch("https://cdn.example.com/missing.jpg")

    def test_http_connection_error(self):
        provider = SourceUrlPhotoProvider(session=_FakeSession(requests.ConnectionError("down")))

        with pytest.raises(PhotoFetchError):
            provider.fetch("http://cdn.example.com/a.jpg")

    def test_missing_file(self, temp_dir):
        with pytest.raises(PhotoFetchError):
            SourceUrlPhotoProvider(base_dir=temp_dir).fetch("nope.jpg")

    def test_missing_source(self):
        with pytest.raises(PhotoFetchError):
            SourceUrlPhotoProvider().load(PhotoRecord(id=9, filename="x.jpg"))


class TestLocalArtifactStore:
    """Tests for LocalArtifactStore."""

    def test_upload_copies(self, temp_dir):
        src = os.path.join(temp_dir, "export.zip")
        with open(src, "wb") as f:
            f.write(b"PK")
        store = LocalArtifactStore(os.path.join(temp_dir, "out"))

        url = store.upload("job1", src, "final.zip", "application/zip")

        assert url == os.path.abspath(os.path.join(temp_dir, "out", "job1", "final.zip"))
        with open(url, "rb") as f:
            assert f.read() == b"PK"
        assert os.path.exists(src)

    def test_upload_missing_source(self, temp_dir):
        store = LocalArtifactStore(temp_dir)

        with pytest.raises(ExportError):
            store.upload("job1", os.path.join(temp_dir, "missing.zip"), "x.zip", "application/zip")
