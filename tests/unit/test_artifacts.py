"""Tests for comfybooth.api.artifacts — artifact storage and resolution."""

from __future__ import annotations

import asyncio
import base64

import httpx
import pytest

from comfybooth.api.artifacts import (
    artifact_route,
    decode_base64_image,
    read_artifact,
    save_artifact,
)
from comfybooth.core.errors import ArtifactIOError, UpstreamError, ValidationError


@pytest.fixture
def uploads_dir(temp_dir):
    path = temp_dir / "uploads"
    path.mkdir()
    return path


class TestSaveArtifact:
    def test_random_prefixed_names(self, uploads_dir):
        first = save_artifact(uploads_dir, b"one", "upload")
        second = save_artifact(uploads_dir, b"two", "upload")
        assert first != second
        assert first.name.startswith("upload_") and first.suffix == ".png"
        assert first.read_bytes() == b"one"

    def test_route(self, uploads_dir):
        path = save_artifact(uploads_dir, b"x", "cartoon")
        assert artifact_route(path) == f"/uploads/{path.name}"

    def test_unwritable_directory(self, temp_dir):
        with pytest.raises(ArtifactIOError):
            save_artifact(temp_dir / "missing", b"x", "upload")


class TestDecodeBase64:
    def test_data_url(self):
        encoded = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode()
        assert decode_base64_image(encoded) == b"png-bytes"

    def test_bare_base64(self):
        assert decode_base64_image(base64.b64encode(b"abc").decode()) == b"abc"

    def test_invalid(self):
        with pytest.raises(ValidationError):
            decode_base64_image("data:image/png;base64,@@@")


class TestReadArtifact:
    def _read(self, uploads_dir, **kwargs):
        return asyncio.run(read_artifact(uploads_dir, **kwargs))

    def test_nothing_given(self, uploads_dir):
        with pytest.raises(ValidationError):
            self._read(uploads_dir)

    def test_local_path(self, uploads_dir):
        path = save_artifact(uploads_dir, b"local", "upload")
        assert self._read(uploads_dir, local_path=str(path)) == b"local"

    def test_local_path_outside_uploads_rejected(self, uploads_dir, temp_dir):
        outside = temp_dir / "secret.txt"
        outside.write_bytes(b"secret")
        with pytest.raises(ValidationError):
            self._read(uploads_dir, local_path=str(outside))

    def test_traversal_rejected(self, uploads_dir):
        with pytest.raises(ValidationError):
            self._read(uploads_dir, local_path=str(uploads_dir / ".." / "x.png"))

    def test_relative_upload_url(self, uploads_dir):
        path = save_artifact(uploads_dir, b"rel", "upload")
        assert self._read(uploads_dir, image_url=f"/uploads/{path.name}") == b"rel"

    def test_absolute_upload_url_read_locally(self, uploads_dir):
        path = save_artifact(uploads_dir, b"abs", "upload")
        url = f"http://booth.example/uploads/{path.name}"
        assert self._read(uploads_dir, image_url=url) == b"abs"

    def test_missing_relative_upload(self, uploads_dir):
        with pytest.raises(ArtifactIOError):
            self._read(uploads_dir, image_url="/uploads/nope.png")

    def test_stale_local_path_falls_back_to_url(self, uploads_dir):
        path = save_artifact(uploads_dir, b"fallback", "upload")
        assert (
            self._read(
                uploads_dir,
                local_path=str(uploads_dir / "gone.png"),
                image_url=f"/uploads/{path.name}",
            )
            == b"fallback"
        )

    def test_remote_download(self, uploads_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"remote")

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await read_artifact(
                    uploads_dir, image_url="https://cdn.example/p.png", client=client
                )

        assert asyncio.run(run()) == b"remote"

    def test_remote_download_failure(self, uploads_dir):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await read_artifact(
                    uploads_dir, image_url="https://cdn.example/p.png", client=client
                )

        with pytest.raises(UpstreamError, match="Not Found"):
            asyncio.run(run())

    def test_unsupported_url(self, uploads_dir):
        with pytest.raises(ValidationError):
            self._read(uploads_dir, image_url="ftp://example/p.png")
