"""Shared pytest fixtures for ComfyBooth tests."""

import io
import json
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from comfybooth.api.main import create_app
from comfybooth.core.config import ComfyBoothConfig


def make_png(width: int = 64, height: int = 48, color=(200, 120, 40)) -> bytes:
    """Encode a solid-colour RGB image as PNG bytes."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeClock:
    """Deterministic clock whose time only advances when ``sleep`` is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeComfyUI:
    """In-process stand-in for a ComfyUI server, served via ``httpx.MockTransport``.

    Attributes:
        output_on_check: History check (1-based) from which the job reports
            an output.  ``None`` means it never does.
        failing_checks: History checks (1-based) answered with HTTP 500.
        upload_status: Status returned by ``/upload/image``.
        prompt_status: Status returned by ``/prompt``.
        view_status: Status returned by ``/view``.
        result: Bytes served by ``/view``.
    """

    def __init__(self) -> None:
        self.prompt_id = "prompt-123"
        self.output_on_check: int | None = 1
        self.failing_checks: set[int] = set()
        self.upload_status = 200
        self.prompt_status = 200
        self.view_status = 200
        self.result = make_png(32, 32, color=(10, 200, 10))
        self.history_checks = 0
        self.uploads: list[bytes] = []
        self.submitted: list[dict] = []
        self.view_params: list[dict] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if path == "/upload/image":
            self.uploads.append(request.content)
            if self.upload_status != 200:
                return httpx.Response(self.upload_status)
            return httpx.Response(200, json={"name": "uploaded.png", "subfolder": "", "type": "input"})

        if path == "/prompt":
            if self.prompt_status != 200:
                return httpx.Response(self.prompt_status)
            self.submitted.append(json.loads(request.content))
            return httpx.Response(200, json={"prompt_id": self.prompt_id, "number": 1})

        if path == f"/history/{self.prompt_id}":
            self.history_checks += 1
            if self.history_checks in self.failing_checks:
                return httpx.Response(500)
            if self.output_on_check is None or self.history_checks < self.output_on_check:
                return httpx.Response(200, json={})
            return httpx.Response(
                200,
                json={
                    self.prompt_id: {
                        "outputs": {
                            "8": {
                                "images": [
                                    {"filename": "cartoon_00001_.png", "subfolder": "", "type": "output"}
                                ]
                            }
                        }
                    }
                },
            )

        if path == "/view":
            self.view_params.append(dict(request.url.params))
            if self.view_status != 200:
                return httpx.Response(self.view_status)
            return httpx.Response(200, content=self.result)

        return httpx.Response(404)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ComfyBoothConfig:
    """Create a test configuration with temporary directories and fast polling.

    The token ``admin-token`` resolves to the admin user ``alice``;
    ``user-token`` resolves to the regular user ``bob``.
    """
    return ComfyBoothConfig(
        _env_file=None,
        uploads_dir=temp_dir / "uploads",
        data_dir=temp_dir / "data",
        comfyui_url="http://comfy.test",
        poll_timeout=2.0,
        poll_interval=0.01,
        request_timeout=5.0,
        max_dimension=2560,
        api_tokens={"admin-token": "alice", "user-token": "bob"},
        admin_users=["alice"],
    )


@pytest.fixture
def fake_comfyui() -> FakeComfyUI:
    """A fake ComfyUI server that reports an output on the first check."""
    return FakeComfyUI()


@pytest.fixture
def fake_clock() -> FakeClock:
    """A fake clock starting at zero."""
    return FakeClock()


@pytest.fixture
def test_client(test_config: ComfyBoothConfig, fake_comfyui: FakeComfyUI) -> Generator[TestClient, None, None]:
    """FastAPI test client whose ComfyUI calls are served by ``fake_comfyui``."""
    app = create_app(test_config, comfyui_transport=fake_comfyui.transport)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def sample_png() -> bytes:
    """A small PNG photo."""
    return make_png()


@pytest.fixture
def png_factory():
    """Return :func:`make_png` so tests can build images of any size."""
    return make_png
