"""Upload-directory helpers for image artifacts.

Every image ComfyBooth produces (resized uploads, generation results,
watermarked copies) is written once to the uploads directory under a random
name and served back under ``/uploads/<name>``.  Random names mean
concurrent requests never write the same file, so no locking is needed.

Requests refer to earlier artifacts either by ``local_path`` (the path
returned at creation time) or by ``image_url``.  Both are resolved here so
route handlers only ever deal with bytes.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import uuid
from pathlib import Path
from urllib.parse import urlsplit

import httpx
from fastapi import Request

from comfybooth.core.errors import ArtifactIOError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

UPLOADS_ROUTE = "/uploads"

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def save_artifact(uploads_dir: Path, data: bytes, prefix: str) -> Path:
    """Write ``data`` to ``<prefix>_<random>.png`` and return the path.

    Raises:
        ArtifactIOError: If the file cannot be written.
    """
    path = uploads_dir / f"{prefix}_{uuid.uuid4().hex}.png"
    try:
        path.write_bytes(data)
    except OSError as exc:
        raise ArtifactIOError(f"could not write {path.name}: {exc}") from exc
    return path


def artifact_route(path: Path) -> str:
    """Return the server-relative URL an artifact is served under."""
    return f"{UPLOADS_ROUTE}/{path.name}"


def public_url(request: Request, relative_path: str, base_url: str | None = None) -> str:
    """Build an absolute URL for a server-relative path.

    ``base_url`` (the configured public base) wins when set; otherwise the
    scheme and host of the incoming request are used.

    Args:
        request: The incoming request.
        relative_path: Path such as ``/uploads/x.png``.
        base_url: Optional deployment base URL.

    Returns:
        Absolute URL without duplicate slashes at the join.
    """
    base = base_url or f"{request.url.scheme}://{request.url.netloc}"
    return base.rstrip("/") + "/" + relative_path.lstrip("/")


def decode_base64_image(value: str) -> bytes:
    """Decode a bare base64 string or a ``data:image/...;base64,`` URL.

    Raises:
        ValidationError: If the value is not valid base64.
    """
    payload = _DATA_URL_PREFIX.sub("", value.strip(), count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("image_base64 is not valid base64 data") from exc


def _inside(path: Path, directory: Path) -> bool:
    return path.resolve().is_relative_to(directory.resolve())


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ArtifactIOError(f"could not read {path.name}: {exc}") from exc


async def read_artifact(
    uploads_dir: Path,
    *,
    local_path: str | None = None,
    image_url: str | None = None,
    timeout: float = 30.0,
    client: httpx.AsyncClient | None = None,
) -> bytes:
    """Load the bytes of an artifact referenced by path or URL.

    Resolution order:

    1. ``local_path``, when it exists.  It must lie inside ``uploads_dir``.
    2. ``image_url`` whose path starts with ``/uploads/`` and whose file
       exists locally, read from ``uploads_dir`` by basename.
    3. Any other ``http(s)`` ``image_url``, downloaded.

    Args:
        uploads_dir: The artifact directory.
        local_path: Path returned when the artifact was created.
        image_url: Relative or absolute artifact URL.
        timeout: Download timeout in seconds.
        client: Optional HTTP client to download with.

    Returns:
        The artifact bytes.

    Raises:
        ValidationError: If neither reference is usable, or ``local_path``
            points outside ``uploads_dir``.
        ArtifactIOError: If a local file cannot be read.
        UpstreamError: If a remote download fails.
    """
    if not local_path and not image_url:
        raise ValidationError("please provide an image")

    if local_path:
        path = Path(local_path)
        if not _inside(path, uploads_dir):
            raise ValidationError("local_path must point into the uploads directory")
        if path.is_file():
            return _read(path)

    if image_url:
        parts = urlsplit(image_url)
        if parts.path.startswith(UPLOADS_ROUTE + "/"):
            candidate = uploads_dir / Path(parts.path).name
            if candidate.is_file():
                return _read(candidate)
            if not parts.scheme:
                raise ArtifactIOError(f"artifact {candidate.name} does not exist")

        if parts.scheme in ("http", "https"):
            return await _download(image_url, timeout=timeout, client=client)

    raise ValidationError("could not read the image")


async def _download(url: str, *, timeout: float, client: httpx.AsyncClient | None) -> bytes:
    logger.info(f"Downloading artifact from {url}")
    try:
        if client is not None:
            response = await client.get(url, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await owned.get(url)
    except httpx.HTTPError as exc:
        raise UpstreamError(str(exc) or type(exc).__name__) from exc

    if not response.is_success:
        raise UpstreamError(response.reason_phrase, status_code=response.status_code)
    return response.content
