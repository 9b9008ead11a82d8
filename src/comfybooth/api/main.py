"""ComfyBooth — FastAPI Application.

This module defines :func:`create_app`, which builds the FastAPI application
with all REST routes, and the ``main()`` CLI function that launches the
uvicorn server.

Architecture
------------
- **Configuration** is built once by :func:`~comfybooth.core.config.load_config`
  and passed to :func:`create_app`, which stores it on ``app.state``.
  Handlers receive it through the :func:`~comfybooth.api.dependencies.get_config`
  dependency; there is no module-level configuration.
- **Generation** is delegated to ComfyUI via
  :func:`~comfybooth.core.comfyui.generate_cartoon`.  Each request opens its
  own client, so concurrent requests share nothing.
- **Artifacts** are PNG files in the uploads directory, served by
  ``StaticFiles`` at ``/uploads``.
- **History and runtime settings** are small JSON files in the data
  directory (:mod:`comfybooth.api.store`).
- **Errors** raised by the core services are mapped to HTTP statuses by a
  single exception handler.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/health``               Liveness probe
POST      ``/api/generate/upload``      Store (and downscale) a photo
POST      ``/api/generate/cartoon``     Run the ComfyUI cartoon job
POST      ``/api/generate/watermark``   Add text and/or QR watermark
GET       ``/api/generate/history``     Caller's generation history
GET       ``/api/settings``             All runtime settings
GET       ``/api/settings/{key}``       One runtime setting
POST      ``/api/settings``             Update a setting (admin)
GET       ``/uploads/{name}``           Stored artifacts
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    comfybooth

Direct invocation::

    python -m comfybooth.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from comfybooth import __version__
from comfybooth.api import store
from comfybooth.api.artifacts import (
    UPLOADS_ROUTE,
    artifact_route,
    decode_base64_image,
    public_url,
    read_artifact,
    save_artifact,
)
from comfybooth.api.auth import current_user, optional_user, require_admin
from comfybooth.api.dependencies import get_config
from comfybooth.api.models import (
    CartoonRequest,
    CartoonResponse,
    SettingUpdate,
    UploadBase64Request,
    UploadResponse,
    WatermarkRequest,
    WatermarkResponse,
)
from comfybooth.core.comfyui import ComfyUIClient, generate_cartoon
from comfybooth.core.config import ComfyBoothConfig, load_config
from comfybooth.core.errors import (
    ArtifactIOError,
    ComfyBoothError,
    GenerationTimeout,
    UpstreamError,
    ValidationError,
)
from comfybooth.core.imaging import ImageArtifact, add_watermark, resize_image
from comfybooth.core.workflow import Img2ImgWorkflow

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[ComfyBoothError], int] = {
    ValidationError: 400,
    UpstreamError: 502,
    GenerationTimeout: 504,
    ArtifactIOError: 500,
}


def _status_for(exc: ComfyBoothError) -> int:
    for error_type, status in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log where the application stores data and which ComfyUI it targets."""
    config: ComfyBoothConfig = app.state.config
    logger.info(
        f"ComfyBooth {__version__} ready (uploads={config.uploads_dir}, "
        f"data={config.data_dir}, comfyui={config.comfyui_url})"
    )
    yield
    logger.info("ComfyBooth shutting down.")


def create_app(
    config: ComfyBoothConfig | None = None,
    *,
    comfyui_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Application configuration.  Loaded from the environment when
            omitted.
        comfyui_transport: Optional httpx transport for every ComfyUI client
            the application opens.  Tests use it to fake the service.

    Returns:
        The configured application.
    """
    config = config or load_config()

    app = FastAPI(
        title="ComfyBooth",
        description="Photo-to-cartoon generation via a ComfyUI backend.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.comfyui_transport = comfyui_transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ComfyBoothError)
    async def _domain_error(request: Request, exc: ComfyBoothError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": exc.message})

    app.mount(
        UPLOADS_ROUTE,
        StaticFiles(directory=str(config.uploads_dir)),
        name="uploads",
    )
    app.include_router(_build_router())
    return app


def _build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/api/health")
    async def health() -> dict:
        """Liveness probe."""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    # -- Generation ---------------------------------------------------------

    @router.post("/api/generate/upload", response_model=UploadResponse)
    async def upload_image(
        request: Request,
        config: ComfyBoothConfig = Depends(get_config),
    ) -> UploadResponse:
        """Store an uploaded photo, downscaling it if it is too large.

        Accepts either a multipart form with an ``image`` file (or an
        ``image_base64`` field), or a JSON body matching
        :class:`UploadBase64Request`.

        Raises:
            ValidationError: 400 when no image is supplied.
            HTTPException: 413 when the image exceeds ``max_upload_bytes``.
        """
        data = await _read_upload(request)
        if not data:
            raise ValidationError("please provide an image")
        if len(data) > config.max_upload_bytes:
            raise HTTPException(status_code=413, detail="image is too large")

        resized = await run_in_threadpool(resize_image, data, config.max_dimension)
        artifact = await run_in_threadpool(ImageArtifact.from_bytes, resized)

        path = await run_in_threadpool(save_artifact, config.uploads_dir, artifact.data, "upload")
        logger.info(f"Stored upload {path.name} ({artifact.width}x{artifact.height})")

        return UploadResponse(
            url=public_url(request, artifact_route(path), config.public_base_url),
            local_path=str(path),
            width=artifact.width,
            height=artifact.height,
            resized=resized is not data,
        )

    @router.post("/api/generate/cartoon", response_model=CartoonResponse)
    async def generate(
        req: CartoonRequest,
        request: Request,
        config: ComfyBoothConfig = Depends(get_config),
        user: str | None = Depends(optional_user),
    ) -> CartoonResponse:
        """Run the cartoon workflow on a stored photo.

        The ComfyUI address is taken from the request, then from the
        ``comfyui_url`` runtime setting, then from the configuration.

        When the caller is authenticated the job is recorded in the history.

        Raises:
            ValidationError: 400 when no usable image reference is given.
            SubmissionError: 502 with the upstream's status text.
            GenerationTimeout: 504 when no result appeared in time.
        """
        image = await read_artifact(
            config.uploads_dir,
            local_path=req.local_path,
            image_url=req.image_url,
            timeout=config.request_timeout,
        )

        base_url = (
            req.comfyui_url
            or await run_in_threadpool(store.get_setting, config.data_dir, "comfyui_url")
            or config.comfyui_url
        )
        workflow = Img2ImgWorkflow(seed=req.seed)

        record = None
        if user is not None:
            record = await run_in_threadpool(
                store.create_history_record,
                config.data_dir,
                user=user,
                original_image=req.image_url or req.local_path or "",
                seed=workflow.seed,
                status="processing",
            )

        try:
            async with ComfyUIClient(
                base_url,
                timeout=config.request_timeout,
                transport=request.app.state.comfyui_transport,
            ) as client:
                job = await generate_cartoon(
                    client,
                    image,
                    workflow,
                    timeout=config.poll_timeout,
                    interval=config.poll_interval,
                )
            path = await run_in_threadpool(save_artifact, config.uploads_dir, job.result, "cartoon")
        except Exception as exc:
            message = exc.message if isinstance(exc, ComfyBoothError) else str(exc) or type(exc).__name__
            logger.error(f"Generation via {base_url} failed: {message}", exc_info=True)
            if record is not None:
                await run_in_threadpool(
                    store.update_history_record,
                    config.data_dir,
                    record["id"],
                    status="failed",
                    error=message,
                )
            raise

        result_url = public_url(request, artifact_route(path), config.public_base_url)
        if record is not None:
            await run_in_threadpool(
                store.update_history_record,
                config.data_dir,
                record["id"],
                status="completed",
                result_image=result_url,
            )

        return CartoonResponse(
            result_url=result_url,
            local_path=str(path),
            seed=workflow.seed,
            prompt_id=job.prompt_id,
        )

    @router.post("/api/generate/watermark", response_model=WatermarkResponse)
    async def watermark(
        req: WatermarkRequest,
        request: Request,
        config: ComfyBoothConfig = Depends(get_config),
    ) -> WatermarkResponse:
        """Overlay a text label and/or QR code on a stored image.

        With neither ``text_watermark`` nor ``qr_content`` the request is
        echoed back and no file is written.
        """
        if not req.text_watermark and not req.qr_content:
            return WatermarkResponse(url=req.image_url, local_path=req.local_path)

        image = await read_artifact(
            config.uploads_dir,
            local_path=req.local_path,
            image_url=req.image_url,
            timeout=config.request_timeout,
        )
        marked = await run_in_threadpool(
            add_watermark, image, req.text_watermark, req.qr_content
        )
        path = await run_in_threadpool(save_artifact, config.uploads_dir, marked, "watermarked")

        return WatermarkResponse(
            url=public_url(request, artifact_route(path), config.public_base_url),
            local_path=str(path),
        )

    @router.get("/api/generate/history")
    async def history(
        user: str = Depends(current_user),
        config: ComfyBoothConfig = Depends(get_config),
    ) -> dict:
        """Return the caller's generation history, newest first."""
        return {"history": await run_in_threadpool(store.list_history, config.data_dir, user=user)}

    # -- Runtime settings ---------------------------------------------------

    @router.get("/api/settings")
    async def get_settings(config: ComfyBoothConfig = Depends(get_config)) -> dict:
        """Return every runtime setting."""
        return await run_in_threadpool(store.load_settings, config.data_dir)

    @router.get("/api/settings/{key}")
    async def get_setting(key: str, config: ComfyBoothConfig = Depends(get_config)) -> dict:
        """Return one runtime setting; unset keys read as an empty string."""
        value = await run_in_threadpool(store.get_setting, config.data_dir, key)
        return {"key": key, "value": value or ""}

    @router.post("/api/settings")
    async def set_setting(
        req: SettingUpdate,
        admin: str = Depends(require_admin),
        config: ComfyBoothConfig = Depends(get_config),
    ) -> dict:
        """Create or overwrite a runtime setting.

        Raises:
            HTTPException: 400 if ``key`` is empty.
        """
        if not req.key.strip():
            raise HTTPException(status_code=400, detail="setting key must not be empty")
        await run_in_threadpool(store.set_setting, config.data_dir, req.key, req.value)
        logger.info(f"{admin} set runtime setting {req.key!r}")
        return {"success": True}

    return router


async def _read_upload(request: Request) -> bytes | None:
    """Extract the uploaded image bytes from a multipart or JSON request."""
    content_type = request.headers.get("content-type", "")

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        upload = form.get("image")
        if isinstance(upload, UploadFile):
            return await upload.read()
        encoded = form.get("image_base64")
        if isinstance(encoded, str) and encoded:
            return decode_base64_image(encoded)
        return None

    if content_type.startswith("application/json"):
        try:
            body = UploadBase64Request.model_validate(await request.json())
        except (ValueError, PydanticValidationError) as exc:
            raise ValidationError("please provide an image") from exc
        return decode_base64_image(body.image_base64)

    return None


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from the environment
    (``COMFYBOOTH_SERVER_HOST``, ``COMFYBOOTH_SERVER_PORT``,
    ``COMFYBOOTH_LOG_LEVEL``).  Defaults to ``0.0.0.0:3001``.

    This function is registered as the ``comfybooth`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    config = load_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        create_app(config),
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
