"""Pydantic request and response models for the ComfyBooth API.

These models define the JSON schema for every API endpoint.  FastAPI uses
them for automatic request validation, serialisation, and OpenAPI
documentation generation.

Models
------
UploadBase64Request
    JSON alternative to a multipart upload for ``POST /api/generate/upload``.
UploadResponse
    Reply of ``POST /api/generate/upload``.
CartoonRequest / CartoonResponse
    ``POST /api/generate/cartoon``.
WatermarkRequest / WatermarkResponse
    ``POST /api/generate/watermark``.
SettingUpdate
    Payload for ``POST /api/settings``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from comfybooth.core.workflow import MAX_SEED


class ArtifactReference(BaseModel):
    """Fields shared by requests that operate on an existing artifact.

    Attributes:
        image_url: URL returned by an earlier call, relative or absolute.
        local_path: Local path returned by an earlier call.
    """

    image_url: str | None = Field(
        default=None,
        description="Artifact URL returned by an earlier call.",
    )
    local_path: str | None = Field(
        default=None,
        description="Artifact path returned by an earlier call.",
    )


class UploadBase64Request(BaseModel):
    """Request body for a JSON upload.

    Attributes:
        image_base64: Base64 image data, optionally as a ``data:`` URL.
    """

    image_base64: str = Field(
        ...,
        min_length=1,
        description="Base64 image data, optionally prefixed with 'data:image/...;base64,'.",
    )


class UploadResponse(BaseModel):
    """Reply of ``POST /api/generate/upload``.

    Attributes:
        url: Absolute URL of the stored (possibly resized) photo.
        local_path: Server-side path of the stored photo.
        width: Width of the stored photo in pixels.
        height: Height of the stored photo in pixels.
        resized: Whether the photo was downscaled.
    """

    url: str
    local_path: str
    width: int
    height: int
    resized: bool


class CartoonRequest(ArtifactReference):
    """Request body for ``POST /api/generate/cartoon``.

    Attributes:
        seed: Sampler seed.  ``None`` means the server picks a random seed.
        comfyui_url: Optional ComfyUI address overriding the configured one.
    """

    seed: int | None = Field(
        default=None,
        ge=0,
        le=MAX_SEED,
        description="Sampler seed.  None = server picks a random seed.",
    )
    comfyui_url: str | None = Field(
        default=None,
        description="ComfyUI address overriding the configured one.",
    )


class CartoonResponse(BaseModel):
    """Reply of ``POST /api/generate/cartoon``."""

    success: bool = True
    result_url: str
    local_path: str
    seed: int
    prompt_id: str


class WatermarkRequest(ArtifactReference):
    """Request body for ``POST /api/generate/watermark``.

    Attributes:
        text_watermark: Label drawn in the bottom-right corner.
        qr_content: Payload of the corner QR code.
    """

    text_watermark: str | None = Field(
        default=None,
        description="Text label drawn in the bottom-right corner.",
    )
    qr_content: str | None = Field(
        default=None,
        description="Payload encoded into the corner QR code.",
    )


class WatermarkResponse(BaseModel):
    """Reply of ``POST /api/generate/watermark``."""

    url: str | None
    local_path: str | None


class SettingUpdate(BaseModel):
    """Request body for ``POST /api/settings``."""

    key: str = Field(..., description="Setting name.")
    value: str = Field(default="", description="Setting value.")
