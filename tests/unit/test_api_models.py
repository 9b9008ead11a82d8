"""Tests for comfybooth.api.models — Pydantic request/response models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from comfybooth.api.models import (
    CartoonRequest,
    SettingUpdate,
    UploadBase64Request,
    WatermarkRequest,
)
from comfybooth.core.workflow import MAX_SEED


class TestCartoonRequest:
    def test_all_optional(self):
        req = CartoonRequest()
        assert req.image_url is None
        assert req.local_path is None
        assert req.seed is None
        assert req.comfyui_url is None

    def test_seed_bounds(self):
        assert CartoonRequest(seed=MAX_SEED).seed == MAX_SEED
        with pytest.raises(ValidationError):
            CartoonRequest(seed=-1)
        with pytest.raises(ValidationError):
            CartoonRequest(seed=MAX_SEED + 1)


class TestWatermarkRequest:
    def test_defaults(self):
        req = WatermarkRequest(image_url="/uploads/a.png")
        assert req.text_watermark is None
        assert req.qr_content is None


class TestUploadBase64Request:
    def test_required(self):
        with pytest.raises(ValidationError):
            UploadBase64Request()

    def test_empty_rejected(self):
        with pytest.raises(ValidationError):
            UploadBase64Request(image_base64="")


class TestSettingUpdate:
    def test_value_defaults_to_empty(self):
        assert SettingUpdate(key="comfyui_url").value == ""
