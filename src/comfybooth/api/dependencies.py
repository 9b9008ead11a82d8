"""FastAPI dependencies shared by the route handlers."""

from __future__ import annotations

from fastapi import Request

from comfybooth.core.config import ComfyBoothConfig


def get_config(request: Request) -> ComfyBoothConfig:
    """Return the configuration the running application was built with."""
    return request.app.state.config
