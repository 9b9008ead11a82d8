"""Configuration management for ComfyBooth.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the COMFYBOOTH_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (COMFYBOOTH_* prefix)
2. .env file in the project root
3. Default values defined in ComfyBoothConfig

Example .env file:
    COMFYBOOTH_COMFYUI_URL=http://192.168.1.20:8188
    COMFYBOOTH_POLL_TIMEOUT=240
    COMFYBOOTH_UPLOADS_DIR=/srv/comfybooth/uploads
    COMFYBOOTH_API_TOKENS={"s3cret-token": "admin"}
    COMFYBOOTH_ADMIN_USERS=["admin"]

Explicit Configuration
----------------------
There is no module-level configuration instance.  The server entry point
calls :func:`load_config` once and hands the result to
:func:`comfybooth.api.main.create_app`, which stores it on ``app.state``.
Route handlers receive it through a FastAPI dependency, so tests can build an
application around any ``ComfyBoothConfig`` they like.

Usage Example
-------------
    from comfybooth.core.config import load_config

    config = load_config()
    print(config.comfyui_url)
    print(config.uploads_dir)

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- uploads_dir: uploaded photos, generation results and watermarked images
- data_dir: ``history.json`` and ``settings.json``

See Also
--------
- ComfyBoothConfig: Full configuration class documentation
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_COMFYUI_URL = "http://127.0.0.1:8188"


class ComfyBoothConfig(BaseSettings):
    """Main configuration for ComfyBooth.

    Values are loaded from environment variables with the COMFYBOOTH_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Upstream Service:
        comfyui_url : str
            Base address of the ComfyUI server.  May be overridden per request
            or by the ``comfyui_url`` runtime setting.
        poll_timeout : float
            Upper bound, in seconds, on how long a generation job is polled.
        poll_interval : float
            Fixed wait, in seconds, between two history checks.
        request_timeout : float
            Timeout, in seconds, applied to every individual upstream call.

    Images:
        max_dimension : int
            Uploads larger than this on either side are downscaled.
        max_upload_bytes : int
            Largest accepted upload body.

    Paths:
        uploads_dir : Path
            Directory holding every image artifact served under ``/uploads``.
        data_dir : Path
            Directory holding the JSON history and settings files.

    Access:
        public_base_url : str | None
            Base used when building absolute artifact URLs.  When unset, the
            scheme and host of the incoming request are used.
        api_tokens : dict[str, str]
            Opaque bearer token to user identity mapping.
        admin_users : list[str]
            Identities allowed to change runtime settings.

    Server:
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Port for uvicorn.
        log_level : str
            Root logging level configured by ``main()``.

    Examples
    --------
        >>> custom_config = ComfyBoothConfig(
        ...     comfyui_url="http://gpu-box:8188",
        ...     poll_timeout=60,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COMFYBOOTH_",
        case_sensitive=False,
    )

    # Upstream service
    comfyui_url: str = Field(
        default=DEFAULT_COMFYUI_URL,
        description="Base address of the ComfyUI server",
    )
    poll_timeout: float = Field(
        default=180.0,
        description="Maximum seconds to wait for a generation result",
        gt=0,
    )
    poll_interval: float = Field(
        default=1.0,
        description="Seconds between two history checks",
        gt=0,
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout for each upstream HTTP call",
        gt=0,
    )

    # Images
    max_dimension: int = Field(
        default=2560,
        description="Uploads larger than this on either side are downscaled",
        ge=64,
    )
    max_upload_bytes: int = Field(
        default=50 * 1024 * 1024,
        description="Largest accepted upload body in bytes",
        gt=0,
    )

    # Paths
    uploads_dir: Path = Field(
        default=Path("uploads"),
        description="Directory for uploaded and generated images",
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for history and settings JSON files",
    )

    # Access
    public_base_url: str | None = Field(
        default=None,
        description="Base for absolute artifact URLs (falls back to the request host)",
    )
    api_tokens: dict[str, str] = Field(
        default_factory=dict,
        description="Bearer token -> user identity",
    )
    admin_users: list[str] = Field(
        default_factory=list,
        description="Identities allowed to change runtime settings",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3001,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logging level",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)


def load_config(**overrides) -> ComfyBoothConfig:
    """Build a configuration from the environment plus explicit overrides.

    Args:
        **overrides: Field values that take precedence over the environment.

    Returns:
        A fresh ``ComfyBoothConfig`` instance.
    """
    return ComfyBoothConfig(**overrides)
