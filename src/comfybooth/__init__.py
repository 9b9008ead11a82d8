"""ComfyBooth - photo-to-cartoon front end for a ComfyUI generation backend."""

__version__ = "0.1.0"

from comfybooth.core.config import ComfyBoothConfig, load_config

__all__ = [
    "ComfyBoothConfig",
    "load_config",
]
