"""Core services for ComfyBooth.

- **config**: ``ComfyBoothConfig`` loaded from ``COMFYBOOTH_*`` environment variables
- **errors**: domain error taxonomy mapped to HTTP statuses by the API layer
- **workflow**: typed, validated img2img job graph builder
- **comfyui**: ComfyUI HTTP client, the result polling state machine and the
  ``generate_cartoon`` orchestration
- **imaging**: Pillow-based resize and watermark transforms

Nothing here knows about FastAPI; the HTTP layer lives in :mod:`comfybooth.api`.
"""

from comfybooth.core.comfyui import (
    ComfyUIClient,
    GenerationJob,
    JobStatus,
    PollState,
    ResultPoller,
    generate_cartoon,
)
from comfybooth.core.config import ComfyBoothConfig, load_config
from comfybooth.core.workflow import Img2ImgWorkflow

__all__ = [
    "ComfyBoothConfig",
    "ComfyUIClient",
    "GenerationJob",
    "Img2ImgWorkflow",
    "JobStatus",
    "PollState",
    "ResultPoller",
    "generate_cartoon",
    "load_config",
]
