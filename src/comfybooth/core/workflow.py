"""Typed img2img workflow template for the ComfyUI ``/prompt`` endpoint.

ComfyUI accepts a job as a flat mapping of node id to node description, where
node inputs either hold literal values or ``[node_id, output_index]`` links
to another node's output.  Rather than hand-editing that nested structure,
callers build an :class:`Img2ImgWorkflow`, which validates every parameter at
construction time, and call :meth:`Img2ImgWorkflow.build` with the name the
service assigned to the uploaded photo.

Graph layout
------------
========  ========================  =====================================
Node id   Class                     Purpose
========  ========================  =====================================
``1``     CheckpointLoaderSimple    Load model, CLIP and VAE
``2``     LoadImage                 The uploaded photo
``3``     VAEEncode                 Photo → latent
``4``     CLIPTextEncode            Positive prompt
``5``     CLIPTextEncode            Negative prompt
``6``     KSampler                  img2img denoising pass
``7``     VAEDecode                 Latent → image
``8``     SaveImage                 The single output node
========  ========================  =====================================
"""

from __future__ import annotations

import random

from pydantic import BaseModel, ConfigDict, Field, field_validator

from comfybooth.core.errors import ValidationError

MAX_SEED = 2_147_483_646

DEFAULT_POSITIVE_PROMPT = (
    "spy x family style, anime portrait, 2d illustration, clean crisp lineart, "
    "simple shapes, soft cel shading, warm pastel palette, gentle lighting, "
    "smooth skin, elegant and cute, expressive big eyes, natural face proportions, "
    "subtle blush, neat hair strands, tidy outfit, minimal background, "
    "high quality, best quality, masterpiece"
)

DEFAULT_NEGATIVE_PROMPT = (
    "photorealistic, realism, skin pores, wrinkles, 3d, cgi, render, doll, wax, "
    "lowres, blurry, out of focus, bad face, deformed face, long face, asymmetry, "
    "cross-eye, bad anatomy, bad hands, missing fingers, extra fingers, "
    "fused fingers, mangled hands, bad teeth, watermark, text, logo, noisy, "
    "jpeg artifacts, oversaturated, harsh contrast, glitch"
)


def random_seed() -> int:
    """Return a random seed in the range accepted by the KSampler node."""
    return random.randint(0, MAX_SEED)


class Img2ImgWorkflow(BaseModel):
    """Validated parameters for the cartoon img2img job.

    Defaults reproduce the production cartoon style.  Passing ``seed=None``
    (or omitting it) draws a random seed once, at construction, so the value
    reported back to the user is the one actually sent to the service.

    Attributes:
        checkpoint: Checkpoint file name known to the ComfyUI server.
        positive_prompt: Style description for the sampler.
        negative_prompt: Features the sampler should avoid.
        seed: Sampler seed.
        steps: Number of sampling steps.
        cfg: Classifier-free guidance scale.
        sampler_name: ComfyUI sampler identifier.
        scheduler: ComfyUI scheduler identifier.
        denoise: Fraction of the photo's latent that is re-noised.
        filename_prefix: Prefix the SaveImage node uses for its output.
    """

    model_config = ConfigDict(frozen=True)

    checkpoint: str = Field(default="anything-v5.safetensors", min_length=1)
    positive_prompt: str = DEFAULT_POSITIVE_PROMPT
    negative_prompt: str = DEFAULT_NEGATIVE_PROMPT
    seed: int = Field(default_factory=random_seed, ge=0, le=MAX_SEED)
    steps: int = Field(default=26, ge=1, le=150)
    cfg: float = Field(default=6.5, gt=0, le=30)
    sampler_name: str = Field(default="euler", min_length=1)
    scheduler: str = Field(default="normal", min_length=1)
    denoise: float = Field(default=0.52, gt=0, le=1)
    filename_prefix: str = Field(default="img2img_cartoon", min_length=1)

    @field_validator("seed", mode="before")
    @classmethod
    def _draw_missing_seed(cls, value):
        if value is None:
            return random_seed()
        return value

    def build(self, uploaded_name: str) -> dict[str, dict]:
        """Render the job graph with the uploaded image substituted in.

        Args:
            uploaded_name: Name returned by the service's upload endpoint.

        Returns:
            Node id → node description mapping, ready to be sent as the
            ``prompt`` field of a ``POST /prompt`` body.

        Raises:
            ValidationError: If ``uploaded_name`` is empty.
        """
        if not uploaded_name or not uploaded_name.strip():
            raise ValidationError("uploaded image name must not be empty")

        return {
            "1": _node(
                "CheckpointLoaderSimple",
                "Load Checkpoint",
                ckpt_name=self.checkpoint,
            ),
            "2": _node("LoadImage", "Load Image", image=uploaded_name),
            "3": _node("VAEEncode", "VAE Encode", pixels=["2", 0], vae=["1", 2]),
            "4": _node(
                "CLIPTextEncode",
                "Positive Prompt",
                text=self.positive_prompt,
                clip=["1", 1],
            ),
            "5": _node(
                "CLIPTextEncode",
                "Negative Prompt",
                text=self.negative_prompt,
                clip=["1", 1],
            ),
            "6": _node(
                "KSampler",
                "KSampler (img2img)",
                seed=self.seed,
                steps=self.steps,
                cfg=self.cfg,
                sampler_name=self.sampler_name,
                scheduler=self.scheduler,
                denoise=self.denoise,
                model=["1", 0],
                positive=["4", 0],
                negative=["5", 0],
                latent_image=["3", 0],
            ),
            "7": _node("VAEDecode", "VAE Decode", samples=["6", 0], vae=["1", 2]),
            "8": _node(
                "SaveImage",
                "Save Image",
                filename_prefix=self.filename_prefix,
                images=["7", 0],
            ),
        }


def _node(class_type: str, title: str, **inputs) -> dict:
    return {
        "inputs": inputs,
        "class_type": class_type,
        "_meta": {"title": title},
    }
