"""Image post-processing: dimension probing, downscaling and watermarking.

All functions in this module take encoded image bytes and return encoded
image bytes.  They have no side effects and produce identical output for
identical input, so they are safe to run repeatedly.  Output is always PNG
unless the input is returned untouched.

Watermark layout
----------------
Overlays are anchored to the bottom-right corner with a fixed padding.  When
both a QR code and a text label are requested, the QR code sits in the
corner and the label is stacked above it::

    +-----------------------------+
    |                             |
    |                 [ label  ]  |
    |                   [QR]      |
    +-----------------------------+
"""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass

import qrcode
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from comfybooth.core.errors import ArtifactIOError

logger = logging.getLogger(__name__)

MAX_DIMENSION = 2560

WATERMARK_PADDING = 20
QR_MAX_SIZE = 120
QR_WIDTH_RATIO = 0.15
QR_LABEL_GAP = 10
LABEL_MIN_FONT_SIZE = 16
LABEL_FONT_RATIO = 0.025
LABEL_INNER_PADDING = 10
LABEL_TEXT_FILL = (255, 255, 255, 204)
LABEL_BOX_FILL = (0, 0, 0, 77)
LABEL_BOX_RADIUS = 5


@dataclass(frozen=True)
class ImageArtifact:
    """Encoded image bytes together with their pixel dimensions."""

    data: bytes
    width: int
    height: int

    @classmethod
    def from_bytes(cls, data: bytes) -> ImageArtifact:
        width, height = get_image_dimensions(data)
        return cls(data=data, width=width, height=height)


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ArtifactIOError(f"could not decode image: {exc}") from exc
    return image


def _to_png(image: Image.Image) -> bytes:
    if image.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"):
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def get_image_dimensions(data: bytes) -> tuple[int, int]:
    """Return ``(width, height)`` of an encoded image.

    Raises:
        ArtifactIOError: If the bytes are not a decodable image.
    """
    with _open(data) as image:
        return image.size


def fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Compute the size of a ``width`` x ``height`` image scaled to fit a box.

    Sizes already inside the ``max_dimension`` square are returned unchanged.
    Otherwise ``scale = min(max/width, max/height)`` is applied to both sides
    and rounded, which keeps the aspect ratio and makes the longer side equal
    to ``max_dimension``.
    """
    if width <= max_dimension and height <= max_dimension:
        return width, height
    scale = min(max_dimension / width, max_dimension / height)
    return max(1, round(width * scale)), max(1, round(height * scale))


def resize_image(data: bytes, max_dimension: int = MAX_DIMENSION) -> bytes:
    """Downscale an image so neither side exceeds ``max_dimension``.

    Args:
        data: Encoded input image.
        max_dimension: Largest allowed width or height in pixels.

    Returns:
        ``data`` itself when the image already fits, otherwise the resized
        image encoded as PNG.

    Raises:
        ArtifactIOError: If the bytes are not a decodable image.
    """
    with _open(data) as image:
        target = fit_within(image.width, image.height, max_dimension)
        if target == image.size:
            return data
        logger.debug(f"Resizing {image.width}x{image.height} -> {target[0]}x{target[1]}")
        resized = image.resize(target, Image.Resampling.LANCZOS)
    return _to_png(resized)


def make_qr_image(content: str, size: int) -> Image.Image:
    """Render ``content`` as a black-on-white QR code of ``size`` x ``size`` pixels."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(content)
    qr.make(fit=True)
    rendered = qr.make_image(fill_color="black", back_color="white").get_image()
    return rendered.convert("RGB").resize((size, size), Image.Resampling.NEAREST)


def _label_font(size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    return ImageFont.load_default(size=size)


def add_watermark(
    data: bytes,
    text: str | None = None,
    qr_content: str | None = None,
) -> bytes:
    """Overlay a translucent text label and/or a QR code on an image.

    Args:
        data: Encoded input image.
        text: Label drawn in a translucent rounded box.
        qr_content: Payload encoded into the corner QR code.

    Returns:
        ``data`` unchanged when neither ``text`` nor ``qr_content`` is given,
        otherwise the watermarked image encoded as PNG.

    Raises:
        ArtifactIOError: If the bytes are not a decodable image.
    """
    if not text and not qr_content:
        return data

    with _open(data) as source:
        canvas = source.convert("RGBA")

    width, height = canvas.size
    bottom = WATERMARK_PADDING

    if qr_content:
        qr_size = max(1, min(QR_MAX_SIZE, math.floor(width * QR_WIDTH_RATIO)))
        qr_image = make_qr_image(qr_content, qr_size)
        left = max(0, width - qr_size - WATERMARK_PADDING)
        top = max(0, height - qr_size - bottom)
        canvas.paste(qr_image, (left, top))
        bottom += qr_size + QR_LABEL_GAP

    if text:
        font_size = max(LABEL_MIN_FONT_SIZE, math.floor(width * LABEL_FONT_RATIO))
        font = _label_font(font_size)

        overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        text_left, _, text_right, _ = draw.textbbox((0, 0), text, font=font)
        box_width = (text_right - text_left) + 2 * LABEL_INNER_PADDING
        box_height = font_size + LABEL_INNER_PADDING

        left = max(0, width - box_width - WATERMARK_PADDING)
        top = max(0, height - box_height - bottom)
        draw.rounded_rectangle(
            (left, top, left + box_width, top + box_height),
            radius=LABEL_BOX_RADIUS,
            fill=LABEL_BOX_FILL,
        )
        draw.text(
            (left + LABEL_INNER_PADDING, top + LABEL_INNER_PADDING // 2),
            text,
            font=font,
            fill=LABEL_TEXT_FILL,
        )
        canvas = Image.alpha_composite(canvas, overlay)

    return _to_png(canvas)
