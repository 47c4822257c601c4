"""Image helpers bridging :class:`PixelBuffer` and Pillow."""
from __future__ import annotations

import base64
import io

import numpy as np
from PIL import Image

from .models import PixelBuffer

LANCZOS = Image.Resampling.LANCZOS

_PIL_FORMATS = {"png": "PNG", "jpg": "JPEG", "jpeg": "JPEG", "webp": "WEBP"}
_MIME_TYPES = {"png": "image/png", "jpg": "image/jpeg", "jpeg": "image/jpeg", "webp": "image/webp"}


def to_pil(buffer: PixelBuffer) -> Image.Image:
    """Return an RGBA :class:`~PIL.Image.Image` copy of *buffer*."""

    return Image.fromarray(np.ascontiguousarray(buffer.data))


def from_pil(image: Image.Image) -> PixelBuffer:
    """Normalize any Pillow image (L, LA, P, RGB, CMYK, 16-bit...) to RGBA."""

    if image.mode in ("I", "I;16", "I;16B", "I;16L", "F"):
        array = np.asarray(image, dtype=np.float64)
        peak = 65535.0 if array.max() > 255 else 255.0
        gray = np.clip(array / peak * 255.0, 0, 255).astype(np.uint8)
        return PixelBuffer.from_array(gray)
    return PixelBuffer.from_array(np.asarray(image.convert("RGBA"), dtype=np.uint8))


def mask_to_buffer(mask: np.ndarray) -> PixelBuffer:
    """Render a boolean or ``[0, 1]`` mask as an opaque grayscale buffer."""

    values = np.asarray(mask)
    if values.dtype == bool:
        gray = values.astype(np.uint8) * 255
    else:
        gray = np.clip(values.astype(np.float32) * 255.0, 0, 255).astype(np.uint8)
    return PixelBuffer.from_array(gray)


def encode_image(buffer: PixelBuffer, fmt: str = "png", quality: int = 95) -> bytes:
    """Encode *buffer* as PNG, JPEG or WebP bytes."""

    key = fmt.lower()
    if key not in _PIL_FORMATS:
        raise ValueError(f"Unsupported output format: {fmt}")
    image = to_pil(buffer)
    stream = io.BytesIO()
    if _PIL_FORMATS[key] == "JPEG":
        image.convert("RGB").save(stream, format="JPEG", quality=quality)
    elif _PIL_FORMATS[key] == "WEBP":
        image.save(stream, format="WEBP", quality=quality)
    else:
        image.save(stream, format="PNG", optimize=False)
    return stream.getvalue()


def to_data_uri(payload: bytes, fmt: str = "png") -> str:
    mime = _MIME_TYPES.get(fmt.lower(), "application/octet-stream")
    return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"


def encode_data_uri(buffer: PixelBuffer, fmt: str = "png", quality: int = 95) -> str:
    """Encode *buffer* and wrap it in a self-contained ``data:`` URI."""

    return to_data_uri(encode_image(buffer, fmt, quality), fmt)


def make_thumbnail(buffer: PixelBuffer, width: int) -> PixelBuffer:
    """Downscale *buffer* to *width* keeping the aspect ratio (never upscales)."""

    if buffer.width <= width:
        return buffer.copy()
    height = max(1, int(round(buffer.height * width / buffer.width)))
    resized = to_pil(buffer).resize((width, height), resample=LANCZOS)
    return from_pil(resized)


__all__ = [
    "LANCZOS",
    "encode_data_uri",
    "encode_image",
    "from_pil",
    "make_thumbnail",
    "mask_to_buffer",
    "to_data_uri",
    "to_pil",
]
