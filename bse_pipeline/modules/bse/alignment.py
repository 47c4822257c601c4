"""Reference background cleanup and geometry matching."""
from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from PIL import ImageOps

from ...core.config import GeometryMatchConfig
from ...core.errors import BG_NOT_APPLIED, REF_CLEANUP_FAILED, StageError
from ...core.models import PixelBuffer
from ...core.utils_image import LANCZOS, from_pil, to_pil

LOGGER = logging.getLogger("bse_pipeline.bse.alignment")

CropBox = Tuple[float, float, float, float]


def cleanup_reference(background: PixelBuffer, *, enabled: bool = True) -> PixelBuffer:
    """Return an opaque copy of the reference background.

    Transparent areas are flattened onto the alpha-weighted mean colour of the
    visible pixels. Opaque references (and disabled cleanup) pass through.
    """

    if not enabled or background.is_opaque():
        return background.copy()

    alpha = background.alpha.astype(np.float64) / 255.0
    total = float(alpha.sum())
    if total <= 0.0:
        raise StageError("Reference background has no visible pixels", code=REF_CLEANUP_FAILED)

    rgb = background.rgb.astype(np.float64)
    matte = (rgb * alpha[..., None]).reshape(-1, 3).sum(axis=0) / total
    flattened = rgb * alpha[..., None] + matte * (1.0 - alpha[..., None])

    data = np.empty_like(background.data)
    data[..., :3] = np.clip(np.rint(flattened), 0, 255).astype(np.uint8)
    data[..., 3] = 255
    LOGGER.info("Flattened %.1f%% transparent reference pixels", 100.0 * float(np.mean(alpha < 1.0)))
    return PixelBuffer(background.width, background.height, data)


def cover_box(
    src_width: int,
    src_height: int,
    target_width: int,
    target_height: int,
    *,
    scale: float = 1.0,
    translate_y: float = 0.0,
) -> CropBox:
    """Source-space crop box that fills the target without distortion.

    *scale* zooms in on top of the cover scale; *translate_y* (target pixels)
    moves the background content down when positive. The box is clamped to
    the source image.
    """

    factor = max(target_width / src_width, target_height / src_height) * max(scale, 1.0)
    crop_w = target_width / factor
    crop_h = target_height / factor
    left = (src_width - crop_w) / 2.0
    top = (src_height - crop_h) / 2.0 - translate_y / factor
    top = min(max(top, 0.0), src_height - crop_h)
    return left, top, left + crop_w, top + crop_h


def align_background(
    background: PixelBuffer,
    target_width: int,
    target_height: int,
    *,
    geometry: GeometryMatchConfig = GeometryMatchConfig(),
) -> PixelBuffer:
    """Resize/crop *background* onto the subject canvas using a cover policy."""

    if target_width <= 0 or target_height <= 0:
        raise StageError(f"Invalid target canvas {target_width}x{target_height}", code=BG_NOT_APPLIED)

    image = to_pil(background)
    size = (target_width, target_height)
    if (background.width, background.height) == size and (
        not geometry.enabled or geometry.mode == "auto"
    ):
        aligned = image
    elif not geometry.enabled:
        if background.width >= target_width and background.height >= target_height:
            left = (background.width - target_width) // 2
            top = (background.height - target_height) // 2
            aligned = image.crop((left, top, left + target_width, top + target_height))
        else:
            LOGGER.info("Reference smaller than canvas; using cover scaling despite disabled geometry match")
            aligned = ImageOps.fit(image, size, method=LANCZOS, centering=(0.5, 0.5))
    elif geometry.mode == "manual":
        params = geometry.manual_params
        box = cover_box(
            background.width,
            background.height,
            target_width,
            target_height,
            scale=params.scale,
            translate_y=params.translate_y,
        )
        aligned = image.resize(size, resample=LANCZOS, box=box)
    else:
        aligned = ImageOps.fit(image, size, method=LANCZOS, centering=(0.5, 0.5))

    result = from_pil(aligned)
    if (result.width, result.height) != size:
        raise StageError(
            f"Aligned background is {result.width}x{result.height}, expected {target_width}x{target_height}",
            code=BG_NOT_APPLIED,
        )
    LOGGER.debug(
        "Aligned background %dx%d -> %dx%d (mode=%s)",
        background.width,
        background.height,
        target_width,
        target_height,
        geometry.mode if geometry.enabled else "native",
    )
    return result


__all__ = ["align_background", "cleanup_reference", "cover_box"]
