"""Alpha compositing and the post-composite touch-up passes."""
from __future__ import annotations

import logging

import numpy as np
from scipy import ndimage
from skimage.restoration import denoise_bilateral

from ...core.config import ALPHA_THRESHOLD
from ...core.errors import BG_NOT_APPLIED, StageError
from ...core.models import PixelBuffer

LOGGER = logging.getLogger("bse_pipeline.bse.compositing")

INPAINT_BAND = 2
INPAINT_MARGIN = 4


def composite(background: PixelBuffer, foreground: PixelBuffer) -> PixelBuffer:
    """Porter-Duff *over*: place *foreground* on top of *background*.

    With an opaque background this reduces to
    ``out = fg * a + bg * (1 - a)`` with an opaque result.
    """

    if background.size != foreground.size:
        raise StageError(
            f"Cannot composite {foreground.width}x{foreground.height} over "
            f"{background.width}x{background.height}",
            code=BG_NOT_APPLIED,
        )

    fg_alpha = foreground.alpha.astype(np.float64)[..., None] / 255.0
    bg_alpha = background.alpha.astype(np.float64)[..., None] / 255.0
    out_alpha = fg_alpha + bg_alpha * (1.0 - fg_alpha)

    fg = foreground.rgb.astype(np.float64)
    bg = background.rgb.astype(np.float64)
    premultiplied = fg * fg_alpha + bg * bg_alpha * (1.0 - fg_alpha)
    with np.errstate(divide="ignore", invalid="ignore"):
        rgb = np.where(out_alpha > 0.0, premultiplied / out_alpha, 0.0)

    data = np.empty_like(foreground.data)
    data[..., :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
    data[..., 3] = np.clip(np.rint(out_alpha[..., 0] * 255.0), 0, 255).astype(np.uint8)
    return PixelBuffer(foreground.width, foreground.height, data)


def add_contact_shadow(
    image: PixelBuffer,
    subject_alpha: np.ndarray,
    strength: float,
    *,
    sigma: float | None = None,
    offset: int | None = None,
    alpha_threshold: int = ALPHA_THRESHOLD,
) -> PixelBuffer:
    """Darken the background under the subject with a soft, dropped silhouette.

    Only pixels outside the subject are affected: the darkening factor is
    multiplied by ``1 - alpha`` and zeroed wherever the subject alpha reaches
    *alpha_threshold*, so subject pixels keep their composited values.
    """

    if strength <= 0.0:
        return image.copy()

    alpha = np.asarray(subject_alpha, dtype=np.float64) / 255.0
    height, width = alpha.shape
    if sigma is None:
        sigma = max(1.5, 0.015 * min(height, width))
    if offset is None:
        offset = max(1, int(round(sigma * 0.5)))

    dropped = np.zeros_like(alpha)
    if offset < height:
        dropped[offset:] = alpha[: height - offset]
    shadow = ndimage.gaussian_filter(dropped, sigma=sigma, mode="constant")
    darken = np.clip(shadow * strength * (1.0 - alpha), 0.0, 1.0)
    darken[np.asarray(subject_alpha) >= alpha_threshold] = 0.0

    data = image.data.copy()
    rgb = image.rgb.astype(np.float64) * (1.0 - darken[..., None])
    data[..., :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
    LOGGER.debug("Contact shadow: sigma=%.2f offset=%d peak=%.3f", sigma, offset, float(darken.max(initial=0.0)))
    return PixelBuffer(image.width, image.height, data)


def micro_inpaint(
    image: PixelBuffer,
    subject_alpha: np.ndarray,
    denoise: float,
    *,
    band: int = INPAINT_BAND,
    alpha_threshold: int = ALPHA_THRESHOLD,
) -> PixelBuffer:
    """Edge-preserving smoothing of the thin background ring around the subject.

    Pixels with any subject coverage are left untouched.
    """

    alpha = np.asarray(subject_alpha)
    subject = alpha >= alpha_threshold
    if denoise <= 0.0 or band <= 0 or not subject.any():
        return image.copy()

    ring = ndimage.binary_dilation(subject, iterations=band) & (alpha == 0)
    if not ring.any():
        return image.copy()

    rows = np.flatnonzero(ring.any(axis=1))
    cols = np.flatnonzero(ring.any(axis=0))
    top = max(int(rows[0]) - INPAINT_MARGIN, 0)
    bottom = min(int(rows[-1]) + INPAINT_MARGIN + 1, image.height)
    left = max(int(cols[0]) - INPAINT_MARGIN, 0)
    right = min(int(cols[-1]) + INPAINT_MARGIN + 1, image.width)

    window = image.rgb[top:bottom, left:right].astype(np.float64) / 255.0
    smoothed = denoise_bilateral(window, sigma_color=denoise, sigma_spatial=1.0, channel_axis=-1)
    local_ring = ring[top:bottom, left:right]

    data = image.data.copy()
    region = data[top:bottom, left:right, :3]
    region[local_ring] = np.clip(np.rint(smoothed[local_ring] * 255.0), 0, 255).astype(np.uint8)
    LOGGER.debug("Micro-inpaint smoothed %d ring pixels", int(np.count_nonzero(ring)))
    return PixelBuffer(image.width, image.height, data)


__all__ = ["add_contact_shadow", "composite", "micro_inpaint"]
