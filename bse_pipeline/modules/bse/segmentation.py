"""Subject segmentation and matting stages."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Tuple

import numpy as np
from scipy import ndimage

from ...core.config import ALPHA_THRESHOLD, MAX_SUBJECT_COVERAGE, MIN_SUBJECT_COVERAGE
from ...core.errors import MASK_SUBJECT_TOO_LARGE, MASK_SUBJECT_TOO_SMALL, SegmentationError
from ...core.models import PixelBuffer, SegmentationMasks

LOGGER = logging.getLogger("bse_pipeline.bse.segmentation")

# (x0, y0, x1, y1) as fractions of the frame; lower bounds inclusive, upper exclusive.
Box = Tuple[float, float, float, float]

WHITE_THRESHOLD = 240
MATTE_FEATHER_SIGMA = 1.0


class Segmenter(Protocol):
    """Anything that turns a subject raster into three exclusive region masks."""

    def segment(self, subject: PixelBuffer) -> SegmentationMasks:
        ...


def _box_mask(width: int, height: int, box: Box) -> np.ndarray:
    x0, y0, x1, y1 = box
    xs = np.arange(width, dtype=np.float64)
    ys = np.arange(height, dtype=np.float64)
    in_x = (xs >= x0 * width) & (xs < x1 * width)
    in_y = (ys >= y0 * height) & (ys < y1 * height)
    return in_y[:, None] & in_x[None, :]


@dataclass(frozen=True)
class BoundingBoxSegmenter:
    """Placeholder segmenter assigning fixed fractional boxes of the frame.

    The centre box is treated as garment and a narrow top box as face/hair.
    Replace with a model-backed :class:`Segmenter` for production use.
    """

    alpha_threshold: int = ALPHA_THRESHOLD
    garment_box: Box = (0.25, 0.3, 0.75, 0.8)
    skin_box: Box = (0.4, 0.0, 0.6, 0.25)

    def segment(self, subject: PixelBuffer) -> SegmentationMasks:
        opaque = subject.alpha >= self.alpha_threshold
        garment = _box_mask(subject.width, subject.height, self.garment_box) & opaque
        skin = _box_mask(subject.width, subject.height, self.skin_box) & opaque & ~garment
        masks = SegmentationMasks.from_masks(garment, skin, opaque)
        LOGGER.debug(
            "Segmented %dx%d: garment=%d skin=%d subject=%.3f",
            subject.width,
            subject.height,
            int(np.count_nonzero(garment)),
            int(np.count_nonzero(skin)),
            masks.coverage,
        )
        return masks


def check_subject_coverage(
    masks: SegmentationMasks,
    *,
    min_coverage: float = MIN_SUBJECT_COVERAGE,
    max_coverage: float = MAX_SUBJECT_COVERAGE,
) -> float:
    """Raise :class:`SegmentationError` when the subject area is implausible."""

    coverage = masks.coverage
    if coverage > max_coverage:
        raise SegmentationError(
            f"Subject covers {coverage:.1%} of the frame (max {max_coverage:.0%})",
            code=MASK_SUBJECT_TOO_LARGE,
        )
    if coverage < min_coverage:
        raise SegmentationError(
            f"Subject covers {coverage:.2%} of the frame (min {min_coverage:.1%})",
            code=MASK_SUBJECT_TOO_SMALL,
        )
    return coverage


def auto_matte(
    source: PixelBuffer,
    *,
    white_threshold: int = WHITE_THRESHOLD,
    feather_sigma: float = MATTE_FEATHER_SIGMA,
) -> PixelBuffer:
    """Synthesize alpha for an opaque photo shot on a white backdrop.

    Near-white regions touching the frame border become transparent; white
    areas enclosed by the subject are kept.
    """

    rgb = source.rgb
    near_white = np.all(rgb > white_threshold, axis=2)
    labeled, count = ndimage.label(near_white)
    backdrop = np.zeros_like(near_white)
    if count:
        border = np.concatenate((labeled[0, :], labeled[-1, :], labeled[:, 0], labeled[:, -1]))
        border_labels = np.unique(border[border > 0])
        backdrop = np.isin(labeled, border_labels)

    matte = np.where(backdrop, 0.0, 255.0)
    if feather_sigma > 0:
        # feather inward only so no backdrop colour bleeds into the fringe
        matte = np.minimum(ndimage.gaussian_filter(matte, sigma=feather_sigma, mode="nearest"), matte)
    alpha = np.minimum(np.rint(matte), source.alpha.astype(np.float64))

    data = source.data.copy()
    data[..., 3] = np.clip(alpha, 0, 255).astype(np.uint8)
    LOGGER.info(
        "Auto-matte removed %.1f%% of the frame as white backdrop",
        100.0 * float(np.count_nonzero(backdrop)) / max(backdrop.size, 1),
    )
    return PixelBuffer(source.width, source.height, data)


__all__ = ["BoundingBoxSegmenter", "Segmenter", "auto_matte", "check_subject_coverage"]
