"""Quality metrics and pass/fail gating for a finished composite."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from skimage.metrics import structural_similarity

from ...core.config import ALPHA_THRESHOLD, FIDELITY_MIN, GARMENT_DELTA_E_MAX, LEAKAGE_MAX
from ...core.errors import COMPOSITE_NOT_APPLIED, WARN_GARMENT_DRIFT, WARN_REF_BG_FIDELITY
from ...core.models import BSEMetrics, PixelBuffer, SegmentationMasks
from ...core.utils_color import mean_delta_e, rgb_to_lab_array

LOGGER = logging.getLogger("bse_pipeline.bse.validation")

SSIM_WINDOW = 7
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


@dataclass(frozen=True)
class ValidationOutcome:
    passed: bool
    warnings: List[str] = field(default_factory=list)
    error_code: Optional[str] = None


def region_ssim(image_a: PixelBuffer, image_b: PixelBuffer, region: np.ndarray) -> float:
    """SSIM between the luma planes of two buffers, averaged over *region*.

    Returns ``0.0`` for an empty region. Values are clipped to ``[0, 1]``.
    """

    region = np.asarray(region, dtype=bool)
    if not region.any():
        return 0.0
    a = np.dot(image_a.rgb.astype(np.float64), LUMA_WEIGHTS)
    b = np.dot(image_b.rgb.astype(np.float64), LUMA_WEIGHTS)
    win_size = min(SSIM_WINDOW, image_a.height, image_a.width)
    if win_size % 2 == 0:
        win_size -= 1
    if win_size < 3:
        # too small for a sliding window; fall back to a normalized absolute difference
        similarity = 1.0 - np.abs(a - b) / 255.0
    else:
        _, similarity = structural_similarity(a, b, win_size=win_size, data_range=255.0, full=True)
    return float(np.clip(similarity[region].mean(), 0.0, 1.0))


def region_delta_e(before: PixelBuffer, after: PixelBuffer, region: np.ndarray) -> float:
    """Mean CIE76 difference between two buffers over *region* (``0.0`` if empty)."""

    region = np.asarray(region, dtype=bool)
    if not region.any():
        return 0.0
    return mean_delta_e(rgb_to_lab_array(before.rgb[region]), rgb_to_lab_array(after.rgb[region]))


def compute_metrics(
    *,
    source: PixelBuffer,
    reference: PixelBuffer,
    final: PixelBuffer,
    subject_alpha: np.ndarray,
    masks: SegmentationMasks,
    pre_harmonize: PixelBuffer,
    post_harmonize: PixelBuffer,
    alpha_threshold: int = ALPHA_THRESHOLD,
) -> BSEMetrics:
    """Measure a finished composite.

    Fidelity compares *final* with the aligned *reference* over pixels the
    subject does not cover. Leakage compares it with the loaded *source*,
    but only where the source background was actually visible; RGB hidden
    under transparent source pixels is never scored.
    """

    background = np.asarray(subject_alpha) < alpha_threshold
    visible_source_bg = background & (source.alpha >= alpha_threshold)
    metrics = BSEMetrics(
        ref_bg_fidelity=region_ssim(final, reference, background),
        src_bg_leakage=region_ssim(final, source, visible_source_bg),
        garment_delta_e=region_delta_e(pre_harmonize, post_harmonize, masks.garment),
        skin_delta_e=region_delta_e(pre_harmonize, post_harmonize, masks.skin),
    )
    LOGGER.debug("Metrics: %s", metrics.as_dict())
    return metrics


def validate(
    metrics: BSEMetrics,
    *,
    leakage_max: float = LEAKAGE_MAX,
    fidelity_min: float = FIDELITY_MIN,
    garment_delta_e_max: float = GARMENT_DELTA_E_MAX,
) -> ValidationOutcome:
    """Apply the gating rules; every rule is evaluated."""

    warnings: List[str] = []
    error_code: Optional[str] = None
    if metrics.src_bg_leakage > leakage_max:
        error_code = COMPOSITE_NOT_APPLIED
        LOGGER.warning("Source background leakage %.3f exceeds %.2f", metrics.src_bg_leakage, leakage_max)
    if metrics.ref_bg_fidelity < fidelity_min:
        warnings.append(WARN_REF_BG_FIDELITY)
    if metrics.garment_delta_e > garment_delta_e_max:
        warnings.append(WARN_GARMENT_DRIFT)
    return ValidationOutcome(passed=error_code is None, warnings=warnings, error_code=error_code)


__all__ = ["ValidationOutcome", "compute_metrics", "region_delta_e", "region_ssim", "validate"]
