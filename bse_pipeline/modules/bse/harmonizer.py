"""Region-weighted colour harmonization of the subject in CIE Lab."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ...core.config import ALPHA_THRESHOLD, STATS_STRIDE, HarmonizeConfig, HarmonizeWeights
from ...core.models import LABEL_GARMENT, LABEL_OTHER, LABEL_SKIN, BackgroundStats, PixelBuffer, SegmentationMasks
from ...core.utils_color import calculate_stats, lab_to_rgb_array, rgb_to_lab_array
from ...core.utils_parallel import map_row_chunks

LOGGER = logging.getLogger("bse_pipeline.bse.harmonizer")

DEFAULT_LUMINANCE_DAMPING = 0.5
DEFAULT_GARMENT_MAX_DELTA = 4.0


def extract_background_stats(
    pixels: PixelBuffer,
    mask: Optional[np.ndarray] = None,
    *,
    stride: int = STATS_STRIDE,
    alpha_threshold: int = ALPHA_THRESHOLD,
) -> BackgroundStats:
    """Mean/std Lab of every *stride*-th pixel, skipping *mask* and near-transparent pixels."""

    flat = pixels.data.reshape(-1, 4)[:: max(int(stride), 1)]
    keep = flat[:, 3] >= alpha_threshold
    if mask is not None:
        keep &= ~np.asarray(mask, dtype=bool).reshape(-1)[:: max(int(stride), 1)]
    stats = calculate_stats(rgb_to_lab_array(flat[keep, :3]))
    LOGGER.debug(
        "Background stats over %d samples: L=%.2f a=%.2f b=%.2f",
        stats.samples,
        stats.mean_l,
        stats.mean_a,
        stats.mean_b,
    )
    return stats


def _region_weight_table(weights: HarmonizeWeights) -> np.ndarray:
    table = np.zeros((3, 2), dtype=np.float64)
    table[LABEL_GARMENT] = (weights.garment.luminance, weights.garment.chrominance)
    table[LABEL_SKIN] = (weights.skin_hair.luminance, weights.skin_hair.chrominance)
    table[LABEL_OTHER] = (weights.others.luminance, weights.others.chrominance)
    return table


def transfer_lab(
    lab: np.ndarray,
    labels: np.ndarray,
    stats: BackgroundStats,
    weights: HarmonizeWeights,
    *,
    luminance_damping: float = DEFAULT_LUMINANCE_DAMPING,
    garment_max_delta: float = DEFAULT_GARMENT_MAX_DELTA,
) -> np.ndarray:
    """Shift ``(N, 3)`` Lab values toward the background statistics.

    ``L' = L + (meanL - L) * wL * damping`` and ``c' = c + (meanC - c) * wC``
    for the chroma channels, with the chroma drift of garment pixels clamped
    to ``garment_max_delta``.
    """

    lab = np.asarray(lab, dtype=np.float64)
    labels = np.asarray(labels)
    table = _region_weight_table(weights)
    w_l = table[labels, 0]
    w_c = table[labels, 1]

    out = np.empty_like(lab)
    out[:, 0] = lab[:, 0] + (stats.mean_l - lab[:, 0]) * w_l * luminance_damping
    delta_a = (stats.mean_a - lab[:, 1]) * w_c
    delta_b = (stats.mean_b - lab[:, 2]) * w_c

    garment = labels == LABEL_GARMENT
    if garment.any():
        delta_a[garment] = np.clip(delta_a[garment], -garment_max_delta, garment_max_delta)
        delta_b[garment] = np.clip(delta_b[garment], -garment_max_delta, garment_max_delta)

    out[:, 1] = lab[:, 1] + delta_a
    out[:, 2] = lab[:, 2] + delta_b
    return out


def harmonize(
    subject: PixelBuffer,
    masks: SegmentationMasks,
    bg_stats: BackgroundStats,
    weights: HarmonizeWeights,
    *,
    enabled: bool = True,
    luminance_damping: float = DEFAULT_LUMINANCE_DAMPING,
    garment_max_delta: float = DEFAULT_GARMENT_MAX_DELTA,
    max_workers: Optional[int] = None,
) -> PixelBuffer:
    """Apply the split luminance/chrominance transfer to garment and skin pixels.

    Pixels outside both masks, including every transparent pixel, keep their
    bytes. Alpha is never modified.
    """

    if not enabled:
        return subject
    if masks.shape != (subject.height, subject.width):
        raise ValueError(f"Mask shape {masks.shape} does not match subject {subject.height}x{subject.width}")

    result = subject.data.copy()
    labels = masks.labels

    def _process_rows(start: int, stop: int) -> None:
        band_labels = labels[start:stop]
        active = band_labels != LABEL_OTHER
        if not active.any():
            return
        band = result[start:stop]
        lab = rgb_to_lab_array(band[..., :3][active])
        shifted = transfer_lab(
            lab,
            band_labels[active],
            bg_stats,
            weights,
            luminance_damping=luminance_damping,
            garment_max_delta=garment_max_delta,
        )
        rgb = band[..., :3]
        rgb[active] = lab_to_rgb_array(shifted)

    map_row_chunks(_process_rows, subject.height, max_workers=max_workers)
    LOGGER.debug(
        "Harmonized %d garment and %d skin pixels",
        int(np.count_nonzero(labels == LABEL_GARMENT)),
        int(np.count_nonzero(labels == LABEL_SKIN)),
    )
    return PixelBuffer(subject.width, subject.height, result)


def spill_fix(
    subject: PixelBuffer,
    masks: SegmentationMasks,
    bg_stats: BackgroundStats,
    strength: float,
) -> PixelBuffer:
    """Pull the chroma of semi-transparent skin/hair fringe pixels toward the background.

    Only the skin mask is touched: garment, unmasked and sub-threshold pixels
    keep their bytes. L and alpha are kept.
    """

    fringe = masks.skin & (subject.alpha < 255)
    if strength <= 0.0 or not fringe.any():
        return subject

    lab = rgb_to_lab_array(subject.rgb[fringe])
    lab[:, 1] += (bg_stats.mean_a - lab[:, 1]) * strength
    lab[:, 2] += (bg_stats.mean_b - lab[:, 2]) * strength

    data = subject.data.copy()
    rgb = data[..., :3]
    rgb[fringe] = lab_to_rgb_array(lab)
    LOGGER.debug("Spill fix adjusted %d fringe pixels", int(np.count_nonzero(fringe)))
    return PixelBuffer(subject.width, subject.height, data)


@dataclass
class SplitHarmonizer:
    """Harmonization stage bound to a :class:`HarmonizeConfig`."""

    config: HarmonizeConfig = HarmonizeConfig()
    max_workers: Optional[int] = None

    def harmonize(
        self,
        subject: PixelBuffer,
        masks: SegmentationMasks,
        bg_stats: BackgroundStats,
        weights: Optional[HarmonizeWeights] = None,
    ) -> PixelBuffer:
        config = self.config
        if not config.enabled:
            return subject
        result = harmonize(
            subject,
            masks,
            bg_stats,
            weights if weights is not None else config.effective_weights(),
            luminance_damping=config.luminance_damping,
            garment_max_delta=config.garment_max_delta,
            max_workers=self.max_workers,
        )
        if config.spill_fix.enabled:
            result = spill_fix(result, masks, bg_stats, config.spill_fix.strength)
        return result


__all__ = ["SplitHarmonizer", "extract_background_stats", "harmonize", "spill_fix", "transfer_lab"]
