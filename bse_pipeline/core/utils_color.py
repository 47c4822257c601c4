"""Color utility helpers: sRGB <-> CIE Lab conversions and statistics."""
from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
from skimage.color import deltaE_cie76

from .models import BackgroundStats, LabColor

ColorTuple = Tuple[int, int, int]

# D65 reference white
_WHITE = np.array((0.95047, 1.0, 1.08883), dtype=np.float64)
_RGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ],
    dtype=np.float64,
)
_XYZ_TO_RGB = np.linalg.inv(_RGB_TO_XYZ)

_EPSILON = 0.008856
_KAPPA_SLOPE = 7.787
_OFFSET = 16.0 / 116.0


def _srgb_channel_to_linear(channel: np.ndarray) -> np.ndarray:
    return np.where(
        channel <= 0.04045,
        channel / 12.92,
        ((channel + 0.055) / 1.055) ** 2.4,
    )


def _linear_channel_to_srgb(channel: np.ndarray) -> np.ndarray:
    channel = np.clip(channel, 0.0, None)
    return np.where(
        channel <= 0.0031308,
        channel * 12.92,
        1.055 * np.power(channel, 1 / 2.4) - 0.055,
    )


def _f(t: np.ndarray) -> np.ndarray:
    return np.where(t > _EPSILON, np.cbrt(t), _KAPPA_SLOPE * t + _OFFSET)


def _f_inv(t: np.ndarray) -> np.ndarray:
    cubed = t**3
    return np.where(cubed > _EPSILON, cubed, (t - _OFFSET) / _KAPPA_SLOPE)


def rgb_to_lab_array(rgb: np.ndarray) -> np.ndarray:
    """Convert an ``(..., 3)`` array of 8-bit sRGB values to float64 Lab."""

    srgb = np.asarray(rgb, dtype=np.float64) / 255.0
    linear = _srgb_channel_to_linear(srgb)
    xyz = linear @ _RGB_TO_XYZ.T
    xyz = xyz / _WHITE
    fx, fy, fz = _f(xyz[..., 0]), _f(xyz[..., 1]), _f(xyz[..., 2])
    l = 116.0 * fy - 16.0
    a = 500.0 * (fx - fy)
    b = 200.0 * (fy - fz)
    return np.stack([l, a, b], axis=-1)


def lab_to_rgb_array(lab: np.ndarray) -> np.ndarray:
    """Convert an ``(..., 3)`` Lab array back to rounded, clamped uint8 sRGB."""

    lab = np.asarray(lab, dtype=np.float64)
    fy = (lab[..., 0] + 16.0) / 116.0
    fx = lab[..., 1] / 500.0 + fy
    fz = fy - lab[..., 2] / 200.0
    xyz = np.stack([_f_inv(fx), _f_inv(fy), _f_inv(fz)], axis=-1) * _WHITE
    linear = xyz @ _XYZ_TO_RGB.T
    srgb = _linear_channel_to_srgb(linear)
    return np.clip(np.rint(srgb * 255.0), 0, 255).astype(np.uint8)


def rgb_to_lab(r: int, g: int, b: int) -> LabColor:
    """Convert a single sRGB color to :class:`LabColor`."""

    l, a, b_ = rgb_to_lab_array(np.array([r, g, b], dtype=np.float64))
    return LabColor(float(l), float(a), float(b_))


def lab_to_rgb(l: float, a: float, b: float) -> ColorTuple:
    """Convert a single Lab color to an 8-bit sRGB tuple."""

    rgb = lab_to_rgb_array(np.array([l, a, b], dtype=np.float64))
    return int(rgb[0]), int(rgb[1]), int(rgb[2])


def calculate_stats(lab: np.ndarray) -> BackgroundStats:
    """Return mean and standard deviation of an ``(N, 3)`` Lab sample."""

    samples = np.asarray(lab, dtype=np.float64).reshape(-1, 3)
    if samples.shape[0] == 0:
        return BackgroundStats(0.0, 0.0, 0.0)
    mean = samples.mean(axis=0)
    std = samples.std(axis=0)
    return BackgroundStats(
        mean_l=float(mean[0]),
        mean_a=float(mean[1]),
        mean_b=float(mean[2]),
        std_l=float(std[0]),
        std_a=float(std[1]),
        std_b=float(std[2]),
        samples=int(samples.shape[0]),
    )


def mean_delta_e(lab_before: np.ndarray, lab_after: np.ndarray, mask: Optional[np.ndarray] = None) -> float:
    """Mean CIE76 difference between two Lab arrays, optionally over *mask*."""

    delta = deltaE_cie76(lab_before, lab_after)
    if mask is not None:
        delta = delta[mask]
    if delta.size == 0:
        return 0.0
    return float(np.mean(delta))


__all__ = [
    "calculate_stats",
    "lab_to_rgb",
    "lab_to_rgb_array",
    "mean_delta_e",
    "rgb_to_lab",
    "rgb_to_lab_array",
]
