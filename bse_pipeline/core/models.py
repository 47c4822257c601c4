"""Data model shared by the background swap stages."""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from .errors import CACHE_KEY_INCOMPLETE, REF_BG_MISSING, InputError

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial_success"
STATUS_FAIL = "fail"

LABEL_OTHER = 0
LABEL_GARMENT = 1
LABEL_SKIN = 2


@dataclass
class PixelBuffer:
    """8-bit, non-premultiplied RGBA raster stored as ``(height, width, 4)``."""

    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        expected = (self.height, self.width, 4)
        if self.data.shape != expected:
            raise ValueError(f"PixelBuffer data has shape {self.data.shape}, expected {expected}")
        if self.data.dtype != np.uint8:
            raise ValueError(f"PixelBuffer data must be uint8, got {self.data.dtype}")

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Build a buffer from a grayscale, RGB or RGBA array, up-converting to RGBA."""

        arr = np.asarray(array)
        if arr.dtype != np.uint8:
            arr = np.clip(arr, 0, 255).astype(np.uint8)
        if arr.ndim == 2:
            arr = np.repeat(arr[..., None], 3, axis=2)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(f"Unsupported pixel array shape {arr.shape}")
        if arr.shape[2] == 3:
            opaque = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate((arr, opaque), axis=2)
        height, width = arr.shape[:2]
        return cls(width=width, height=height, data=np.ascontiguousarray(arr))

    @classmethod
    def blank(cls, width: int, height: int) -> "PixelBuffer":
        return cls(width=width, height=height, data=np.zeros((height, width, 4), dtype=np.uint8))

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def rgb(self) -> np.ndarray:
        return self.data[..., :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.data[..., 3]

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, self.data.copy())

    def is_opaque(self) -> bool:
        """Return ``True`` when no pixel carries any transparency."""

        return bool(np.all(self.alpha == 255))


@dataclass(frozen=True)
class SegmentationMasks:
    """Per-pixel region labels plus the subject (non-transparent) mask.

    A single label array keeps ``garment`` and ``skin`` mutually exclusive by
    construction; ``background`` is the residual of the two.
    """

    labels: np.ndarray
    subject: np.ndarray

    @classmethod
    def from_masks(cls, garment: np.ndarray, skin: np.ndarray, subject: np.ndarray) -> "SegmentationMasks":
        garment = np.asarray(garment, dtype=bool)
        skin = np.asarray(skin, dtype=bool)
        subject = np.asarray(subject, dtype=bool)
        if not (garment.shape == skin.shape == subject.shape):
            raise ValueError("Segmentation masks must share one shape")
        if np.any(garment & skin):
            raise ValueError("Garment and skin masks overlap")
        if np.any((garment | skin) & ~subject):
            raise ValueError("Garment/skin masks include transparent pixels")
        labels = np.full(garment.shape, LABEL_OTHER, dtype=np.uint8)
        labels[garment] = LABEL_GARMENT
        labels[skin] = LABEL_SKIN
        return cls(labels=labels, subject=subject)

    @property
    def shape(self) -> tuple[int, int]:
        return self.labels.shape  # type: ignore[return-value]

    @property
    def garment(self) -> np.ndarray:
        return self.labels == LABEL_GARMENT

    @property
    def skin(self) -> np.ndarray:
        return self.labels == LABEL_SKIN

    @property
    def background(self) -> np.ndarray:
        return self.labels == LABEL_OTHER

    @property
    def coverage(self) -> float:
        """Fraction of the frame occupied by the subject."""

        if self.subject.size == 0:
            return 0.0
        return float(np.count_nonzero(self.subject)) / float(self.subject.size)


@dataclass(frozen=True)
class LabColor:
    l: float
    a: float
    b: float


@dataclass(frozen=True)
class BackgroundStats:
    """Mean (and spread) of the reference background in CIE Lab."""

    mean_l: float
    mean_a: float
    mean_b: float
    std_l: float = 0.0
    std_a: float = 0.0
    std_b: float = 0.0
    samples: int = 0


@dataclass(frozen=True)
class BSEMetrics:
    ref_bg_fidelity: float = 0.0
    src_bg_leakage: float = 0.0
    garment_delta_e: float = 0.0
    skin_delta_e: float = 0.0

    @classmethod
    def failed(cls) -> "BSEMetrics":
        """Metrics reported when a job fails before validation."""

        return cls(ref_bg_fidelity=0.0, src_bg_leakage=1.0, garment_delta_e=0.0, skin_delta_e=0.0)

    def as_dict(self) -> Dict[str, float]:
        return {key: round(float(value), 4) for key, value in asdict(self).items()}


@dataclass(frozen=True)
class BSEJobRequest:
    job_id: str
    source_image_id: str
    background_ref_id: str
    config: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BSEJobRequest":
        """Parse a JSON job payload, accepting ``options`` as an alias of ``config``."""

        source = payload.get("source_image_id")
        background = payload.get("background_ref_id")
        if not background:
            raise InputError("Missing required field: background_ref_id", code=REF_BG_MISSING)
        if not source:
            raise InputError("Missing required field: source_image_id", code=CACHE_KEY_INCOMPLETE)
        config = payload.get("config")
        if config is None:
            config = payload.get("options") or {}
        if not isinstance(config, Mapping):
            raise InputError("config must be an object", code=CACHE_KEY_INCOMPLETE)
        job_id = payload.get("job_id") or f"job_{int(time.time() * 1000)}"
        return cls(job_id=str(job_id), source_image_id=str(source), background_ref_id=str(background), config=config)


@dataclass(frozen=True)
class OutputInfo:
    url: str = ""
    width: int = 0
    height: int = 0
    thumbnail_url: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": self.url, "width": self.width, "height": self.height}
        if self.thumbnail_url is not None:
            payload["thumbnail_url"] = self.thumbnail_url
        return payload


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str


@dataclass
class BSEResult:
    job_id: str
    status: str
    output: OutputInfo
    metrics: BSEMetrics
    warnings: List[str] = field(default_factory=list)
    stage_outputs: Optional[Dict[str, str]] = None
    error: Optional[ErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAIL

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "job_id": self.job_id,
            "status": self.status,
            "output": self.output.as_dict(),
            "metrics": self.metrics.as_dict(),
            "warnings": list(self.warnings),
        }
        if self.stage_outputs is not None:
            payload["stage_outputs"] = dict(self.stage_outputs)
        if self.error is not None:
            payload["error"] = {"code": self.error.code, "message": self.error.message}
        return payload

    def to_response(self) -> Dict[str, Any]:
        """Shape the result the way the HTTP boundary reports it."""

        if self.status == STATUS_FAIL:
            error = self.error or ErrorInfo("UNKNOWN_ERROR", "Pipeline failed")
            return {
                "status": "error",
                "code": error.code,
                "message": error.message,
                "metrics": self.metrics.as_dict(),
                "warnings": list(self.warnings),
            }
        response: Dict[str, Any] = {
            "status": "success",
            "data": self.output.as_dict(),
            "metrics": self.metrics.as_dict(),
            "warnings": list(self.warnings),
        }
        if self.stage_outputs is not None:
            response["debug"] = dict(self.stage_outputs)
        return response
