"""Error taxonomy for the background swap engine."""
from __future__ import annotations


class BSEError(Exception):
    """Base class for failures that map onto a result error code."""

    code = "UNKNOWN_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InputError(BSEError):
    """Malformed or incomplete job request."""

    code = "CACHE_KEY_INCOMPLETE"


class ConfigError(BSEError):
    """Raised when a configuration override is invalid."""

    code = "INVALID_CONFIG"


class SegmentationError(BSEError):
    """The subject mask covers an implausible fraction of the frame."""


class StageError(BSEError):
    """An individual pipeline stage could not complete."""


class ImageLoadError(OSError):
    """An image source could not be fetched or decoded."""

    code = "IO_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


REF_BG_MISSING = "REF_BG_MISSING"
CACHE_KEY_INCOMPLETE = "CACHE_KEY_INCOMPLETE"
MASK_SUBJECT_TOO_LARGE = "MASK_SUBJECT_TOO_LARGE"
MASK_SUBJECT_TOO_SMALL = "MASK_SUBJECT_TOO_SMALL"
REF_CLEANUP_FAILED = "REF_CLEANUP_FAILED"
BG_NOT_APPLIED = "BG_NOT_APPLIED"
COMPOSITE_NOT_APPLIED = "COMPOSITE_NOT_APPLIED"
WARN_GARMENT_DRIFT = "WARN_GARMENT_DRIFT"
WARN_REF_BG_FIDELITY = "WARN_REF_BG_FIDELITY"
WARN_SHADOW_SKIPPED = "WARN_SHADOW_SKIPPED"
WARN_MICRO_INPAINT_SKIPPED = "WARN_MICRO_INPAINT_SKIPPED"


__all__ = [
    "BSEError",
    "ConfigError",
    "ImageLoadError",
    "InputError",
    "SegmentationError",
    "StageError",
]
