"""Background swap engine: segment, align, composite, harmonize and validate."""
from __future__ import annotations

from .alignment import align_background, cleanup_reference
from .compositing import add_contact_shadow, composite, micro_inpaint
from .harmonizer import SplitHarmonizer, extract_background_stats, harmonize, spill_fix
from .pipeline import BSEPipeline, process_job
from .segmentation import BoundingBoxSegmenter, Segmenter, auto_matte, check_subject_coverage
from .validation import ValidationOutcome, compute_metrics, validate

__all__ = [
    "BSEPipeline",
    "BoundingBoxSegmenter",
    "Segmenter",
    "SplitHarmonizer",
    "ValidationOutcome",
    "add_contact_shadow",
    "align_background",
    "auto_matte",
    "check_subject_coverage",
    "cleanup_reference",
    "composite",
    "compute_metrics",
    "extract_background_stats",
    "harmonize",
    "micro_inpaint",
    "process_job",
    "spill_fix",
    "validate",
]
