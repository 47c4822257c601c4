"""BSE orchestrator: runs every stage of one background swap job."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from ...core.config import BSEConfig, build_config
from ...core.errors import (
    WARN_MICRO_INPAINT_SKIPPED,
    WARN_SHADOW_SKIPPED,
    BSEError,
)
from ...core.models import (
    STATUS_FAIL,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    BSEJobRequest,
    BSEMetrics,
    BSEResult,
    ErrorInfo,
    OutputInfo,
    PixelBuffer,
)
from ...core.utils_image import encode_data_uri, make_thumbnail, mask_to_buffer
from ...core.utils_io import ImageLoader
from .alignment import align_background, cleanup_reference
from .compositing import add_contact_shadow, composite, micro_inpaint
from .harmonizer import SplitHarmonizer, extract_background_stats
from .segmentation import BoundingBoxSegmenter, Segmenter, auto_matte, check_subject_coverage
from .validation import compute_metrics, validate

LOGGER = logging.getLogger("bse_pipeline.bse.pipeline")

JobPayload = Union[BSEJobRequest, Mapping[str, Any]]


def _fail_result(
    job_id: str,
    code: str,
    message: str,
    *,
    metrics: Optional[BSEMetrics] = None,
    warnings: Optional[List[str]] = None,
    stage_outputs: Optional[Dict[str, str]] = None,
) -> BSEResult:
    return BSEResult(
        job_id=job_id,
        status=STATUS_FAIL,
        output=OutputInfo(),
        metrics=metrics if metrics is not None else BSEMetrics.failed(),
        warnings=list(warnings or []) + [message],
        stage_outputs=stage_outputs,
        error=ErrorInfo(code=code, message=message),
    )


class BSEPipeline:
    """Run background swap jobs.

    A single instance holds no per-job state and may serve concurrent
    :meth:`process` calls from several threads.
    """

    def __init__(
        self,
        *,
        loader: Optional[ImageLoader] = None,
        segmenter: Optional[Segmenter] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.loader = loader or ImageLoader()
        self.segmenter: Segmenter = segmenter or BoundingBoxSegmenter()
        self.max_workers = max_workers

    def process(self, request: JobPayload) -> BSEResult:
        """Run one job. Never raises: failures become ``status="fail"`` results."""

        job_id = _job_id_of(request)
        started = time.perf_counter()
        try:
            if not isinstance(request, BSEJobRequest):
                request = BSEJobRequest.from_payload({**request, "job_id": job_id})
            result = self._run(request)
        except (BSEError, OSError) as exc:
            code = getattr(exc, "code", None) or "IO_ERROR"
            message = getattr(exc, "message", None) or str(exc)
            LOGGER.error("Job %s failed [%s]: %s", job_id, code, message)
            return _fail_result(job_id, code, message)
        except Exception as exc:
            LOGGER.exception("Job %s failed with an unexpected error", job_id)
            return _fail_result(job_id, "UNKNOWN_ERROR", str(exc) or exc.__class__.__name__)

        LOGGER.info(
            "Job %s finished with status %s in %.2fs (warnings: %s)",
            result.job_id,
            result.status,
            time.perf_counter() - started,
            ", ".join(result.warnings) or "none",
        )
        return result

    def _run(self, request: BSEJobRequest) -> BSEResult:
        config = build_config(request.config)
        threshold = config.alpha_threshold
        LOGGER.info("Job %s: loading source and reference", request.job_id)
        source = self.loader.load(request.source_image_id)
        reference = self.loader.load(request.background_ref_id)

        subject = source
        if source.is_opaque():
            LOGGER.info("Job %s: source has no transparency, applying auto-matte", request.job_id)
            subject = auto_matte(source)

        masks = self.segmenter.segment(subject)
        check_subject_coverage(masks)

        ref_clean = cleanup_reference(reference, enabled=config.ref_cleanup.enabled)
        aligned = align_background(ref_clean, subject.width, subject.height, geometry=config.geometry_match)
        composite_out0 = composite(aligned, subject)

        bg_stats = extract_background_stats(aligned, alpha_threshold=threshold)
        harmonizer = SplitHarmonizer(config.harmonize, max_workers=self.max_workers)
        harmonized = harmonizer.harmonize(subject, masks, bg_stats)
        composite_out1 = composite(aligned, harmonized)

        final = composite_out1
        warnings: List[str] = []
        degraded = False
        if config.shadow.enabled:
            try:
                final = add_contact_shadow(final, subject.alpha, config.shadow.strength, alpha_threshold=threshold)
            except Exception:
                LOGGER.warning("Job %s: contact shadow skipped", request.job_id, exc_info=True)
                warnings.append(WARN_SHADOW_SKIPPED)
                degraded = True
        if config.micro_inpaint.enabled:
            try:
                final = micro_inpaint(final, subject.alpha, config.micro_inpaint.denoise, alpha_threshold=threshold)
            except Exception:
                LOGGER.warning("Job %s: micro-inpaint skipped", request.job_id, exc_info=True)
                warnings.append(WARN_MICRO_INPAINT_SKIPPED)
                degraded = True

        metrics = compute_metrics(
            source=source,
            reference=aligned,
            final=final,
            subject_alpha=subject.alpha,
            masks=masks,
            pre_harmonize=subject,
            post_harmonize=harmonized,
            alpha_threshold=threshold,
        )
        outcome = validate(metrics)
        warnings.extend(outcome.warnings)

        stage_outputs = None
        if config.debug.return_stage_outputs:
            stage_outputs = {
                "mask_subject": encode_data_uri(mask_to_buffer(masks.subject)),
                "ref_bg_clean": encode_data_uri(ref_clean),
                "composite_out0": encode_data_uri(composite_out0),
                "harmonized_out1": encode_data_uri(composite_out1),
            }

        if not outcome.passed:
            return _fail_result(
                request.job_id,
                outcome.error_code or "UNKNOWN_ERROR",
                f"Source background still visible (leakage {metrics.src_bg_leakage:.3f})",
                metrics=metrics,
                warnings=warnings,
                stage_outputs=stage_outputs,
            )

        return BSEResult(
            job_id=request.job_id,
            status=STATUS_PARTIAL if degraded else STATUS_SUCCESS,
            output=_encode_output(final, config),
            metrics=metrics,
            warnings=warnings,
            stage_outputs=stage_outputs,
        )


def _encode_output(final: PixelBuffer, config: BSEConfig) -> OutputInfo:
    output = config.output
    url = encode_data_uri(final, output.format, output.quality)
    thumbnail_url = None
    if output.thumbnail is not None:
        thumb = make_thumbnail(final, output.thumbnail.width)
        thumbnail_url = encode_data_uri(thumb, output.thumbnail.format, output.thumbnail.quality)
    return OutputInfo(url=url, width=final.width, height=final.height, thumbnail_url=thumbnail_url)


def _job_id_of(request: JobPayload) -> str:
    if isinstance(request, BSEJobRequest):
        return request.job_id
    job_id = request.get("job_id") if isinstance(request, Mapping) else None
    return str(job_id) if job_id else f"job_{int(time.time() * 1000)}"


def process_job(payload: JobPayload, **kwargs: Any) -> BSEResult:
    """Convenience wrapper running *payload* through a fresh :class:`BSEPipeline`."""

    return BSEPipeline(**kwargs).process(payload)


__all__ = ["BSEPipeline", "process_job"]
