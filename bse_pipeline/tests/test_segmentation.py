from __future__ import annotations

import numpy as np
import pytest

pytest.importorskip("scipy")

from bse_pipeline.core.errors import SegmentationError
from bse_pipeline.core.models import PixelBuffer, SegmentationMasks
from bse_pipeline.modules.bse.segmentation import BoundingBoxSegmenter, auto_matte, check_subject_coverage


def _subject(size: int = 100) -> PixelBuffer:
    data = np.zeros((size, size, 4), dtype=np.uint8)
    data[..., :3] = (120, 90, 60)
    data[..., 3] = 255
    # transparent left third
    data[:, : size // 3, 3] = 0
    data[:, size // 3 : size // 3 + 2, 3] = 5
    return PixelBuffer.from_array(data)


def test_masks_are_exclusive_and_inside_subject() -> None:
    subject = _subject()
    masks = BoundingBoxSegmenter().segment(subject)
    assert not np.any(masks.garment & masks.skin)
    transparent = subject.alpha < 10
    assert not np.any(masks.garment[transparent])
    assert not np.any(masks.skin[transparent])
    np.testing.assert_array_equal(masks.background, ~(masks.garment | masks.skin))


def test_heuristic_boxes() -> None:
    data = np.full((100, 100, 4), 255, dtype=np.uint8)
    masks = BoundingBoxSegmenter().segment(PixelBuffer.from_array(data))
    assert masks.garment[50, 50]
    assert masks.garment[30, 25] and not masks.garment[29, 25]
    assert not masks.garment[50, 75] and not masks.garment[80, 50]
    assert masks.skin[10, 50]
    assert not masks.skin[25, 50] and not masks.skin[10, 39]
    assert not masks.garment[10, 50]
    assert masks.background[90, 5]


def test_overlapping_boxes_stay_exclusive() -> None:
    data = np.full((40, 40, 4), 255, dtype=np.uint8)
    segmenter = BoundingBoxSegmenter(garment_box=(0.0, 0.0, 0.6, 0.6), skin_box=(0.3, 0.3, 1.0, 1.0))
    masks = segmenter.segment(PixelBuffer.from_array(data))
    assert not np.any(masks.garment & masks.skin)
    assert masks.garment[20, 20]
    assert masks.skin[30, 30]


def test_from_masks_rejects_overlap() -> None:
    garment = np.ones((2, 2), dtype=bool)
    with pytest.raises(ValueError):
        SegmentationMasks.from_masks(garment, garment, garment)
    with pytest.raises(ValueError):
        SegmentationMasks.from_masks(garment, ~garment, np.zeros((2, 2), dtype=bool))


def test_coverage_gate() -> None:
    full = SegmentationMasks.from_masks(*(np.zeros((10, 10), dtype=bool),) * 2, np.ones((10, 10), dtype=bool))
    with pytest.raises(SegmentationError) as excinfo:
        check_subject_coverage(full)
    assert excinfo.value.code == "MASK_SUBJECT_TOO_LARGE"

    tiny_subject = np.zeros((100, 100), dtype=bool)
    tiny_subject[0, :10] = True
    tiny = SegmentationMasks.from_masks(np.zeros_like(tiny_subject), np.zeros_like(tiny_subject), tiny_subject)
    with pytest.raises(SegmentationError) as excinfo:
        check_subject_coverage(tiny)
    assert excinfo.value.code == "MASK_SUBJECT_TOO_SMALL"

    half = np.zeros((10, 10), dtype=bool)
    half[:5] = True
    masks = SegmentationMasks.from_masks(np.zeros_like(half), np.zeros_like(half), half)
    assert check_subject_coverage(masks) == pytest.approx(0.5)


def test_auto_matte_removes_border_connected_white() -> None:
    data = np.full((60, 60, 3), 250, dtype=np.uint8)
    data[15:45, 15:45] = (40, 60, 90)
    # white button enclosed by the subject
    data[28:32, 28:32] = 255
    matted = auto_matte(PixelBuffer.from_array(data))

    assert matted.alpha[0, 0] == 0
    assert matted.alpha[5, 30] == 0
    assert matted.alpha[30, 30] == 255
    assert matted.alpha[20, 20] == 255
    assert not matted.is_opaque()
    np.testing.assert_array_equal(matted.rgb, data)
    # feathered inside edge, untouched backdrop outside
    assert 0 < matted.alpha[30, 15] < 255
    assert matted.alpha[30, 14] == 0


def test_auto_matte_keeps_non_white_frames_opaque() -> None:
    data = np.full((20, 20, 3), 180, dtype=np.uint8)
    matted = auto_matte(PixelBuffer.from_array(data))
    assert matted.is_opaque()
