from __future__ import annotations

import pytest

from bse_pipeline.core.config import (
    BSEConfig,
    HarmonizeWeights,
    RegionWeights,
    ThumbnailConfig,
    build_config,
)
from bse_pipeline.core.errors import ConfigError


def test_defaults() -> None:
    cfg = build_config()
    assert cfg == BSEConfig()
    assert cfg.ref_cleanup.enabled is True
    assert cfg.geometry_match.mode == "auto"
    assert cfg.harmonize.profile == "commerce_strict"
    assert cfg.harmonize.weights.garment == RegionWeights(0.5, 0.0)
    assert cfg.harmonize.weights.skin_hair == RegionWeights(0.7, 0.7)
    assert cfg.harmonize.weights.others == RegionWeights(0.8, 0.2)
    assert cfg.harmonize.spill_fix.strength == pytest.approx(0.35)
    assert cfg.harmonize.luminance_damping == pytest.approx(0.5)
    assert cfg.harmonize.garment_max_delta == pytest.approx(4.0)
    assert cfg.shadow.strength == pytest.approx(0.35)
    assert cfg.micro_inpaint.denoise == pytest.approx(0.06)
    assert cfg.output.format == "png"
    assert cfg.output.thumbnail == ThumbnailConfig("webp", 512, 80)
    assert cfg.debug.return_stage_outputs is True


def test_nested_override_keeps_siblings() -> None:
    cfg = build_config({"harmonize": {"weights": {"garment": {"luminance": 0.2}}}, "shadow": {"enabled": False}})
    assert cfg.harmonize.weights.garment == RegionWeights(0.2, 0.0)
    assert cfg.harmonize.weights.skin_hair == RegionWeights(0.7, 0.7)
    assert cfg.harmonize.enabled is True
    assert cfg.shadow.enabled is False
    assert cfg.shadow.strength == pytest.approx(0.35)


def test_integer_values_accepted_for_floats() -> None:
    cfg = build_config({"geometry_match": {"mode": "manual", "manual_params": {"scale": 2, "translate_y": -40}}})
    assert cfg.geometry_match.manual_params.scale == 2.0
    assert isinstance(cfg.geometry_match.manual_params.translate_y, float)


def test_unknown_keys_are_ignored() -> None:
    cfg = build_config({"not_a_section": 1, "output": {"dpi": 300, "format": "webp"}})
    assert cfg.output.format == "webp"


def test_creative_profile_selects_preset() -> None:
    cfg = build_config({"harmonize": {"profile": "creative"}})
    assert cfg.harmonize.weights.garment == RegionWeights(0.6, 0.1)
    assert cfg.harmonize.weights.others == RegionWeights(0.9, 0.4)


def test_explicit_weights_win_over_profile() -> None:
    cfg = build_config({"harmonize": {"profile": "creative", "weights": {"skin_hair": {"chrominance": 0.1}}}})
    assert cfg.harmonize.weights.skin_hair == RegionWeights(0.7, 0.1)
    assert cfg.harmonize.weights.garment == RegionWeights(0.5, 0.0)


def test_strength_scales_weights() -> None:
    cfg = build_config({"harmonize": {"strength": 0.5}})
    weights = cfg.harmonize.effective_weights()
    assert weights.skin_hair == RegionWeights(0.35, 0.35)
    assert build_config().harmonize.effective_weights() == HarmonizeWeights()


def test_thumbnail_can_be_disabled_and_restored() -> None:
    assert build_config({"output": {"thumbnail": None}}).output.thumbnail is None
    cfg = build_config({"output": {"thumbnail": {"width": 128}}})
    assert cfg.output.thumbnail == ThumbnailConfig("webp", 128, 80)


@pytest.mark.parametrize(
    "overrides",
    [
        {"geometry_match": {"mode": "stretch"}},
        {"geometry_match": {"manual_params": {"scale": 0.5}}},
        {"harmonize": {"profile": "vivid"}},
        {"harmonize": {"strength": 1.5}},
        {"harmonize": {"weights": {"garment": {"chrominance": -0.1}}}},
        {"harmonize": {"enabled": "yes"}},
        {"harmonize": {"weights": "strong"}},
        {"shadow": {"strength": "high"}},
        {"output": {"format": "gif"}},
        {"output": {"quality": 0}},
        {"output": {"quality": 80.5}},
        {"output": {"thumbnail": {"width": 0}}},
        {"debug": None},
    ],
)
def test_invalid_overrides_raise(overrides) -> None:
    with pytest.raises(ConfigError) as excinfo:
        build_config(overrides)
    assert excinfo.value.code == "INVALID_CONFIG"


def test_non_mapping_overrides_rejected() -> None:
    with pytest.raises(ConfigError):
        build_config(["harmonize"])  # type: ignore[arg-type]


def test_as_dict_round_trips_through_builder() -> None:
    cfg = build_config({"output": {"format": "jpg", "quality": 70}})
    assert build_config(cfg.as_dict()) == cfg
