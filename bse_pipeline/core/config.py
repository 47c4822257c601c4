"""Configuration module for the background swap engine."""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError

LOGGER = logging.getLogger("bse_pipeline.config")

ALPHA_THRESHOLD = 10
STATS_STRIDE = 4
MIN_SUBJECT_COVERAGE = 0.005
MAX_SUBJECT_COVERAGE = 0.95
LEAKAGE_MAX = 0.35
FIDELITY_MIN = 0.92
GARMENT_DELTA_E_MAX = 3.0

GEOMETRY_MODES = ("auto", "manual")
HARMONIZE_PROFILES = ("commerce_strict", "creative")
OUTPUT_FORMATS = ("png", "jpg", "webp")


@dataclass(frozen=True)
class RegionWeights:
    luminance: float
    chrominance: float


@dataclass(frozen=True)
class HarmonizeWeights:
    garment: RegionWeights = RegionWeights(0.5, 0.0)
    skin_hair: RegionWeights = RegionWeights(0.7, 0.7)
    others: RegionWeights = RegionWeights(0.8, 0.2)


PROFILE_WEIGHTS: Dict[str, HarmonizeWeights] = {
    "commerce_strict": HarmonizeWeights(),
    "creative": HarmonizeWeights(
        garment=RegionWeights(0.6, 0.1),
        skin_hair=RegionWeights(0.8, 0.8),
        others=RegionWeights(0.9, 0.4),
    ),
}


@dataclass(frozen=True)
class SpillFixConfig:
    enabled: bool = True
    strength: float = 0.35


@dataclass(frozen=True)
class HarmonizeConfig:
    enabled: bool = True
    strength: float = 1.0
    profile: str = "commerce_strict"
    weights: HarmonizeWeights = HarmonizeWeights()
    spill_fix: SpillFixConfig = SpillFixConfig()
    luminance_damping: float = 0.5
    garment_max_delta: float = 4.0

    def effective_weights(self) -> HarmonizeWeights:
        """Return the region weights scaled by :attr:`strength`."""

        if self.strength == 1.0:
            return self.weights

        def _scale(weights: RegionWeights) -> RegionWeights:
            return RegionWeights(weights.luminance * self.strength, weights.chrominance * self.strength)

        return HarmonizeWeights(
            garment=_scale(self.weights.garment),
            skin_hair=_scale(self.weights.skin_hair),
            others=_scale(self.weights.others),
        )


@dataclass(frozen=True)
class RefCleanupConfig:
    enabled: bool = True


@dataclass(frozen=True)
class ManualGeometry:
    scale: float = 1.0
    translate_y: float = 0.0


@dataclass(frozen=True)
class GeometryMatchConfig:
    enabled: bool = True
    mode: str = "auto"
    manual_params: ManualGeometry = ManualGeometry()


@dataclass(frozen=True)
class ShadowConfig:
    enabled: bool = True
    strength: float = 0.35


@dataclass(frozen=True)
class MicroInpaintConfig:
    enabled: bool = True
    denoise: float = 0.06


@dataclass(frozen=True)
class ThumbnailConfig:
    format: str = "webp"
    width: int = 512
    quality: int = 80


@dataclass(frozen=True)
class OutputConfig:
    format: str = "png"
    quality: int = 95
    thumbnail: Optional[ThumbnailConfig] = ThumbnailConfig()


@dataclass(frozen=True)
class DebugConfig:
    return_stage_outputs: bool = True


@dataclass(frozen=True)
class BSEConfig:
    """Immutable configuration of one background swap job."""

    ref_cleanup: RefCleanupConfig = RefCleanupConfig()
    geometry_match: GeometryMatchConfig = GeometryMatchConfig()
    harmonize: HarmonizeConfig = HarmonizeConfig()
    shadow: ShadowConfig = ShadowConfig()
    micro_inpaint: MicroInpaintConfig = MicroInpaintConfig()
    output: OutputConfig = OutputConfig()
    debug: DebugConfig = DebugConfig()
    alpha_threshold: int = field(default=ALPHA_THRESHOLD, repr=False)

    def as_dict(self) -> Dict[str, Any]:
        """Return the configuration as a plain dictionary."""

        return dataclasses.asdict(self)


# Nested dataclass types used when an optional section (e.g. a disabled
# thumbnail) is re-enabled by an override.
_OPTIONAL_SECTIONS = {("output", "thumbnail"): ThumbnailConfig}


def _coerce(value: Any, current: Any, path: str) -> Any:
    if isinstance(current, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"{path} must be a boolean, got {value!r}")
        return value
    if isinstance(current, int) and not isinstance(current, bool):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
            raise ConfigError(f"{path} must be an integer, got {value!r}")
        return int(value)
    if isinstance(current, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{path} must be a number, got {value!r}")
        return float(value)
    if isinstance(current, str):
        if not isinstance(value, str):
            raise ConfigError(f"{path} must be a string, got {value!r}")
        return value
    return value


def _merge(section: Any, overrides: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> Any:
    names = {f.name: f for f in dataclasses.fields(section)}
    changes: Dict[str, Any] = {}
    for key, value in overrides.items():
        path = prefix + (key,)
        dotted = ".".join(path)
        if key not in names:
            LOGGER.debug("Ignoring unknown config key %s", dotted)
            continue
        current = getattr(section, key)
        if value is None:
            if path in _OPTIONAL_SECTIONS:
                changes[key] = None
                continue
            raise ConfigError(f"{dotted} cannot be null")
        if current is None and path in _OPTIONAL_SECTIONS:
            current = _OPTIONAL_SECTIONS[path]()
        if dataclasses.is_dataclass(current):
            if not isinstance(value, Mapping):
                raise ConfigError(f"{dotted} must be an object, got {value!r}")
            changes[key] = _merge(current, value, path)
        else:
            changes[key] = _coerce(value, current, dotted)
    return dataclasses.replace(section, **changes) if changes else section


def _check_unit(value: float, path: str) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigError(f"{path} must be within [0, 1], got {value}")


def validate_config(config: BSEConfig) -> BSEConfig:
    """Check enumerations and numeric ranges, raising :class:`ConfigError`."""

    geometry = config.geometry_match
    if geometry.mode not in GEOMETRY_MODES:
        raise ConfigError(f"geometry_match.mode must be one of {GEOMETRY_MODES}, got {geometry.mode!r}")
    if geometry.manual_params.scale < 1.0:
        raise ConfigError("geometry_match.manual_params.scale must be >= 1.0")

    harmonize = config.harmonize
    if harmonize.profile not in HARMONIZE_PROFILES:
        raise ConfigError(f"harmonize.profile must be one of {HARMONIZE_PROFILES}, got {harmonize.profile!r}")
    _check_unit(harmonize.strength, "harmonize.strength")
    for region in ("garment", "skin_hair", "others"):
        weights: RegionWeights = getattr(harmonize.weights, region)
        _check_unit(weights.luminance, f"harmonize.weights.{region}.luminance")
        _check_unit(weights.chrominance, f"harmonize.weights.{region}.chrominance")
    _check_unit(harmonize.spill_fix.strength, "harmonize.spill_fix.strength")
    _check_unit(harmonize.luminance_damping, "harmonize.luminance_damping")
    if harmonize.garment_max_delta < 0.0:
        raise ConfigError("harmonize.garment_max_delta must be >= 0")

    _check_unit(config.shadow.strength, "shadow.strength")
    _check_unit(config.micro_inpaint.denoise, "micro_inpaint.denoise")

    output = config.output
    if output.format not in OUTPUT_FORMATS:
        raise ConfigError(f"output.format must be one of {OUTPUT_FORMATS}, got {output.format!r}")
    if not 1 <= output.quality <= 100:
        raise ConfigError("output.quality must be within [1, 100]")
    if output.thumbnail is not None:
        if output.thumbnail.format not in OUTPUT_FORMATS:
            raise ConfigError(f"output.thumbnail.format must be one of {OUTPUT_FORMATS}")
        if output.thumbnail.width < 1:
            raise ConfigError("output.thumbnail.width must be >= 1")
        if not 1 <= output.thumbnail.quality <= 100:
            raise ConfigError("output.thumbnail.quality must be within [1, 100]")
    return config


def build_config(overrides: Optional[Mapping[str, Any]] = None) -> BSEConfig:
    """Create a validated :class:`BSEConfig` from defaults and optional overrides."""

    config = BSEConfig()
    if not overrides:
        return config
    if not isinstance(overrides, Mapping):
        raise ConfigError("config overrides must be an object")

    harmonize_overrides = overrides.get("harmonize")
    if isinstance(harmonize_overrides, Mapping):
        profile = harmonize_overrides.get("profile")
        if profile in PROFILE_WEIGHTS and "weights" not in harmonize_overrides:
            preset = dataclasses.replace(config.harmonize, weights=PROFILE_WEIGHTS[profile])
            config = dataclasses.replace(config, harmonize=preset)

    config = _merge(config, overrides)
    return validate_config(config)


__all__ = [
    "BSEConfig",
    "DebugConfig",
    "GeometryMatchConfig",
    "HarmonizeConfig",
    "HarmonizeWeights",
    "ManualGeometry",
    "MicroInpaintConfig",
    "OutputConfig",
    "RefCleanupConfig",
    "RegionWeights",
    "ShadowConfig",
    "SpillFixConfig",
    "ThumbnailConfig",
    "build_config",
    "validate_config",
]
