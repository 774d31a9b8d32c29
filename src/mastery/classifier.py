"""
Threshold Classifier.

Maps a blended percentage to a mastery band using a per-class
ThresholdConfig. Configs are keyed by class name only, while status rows
are keyed by (class, grade): every grade of a class shares one config.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger

from src.mastery.exceptions import InvalidThresholdConfigError
from src.mastery.models import MasteryStatus, ThresholdConfig

DEFAULT_THRESHOLDS = ThresholdConfig(above=86.0, on=71.0, approaching=61.0)

# Legacy configs stored a single "mastered" cutoff; "above" sits 15 points higher.
LEGACY_ABOVE_OFFSET = 15.0


def classify(pct: float | None, cfg: ThresholdConfig) -> MasteryStatus:
    """
    Classify a percentage.

    Args:
        pct: Blended percentage, or None when there is no evidence
        cfg: Cutoffs for the class

    Returns:
        NOT_STARTED for None, otherwise the highest band whose cutoff pct reaches
    """
    if pct is None:
        return MasteryStatus.NOT_STARTED
    if pct >= cfg.above:
        return MasteryStatus.ABOVE
    if pct >= cfg.on:
        return MasteryStatus.ON
    if pct >= cfg.approaching:
        return MasteryStatus.APPROACHING
    return MasteryStatus.BELOW


def validate_thresholds(cfg: ThresholdConfig) -> ThresholdConfig:
    """Return cfg unchanged, or raise InvalidThresholdConfigError."""
    if not cfg.is_valid:
        raise InvalidThresholdConfigError(
            f"Thresholds must satisfy 100 >= above > on > approaching >= 0, got "
            f"above={cfg.above}, on={cfg.on}, approaching={cfg.approaching}"
        )
    return cfg


def migrate_legacy_config(raw: Mapping[str, Any]) -> dict[str, Any]:
    """
    Upgrade a two-field {mastered, approaching} config.

    above = min(mastered + 15, 100), on = mastered. Current-format configs
    are returned as a plain dict copy.
    """
    if "mastered" in raw and "above" not in raw:
        mastered = float(raw["mastered"])
        return {
            "above": min(mastered + LEGACY_ABOVE_OFFSET, 100.0),
            "on": mastered,
            "approaching": float(raw.get("approaching", DEFAULT_THRESHOLDS.approaching)),
        }
    return dict(raw)


def parse_threshold_config(raw: Any) -> ThresholdConfig:
    """
    Build a validated ThresholdConfig from a stored mapping.

    Raises:
        InvalidThresholdConfigError: Not a mapping, missing or non-numeric
            fields (legacy "mastered" included), or bad ordering
    """
    if not isinstance(raw, Mapping):
        raise InvalidThresholdConfigError(f"Threshold config must be a mapping, got {raw!r}")
    try:
        data = migrate_legacy_config(raw)
        cfg = ThresholdConfig(
            above=float(data["above"]),
            on=float(data["on"]),
            approaching=float(data["approaching"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidThresholdConfigError(f"Malformed threshold config {raw!r}: {e}") from e
    return validate_thresholds(cfg)


def resolve_thresholds(
    configs: Mapping[str, Any],
    class_name: str,
    default: ThresholdConfig = DEFAULT_THRESHOLDS,
) -> ThresholdConfig:
    """
    Pick the config for a class, falling back to the default.

    An invalid stored config is logged and replaced with the default
    rather than used to misclassify.
    """
    raw = configs.get(class_name)
    if raw is None:
        return default
    try:
        return parse_threshold_config(raw)
    except InvalidThresholdConfigError as e:
        logger.warning(f"Invalid thresholds for class {class_name}, using default: {e}")
        return default
