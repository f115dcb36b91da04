"""Load, validate, and hot-reload the sensorsync pipeline configuration.

The config lives in ``pipeline_config.yaml`` alongside this module.  It is
loaded once and cached.  Call ``reload_pipeline_config()`` to re-read from
disk after an edit, no restart required.

Usage::

    from sensorsync.pipeline.config_loader import get_pipeline_config

    config = get_pipeline_config()
    config.schedule.interval          # timedelta(hours=2)
    config.retention.keep_archives    # 10
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("sensorsync.pipeline.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "pipeline_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValueRange:
    """Closed interval used by the synthetic generator."""

    low: float
    high: float


@dataclass
class ScheduleConfig:
    """Periodic sync trigger settings.

    Attributes:
        interval:          Nominal period between scheduled attempts.
        flex:              Window at the end of each interval in which the
                           attempt may run.
        max_retries:       Retries after a failed attempt, per cycle.
        backoff:           First retry delay; doubles on each further retry.
        availability_poll: Delay between transport availability checks.
    """

    interval: timedelta
    flex: timedelta
    max_retries: int
    backoff: timedelta
    availability_poll: timedelta


@dataclass
class RetentionConfig:
    """Store and archive retention settings."""

    keep_archives: int
    store_retention: timedelta
    sweep_interval: timedelta


@dataclass
class CollectionConfig:
    """Sample collection settings, including synthetic value ranges."""

    synthetic_rate_hz: float
    fsync_writes: bool
    heart_rate: ValueRange
    heart_rate_confidence: ValueRange
    respiration_rate: ValueRange
    eda: ValueRange
    temperature: ValueRange


@dataclass
class StoreConfig:
    deduplicate: bool


@dataclass
class PipelineConfig:
    """Complete, validated pipeline configuration.

    This is the single in-memory representation of pipeline_config.yaml.
    """

    version: str
    schedule: ScheduleConfig
    retention: RetentionConfig
    collection: CollectionConfig
    store: StoreConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when pipeline_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError:     If the file does not exist.
        ConfigValidationError: If the YAML is malformed or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at top level")
    return data


def _validate_and_build(raw: dict) -> PipelineConfig:
    """Validate the raw YAML dict and construct a PipelineConfig.

    Every section is optional; missing keys take the documented defaults.
    All problems are collected and reported together.

    Raises:
        ConfigValidationError: If any value has the wrong type or range.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, default: float, path: str, *, minimum: float = 0.0,
                strict: bool = False) -> float:
        value = section.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be a number, got {value!r}")
            return default
        if number < minimum or (strict and number == minimum):
            bound = ">" if strict else ">="
            errors.append(f"{path}.{key} = {number} must be {bound} {minimum}")
        return number

    def _section(key: str) -> dict:
        section = raw.get(key) or {}
        if not isinstance(section, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return section

    def _flag(section: dict, key: str, default: bool, path: str) -> bool:
        value = section.get(key, default)
        if not isinstance(value, bool):
            errors.append(f"{path}.{key} must be true or false, got {value!r}")
            return default
        return value

    def _range(section: dict, key: str, default: tuple[float, float], path: str) -> ValueRange:
        value = section.get(key, list(default))
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            errors.append(f"{path}.{key} must be a [low, high] pair, got {value!r}")
            return ValueRange(*default)
        try:
            low, high = float(value[0]), float(value[1])
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} bounds must be numbers, got {value!r}")
            return ValueRange(*default)
        if low > high:
            errors.append(f"{path}.{key} low {low} exceeds high {high}")
        return ValueRange(low, high)

    version = str(raw.get("version", "1.0"))

    # ── Schedule ──
    sc_raw = _section("schedule")
    interval_h = _number(sc_raw, "interval_hours", 2, "schedule", strict=True)
    flex_m = _number(sc_raw, "flex_minutes", 30, "schedule")
    if flex_m / 60.0 > interval_h:
        errors.append("schedule.flex_minutes must not exceed schedule.interval_hours")
    schedule = ScheduleConfig(
        interval=timedelta(hours=interval_h),
        flex=timedelta(minutes=flex_m),
        max_retries=int(_number(sc_raw, "max_retries", 3, "schedule")),
        backoff=timedelta(seconds=_number(sc_raw, "backoff_seconds", 30, "schedule")),
        availability_poll=timedelta(
            seconds=_number(sc_raw, "availability_poll_seconds", 60, "schedule", strict=True)
        ),
    )

    # ── Retention ──
    rt_raw = _section("retention")
    retention = RetentionConfig(
        keep_archives=int(_number(rt_raw, "keep_archives", 10, "retention")),
        store_retention=timedelta(days=_number(rt_raw, "store_retention_days", 30, "retention")),
        sweep_interval=timedelta(
            hours=_number(rt_raw, "sweep_interval_hours", 24, "retention", strict=True)
        ),
    )

    # ── Collection ──
    co_raw = _section("collection")
    ranges = co_raw.get("synthetic_ranges") or {}
    if not isinstance(ranges, dict):
        errors.append("collection.synthetic_ranges must be a mapping")
        ranges = {}
    rp = "collection.synthetic_ranges"
    collection = CollectionConfig(
        synthetic_rate_hz=_number(co_raw, "synthetic_rate_hz", 25, "collection", strict=True),
        fsync_writes=_flag(co_raw, "fsync_writes", False, "collection"),
        heart_rate=_range(ranges, "heart_rate", (60.0, 100.0), rp),
        heart_rate_confidence=_range(ranges, "heart_rate_confidence", (0.8, 1.0), rp),
        respiration_rate=_range(ranges, "respiration_rate", (12.0, 20.0), rp),
        eda=_range(ranges, "eda", (0.1, 10.0), rp),
        temperature=_range(ranges, "temperature", (32.0, 37.5), rp),
    )
    if collection.respiration_rate.low <= 0:
        errors.append(f"{rp}.respiration_rate must be positive (ibi = 60 / rate)")

    # ── Store ──
    st_raw = _section("store")
    store = StoreConfig(deduplicate=_flag(st_raw, "deduplicate", False, "store"))

    if errors:
        raise ConfigValidationError(
            f"pipeline_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return PipelineConfig(
        version=version,
        schedule=schedule,
        retention=retention,
        collection=collection,
        store=store,
        _raw=raw,
    )


def load_pipeline_config(path: Path | None = None) -> PipelineConfig:
    """Load and validate the pipeline config from disk.

    Args:
        path: Override path to YAML. Uses the bundled pipeline_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded pipeline config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: PipelineConfig | None = None
_config_lock = threading.Lock()


def get_pipeline_config() -> PipelineConfig:
    """Return the global PipelineConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_pipeline_config()
    return _config


def reload_pipeline_config(path: Path | None = None) -> PipelineConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_pipeline_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded pipeline config: %s → %s", old_version, new_config.version)
    return new_config


def config_summary(config: PipelineConfig) -> dict[str, Any]:
    """Flatten the headline settings for logging and the status endpoint."""
    return {
        "version": config.version,
        "interval_seconds": config.schedule.interval.total_seconds(),
        "flex_seconds": config.schedule.flex.total_seconds(),
        "max_retries": config.schedule.max_retries,
        "keep_archives": config.retention.keep_archives,
        "store_retention_days": config.retention.store_retention.days,
        "synthetic_rate_hz": config.collection.synthetic_rate_hz,
        "deduplicate": config.store.deduplicate,
    }
