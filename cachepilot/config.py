"""cachepilot configuration system.

Loads and validates configuration from ~/.cachepilot/config.json.
Uses Pydantic for schema validation with sensible defaults.

Usage:
    from cachepilot.config import get_config, save_config

    config = get_config()
    print(config.sync.default_interval_ms)

    config.warming.enabled = False
    save_config(config)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from cachepilot.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".cachepilot" / "config.json"

CONFIG_VERSION = 1


class AdaptiveConfig(BaseModel):
    """Thresholds for the adaptive strategy heuristics.

    Attributes:
        high_frequency_threshold: Family access count above which caching
            becomes more aggressive.
        low_hit_rate_percent: Hit rate (percent) below which freshness is
            shortened and background sync forced.
        slow_response_ms: Average latency above which windows are extended.
    """

    high_frequency_threshold: int = Field(default=10, ge=0)
    low_hit_rate_percent: float = Field(default=60.0, ge=0.0, le=100.0)
    slow_response_ms: float = Field(default=1000.0, ge=0.0)


class PrefetchConfig(BaseModel):
    """Speculative prefetch preferences.

    Attributes:
        next_page_scroll_threshold: Scroll fraction past which a list session
            prefetches the next page.
    """

    next_page_scroll_threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class SyncConfig(BaseModel):
    """Background sync preferences."""

    default_interval_ms: int = Field(default=60_000, ge=1)


class WarmingConfig(BaseModel):
    """Cache warming at session start.

    Attributes:
        enabled: Whether CacheManager.initialize() warms by default.
        valid_grades: Grade segments that have dashboard data.
        dashboard_limit: Row limit used for the recent-status dashboard query.
        list_filter_sets: Filter combinations warmed for the list view.
    """

    enabled: bool = True
    valid_grades: list[int] = Field(default_factory=lambda: [1, 2, 3])
    dashboard_limit: int = Field(default=5, ge=1, le=100)
    list_filter_sets: list[dict[str, Any]] = Field(
        default_factory=lambda: [
            {"page": 0, "size": 20},
            {"page": 0, "size": 20, "sort": "createdAt,desc"},
        ]
    )


class MonitorConfig(BaseModel):
    """Performance monitor settings."""

    enabled: bool = True
    slow_query_threshold_ms: float = Field(default=1000.0, ge=0.0)
    report_limit: int = Field(default=5, ge=1, le=100)


class CatalogConfig(BaseModel):
    """Resource key layouts used by the default query catalog."""

    detail_prefix: list[str] = Field(default_factory=lambda: ["exam", "detail"], min_length=1)
    list_prefix: list[str] = Field(default_factory=lambda: ["exam", "list"], min_length=1)
    dashboard_status_prefix: list[str] = Field(
        default_factory=lambda: ["dashboard", "recent-exams-status"]
    )
    score_distribution_prefix: list[str] = Field(
        default_factory=lambda: ["statistics", "score-distributions"]
    )


class CachePilotConfig(BaseModel):
    """Top-level cachepilot configuration."""

    config_version: int = CONFIG_VERSION
    adaptive: AdaptiveConfig = Field(default_factory=AdaptiveConfig)
    prefetch: PrefetchConfig = Field(default_factory=PrefetchConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    warming: WarmingConfig = Field(default_factory=WarmingConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)


_config: CachePilotConfig | None = None
_config_lock = threading.Lock()


def load_config(config_path: Path | None = None, *, strict: bool = False) -> CachePilotConfig:
    """Load configuration from file, return defaults if missing/invalid.

    Args:
        config_path: Optional path to config file. Defaults to ~/.cachepilot/config.json.
        strict: Raise ConfigurationError on unreadable or invalid files
            instead of falling back to defaults. A missing file is never an error.

    Returns:
        CachePilotConfig instance with loaded or default values.

    Raises:
        ConfigurationError: If strict and the file cannot be parsed or validated.
    """
    path = config_path or CONFIG_PATH

    if not path.exists():
        logger.debug("Config file not found at %s, using defaults", path)
        return CachePilotConfig()

    try:
        with path.open() as f:
            data: dict[str, Any] = json.load(f)
        return CachePilotConfig.model_validate(data)
    except (json.JSONDecodeError, OSError, ValidationError) as e:
        if strict:
            raise ConfigurationError(
                f"Cannot load config: {e}",
                config_path=str(path),
                cause=e,
            ) from e
        logger.warning("Cannot load config file %s: %s, using defaults", path, e)
        return CachePilotConfig()


def save_config(config: CachePilotConfig, config_path: Path | None = None) -> bool:
    """Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to config file. Defaults to ~/.cachepilot/config.json.

    Returns:
        True if saved successfully, False otherwise.
    """
    path = config_path or CONFIG_PATH

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            json.dump(config.model_dump(), f, indent=2)
        os.chmod(path, 0o600)
        logger.debug("Configuration saved to %s", path)
        return True
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        return False


def get_config() -> CachePilotConfig:
    """Get singleton configuration instance.

    Returns:
        Shared CachePilotConfig instance.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def reset_config() -> None:
    """Reset singleton configuration for testing."""
    global _config
    with _config_lock:
        _config = None
