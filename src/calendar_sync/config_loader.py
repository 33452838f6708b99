"""Load, validate, and hot-reload the Wellnest sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an admin update; no restart required.

Usage::

    from src.calendar_sync.config_loader import get_sync_config

    config = get_sync_config()
    config.refresh_buffer_seconds      # 300
    config.sync.window_days            # 7
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("wellnest.calendar_sync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class SyncWindowConfig:
    """Remote fetch and scheduling settings."""

    default_calendar_id: str
    window_days: int
    auto_sync_interval_seconds: int
    max_results_per_page: int
    max_pages: int


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:                Config schema version string.
        refresh_buffer_seconds: Refresh tokens expiring within this many seconds.
        http_timeout_seconds:   Per-request timeout for outbound HTTP.
        sync:                   Remote fetch window and scheduling.
        health_keywords:        Lower-cased keywords marking health-related events.
    """

    version: str
    refresh_buffer_seconds: int
    http_timeout_seconds: float
    sync: SyncWindowConfig
    health_keywords: tuple[str, ...]
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Applies defaults for optional fields.

    Raises:
        ConfigValidationError: If any value is missing or out of range.
    """
    errors: list[str] = []

    def _positive(section: dict, key: str, default: Any, cast: type, path: str) -> Any:
        value = section.get(key, default)
        try:
            number = cast(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be a number, got {value!r}")
            return default
        if number <= 0:
            errors.append(f"{path}.{key} must be positive, got {number}")
        return number

    version = str(raw.get("version", "1.0"))

    creds_raw = raw.get("credentials") or {}
    buffer_seconds = creds_raw.get("refresh_buffer_seconds", 300)
    try:
        buffer_seconds = int(buffer_seconds)
    except (TypeError, ValueError):
        errors.append(
            f"credentials.refresh_buffer_seconds must be a number, got {buffer_seconds!r}"
        )
        buffer_seconds = 300
    if buffer_seconds < 0:
        errors.append("credentials.refresh_buffer_seconds must not be negative")

    http_raw = raw.get("http") or {}
    timeout = _positive(http_raw, "timeout_seconds", 15, float, "http")

    sync_raw = raw.get("sync") or {}
    sync = SyncWindowConfig(
        default_calendar_id=str(sync_raw.get("default_calendar_id") or "primary"),
        window_days=_positive(sync_raw, "window_days", 7, int, "sync"),
        auto_sync_interval_seconds=_positive(
            sync_raw, "auto_sync_interval_seconds", 900, int, "sync"
        ),
        max_results_per_page=_positive(sync_raw, "max_results_per_page", 250, int, "sync"),
        max_pages=_positive(sync_raw, "max_pages", 10, int, "sync"),
    )

    keywords_raw = raw.get("health_keywords")
    if not isinstance(keywords_raw, list) or not keywords_raw:
        errors.append("'health_keywords' must be a non-empty list")
        keywords_raw = []
    keywords = tuple(
        str(k).strip().lower() for k in keywords_raw if str(k).strip()
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        refresh_buffer_seconds=buffer_seconds,
        http_timeout_seconds=timeout,
        sync=sync,
        health_keywords=keywords,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
