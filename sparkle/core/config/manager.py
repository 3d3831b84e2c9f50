"""
ConfigManager: YAML-backed gameplay configuration access.

Purpose
-------
- Provide hierarchical, dot-notation access to tunable engine values
  (level rewards, cache TTLs, trade expiry, quest rotation size).
- Hold the raw achievement and quest catalogues that GamificationCatalog
  turns into immutable definitions.

Responsibilities
----------------
- Load and deep-merge every ``*.yaml`` file below the configured directory.
- Overlay those files on top of built-in defaults.
- Serve reads from an in-memory cache with simple hit/miss metrics.
- Allow explicit overrides for tests and controlled maintenance.

Key Design Decisions
--------------------
- YAML is the single source for defaults; there is no database layer.
- Lookups never raise; a missing key yields the caller's default.
- Accessing the manager before ``initialize()`` lazily loads the YAML files.

Dependencies
------------
- PyYAML (``yaml.safe_load``)
- ``sparkle.core.config.config.Config`` for the configuration directory
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional

import yaml

from sparkle.core.config.config import Config
from sparkle.core.logging.logger import get_logger

logger = get_logger(__name__)


class ConfigManagerError(RuntimeError):
    """Base error type for ConfigManager failures."""


class ConfigInitializationError(ConfigManagerError):
    """Raised when a YAML file cannot be parsed during initialization."""


@dataclass(slots=True)
class ConfigMetrics:
    gets: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    fallback_to_defaults: int = 0
    files_loaded: int = 0


# Built-in fallbacks for values the engine cannot run without.
_BUILTIN_DEFAULTS: Dict[str, Any] = {
    "progression": {
        "level_rewards": {
            "sparkle_per_level": 100,
            "premium_interval": 5,
            "premium_per_level": 10,
            "milestone_items": {},
        },
    },
    "quests": {"daily_count": 3, "default_expiry_hours": 24},
    "trading": {"default_expiry_days": 7},
    "leaderboard": {"cache_ttl_seconds": 300, "default_limit": 10, "max_limit": 100},
    "stats": {"cache_ttl_seconds": 60, "recent_achievements": 5, "recent_xp_entries": 10},
    "streaks": {"window_days": 30},
    "achievements": {},
    "quest_definitions": {},
}


class ConfigManager:
    """
    Class-level configuration registry.

    Example
    -------
    >>> ConfigManager.initialize()
    >>> ConfigManager.get("trading.default_expiry_days", 7)
    7
    """

    _cache: Dict[str, Any] = {}
    _defaults: Dict[str, Any] = {}
    _initialized: bool = False
    _config_dir: Optional[Path] = None
    _metrics: ConfigMetrics = ConfigMetrics()

    # =========================================================================
    # YAML LOADING
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: Mapping[str, Any],
    ) -> None:
        """Recursively merge ``source`` into ``target`` in place."""
        for key, value in source.items():
            if isinstance(value, Mapping) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = copy.deepcopy(value)

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> None:
        if not config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return

        yaml_files = sorted(config_dir.rglob("*.yaml")) + sorted(config_dir.rglob("*.yml"))
        for yaml_file in yaml_files:
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                logger.error(
                    "Failed to parse YAML config",
                    extra={"file": str(yaml_file), "error": str(exc)},
                    exc_info=True,
                )
                raise ConfigInitializationError(f"Invalid YAML in {yaml_file}") from exc

            if isinstance(data, dict):
                cls._deep_merge_dict(cls._defaults, data)
                cls._metrics.files_loaded += 1
                logger.debug(
                    "Loaded YAML config",
                    extra={"file": str(yaml_file.relative_to(config_dir))},
                )
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={"file": str(yaml_file), "root_type": type(data).__name__},
                )

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    @classmethod
    def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """
        Load built-in defaults and every YAML file under ``config_dir``.

        Re-initializing replaces the cache; any overrides are discarded.

        Raises
        ------
        ConfigInitializationError
            If a YAML file exists but cannot be parsed.
        """
        cls._config_dir = Path(config_dir) if config_dir is not None else Config.CONFIG_DIR
        cls._defaults = copy.deepcopy(_BUILTIN_DEFAULTS)
        cls._metrics = ConfigMetrics()
        cls._load_yaml_configs(cls._config_dir)
        cls._cache = copy.deepcopy(cls._defaults)
        cls._initialized = True

        logger.info(
            "ConfigManager initialized",
            extra={
                "config_dir": str(cls._config_dir),
                "yaml_file_count": cls._metrics.files_loaded,
                "top_level_keys": len(cls._cache),
            },
        )

    @classmethod
    def _ensure_initialized(cls) -> None:
        if not cls._initialized:
            logger.debug("ConfigManager accessed before initialization; loading now")
            cls.initialize()

    # =========================================================================
    # READ API
    # =========================================================================

    @staticmethod
    def _traverse(source: Mapping[str, Any], key: str) -> Any:
        value: Any = source
        for part in key.split("."):
            if not isinstance(value, Mapping):
                return None
            value = value.get(part)
            if value is None:
                return None
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Examples
        --------
        >>> ConfigManager.get("leaderboard.cache_ttl_seconds", 300)
        300
        >>> ConfigManager.get("missing.key", "fallback")
        'fallback'
        """
        cls._ensure_initialized()
        cls._metrics.gets += 1

        value = cls._traverse(cls._cache, key)
        if value is not None:
            cls._metrics.cache_hits += 1
            return value

        cls._metrics.cache_misses += 1
        fallback = cls._traverse(cls._defaults, key)
        if fallback is not None:
            cls._metrics.fallback_to_defaults += 1
            return fallback
        return default

    # =========================================================================
    # OVERRIDES & CACHE CONTROL
    # =========================================================================

    @classmethod
    def override(cls, values: Mapping[str, Any]) -> None:
        """Deep-merge ``values`` over the live cache (defaults stay untouched)."""
        cls._ensure_initialized()
        cls._deep_merge_dict(cls._cache, values)
        logger.info("ConfigManager overrides applied", extra={"keys": sorted(values.keys())})

    @classmethod
    def clear_cache(cls) -> None:
        """Reset to the uninitialized state. Intended for tests."""
        cls._cache = {}
        cls._defaults = {}
        cls._initialized = False
        logger.info("ConfigManager cache cleared")

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        total = cls._metrics.cache_hits + cls._metrics.cache_misses
        return {
            "initialized": cls._initialized,
            "gets": cls._metrics.gets,
            "cache_hits": cls._metrics.cache_hits,
            "cache_misses": cls._metrics.cache_misses,
            "cache_hit_rate": round(cls._metrics.cache_hits / total, 4) if total else 0.0,
            "fallback_to_defaults": cls._metrics.fallback_to_defaults,
            "files_loaded": cls._metrics.files_loaded,
        }
