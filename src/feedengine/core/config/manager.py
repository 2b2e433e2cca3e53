"""
Configuration Manager

Layers engine settings from four sources, later ones winning:
built-in defaults, a YAML/JSON file, FEEDENGINE_* environment variables
and explicit overrides passed by the caller.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from feedengine.core.config.models import CacheConfig, EngineConfig, EvaluationConfig, StoreConfig
from feedengine.core.exceptions import ConfigurationError, ErrorCode


logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("feedengine.yaml", "feedengine.yml", ".feedengine.yaml")

_TRUE_WORDS = {'true', '1', 'yes', 'on', 'enabled'}


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_WORDS


# suffix -> (section or None for top-level, field, parser)
ENV_SETTINGS: Dict[str, Tuple[Optional[str], str, Callable[[str], Any]]] = {
    "MAX_BLOCKS": ("compiler", "max_blocks", int),
    "WARN_BLOCKS": ("compiler", "warn_blocks", int),
    "PREVIEW_BUDGET_MS": ("evaluation", "preview_budget_ms", int),
    "PAGE_BUDGET_MS": ("evaluation", "page_budget_ms", int),
    "PAGE_SIZE": ("evaluation", "default_page_size", int),
    "CACHE_TTL": ("cache", "ttl_seconds", float),
    "CACHE_SHARDS": ("cache", "shards", int),
    "STORE_BACKEND": ("store", "backend", str),
    "DB_PATH": ("store", "db_path", str),
    "PREVIEW_DEBOUNCE_MS": ("builder", "preview_debounce_ms", int),
    "MAX_WORKERS": ("workers", "max_workers", int),
    "LOG_LEVEL": (None, "log_level", str),
    "DEBUG": (None, "debug", _as_bool),
}

PROFILES: Dict[str, Callable[[], EngineConfig]] = {
    "default": EngineConfig,
    "persistent": lambda: EngineConfig(store=StoreConfig(backend="sqlite")),
    "high-traffic": lambda: EngineConfig(
        cache=CacheConfig(ttl_seconds=60.0, max_entries=65536, shards=64),
        evaluation=EvaluationConfig(page_budget_ms=1000),
    ),
}


def merge_settings(base: Dict[str, Any], layer: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay `layer` on `base`; nested mappings merge, everything else replaces."""
    merged = dict(base)
    for key, value in layer.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_settings(current, value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Loads and checks EngineConfig.

    Without an explicit file the first existing candidate is used:
    feedengine.yaml / feedengine.yml / .feedengine.yaml in the working
    directory, then ~/.config/feedengine/config.yaml, then the same path
    under $XDG_CONFIG_HOME.
    """

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else None
        self._config: Optional[EngineConfig] = None

    @staticmethod
    def candidate_paths() -> List[Path]:
        paths = [Path.cwd() / name for name in CONFIG_FILE_NAMES]
        paths.append(Path.home() / ".config" / "feedengine" / "config.yaml")
        xdg_home = os.environ.get('XDG_CONFIG_HOME')
        if xdg_home:
            paths.append(Path(xdg_home) / "feedengine" / "config.yaml")
        return paths

    def load_config(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        env_prefix: str = "FEEDENGINE_"
    ) -> EngineConfig:
        """
        Build the effective configuration.

        Args:
            overrides: Nested mapping applied last
            env_prefix: Prefix of the environment variables to read

        Returns:
            Validated EngineConfig

        Raises:
            ConfigurationError: If a source cannot be read or a value is invalid
        """
        settings: Dict[str, Any] = {}
        for layer in (self._read_file(), self._read_environment(env_prefix), overrides or {}):
            settings = merge_settings(settings, layer)

        try:
            self._config = EngineConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed: {e}",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                cause=e
            )
        return self._config

    def _locate_file(self) -> Optional[Path]:
        if self.config_file is not None:
            if not self.config_file.exists():
                raise ConfigurationError(
                    f"Config file not found: {self.config_file}",
                    error_code=ErrorCode.CONFIG_FILE_NOT_FOUND
                )
            return self.config_file
        return next((path for path in self.candidate_paths() if path.is_file()), None)

    def _read_file(self) -> Dict[str, Any]:
        path = self._locate_file()
        if path is None:
            return {}

        logger.debug(f"Reading configuration from {path}")
        try:
            text = path.read_text(encoding='utf-8')
            data = json.loads(text) if path.suffix.lower() == '.json' else yaml.safe_load(text)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config file {path}: {e}", cause=e)

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    def _read_environment(self, prefix: str) -> Dict[str, Any]:
        settings: Dict[str, Any] = {}
        for suffix, (section, name, parse) in ENV_SETTINGS.items():
            variable = f"{prefix}{suffix}"
            raw = os.environ.get(variable)
            if raw is None:
                continue
            try:
                value = parse(raw)
            except (ValueError, TypeError) as e:
                raise ConfigurationError(
                    f"Invalid value for {variable}: {raw} ({e})",
                    config_key=variable,
                    config_value=raw,
                    error_code=ErrorCode.CONFIG_INVALID_VALUE
                )
            target = settings if section is None else settings.setdefault(section, {})
            target[name] = value
        return settings

    def validate_config(self, config: Optional[EngineConfig] = None) -> List[str]:
        """
        Check for settings that are valid individually but odd together.

        Returns:
            Human-readable warnings; empty when nothing looks off
        """
        if config is None:
            config = self._config
        if config is None:
            return ["No configuration loaded"]

        warnings = []
        if config.evaluation.preview_budget_ms > config.evaluation.page_budget_ms:
            warnings.append("preview_budget_ms is larger than page_budget_ms")
        if config.cache.shards > config.cache.max_entries:
            warnings.append("More cache shards than cache entries; some shards can hold nothing")
        if config.store.backend == "sqlite":
            parent = config.store.db_path.parent
            if parent.exists() and not os.access(parent, os.W_OK):
                warnings.append(f"Cannot write to database directory: {parent}")
        return warnings

    def generate_schema(self, output_file: Optional[Path] = None) -> Dict[str, Any]:
        """JSON schema of EngineConfig, optionally written to `output_file`."""
        schema = EngineConfig.model_json_schema()
        if output_file:
            Path(output_file).write_text(json.dumps(schema, indent=2), encoding='utf-8')
        return schema

    def create_example_config(self, output_file: Path, profile: str = "default") -> None:
        """
        Write a complete configuration file for one of the built-in profiles.

        Raises:
            ConfigurationError: If the profile is unknown
        """
        factory = PROFILES.get(profile)
        if factory is None:
            raise ConfigurationError(
                f"Unknown profile '{profile}'",
                config_key="profile",
                config_value=profile
            )
        with open(output_file, 'w', encoding='utf-8') as f:
            yaml.dump(factory().model_dump(mode='json'), f, default_flow_style=False, indent=2)

    @property
    def config(self) -> Optional[EngineConfig]:
        return self._config
