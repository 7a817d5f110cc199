"""
Workguard Configuration

Dataclass configs for the dispatcher, the component boundary and the three
category recoverers, plus a loader for YAML/JSON files with environment
variable substitution (``${VAR}`` and ``${VAR:default}``).

All durations are in seconds.
"""

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from workguard.errors import ConfigurationError, ErrorLevel

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "WORKGUARD_CONFIG"


# ============================================================================
# Section configs
# ============================================================================

@dataclass
class DispatcherConfig:
    """Error dispatcher settings."""
    enable_logging: bool = True
    enable_notifications: bool = True
    enable_recovery: bool = True
    enable_statistics: bool = True
    log_level: ErrorLevel = ErrorLevel.WARNING
    notification_level: ErrorLevel = ErrorLevel.WARNING
    debounce_time: float = 1.0
    max_log_entries: int = 1000


@dataclass
class BoundaryConfig:
    """Component health boundary settings."""
    enabled: bool = True
    max_consecutive_errors: int = 5
    recovery_interval: float = 5.0
    enable_auto_recovery: bool = True
    enable_degraded_mode: bool = True
    degraded_mode_timeout: float = 30.0


@dataclass
class FileSystemRecovererConfig:
    auto_create_directory: bool = True
    auto_create_file: bool = True
    permission_check: bool = True
    disk_space_check: bool = False
    max_retries: int = 3
    retry_interval: float = 1.0


@dataclass
class ParsingRecovererConfig:
    enable_auto_fix: bool = True
    enable_fallback_parsing: bool = True
    enable_partial_parsing: bool = True
    max_retries: int = 3
    retry_interval: float = 0.5
    log_error_details: bool = True


@dataclass
class ProviderRecovererConfig:
    enable_auto_retry: bool = True
    enable_degraded_mode: bool = True
    enable_reinitialization: bool = True
    max_consecutive_errors: int = 3
    max_retries: int = 3
    retry_interval: float = 1.0
    degraded_mode_timeout: float = 30.0
    log_error_details: bool = True


_SECTIONS = {
    "dispatcher": DispatcherConfig,
    "boundary": BoundaryConfig,
    "filesystem": FileSystemRecovererConfig,
    "parsing": ParsingRecovererConfig,
    "provider": ProviderRecovererConfig,
}

_LEVEL_FIELDS = ("log_level", "notification_level")


def _section_from_dict(name: str, cls, data: Optional[Dict[str, Any]]):
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown {name} settings: {', '.join(sorted(unknown))}",
            config_key=f"{name}.{sorted(unknown)[0]}",
        )
    for key in _LEVEL_FIELDS:
        if key in data and not isinstance(data[key], ErrorLevel):
            try:
                data[key] = ErrorLevel(str(data[key]).lower())
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid error level for {name}.{key}: {data[key]}",
                    config_key=f"{name}.{key}",
                    inner_error=e,
                ) from e
    return cls(**data)


@dataclass
class WorkguardConfig:
    """Aggregate configuration for a framework instance."""
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)
    filesystem: FileSystemRecovererConfig = field(default_factory=FileSystemRecovererConfig)
    parsing: ParsingRecovererConfig = field(default_factory=ParsingRecovererConfig)
    provider: ProviderRecovererConfig = field(default_factory=ProviderRecovererConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkguardConfig":
        """
        Build a config from nested dictionaries.

        Missing sections and keys keep their defaults; unknown keys raise
        ``ConfigurationError``.
        """
        data = data or {}
        unknown = set(data) - set(_SECTIONS)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration sections: {', '.join(sorted(unknown))}",
                config_key=sorted(unknown)[0],
            )
        sections = {
            name: _section_from_dict(name, section_cls, data.get(name))
            for name, section_cls in _SECTIONS.items()
        }
        return cls(**sections)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        for section in result.values():
            for key in _LEVEL_FIELDS:
                if key in section:
                    section[key] = section[key].value
        return result

    def validate(self) -> "WorkguardConfig":
        """Check knob ranges. Raises ``ConfigurationError`` naming the bad key."""
        for name in _SECTIONS:
            section = getattr(self, name)
            for f in fields(section):
                value = getattr(section, f.name)
                key = f"{name}.{f.name}"
                if f.name in ("max_retries", "max_consecutive_errors"):
                    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                        raise ConfigurationError(f"{key} must be an integer >= 1, got {value!r}",
                                                 config_key=key)
                elif f.name == "max_log_entries":
                    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                        raise ConfigurationError(f"{key} must be an integer >= 1, got {value!r}",
                                                 config_key=key)
                elif f.name.endswith(("_time", "_interval", "_timeout")):
                    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                        raise ConfigurationError(f"{key} must be a duration >= 0, got {value!r}",
                                                 config_key=key)
                elif f.type is bool or f.type == "bool":
                    if not isinstance(value, bool):
                        raise ConfigurationError(f"{key} must be a boolean, got {value!r}",
                                                 config_key=key)
        return self


# ============================================================================
# File loading
# ============================================================================

class ConfigLoader:
    """
    Loads YAML or JSON configuration files.

    String values may reference environment variables as ``${NAME}`` or
    ``${NAME:default}``. A value that is exactly one placeholder is coerced
    to bool/int/float where it looks like one.
    """

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

    @classmethod
    def load(cls, path: Union[str, Path]) -> Dict[str, Any]:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()
        with open(path, 'r', encoding='utf-8') as f:
            if suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f)
            elif suffix == '.json':
                data = json.load(f)
            else:
                raise ConfigurationError(f"Unsupported configuration file format: {suffix}",
                                         resource=str(path))

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {path}",
                                     resource=str(path))
        return cls.substitute(data)

    @classmethod
    def substitute(cls, data: Any) -> Any:
        """Recursively replace placeholders in strings."""
        if isinstance(data, dict):
            return {key: cls.substitute(value) for key, value in data.items()}
        if isinstance(data, list):
            return [cls.substitute(item) for item in data]
        if isinstance(data, str):
            return cls._substitute_string(data)
        return data

    @classmethod
    def _substitute_string(cls, value: str) -> Any:
        def lookup(match):
            name, sep, default = match.group(1).partition(':')
            name = name.strip()
            env_value = os.getenv(name)
            if env_value is None:
                if not sep:
                    raise ConfigurationError(f"Required environment variable not set: {name}",
                                             config_key=name)
                env_value = default.strip()
            return env_value

        result = cls.ENV_VAR_PATTERN.sub(lookup, value)
        if cls.ENV_VAR_PATTERN.fullmatch(value):
            return cls._coerce(result)
        return result

    @staticmethod
    def _coerce(value: str) -> Any:
        lowered = value.lower()
        if lowered in ('true', 'false'):
            return lowered == 'true'
        try:
            if '.' not in value and 'e' not in lowered:
                return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            return value


def load_config(path: Optional[Union[str, Path]] = None) -> WorkguardConfig:
    """
    Load and validate configuration.

    Args:
        path: Config file; defaults to ``$WORKGUARD_CONFIG``. With neither,
            the built-in defaults are returned.

    Returns:
        Validated ``WorkguardConfig``
    """
    path = path or os.getenv(ENV_CONFIG_PATH)
    if not path:
        logger.debug("No configuration file given, using defaults")
        return WorkguardConfig().validate()
    data = ConfigLoader.load(path)
    logger.info(f"Loaded configuration from {path}")
    return WorkguardConfig.from_dict(data).validate()
