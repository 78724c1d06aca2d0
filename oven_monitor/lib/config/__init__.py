"""YAML configuration for the oven monitor.

The file is optional: a missing or empty file means "all defaults". Values
are layered in this order, later layers winning:

1. ``MonitorConfiguration`` defaults
2. the YAML file
3. legacy environment variables (``SERIAL_PATH``, ``SERIAL_BAUD``)
4. ``OVEN_MONITOR_*`` environment variables

Usage:
    from oven_monitor.lib.config import ConfigManager

    config = ConfigManager("oven_monitor.yaml").load_config()
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import yaml
from pydantic import ValidationError

from ...models import MonitorConfiguration
from .validation import ConfigValidator, ValidationResult, generate_example_config


EnvTarget = Tuple[Sequence[str], type]

FILE_HEADER = """# Oven Monitor Configuration
# Written: {written}
#
# The serial link delivers one JSON object per line:
#   {{"temp1": 182.5, "temp2": 121.0}}
# temp1 feeds oven1 and temp2 feeds oven2.

"""

TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})


class ConfigurationError(Exception):
    """Raised when the configuration cannot be read, parsed or validated."""
    pass


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new mapping with ``override`` folded into ``base``.

    Nested mappings are merged key by key and copied, so neither input is
    mutated.
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict):
            current = merged.get(key)
            merged[key] = deep_merge(current if isinstance(current, dict) else {}, value)
        else:
            merged[key] = value
    return merged


def _assign(data: Dict[str, Any], path: Sequence[str], value: Any) -> None:
    *parents, leaf = path
    node = data
    for key in parents:
        child = node.get(key)
        if not isinstance(child, dict):
            child = node[key] = {}
        node = child
    node[leaf] = value


def _coerce(env_var: str, raw: str, target_type: type) -> Any:
    if target_type is bool:
        return raw.strip().lower() in TRUE_STRINGS
    if target_type is int:
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from e
    return raw


def render_yaml(data: Dict[str, Any]) -> str:
    """Render a configuration mapping with the explanatory file header."""
    body = yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True, indent=2)
    return FILE_HEADER.format(written=datetime.now().isoformat(timespec="seconds")) + body


class ConfigManager:
    """Loads, validates and saves the monitor configuration file."""

    env_prefix = "OVEN_MONITOR_"

    env_mappings: Dict[str, EnvTarget] = {
        f"{env_prefix}SERIAL_PATH": (("serial", "port"), str),
        f"{env_prefix}SERIAL_BAUD": (("serial", "baudrate"), int),
        f"{env_prefix}API_HOST": (("api_host",), str),
        f"{env_prefix}API_PORT": (("api_port",), int),
        f"{env_prefix}DEBUG": (("enable_debug_logging",), bool),
        f"{env_prefix}DATABASE_PATH": (("storage", "database_path"), str),
        f"{env_prefix}STATE_PATH": (("storage", "state_path"), str),
    }

    # Applied before env_mappings so the prefixed names win
    legacy_env_mappings: Dict[str, EnvTarget] = {
        "SERIAL_PATH": (("serial", "port"), str),
        "SERIAL_BAUD": (("serial", "baudrate"), int),
    }

    def __init__(
        self,
        config_path: Union[str, Path],
        validate: bool = True,
        strict_validation: bool = False,
        create_if_missing: bool = False
    ):
        self.config_path = Path(config_path)
        self.validate = validate
        self.strict_validation = strict_validation

        self.config: Optional[MonitorConfiguration] = None
        self.last_validation: Optional[ValidationResult] = None
        self.on_config_error: Optional[Callable[[Exception], None]] = None

        if create_if_missing and not self.config_path.exists():
            self._write(generate_example_config())

    def load_config(self) -> MonitorConfiguration:
        """Read the file, apply environment overrides and validate."""
        try:
            data = self.apply_environment(self._read())
            self.config = self._build(data)
            return self.config
        except Exception as e:
            self._report(e)
            raise

    def save_config(self, config: MonitorConfiguration) -> None:
        try:
            self._write(config.export_dict())
        except Exception as e:
            self._report(e)
            raise
        self.config = config

    def export_config_yaml(self, output_path: Optional[Path] = None) -> str:
        """Render the loaded configuration, optionally writing it to ``output_path``."""
        if self.config is None:
            raise ConfigurationError("No configuration loaded")

        content = render_yaml(self.config.export_dict())
        if output_path:
            Path(output_path).write_text(content, encoding="utf-8")
        return content

    def merge_config(self, override_data: Dict[str, Any]) -> MonitorConfiguration:
        """Build a new configuration from the loaded one plus ``override_data``."""
        base = self.config.export_dict() if self.config else generate_example_config()
        return self._build(deep_merge(base, override_data))

    def apply_environment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``data`` with environment variable overrides applied."""
        result = deep_merge({}, data)
        for table in (self.legacy_env_mappings, self.env_mappings):
            for env_var, (path, target_type) in table.items():
                raw = os.environ.get(env_var)
                if raw is not None:
                    _assign(result, path, _coerce(env_var, raw, target_type))
        return result

    def _build(self, data: Dict[str, Any]) -> MonitorConfiguration:
        if self.validate:
            self.last_validation = ConfigValidator(strict_mode=self.strict_validation).validate_config(data)
            if not self.last_validation.is_valid:
                raise ConfigurationError(
                    f"Configuration validation failed: {self.last_validation.errors[0]}"
                )

        try:
            return MonitorConfiguration(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def _read(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            return {}

        try:
            data = yaml.safe_load(self.config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"YAML parsing error in {self.config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read {self.config_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(render_yaml(data), encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot write {self.config_path}: {e}") from e

    def _report(self, error: Exception) -> None:
        if self.on_config_error:
            self.on_config_error(error)


def load_config_from_file(config_path: Union[str, Path], validate: bool = True) -> MonitorConfiguration:
    return ConfigManager(config_path, validate=validate).load_config()


def save_config_to_file(config: MonitorConfiguration, config_path: Union[str, Path]) -> None:
    ConfigManager(config_path, validate=False).save_config(config)


__all__ = [
    "ConfigManager",
    "ConfigurationError",
    "deep_merge",
    "load_config_from_file",
    "render_yaml",
    "save_config_to_file",
]
