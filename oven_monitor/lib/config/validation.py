"""Validation of oven monitor configuration files.

Schema errors come from the pydantic model. On top of that a few
consistency checks produce warnings: logging intervals below the scheduler
floor, ovens with no (or duplicated) operation labels, and privileged API
ports. Strict mode turns every warning into an error.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from ...models import MonitorConfiguration, OvenId
from ...models.operator_settings import DEFAULT_OPERATIONS


class ConfigValidationError(Exception):
    """A single validation failure, located by dotted path when known."""

    def __init__(self, message: str, path: str = "", details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.details = details or {}

    def __str__(self) -> str:
        where = f" at '{self.path}'" if self.path else ""
        return f"Config validation error{where}: {self.message}"


class ValidationResult:
    """Errors, warnings and notes collected while validating one document."""

    def __init__(self):
        self.errors: List[ConfigValidationError] = []
        self.warnings: List[str] = []
        self.info: List[str] = []

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, error: ConfigValidationError) -> None:
        self.errors.append(error)

    def add_warning(self, message: str, path: str = "") -> None:
        self.warnings.append(f"Warning at '{path}': {message}" if path else f"Warning: {message}")

    def add_info(self, message: str) -> None:
        self.info.append(message)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "valid": self.is_valid,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "errors": [str(error) for error in self.errors],
            "warnings": list(self.warnings),
            "info": list(self.info)
        }

    def print_results(self, verbose: bool = True) -> None:
        print("Configuration is valid" if self.is_valid else "Configuration is INVALID")

        sections = [("Errors", [str(e) for e in self.errors])]
        if verbose:
            sections += [("Warnings", self.warnings), ("Info", self.info)]

        for title, lines in sections:
            if lines:
                print(f"\n{title} ({len(lines)}):")
                for line in lines:
                    print(f"  - {line}")


class ConfigValidator:
    """Validates configuration mappings and YAML files."""

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode

    def validate_config(self, config_data: Any) -> ValidationResult:
        result = ValidationResult()

        if not isinstance(config_data, dict):
            result.add_error(ConfigValidationError(
                f"Configuration must be a mapping, got {type(config_data).__name__}"
            ))
            return result

        config = self._check_schema(config_data, result)
        if config is None:
            return result

        self._check_intervals(config, result)
        self._check_operations(config, result)
        self._check_api(config, result)

        if self.strict_mode:
            for warning in result.warnings:
                result.add_error(ConfigValidationError(warning))

        return result

    def validate_yaml_file(self, file_path: Union[str, Path]) -> ValidationResult:
        path = Path(file_path)

        if not path.is_file():
            result = ValidationResult()
            reason = "is not a file" if path.exists() else "does not exist"
            result.add_error(ConfigValidationError(f"Configuration file {reason}: {path}"))
            return result

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as e:
            result = ValidationResult()
            result.add_error(ConfigValidationError(f"Cannot load {path}: {e}"))
            return result

        return self.validate_config(data if data is not None else {})

    def _check_schema(self, data: Dict[str, Any], result: ValidationResult) -> Optional[MonitorConfiguration]:
        try:
            return MonitorConfiguration(**data)
        except ValidationError as e:
            for item in e.errors():
                result.add_error(ConfigValidationError(
                    item["msg"],
                    path=".".join(str(part) for part in item["loc"]),
                    details={"type": item["type"], "input": item.get("input")}
                ))
            return None

    def _check_intervals(self, config: MonitorConfiguration, result: ValidationResult) -> None:
        floor_ms = config.scheduler.minimum_period_ms
        for oven_id in OvenId:
            spec = config.defaults.logging_for(oven_id)
            if spec.interval_ms < floor_ms:
                result.add_warning(
                    f"{spec.interval_seconds}s is below the scheduler floor of {floor_ms} ms",
                    path=f"defaults.logging.{oven_id.value}.interval_seconds"
                )

    def _check_operations(self, config: MonitorConfiguration, result: ValidationResult) -> None:
        for oven_id in OvenId:
            labels = config.defaults.operations_for(oven_id)
            path = f"defaults.operations.{oven_id.value}"
            if not labels:
                result.add_warning("No operation labels configured", path=path)
            elif len(set(labels)) != len(labels):
                result.add_warning("Duplicate operation labels", path=path)

    def _check_api(self, config: MonitorConfiguration, result: ValidationResult) -> None:
        if config.api_port < 1024:
            result.add_warning(f"Port {config.api_port} needs elevated privileges", path="api_port")
        if config.api_host in ("0.0.0.0", "::"):
            result.add_info("API listens on all interfaces")


def validate_config_dict(config_data: Dict[str, Any], strict: bool = False) -> ValidationResult:
    return ConfigValidator(strict_mode=strict).validate_config(config_data)


def validate_config_file(file_path: Union[str, Path], strict: bool = False) -> ValidationResult:
    return ConfigValidator(strict_mode=strict).validate_yaml_file(file_path)


def create_config_schema() -> Dict[str, Any]:
    """JSON schema of the configuration file."""
    return MonitorConfiguration.model_json_schema()


def generate_example_config() -> Dict[str, Any]:
    """A complete configuration mapping populated with the default values."""
    default_logging = {"interval_seconds": 60, "aggregation": "average", "align_to_minute": False}
    return {
        "serial": {
            "port": "/dev/ttyS2",
            "baudrate": 115200,
            "read_timeout_s": 1.0,
            "reconnect_initial_delay_s": 0.5,
            "reconnect_max_delay_s": 30.0
        },
        "storage": {"database_path": "ovens.db", "state_path": "oven_state.json"},
        "scheduler": {"minimum_period_ms": 5000},
        "defaults": {
            "operations": {oven_id.value: list(DEFAULT_OPERATIONS) for oven_id in OvenId},
            "logging": {oven_id.value: dict(default_logging) for oven_id in OvenId}
        },
        "enable_debug_logging": False,
        "api_host": "127.0.0.1",
        "api_port": 5002
    }
