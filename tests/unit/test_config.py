"""Unit tests for configuration management."""

import pytest
import yaml

from oven_monitor.lib.config import (
    ConfigManager,
    ConfigurationError,
    load_config_from_file,
    save_config_to_file
)
from oven_monitor.lib.config.validation import (
    create_config_schema,
    generate_example_config,
    validate_config_dict,
    validate_config_file
)
from oven_monitor.models import AggregationMode, MonitorConfiguration, OvenId


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's environment out of configuration tests."""
    for name in list(ConfigManager.env_mappings) + list(ConfigManager.legacy_env_mappings):
        monkeypatch.delenv(name, raising=False)


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestConfigurationLoading:
    """Test configuration loading functionality."""

    def test_missing_file_yields_defaults(self, tmp_path):
        """Test loading when the file doesn't exist."""
        config = ConfigManager(tmp_path / "absent.yaml").load_config()

        assert config == MonitorConfiguration()
        assert config.serial.port == "/dev/ttyS2"
        assert config.api_port == 5002
        assert config.scheduler.minimum_period_ms == 5000

    def test_load_from_file(self, tmp_path):
        """Test loading configuration from a YAML file."""
        path = write_yaml(tmp_path / "oven_monitor.yaml", {
            "serial": {"port": "/dev/ttyUSB0", "baudrate": 9600},
            "defaults": {"logging": {"oven2": {"interval_seconds": 30, "aggregation": "last"}}},
            "api_port": 8080
        })

        config = load_config_from_file(path)

        assert config.serial.port == "/dev/ttyUSB0"
        assert config.serial.baudrate == 9600
        assert config.api_port == 8080
        assert config.defaults.logging_for(OvenId.OVEN2).aggregation == AggregationMode.LAST
        assert config.defaults.logging_for(OvenId.OVEN1).interval_seconds == 60

    def test_empty_file_yields_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert ConfigManager(path).load_config() == MonitorConfiguration()

    def test_invalid_yaml(self, tmp_path):
        """Test loading a file that is not valid YAML."""
        path = tmp_path / "broken.yaml"
        path.write_text("serial: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="YAML parsing error"):
            ConfigManager(path).load_config()

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_invalid_values_rejected(self, tmp_path):
        path = write_yaml(tmp_path / "bad.yaml", {"serial": {"baudrate": -1}})

        with pytest.raises(ConfigurationError, match="validation failed"):
            ConfigManager(path).load_config()

    def test_unknown_keys_rejected(self, tmp_path):
        path = write_yaml(tmp_path / "bad.yaml", {"polling_interval_ms": 100})

        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_create_if_missing(self, tmp_path):
        path = tmp_path / "nested" / "oven_monitor.yaml"

        config = ConfigManager(path, create_if_missing=True).load_config()

        assert path.exists()
        assert path.read_text(encoding="utf-8").startswith("# Oven Monitor Configuration")
        assert config.defaults.operations_for(OvenId.OVEN1)[0] == "Colle Blanche"

    def test_error_callback(self, tmp_path):
        path = write_yaml(tmp_path / "bad.yaml", {"api_port": 0})
        manager = ConfigManager(path)
        errors = []
        manager.on_config_error = errors.append

        with pytest.raises(ConfigurationError):
            manager.load_config()

        assert len(errors) == 1


class TestEnvironmentOverrides:
    """Test environment variable overrides."""

    def test_prefixed_variables(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OVEN_MONITOR_SERIAL_PATH", "/dev/ttyACM0")
        monkeypatch.setenv("OVEN_MONITOR_SERIAL_BAUD", "57600")
        monkeypatch.setenv("OVEN_MONITOR_API_PORT", "9000")
        monkeypatch.setenv("OVEN_MONITOR_DEBUG", "yes")
        monkeypatch.setenv("OVEN_MONITOR_DATABASE_PATH", "/var/lib/ovens/ovens.db")

        config = ConfigManager(tmp_path / "absent.yaml").load_config()

        assert config.serial.port == "/dev/ttyACM0"
        assert config.serial.baudrate == 57600
        assert config.api_port == 9000
        assert config.enable_debug_logging is True
        assert config.storage.database_path == "/var/lib/ovens/ovens.db"

    def test_legacy_variables(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SERIAL_PATH", "/dev/ttyS1")
        monkeypatch.setenv("SERIAL_BAUD", "19200")

        config = ConfigManager(tmp_path / "absent.yaml").load_config()

        assert config.serial.port == "/dev/ttyS1"
        assert config.serial.baudrate == 19200

    def test_prefixed_wins_over_legacy(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SERIAL_PATH", "/dev/ttyS1")
        monkeypatch.setenv("OVEN_MONITOR_SERIAL_PATH", "/dev/ttyUSB1")

        config = ConfigManager(tmp_path / "absent.yaml").load_config()

        assert config.serial.port == "/dev/ttyUSB1"

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path / "oven_monitor.yaml", {"serial": {"port": "/dev/ttyS0", "baudrate": 9600}})
        monkeypatch.setenv("OVEN_MONITOR_SERIAL_PATH", "/dev/ttyUSB0")

        config = ConfigManager(path).load_config()

        assert config.serial.port == "/dev/ttyUSB0"
        assert config.serial.baudrate == 9600

    def test_bad_integer(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OVEN_MONITOR_API_PORT", "http")

        with pytest.raises(ConfigurationError, match="OVEN_MONITOR_API_PORT"):
            ConfigManager(tmp_path / "absent.yaml").load_config()


class TestConfigurationExport:
    """Test configuration export functionality."""

    def test_save_and_reload(self, tmp_path):
        config = MonitorConfiguration(api_port=6000)
        config.defaults.logging[OvenId.OVEN1].align_to_minute = True
        path = tmp_path / "exported.yaml"

        save_config_to_file(config, path)

        assert load_config_from_file(path) == config

    def test_export_requires_loaded_config(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(tmp_path / "absent.yaml").export_config_yaml()

    def test_export_yaml(self, tmp_path):
        manager = ConfigManager(tmp_path / "absent.yaml")
        manager.load_config()
        output = tmp_path / "out.yaml"

        content = manager.export_config_yaml(output)

        assert output.read_text(encoding="utf-8") == content
        assert "minimum_period_seconds" not in content

    def test_merge_config(self, tmp_path):
        manager = ConfigManager(tmp_path / "absent.yaml")
        manager.load_config()

        merged = manager.merge_config({"serial": {"baudrate": 38400}})

        assert merged.serial.baudrate == 38400
        assert merged.serial.port == "/dev/ttyS2"


class TestConfigurationValidation:
    """Test configuration validation."""

    def test_example_config_is_valid(self):
        result = validate_config_dict(generate_example_config(), strict=True)

        assert result.is_valid
        assert result.warnings == []

    def test_interval_below_floor_warns(self):
        data = generate_example_config()
        data["defaults"]["logging"]["oven1"]["interval_seconds"] = 2

        result = validate_config_dict(data)

        assert result.is_valid
        assert any("defaults.logging.oven1.interval_seconds" in w for w in result.warnings)

    def test_strict_mode_promotes_warnings(self):
        data = generate_example_config()
        data["defaults"]["operations"]["oven2"] = []

        assert validate_config_dict(data).is_valid
        assert not validate_config_dict(data, strict=True).is_valid

    def test_duplicate_operations_warn(self):
        data = generate_example_config()
        data["defaults"]["operations"]["oven1"] = ["Colle Noir", "Colle Noir"]

        assert validate_config_dict(data).warnings

    def test_privileged_port_warns(self):
        result = validate_config_dict({"api_port": 80, "api_host": "0.0.0.0"})

        assert any("api_port" in w for w in result.warnings)
        assert "API listens on all interfaces" in result.info

    def test_schema_errors_carry_path(self):
        result = validate_config_dict({"serial": {"baudrate": "fast"}})

        assert not result.is_valid
        assert result.errors[0].path == "serial.baudrate"

    def test_validate_missing_file(self, tmp_path):
        assert not validate_config_file(tmp_path / "absent.yaml").is_valid

    def test_schema(self):
        schema = create_config_schema()

        assert "serial" in schema["properties"]
        assert "api_port" in schema["properties"]
