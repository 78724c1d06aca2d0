"""MonitorConfiguration data model for transport, storage and scheduling settings."""

from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator, computed_field, model_validator

from .operator_settings import OperatorSettings


class SerialSettings(BaseModel):
    """Serial transport delivering the sensor frames."""

    port: str = Field(default="/dev/ttyS2", min_length=1, description="Serial device path")
    baudrate: int = Field(default=115200, gt=0, le=4000000, description="Line speed")
    read_timeout_s: float = Field(
        default=1.0,
        gt=0.0,
        le=30.0,
        description="Blocking read timeout"
    )
    reconnect_initial_delay_s: float = Field(
        default=0.5,
        gt=0.0,
        le=60.0,
        description="First delay before reopening a failed port"
    )
    reconnect_max_delay_s: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Upper bound for the reconnect backoff"
    )

    @model_validator(mode='after')
    def validate_backoff_bounds(self) -> 'SerialSettings':
        """Validate backoff bounds are ordered."""
        if self.reconnect_max_delay_s < self.reconnect_initial_delay_s:
            raise ValueError("reconnect_max_delay_s must be >= reconnect_initial_delay_s")
        return self


class StorageSettings(BaseModel):
    """Durable stores."""

    database_path: str = Field(default="ovens.db", min_length=1, description="SQLite document store")
    state_path: str = Field(
        default="oven_state.json",
        min_length=1,
        description="Key-value file for settings and active sessions"
    )


class SchedulerSettings(BaseModel):
    """Logging scheduler safety limits."""

    minimum_period_ms: int = Field(
        default=5000,
        ge=1000,
        le=3600000,
        description="Floor applied to every logging period"
    )

    @computed_field
    @property
    def minimum_period_seconds(self) -> float:
        return self.minimum_period_ms / 1000.0


class MonitorConfiguration(BaseModel):
    """Complete application configuration."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "json_schema_extra": {
            "example": {
                "serial": {"port": "/dev/ttyUSB0", "baudrate": 115200},
                "storage": {"database_path": "ovens.db", "state_path": "oven_state.json"},
                "scheduler": {"minimum_period_ms": 5000},
                "api_port": 5002
            }
        }
    }

    serial: SerialSettings = Field(default_factory=SerialSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    defaults: OperatorSettings = Field(
        default_factory=OperatorSettings,
        description="Operator settings used until some are saved"
    )

    enable_debug_logging: bool = Field(default=False, description="Enable debug level logging")
    api_host: str = Field(default="127.0.0.1", description="HTTP API bind address")
    api_port: int = Field(
        default=5002,
        ge=1,
        le=65535,
        description="HTTP API server port"
    )

    @field_validator('api_host')
    @classmethod
    def validate_api_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("api_host cannot be empty")
        return v

    def export_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary for YAML serialization."""
        return self.model_dump(mode='json', exclude={'scheduler': {'minimum_period_seconds'}})
